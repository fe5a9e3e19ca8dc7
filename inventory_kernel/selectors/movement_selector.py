"""
MovementSelector -- paginated ledger queries and ledger replay.

Responsibility:
    Serves ``get_movements`` (filtered, paginated, ordered by creation) and
    ``verify_ledger`` (replays a record's movements and compares the result
    with the stored on-hand quantity).

Architecture position:
    Kernel > Selectors.  Read-only.

Invariants enforced:
    LEDGER_CONTINUITY -- ``replay`` reports every sequence number at which
        quantity_after[n] != quantity_after[n-1] + quantity[n], and every gap
        in the per-record sequence.
"""

from uuid import UUID

from sqlalchemy import func, select

from inventory_kernel.domain.dtos import MovementFilter, MovementView, Page, ReconciliationResult
from inventory_kernel.domain.values import MovementType
from inventory_kernel.exceptions import InventoryNotFoundError, ValidationError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.inventory import InventoryRecord
from inventory_kernel.models.movement import InventoryMovement
from inventory_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.movement")


class MovementSelector(BaseSelector[InventoryMovement]):

    def _conditions(self, filters: MovementFilter) -> list:
        conditions = []
        if filters.inventory_id is not None:
            conditions.append(InventoryMovement.inventory_id == filters.inventory_id)
        if filters.product_id is not None:
            conditions.append(InventoryMovement.product_id == filters.product_id)
        if filters.warehouse_id is not None:
            conditions.append(InventoryMovement.warehouse_id == filters.warehouse_id)
        if filters.movement_type is not None:
            conditions.append(
                InventoryMovement.movement_type == MovementType(filters.movement_type).value
            )
        if filters.date_from is not None:
            conditions.append(InventoryMovement.created_at >= filters.date_from)
        if filters.date_to is not None:
            conditions.append(InventoryMovement.created_at <= filters.date_to)
        return conditions

    def query(
        self,
        filters: MovementFilter,
        default_page_size: int = 50,
        max_page_size: int = 500,
    ) -> Page[MovementView]:
        """
        One page of movements ordered by creation.

        Ties on created_at are broken by (inventory_id, sequence), so the
        per-record order on every page is the ledger order.

        Raises:
            ValidationError: page < 1, page_size outside 1..max_page_size,
                or date_from after date_to.
        """
        page_size = filters.page_size if filters.page_size is not None else default_page_size
        if filters.page < 1:
            raise ValidationError("page", f"must be >= 1, got {filters.page}")
        if not 1 <= page_size <= max_page_size:
            raise ValidationError("page_size", f"must be within 1..{max_page_size}, got {page_size}")
        if filters.date_from and filters.date_to and filters.date_from > filters.date_to:
            raise ValidationError("date_from", "must not be after date_to")

        conditions = self._conditions(filters)

        total = self.session.execute(
            select(func.count()).select_from(InventoryMovement).where(*conditions)
        ).scalar_one()

        if filters.newest_first:
            ordering = (
                InventoryMovement.created_at.desc(),
                InventoryMovement.inventory_id.desc(),
                InventoryMovement.sequence.desc(),
            )
        else:
            ordering = (
                InventoryMovement.created_at,
                InventoryMovement.inventory_id,
                InventoryMovement.sequence,
            )

        rows = self.session.execute(
            select(InventoryMovement)
            .where(*conditions)
            .order_by(*ordering)
            .offset((filters.page - 1) * page_size)
            .limit(page_size)
        ).scalars()

        return Page(
            items=tuple(MovementView.from_model(m) for m in rows),
            page=filters.page,
            page_size=page_size,
            total=total,
        )

    def for_inventory(self, inventory_id: UUID) -> list[MovementView]:
        """Every movement of one record in ledger order."""
        rows = self.session.execute(
            select(InventoryMovement)
            .where(InventoryMovement.inventory_id == inventory_id)
            .order_by(InventoryMovement.sequence)
        ).scalars()
        return [MovementView.from_model(m) for m in rows]

    def replay(self, inventory_id: UUID) -> ReconciliationResult:
        """
        Rebuild on-hand by summing the record's movements in sequence order.

        Records start at zero and are created by their first receipt, so the
        replay also starts at zero.
        """
        record = self.session.execute(
            select(InventoryRecord).where(InventoryRecord.id == inventory_id)
        ).scalar_one_or_none()
        if record is None:
            raise InventoryNotFoundError(inventory_id=str(inventory_id))

        movements = self.for_inventory(inventory_id)
        running = 0
        breaks: list[int] = []
        for expected_sequence, movement in enumerate(movements, start=1):
            running += movement.quantity
            if movement.sequence != expected_sequence or movement.quantity_after != running:
                breaks.append(movement.sequence)
                # Resynchronise so one bad row is reported once
                running = movement.quantity_after

        result = ReconciliationResult(
            inventory_id=record.id,
            stored_on_hand=record.quantity_on_hand,
            replayed_on_hand=running,
            movement_count=len(movements),
            continuity_breaks=tuple(breaks),
        )
        if not result.is_consistent:
            logger.warning(
                "ledger_reconciliation_mismatch",
                extra={
                    "inventory_id": str(inventory_id),
                    "stored_on_hand": result.stored_on_hand,
                    "replayed_on_hand": result.replayed_on_hand,
                    "continuity_breaks": list(result.continuity_breaks),
                },
            )
        return result
