"""
MovementLedger -- append-only log of accepted stock changes.

Responsibility:
    Appends one movement per accepted delta, stamping it with the record's
    post-change on-hand quantity and the next per-record sequence number.
    Query and replay are delegated to MovementSelector.

Architecture position:
    Kernel > Services.  Called by InventoryCoordinator after
    InventoryStore.apply_delta, inside the same transaction and while the
    record's row lock is held.

Invariants enforced:
    LEDGER_CONTINUITY -- quantity_after is read from the locked record after
        the delta was applied, and sequence is the record's ledger_sequence
        incremented under the same lock, so per-record ledger order equals
        commit order.
    LEDGER_IMMUTABILITY -- this service only ever INSERTs.

Failure modes:
    - ValidationError: zero quantity, or a sign the movement type forbids.
"""

from decimal import Decimal

from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.costing import DEFAULT_COST_PLACES, extended_cost, round_cost
from inventory_kernel.domain.dtos import MovementFilter, MovementView, Page, ReconciliationResult
from inventory_kernel.domain.values import MovementType
from inventory_kernel.exceptions import ValidationError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.inventory import InventoryRecord
from inventory_kernel.models.movement import InventoryMovement
from inventory_kernel.selectors.movement_selector import MovementSelector
from inventory_kernel.services.base import BaseService

logger = get_logger("services.movement_ledger")


def check_movement_sign(movement_type: MovementType, quantity: int) -> None:
    """Raise ValidationError unless ``quantity`` suits ``movement_type``."""
    if quantity == 0:
        raise ValidationError("quantity", "movement quantity must be non-zero")
    sign = movement_type.required_sign
    if sign > 0 and quantity < 0:
        raise ValidationError("quantity", f"{movement_type.value} movements must be positive")
    if sign < 0 and quantity > 0:
        raise ValidationError("quantity", f"{movement_type.value} movements must be negative")


class MovementLedger(BaseService[InventoryMovement]):
    """
    Writer for the movement ledger.

    Contract:
        ``append`` is called after the record's quantities have been updated
        for this movement.

    Guarantees:
        - quantity_after == running_total == record.quantity_on_hand.
        - record.ledger_sequence and record.last_movement_at advance with
          every append.
    """

    def __init__(self, session: Session, clock: Clock | None = None, cost_places: int = DEFAULT_COST_PLACES):
        super().__init__(session, clock)
        self._cost_places = cost_places

    def append(
        self,
        record: InventoryRecord,
        movement_type: MovementType,
        quantity: int,
        *,
        unit_cost: Decimal | None = None,
        reference_type: str | None = None,
        reference_id: str | None = None,
        reference_number: str | None = None,
        performed_by: str | None = None,
        notes: str | None = None,
    ) -> InventoryMovement:
        check_movement_sign(movement_type, quantity)

        now = self.clock.now()
        record.ledger_sequence = record.ledger_sequence + 1
        record.last_movement_at = now

        rounded_cost = round_cost(unit_cost, self._cost_places) if unit_cost is not None else None
        movement = InventoryMovement(
            inventory_id=record.id,
            product_id=record.product_id,
            warehouse_id=record.warehouse_id,
            sequence=record.ledger_sequence,
            movement_type=movement_type.value,
            quantity=quantity,
            unit_cost=rounded_cost,
            total_cost=extended_cost(quantity, rounded_cost, self._cost_places),
            reference_type=reference_type,
            reference_id=str(reference_id) if reference_id is not None else None,
            reference_number=reference_number,
            performed_by=str(performed_by) if performed_by is not None else None,
            notes=notes,
            quantity_after=record.quantity_on_hand,
            running_total=record.quantity_on_hand,
            created_at=now,
        )
        self.session.add(movement)
        self.session.flush()

        logger.debug(
            "movement_appended",
            extra={
                "movement_id": str(movement.id),
                "inventory_id": str(record.id),
                "movement_type": movement_type.value,
                "quantity": quantity,
                "quantity_after": movement.quantity_after,
                "sequence": movement.sequence,
            },
        )
        return movement

    def query(self, filters: MovementFilter, default_page_size: int = 50, max_page_size: int = 500) -> Page[MovementView]:
        """Paginated ledger query.  See MovementSelector.query."""
        return MovementSelector(self.session).query(
            filters, default_page_size=default_page_size, max_page_size=max_page_size
        )

    def replay(self, inventory_id) -> ReconciliationResult:
        """Rebuild on-hand from the ledger.  See MovementSelector.replay."""
        return MovementSelector(self.session).replay(inventory_id)
