"""
InventoryStore -- the authoritative record per (product, warehouse).

Responsibility:
    Reads records (optionally under ``SELECT ... FOR UPDATE``), creates them
    on first receipt, blends the weighted average cost, and applies quantity
    deltas while keeping the record balanced and its stock status current.

Architecture position:
    Kernel > Services.  Called only by InventoryCoordinator, inside the
    coordinator's transaction.  Never commits.

Invariants enforced:
    QUANTITY_BALANCE -- every delta keeps on_hand == available + reserved.
    NON_NEGATIVE_QUANTITY -- a delta that would take available below zero
        raises InsufficientStockError; reserved below zero raises
        ReservationExceededError.  Nothing is written in either case.
    ROW_SERIALIZATION -- ``lock=True`` reads take the row lock and refresh
        the identity map (populate_existing) so the caller sees the latest
        committed quantities.

Failure modes:
    - InventoryNotFoundError / ProductNotFoundError / WarehouseNotFoundError.
    - IntegrityError on a concurrent first receipt is absorbed: the savepoint
      is rolled back and the winner's row is re-read under lock.
"""

from decimal import Decimal
from typing import NamedTuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.costing import DEFAULT_COST_PLACES, round_cost, weighted_average_cost
from inventory_kernel.domain.stock_status import classify
from inventory_kernel.domain.values import StockStatus
from inventory_kernel.exceptions import (
    InsufficientStockError,
    InventoryNotFoundError,
    ProductNotFoundError,
    ReservationExceededError,
    ValidationError,
    WarehouseNotFoundError,
)
from inventory_kernel.invariants import InventoryInvariant
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.catalog import Product, Warehouse
from inventory_kernel.models.inventory import InventoryRecord
from inventory_kernel.services.base import BaseService

logger = get_logger("services.inventory_store")


class Receipt(NamedTuple):
    """Outcome of ensure_on_receipt, with the state the receipt started from."""

    record: InventoryRecord
    created: bool
    previous_on_hand: int
    previous_status: StockStatus


class InventoryStore(BaseService[InventoryRecord]):
    """
    Row-level access to inventory records.

    Contract:
        Every mutating method expects the record to have been read with
        ``lock=True`` in the current transaction.

    Guarantees:
        - ``apply_delta`` either fully applies or raises before touching the
          record.
        - ``stock_status`` is recomputed after every successful apply.
    """

    def __init__(self, session: Session, clock: Clock | None = None, cost_places: int = DEFAULT_COST_PLACES):
        super().__init__(session, clock)
        self._cost_places = cost_places

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _select_one(self, stmt, lock: bool) -> InventoryRecord | None:
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()

    def find(self, product_id: UUID, warehouse_id: UUID, lock: bool = False) -> InventoryRecord | None:
        stmt = select(InventoryRecord).where(
            InventoryRecord.product_id == product_id,
            InventoryRecord.warehouse_id == warehouse_id,
        )
        return self._select_one(stmt, lock)

    def get(self, product_id: UUID, warehouse_id: UUID, lock: bool = False) -> InventoryRecord:
        record = self.find(product_id, warehouse_id, lock=lock)
        if record is None:
            raise InventoryNotFoundError(product_id=str(product_id), warehouse_id=str(warehouse_id))
        return record

    def get_by_id(self, inventory_id: UUID, lock: bool = False) -> InventoryRecord:
        stmt = select(InventoryRecord).where(InventoryRecord.id == inventory_id)
        record = self._select_one(stmt, lock)
        if record is None:
            raise InventoryNotFoundError(inventory_id=str(inventory_id))
        return record

    def require_product(self, product_id: UUID) -> Product:
        product = self.session.get(Product, product_id)
        if product is None or not product.is_active:
            raise ProductNotFoundError(str(product_id))
        return product

    def require_warehouse(self, warehouse_id: UUID) -> Warehouse:
        warehouse = self.session.get(Warehouse, warehouse_id)
        if warehouse is None or not warehouse.is_active:
            raise WarehouseNotFoundError(str(warehouse_id))
        return warehouse

    # -------------------------------------------------------------------------
    # Receipt
    # -------------------------------------------------------------------------

    def ensure_on_receipt(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        quantity: int,
        unit_cost: Decimal,
        purchase: bool = True,
    ) -> Receipt:
        """
        Create-or-update the record for an inbound receipt.

        ``purchase=False`` (stock arriving by transfer) blends the cost into
        the average but leaves last_purchase_cost untouched.

        Returns:
            A Receipt.  The record is locked for the rest of the transaction
            either way; a new record reports previous_on_hand 0 and
            previous_status out_of_stock.
        """
        record = self.find(product_id, warehouse_id, lock=True)
        if record is None:
            now = self.clock.now()
            # Savepoint so a lost creation race does not roll back earlier lines
            savepoint = self.session.begin_nested()
            try:
                record = InventoryRecord(
                    product_id=product_id,
                    warehouse_id=warehouse_id,
                    quantity_on_hand=quantity,
                    quantity_available=quantity,
                    quantity_reserved=0,
                    quantity_in_transit=0,
                    reorder_point=0,
                    reorder_quantity=0,
                    min_stock_level=0,
                    average_cost=round_cost(unit_cost, self._cost_places),
                    last_purchase_cost=round_cost(unit_cost, self._cost_places) if purchase else None,
                    stock_status=classify(quantity, quantity, 0).value,
                    record_metadata={},
                    ledger_sequence=0,
                    created_at=now,
                    updated_at=now,
                )
                self.session.add(record)
                self.session.flush()
                savepoint.commit()
                logger.info(
                    "inventory_record_created",
                    extra={
                        "inventory_id": str(record.id),
                        "product_id": str(product_id),
                        "warehouse_id": str(warehouse_id),
                        "quantity": quantity,
                    },
                )
                return Receipt(record, True, 0, StockStatus.OUT_OF_STOCK)
            except IntegrityError:
                logger.debug(
                    "inventory_record_create_race_retry",
                    extra={"product_id": str(product_id), "warehouse_id": str(warehouse_id)},
                )
                savepoint.rollback()
                record = self.get(product_id, warehouse_id, lock=True)

        previous_on_hand = record.quantity_on_hand
        previous_status = StockStatus(record.stock_status)
        self.apply_receipt_cost(record, quantity, unit_cost, purchase=purchase)
        self.apply_delta(record, quantity, quantity, 0)
        return Receipt(record, False, previous_on_hand, previous_status)

    def apply_receipt_cost(
        self, record: InventoryRecord, quantity: int, unit_cost: Decimal, purchase: bool = True
    ) -> None:
        """Blend ``quantity`` at ``unit_cost`` into the record's average cost.

        Must run before the receipt quantity is added to on_hand.
        """
        previous = record.average_cost
        record.average_cost = weighted_average_cost(
            record.quantity_on_hand,
            Decimal(record.average_cost),
            quantity,
            unit_cost,
            self._cost_places,
        )
        if purchase:
            record.last_purchase_cost = round_cost(unit_cost, self._cost_places)
        logger.debug(
            "average_cost_updated",
            extra={
                "inventory_id": str(record.id),
                "previous_average_cost": previous,
                "average_cost": record.average_cost,
                "receipt_quantity": quantity,
                "receipt_unit_cost": unit_cost,
            },
        )

    # -------------------------------------------------------------------------
    # Deltas
    # -------------------------------------------------------------------------

    def apply_delta(
        self,
        record: InventoryRecord,
        delta_on_hand: int,
        delta_available: int,
        delta_reserved: int,
    ) -> StockStatus:
        """
        Apply signed deltas to a locked record and recompute its status.

        Returns:
            The record's new StockStatus.

        Raises:
            ValidationError: deltas that would unbalance the record.
            InsufficientStockError: available (or on_hand) would go negative.
            ReservationExceededError: reserved would go negative.
        """
        if delta_on_hand != delta_available + delta_reserved:
            raise ValidationError(
                "delta",
                f"on_hand delta {delta_on_hand} != available delta {delta_available} "
                f"+ reserved delta {delta_reserved}",
            )

        new_on_hand = record.quantity_on_hand + delta_on_hand
        new_available = record.quantity_available + delta_available
        new_reserved = record.quantity_reserved + delta_reserved

        if new_available < 0 or new_on_hand < 0:
            logger.info(
                "stock_delta_rejected",
                extra={
                    "invariant": InventoryInvariant.NON_NEGATIVE_QUANTITY.value,
                    "inventory_id": str(record.id),
                    "available": record.quantity_available,
                    "delta_available": delta_available,
                },
            )
            raise InsufficientStockError(
                inventory_id=str(record.id),
                available=record.quantity_available,
                requested=-delta_available,
                product_id=str(record.product_id),
                warehouse_id=str(record.warehouse_id),
            )
        if new_reserved < 0:
            raise ReservationExceededError(
                inventory_id=str(record.id),
                reserved=record.quantity_reserved,
                requested=-delta_reserved,
            )

        record.quantity_on_hand = new_on_hand
        record.quantity_available = new_available
        record.quantity_reserved = new_reserved
        status = classify(new_on_hand, new_available, record.reorder_point)
        record.stock_status = status.value
        record.updated_at = self.clock.now()
        self.session.flush()
        return status

    def reserve(self, record: InventoryRecord, quantity: int) -> StockStatus:
        """Move ``quantity`` from available to reserved."""
        return self.apply_delta(record, 0, -quantity, quantity)

    def release(self, record: InventoryRecord, quantity: int) -> StockStatus:
        """Move ``quantity`` from reserved back to available."""
        return self.apply_delta(record, 0, quantity, -quantity)
