"""
Module: inventory_kernel.models.inventory
Responsibility: ORM persistence for the authoritative stock record of one
    product at one warehouse.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/values.py.  MUST NOT import from services/, selectors/ or realtime/.

Invariants enforced:
    QUANTITY_BALANCE -- CHECK quantity_on_hand = quantity_available + quantity_reserved.
    NON_NEGATIVE_QUANTITY -- CHECK constraints on every quantity column.
    - (product_id, warehouse_id) is unique: one record per pair.
    - version is a SQLAlchemy version_id_col; an UPDATE that matches no row
      at the expected version raises StaleDataError.

Failure modes:
    - IntegrityError on a duplicate (product_id, warehouse_id) insert; the
      store resolves this race by re-reading under lock.
    - IntegrityError on a CHECK violation (the store validates first, so this
      only fires if the store is bypassed).

Audit relevance:
    The stored quantities must always equal a replay of the record's ledger
    movements (see MovementSelector.replay).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString
from inventory_kernel.domain.values import StockStatus


class InventoryRecord(Base):
    """
    Stock state for one (product, warehouse) pair.

    Contract:
        Created lazily by the first purchase receipt for the pair and never
        deleted.  Every quantity change goes through InventoryStore while the
        row is locked, and is paired with exactly one ledger movement (except
        reservations, which leave on_hand unchanged).

    Guarantees:
        - on_hand == available + reserved, all >= 0 (CHECK constraints).
        - ledger_sequence equals the number of movements appended so far.
    """

    __tablename__ = "inventory_records"

    __table_args__ = (
        UniqueConstraint("product_id", "warehouse_id", name="uq_inventory_product_warehouse"),
        CheckConstraint(
            "quantity_on_hand = quantity_available + quantity_reserved",
            name="ck_inventory_quantity_balance",
        ),
        CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_on_hand_nonneg"),
        CheckConstraint("quantity_available >= 0", name="ck_inventory_available_nonneg"),
        CheckConstraint("quantity_reserved >= 0", name="ck_inventory_reserved_nonneg"),
        CheckConstraint("quantity_in_transit >= 0", name="ck_inventory_in_transit_nonneg"),
        Index("idx_inventory_warehouse", "warehouse_id"),
        Index("idx_inventory_stock_status", "stock_status"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False
    )
    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )
    location_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    quantity_on_hand: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_available: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_in_transit: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    reorder_point: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reorder_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_stock_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_stock_level: Mapped[int | None] = mapped_column(Integer, nullable=True)

    average_cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    last_purchase_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    stock_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StockStatus.OUT_OF_STOCK.value
    )
    last_movement_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # "metadata" is reserved on declarative classes
    record_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )

    ledger_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord {self.id} product={self.product_id} "
            f"warehouse={self.warehouse_id} on_hand={self.quantity_on_hand} "
            f"available={self.quantity_available} reserved={self.quantity_reserved}>"
        )
