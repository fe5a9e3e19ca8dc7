"""
Module: inventory_kernel.models.movement
Responsibility: ORM persistence for ledger movements -- one immutable,
    signed stock-change entry per accepted delta.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/values.py.  MUST NOT import from services/, selectors/ or realtime/.

Invariants enforced:
    LEDGER_IMMUTABILITY -- rows are never updated or deleted (ORM listeners in
        db/immutability.py, database triggers in db/triggers.py).
    LEDGER_CONTINUITY -- (inventory_id, sequence) is unique, so two writers
        can never both append "the next" movement for a record.
    - quantity <> 0 and quantity_after >= 0 (CHECK constraints).

Failure modes:
    - ImmutabilityViolationError on any ORM update/delete attempt.
    - IntegrityError on a duplicate (inventory_id, sequence).

Audit relevance:
    Replaying movements in sequence order reproduces the record's on-hand
    quantity; running_total is kept equal to quantity_after.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString


class InventoryMovement(Base):
    """
    One append-only ledger entry.

    Contract:
        Written only by MovementLedger.append, inside the transaction that
        holds the owning record's row lock, after the record's quantities
        have been updated.

    Guarantees:
        - quantity_after is the record's on-hand immediately after this
          movement; running_total duplicates it.
        - sequence is dense per inventory_id, starting at 1.
    """

    __tablename__ = "inventory_movements"

    __table_args__ = (
        UniqueConstraint("inventory_id", "sequence", name="uq_movement_inventory_sequence"),
        CheckConstraint("quantity <> 0", name="ck_movement_nonzero_quantity"),
        CheckConstraint("quantity_after >= 0", name="ck_movement_quantity_after_nonneg"),
        Index("idx_movement_created", "created_at"),
        Index("idx_movement_product", "product_id"),
        Index("idx_movement_warehouse", "warehouse_id"),
        Index("idx_movement_type", "movement_type"),
    )

    inventory_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("inventory_records.id"), nullable=False
    )
    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    warehouse_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)

    # Signed delta applied to quantity_on_hand
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    total_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    reference_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    performed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False)
    running_total: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<InventoryMovement {self.id} inventory={self.inventory_id} "
            f"#{self.sequence} {self.movement_type} {self.quantity:+d} "
            f"-> {self.quantity_after}>"
        )
