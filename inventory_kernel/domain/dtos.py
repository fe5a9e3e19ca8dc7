"""
Data transfer objects crossing the coordinator boundary.

Inputs (PurchaseLine, SaleLine, TransferLine, filters) are what
collaborators hand in; outputs (InventoryView, MovementView, results,
analytics) are frozen snapshots so that nothing outside a session ever
holds a live ORM object.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Generic, TypeVar
from uuid import UUID

from inventory_kernel.domain.values import MovementType, StockStatus
from inventory_kernel.exceptions import ValidationError

T = TypeVar("T")


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _member(enum_type: type, value: Any, field_name: str) -> Any:
    if value is None:
        return None
    try:
        return enum_type(value)
    except ValueError:
        raise ValidationError(field_name, f"unknown value {value!r}") from None


# =============================================================================
# Inputs
# =============================================================================


@dataclass(frozen=True)
class PurchaseLine:
    product_id: UUID
    warehouse_id: UUID
    quantity: int
    unit_cost: Decimal

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PurchaseLine:
        return cls(
            product_id=data["product_id"],
            warehouse_id=data["warehouse_id"],
            quantity=data["quantity"],
            unit_cost=data["unit_cost"],
        )


@dataclass(frozen=True)
class SaleLine:
    product_id: UUID
    warehouse_id: UUID
    quantity: int
    unit_price: Decimal

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SaleLine:
        return cls(
            product_id=data["product_id"],
            warehouse_id=data["warehouse_id"],
            quantity=data["quantity"],
            unit_price=data["unit_price"],
        )


@dataclass(frozen=True)
class TransferLine:
    product_id: UUID
    quantity: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransferLine:
        return cls(product_id=data["product_id"], quantity=data["quantity"])


@dataclass(frozen=True)
class MovementFilter:
    inventory_id: UUID | None = None
    product_id: UUID | None = None
    warehouse_id: UUID | None = None
    movement_type: MovementType | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    page: int = 1
    page_size: int | None = None
    newest_first: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "movement_type", _member(MovementType, self.movement_type, "movement_type"))


@dataclass(frozen=True)
class InventoryFilter:
    warehouse_id: UUID | None = None
    product_id: UUID | None = None
    stock_status: StockStatus | None = None
    category: str | None = None
    below_reorder_point: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "stock_status", _member(StockStatus, self.stock_status, "stock_status"))


# =============================================================================
# Outputs
# =============================================================================


@dataclass(frozen=True)
class InventoryView:
    id: UUID
    product_id: UUID
    warehouse_id: UUID
    location_id: str | None
    quantity_on_hand: int
    quantity_available: int
    quantity_reserved: int
    quantity_in_transit: int
    reorder_point: int
    reorder_quantity: int
    min_stock_level: int
    max_stock_level: int | None
    average_cost: Decimal
    last_purchase_cost: Decimal | None
    stock_status: StockStatus
    last_movement_at: datetime | None
    metadata: dict[str, Any]
    ledger_sequence: int

    @classmethod
    def from_model(cls, record: Any) -> InventoryView:
        return cls(
            id=record.id,
            product_id=record.product_id,
            warehouse_id=record.warehouse_id,
            location_id=record.location_id,
            quantity_on_hand=record.quantity_on_hand,
            quantity_available=record.quantity_available,
            quantity_reserved=record.quantity_reserved,
            quantity_in_transit=record.quantity_in_transit,
            reorder_point=record.reorder_point,
            reorder_quantity=record.reorder_quantity,
            min_stock_level=record.min_stock_level,
            max_stock_level=record.max_stock_level,
            average_cost=Decimal(record.average_cost),
            last_purchase_cost=(
                Decimal(record.last_purchase_cost)
                if record.last_purchase_cost is not None
                else None
            ),
            stock_status=StockStatus(record.stock_status),
            last_movement_at=_aware(record.last_movement_at),
            metadata=dict(record.record_metadata or {}),
            ledger_sequence=record.ledger_sequence,
        )


@dataclass(frozen=True)
class MovementView:
    id: UUID
    inventory_id: UUID
    product_id: UUID
    warehouse_id: UUID
    sequence: int
    movement_type: MovementType
    quantity: int
    unit_cost: Decimal | None
    total_cost: Decimal | None
    reference_type: str | None
    reference_id: str | None
    reference_number: str | None
    performed_by: str | None
    notes: str | None
    quantity_after: int
    running_total: int
    created_at: datetime

    @classmethod
    def from_model(cls, movement: Any) -> MovementView:
        return cls(
            id=movement.id,
            inventory_id=movement.inventory_id,
            product_id=movement.product_id,
            warehouse_id=movement.warehouse_id,
            sequence=movement.sequence,
            movement_type=MovementType(movement.movement_type),
            quantity=movement.quantity,
            unit_cost=Decimal(movement.unit_cost) if movement.unit_cost is not None else None,
            total_cost=Decimal(movement.total_cost) if movement.total_cost is not None else None,
            reference_type=movement.reference_type,
            reference_id=movement.reference_id,
            reference_number=movement.reference_number,
            performed_by=movement.performed_by,
            notes=movement.notes,
            quantity_after=movement.quantity_after,
            running_total=movement.running_total,
            created_at=_aware(movement.created_at),
        )


@dataclass(frozen=True)
class Page(Generic[T]):
    items: tuple[T, ...]
    page: int
    page_size: int
    total: int

    @property
    def pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size if self.total else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.pages


@dataclass(frozen=True)
class OperationResult:
    """What a coordinator write returns: touched records and new movements."""

    records: tuple[InventoryView, ...]
    movements: tuple[MovementView, ...] = ()
    total_amount: Decimal | None = None

    @property
    def record(self) -> InventoryView:
        return self.records[0]


@dataclass(frozen=True)
class InventorySummary:
    total_items: int
    total_value: Decimal
    total_on_hand: int
    total_reserved: int
    total_available: int
    items_below_reorder: int
    items_out_of_stock: int


@dataclass(frozen=True)
class CategoryBreakdown:
    category: str
    item_count: int
    total_quantity: int
    total_value: Decimal


@dataclass(frozen=True)
class InventoryAnalytics:
    summary: InventorySummary
    category_breakdown: tuple[CategoryBreakdown, ...]
    stock_status_breakdown: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ReorderSuggestion:
    inventory_id: UUID
    product_id: UUID
    warehouse_id: UUID
    product_sku: str | None
    product_name: str | None
    quantity_available: int
    reorder_point: int
    reorder_quantity: int
    shortfall: int
    suggested_order_quantity: int


@dataclass(frozen=True)
class ReconciliationResult:
    """Outcome of replaying a record's ledger against its stored quantity."""

    inventory_id: UUID
    stored_on_hand: int
    replayed_on_hand: int
    movement_count: int
    continuity_breaks: tuple[int, ...] = ()

    @property
    def is_consistent(self) -> bool:
        return self.stored_on_hand == self.replayed_on_hand and not self.continuity_breaks
