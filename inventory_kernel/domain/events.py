"""
Typed events carried from the coordinator to the real-time broadcaster.

Events are ephemeral: built inside the owning transaction, released on the
EventChannel after commit, never persisted.  ``to_payload`` produces the
wire contract::

    {"event": <type>, "type": <type>, "timestamp": <iso8601>,
     "priority": <alerts only>, "data": {...camelCase fields...}}

Builders take duck-typed records/movements (anything with the ORM
attribute names) so this module stays free of ORM imports.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from inventory_kernel.domain.stock_status import StockAlert
from inventory_kernel.domain.values import AlertPriority


class EventType(str, Enum):
    INVENTORY_CHANGE = "inventory_change"
    INVENTORY_MOVEMENT = "inventory_movement"
    STOCK_ALERT = "stock_alert"


ALL_EVENT_TYPES: frozenset[EventType] = frozenset(EventType)


@dataclass(frozen=True)
class InventoryEvent:
    type: EventType
    inventory_id: UUID
    timestamp: datetime
    data: dict[str, Any] = field(default_factory=dict)
    priority: AlertPriority | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "event": self.type.value,
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.priority is not None:
            payload["priority"] = self.priority.value
        payload["data"] = dict(self.data)
        return payload


def _s(value: Any) -> Any:
    """Render ids and decimals as strings for the wire."""
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def inventory_change_event(
    record: Any,
    *,
    old_quantity: int,
    reason: str,
    timestamp: datetime,
) -> InventoryEvent:
    return InventoryEvent(
        type=EventType.INVENTORY_CHANGE,
        inventory_id=record.id,
        timestamp=timestamp,
        data={
            "inventoryId": _s(record.id),
            "productId": _s(record.product_id),
            "warehouseId": _s(record.warehouse_id),
            "oldQuantity": old_quantity,
            "newQuantity": record.quantity_on_hand,
            "quantityAvailable": record.quantity_available,
            "quantityReserved": record.quantity_reserved,
            "stockStatus": _s(record.stock_status),
            "averageCost": _s(record.average_cost),
            "changeReason": reason,
        },
    )


def inventory_movement_event(movement: Any, *, timestamp: datetime) -> InventoryEvent:
    return InventoryEvent(
        type=EventType.INVENTORY_MOVEMENT,
        inventory_id=movement.inventory_id,
        timestamp=timestamp,
        data={
            "movementId": _s(movement.id),
            "inventoryId": _s(movement.inventory_id),
            "productId": _s(movement.product_id),
            "warehouseId": _s(movement.warehouse_id),
            "movementType": _s(movement.movement_type),
            "quantity": movement.quantity,
            "quantityAfter": movement.quantity_after,
            "unitCost": _s(movement.unit_cost),
            "totalCost": _s(movement.total_cost),
            "referenceType": movement.reference_type,
            "referenceNumber": movement.reference_number,
            "performedBy": movement.performed_by,
            "sequence": movement.sequence,
        },
    )


def stock_alert_event(
    record: Any,
    alert: StockAlert,
    *,
    timestamp: datetime,
    product_sku: str | None = None,
    product_name: str | None = None,
) -> InventoryEvent:
    return InventoryEvent(
        type=EventType.STOCK_ALERT,
        inventory_id=record.id,
        timestamp=timestamp,
        priority=alert.priority,
        data={
            "inventoryId": _s(record.id),
            "productId": _s(record.product_id),
            "productSku": product_sku,
            "productName": product_name,
            "warehouseId": _s(record.warehouse_id),
            "currentQuantity": alert.current_quantity,
            "quantityAvailable": alert.available_quantity,
            "reorderPoint": alert.reorder_point,
            "alertType": alert.alert_type.value,
            "previousStatus": alert.previous_status.value,
            "message": alert.message,
        },
    )
