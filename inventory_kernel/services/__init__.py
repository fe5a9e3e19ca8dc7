"""Write-side services.  All run inside a transaction owned by the coordinator."""

from inventory_kernel.services.coordinator import InventoryCoordinator
from inventory_kernel.services.customer_history import CustomerHistoryService
from inventory_kernel.services.inventory_store import InventoryStore
from inventory_kernel.services.movement_ledger import MovementLedger

__all__ = [
    "CustomerHistoryService",
    "InventoryCoordinator",
    "InventoryStore",
    "MovementLedger",
]
