"""ORM models.  Importing this package registers every table on Base.metadata."""

from inventory_kernel.models.catalog import Customer, Product, Warehouse
from inventory_kernel.models.inventory import InventoryRecord
from inventory_kernel.models.movement import InventoryMovement

__all__ = [
    "Customer",
    "InventoryMovement",
    "InventoryRecord",
    "Product",
    "Warehouse",
]
