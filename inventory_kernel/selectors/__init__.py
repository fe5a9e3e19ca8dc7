"""Read-only selectors."""

from inventory_kernel.selectors.inventory_selector import InventorySelector
from inventory_kernel.selectors.movement_selector import MovementSelector

__all__ = ["InventorySelector", "MovementSelector"]
