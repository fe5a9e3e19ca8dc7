"""
Value types shared by the domain, models and services.

Pure definitions, no I/O.  Models import these enums so that the column
values and the domain logic agree on one vocabulary.
"""

from enum import Enum


class StockStatus(str, Enum):
    """Derived classification of an inventory record."""

    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"

    @property
    def is_alerting(self) -> bool:
        return self is not StockStatus.IN_STOCK


class MovementType(str, Enum):
    """Kinds of ledger movement, with the sign their quantity must carry."""

    PURCHASE = "purchase"
    SALE = "sale"
    ADJUSTMENT = "adjustment"
    RETURN = "return"
    DAMAGE = "damage"
    EXPIRY = "expiry"
    SYNC = "sync"
    INITIAL_STOCK = "initial_stock"

    @property
    def required_sign(self) -> int:
        """+1 inbound only, -1 outbound only, 0 either direction."""
        return _REQUIRED_SIGN[self]

    @property
    def updates_cost(self) -> bool:
        """Only purchase-type movements move the weighted average cost."""
        return self in (MovementType.PURCHASE, MovementType.INITIAL_STOCK)


_REQUIRED_SIGN: dict[MovementType, int] = {
    MovementType.PURCHASE: 1,
    MovementType.RETURN: 1,
    MovementType.INITIAL_STOCK: 1,
    MovementType.SALE: -1,
    MovementType.DAMAGE: -1,
    MovementType.EXPIRY: -1,
    MovementType.ADJUSTMENT: 0,
    MovementType.SYNC: 0,
}


class ReferenceType(str, Enum):
    """What a movement's reference_number points at."""

    PURCHASE_ORDER = "purchase_order"
    SALES_ORDER = "sales_order"
    ADJUSTMENT = "adjustment"
    MANUAL = "manual"
    SYNC = "sync"
    TRANSFER = "transfer"


class AlertPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
