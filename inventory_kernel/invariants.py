"""
Inventory Invariants Contract.

These invariants are structural law. They are enforced at the coordinator
boundary, in the store, and by database constraints and triggers. No
setting in ``InventorySettings`` may switch them off.

This module only names the invariants so that log records and tests can
refer to them by a stable value.
"""

from enum import Enum, unique


@unique
class InventoryInvariant(str, Enum):
    """Non-configurable guarantees provided by the inventory kernel."""

    QUANTITY_BALANCE = "quantity_balance"
    """on_hand == available + reserved for every record. Enforced by
    InventoryStore.apply_delta and a table CHECK constraint."""

    NON_NEGATIVE_QUANTITY = "non_negative_quantity"
    """No quantity column may go below zero. Enforced by
    InventoryStore.apply_delta and CHECK constraints."""

    LEDGER_CONTINUITY = "ledger_continuity"
    """quantity_after[n] == quantity_after[n-1] + quantity[n] per record.
    Enforced by MovementLedger.append under the record's row lock."""

    LEDGER_IMMUTABILITY = "ledger_immutability"
    """Movements are append-only. Enforced by ORM listeners
    (inventory_kernel.db.immutability) and database triggers."""

    ALL_OR_NOTHING = "all_or_nothing"
    """Multi-item operations persist every line or none. Enforced by the
    InventoryCoordinator's single transaction per call."""

    ROW_SERIALIZATION = "row_serialization"
    """Writers touching the same record are serialized by the row lock.
    Enforced by SELECT ... FOR UPDATE (BEGIN IMMEDIATE on SQLite)."""

    ORDERED_DELIVERY = "ordered_delivery"
    """Events for one record reach subscribers in commit order. Enforced by
    the EventChannel ticket sequencer."""


ALL_INVENTORY_INVARIANTS: frozenset[InventoryInvariant] = frozenset(InventoryInvariant)
