"""
ORM-level append-only enforcement for the movement ledger (layer 1 of 2).

Layer 1: THIS FILE (ORM event listeners)
    Catches modifications made through SQLAlchemy before any SQL is sent.

Layer 2: db/triggers.py (database triggers)
    Catches raw SQL, bulk UPDATE/DELETE statements and direct shell access.

Both layers enforce the same rule: a movement, once flushed, is never
updated and never deleted.  Corrections are new movements (an adjustment),
which keeps the replay of a record's ledger equal to its on-hand quantity.

    session.flush()
         |
         v
    [before_update] --> _block_movement_update() --> ImmutabilityViolationError
    [before_delete] --> _block_movement_delete() --> ImmutabilityViolationError
"""

from sqlalchemy import event

from inventory_kernel.exceptions import ImmutabilityViolationError
from inventory_kernel.invariants import InventoryInvariant
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(target, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "invariant": InventoryInvariant.LEDGER_IMMUTABILITY.value,
            "entity_type": "InventoryMovement",
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type="InventoryMovement",
        entity_id=str(target.id),
        reason=reason,
    )


def _block_movement_update(mapper, connection, target):
    _blocked(target, "UPDATE", "Ledger movements are append-only and cannot be modified")


def _block_movement_delete(mapper, connection, target):
    _blocked(target, "DELETE", "Ledger movements cannot be deleted")


def register_immutability_listeners() -> None:
    """
    Register the ledger listeners.  Idempotent.

    Call once during application start, after models are imported and
    before any database work.
    """
    from inventory_kernel.models.movement import InventoryMovement

    if not event.contains(InventoryMovement, "before_update", _block_movement_update):
        event.listen(InventoryMovement, "before_update", _block_movement_update)
    if not event.contains(InventoryMovement, "before_delete", _block_movement_delete):
        event.listen(InventoryMovement, "before_delete", _block_movement_delete)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove the ledger listeners.

    WARNING: Only use this in tests that must reach the database trigger
    layer through the ORM.
    """
    from inventory_kernel.models.movement import InventoryMovement

    _safe_remove_listener(InventoryMovement, "before_update", _block_movement_update)
    _safe_remove_listener(InventoryMovement, "before_delete", _block_movement_delete)
