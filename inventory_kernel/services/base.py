"""
BaseService -- abstract base for the kernel's write services.

Responsibility:
    Common constructor and session-handling contract.  Concrete services
    receive a SQLAlchemy ``Session`` and persist with ``session.flush()`` --
    never ``session.commit()``.

Architecture position:
    Kernel > Services.  InventoryStore, MovementLedger and
    CustomerHistoryService extend this class; InventoryCoordinator owns the
    transaction they run in.

Invariants enforced:
    ALL_OR_NOTHING -- services flush within the caller's transaction and never
        commit or roll back themselves, so a multi-item operation either
        commits every line or none.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from inventory_kernel.db.base import Base
from inventory_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Contract:
        Accepts a ``Session`` (and optionally a ``Clock``) from the caller and
        uses ``session.flush()`` to persist within the active transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide listing/reporting queries -- those belong in
          ``inventory_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
