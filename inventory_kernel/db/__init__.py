"""Database layer - engine, base classes, ledger protection."""

from inventory_kernel.db.base import UUID, Base, UUIDString
from inventory_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
)

__all__ = [
    "Base",
    "UUID",
    "UUIDString",
    "create_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
]
