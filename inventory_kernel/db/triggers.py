"""
Module: inventory_kernel.db.triggers
Responsibility: Installing, removing and checking the database triggers that
    make inventory_movements append-only.  This is the database-level
    complement to the ORM listeners in db/immutability.py.
Architecture position: Kernel > DB.  May import from db/ only.  MUST NOT
    import from models/, services/, selectors/, domain/ or realtime/.

Invariants enforced:
    LEDGER_IMMUTABILITY -- no UPDATE and no DELETE on inventory_movements,
        whether issued through the ORM, bulk statements or a raw SQL shell.

Failure modes:
    - PostgreSQL RAISE EXCEPTION / SQLite RAISE(ABORT) on violation, surfaced
      by SQLAlchemy as a DBAPIError subclass whose message contains
      "append-only".
    - OperationalError on deadlock during installation (caller retries).
"""

from sqlalchemy import text
from sqlalchemy.engine import Engine

LEDGER_TABLE = "inventory_movements"

ALL_TRIGGER_NAMES = (
    "trg_inventory_movements_no_update",
    "trg_inventory_movements_no_delete",
)

_PG_INSTALL = (
    """
    CREATE OR REPLACE FUNCTION inventory_movements_append_only()
    RETURNS trigger AS $$
    BEGIN
        RAISE EXCEPTION 'inventory_movements is append-only: % blocked on movement %',
            TG_OP, OLD.id;
    END;
    $$ LANGUAGE plpgsql
    """,
    "DROP TRIGGER IF EXISTS trg_inventory_movements_no_update ON inventory_movements",
    """
    CREATE TRIGGER trg_inventory_movements_no_update
    BEFORE UPDATE ON inventory_movements
    FOR EACH ROW EXECUTE FUNCTION inventory_movements_append_only()
    """,
    "DROP TRIGGER IF EXISTS trg_inventory_movements_no_delete ON inventory_movements",
    """
    CREATE TRIGGER trg_inventory_movements_no_delete
    BEFORE DELETE ON inventory_movements
    FOR EACH ROW EXECUTE FUNCTION inventory_movements_append_only()
    """,
)

_PG_DROP = (
    "DROP TRIGGER IF EXISTS trg_inventory_movements_no_update ON inventory_movements",
    "DROP TRIGGER IF EXISTS trg_inventory_movements_no_delete ON inventory_movements",
    "DROP FUNCTION IF EXISTS inventory_movements_append_only()",
)

_SQLITE_INSTALL = (
    """
    CREATE TRIGGER IF NOT EXISTS trg_inventory_movements_no_update
    BEFORE UPDATE ON inventory_movements
    BEGIN
        SELECT RAISE(ABORT, 'inventory_movements is append-only: UPDATE blocked');
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS trg_inventory_movements_no_delete
    BEFORE DELETE ON inventory_movements
    BEGIN
        SELECT RAISE(ABORT, 'inventory_movements is append-only: DELETE blocked');
    END
    """,
)

_SQLITE_DROP = (
    "DROP TRIGGER IF EXISTS trg_inventory_movements_no_update",
    "DROP TRIGGER IF EXISTS trg_inventory_movements_no_delete",
)


def _statements(engine: Engine, install: bool) -> tuple[str, ...]:
    if engine.dialect.name == "postgresql":
        return _PG_INSTALL if install else _PG_DROP
    if engine.dialect.name == "sqlite":
        return _SQLITE_INSTALL if install else _SQLITE_DROP
    raise NotImplementedError(f"No ledger triggers for dialect {engine.dialect.name}")


def _run(engine: Engine, statements: tuple[str, ...]) -> None:
    # One statement per execute: sqlite3 rejects multi-statement strings
    with engine.connect() as conn:
        for sql in statements:
            conn.execute(text(sql))
        conn.commit()


def install_ledger_triggers(engine: Engine) -> None:
    """
    Install the append-only triggers on inventory_movements.

    Preconditions: Tables must exist (call after create_all).
    Postconditions: Every trigger in ALL_TRIGGER_NAMES exists.  Idempotent.
    """
    _run(engine, _statements(engine, install=True))


def uninstall_ledger_triggers(engine: Engine) -> None:
    """
    Remove the append-only triggers.

    WARNING: Only for test teardown and schema migrations.  Re-install
    immediately afterwards.
    """
    _run(engine, _statements(engine, install=False))


def get_installed_triggers(engine: Engine) -> list[str]:
    """Names of the ledger triggers currently present in the database."""
    names = ", ".join(f"'{name}'" for name in ALL_TRIGGER_NAMES)
    if engine.dialect.name == "postgresql":
        sql = f"SELECT tgname FROM pg_trigger WHERE tgname IN ({names}) ORDER BY tgname"
    else:
        sql = (
            "SELECT name FROM sqlite_master WHERE type = 'trigger' "
            f"AND name IN ({names}) ORDER BY name"
        )
    with engine.connect() as conn:
        return [row[0] for row in conn.execute(text(sql))]


def triggers_installed(engine: Engine) -> bool:
    """True iff every ledger trigger is installed."""
    return len(get_installed_triggers(engine)) == len(ALL_TRIGGER_NAMES)
