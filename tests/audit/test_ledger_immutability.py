"""
Ledger immutability and reconciliation.

Movements are protected twice: ORM listeners reject updates and deletes at
flush time, and database triggers reject them for raw SQL that bypasses the
ORM.  Replaying the ledger must reproduce the stored on-hand quantity.
"""

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError

from inventory_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from inventory_kernel.db.triggers import ALL_TRIGGER_NAMES, get_installed_triggers, triggers_installed
from inventory_kernel.domain.dtos import SaleLine
from inventory_kernel.exceptions import ImmutabilityViolationError
from inventory_kernel.models.movement import InventoryMovement


@pytest.fixture
def movement_id(coordinator, stock):
    record = stock(quantity=10)
    coordinator.adjust_stock(record.id, 8, reason="count")
    return coordinator.get_movements().items[0].id


class TestOrmListeners:

    def test_update_blocked(self, session, movement_id):
        movement = session.get(InventoryMovement, movement_id)
        movement.quantity = 999

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_id == str(movement_id)

    def test_delete_blocked(self, session, movement_id):
        movement = session.get(InventoryMovement, movement_id)
        session.delete(movement)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_violation_logged(self, session, movement_id, captured_logs):
        session.get(InventoryMovement, movement_id).notes = "rewritten"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["invariant"] == "ledger_immutability"
        assert blocked[0]["operation"] == "UPDATE"


class TestDatabaseTriggers:

    def test_triggers_installed(self, engine):
        assert triggers_installed(engine)
        assert sorted(get_installed_triggers(engine)) == sorted(ALL_TRIGGER_NAMES)

    def test_raw_update_blocked(self, engine, movement_id):
        with engine.connect() as conn:
            with pytest.raises(DBAPIError, match="append-only"):
                conn.execute(
                    text("UPDATE inventory_movements SET quantity = 1 WHERE id = :id"),
                    {"id": str(movement_id)},
                )
            conn.rollback()

    def test_raw_delete_blocked(self, engine, movement_id):
        with engine.connect() as conn:
            with pytest.raises(DBAPIError, match="append-only"):
                conn.execute(text("DELETE FROM inventory_movements"))
            conn.rollback()

    def test_trigger_catches_orm_without_listeners(self, session, movement_id):
        unregister_immutability_listeners()
        try:
            session.get(InventoryMovement, movement_id).quantity = 5
            with pytest.raises(DBAPIError, match="append-only"):
                session.flush()
        finally:
            register_immutability_listeners()


class TestReconciliation:

    def test_replay_matches_after_mixed_activity(self, coordinator, stock, customer_id):
        record = stock(quantity=50, unit_cost="2.00")
        coordinator.record_sale(
            customer_id, [SaleLine(record.product_id, record.warehouse_id, 12, 5)], reference_number="SO-1"
        )
        coordinator.adjust_stock(record.id, 30, reason="count")
        coordinator.record_movement(record.id, "return", 4)
        coordinator.reserve_stock(record.product_id, record.warehouse_id, 3)

        result = coordinator.verify_ledger(record.id)

        assert result.is_consistent
        assert result.stored_on_hand == result.replayed_on_hand == 34
        assert result.movement_count == 4
        assert result.continuity_breaks == ()

    def test_out_of_band_record_change_detected(self, coordinator, stock, engine, captured_logs):
        record = stock(quantity=10)
        with engine.begin() as conn:
            conn.execute(
                text(
                    "UPDATE inventory_records SET quantity_on_hand = 15, quantity_available = 15 "
                    "WHERE id = :id"
                ),
                {"id": str(record.id)},
            )

        result = coordinator.verify_ledger(record.id)

        assert not result.is_consistent
        assert (result.stored_on_hand, result.replayed_on_hand) == (15, 10)
        assert any(r["message"] == "ledger_reconciliation_mismatch" for r in captured_logs())

    def test_movements_carry_running_total(self, coordinator, stock, session):
        record = stock(quantity=7)
        coordinator.adjust_stock(record.id, 3, reason="count")

        rows = session.execute(
            select(InventoryMovement)
            .where(InventoryMovement.inventory_id == record.id)
            .order_by(InventoryMovement.sequence)
        ).scalars().all()

        assert [(m.quantity, m.quantity_after, m.running_total) for m in rows] == [(7, 7, 7), (-4, 3, 3)]
