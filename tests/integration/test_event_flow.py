"""
Coordinator -> EventChannel -> RealTimeBroadcaster -> transport.

Events leave the process only after the owning transaction commits, in the
order the ledger records them, and only to connections subscribed to their
type.
"""

from decimal import Decimal

import pytest

from inventory_kernel.domain.dtos import SaleLine
from inventory_kernel.exceptions import InsufficientStockError
from inventory_kernel.services.customer_history import CustomerHistoryService


@pytest.fixture
def dashboard(broadcaster, transport_factory):
    """A client subscribed to everything."""
    transport = transport_factory()
    broadcaster.register("dashboard", transport, ["inventory_change", "inventory_movement", "stock_alert"])
    return transport


@pytest.fixture
def pager(broadcaster, transport_factory):
    """A client that only wants alerts."""
    transport = transport_factory()
    broadcaster.register("pager", transport, ["stock_alert"])
    return transport


def _sell(coordinator, customer_id, record, quantity, ref):
    return coordinator.record_sale(
        customer_id,
        [SaleLine(record.product_id, record.warehouse_id, quantity, Decimal("10.00"))],
        reference_number=ref,
    )


class TestEventFlow:

    def test_purchase_reaches_dashboard_in_order(self, stock, dashboard, pager):
        record = stock(quantity=12, unit_cost="3.00")

        assert dashboard.types() == ["inventory_movement", "inventory_change"]
        movement, change = dashboard.payloads
        assert movement["data"]["movementType"] == "purchase"
        assert movement["data"]["quantityAfter"] == 12
        assert change["data"]["inventoryId"] == str(record.id)
        assert change["data"]["oldQuantity"] == 0
        assert change["data"]["newQuantity"] == 12
        assert change["data"]["changeReason"] == "purchase_received"
        assert pager.messages == []

    def test_alert_once_per_transition(self, coordinator, stock, customer_id, dashboard, pager):
        record = stock(quantity=10, reorder_point=4)
        pager.messages.clear()

        _sell(coordinator, customer_id, record, 5, "SO-1")  # 5 left, still in stock
        _sell(coordinator, customer_id, record, 3, "SO-2")  # 2 left, low
        _sell(coordinator, customer_id, record, 1, "SO-3")  # 1 left, still low
        _sell(coordinator, customer_id, record, 1, "SO-4")  # 0 left, out

        alerts = pager.payloads
        assert [a["data"]["alertType"] for a in alerts] == ["low_stock", "out_of_stock"]
        assert [a["priority"] for a in alerts] == ["medium", "critical"]
        assert alerts[0]["data"]["previousStatus"] == "in_stock"
        assert alerts[0]["data"]["productSku"] is not None
        assert alerts[1]["data"]["currentQuantity"] == 0

    def test_alert_follows_change_on_dashboard(self, coordinator, stock, customer_id, dashboard):
        record = stock(quantity=5, reorder_point=2)
        dashboard.messages.clear()

        _sell(coordinator, customer_id, record, 4, "SO-1")

        assert dashboard.types() == ["inventory_movement", "inventory_change", "stock_alert"]

    def test_rejected_sale_publishes_nothing(self, coordinator, stock, customer_id, dashboard, pager):
        record = stock(quantity=2, reorder_point=1)
        dashboard.messages.clear()

        with pytest.raises(InsufficientStockError):
            _sell(coordinator, customer_id, record, 3, "SO-1")

        assert dashboard.messages == []
        assert pager.messages == []

    def test_restock_recovers_without_alert(self, coordinator, stock, customer_id, pager):
        record = stock(quantity=3, reorder_point=2)
        _sell(coordinator, customer_id, record, 3, "SO-1")
        pager.messages.clear()

        stock(quantity=10, product_id=record.product_id)

        assert pager.messages == []

    def test_unsubscribed_client_stops_receiving(self, coordinator, stock, broadcaster, dashboard):
        record = stock(quantity=5)
        dashboard.messages.clear()

        broadcaster.handle_message("dashboard", '{"action": "unsubscribe", "events": ["inventory_movement"]}')
        coordinator.adjust_stock(record.id, 4, reason="count")

        assert dashboard.types() == ["inventory_change"]

    def test_dead_client_does_not_break_operations(
        self, coordinator, stock, broadcaster, transport_factory, dashboard
    ):
        broadcaster.register("broken", transport_factory(fail=True), ["inventory_change"])

        record = stock(quantity=5)

        assert coordinator.get_inventory_by_id(record.id).quantity_on_hand == 5
        assert "inventory_change" in dashboard.types()
        assert broadcaster.get_connection_stats().total_connections == 1


class TestUnexpectedFailures:

    def test_non_kernel_error_does_not_stall_later_events(
        self, coordinator, stock, customer_id, dashboard, monkeypatch
    ):
        record = stock(quantity=10)
        dashboard.messages.clear()
        original = CustomerHistoryService.record_sale
        calls = []

        def fail_once(self, *args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("history store unavailable")
            return original(self, *args, **kwargs)

        monkeypatch.setattr(CustomerHistoryService, "record_sale", fail_once)

        with pytest.raises(RuntimeError):
            _sell(coordinator, customer_id, record, 3, "SO-FAIL")
        assert coordinator.channel.pending_tickets == 0
        assert dashboard.messages == []

        _sell(coordinator, customer_id, record, 3, "SO-OK")
        coordinator.adjust_stock(record.id, 5, reason="count")

        assert coordinator.get_inventory_by_id(record.id).quantity_on_hand == 5
        assert coordinator.channel.pending_tickets == 0
        changes = [p["data"]["newQuantity"] for p in dashboard.payloads if p["type"] == "inventory_change"]
        assert changes == [7, 5]
