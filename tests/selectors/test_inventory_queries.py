"""Inventory listing, analytics and reorder suggestions."""

from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_kernel.domain.dtos import InventoryFilter, SaleLine
from inventory_kernel.domain.values import StockStatus
from inventory_kernel.exceptions import InventoryNotFoundError, ValidationError


@pytest.fixture
def shelf(stock):
    """
    tools:  hammer 10 @ 5.00 (rp 20 -> low), saw 40 @ 12.50 (in stock)
    paint:  blue 3 @ 8.00 (rp 5 -> low)
    (none): misc 1 @ 1.00
    """
    return {
        "hammer": stock(quantity=10, unit_cost="5.00", reorder_point=20, category="tools"),
        "saw": stock(quantity=40, unit_cost="12.50", category="tools"),
        "blue": stock(quantity=3, unit_cost="8.00", reorder_point=5, category="paint"),
        "misc": stock(quantity=1, unit_cost="1.00", category=None),
    }


class TestGetInventory:

    def test_by_id(self, coordinator, shelf):
        view = coordinator.get_inventory_by_id(shelf["saw"].id)
        assert view.quantity_on_hand == 40
        assert view.average_cost == Decimal("12.50")

    def test_by_id_missing(self, coordinator):
        with pytest.raises(InventoryNotFoundError):
            coordinator.get_inventory_by_id(uuid4())

    def test_by_id_malformed(self, coordinator):
        with pytest.raises(ValidationError):
            coordinator.get_inventory_by_id("nope")

    def test_list_filters(self, coordinator, shelf):
        assert len(coordinator.get_inventory()) == 4
        tools = coordinator.get_inventory(InventoryFilter(category="tools"))
        assert {v.id for v in tools} == {shelf["hammer"].id, shelf["saw"].id}

        low = coordinator.get_inventory(InventoryFilter(stock_status=StockStatus.LOW_STOCK))
        assert {v.id for v in low} == {shelf["hammer"].id, shelf["blue"].id}

        below = coordinator.get_inventory(InventoryFilter(below_reorder_point=True))
        assert {v.id for v in below} == {shelf["hammer"].id, shelf["blue"].id}

        single = coordinator.get_inventory(InventoryFilter(product_id=shelf["misc"].product_id))
        assert [v.id for v in single] == [shelf["misc"].id]

    def test_status_filter_by_name(self, coordinator, shelf):
        low = coordinator.get_inventory(InventoryFilter(stock_status="low_stock"))
        assert {v.id for v in low} == {shelf["hammer"].id, shelf["blue"].id}

    def test_unknown_status_filter(self, coordinator):
        with pytest.raises(ValidationError) as exc_info:
            coordinator.get_inventory(InventoryFilter(stock_status="discontinued"))
        assert exc_info.value.field == "stock_status"


class TestAnalytics:

    def test_summary(self, coordinator, shelf):
        summary = coordinator.get_inventory_analytics().summary

        assert summary.total_items == 4
        # 10x5 + 40x12.50 + 3x8 + 1x1
        assert summary.total_value == Decimal("575.00")
        assert summary.total_on_hand == 54
        assert summary.total_available == 54
        assert summary.items_below_reorder == 2
        assert summary.items_out_of_stock == 0

    def test_category_breakdown_sorted_by_value(self, coordinator, shelf):
        breakdown = coordinator.get_inventory_analytics().category_breakdown

        assert [c.category for c in breakdown] == ["tools", "paint", "uncategorized"]
        assert breakdown[0].item_count == 2
        assert breakdown[0].total_quantity == 50
        assert breakdown[0].total_value == Decimal("550.00")

    def test_status_breakdown(self, coordinator, shelf, customer_id):
        misc = shelf["misc"]
        coordinator.record_sale(
            customer_id, [SaleLine(misc.product_id, misc.warehouse_id, 1, Decimal("2"))], reference_number="SO-1"
        )

        analytics = coordinator.get_inventory_analytics()

        assert analytics.stock_status_breakdown == {"in_stock": 1, "low_stock": 2, "out_of_stock": 1}
        assert analytics.summary.items_out_of_stock == 1

    def test_filtered_by_category(self, coordinator, shelf):
        summary = coordinator.get_inventory_analytics(category="paint").summary
        assert summary.total_items == 1
        assert summary.total_value == Decimal("24.00")

    def test_filtered_by_other_warehouse(self, coordinator, shelf, make_warehouse):
        summary = coordinator.get_inventory_analytics(warehouse_id=make_warehouse()).summary
        assert summary.total_items == 0
        assert summary.total_value == Decimal("0.00")


class TestReorderSuggestions:

    def test_largest_shortfall_first(self, coordinator, shelf):
        coordinator.update_reorder_levels(shelf["hammer"].id, reorder_quantity=50)

        suggestions = coordinator.get_reorder_suggestions()

        assert [s.inventory_id for s in suggestions] == [shelf["hammer"].id, shelf["blue"].id]
        hammer, blue = suggestions
        assert hammer.shortfall == 10
        assert hammer.suggested_order_quantity == 50
        # No reorder quantity configured: order the gap
        assert blue.shortfall == 2
        assert blue.suggested_order_quantity == 2
        assert hammer.product_sku is not None

    def test_limit(self, coordinator, shelf):
        assert len(coordinator.get_reorder_suggestions(limit=1)) == 1

    def test_zero_reorder_point_never_suggested(self, coordinator, shelf, customer_id):
        misc = shelf["misc"]
        coordinator.record_sale(
            customer_id, [SaleLine(misc.product_id, misc.warehouse_id, 1, Decimal("2"))], reference_number="SO-1"
        )

        ids = {s.inventory_id for s in coordinator.get_reorder_suggestions()}
        assert misc.id not in ids

    def test_bad_limit(self, coordinator):
        with pytest.raises(ValidationError):
            coordinator.get_reorder_suggestions(limit=0)
