"""
InventoryCoordinator.record_sale.

A sale is all-or-nothing: availability for every line is checked under lock
before anything is written, and the customer's purchase aggregate is
updated in the same transaction.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from inventory_kernel.domain.dtos import MovementFilter, SaleLine
from inventory_kernel.domain.values import MovementType
from inventory_kernel.exceptions import (
    CustomerNotFoundError,
    InsufficientStockError,
    InventoryNotFoundError,
    ValidationError,
)
from inventory_kernel.models.catalog import Customer


def _sale_line(record, quantity, price="25.00"):
    return SaleLine(record.product_id, record.warehouse_id, quantity, Decimal(price))


def _customer(session_factory, customer_id):
    with session_factory() as s:
        return s.execute(select(Customer).where(Customer.id == customer_id)).scalar_one()


class TestRecordSale:

    def test_decrements_stock_and_appends_sale_movement(self, coordinator, stock, customer_id):
        record = stock(quantity=40, unit_cost="12.50")

        result = coordinator.record_sale(
            customer_id, [_sale_line(record, 15)], reference_number="SO-1", performed_by="clerk"
        )

        view = result.record
        assert (view.quantity_on_hand, view.quantity_available) == (25, 25)
        (movement,) = result.movements
        assert movement.movement_type is MovementType.SALE
        assert movement.quantity == -15
        assert movement.quantity_after == 25
        assert movement.unit_cost == Decimal("12.50")
        assert movement.total_cost == Decimal("187.50")
        assert movement.reference_type == "sales_order"
        assert movement.reference_number == "SO-1"
        assert result.total_amount == Decimal("375.00")

    def test_updates_customer_purchase_history(self, coordinator, stock, customer_id, session_factory):
        record = stock(quantity=10)

        coordinator.record_sale(customer_id, [_sale_line(record, 2, "9.99")], reference_number="SO-7")
        coordinator.record_sale(customer_id, [_sale_line(record, 1, "9.99")], reference_number="SO-8")

        customer = _customer(session_factory, customer_id)
        assert customer.order_count == 2
        assert customer.total_lifetime_value == Decimal("29.97")
        orders = customer.purchase_history["orders"]
        assert [o["reference_number"] for o in orders] == ["SO-7", "SO-8"]
        assert orders[0]["amount"] == "19.98"
        assert orders[0]["items"][0]["quantity"] == 2
        assert customer.purchase_history["total_lifetime_value"] == "29.97"

    def test_selling_everything_leaves_zero(self, coordinator, stock, customer_id):
        record = stock(quantity=5)

        result = coordinator.record_sale(customer_id, [_sale_line(record, 5)], reference_number="SO-2")

        assert result.record.quantity_on_hand == 0
        assert result.record.stock_status.value == "out_of_stock"

    def test_accepts_dict_lines(self, coordinator, stock, customer_id):
        record = stock(quantity=5)
        line = {
            "product_id": str(record.product_id),
            "warehouse_id": str(record.warehouse_id),
            "quantity": 2,
            "unit_price": "3.00",
        }

        result = coordinator.record_sale(str(customer_id), [line], reference_number="SO-3")
        assert result.record.quantity_on_hand == 3


class TestAllOrNothing:

    def test_one_short_line_rejects_whole_sale(
        self, coordinator, stock, customer_id, session_factory, recorded_events
    ):
        plenty = stock(quantity=100)
        scarce = stock(quantity=3)
        recorded_events.clear()

        with pytest.raises(InsufficientStockError) as exc_info:
            coordinator.record_sale(
                customer_id,
                [_sale_line(plenty, 10), _sale_line(scarce, 4)],
                reference_number="SO-9",
            )

        assert exc_info.value.available == 3
        assert exc_info.value.requested == 4
        assert coordinator.get_inventory_by_id(plenty.id).quantity_on_hand == 100
        assert coordinator.get_inventory_by_id(scarce.id).quantity_on_hand == 3
        sales = coordinator.get_movements(MovementFilter(movement_type=MovementType.SALE))
        assert sales.total == 0
        assert _customer(session_factory, customer_id).order_count == 0
        assert recorded_events == []

    def test_lines_for_same_record_are_summed(self, coordinator, stock, customer_id):
        record = stock(quantity=5)

        with pytest.raises(InsufficientStockError) as exc_info:
            coordinator.record_sale(
                customer_id, [_sale_line(record, 3), _sale_line(record, 3)], reference_number="SO-10"
            )

        assert exc_info.value.requested == 6
        assert coordinator.get_inventory_by_id(record.id).quantity_on_hand == 5

    def test_reserved_units_are_not_sellable(self, coordinator, stock, customer_id):
        record = stock(quantity=10)
        coordinator.reserve_stock(record.product_id, record.warehouse_id, 8)

        with pytest.raises(InsufficientStockError):
            coordinator.record_sale(customer_id, [_sale_line(record, 3)], reference_number="SO-11")

    def test_rejection_is_logged(self, coordinator, stock, customer_id, captured_logs):
        record = stock(quantity=1)

        with pytest.raises(InsufficientStockError):
            coordinator.record_sale(customer_id, [_sale_line(record, 2)], reference_number="SO-12")

        rejected = [r for r in captured_logs() if r["message"] == "sale_rejected_insufficient_stock"]
        assert len(rejected) == 1
        assert rejected[0]["reference_number"] == "SO-12"
        assert rejected[0]["requested"] == 2


class TestSaleValidation:

    def test_unknown_customer(self, coordinator, stock):
        record = stock(quantity=5)
        with pytest.raises(CustomerNotFoundError):
            coordinator.record_sale(uuid4(), [_sale_line(record, 1)], reference_number="SO-1")
        assert coordinator.get_inventory_by_id(record.id).quantity_on_hand == 5

    def test_no_inventory_record(self, coordinator, make_product, warehouse_id, customer_id):
        line = SaleLine(make_product(), warehouse_id, 1, Decimal("1"))
        with pytest.raises(InventoryNotFoundError):
            coordinator.record_sale(customer_id, [line], reference_number="SO-1")

    def test_bad_customer_id(self, coordinator, stock):
        record = stock(quantity=5)
        with pytest.raises(ValidationError):
            coordinator.record_sale("not-a-uuid", [_sale_line(record, 1)], reference_number="SO-1")

    def test_zero_quantity(self, coordinator, stock, customer_id):
        record = stock(quantity=5)
        with pytest.raises(ValidationError):
            coordinator.record_sale(customer_id, [_sale_line(record, 0)], reference_number="SO-1")
