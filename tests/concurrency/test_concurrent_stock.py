"""
Concurrent stock mutations.

Threads released together by a Barrier hit the same inventory record.  Row
locks (SELECT ... FOR UPDATE on PostgreSQL, BEGIN IMMEDIATE on SQLite) must
serialize them so that:

- no sale is ever accepted against stock another sale already took,
- concurrent first receipts create exactly one record,
- the ledger replays to the stored on-hand quantity,
- channel delivery per record follows ledger sequence.

Runs against the file-backed SQLite database by default; set DATABASE_URL
to a PostgreSQL URL to exercise real row-level locking.
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest

from inventory_kernel.domain.dtos import MovementFilter, PurchaseLine, SaleLine, TransferLine
from inventory_kernel.domain.events import EventType
from inventory_kernel.domain.values import MovementType
from inventory_kernel.exceptions import InsufficientStockError
from inventory_kernel.models.inventory import InventoryRecord

pytestmark = pytest.mark.slow_locks

THREADS = 8


def _race(fn, count=THREADS):
    """Run ``fn(i)`` on ``count`` threads released together; return outcomes."""
    barrier = Barrier(count, timeout=30)

    def runner(i):
        barrier.wait()
        try:
            return ("ok", fn(i))
        except Exception as exc:
            return ("error", exc)

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(runner, range(count)))


class TestConcurrentSales:

    def test_never_oversells(self, coordinator, stock, customer_id):
        record = stock(quantity=20)

        outcomes = _race(
            lambda i: coordinator.record_sale(
                customer_id,
                [SaleLine(record.product_id, record.warehouse_id, 3, Decimal("5.00"))],
                reference_number=f"SO-{i}",
            )
        )

        succeeded = [r for status, r in outcomes if status == "ok"]
        failed = [e for status, e in outcomes if status == "error"]
        assert len(succeeded) == 6
        assert len(failed) == 2
        assert all(isinstance(e, InsufficientStockError) for e in failed)

        final = coordinator.get_inventory_by_id(record.id)
        assert final.quantity_on_hand == 20 - 3 * len(succeeded)
        assert final.quantity_available >= 0

        sales = coordinator.get_movements(
            MovementFilter(inventory_id=record.id, movement_type=MovementType.SALE)
        )
        assert -sum(m.quantity for m in sales.items) == 20 - final.quantity_on_hand
        assert coordinator.verify_ledger(record.id).is_consistent

    def test_ledger_sequence_is_gapless(self, coordinator, stock, customer_id):
        record = stock(quantity=100)

        _race(
            lambda i: coordinator.record_sale(
                customer_id,
                [SaleLine(record.product_id, record.warehouse_id, 1, Decimal("1.00"))],
                reference_number=f"SO-{i}",
            )
        )

        page = coordinator.get_movements(MovementFilter(inventory_id=record.id))
        assert [m.sequence for m in page.items] == list(range(1, THREADS + 2))
        assert [m.quantity_after for m in page.items] == list(range(100, 100 - THREADS - 1, -1))


class TestConcurrentReceipts:

    def test_first_receipts_create_one_record(self, coordinator, make_product, warehouse_id):
        product_id = make_product()

        outcomes = _race(
            lambda i: coordinator.receive_purchase(
                supplier_id="SUP-1",
                reference_number=f"PO-{i}",
                items=[PurchaseLine(product_id, warehouse_id, 10, Decimal("4.00"))],
            )
        )

        assert all(status == "ok" for status, _ in outcomes), outcomes
        record_ids = {result.record.id for _, result in outcomes}
        assert len(record_ids) == 1

        final = coordinator.get_inventory_by_id(record_ids.pop())
        assert final.quantity_on_hand == 10 * THREADS
        assert final.average_cost == Decimal("4.00")
        assert coordinator.verify_ledger(final.id).movement_count == THREADS


class TestConcurrentMixedActivity:

    def test_reservations_and_sales_keep_quantities_consistent(self, coordinator, stock, customer_id):
        record = stock(quantity=30)

        def act(i):
            if i % 2:
                return coordinator.reserve_stock(record.product_id, record.warehouse_id, 2)
            return coordinator.record_sale(
                customer_id,
                [SaleLine(record.product_id, record.warehouse_id, 2, Decimal("1.00"))],
                reference_number=f"SO-{i}",
            )

        outcomes = _race(act)

        assert all(status == "ok" for status, _ in outcomes), outcomes
        final = coordinator.get_inventory_by_id(record.id)
        assert final.quantity_reserved == 2 * (THREADS // 2)
        assert final.quantity_on_hand == 30 - 2 * (THREADS // 2)
        assert final.quantity_on_hand == final.quantity_available + final.quantity_reserved


class TestDeliveryOrder:

    def test_movement_events_follow_ledger_sequence(
        self, coordinator, stock, customer_id, recorded_events
    ):
        record = stock(quantity=50)
        recorded_events.clear()

        _race(
            lambda i: coordinator.record_sale(
                customer_id,
                [SaleLine(record.product_id, record.warehouse_id, 1, Decimal("1.00"))],
                reference_number=f"SO-{i}",
            )
        )

        movements = [
            e for e in recorded_events
            if e.type is EventType.INVENTORY_MOVEMENT and e.inventory_id == record.id
        ]
        sequences = [e.data["sequence"] for e in movements]
        assert sequences == sorted(sequences)
        assert len(sequences) == THREADS
        # Each change event reports the quantity the preceding movement left
        changes = [e for e in recorded_events if e.type is EventType.INVENTORY_CHANGE]
        assert [c.data["newQuantity"] for c in changes] == [m.data["quantityAfter"] for m in movements]


class TestConcurrentAdjustments:

    def test_two_counts_converge_to_one_of_them(self, coordinator, stock):
        record = stock(quantity=40)
        targets = (10, 70)

        outcomes = _race(lambda i: coordinator.adjust_stock(record.id, targets[i], reason="count"), count=2)

        assert all(status == "ok" for status, _ in outcomes), outcomes
        final = coordinator.get_inventory_by_id(record.id)
        assert final.quantity_on_hand in targets
        assert final.quantity_on_hand == final.quantity_available
        result = coordinator.verify_ledger(record.id)
        assert result.is_consistent
        assert result.movement_count == 3


class TestConcurrentFanOut:

    def test_alert_only_client_never_sees_other_events(
        self, coordinator, stock, customer_id, broadcaster, transport_factory
    ):
        record = stock(quantity=10, reorder_point=4)
        pager = transport_factory()
        broadcaster.register("pager", pager, ["stock_alert"])

        outcomes = _race(
            lambda i: coordinator.record_sale(
                customer_id,
                [SaleLine(record.product_id, record.warehouse_id, 1, Decimal("1.00"))],
                reference_number=f"SO-{i}",
            )
        )

        assert all(status == "ok" for status, _ in outcomes), outcomes
        assert pager.types() == ["stock_alert"]
        assert pager.payloads[0]["data"]["alertType"] == "low_stock"


class TestReadsDuringWrites:

    def test_read_is_not_blocked_by_open_writer(self, coordinator, stock, session_factory):
        record = stock(quantity=15)

        with session_factory() as writer, writer.begin():
            row = writer.get(InventoryRecord, record.id, with_for_update=True)
            row.reorder_point = 9
            writer.flush()

            # The writer still holds its lock; readers see the committed state
            view = coordinator.get_inventory_by_id(record.id)
            page = coordinator.get_movements(MovementFilter(inventory_id=record.id))

        assert view.quantity_on_hand == 15
        assert view.reorder_point == 0
        assert page.total == 1


class TestConcurrentTransfers:

    def test_opposing_transfers_conserve_stock(self, coordinator, stock, warehouse_id, make_warehouse):
        outlet = make_warehouse("OUTLET")
        main = stock(quantity=40)
        branch = stock(quantity=40, product_id=main.product_id, warehouse=outlet)

        def move(i):
            source, target = (warehouse_id, outlet) if i % 2 else (outlet, warehouse_id)
            return coordinator.transfer_stock(source, target, [TransferLine(main.product_id, 3)])

        outcomes = _race(move)

        assert all(status == "ok" for status, _ in outcomes), outcomes
        final_main = coordinator.get_inventory_by_id(main.id)
        final_branch = coordinator.get_inventory_by_id(branch.id)
        assert final_main.quantity_on_hand + final_branch.quantity_on_hand == 80
        assert final_main.quantity_on_hand == 40
        assert coordinator.verify_ledger(main.id).is_consistent
        assert coordinator.verify_ledger(branch.id).is_consistent
