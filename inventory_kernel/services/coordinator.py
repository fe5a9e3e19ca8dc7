"""
InventoryCoordinator -- transaction boundary for every stock-changing call.

Responsibility:
    Public write and read API of the kernel.  Each write runs as one
    database transaction: lock the touched records, validate, apply deltas
    through InventoryStore, append movements through MovementLedger, update
    the customer aggregate for sales, evaluate alerts, commit.  Events are
    staged on an OutboundBatch and released to the EventChannel only after
    the commit succeeded.

Architecture position:
    Kernel > Services -- imperative shell.  Owns the session lifecycle
    (one session per call, created from the injected session factory).
    InventoryStore, MovementLedger and CustomerHistoryService run inside
    that session and only flush.

Invariants enforced:
    ALL_OR_NOTHING -- a multi-line purchase or sale commits every line or
        none; on any error the transaction is rolled back and the staged
        events are discarded.
    ROW_SERIALIZATION -- every record is read with SELECT ... FOR UPDATE,
        and lines are processed in (product_id, warehouse_id) order so two
        multi-line calls always lock in the same order.
    ORDERED_DELIVERY -- each record's ticket is claimed while its row lock
        is held, so events reach the channel in commit order per record.

Failure modes:
    - ValidationError before any lock is taken for malformed input.
    - InsufficientStockError from record_sale before anything is written.
    - LockTimeoutError / ConflictError after ``locking.max_attempts``
      attempts; earlier attempts are retried with exponential backoff.
"""

from __future__ import annotations

import time
from collections import defaultdict
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, TypeVar
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from inventory_kernel.config import (
    AlertSettings,
    CostingSettings,
    InventorySettings,
    LockingSettings,
    QuerySettings,
)
from inventory_kernel.db.engine import READ_ONLY_OPTION
from inventory_kernel.db.errors import translate_db_error
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.costing import round_cost, to_decimal
from inventory_kernel.domain.dtos import (
    InventoryAnalytics,
    InventoryFilter,
    InventoryView,
    MovementFilter,
    MovementView,
    OperationResult,
    Page,
    PurchaseLine,
    ReconciliationResult,
    ReorderSuggestion,
    SaleLine,
    TransferLine,
)
from inventory_kernel.domain.events import (
    inventory_change_event,
    inventory_movement_event,
    stock_alert_event,
)
from inventory_kernel.domain.stock_status import AlertEvaluator, classify
from inventory_kernel.domain.values import MovementType, ReferenceType, StockStatus
from inventory_kernel.exceptions import (
    ConcurrencyError,
    InsufficientStockError,
    InventoryKernelError,
    ValidationError,
)
from inventory_kernel.invariants import InventoryInvariant
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.catalog import Product
from inventory_kernel.models.inventory import InventoryRecord
from inventory_kernel.models.movement import InventoryMovement
from inventory_kernel.realtime.channel import EventChannel, OutboundBatch
from inventory_kernel.selectors.inventory_selector import InventorySelector
from inventory_kernel.selectors.movement_selector import MovementSelector
from inventory_kernel.services.customer_history import CustomerHistoryService
from inventory_kernel.services.inventory_store import InventoryStore
from inventory_kernel.services.movement_ledger import MovementLedger, check_movement_sign

logger = get_logger("services.coordinator")

T = TypeVar("T")


# =============================================================================
# Input validation
# =============================================================================


def _as_uuid(value: Any, field: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(field, f"not a valid id: {value!r}") from None


def _positive_int(value: Any, field: str) -> int:
    # bool is an int subclass; True is not a quantity
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(field, f"must be a positive integer, got {value!r}")
    return value


def _non_negative_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(field, f"must be a non-negative integer, got {value!r}")
    return value


def _non_zero_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value == 0:
        raise ValidationError(field, f"must be a non-zero integer, got {value!r}")
    return value


def _money(value: Any, field: str) -> Decimal:
    try:
        amount = to_decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(field, f"not a decimal amount: {value!r}") from None
    if not amount.is_finite() or amount < 0:
        raise ValidationError(field, f"must be a finite amount >= 0, got {value!r}")
    return amount


def _required(value: Any, field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(field, "is required")
    return str(value)


def _line(item: Any, line_type: type, index: int) -> Any:
    if isinstance(item, line_type):
        return item
    try:
        return line_type.from_dict(item)
    except (KeyError, TypeError) as exc:
        raise ValidationError(f"items[{index}]", f"malformed line: missing {exc}") from None


def _purchase_lines(items: Iterable[PurchaseLine | dict[str, Any]]) -> list[PurchaseLine]:
    lines = []
    for index, item in enumerate(items or ()):
        line = _line(item, PurchaseLine, index)
        lines.append(
            PurchaseLine(
                product_id=_as_uuid(line.product_id, f"items[{index}].product_id"),
                warehouse_id=_as_uuid(line.warehouse_id, f"items[{index}].warehouse_id"),
                quantity=_positive_int(line.quantity, f"items[{index}].quantity"),
                unit_cost=_money(line.unit_cost, f"items[{index}].unit_cost"),
            )
        )
    if not lines:
        raise ValidationError("items", "at least one line is required")
    return sorted(lines, key=lambda line: (line.product_id, line.warehouse_id))


def _sale_lines(items: Iterable[SaleLine | dict[str, Any]]) -> list[SaleLine]:
    lines = []
    for index, item in enumerate(items or ()):
        line = _line(item, SaleLine, index)
        lines.append(
            SaleLine(
                product_id=_as_uuid(line.product_id, f"items[{index}].product_id"),
                warehouse_id=_as_uuid(line.warehouse_id, f"items[{index}].warehouse_id"),
                quantity=_positive_int(line.quantity, f"items[{index}].quantity"),
                unit_price=_money(line.unit_price, f"items[{index}].unit_price"),
            )
        )
    if not lines:
        raise ValidationError("items", "at least one line is required")
    return sorted(lines, key=lambda line: (line.product_id, line.warehouse_id))


def _transfer_lines(items: Iterable[TransferLine | dict[str, Any]]) -> list[TransferLine]:
    lines = []
    for index, item in enumerate(items or ()):
        line = _line(item, TransferLine, index)
        lines.append(
            TransferLine(
                product_id=_as_uuid(line.product_id, f"items[{index}].product_id"),
                quantity=_positive_int(line.quantity, f"items[{index}].quantity"),
            )
        )
    if not lines:
        raise ValidationError("items", "at least one line is required")
    return sorted(lines, key=lambda line: line.product_id)


# =============================================================================
# Unit of work
# =============================================================================


class _UnitOfWork:
    """
    One transaction attempt: its services, its outbound batch and the
    records it has locked, each with the status it had before this attempt.
    """

    def __init__(
        self,
        session: Session,
        batch: OutboundBatch,
        clock: Clock,
        evaluator: AlertEvaluator,
        cost_places: int,
    ):
        self.session = session
        self.batch = batch
        self.clock = clock
        self.evaluator = evaluator
        self.cost_places = cost_places
        self.store = InventoryStore(session, clock, cost_places)
        self.ledger = MovementLedger(session, clock, cost_places)
        self.customers = CustomerHistoryService(session, clock)
        self._records: dict[UUID, InventoryRecord] = {}
        self._initial_status: dict[UUID, StockStatus] = {}
        self.movements: list[InventoryMovement] = []

    def track(self, record: InventoryRecord, initial_status: StockStatus | None = None) -> None:
        """Remember a locked record and claim its delivery ticket."""
        if record.id in self._records:
            return
        self._records[record.id] = record
        self._initial_status[record.id] = StockStatus(initial_status or record.stock_status)
        self.batch.claim(record.id)

    def append_movement(
        self,
        record: InventoryRecord,
        movement_type: MovementType,
        quantity: int,
        old_quantity: int,
        reason: str,
        **kwargs: Any,
    ) -> InventoryMovement:
        movement = self.ledger.append(record, movement_type, quantity, **kwargs)
        self.movements.append(movement)
        now = self.clock.now()
        self.batch.stage(inventory_movement_event(movement, timestamp=now))
        self.batch.stage(
            inventory_change_event(record, old_quantity=old_quantity, reason=reason, timestamp=now)
        )
        return movement

    def stage_change(self, record: InventoryRecord, old_quantity: int, reason: str) -> None:
        self.batch.stage(
            inventory_change_event(
                record, old_quantity=old_quantity, reason=reason, timestamp=self.clock.now()
            )
        )

    def evaluate_alerts(self) -> None:
        """Compare each record's final status with its status before this call."""
        for inventory_id, record in self._records.items():
            product = self.session.get(Product, record.product_id)
            evaluation = self.evaluator.evaluate(
                self._initial_status[inventory_id],
                on_hand=record.quantity_on_hand,
                available=record.quantity_available,
                reorder_point=record.reorder_point,
                label=product.name if product is not None else "",
            )
            if evaluation.alert is None:
                continue
            self.batch.stage(
                stock_alert_event(
                    record,
                    evaluation.alert,
                    timestamp=self.clock.now(),
                    product_sku=product.sku if product is not None else None,
                    product_name=product.name if product is not None else None,
                )
            )
            logger.info(
                "stock_alert_raised",
                extra={
                    "inventory_id": str(inventory_id),
                    "alert_type": evaluation.alert.alert_type.value,
                    "priority": evaluation.alert.priority.value,
                    "previous_status": evaluation.previous_status.value,
                },
            )

    def result(self, total_amount: Decimal | None = None) -> OperationResult:
        return OperationResult(
            records=tuple(InventoryView.from_model(r) for r in self._records.values()),
            movements=tuple(MovementView.from_model(m) for m in self.movements),
            total_amount=total_amount,
        )


# =============================================================================
# Coordinator
# =============================================================================


class InventoryCoordinator:
    """
    Transactional entry point for stock changes and inventory queries.

    Contract:
        Constructed with a session factory (one session per call) and the
        EventChannel the broadcaster listens on.  Every write returns an
        OperationResult built from committed state.

    Guarantees:
        - A write either commits completely and then publishes its events, or
          raises and publishes nothing.
        - Retryable contention errors are retried up to
          ``locking.max_attempts`` times before they reach the caller.

    Non-goals:
        - Does NOT cache records between calls.
        - Does NOT order events across different inventory records.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        channel: EventChannel | None = None,
        clock: Clock | None = None,
        settings: InventorySettings | None = None,
    ):
        self._session_factory = session_factory
        self._channel = channel or EventChannel()
        self._clock = clock or SystemClock()
        self._locking = settings.locking if settings else LockingSettings()
        self._costing = settings.costing if settings else CostingSettings()
        self._queries = settings.queries if settings else QuerySettings()
        self._evaluator = AlertEvaluator.from_settings(settings.alerts if settings else AlertSettings())

    @property
    def channel(self) -> EventChannel:
        return self._channel

    @property
    def clock(self) -> Clock:
        return self._clock

    # -------------------------------------------------------------------------
    # Transaction plumbing
    # -------------------------------------------------------------------------

    def _set_lock_timeout(self, session: Session) -> None:
        if session.get_bind().dialect.name == "postgresql":
            timeout = int(self._locking.lock_timeout_ms)
            session.execute(text(f"SET LOCAL lock_timeout = '{timeout}ms'"))

    def _execute(self, operation: str, work: Callable[[_UnitOfWork], T]) -> T:
        """
        Run ``work`` in a fresh transaction, retrying contention errors.

        Events staged by a failed attempt are discarded, whatever the error;
        only the attempt that commits releases its batch.
        """
        attempt = 0
        while True:
            attempt += 1
            batch = self._channel.open_batch()
            try:
                with self._session_factory() as session, session.begin():
                    self._set_lock_timeout(session)
                    uow = _UnitOfWork(
                        session, batch, self._clock, self._evaluator, self._costing.decimal_places
                    )
                    result = work(uow)
                    uow.evaluate_alerts()
            except InventoryKernelError as exc:
                batch.discard()
                if not exc.retryable:
                    raise
                if attempt >= self._locking.max_attempts:
                    self._log_retries_exhausted(operation, attempt, exc)
                    raise
                self._backoff(operation, attempt, exc)
                continue
            except (DBAPIError, StaleDataError) as exc:
                batch.discard()
                translated = translate_db_error(exc, lock_timeout_ms=self._locking.lock_timeout_ms)
                if translated is None:
                    raise
                if attempt >= self._locking.max_attempts:
                    self._log_retries_exhausted(operation, attempt, translated)
                    raise translated from exc
                self._backoff(operation, attempt, translated)
                continue
            except BaseException:
                # An unreleased ticket would hold back every later batch for its records
                batch.discard()
                raise

            batch.release()
            return result

    def _log_retries_exhausted(self, operation: str, attempt: int, exc: InventoryKernelError) -> None:
        logger.warning(
            "coordinator_retries_exhausted",
            extra={
                "operation": operation,
                "attempts": attempt,
                "error_code": exc.code,
            },
        )

    def _backoff(self, operation: str, attempt: int, exc: ConcurrencyError | InventoryKernelError) -> None:
        delay = self._locking.backoff_seconds(attempt)
        logger.info(
            "coordinator_retry",
            extra={
                "operation": operation,
                "attempt": attempt,
                "error_code": exc.code,
                "delay_s": delay,
            },
        )
        time.sleep(delay)

    def _read(self, work: Callable[[Session], T]) -> T:
        with self._session_factory() as session:
            session.connection(execution_options={READ_ONLY_OPTION: True})
            try:
                return work(session)
            except DBAPIError as exc:
                translated = translate_db_error(exc, lock_timeout_ms=self._locking.lock_timeout_ms)
                if translated is None:
                    raise
                raise translated from exc

    # -------------------------------------------------------------------------
    # Receipts
    # -------------------------------------------------------------------------

    def receive_purchase(
        self,
        supplier_id: str,
        reference_number: str,
        items: Iterable[PurchaseLine | dict[str, Any]],
        performed_by: str | None = None,
    ) -> OperationResult:
        """
        Receive a supplier delivery.

        Each line creates its record on first receipt or blends its cost into
        the existing average, then appends a purchase movement.

        Returns:
            OperationResult with one record per distinct (product, warehouse)
            and one movement per line; total_amount is the delivery value.
        """
        supplier_id = _required(supplier_id, "supplier_id")
        reference_number = _required(reference_number, "reference_number")
        lines = _purchase_lines(items)

        def work(uow: _UnitOfWork) -> OperationResult:
            for line in lines:
                uow.store.require_product(line.product_id)
                uow.store.require_warehouse(line.warehouse_id)

            total = Decimal("0")
            for line in lines:
                receipt = uow.store.ensure_on_receipt(
                    line.product_id, line.warehouse_id, line.quantity, line.unit_cost
                )
                uow.track(receipt.record, receipt.previous_status)
                movement = uow.append_movement(
                    receipt.record,
                    MovementType.PURCHASE,
                    line.quantity,
                    receipt.previous_on_hand,
                    reason="purchase_received",
                    unit_cost=line.unit_cost,
                    reference_type=ReferenceType.PURCHASE_ORDER.value,
                    reference_id=supplier_id,
                    reference_number=reference_number,
                    performed_by=performed_by,
                )
                total += movement.total_cost or Decimal("0")
            return uow.result(total_amount=round_cost(total, uow.cost_places))

        with LogContext.bind(reference_number=reference_number, actor_id=performed_by):
            result = self._execute("receive_purchase", work)
            logger.info(
                "purchase_received",
                extra={
                    "supplier_id": supplier_id,
                    "line_count": len(lines),
                    "total_amount": result.total_amount,
                },
            )
            return result

    # -------------------------------------------------------------------------
    # Sales
    # -------------------------------------------------------------------------

    def record_sale(
        self,
        customer_id: UUID | str,
        items: Iterable[SaleLine | dict[str, Any]],
        reference_number: str,
        performed_by: str | None = None,
    ) -> OperationResult:
        """
        Ship a customer order.

        Availability is checked for every line (lines for the same record are
        summed) before anything is written.  Each sale movement carries the
        record's average cost at the time of sale as its unit cost.

        Raises:
            CustomerNotFoundError: unknown customer.
            InventoryNotFoundError: a line has no inventory record.
            InsufficientStockError: any line exceeds its available quantity;
                nothing is persisted.
        """
        customer_id = _as_uuid(customer_id, "customer_id")
        reference_number = _required(reference_number, "reference_number")
        lines = _sale_lines(items)

        demand: dict[tuple[UUID, UUID], int] = defaultdict(int)
        for line in lines:
            demand[(line.product_id, line.warehouse_id)] += line.quantity

        def work(uow: _UnitOfWork) -> OperationResult:
            customer = uow.customers.require(customer_id, lock=True)

            records: dict[tuple[UUID, UUID], InventoryRecord] = {}
            for key in sorted(demand):
                record = uow.store.get(*key, lock=True)
                uow.track(record)
                records[key] = record
                if record.quantity_available < demand[key]:
                    logger.info(
                        "sale_rejected_insufficient_stock",
                        extra={
                            "invariant": InventoryInvariant.NON_NEGATIVE_QUANTITY.value,
                            "inventory_id": str(record.id),
                            "available": record.quantity_available,
                            "requested": demand[key],
                        },
                    )
                    raise InsufficientStockError(
                        inventory_id=str(record.id),
                        available=record.quantity_available,
                        requested=demand[key],
                        product_id=str(record.product_id),
                        warehouse_id=str(record.warehouse_id),
                    )

            for line in lines:
                record = records[(line.product_id, line.warehouse_id)]
                old_quantity = record.quantity_on_hand
                uow.store.apply_delta(record, -line.quantity, -line.quantity, 0)
                uow.append_movement(
                    record,
                    MovementType.SALE,
                    -line.quantity,
                    old_quantity,
                    reason="sale",
                    unit_cost=Decimal(record.average_cost),
                    reference_type=ReferenceType.SALES_ORDER.value,
                    reference_id=str(customer_id),
                    reference_number=reference_number,
                    performed_by=performed_by,
                )

            amount = uow.customers.record_sale(customer, lines, reference_number, uow.clock.now())
            return uow.result(total_amount=amount)

        with LogContext.bind(reference_number=reference_number, actor_id=performed_by):
            result = self._execute("record_sale", work)
            logger.info(
                "sale_recorded",
                extra={
                    "customer_id": str(customer_id),
                    "line_count": len(lines),
                    "total_amount": result.total_amount,
                },
            )
            return result

    # -------------------------------------------------------------------------
    # Adjustments and generic movements
    # -------------------------------------------------------------------------

    def adjust_stock(
        self,
        inventory_id: UUID | str,
        new_quantity_on_hand: int,
        reason: str,
        performed_by: str | None = None,
        notes: str | None = None,
        reference_number: str | None = None,
    ) -> OperationResult:
        """
        Set on-hand to a counted quantity.

        The difference is applied to on_hand and available; reserved is left
        alone, so a count below the reserved quantity fails with
        InsufficientStockError.  A count equal to the current on-hand writes
        nothing and publishes nothing.
        """
        inventory_id = _as_uuid(inventory_id, "inventory_id")
        new_quantity_on_hand = _non_negative_int(new_quantity_on_hand, "new_quantity_on_hand")
        reason = _required(reason, "reason")
        reference_number = reference_number or f"ADJ-{int(self._clock.now().timestamp() * 1000)}"
        movement_notes = f"{reason}: {notes}" if notes else reason

        def work(uow: _UnitOfWork) -> OperationResult:
            record = uow.store.get_by_id(inventory_id, lock=True)
            delta = new_quantity_on_hand - record.quantity_on_hand
            if delta == 0:
                logger.info("adjustment_noop", extra={"quantity_on_hand": record.quantity_on_hand})
                return OperationResult(records=(InventoryView.from_model(record),))

            uow.track(record)
            old_quantity = record.quantity_on_hand
            uow.store.apply_delta(record, delta, delta, 0)
            uow.append_movement(
                record,
                MovementType.ADJUSTMENT,
                delta,
                old_quantity,
                reason=reason,
                unit_cost=Decimal(record.average_cost),
                reference_type=ReferenceType.ADJUSTMENT.value,
                reference_number=reference_number,
                performed_by=performed_by,
                notes=movement_notes,
            )
            return uow.result()

        with LogContext.bind(
            inventory_id=inventory_id, reference_number=reference_number, actor_id=performed_by
        ):
            result = self._execute("adjust_stock", work)
            logger.info(
                "stock_adjusted",
                extra={"new_quantity_on_hand": new_quantity_on_hand, "reason": reason},
            )
            return result

    def record_movement(
        self,
        inventory_id: UUID | str,
        movement_type: MovementType | str,
        quantity: int,
        *,
        unit_cost: Decimal | str | None = None,
        reference_type: ReferenceType | str | None = None,
        reference_id: str | None = None,
        reference_number: str | None = None,
        performed_by: str | None = None,
        notes: str | None = None,
    ) -> OperationResult:
        """
        Apply one signed movement of any ledger type to an existing record.

        Purchase-type movements that carry a unit cost are blended into the
        average cost first.  Outbound movements without a unit cost are
        valued at the current average cost.
        """
        inventory_id = _as_uuid(inventory_id, "inventory_id")
        try:
            movement_type = MovementType(movement_type)
        except ValueError:
            raise ValidationError("movement_type", f"unknown movement type {movement_type!r}") from None
        try:
            reference_type = ReferenceType(reference_type or ReferenceType.MANUAL)
        except ValueError:
            raise ValidationError("reference_type", f"unknown reference type {reference_type!r}") from None
        quantity = _non_zero_int(quantity, "quantity")
        check_movement_sign(movement_type, quantity)
        cost = _money(unit_cost, "unit_cost") if unit_cost is not None else None

        def work(uow: _UnitOfWork) -> OperationResult:
            record = uow.store.get_by_id(inventory_id, lock=True)
            uow.track(record)
            old_quantity = record.quantity_on_hand
            if movement_type.updates_cost and cost is not None:
                uow.store.apply_receipt_cost(record, quantity, cost)
            uow.store.apply_delta(record, quantity, quantity, 0)
            uow.append_movement(
                record,
                movement_type,
                quantity,
                old_quantity,
                reason=movement_type.value,
                unit_cost=cost if cost is not None else Decimal(record.average_cost),
                reference_type=reference_type.value,
                reference_id=reference_id,
                reference_number=reference_number,
                performed_by=performed_by,
                notes=notes,
            )
            return uow.result()

        with LogContext.bind(
            inventory_id=inventory_id, reference_number=reference_number, actor_id=performed_by
        ):
            result = self._execute("record_movement", work)
            logger.info(
                "movement_recorded",
                extra={"movement_type": movement_type.value, "quantity": quantity},
            )
            return result

    # -------------------------------------------------------------------------
    # Transfers
    # -------------------------------------------------------------------------

    def transfer_stock(
        self,
        from_warehouse_id: UUID | str,
        to_warehouse_id: UUID | str,
        items: Iterable[TransferLine | dict[str, Any]],
        performed_by: str | None = None,
        notes: str | None = None,
        reference_number: str | None = None,
    ) -> OperationResult:
        """
        Move stock between two warehouses in one transaction.

        Every source and destination record is locked in (product_id,
        warehouse_id) order and every source line is checked against its
        available quantity before anything is written.  Each line then
        writes an outbound adjustment at the source and an inbound
        adjustment at the destination, both referencing the transfer.
        Destination records are created on first arrival; the transferred
        quantity is blended into their average cost at the source's
        average cost.

        Raises:
            ValidationError: same source and destination, or malformed lines.
            InventoryNotFoundError: a product has no record at the source.
            InsufficientStockError: any line exceeds the source's available
                quantity; nothing is persisted.
        """
        from_warehouse_id = _as_uuid(from_warehouse_id, "from_warehouse_id")
        to_warehouse_id = _as_uuid(to_warehouse_id, "to_warehouse_id")
        if from_warehouse_id == to_warehouse_id:
            raise ValidationError("to_warehouse_id", "must differ from from_warehouse_id")
        lines = _transfer_lines(items)
        reference_number = reference_number or f"TRF-{int(self._clock.now().timestamp() * 1000)}"

        demand: dict[UUID, int] = defaultdict(int)
        for line in lines:
            demand[line.product_id] += line.quantity

        def work(uow: _UnitOfWork) -> OperationResult:
            uow.store.require_warehouse(from_warehouse_id)
            uow.store.require_warehouse(to_warehouse_id)
            for product_id in demand:
                uow.store.require_product(product_id)

            sources: dict[UUID, InventoryRecord] = {}
            keys = sorted(
                [(p, from_warehouse_id) for p in demand] + [(p, to_warehouse_id) for p in demand]
            )
            for product_id, warehouse_id in keys:
                if warehouse_id == to_warehouse_id:
                    destination = uow.store.find(product_id, warehouse_id, lock=True)
                    if destination is not None:
                        uow.track(destination)
                    continue
                source = uow.store.get(product_id, warehouse_id, lock=True)
                uow.track(source)
                sources[product_id] = source
                if source.quantity_available < demand[product_id]:
                    logger.info(
                        "transfer_rejected_insufficient_stock",
                        extra={
                            "invariant": InventoryInvariant.NON_NEGATIVE_QUANTITY.value,
                            "inventory_id": str(source.id),
                            "available": source.quantity_available,
                            "requested": demand[product_id],
                        },
                    )
                    raise InsufficientStockError(
                        inventory_id=str(source.id),
                        available=source.quantity_available,
                        requested=demand[product_id],
                        product_id=str(product_id),
                        warehouse_id=str(from_warehouse_id),
                    )

            movement_notes = f"Transfer {reference_number}"
            if notes:
                movement_notes = f"{movement_notes}: {notes}"
            for line in lines:
                source = sources[line.product_id]
                unit_cost = Decimal(source.average_cost)
                old_quantity = source.quantity_on_hand
                uow.store.apply_delta(source, -line.quantity, -line.quantity, 0)
                uow.append_movement(
                    source,
                    MovementType.ADJUSTMENT,
                    -line.quantity,
                    old_quantity,
                    reason="transfer_out",
                    unit_cost=unit_cost,
                    reference_type=ReferenceType.TRANSFER.value,
                    reference_id=str(to_warehouse_id),
                    reference_number=reference_number,
                    performed_by=performed_by,
                    notes=movement_notes,
                )

                receipt = uow.store.ensure_on_receipt(
                    line.product_id, to_warehouse_id, line.quantity, unit_cost, purchase=False
                )
                uow.track(receipt.record, receipt.previous_status)
                uow.append_movement(
                    receipt.record,
                    MovementType.ADJUSTMENT,
                    line.quantity,
                    receipt.previous_on_hand,
                    reason="transfer_in",
                    unit_cost=unit_cost,
                    reference_type=ReferenceType.TRANSFER.value,
                    reference_id=str(from_warehouse_id),
                    reference_number=reference_number,
                    performed_by=performed_by,
                    notes=movement_notes,
                )
            return uow.result()

        with LogContext.bind(reference_number=reference_number, actor_id=performed_by):
            result = self._execute("transfer_stock", work)
            logger.info(
                "stock_transferred",
                extra={
                    "from_warehouse_id": str(from_warehouse_id),
                    "to_warehouse_id": str(to_warehouse_id),
                    "line_count": len(lines),
                    "quantity": sum(demand.values()),
                },
            )
            return result

    # -------------------------------------------------------------------------
    # Reservations
    # -------------------------------------------------------------------------

    def reserve_stock(
        self,
        product_id: UUID | str,
        warehouse_id: UUID | str,
        quantity: int,
        performed_by: str | None = None,
        reference_number: str | None = None,
    ) -> OperationResult:
        """Move ``quantity`` from available to reserved.  No ledger row."""
        return self._reservation(
            "reserve_stock", product_id, warehouse_id, quantity, performed_by, reference_number
        )

    def release_reservation(
        self,
        product_id: UUID | str,
        warehouse_id: UUID | str,
        quantity: int,
        performed_by: str | None = None,
        reference_number: str | None = None,
    ) -> OperationResult:
        """Move ``quantity`` from reserved back to available.  No ledger row."""
        return self._reservation(
            "release_reservation", product_id, warehouse_id, quantity, performed_by, reference_number
        )

    def _reservation(
        self,
        operation: str,
        product_id: UUID | str,
        warehouse_id: UUID | str,
        quantity: int,
        performed_by: str | None,
        reference_number: str | None,
    ) -> OperationResult:
        product_id = _as_uuid(product_id, "product_id")
        warehouse_id = _as_uuid(warehouse_id, "warehouse_id")
        quantity = _positive_int(quantity, "quantity")

        def work(uow: _UnitOfWork) -> OperationResult:
            record = uow.store.get(product_id, warehouse_id, lock=True)
            uow.track(record)
            if operation == "reserve_stock":
                uow.store.reserve(record, quantity)
            else:
                uow.store.release(record, quantity)
            uow.stage_change(record, record.quantity_on_hand, reason=operation)
            return uow.result()

        with LogContext.bind(reference_number=reference_number, actor_id=performed_by):
            result = self._execute(operation, work)
            logger.info(
                "reservation_updated",
                extra={
                    "operation": operation,
                    "inventory_id": str(result.record.id),
                    "quantity": quantity,
                    "quantity_reserved": result.record.quantity_reserved,
                },
            )
            return result

    # -------------------------------------------------------------------------
    # Reorder levels
    # -------------------------------------------------------------------------

    def update_reorder_levels(
        self,
        inventory_id: UUID | str,
        reorder_point: int | None = None,
        reorder_quantity: int | None = None,
        min_stock_level: int | None = None,
        max_stock_level: int | None = None,
        performed_by: str | None = None,
    ) -> OperationResult:
        """
        Change a record's replenishment parameters.

        The stock status is recomputed against the new reorder point, so
        raising it can move a record into low_stock and raise an alert.
        """
        inventory_id = _as_uuid(inventory_id, "inventory_id")
        changes = {
            name: _non_negative_int(value, name)
            for name, value in (
                ("reorder_point", reorder_point),
                ("reorder_quantity", reorder_quantity),
                ("min_stock_level", min_stock_level),
                ("max_stock_level", max_stock_level),
            )
            if value is not None
        }
        if not changes:
            raise ValidationError("reorder_levels", "no level given")

        def work(uow: _UnitOfWork) -> OperationResult:
            record = uow.store.get_by_id(inventory_id, lock=True)
            uow.track(record)
            for name, value in changes.items():
                setattr(record, name, value)
            if record.max_stock_level is not None and record.max_stock_level < record.min_stock_level:
                raise ValidationError("max_stock_level", "must not be below min_stock_level")
            record.stock_status = classify(
                record.quantity_on_hand, record.quantity_available, record.reorder_point
            ).value
            record.updated_at = uow.clock.now()
            uow.session.flush()
            uow.stage_change(record, record.quantity_on_hand, reason="reorder_levels_updated")
            return uow.result()

        with LogContext.bind(inventory_id=inventory_id, actor_id=performed_by):
            result = self._execute("update_reorder_levels", work)
            logger.info("reorder_levels_updated", extra={"changes": changes})
            return result

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_inventory_by_id(self, inventory_id: UUID | str) -> InventoryView:
        inventory_id = _as_uuid(inventory_id, "inventory_id")
        return self._read(lambda session: InventorySelector(session).get(inventory_id))

    def get_inventory(self, filters: InventoryFilter | None = None) -> list[InventoryView]:
        return self._read(lambda session: InventorySelector(session).list_inventory(filters))

    def get_movements(self, filters: MovementFilter | None = None) -> Page[MovementView]:
        filters = filters or MovementFilter()
        return self._read(
            lambda session: MovementSelector(session).query(
                filters,
                default_page_size=self._queries.default_page_size,
                max_page_size=self._queries.max_page_size,
            )
        )

    def get_inventory_analytics(
        self,
        warehouse_id: UUID | str | None = None,
        category: str | None = None,
    ) -> InventoryAnalytics:
        if warehouse_id is not None:
            warehouse_id = _as_uuid(warehouse_id, "warehouse_id")
        return self._read(lambda session: InventorySelector(session).analytics(warehouse_id, category))

    def get_reorder_suggestions(
        self,
        warehouse_id: UUID | str | None = None,
        limit: int | None = None,
    ) -> list[ReorderSuggestion]:
        if warehouse_id is not None:
            warehouse_id = _as_uuid(warehouse_id, "warehouse_id")
        limit = _positive_int(limit, "limit") if limit is not None else self._queries.reorder_suggestion_limit
        return self._read(
            lambda session: InventorySelector(session).reorder_suggestions(warehouse_id, limit)
        )

    def verify_ledger(self, inventory_id: UUID | str) -> ReconciliationResult:
        """Replay a record's movements and compare with its stored on-hand."""
        inventory_id = _as_uuid(inventory_id, "inventory_id")
        return self._read(lambda session: MovementSelector(session).replay(inventory_id))
