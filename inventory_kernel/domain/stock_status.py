"""
Alert Evaluator -- stock status classification and edge-triggered alerts.

Responsibility:
    Classifies a record's quantities into a StockStatus and decides whether
    the move from the previous status must raise a stock_alert.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Called by the
    coordinator after every mutation, while the row lock is still held, so
    that the previous status it compares against is the committed one.

Invariants enforced:
    - Alerts are edge-triggered: a mutation that leaves the status unchanged
      never alerts, however often it repeats.
    - Only transitions INTO low_stock or out_of_stock alert.  Recovery to
      in_stock is reported through inventory_change only.
"""

from dataclasses import dataclass
from decimal import Decimal

from inventory_kernel.domain.values import AlertPriority, StockStatus


def classify(on_hand: int, available: int, reorder_point: int) -> StockStatus:
    """
    out_of_stock if nothing is on hand; low_stock if the available quantity
    is at or below the reorder point; otherwise in_stock.
    """
    if on_hand == 0:
        return StockStatus.OUT_OF_STOCK
    if available <= reorder_point:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


@dataclass(frozen=True)
class StockAlert:
    """A threshold crossing worth telling subscribers about."""

    alert_type: StockStatus
    priority: AlertPriority
    previous_status: StockStatus
    current_quantity: int
    available_quantity: int
    reorder_point: int
    message: str


@dataclass(frozen=True)
class StatusEvaluation:
    status: StockStatus
    previous_status: StockStatus
    alert: StockAlert | None

    @property
    def changed(self) -> bool:
        return self.status is not self.previous_status


class AlertEvaluator:
    """
    Edge-triggered stock alert state machine.

    Contract:
        ``evaluate`` is given the status stored before the mutation and the
        quantities after it.  It returns the new status and, on a transition
        into an alerting state, the alert to publish.

    Guarantees:
        - out_of_stock alerts are always CRITICAL.
        - low_stock severity is banded by available / reorder_point using
          ``high_ratio`` and ``medium_ratio``; a fully reserved record
          (available == 0) is HIGH.
    """

    def __init__(
        self,
        high_ratio: Decimal = Decimal("0.25"),
        medium_ratio: Decimal = Decimal("0.50"),
    ):
        self._high_ratio = Decimal(high_ratio)
        self._medium_ratio = Decimal(medium_ratio)

    @classmethod
    def from_settings(cls, alerts) -> "AlertEvaluator":
        return cls(high_ratio=alerts.high_ratio, medium_ratio=alerts.medium_ratio)

    def severity(self, status: StockStatus, available: int, reorder_point: int) -> AlertPriority:
        if status is StockStatus.OUT_OF_STOCK:
            return AlertPriority.CRITICAL
        if available <= 0 or reorder_point <= 0:
            return AlertPriority.HIGH
        ratio = Decimal(available) / Decimal(reorder_point)
        if ratio <= self._high_ratio:
            return AlertPriority.HIGH
        if ratio <= self._medium_ratio:
            return AlertPriority.MEDIUM
        return AlertPriority.LOW

    def evaluate(
        self,
        previous_status: StockStatus | str,
        *,
        on_hand: int,
        available: int,
        reorder_point: int,
        label: str = "",
    ) -> StatusEvaluation:
        previous = StockStatus(previous_status)
        status = classify(on_hand, available, reorder_point)

        alert = None
        if status is not previous and status.is_alerting:
            alert = StockAlert(
                alert_type=status,
                priority=self.severity(status, available, reorder_point),
                previous_status=previous,
                current_quantity=on_hand,
                available_quantity=available,
                reorder_point=reorder_point,
                message=_alert_message(status, label, on_hand, available, reorder_point),
            )
        return StatusEvaluation(status=status, previous_status=previous, alert=alert)


def _alert_message(
    status: StockStatus, label: str, on_hand: int, available: int, reorder_point: int
) -> str:
    subject = label or "Item"
    if status is StockStatus.OUT_OF_STOCK:
        return f"{subject} is out of stock"
    return (
        f"{subject} is low on stock: {available} available "
        f"(reorder point {reorder_point}, {on_hand} on hand)"
    )
