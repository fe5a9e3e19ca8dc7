"""
CustomerHistoryService -- the purchase aggregate that sales append to.

Locks the customer row, appends one order entry to purchase_history and
rolls the lifetime totals forward.  Runs inside the sale's transaction, so
a rejected sale leaves the aggregate untouched.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import select

from inventory_kernel.domain.costing import round_cost
from inventory_kernel.domain.dtos import SaleLine
from inventory_kernel.exceptions import CustomerNotFoundError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.catalog import Customer
from inventory_kernel.services.base import BaseService

logger = get_logger("services.customer_history")


class CustomerHistoryService(BaseService[Customer]):

    def require(self, customer_id, lock: bool = False) -> Customer:
        stmt = select(Customer).where(Customer.id == customer_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        customer = self.session.execute(stmt).scalar_one_or_none()
        if customer is None:
            raise CustomerNotFoundError(str(customer_id))
        return customer

    def record_sale(
        self,
        customer: Customer,
        lines: Iterable[SaleLine],
        reference_number: str,
        sold_at: datetime,
    ) -> Decimal:
        """
        Append one order to the customer's history.

        Returns:
            The order amount (sum of quantity x unit price, rounded).
        """
        items: list[dict[str, Any]] = []
        amount = Decimal("0")
        for line in lines:
            line_total = round_cost(Decimal(line.unit_price) * line.quantity)
            amount += line_total
            items.append(
                {
                    "product_id": str(line.product_id),
                    "warehouse_id": str(line.warehouse_id),
                    "quantity": line.quantity,
                    "unit_price": str(round_cost(line.unit_price)),
                    "line_total": str(line_total),
                }
            )
        amount = round_cost(amount)

        history = dict(customer.purchase_history or {})
        orders = list(history.get("orders", []))
        orders.append(
            {
                "date": sold_at.isoformat(),
                "amount": str(amount),
                "reference_number": reference_number,
                "item_count": len(items),
                "items": items,
            }
        )
        lifetime = round_cost(Decimal(customer.total_lifetime_value or 0) + amount)
        history.update(
            orders=orders,
            total_lifetime_value=str(lifetime),
            last_purchase_date=sold_at.isoformat(),
        )

        # Reassign, not mutate: plain JSON columns do not track in-place changes
        customer.purchase_history = history
        customer.total_lifetime_value = lifetime
        customer.order_count = (customer.order_count or 0) + 1
        customer.last_purchase_at = sold_at
        self.session.flush()

        logger.info(
            "customer_history_updated",
            extra={
                "customer_id": str(customer.id),
                "order_amount": amount,
                "order_count": customer.order_count,
            },
        )
        return amount
