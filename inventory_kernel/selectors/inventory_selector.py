"""
InventorySelector -- listings, analytics and reorder suggestions.

Responsibility:
    Read-only views over inventory records joined to their product: filtered
    listing, the warehouse/category analytics summary, and the reorder
    suggestion list (records at or below a positive reorder point, largest
    shortfall first).

Architecture position:
    Kernel > Selectors.  Read-only.
"""

from collections import defaultdict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from inventory_kernel.domain.costing import round_cost
from inventory_kernel.domain.dtos import (
    CategoryBreakdown,
    InventoryAnalytics,
    InventoryFilter,
    InventorySummary,
    InventoryView,
    ReorderSuggestion,
)
from inventory_kernel.domain.values import StockStatus
from inventory_kernel.exceptions import InventoryNotFoundError
from inventory_kernel.models.catalog import Product
from inventory_kernel.models.inventory import InventoryRecord
from inventory_kernel.selectors.base import BaseSelector

UNCATEGORIZED = "uncategorized"


class InventorySelector(BaseSelector[InventoryRecord]):

    def get(self, inventory_id: UUID) -> InventoryView:
        record = self.session.get(InventoryRecord, inventory_id)
        if record is None:
            raise InventoryNotFoundError(inventory_id=str(inventory_id))
        return InventoryView.from_model(record)

    def _joined(self, warehouse_id: UUID | None = None, category: str | None = None):
        stmt = select(InventoryRecord, Product).join(Product, Product.id == InventoryRecord.product_id)
        if warehouse_id is not None:
            stmt = stmt.where(InventoryRecord.warehouse_id == warehouse_id)
        if category is not None:
            stmt = stmt.where(Product.category == category)
        return stmt

    def list_inventory(self, filters: InventoryFilter | None = None) -> list[InventoryView]:
        filters = filters or InventoryFilter()
        stmt = self._joined(filters.warehouse_id, filters.category)
        if filters.product_id is not None:
            stmt = stmt.where(InventoryRecord.product_id == filters.product_id)
        if filters.stock_status is not None:
            stmt = stmt.where(InventoryRecord.stock_status == StockStatus(filters.stock_status).value)
        if filters.below_reorder_point:
            stmt = stmt.where(InventoryRecord.quantity_available <= InventoryRecord.reorder_point)
        stmt = stmt.order_by(Product.sku, InventoryRecord.warehouse_id)
        return [InventoryView.from_model(record) for record, _ in self.session.execute(stmt)]

    def analytics(
        self,
        warehouse_id: UUID | None = None,
        category: str | None = None,
    ) -> InventoryAnalytics:
        """
        Summary, per-category and per-status breakdown.

        Value is on_hand x average_cost, rounded half-even to cents.
        """
        rows = self.session.execute(self._joined(warehouse_id, category)).all()

        total_value = Decimal("0")
        on_hand = reserved = available = below_reorder = out_of_stock = 0
        by_category: dict[str, list] = defaultdict(lambda: [0, 0, Decimal("0")])
        by_status: dict[str, int] = {status.value: 0 for status in StockStatus}

        for record, product in rows:
            value = Decimal(record.average_cost) * record.quantity_on_hand
            total_value += value
            on_hand += record.quantity_on_hand
            reserved += record.quantity_reserved
            available += record.quantity_available
            if record.quantity_available <= record.reorder_point:
                below_reorder += 1
            if record.stock_status == StockStatus.OUT_OF_STOCK.value:
                out_of_stock += 1
            by_status[record.stock_status] = by_status.get(record.stock_status, 0) + 1

            bucket = by_category[product.category or UNCATEGORIZED]
            bucket[0] += 1
            bucket[1] += record.quantity_on_hand
            bucket[2] += value

        return InventoryAnalytics(
            summary=InventorySummary(
                total_items=len(rows),
                total_value=round_cost(total_value),
                total_on_hand=on_hand,
                total_reserved=reserved,
                total_available=available,
                items_below_reorder=below_reorder,
                items_out_of_stock=out_of_stock,
            ),
            category_breakdown=tuple(
                CategoryBreakdown(
                    category=name,
                    item_count=count,
                    total_quantity=quantity,
                    total_value=round_cost(value),
                )
                for name, (count, quantity, value) in sorted(
                    by_category.items(), key=lambda kv: kv[1][2], reverse=True
                )
            ),
            stock_status_breakdown=by_status,
        )

    def reorder_suggestions(
        self,
        warehouse_id: UUID | None = None,
        limit: int = 100,
    ) -> list[ReorderSuggestion]:
        shortfall = InventoryRecord.reorder_point - InventoryRecord.quantity_available
        stmt = (
            self._joined(warehouse_id)
            .where(
                InventoryRecord.reorder_point > 0,
                InventoryRecord.quantity_available <= InventoryRecord.reorder_point,
            )
            .order_by(shortfall.desc(), Product.sku)
            .limit(limit)
        )
        suggestions = []
        for record, product in self.session.execute(stmt):
            gap = record.reorder_point - record.quantity_available
            suggestions.append(
                ReorderSuggestion(
                    inventory_id=record.id,
                    product_id=record.product_id,
                    warehouse_id=record.warehouse_id,
                    product_sku=product.sku,
                    product_name=product.name,
                    quantity_available=record.quantity_available,
                    reorder_point=record.reorder_point,
                    reorder_quantity=record.reorder_quantity,
                    shortfall=gap,
                    suggested_order_quantity=max(record.reorder_quantity, gap),
                )
            )
        return suggestions
