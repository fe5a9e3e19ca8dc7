"""
Module: inventory_kernel.models.catalog
Responsibility: ORM persistence for the reference rows the kernel reads but
    does not own: products, warehouses and customers.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Product.sku, Warehouse.code and Customer.customer_code are unique.
    - Inactive products/warehouses are treated as missing by the store.

Failure modes:
    - IntegrityError on duplicate sku/code.

Audit relevance:
    Customer.purchase_history is the aggregate that record_sale appends to;
    the ledger rows remain the authoritative trail.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base


class Product(Base):
    """A sellable item.  Owned by the catalog collaborator."""

    __tablename__ = "products"

    sku: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    unit_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Warehouse(Base):
    """A stock location."""

    __tablename__ = "warehouses"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Customer(Base):
    """
    A buyer, with the purchase aggregate maintained by record_sale.

    purchase_history layout::

        {"orders": [{"date", "amount", "reference_number", "item_count",
                     "items": [{"product_id", "warehouse_id", "quantity",
                                "unit_price", "line_total"}]}],
         "total_lifetime_value": "123.45",
         "last_purchase_date": "2024-01-01T12:00:00+00:00"}
    """

    __tablename__ = "customers"

    customer_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    total_lifetime_value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    order_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_purchase_at: Mapped[datetime | None] = mapped_column(nullable=True)
    purchase_history: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
