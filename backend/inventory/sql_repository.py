"""
SQLAlchemy Metrics Repository — MetricsRepository over the operational tables.

Each query opens its own short-lived session from the factory so that the
orchestrator can run sub-scores and detectors concurrently without sharing
an AsyncSession (which is not safe for concurrent use).
"""

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from db.models import (
    Backorder,
    Product,
    PurchaseOrder,
    PurchaseReceive,
    SalesOrder,
    SalesOrderItem,
    Site,
    StockAdjustment,
)
from inventory.repository import (
    BackorderLine,
    BackorderRecord,
    MetricsRepository,
    ProductRecord,
    PurchaseOrderRecord,
    SalesLine,
    Scope,
    SiteStock,
)

OPEN_BACKORDER_STATUSES = ("pending", "partial")


def _scoped(stmt, model, scope: Scope):
    stmt = stmt.where(model.company_id == scope.tenant_id)
    if scope.agency_id:
        stmt = stmt.where(model.agency_id == scope.agency_id)
    if scope.site_id:
        stmt = stmt.where(model.site_id == scope.site_id)
    return stmt


class SqlMetricsRepository(MetricsRepository):
    """Read-only queries against the ERP schema in db.models."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_active_products(self, scope: Scope) -> list[ProductRecord]:
        # Latest stock movement per product
        movement_subq = (
            select(
                StockAdjustment.product_id,
                func.max(StockAdjustment.created_at).label("last_movement_at"),
            )
            .group_by(StockAdjustment.product_id)
            .subquery()
        )
        stmt = (
            select(Product, movement_subq.c.last_movement_at)
            .outerjoin(movement_subq, movement_subq.c.product_id == Product.product_id)
            .where(Product.active.is_(True))
        )
        stmt = _scoped(stmt, Product, scope)

        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).all()

        return [
            ProductRecord(
                product_id=product.product_id,
                name=product.name,
                sku=product.sku,
                available_qty=product.available_quantity or 0,
                status=product.status,
                cost_price=product.cost_price or 0,
                selling_price=product.selling_price or 0,
                reorder_point=product.reorder_point,
                safety_stock=product.safety_stock_level,
                last_movement_at=last_movement_at,
                supplier_id=product.supplier_id,
                site_id=product.site_id,
            )
            for product, last_movement_at in rows
        ]

    async def list_sales_order_lines(self, scope: Scope, since: datetime) -> list[SalesLine]:
        stmt = (
            select(
                SalesOrder.sales_order_id,
                SalesOrderItem.product_id,
                SalesOrderItem.quantity,
                SalesOrderItem.amount,
                SalesOrder.order_date,
            )
            .join(SalesOrder, SalesOrderItem.sales_order_id == SalesOrder.sales_order_id)
            .where(
                SalesOrder.order_date >= since,
                SalesOrder.status != "cancelled",
            )
            .order_by(SalesOrder.order_date)
        )
        stmt = _scoped(stmt, SalesOrder, scope)

        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).all()

        return [
            SalesLine(
                order_id=row.sales_order_id,
                product_id=row.product_id,
                quantity=row.quantity or 0,
                amount=row.amount or 0,
                ordered_at=row.order_date,
            )
            for row in rows
        ]

    async def count_sales_orders(self, scope: Scope, since: datetime) -> int:
        stmt = select(func.count(SalesOrder.sales_order_id)).where(SalesOrder.order_date >= since)
        stmt = _scoped(stmt, SalesOrder, scope)

        async with self.session_factory() as db:
            return (await db.execute(stmt)).scalar() or 0

    async def list_purchase_orders(self, scope: Scope, since: datetime) -> list[PurchaseOrderRecord]:
        # Earliest receipt per purchase order
        receipt_subq = (
            select(
                PurchaseReceive.purchase_order_id,
                func.min(PurchaseReceive.received_date).label("first_received_at"),
            )
            .group_by(PurchaseReceive.purchase_order_id)
            .subquery()
        )
        stmt = (
            select(PurchaseOrder, receipt_subq.c.first_received_at)
            .outerjoin(receipt_subq, receipt_subq.c.purchase_order_id == PurchaseOrder.purchase_order_id)
            .where(PurchaseOrder.order_date >= since)
        )
        stmt = _scoped(stmt, PurchaseOrder, scope)

        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).all()

        return [
            PurchaseOrderRecord(
                purchase_order_id=po.purchase_order_id,
                status=po.status,
                ordered_at=po.order_date,
                expected_delivery_date=po.expected_delivery_date,
                first_received_at=first_received_at,
            )
            for po, first_received_at in rows
        ]

    async def list_backorders(self, scope: Scope) -> list[BackorderRecord]:
        stmt = (
            select(Backorder)
            .options(selectinload(Backorder.items), selectinload(Backorder.customer))
            .where(Backorder.status.in_(OPEN_BACKORDER_STATUSES))
            .order_by(Backorder.original_order_date)
        )
        stmt = _scoped(stmt, Backorder, scope)

        async with self.session_factory() as db:
            backorders = (await db.execute(stmt)).scalars().all()

            records = []
            for backorder in backorders:
                customer = backorder.customer
                customer_name = f"{customer.first_name} {customer.last_name}".strip() if customer else "Unknown customer"
                records.append(
                    BackorderRecord(
                        backorder_id=backorder.backorder_id,
                        status=backorder.status,
                        customer_name=customer_name,
                        ordered_at=backorder.original_order_date,
                        lines=[
                            BackorderLine(product_id=item.product_id, quantity=item.quantity, amount=item.amount or 0)
                            for item in backorder.items
                        ],
                    )
                )
        return records

    async def list_products_by_site(self, scope: Scope) -> list[SiteStock]:
        if not scope.agency_id:
            return []

        stmt = (
            select(Product, Site.name.label("site_name"))
            .join(Site, Product.site_id == Site.site_id)
            .where(
                Product.company_id == scope.tenant_id,
                Site.agency_id == scope.agency_id,
                Site.active.is_(True),
                Product.active.is_(True),
            )
            .order_by(Product.sku, Site.name)
        )

        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).all()

        return [
            SiteStock(
                site_id=product.site_id,
                site_name=site_name,
                product_id=product.product_id,
                sku=product.sku,
                product_name=product.name,
                available_qty=product.available_quantity or 0,
                selling_price=product.selling_price or 0,
            )
            for product, site_name in rows
        ]
