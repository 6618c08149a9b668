"""
StockPulse Database Models

Multi-tenant via company_id on all tables, narrowed by optional agency_id / site_id.

Tables:
  Operational (read-only for the engine, owned by the ERP):
  1. companies           - Tenant organizations
  2. sites               - Physical locations, grouped into agencies
  3. products            - Site-level catalog rows with stock + pricing
  4. stock_adjustments   - Stock movement history
  5. sales_orders        - Customer orders
  6. sales_order_items   - Order lines
  7. purchase_orders     - Supplier orders with expected delivery
  8. purchase_receives   - Goods receipts against purchase orders
  9. customers           - Order / backorder customers
  10. backorders         - Unfulfilled customer demand
  11. backorder_items    - Backorder lines

  Engine-owned:
  12. inventory_health_scores - One health score snapshot per (scope, day)
  13. smart_alerts            - Detected anomalies with lifecycle
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship

from db.session import Base


def _new_id() -> str:
    return str(uuid.uuid4())


# ─── 1. Companies ──────────────────────────────────────────────────────────


class Company(Base):
    __tablename__ = "companies"

    company_id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('active', 'inactive', 'trial', 'churned')", name="ck_company_status"),
    )


# ─── 2. Sites ──────────────────────────────────────────────────────────────


class Site(Base):
    __tablename__ = "sites"

    site_id = Column(String(36), primary_key=True, default=_new_id)
    company_id = Column(String(36), ForeignKey("companies.company_id"), nullable=False)
    agency_id = Column(String(36), nullable=True)
    name = Column(String(255), nullable=False)
    active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (Index("ix_sites_company_agency", "company_id", "agency_id"),)

    products = relationship("Product", back_populates="site")


# ─── 3. Products ───────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    product_id = Column(String(36), primary_key=True, default=_new_id)
    company_id = Column(String(36), ForeignKey("companies.company_id"), nullable=False)
    agency_id = Column(String(36), nullable=True)
    site_id = Column(String(36), ForeignKey("sites.site_id"), nullable=True)
    sku = Column(String(100), nullable=False)
    name = Column(String(255), nullable=False)
    available_quantity = Column(Float, nullable=False, default=0)
    reorder_point = Column(Float)
    safety_stock_level = Column(Float)
    status = Column(String(20), nullable=False, default="available")
    cost_price = Column(Float, nullable=False, default=0)
    selling_price = Column(Float, nullable=False, default=0)
    supplier_id = Column(String(36), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_products_scope", "company_id", "agency_id", "site_id"),
        CheckConstraint(
            "status IN ('available', 'low_stock', 'critical', 'out_of_stock')",
            name="ck_product_status",
        ),
    )

    site = relationship("Site", back_populates="products")
    stock_adjustments = relationship("StockAdjustment", back_populates="product")


# ─── 4. Stock Adjustments ──────────────────────────────────────────────────


class StockAdjustment(Base):
    __tablename__ = "stock_adjustments"

    adjustment_id = Column(String(36), primary_key=True, default=_new_id)
    product_id = Column(String(36), ForeignKey("products.product_id"), nullable=False)
    quantity_delta = Column(Float, nullable=False)
    reason = Column(String(50))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_stock_adjustments_product_created", "product_id", "created_at"),)

    product = relationship("Product", back_populates="stock_adjustments")


# ─── 5-6. Sales Orders ─────────────────────────────────────────────────────


class SalesOrder(Base):
    __tablename__ = "sales_orders"

    sales_order_id = Column(String(36), primary_key=True, default=_new_id)
    company_id = Column(String(36), ForeignKey("companies.company_id"), nullable=False)
    agency_id = Column(String(36), nullable=True)
    site_id = Column(String(36), nullable=True)
    customer_id = Column(String(36), ForeignKey("customers.customer_id"), nullable=True)
    order_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    status = Column(String(20), nullable=False, default="pending")

    __table_args__ = (
        Index("ix_sales_orders_scope_date", "company_id", "order_date"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'shipped', 'delivered', 'cancelled')",
            name="ck_sales_order_status",
        ),
    )

    items = relationship("SalesOrderItem", back_populates="sales_order", cascade="all, delete-orphan")


class SalesOrderItem(Base):
    __tablename__ = "sales_order_items"

    item_id = Column(String(36), primary_key=True, default=_new_id)
    sales_order_id = Column(String(36), ForeignKey("sales_orders.sales_order_id"), nullable=False)
    product_id = Column(String(36), ForeignKey("products.product_id"), nullable=False)
    quantity = Column(Float, nullable=False)
    amount = Column(Float, nullable=False, default=0)

    __table_args__ = (Index("ix_sales_order_items_product", "product_id"),)

    sales_order = relationship("SalesOrder", back_populates="items")


# ─── 7-8. Purchase Orders ──────────────────────────────────────────────────


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    purchase_order_id = Column(String(36), primary_key=True, default=_new_id)
    company_id = Column(String(36), ForeignKey("companies.company_id"), nullable=False)
    agency_id = Column(String(36), nullable=True)
    site_id = Column(String(36), nullable=True)
    supplier_id = Column(String(36), nullable=True)
    order_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    expected_delivery_date = Column(Date)
    status = Column(String(20), nullable=False, default="draft")

    __table_args__ = (
        Index("ix_purchase_orders_scope_date", "company_id", "order_date"),
        CheckConstraint(
            "status IN ('draft', 'issued', 'partially_received', 'received', 'cancelled')",
            name="ck_purchase_order_status",
        ),
    )

    receives = relationship("PurchaseReceive", back_populates="purchase_order", cascade="all, delete-orphan")


class PurchaseReceive(Base):
    __tablename__ = "purchase_receives"

    receive_id = Column(String(36), primary_key=True, default=_new_id)
    purchase_order_id = Column(String(36), ForeignKey("purchase_orders.purchase_order_id"), nullable=False)
    received_date = Column(DateTime, nullable=False, default=datetime.utcnow)

    purchase_order = relationship("PurchaseOrder", back_populates="receives")


# ─── 9. Customers ──────────────────────────────────────────────────────────


class Customer(Base):
    __tablename__ = "customers"

    customer_id = Column(String(36), primary_key=True, default=_new_id)
    company_id = Column(String(36), ForeignKey("companies.company_id"), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False, default="")


# ─── 10-11. Backorders ─────────────────────────────────────────────────────


class Backorder(Base):
    __tablename__ = "backorders"

    backorder_id = Column(String(36), primary_key=True, default=_new_id)
    company_id = Column(String(36), ForeignKey("companies.company_id"), nullable=False)
    agency_id = Column(String(36), nullable=True)
    site_id = Column(String(36), nullable=True)
    customer_id = Column(String(36), ForeignKey("customers.customer_id"), nullable=True)
    original_order_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    status = Column(String(20), nullable=False, default="pending")

    __table_args__ = (
        Index("ix_backorders_scope_status", "company_id", "status"),
        CheckConstraint("status IN ('pending', 'partial', 'fulfilled', 'cancelled')", name="ck_backorder_status"),
    )

    customer = relationship("Customer")
    items = relationship("BackorderItem", back_populates="backorder", cascade="all, delete-orphan")


class BackorderItem(Base):
    __tablename__ = "backorder_items"

    item_id = Column(String(36), primary_key=True, default=_new_id)
    backorder_id = Column(String(36), ForeignKey("backorders.backorder_id"), nullable=False)
    product_id = Column(String(36), ForeignKey("products.product_id"), nullable=False)
    quantity = Column(Float, nullable=False)
    amount = Column(Float, nullable=False, default=0)

    backorder = relationship("Backorder", back_populates="items")


# ─── 12. Inventory Health Scores ───────────────────────────────────────────


class InventoryHealthScore(Base):
    """One snapshot per (company, agency, site, day). Absent scope parts are stored as ''."""

    __tablename__ = "inventory_health_scores"

    id = Column(String(36), primary_key=True, default=_new_id)
    company_id = Column(String(36), nullable=False)
    agency_id = Column(String(36), nullable=False, default="")
    site_id = Column(String(36), nullable=False, default="")
    date = Column(Date, nullable=False)
    overall_score = Column(Integer, nullable=False)
    stock_level_adequacy = Column(Integer, nullable=False)
    turnover_rate = Column(Integer, nullable=False)
    aging_inventory = Column(Integer, nullable=False)
    backorder_rate = Column(Integer, nullable=False)
    supplier_reliability = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("company_id", "agency_id", "site_id", "date", name="uq_health_score_scope_date"),
        CheckConstraint("overall_score BETWEEN 0 AND 100", name="ck_health_score_overall_range"),
    )


# ─── 13. Smart Alerts ──────────────────────────────────────────────────────


class SmartAlert(Base):
    __tablename__ = "smart_alerts"

    alert_id = Column(String(36), primary_key=True, default=_new_id)
    alert_key = Column(String(255), nullable=False)
    company_id = Column(String(36), nullable=False)
    agency_id = Column(String(36), nullable=False, default="")
    site_id = Column(String(36), nullable=False, default="")
    alert_type = Column(String(50), nullable=False)
    severity = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    financial_impact = Column(Float, nullable=False, default=0)
    affected_entity_ids = Column(JSON, nullable=False, default=list)
    suggested_action = Column(Text, nullable=False)
    quick_action = Column(JSON, nullable=True)
    days_until_critical = Column(Integer, nullable=True)
    confidence = Column(Float, nullable=True)
    status = Column(String(20), nullable=False, default="active")
    dismissed_reason = Column(Text, nullable=True)
    dismissed_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_smart_alerts_scope_status", "company_id", "agency_id", "site_id", "status"),
        # At most one active alert per natural key within a scope
        Index(
            "uq_smart_alerts_active_key",
            "company_id",
            "agency_id",
            "site_id",
            "alert_key",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        CheckConstraint(
            "alert_type IN ('stockout_predicted', 'dead_stock', 'stock_imbalance', 'high_value_backorder')",
            name="ck_smart_alert_type",
        ),
        CheckConstraint("severity IN ('low', 'medium', 'high', 'critical')", name="ck_smart_alert_severity"),
        CheckConstraint("status IN ('active', 'dismissed', 'expired')", name="ck_smart_alert_status"),
        CheckConstraint("confidence IS NULL OR (confidence >= 0 AND confidence <= 1)", name="ck_smart_alert_confidence"),
    )

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.utcnow())

    def effective_status(self, now: datetime | None = None) -> str:
        """Status as seen by readers: an active alert past its expiry reads as expired."""
        if self.status == "active" and self.is_expired(now):
            return "expired"
        return self.status
