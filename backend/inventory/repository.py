"""
Metrics Repository — Read-only access to operational inventory data.

The health score calculator and alert detectors never talk to the ORM
directly; they consume this interface so the scoring and detection logic
can run against PostgreSQL, SQLite, or an in-memory fake in tests.

Every method receives an explicit Scope (tenant + optional agency/site)
and, for windowed queries, an explicit `since` timestamp.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta


# ── Scope & windows ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Scope:
    """Aggregation boundary. Each distinct tuple owns its own history and alerts."""

    tenant_id: str
    agency_id: str | None = None
    site_id: str | None = None

    def __post_init__(self):
        if not self.tenant_id:
            raise ValueError("Scope requires a tenant_id")

    @property
    def key(self) -> str:
        """Stable string form, used inside natural alert keys."""
        return ":".join([self.tenant_id, self.agency_id or "", self.site_id or ""])

    def storage_columns(self) -> dict[str, str]:
        """Column values for persisted rows; absent parts are stored as ''."""
        return {
            "company_id": self.tenant_id,
            "agency_id": self.agency_id or "",
            "site_id": self.site_id or "",
        }

    @property
    def spans_agency(self) -> bool:
        """True when the scope covers a whole agency (agency set, no site filter)."""
        return bool(self.agency_id) and not self.site_id


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar-day range supplied by the caller."""

    start_date: date
    end_date: date

    def __post_init__(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")

    @property
    def days(self) -> int:
        """Calendar days covered, both ends included."""
        return (self.end_date - self.start_date).days + 1


def days_ago(now: datetime, days: int) -> datetime:
    return now - timedelta(days=days)


# ── Records returned by the repository ────────────────────────────────────


SHORTAGE_STATUSES = frozenset({"out_of_stock", "critical", "low_stock"})
SELLABLE_STATUSES = frozenset({"low_stock", "available"})


@dataclass
class ProductRecord:
    product_id: str
    name: str
    sku: str
    available_qty: float
    status: str
    cost_price: float
    selling_price: float
    reorder_point: float | None = None
    safety_stock: float | None = None
    last_movement_at: datetime | None = None
    supplier_id: str | None = None
    site_id: str | None = None

    @property
    def healthy_floor(self) -> float:
        """Safety stock when set, otherwise the reorder point, otherwise 0."""
        return self.safety_stock or self.reorder_point or 0

    @property
    def stock_value(self) -> float:
        return self.available_qty * self.cost_price


@dataclass
class SalesLine:
    order_id: str
    product_id: str
    quantity: float
    amount: float
    ordered_at: datetime


@dataclass
class PurchaseOrderRecord:
    purchase_order_id: str
    status: str
    ordered_at: datetime
    expected_delivery_date: date | None = None
    first_received_at: datetime | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == "received"

    @property
    def delivered_on_time(self) -> bool:
        if self.expected_delivery_date is None or self.first_received_at is None:
            return False
        return self.first_received_at.date() <= self.expected_delivery_date


@dataclass
class BackorderLine:
    product_id: str
    quantity: float
    amount: float


@dataclass
class BackorderRecord:
    backorder_id: str
    status: str
    customer_name: str
    ordered_at: datetime
    lines: list[BackorderLine] = field(default_factory=list)

    @property
    def total_value(self) -> float:
        return sum(line.amount for line in self.lines)


@dataclass
class SiteStock:
    """Available quantity of one SKU at one site of an agency."""

    site_id: str
    site_name: str
    product_id: str
    sku: str
    product_name: str
    available_qty: float
    selling_price: float


# ── Abstract repository ───────────────────────────────────────────────────


class MetricsRepository(ABC):
    """
    Read-only queries against the operational store.

    Implementations must be safe to call concurrently: the orchestrator fans
    out every sub-score and detector at once.
    """

    @abstractmethod
    async def list_active_products(self, scope: Scope) -> list[ProductRecord]:
        """Active products in scope with stock, pricing and last stock movement."""
        ...

    @abstractmethod
    async def list_sales_order_lines(self, scope: Scope, since: datetime) -> list[SalesLine]:
        """Lines of non-cancelled sales orders placed at or after `since`."""
        ...

    @abstractmethod
    async def count_sales_orders(self, scope: Scope, since: datetime) -> int:
        """Number of sales orders placed at or after `since`."""
        ...

    @abstractmethod
    async def list_purchase_orders(self, scope: Scope, since: datetime) -> list[PurchaseOrderRecord]:
        """Purchase orders placed at or after `since`, with their first receipt."""
        ...

    @abstractmethod
    async def list_backorders(self, scope: Scope) -> list[BackorderRecord]:
        """Open (pending / partial) backorders with customer and line totals."""
        ...

    @abstractmethod
    async def list_products_by_site(self, scope: Scope) -> list[SiteStock]:
        """Per-site quantities for every active site of the scope's agency."""
        ...
