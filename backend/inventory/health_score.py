"""
Inventory Health Score — Weighted composite of five operational sub-scores.

Components (each an integer 0-100):
  - Stock level adequacy (30%): share of products comfortably above their floor
  - Turnover rate (25%): annualized 90-day turnover vs. the 6-8x benchmark band
  - Aging inventory (20%): share of products with a stock movement in 90 days
  - Backorder rate (15%): open backorders per sales order over 30 days
  - Supplier reliability (10%): on-time first receipts over 90 days

Overall = round(Σ weight × sub-score). Each sub-score is computed
concurrently and independently; a sub-score whose query fails (or times
out) falls back to its neutral default instead of failing the whole score.

Every computation upserts today's snapshot for the scope into the trend store.
"""

import asyncio
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

import structlog

from core.config import Settings, get_settings
from inventory.repository import (
    SHORTAGE_STATUSES,
    DateRange,
    MetricsRepository,
    ProductRecord,
    PurchaseOrderRecord,
    Scope,
    days_ago,
)
from inventory.trend_store import TrendPoint, TrendStore

logger = structlog.get_logger()

WEIGHTS: dict[str, float] = {
    "stock_level_adequacy": 0.30,
    "turnover_rate": 0.25,
    "aging_inventory": 0.20,
    "backorder_rate": 0.15,
    "supplier_reliability": 0.10,
}

# Score used when a component has no data or its query fails
DEFAULT_SCORES: dict[str, int] = {
    "stock_level_adequacy": 50,
    "turnover_rate": 50,
    "aging_inventory": 50,
    "backorder_rate": 100,
    "supplier_reliability": 75,
}

RATING_THRESHOLDS = (
    (90, "excellent"),
    (75, "good"),
    (60, "fair"),
    (40, "poor"),
)

HEALTHY_FLOOR_MULTIPLIER = 1.5
TURNOVER_BENCHMARK = (6.0, 8.0)  # annual turns
TURNOVER_ZERO_AT = 16.0
BACKORDER_SENSITIVITY = 5
AGING_DAYS = 90
TURNOVER_WINDOW_DAYS = 90
BACKORDER_WINDOW_DAYS = 30
SUPPLIER_WINDOW_DAYS = 90


@dataclass
class HealthScoreBreakdown:
    stock_level_adequacy: int
    turnover_rate: int
    aging_inventory: int
    backorder_rate: int
    supplier_reliability: int

    def as_dict(self) -> dict[str, int]:
        return asdict(self)

    @property
    def overall(self) -> int:
        return compute_overall_score(self)


@dataclass
class HealthScore:
    current: int
    change: float
    previous_score: int
    breakdown: HealthScoreBreakdown
    trend: list[TrendPoint]
    rating: str
    failed_components: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "current": self.current,
            "change": self.change,
            "previous_score": self.previous_score,
            "breakdown": self.breakdown.as_dict(),
            "trend": [asdict(point) for point in self.trend],
            "rating": self.rating,
            "failed_components": list(self.failed_components),
        }


# ──────────────────────────────────────────────────────────────────────────
# Scoring rules
# ──────────────────────────────────────────────────────────────────────────


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative scores (Python's round() is banker's)."""
    return int(math.floor(round(value, 6) + 0.5))


def clamp_score(value: float) -> int:
    return max(0, min(100, round_half_up(value)))


def score_stock_level_adequacy(products: list[ProductRecord]) -> int:
    if not products:
        return DEFAULT_SCORES["stock_level_adequacy"]

    healthy = sum(
        1
        for p in products
        if p.available_qty >= p.healthy_floor * HEALTHY_FLOOR_MULTIPLIER and p.status not in SHORTAGE_STATUSES
    )
    return clamp_score(healthy / len(products) * 100)


def annualized_turnover(sales_value: float, inventory_value: float) -> float | None:
    """Quarterly sales ÷ inventory value, ×4. None when there is no inventory value."""
    if inventory_value <= 0:
        return None
    return (sales_value / inventory_value) * 4


def score_turnover(sales_value: float, inventory_value: float) -> int:
    turnover = annualized_turnover(sales_value, inventory_value)
    if turnover is None:
        return DEFAULT_SCORES["turnover_rate"]
    if sales_value <= 0:
        return 0  # Stock on hand with no sales is poor, not neutral

    low, high = TURNOVER_BENCHMARK
    if low <= turnover <= high:
        score = 100.0
    elif turnover < low:
        score = turnover / low * 100
    else:
        # Too lean: decays linearly to 0 at TURNOVER_ZERO_AT
        score = 100 - (turnover - high) / (TURNOVER_ZERO_AT - high) * 100
    return clamp_score(score)


def score_aging_inventory(products: list[ProductRecord], now: datetime) -> int:
    if not products:
        return DEFAULT_SCORES["aging_inventory"]

    cutoff = days_ago(now, AGING_DAYS)
    aging = sum(1 for p in products if p.last_movement_at is None or p.last_movement_at < cutoff)
    return clamp_score(100 - aging / len(products) * 100)


def score_backorder_rate(backorder_count: int, order_count: int) -> int:
    if order_count <= 0:
        return DEFAULT_SCORES["backorder_rate"]
    backorder_pct = backorder_count / order_count * 100
    return clamp_score(100 - backorder_pct * BACKORDER_SENSITIVITY)


def score_supplier_reliability(purchase_orders: list[PurchaseOrderRecord]) -> int:
    completed = [po for po in purchase_orders if po.is_completed]
    if not completed:
        return DEFAULT_SCORES["supplier_reliability"]
    on_time = sum(1 for po in completed if po.delivered_on_time)
    return clamp_score(on_time / len(completed) * 100)


def compute_overall_score(breakdown: HealthScoreBreakdown) -> int:
    scores = breakdown.as_dict()
    return clamp_score(sum(WEIGHTS[name] * scores[name] for name in WEIGHTS))


def get_health_rating(score: int) -> str:
    for threshold, rating in RATING_THRESHOLDS:
        if score >= threshold:
            return rating
    return "critical"


def calculate_change(current: int, previous: int) -> float:
    """Percent change vs. the previous snapshot, one decimal."""
    if previous == current:
        return 0.0
    if previous == 0:
        # Undefined ratio; reported as no change rather than guessed
        logger.warning("health_score.change_undefined", current=current, previous=previous)
        return 0.0
    return round((current - previous) / previous * 100, 1)


# ──────────────────────────────────────────────────────────────────────────
# Calculator
# ──────────────────────────────────────────────────────────────────────────


class HealthScoreCalculator:
    """Compute, persist and trend the inventory health score for a scope."""

    def __init__(
        self,
        repository: MetricsRepository,
        trend_store: TrendStore,
        settings: Settings | None = None,
    ):
        self.repository = repository
        self.trend_store = trend_store
        self.settings = settings or get_settings()

    async def compute_health_score(
        self,
        scope: Scope,
        date_range: DateRange | None = None,
        now: datetime | None = None,
    ) -> HealthScore:
        now = now or datetime.utcnow()
        breakdown, failed = await self.calculate_breakdown(scope, now)
        return await self.finalize(scope, breakdown, date_range=date_range, now=now, failed_components=failed)

    async def calculate_breakdown(self, scope: Scope, now: datetime) -> tuple[HealthScoreBreakdown, list[str]]:
        """Run the five sub-scores concurrently. Returns the breakdown and the names that fell back."""
        components = {
            "stock_level_adequacy": self._stock_level_adequacy(scope),
            "turnover_rate": self._turnover_rate(scope, now),
            "aging_inventory": self._aging_inventory(scope, now),
            "backorder_rate": self._backorder_rate(scope, now),
            "supplier_reliability": self._supplier_reliability(scope, now),
        }
        timeout = self.settings.component_timeout_seconds
        results = await asyncio.gather(
            *(asyncio.wait_for(coro, timeout=timeout) for coro in components.values()),
            return_exceptions=True,
        )

        scores: dict[str, int] = {}
        failed: list[str] = []
        for name, result in zip(components, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(
                    "health_score.component_failed",
                    component=name,
                    scope=scope.key,
                    error=repr(result),
                    fallback=DEFAULT_SCORES[name],
                )
                scores[name] = DEFAULT_SCORES[name]
                failed.append(name)
            else:
                scores[name] = result

        return HealthScoreBreakdown(**scores), failed

    async def finalize(
        self,
        scope: Scope,
        breakdown: HealthScoreBreakdown,
        date_range: DateRange | None = None,
        now: datetime | None = None,
        failed_components: list[str] | None = None,
    ) -> HealthScore:
        """Compare against history, upsert today's snapshot and read the trend."""
        now = now or datetime.utcnow()
        today = now.date()
        current = breakdown.overall
        max_days = self.settings.max_trend_days

        if date_range is not None:
            previous_date = date_range.start_date - timedelta(days=1)
            trend_start = max(date_range.start_date, date_range.end_date - timedelta(days=max_days))
            trend_end = date_range.end_date
        else:
            previous_date = today - timedelta(days=30)
            trend_start = today - timedelta(days=min(self.settings.default_trend_days, max_days))
            trend_end = None

        previous_record = await self.trend_store.get_previous(scope, previous_date)
        previous_score = previous_record.overall_score if previous_record else current

        await self.trend_store.save(scope, today, breakdown.as_dict(), current)
        trend = await self.trend_store.get_trend(scope, trend_start, trend_end)

        health = HealthScore(
            current=current,
            change=calculate_change(current, previous_score),
            previous_score=previous_score,
            breakdown=breakdown,
            trend=trend,
            rating=get_health_rating(current),
            failed_components=list(failed_components or []),
        )
        logger.info(
            "health_score.computed",
            scope=scope.key,
            current=health.current,
            previous=health.previous_score,
            rating=health.rating,
            failed=health.failed_components,
        )
        return health

    # ── Sub-score queries ────────────────────────────────────────────────

    async def _stock_level_adequacy(self, scope: Scope) -> int:
        products = await self.repository.list_active_products(scope)
        return score_stock_level_adequacy(products)

    async def _turnover_rate(self, scope: Scope, now: datetime) -> int:
        lines = await self.repository.list_sales_order_lines(scope, days_ago(now, TURNOVER_WINDOW_DAYS))
        products = await self.repository.list_active_products(scope)
        sales_value = sum(line.amount for line in lines)
        inventory_value = sum(p.stock_value for p in products)
        return score_turnover(sales_value, inventory_value)

    async def _aging_inventory(self, scope: Scope, now: datetime) -> int:
        products = await self.repository.list_active_products(scope)
        return score_aging_inventory(products, now)

    async def _backorder_rate(self, scope: Scope, now: datetime) -> int:
        since = days_ago(now, BACKORDER_WINDOW_DAYS)
        order_count = await self.repository.count_sales_orders(scope, since)
        backorders = await self.repository.list_backorders(scope)
        recent = sum(1 for b in backorders if b.ordered_at >= since)
        return score_backorder_rate(recent, order_count)

    async def _supplier_reliability(self, scope: Scope, now: datetime) -> int:
        purchase_orders = await self.repository.list_purchase_orders(scope, days_ago(now, SUPPLIER_WINDOW_DAYS))
        return score_supplier_reliability(purchase_orders)
