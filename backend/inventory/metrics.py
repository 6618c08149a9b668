"""
Command Center Metrics — Quick inventory KPIs shown beside the health score.

  - Capital tied up: stock on hand at cost
  - Revenue at risk: shortage-status products, reorder point × cost × 1.5
  - Turnover rate: period sales ÷ inventory value, annualized; compared to the
    preceding window of equal length, with a weekly sparkline
  - Dead stock: value and count of stock with no movement or sale in 90 days
  - Velocity: mean units sold per selling day over the last 7 selling days,
    compared to the 7 selling days before them
  - Backorders / low stock counts

Derived per call from the metrics repository; never persisted.
"""

from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

from inventory.repository import SHORTAGE_STATUSES, DateRange, MetricsRepository, Scope, days_ago

DEFAULT_PERIOD_DAYS = 90
DEAD_STOCK_DAYS = 90
REVENUE_AT_RISK_MARGIN = 1.5
VELOCITY_POINTS = 7
SPARKLINE_WEEKS = 8


@dataclass
class SeriesPoint:
    date: str
    value: float


@dataclass
class Metric:
    value: float
    previous_value: float
    change: float = 0.0
    sparkline: list[SeriesPoint] = field(default_factory=list)


@dataclass
class MetricsBundle:
    capital_tied_up: Metric
    revenue_at_risk: Metric
    turnover_rate: Metric
    dead_stock: Metric
    dead_stock_items: int
    velocity: Metric
    backorder_count: int
    backorder_value: float
    low_stock_count: int

    def to_dict(self) -> dict:
        return asdict(self)


def _pct_change(current: float, previous: float) -> float:
    if previous == 0:
        return 0.0
    return round((current - previous) / previous * 100, 1)


def _turnover(sales_value: float, inventory_value: float, days: int) -> float:
    if inventory_value <= 0 or days <= 0:
        return 0.0
    return round(sales_value / inventory_value * 365 / days, 2)


def _mean_units(points: list[SeriesPoint]) -> float:
    if not points:
        return 0.0
    return round(sum(p.value for p in points) / len(points), 2)


def _steady(value: float) -> Metric:
    """Point-in-time metric with no history available from operational data."""
    return Metric(value=round(value, 2), previous_value=round(value, 2))


async def compute_metrics(
    repository: MetricsRepository,
    scope: Scope,
    date_range: DateRange | None = None,
    now: datetime | None = None,
) -> MetricsBundle:
    now = now or datetime.utcnow()

    if date_range is not None:
        period_start = datetime.combine(date_range.start_date, datetime.min.time())
        period_end = datetime.combine(date_range.end_date, datetime.max.time())
        period_days = date_range.days
    else:
        period_start = days_ago(now, DEFAULT_PERIOD_DAYS)
        period_end = now
        period_days = DEFAULT_PERIOD_DAYS
    previous_start = period_start - timedelta(days=period_days)
    sparkline_start = period_end - timedelta(weeks=SPARKLINE_WEEKS)
    dead_cutoff = days_ago(now, DEAD_STOCK_DAYS)

    products = await repository.list_active_products(scope)
    fetched = await repository.list_sales_order_lines(scope, min(previous_start, sparkline_start, dead_cutoff))
    lines = [line for line in fetched if line.ordered_at <= period_end]
    backorders = await repository.list_backorders(scope)

    inventory_value = sum(p.stock_value for p in products)

    period_lines = [line for line in lines if line.ordered_at >= period_start]
    previous_lines = [line for line in lines if previous_start <= line.ordered_at < period_start]

    # Turnover, current vs. preceding window, plus a weekly annualized sparkline
    turnover = _turnover(sum(line.amount for line in period_lines), inventory_value, period_days)
    previous_turnover = _turnover(sum(line.amount for line in previous_lines), inventory_value, period_days)
    weekly_sales: dict[int, float] = defaultdict(float)
    for line in lines:
        weeks_back = (period_end - line.ordered_at).days // 7
        if weeks_back < SPARKLINE_WEEKS:
            weekly_sales[weeks_back] += line.amount
    turnover_sparkline = [
        SeriesPoint(
            date=(period_end - timedelta(weeks=weeks_back)).date().isoformat(),
            value=_turnover(weekly_sales[weeks_back], inventory_value, 7),
        )
        for weeks_back in range(SPARKLINE_WEEKS - 1, -1, -1)
    ]

    # Dead stock, same rule as the dead stock detector
    recently_sold = {line.product_id for line in fetched if line.ordered_at >= dead_cutoff}
    dead = [
        p
        for p in products
        if p.available_qty > 0
        and (p.last_movement_at is None or p.last_movement_at < dead_cutoff)
        and p.product_id not in recently_sold
    ]

    # Velocity: mean units per selling day, last VELOCITY_POINTS selling days
    # against the VELOCITY_POINTS selling days before them
    units_by_day: dict[str, float] = defaultdict(float)
    for line in period_lines:
        units_by_day[line.ordered_at.date().isoformat()] += line.quantity
    selling_days = [SeriesPoint(date=day, value=units) for day, units in sorted(units_by_day.items())]
    velocity_points = selling_days[-VELOCITY_POINTS:]
    earlier_points = selling_days[-2 * VELOCITY_POINTS : -VELOCITY_POINTS]
    velocity = _mean_units(velocity_points)
    previous_velocity = _mean_units(earlier_points)

    revenue_at_risk = sum(
        (p.reorder_point or 0) * p.cost_price * REVENUE_AT_RISK_MARGIN for p in products if p.status in SHORTAGE_STATUSES
    )

    return MetricsBundle(
        capital_tied_up=_steady(inventory_value),
        revenue_at_risk=_steady(revenue_at_risk),
        turnover_rate=Metric(
            value=turnover,
            previous_value=previous_turnover,
            change=_pct_change(turnover, previous_turnover),
            sparkline=turnover_sparkline,
        ),
        dead_stock=_steady(sum(p.stock_value for p in dead)),
        dead_stock_items=len(dead),
        velocity=Metric(
            value=velocity,
            previous_value=previous_velocity,
            change=_pct_change(velocity, previous_velocity),
            sparkline=velocity_points,
        ),
        backorder_count=len(backorders),
        backorder_value=round(sum(b.total_value for b in backorders), 2),
        low_stock_count=sum(1 for p in products if p.available_qty <= (p.reorder_point or 0)),
    )
