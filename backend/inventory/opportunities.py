"""
Revenue Opportunities — Restocking moves ranked by the revenue they could capture.

Finders:
  - stockout: out of stock, yet sold during the demand window; restock 30 days
  - fast_moving: in stock but runs dry within 30 days; top up to 45 days
  - low_stock: shortage status or a tracked item at ≤ 10 units; restock to
    twice the reorder point (at least 50 units)

Read-only like the detectors, but never persisted: opportunities are
recomputed on every report and only the top five by estimated revenue are
returned.
"""

import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from alerts.base import QuickAction
from inventory.repository import DateRange, MetricsRepository, ProductRecord, Scope, days_ago

logger = structlog.get_logger()

OPPORTUNITY_LIMIT = 5
DEMAND_WINDOW_DAYS = 30

STOCKOUT_COVER_DAYS = 30
STOCKOUT_CONFIDENCE = 0.85

FAST_MOVING_RUNWAY_DAYS = 30
FAST_MOVING_COVER_DAYS = 45
FAST_MOVING_MIN_REVENUE = 100
FAST_MOVING_CONFIDENCE = 0.75

LOW_STOCK_UNITS = 10
LOW_STOCK_MIN_TARGET = 50
LOW_STOCK_CANDIDATES = 10
LOW_STOCK_CONFIDENCE = 0.7
LOW_STOCK_STATUSES = frozenset({"low_stock", "critical"})


@dataclass
class OpportunityProduct:
    product_id: str
    name: str
    current_stock: float
    suggested_stock: int
    unit_price: float


@dataclass
class RevenueOpportunity:
    opportunity_id: str
    opportunity_type: str
    title: str
    estimated_revenue: float
    confidence: float
    products: list[OpportunityProduct]
    reasoning: str
    quick_action: QuickAction | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "opportunity_id": self.opportunity_id,
            "opportunity_type": self.opportunity_type,
            "title": self.title,
            "estimated_revenue": self.estimated_revenue,
            "confidence": self.confidence,
            "products": [
                {
                    "product_id": p.product_id,
                    "name": p.name,
                    "current_stock": p.current_stock,
                    "suggested_stock": p.suggested_stock,
                    "unit_price": p.unit_price,
                }
                for p in self.products
            ],
            "reasoning": self.reasoning,
            "quick_action": self.quick_action.to_dict() if self.quick_action else None,
        }


def _restock_action(product: ProductRecord, quantity: int, label: str = "Create Purchase Order") -> QuickAction:
    params: dict[str, Any] = {"product_id": product.product_id, "quantity": quantity}
    if product.supplier_id:
        params["supplier_id"] = product.supplier_id
    return QuickAction(label=label, command="purchase_orders.create", params=params)


def _single(
    kind: str,
    product: ProductRecord,
    title: str,
    revenue: float,
    confidence: float,
    suggested_stock: int,
    reasoning: str,
    action: QuickAction,
) -> RevenueOpportunity:
    return RevenueOpportunity(
        opportunity_id=f"{kind}:{product.product_id}",
        opportunity_type=kind,
        title=title,
        estimated_revenue=round(revenue, 2),
        confidence=confidence,
        products=[
            OpportunityProduct(
                product_id=product.product_id,
                name=product.name,
                current_stock=max(product.available_qty, 0),
                suggested_stock=suggested_stock,
                unit_price=product.selling_price,
            )
        ],
        reasoning=reasoning,
        quick_action=action,
    )


def find_stockout_opportunities(
    products: list[ProductRecord],
    units_sold: dict[str, float],
    window_days: int,
) -> list[RevenueOpportunity]:
    opportunities = []
    for product in products:
        if product.status != "out_of_stock" and product.available_qty > 0:
            continue
        sold = units_sold.get(product.product_id, 0.0)
        if sold <= 0:
            continue

        daily_demand = sold / window_days
        suggested = math.ceil(round(daily_demand * STOCKOUT_COVER_DAYS, 6))
        revenue = suggested * product.selling_price
        opportunities.append(
            _single(
                "stockout",
                product,
                title=f"Restock High-Demand Item: {product.name}",
                revenue=revenue,
                confidence=STOCKOUT_CONFIDENCE,
                suggested_stock=suggested,
                reasoning=(
                    f"Sold {sold:g} units in the selected period but is currently out of stock. "
                    f"Restocking could capture ${revenue:,.0f} in potential revenue."
                ),
                action=_restock_action(product, suggested),
            )
        )
    return opportunities


def find_fast_moving_opportunities(
    products: list[ProductRecord],
    units_sold: dict[str, float],
    window_days: int,
) -> list[RevenueOpportunity]:
    opportunities = []
    for product in products:
        if product.available_qty <= 0:
            continue
        sold = units_sold.get(product.product_id, 0.0)
        if sold <= 0:
            continue

        daily_demand = sold / window_days
        runway_days = product.available_qty / daily_demand
        if runway_days >= FAST_MOVING_RUNWAY_DAYS:
            continue

        suggested = math.ceil(round(daily_demand * FAST_MOVING_COVER_DAYS, 6))
        revenue = (suggested - product.available_qty) * product.selling_price
        if revenue <= FAST_MOVING_MIN_REVENUE:
            continue

        opportunities.append(
            _single(
                "fast_moving",
                product,
                title=f"Increase Stock for Fast-Moving Item: {product.name}",
                revenue=revenue,
                confidence=FAST_MOVING_CONFIDENCE,
                suggested_stock=suggested,
                reasoning=(
                    f"Moving at {daily_demand:.1f} units/day. Current stock will last only "
                    f"{round(runway_days)} days. Increasing stock could generate "
                    f"${revenue:,.0f} in additional revenue."
                ),
                action=_restock_action(
                    product, math.ceil(suggested - product.available_qty), label="Increase Stock Level"
                ),
            )
        )
    return opportunities


def find_low_stock_opportunities(products: list[ProductRecord]) -> list[RevenueOpportunity]:
    """Inventory-only finder; works for tenants with no sales history yet."""
    low = [
        p
        for p in products
        if p.status in LOW_STOCK_STATUSES or (p.reorder_point is not None and p.available_qty <= LOW_STOCK_UNITS)
    ][:LOW_STOCK_CANDIDATES]

    opportunities = []
    for product in low:
        current = max(product.available_qty, 0)
        reorder_level = product.reorder_point or LOW_STOCK_UNITS
        suggested = math.ceil(max(reorder_level * 2, LOW_STOCK_MIN_TARGET))
        additional = suggested - current
        if additional <= 0:
            continue

        revenue = additional * product.selling_price
        margin = (
            (product.selling_price - product.cost_price) / product.selling_price * 100 if product.selling_price else 0.0
        )
        opportunities.append(
            _single(
                "low_stock",
                product,
                title=f"Restock Critical Item: {product.name}",
                revenue=revenue,
                confidence=LOW_STOCK_CONFIDENCE,
                suggested_stock=suggested,
                reasoning=(
                    f"Currently at {current:g} units ({product.status}). Restocking to {suggested} units "
                    f"could generate ${revenue:,.0f} in revenue with {margin:.0f}% margin."
                ),
                action=_restock_action(product, math.ceil(additional)),
            )
        )
    return opportunities


async def find_revenue_opportunities(
    repository: MetricsRepository,
    scope: Scope,
    date_range: DateRange | None = None,
    now: datetime | None = None,
    limit: int = OPPORTUNITY_LIMIT,
) -> list[RevenueOpportunity]:
    """Top `limit` restocking opportunities for the scope, highest estimated revenue first."""
    now = now or datetime.utcnow()
    if date_range is not None:
        window_start = datetime.combine(date_range.start_date, datetime.min.time())
        window_end = datetime.combine(date_range.end_date, datetime.max.time())
        window_days = date_range.days
    else:
        window_start = days_ago(now, DEMAND_WINDOW_DAYS)
        window_end = now
        window_days = DEMAND_WINDOW_DAYS

    products = await repository.list_active_products(scope)
    lines = await repository.list_sales_order_lines(scope, window_start)

    units_sold: dict[str, float] = defaultdict(float)
    for line in lines:
        if line.ordered_at <= window_end:
            units_sold[line.product_id] += line.quantity

    opportunities = (
        find_stockout_opportunities(products, units_sold, window_days)
        + find_fast_moving_opportunities(products, units_sold, window_days)
        + find_low_stock_opportunities(products)
    )
    opportunities.sort(key=lambda o: o.estimated_revenue, reverse=True)

    logger.debug("opportunities.generated", scope=scope.key, found=len(opportunities))
    return opportunities[:limit]
