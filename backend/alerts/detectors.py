"""
Smart Alert Detectors — Rule-based anomaly detection over operational data.

Alert Types:
  - stockout_predicted: 30-day sales velocity exhausts stock within 7 days
  - dead_stock: stock on hand with no movement or sale in 90 days
  - stock_imbalance: one site overstocked while a sibling site runs dry
  - high_value_backorder: open backorder worth more than 1,000

Every detector is a side-effect-free coroutine
``detect(repository, scope, now) -> list[AlertCandidate]``; detectors are
independent of one another and safe to run concurrently.
"""

import math
from collections import defaultdict
from datetime import datetime

from alerts.base import AlertCandidate, AlertType, QuickAction, Severity, alert_key
from inventory.repository import SELLABLE_STATUSES, MetricsRepository, Scope, days_ago

# ──────────────────────────────────────────────────────────────────────────
# Detection Rules
# ──────────────────────────────────────────────────────────────────────────

VELOCITY_WINDOW_DAYS = 30
STOCKOUT_HORIZON_DAYS = 7
REORDER_COVER_DAYS = 30
STOCKOUT_CONFIDENCE = 0.9

DEAD_STOCK_WINDOW_DAYS = 90
DEAD_STOCK_HIGH_VALUE = 10_000

IMBALANCE_MAX_STOCK = 50
IMBALANCE_MIN_STOCK = 10
IMBALANCE_RATIO = 3
IMBALANCE_CONFIDENCE = 0.85

BACKORDER_ALERT_VALUE = 1_000
BACKORDER_CRITICAL_VALUE = 5_000
OPEN_BACKORDER_STATUSES = frozenset({"pending", "partial"})

SEVERITY_THRESHOLDS = {
    "stockout_days": {
        "critical": 3,  # Stockout in ≤ 3 days
        "high": 5,  # Stockout in ≤ 5 days
    },
}


def classify_stockout_severity(days_until_stockout: int) -> Severity:
    """Classify alert severity based on days until stockout."""
    thresholds = SEVERITY_THRESHOLDS["stockout_days"]
    if days_until_stockout <= thresholds["critical"]:
        return Severity.CRITICAL
    elif days_until_stockout <= thresholds["high"]:
        return Severity.HIGH
    return Severity.MEDIUM


def classify_dead_stock_severity(tied_up_value: float) -> Severity:
    return Severity.HIGH if tied_up_value > DEAD_STOCK_HIGH_VALUE else Severity.MEDIUM


def classify_backorder_severity(total_value: float) -> Severity:
    return Severity.CRITICAL if total_value > BACKORDER_CRITICAL_VALUE else Severity.HIGH


def _money(value: float) -> float:
    return round(value, 2)


# ──────────────────────────────────────────────────────────────────────────
# Stockout Risk
# ──────────────────────────────────────────────────────────────────────────


async def detect_stockout_risks(
    repository: MetricsRepository,
    scope: Scope,
    now: datetime,
) -> list[AlertCandidate]:
    """Flag sellable products whose recent velocity runs them dry within a week."""
    products = await repository.list_active_products(scope)
    lines = await repository.list_sales_order_lines(scope, days_ago(now, VELOCITY_WINDOW_DAYS))

    sold: dict[str, float] = defaultdict(float)
    for line in lines:
        sold[line.product_id] += line.quantity

    alerts = []
    for product in products:
        if product.status not in SELLABLE_STATUSES:
            continue

        velocity = sold.get(product.product_id, 0.0) / VELOCITY_WINDOW_DAYS
        if velocity <= 0:
            continue

        days_until_stockout = max(0, math.floor(round(product.available_qty / velocity, 9)))
        if days_until_stockout > STOCKOUT_HORIZON_DAYS:
            continue

        reorder_qty = math.ceil(round(velocity * REORDER_COVER_DAYS, 6))
        quick_action = None
        if product.supplier_id:
            quick_action = QuickAction(
                label="Create Purchase Order",
                command="purchase_orders.create",
                params={
                    "product_id": product.product_id,
                    "quantity": reorder_qty,
                    "supplier_id": product.supplier_id,
                },
            )

        alerts.append(
            AlertCandidate(
                key=alert_key(AlertType.STOCKOUT_PREDICTED, product.product_id),
                alert_type=AlertType.STOCKOUT_PREDICTED,
                severity=classify_stockout_severity(days_until_stockout),
                title=f"{product.name} - Stockout in {days_until_stockout} days",
                description=(
                    f"Based on current sales velocity ({velocity:.1f} units/day), "
                    f"this product will be out of stock in {days_until_stockout} days"
                ),
                # A week of lost sales
                financial_impact=_money(product.selling_price * velocity * STOCKOUT_HORIZON_DAYS),
                affected_entity_ids=[product.product_id],
                suggested_action=f"Create purchase order for {reorder_qty} units",
                quick_action=quick_action,
                days_until_critical=days_until_stockout,
                confidence=STOCKOUT_CONFIDENCE,
            )
        )

    return alerts


# ──────────────────────────────────────────────────────────────────────────
# Dead Stock
# ──────────────────────────────────────────────────────────────────────────


async def detect_dead_stock(
    repository: MetricsRepository,
    scope: Scope,
    now: datetime,
) -> list[AlertCandidate]:
    """One scope-level alert aggregating every SKU with no movement or sale in 90 days."""
    cutoff = days_ago(now, DEAD_STOCK_WINDOW_DAYS)
    products = await repository.list_active_products(scope)
    lines = await repository.list_sales_order_lines(scope, cutoff)
    recently_sold = {line.product_id for line in lines}

    dead_stock = [
        p
        for p in products
        if p.available_qty > 0
        and (p.last_movement_at is None or p.last_movement_at < cutoff)
        and p.product_id not in recently_sold
    ]
    if not dead_stock:
        return []

    total_value = sum(p.stock_value for p in dead_stock)
    return [
        AlertCandidate(
            key=alert_key(AlertType.DEAD_STOCK, scope.key),
            alert_type=AlertType.DEAD_STOCK,
            severity=classify_dead_stock_severity(total_value),
            title=f"{len(dead_stock)} SKUs with no movement in {DEAD_STOCK_WINDOW_DAYS} days",
            description=f"Dead stock tying up ${total_value:,.2f} in capital",
            # Negative: capital tied up, not revenue at risk
            financial_impact=_money(-total_value),
            affected_entity_ids=[p.product_id for p in dead_stock],
            suggested_action="Review and mark for clearance or write-off",
        )
    ]


# ──────────────────────────────────────────────────────────────────────────
# Stock Imbalance
# ──────────────────────────────────────────────────────────────────────────


async def detect_stock_imbalances(
    repository: MetricsRepository,
    scope: Scope,
    now: datetime,
) -> list[AlertCandidate]:
    """
    Compare each SKU across the sites of an agency.

    Only runs when the scope is a whole agency (no site filter).
    """
    if not scope.spans_agency:
        return []

    rows = await repository.list_products_by_site(scope)
    if len({row.site_id for row in rows}) < 2:
        return []

    by_sku = defaultdict(list)
    for row in rows:
        by_sku[row.sku].append(row)

    alerts = []
    for sku, entries in by_sku.items():
        if len({e.site_id for e in entries}) < 2:
            continue

        source = max(entries, key=lambda e: e.available_qty)
        target = min(entries, key=lambda e: e.available_qty)
        max_stock, min_stock = source.available_qty, target.available_qty

        is_imbalanced = (
            max_stock > IMBALANCE_MAX_STOCK
            and min_stock < IMBALANCE_MIN_STOCK
            and max_stock / (min_stock or 1) > IMBALANCE_RATIO
        )
        if not is_imbalanced or source.site_id == target.site_id:
            continue

        transfer_qty = math.floor((max_stock - min_stock) / 2)
        alerts.append(
            AlertCandidate(
                key=alert_key(AlertType.STOCK_IMBALANCE, sku),
                alert_type=AlertType.STOCK_IMBALANCE,
                severity=Severity.HIGH,
                title=f"Stock imbalance: {source.product_name}",
                description=(
                    f"{source.site_name} has {max_stock:g} units while {target.site_name} has {min_stock:g}"
                ),
                # Revenue unlocked by moving stock to where it sells
                financial_impact=_money(transfer_qty * source.selling_price),
                affected_entity_ids=[source.product_id, target.product_id],
                suggested_action=f"Transfer {transfer_qty} units from {source.site_name} to {target.site_name}",
                quick_action=QuickAction(
                    label="Create Transfer Order",
                    command="transfer_orders.create",
                    params={
                        "sku": sku,
                        "product_id": source.product_id,
                        "quantity": transfer_qty,
                        "from_site_id": source.site_id,
                        "to_site_id": target.site_id,
                    },
                ),
                confidence=IMBALANCE_CONFIDENCE,
            )
        )

    return alerts


# ──────────────────────────────────────────────────────────────────────────
# High-Value Backorders
# ──────────────────────────────────────────────────────────────────────────


async def detect_high_value_backorders(
    repository: MetricsRepository,
    scope: Scope,
    now: datetime,
) -> list[AlertCandidate]:
    backorders = await repository.list_backorders(scope)

    alerts = []
    for backorder in backorders:
        if backorder.status not in OPEN_BACKORDER_STATUSES:
            continue

        total_value = backorder.total_value
        if total_value <= BACKORDER_ALERT_VALUE:
            continue

        alerts.append(
            AlertCandidate(
                key=alert_key(AlertType.HIGH_VALUE_BACKORDER, backorder.backorder_id),
                alert_type=AlertType.HIGH_VALUE_BACKORDER,
                severity=classify_backorder_severity(total_value),
                title=f"High-value backorder: {backorder.customer_name}",
                description=f"Backorder worth ${total_value:,.2f} pending fulfillment",
                financial_impact=_money(total_value),
                affected_entity_ids=[line.product_id for line in backorder.lines],
                suggested_action="Review and expedite fulfillment",
            )
        )

    return alerts


# Emission order; ties in ranking keep this order
DETECTORS = {
    "stockout_risk": detect_stockout_risks,
    "dead_stock": detect_dead_stock,
    "stock_imbalance": detect_stock_imbalances,
    "high_value_backorder": detect_high_value_backorders,
}
