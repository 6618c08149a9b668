"""
Command Center Router — Health score, smart alerts, revenue opportunities and KPIs.
"""

from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from alerts.repository import AlertNotFound, AlertStateError, serialize_alert
from api.deps import get_command_center
from inventory.command_center import CommandCenter
from inventory.repository import DateRange, Scope

router = APIRouter(prefix="/api/v1/command-center", tags=["command-center"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class AlertResponse(BaseModel):
    alert_id: str
    alert_key: str
    alert_type: str
    severity: str
    title: str
    description: str
    financial_impact: float
    affected_entity_ids: list[str]
    suggested_action: str
    quick_action: dict | None
    days_until_critical: int | None
    confidence: float | None
    status: str
    created_at: datetime | None
    expires_at: datetime | None
    dismissed_reason: str | None


class TrendPointResponse(BaseModel):
    date: str
    score: int


class HealthScoreResponse(BaseModel):
    current: int
    change: float
    previous_score: int
    breakdown: dict[str, int]
    trend: list[TrendPointResponse]
    rating: str
    failed_components: list[str]


class SeriesPointResponse(BaseModel):
    date: str
    value: float


class MetricResponse(BaseModel):
    value: float
    previous_value: float
    change: float
    sparkline: list[SeriesPointResponse]


class MetricsResponse(BaseModel):
    capital_tied_up: MetricResponse
    revenue_at_risk: MetricResponse
    turnover_rate: MetricResponse
    dead_stock: MetricResponse
    dead_stock_items: int
    velocity: MetricResponse
    backorder_count: int
    backorder_value: float
    low_stock_count: int


class OpportunityProductResponse(BaseModel):
    product_id: str
    name: str
    current_stock: float
    suggested_stock: int
    unit_price: float


class OpportunityResponse(BaseModel):
    opportunity_id: str
    opportunity_type: str
    title: str
    estimated_revenue: float
    confidence: float
    products: list[OpportunityProductResponse]
    reasoning: str
    quick_action: dict | None


class ScopeResponse(BaseModel):
    tenant_id: str
    agency_id: str | None
    site_id: str | None


class CommandCenterResponse(BaseModel):
    scope: ScopeResponse
    health_score: HealthScoreResponse
    alerts: list[AlertResponse]
    all_alerts: list[AlertResponse]
    metrics: MetricsResponse | None
    opportunities: list[OpportunityResponse]
    critical_alert_count: int
    failed_components: list[str]
    partial: bool
    generated_at: datetime


class DismissRequest(BaseModel):
    reason: str | None = None


# ─── Helpers ────────────────────────────────────────────────────────────────


def _build_scope(tenant_id: str, agency_id: str | None, site_id: str | None) -> Scope:
    try:
        return Scope(tenant_id=tenant_id, agency_id=agency_id or None, site_id=site_id or None)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _build_date_range(start_date: date | None, end_date: date | None) -> DateRange | None:
    if start_date is None and end_date is None:
        return None
    if start_date is None or end_date is None:
        raise HTTPException(status_code=400, detail="start_date and end_date must be provided together")
    try:
        return DateRange(start_date=start_date, end_date=end_date)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("", response_model=CommandCenterResponse)
async def get_command_center_report(
    tenant_id: str = Query(..., min_length=1),
    agency_id: str | None = None,
    site_id: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int | None = Query(None, ge=1, le=100),
    command_center: CommandCenter = Depends(get_command_center),
):
    """Compute the health score, run every detector and return the ranked critical alerts and opportunities."""
    scope = _build_scope(tenant_id, agency_id, site_id)
    date_range = _build_date_range(start_date, end_date)
    report = await command_center.generate_report(scope, date_range=date_range, limit=limit)
    return report.to_dict()


@router.get("/alerts", response_model=list[AlertResponse])
async def list_active_alerts(
    tenant_id: str = Query(..., min_length=1),
    agency_id: str | None = None,
    site_id: str | None = None,
    limit: int | None = Query(None, ge=1, le=100),
    command_center: CommandCenter = Depends(get_command_center),
):
    """Active, unexpired alerts for the scope, highest priority first."""
    scope = _build_scope(tenant_id, agency_id, site_id)
    alerts = await command_center.get_active_alerts(scope, limit=limit)
    return [serialize_alert(alert) for alert in alerts]


@router.patch("/alerts/{alert_id}/dismiss", response_model=AlertResponse)
async def dismiss_alert(
    alert_id: str,
    body: DismissRequest | None = None,
    command_center: CommandCenter = Depends(get_command_center),
):
    """Dismiss an active alert. The same condition may be raised again by a later run."""
    reason = body.reason if body else None
    try:
        alert = await command_center.dismiss_alert(alert_id, reason=reason)
    except AlertNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except AlertStateError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return serialize_alert(alert)
