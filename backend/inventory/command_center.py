"""
Inventory Command Center — Health score + smart alerts + KPIs in one report.

Pipeline (one invocation):
  1. Fan out: five health sub-scores, four alert detectors, the metrics
     bundle and the revenue opportunity finders run concurrently against the
     metrics repository
  2. Fan in: collect results; a failed or timed-out task is isolated and
     reported in `failed_components` instead of aborting the report
  3. Persist: upsert today's health snapshot, then deduplicate + store alerts
     (persistence errors propagate to the caller)
  4. Rank: order alerts by severity + financial impact for the critical view

The engine only returns data. Delivering notifications and executing an
alert's quick action are the caller's job.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.base import AlertCandidate, Severity
from alerts.detectors import DETECTORS
from alerts.ranking import rank_alerts
from alerts.repository import AlertRepository, serialize_alert
from core.config import Settings, get_settings
from db.models import SmartAlert
from inventory.health_score import DEFAULT_SCORES, HealthScore, HealthScoreBreakdown, HealthScoreCalculator
from inventory.metrics import MetricsBundle, compute_metrics
from inventory.opportunities import RevenueOpportunity, find_revenue_opportunities
from inventory.repository import DateRange, MetricsRepository, Scope
from inventory.trend_store import TrendStore

logger = structlog.get_logger()


@dataclass
class CommandCenterReport:
    scope: Scope
    health_score: HealthScore
    alerts: list[SmartAlert]
    all_alerts: list[SmartAlert]
    metrics: MetricsBundle | None
    generated_at: datetime
    opportunities: list[RevenueOpportunity] = field(default_factory=list)
    failed_components: list[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failed_components)

    @property
    def critical_alert_count(self) -> int:
        return sum(1 for a in self.all_alerts if a.severity == Severity.CRITICAL.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope": {
                "tenant_id": self.scope.tenant_id,
                "agency_id": self.scope.agency_id,
                "site_id": self.scope.site_id,
            },
            "health_score": self.health_score.to_dict(),
            "alerts": [serialize_alert(a, self.generated_at) for a in self.alerts],
            "all_alerts": [serialize_alert(a, self.generated_at) for a in self.all_alerts],
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "opportunities": [o.to_dict() for o in self.opportunities],
            "critical_alert_count": self.critical_alert_count,
            "failed_components": list(self.failed_components),
            "partial": self.partial,
            "generated_at": self.generated_at.isoformat(),
        }


class CommandCenter:
    """Public entry point of the health scoring and smart alert engine."""

    def __init__(
        self,
        db: AsyncSession,
        repository: MetricsRepository,
        settings: Settings | None = None,
        detectors: dict | None = None,
    ):
        self.settings = settings or get_settings()
        self.repository = repository
        self.trend_store = TrendStore(db)
        self.calculator = HealthScoreCalculator(repository, self.trend_store, self.settings)
        self.alert_repository = AlertRepository(db, self.settings)
        self.detectors = detectors if detectors is not None else DETECTORS

    async def generate_report(
        self,
        scope: Scope,
        date_range: DateRange | None = None,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> CommandCenterReport:
        now = now or datetime.utcnow()
        limit = self.settings.critical_alert_limit if limit is None else limit
        timeout = self.settings.component_timeout_seconds
        log = logger.bind(scope=scope.key)
        log.info("command_center.started")

        # 1. Fan out
        tasks: dict[str, Any] = {"health_score": self.calculator.calculate_breakdown(scope, now)}
        for name, detector in self.detectors.items():
            tasks[f"detector.{name}"] = asyncio.wait_for(detector(self.repository, scope, now), timeout=timeout)
        tasks["metrics"] = asyncio.wait_for(
            compute_metrics(self.repository, scope, date_range=date_range, now=now),
            timeout=timeout,
        )
        tasks["opportunities"] = asyncio.wait_for(
            find_revenue_opportunities(self.repository, scope, date_range=date_range, now=now),
            timeout=timeout,
        )
        results = dict(zip(tasks, await asyncio.gather(*tasks.values(), return_exceptions=True)))

        # 2. Fan in
        failed: list[str] = []
        for name, result in results.items():
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result

        breakdown_result = results.pop("health_score")
        if isinstance(breakdown_result, Exception):
            log.error("command_center.health_score_failed", error=repr(breakdown_result))
            breakdown = HealthScoreBreakdown(**DEFAULT_SCORES)
            score_failures = list(DEFAULT_SCORES)
        else:
            breakdown, score_failures = breakdown_result
        failed.extend(f"health_score.{name}" for name in score_failures)

        metrics_result = results.pop("metrics")
        metrics: MetricsBundle | None = None
        if isinstance(metrics_result, Exception):
            log.warning("command_center.metrics_failed", error=repr(metrics_result))
            failed.append("metrics")
        else:
            metrics = metrics_result

        opportunities_result = results.pop("opportunities")
        opportunities: list[RevenueOpportunity] = []
        if isinstance(opportunities_result, Exception):
            log.warning("command_center.opportunities_failed", error=repr(opportunities_result))
            failed.append("opportunities")
        else:
            opportunities = opportunities_result

        candidates: list[AlertCandidate] = []
        for name, result in results.items():
            if isinstance(result, Exception):
                log.warning("command_center.detector_failed", detector=name, error=repr(result))
                failed.append(name)
                continue
            candidates.extend(result)

        # 3. Persist
        health = await self.calculator.finalize(
            scope,
            breakdown,
            date_range=date_range,
            now=now,
            failed_components=score_failures,
        )
        persisted = await self.alert_repository.persist(scope, candidates, now=now)

        # 4. Rank
        report = CommandCenterReport(
            scope=scope,
            health_score=health,
            alerts=rank_alerts(persisted, limit=limit),
            all_alerts=persisted,
            metrics=metrics,
            generated_at=now,
            opportunities=opportunities,
            failed_components=failed,
        )
        log.info(
            "command_center.completed",
            health_score=health.current,
            rating=health.rating,
            alerts=len(persisted),
            critical=report.critical_alert_count,
            failed=failed,
        )
        return report

    async def get_active_alerts(self, scope: Scope, limit: int | None = None) -> list[SmartAlert]:
        return await self.alert_repository.get_active(scope, limit=limit)

    async def dismiss_alert(self, alert_id: str, reason: str | None = None) -> SmartAlert:
        return await self.alert_repository.dismiss(alert_id, reason=reason)
