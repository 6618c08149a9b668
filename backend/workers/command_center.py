"""
Command Center Worker — Periodic health score snapshot and alert detection.

Refreshes a single scope per task; workers.scheduler decides which scopes
exist. Keeps the daily trend point and active alerts current even when no
one opens the dashboard.

Schedule: hourly (company + agencies), nightly with sites
Queue: command_center
"""

import asyncio
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.command_center.refresh_command_center",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def refresh_command_center(self, company_id: str, agency_id: str | None = None, site_id: str | None = None):
    """Generate and persist a command center report for one scope."""
    from core.config import get_settings
    from inventory.command_center import CommandCenter
    from inventory.repository import Scope
    from inventory.sql_repository import SqlMetricsRepository

    run_id = self.request.id or "manual"
    scope = Scope(tenant_id=company_id, agency_id=agency_id, site_id=site_id)
    logger.info("command_center.refresh_started", scope=scope.key, run_id=run_id)

    async def _refresh():
        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            repository = SqlMetricsRepository(async_session)
            async with async_session() as db:
                report = await CommandCenter(db, repository, settings).generate_report(scope)

            summary = {
                "status": "partial" if report.partial else "success",
                "scope": scope.key,
                "health_score": report.health_score.current,
                "rating": report.health_score.rating,
                "active_alerts": len(report.all_alerts),
                "critical_alerts": report.critical_alert_count,
                "failed_components": report.failed_components,
                "completed_at": datetime.now(timezone.utc).isoformat(),
                "run_id": run_id,
            }
            logger.info("command_center.refresh_completed", **summary)
            return summary
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_refresh())
    except Exception as exc:  # noqa: BLE001
        logger.error("command_center.refresh_failed", scope=scope.key, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
