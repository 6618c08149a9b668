"""
Command Center Scheduler — Fans one beat tick out into per-scope refresh tasks.

Only tenants with something to score are visited: an active or trial company
that owns at least one active product. For each such company the dispatcher
emits a refresh for the company-wide scope and for every agency that has an
active site holding active products (stock imbalance is only detected per
agency). With include_sites, each of those sites gets its own refresh too.

Each scope is a separate task, so one slow or failing scope never delays
the others and Celery retries it on its own.
"""

import asyncio
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()

REFRESH_TASK = "workers.command_center.refresh_command_center"
SCORED_STATUSES = ("active", "trial")


def plan_scopes(
    company_ids: list[str],
    site_rows: list[tuple[str, str | None, str]],
    include_sites: bool = False,
) -> list[dict]:
    """
    Task kwargs for every scope to refresh, company scope first.

    `site_rows` are (company_id, agency_id, site_id) of stocked active sites.
    Sites without an agency only appear at site level.
    """
    by_company: dict[str, list[tuple[str | None, str]]] = {company_id: [] for company_id in company_ids}
    for company_id, agency_id, site_id in site_rows:
        if company_id in by_company:
            by_company[company_id].append((agency_id or None, site_id))

    scopes: list[dict] = []
    for company_id, sites in by_company.items():
        scopes.append({"company_id": company_id})
        for agency_id in sorted({agency for agency, _ in sites if agency}):
            scopes.append({"company_id": company_id, "agency_id": agency_id})
        if include_sites:
            for agency_id, site_id in sorted(sites, key=lambda s: s[1]):
                scopes.append({"company_id": company_id, "agency_id": agency_id, "site_id": site_id})
    return scopes


@celery_app.task(
    name="workers.scheduler.dispatch_command_center_refresh",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def dispatch_command_center_refresh(self, include_sites: bool = False, statuses: list[str] | None = None):
    """Queue one command center refresh per stocked scope of every scored tenant."""
    from core.config import get_settings
    from db.models import Company, Product, Site

    run_id = self.request.id or "manual"
    selected_statuses = tuple(statuses or SCORED_STATUSES)

    async def _dispatch():
        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession)
            async with async_session() as db:
                result = await db.execute(
                    select(Company.company_id)
                    .join(Product, Product.company_id == Company.company_id)
                    .where(Company.status.in_(selected_statuses), Product.active.is_(True))
                    .group_by(Company.company_id, Company.created_at)
                    .order_by(Company.created_at)
                )
                company_ids = [str(row.company_id) for row in result.all()]

                site_rows: list[tuple[str, str | None, str]] = []
                if company_ids:
                    result = await db.execute(
                        select(Site.company_id, Site.agency_id, Site.site_id)
                        .join(Product, Product.site_id == Site.site_id)
                        .where(
                            Site.company_id.in_(company_ids),
                            Site.active.is_(True),
                            Product.active.is_(True),
                        )
                        .distinct()
                    )
                    site_rows = [(row.company_id, row.agency_id, row.site_id) for row in result.all()]

            scopes = plan_scopes(company_ids, site_rows, include_sites=include_sites)
            for kwargs in scopes:
                celery_app.send_task(REFRESH_TASK, kwargs=kwargs)

            summary = {
                "status": "success",
                "company_count": len(company_ids),
                "agency_scopes": sum(1 for s in scopes if "agency_id" in s and "site_id" not in s),
                "site_scopes": sum(1 for s in scopes if "site_id" in s),
                "dispatched_count": len(scopes),
                "include_sites": include_sites,
                "triggered_at": datetime.now(timezone.utc).isoformat(),
                "run_id": run_id,
            }
            logger.info("scheduler.refresh_dispatched", **summary)
            return summary
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_dispatch())
    except Exception as exc:  # noqa: BLE001
        logger.error("scheduler.dispatch_failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
