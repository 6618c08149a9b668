"""
Trend Store — Daily health score snapshots per scope.

One row per (company, agency, site, date). Writes are a single-row
INSERT ... ON CONFLICT DO UPDATE, so repeated runs on the same day
overwrite rather than duplicate, and concurrent runs for the same scope
resolve to last-write-wins.
"""

from dataclasses import dataclass
from datetime import date, datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import InventoryHealthScore
from db.session import dialect_insert
from inventory.repository import Scope

logger = structlog.get_logger()

SUB_SCORE_COLUMNS = (
    "stock_level_adequacy",
    "turnover_rate",
    "aging_inventory",
    "backorder_rate",
    "supplier_reliability",
)


@dataclass
class TrendPoint:
    date: str
    score: int


def _scope_filter(scope: Scope):
    cols = scope.storage_columns()
    return (
        InventoryHealthScore.company_id == cols["company_id"],
        InventoryHealthScore.agency_id == cols["agency_id"],
        InventoryHealthScore.site_id == cols["site_id"],
    )


class TrendStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def save(self, scope: Scope, day: date, sub_scores: dict[str, int], overall_score: int) -> None:
        """Upsert the snapshot for (scope, day)."""
        missing = [c for c in SUB_SCORE_COLUMNS if c not in sub_scores]
        if missing:
            raise ValueError(f"Missing sub-scores: {', '.join(missing)}")

        values = {
            **scope.storage_columns(),
            "date": day,
            "overall_score": overall_score,
            **{column: sub_scores[column] for column in SUB_SCORE_COLUMNS},
        }
        now = datetime.utcnow()
        stmt = dialect_insert(self.db, InventoryHealthScore).values(**values, created_at=now, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=["company_id", "agency_id", "site_id", "date"],
            set_={
                "overall_score": stmt.excluded.overall_score,
                **{column: getattr(stmt.excluded, column) for column in SUB_SCORE_COLUMNS},
                "updated_at": now,
            },
        )
        await self.db.execute(stmt)
        await self.db.commit()

        logger.info("health_score.snapshot_saved", scope=scope.key, date=day.isoformat(), overall=overall_score)

    async def get_snapshot(self, scope: Scope, day: date) -> InventoryHealthScore | None:
        result = await self.db.execute(
            select(InventoryHealthScore).where(*_scope_filter(scope), InventoryHealthScore.date == day)
        )
        return result.scalar_one_or_none()

    async def get_previous(self, scope: Scope, on_or_before: date) -> InventoryHealthScore | None:
        """Most recent snapshot dated on or before the given day."""
        result = await self.db.execute(
            select(InventoryHealthScore)
            .where(*_scope_filter(scope), InventoryHealthScore.date <= on_or_before)
            .order_by(InventoryHealthScore.date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_trend(self, scope: Scope, start: date, end: date | None = None) -> list[TrendPoint]:
        """Snapshots from `start` (inclusive) to `end` (inclusive, open when None), oldest first."""
        query = select(InventoryHealthScore.date, InventoryHealthScore.overall_score).where(
            *_scope_filter(scope), InventoryHealthScore.date >= start
        )
        if end is not None:
            query = query.where(InventoryHealthScore.date <= end)
        result = await self.db.execute(query.order_by(InventoryHealthScore.date.asc()))
        return [TrendPoint(date=row.date.isoformat(), score=int(row.overall_score)) for row in result.all()]
