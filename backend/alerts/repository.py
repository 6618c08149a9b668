"""
Alert Repository — Deduplicated persistence and lifecycle of smart alerts.

Lifecycle: active → dismissed (explicit command) | expired (expires_at passed).

Deduplication: at most one active alert per (scope, natural key). A new
detection of a condition that is already active is dropped, not merged,
so an active alert keeps the figures it was created with until it is
dismissed or expires and the condition is detected again.
"""

from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import or_, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.base import AlertCandidate, AlertStatus
from alerts.ranking import rank_alerts
from core.config import Settings, get_settings
from db.models import SmartAlert
from db.session import dialect_insert
from inventory.repository import Scope

logger = structlog.get_logger()


class AlertNotFound(ValueError):
    pass


class AlertStateError(ValueError):
    pass


def _scope_filter(scope: Scope):
    cols = scope.storage_columns()
    return (
        SmartAlert.company_id == cols["company_id"],
        SmartAlert.agency_id == cols["agency_id"],
        SmartAlert.site_id == cols["site_id"],
    )


def _unexpired(now: datetime):
    return or_(SmartAlert.expires_at.is_(None), SmartAlert.expires_at > now)


class AlertRepository:
    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()

    async def persist(
        self,
        scope: Scope,
        candidates: list[AlertCandidate],
        now: datetime | None = None,
    ) -> list[SmartAlert]:
        """
        Insert candidates whose key has no active alert yet.

        Returns the active alert for every distinct candidate key, in
        candidate order: the freshly inserted row or the one already active.
        """
        if not candidates:
            return []
        now = now or datetime.utcnow()

        unique: list[AlertCandidate] = []
        seen: set[str] = set()
        for candidate in candidates:
            if candidate.key not in seen:
                seen.add(candidate.key)
                unique.append(candidate)
        keys = [c.key for c in unique]

        # Release keys held by alerts whose expiry has passed
        expired = await self.db.execute(
            update(SmartAlert)
            .where(
                *_scope_filter(scope),
                SmartAlert.alert_key.in_(keys),
                SmartAlert.status == AlertStatus.ACTIVE.value,
                SmartAlert.expires_at.is_not(None),
                SmartAlert.expires_at <= now,
            )
            .values(status=AlertStatus.EXPIRED.value)
        )

        ttl_hours = self.settings.alert_ttl_hours
        expires_at = now + timedelta(hours=ttl_hours) if ttl_hours else None

        created = 0
        for candidate in unique:
            stmt = (
                dialect_insert(self.db, SmartAlert)
                .values(**self._row_values(scope, candidate, now, expires_at))
                .on_conflict_do_nothing(
                    index_elements=["company_id", "agency_id", "site_id", "alert_key"],
                    index_where=text("status = 'active'"),
                )
            )
            result = await self.db.execute(stmt)
            created += max(result.rowcount or 0, 0)

        await self.db.commit()

        rows = await self.db.execute(
            select(SmartAlert).where(
                *_scope_filter(scope),
                SmartAlert.alert_key.in_(keys),
                SmartAlert.status == AlertStatus.ACTIVE.value,
            )
        )
        by_key = {alert.alert_key: alert for alert in rows.scalars().all()}

        logger.info(
            "alerts.persisted",
            scope=scope.key,
            candidates=len(candidates),
            created=created,
            deduplicated=len(unique) - created,
            expired=max(expired.rowcount or 0, 0),
        )
        return [by_key[key] for key in keys if key in by_key]

    async def get_active(
        self,
        scope: Scope,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> list[SmartAlert]:
        """Active, unexpired alerts for exactly this scope, highest priority first."""
        now = now or datetime.utcnow()
        limit = self.settings.active_alert_limit if limit is None else limit
        result = await self.db.execute(
            select(SmartAlert)
            .where(
                *_scope_filter(scope),
                SmartAlert.status == AlertStatus.ACTIVE.value,
                _unexpired(now),
            )
            .order_by(SmartAlert.created_at)
        )
        return rank_alerts(result.scalars().all(), limit=limit)

    async def get(self, alert_id: str) -> SmartAlert | None:
        return await self.db.get(SmartAlert, alert_id)

    async def dismiss(
        self,
        alert_id: str,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> SmartAlert:
        now = now or datetime.utcnow()
        alert = await self.db.get(SmartAlert, alert_id)
        if alert is None:
            raise AlertNotFound(f"Alert {alert_id} not found")

        status = alert.effective_status(now)
        if status != AlertStatus.ACTIVE.value:
            raise AlertStateError(f"Cannot dismiss alert in '{status}' status. Must be 'active'.")

        alert.status = AlertStatus.DISMISSED.value
        alert.dismissed_reason = reason
        alert.dismissed_at = now
        await self.db.commit()

        logger.info("alerts.dismissed", alert_id=alert_id, alert_key=alert.alert_key, reason=reason)
        return alert

    @staticmethod
    def _row_values(
        scope: Scope,
        candidate: AlertCandidate,
        now: datetime,
        expires_at: datetime | None,
    ) -> dict[str, Any]:
        return {
            **scope.storage_columns(),
            "alert_key": candidate.key,
            "alert_type": candidate.alert_type.value,
            "severity": candidate.severity.value,
            "title": candidate.title,
            "description": candidate.description,
            "financial_impact": candidate.financial_impact,
            "affected_entity_ids": list(candidate.affected_entity_ids),
            "suggested_action": candidate.suggested_action,
            "quick_action": candidate.quick_action.to_dict() if candidate.quick_action else None,
            "days_until_critical": candidate.days_until_critical,
            "confidence": candidate.confidence,
            "status": AlertStatus.ACTIVE.value,
            "expires_at": expires_at,
            "created_at": now,
        }


def serialize_alert(alert: SmartAlert, now: datetime | None = None) -> dict[str, Any]:
    return {
        "alert_id": alert.alert_id,
        "alert_key": alert.alert_key,
        "alert_type": alert.alert_type,
        "severity": alert.severity,
        "title": alert.title,
        "description": alert.description,
        "financial_impact": alert.financial_impact,
        "affected_entity_ids": list(alert.affected_entity_ids or []),
        "suggested_action": alert.suggested_action,
        "quick_action": alert.quick_action,
        "days_until_critical": alert.days_until_critical,
        "confidence": alert.confidence,
        "status": alert.effective_status(now),
        "created_at": alert.created_at.isoformat() if alert.created_at else None,
        "expires_at": alert.expires_at.isoformat() if alert.expires_at else None,
        "dismissed_reason": alert.dismissed_reason,
    }
