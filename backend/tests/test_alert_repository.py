"""
Tests for alert persistence: deduplication on the natural key, dismissal,
expiry and re-detection after an alert leaves the active state.
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from alerts.base import AlertCandidate, AlertType, QuickAction, Severity, alert_key
from alerts.repository import AlertNotFound, AlertRepository, AlertStateError, serialize_alert
from core.config import Settings
from db.models import SmartAlert
from fakes import AGENCY_ID, NOW, TEST_DATABASE_URL, TENANT_ID
from inventory.repository import Scope


def _candidate(entity_id="p1", severity=Severity.HIGH, impact=280.0, alert_type=AlertType.STOCKOUT_PREDICTED):
    return AlertCandidate(
        key=alert_key(alert_type, entity_id),
        alert_type=alert_type,
        severity=severity,
        title=f"{entity_id} - Stockout in 5 days",
        description="Based on current sales velocity (2.0 units/day)",
        financial_impact=impact,
        affected_entity_ids=[entity_id],
        suggested_action="Create purchase order for 60 units",
        quick_action=QuickAction(label="Create Purchase Order", command="purchase_orders.create", params={"quantity": 60}),
        days_until_critical=5,
        confidence=0.9,
    )


async def _count(db) -> int:
    return (await db.execute(select(func.count()).select_from(SmartAlert))).scalar()


@pytest.mark.asyncio
class TestPersist:
    async def test_persists_new_candidates_as_active(self, test_db, settings, scope):
        repo = AlertRepository(test_db, settings)

        alerts = await repo.persist(scope, [_candidate("p1"), _candidate("p2")], now=NOW)

        assert [a.alert_key for a in alerts] == ["stockout_predicted:p1", "stockout_predicted:p2"]
        assert all(a.status == "active" for a in alerts)
        assert alerts[0].company_id == TENANT_ID
        assert alerts[0].agency_id == ""
        assert alerts[0].quick_action == {"label": "Create Purchase Order", "command": "purchase_orders.create", "params": {"quantity": 60}}
        assert alerts[0].expires_at is None

    async def test_created_at_is_the_detection_run_time(self, test_db, settings, scope):
        repo = AlertRepository(test_db, settings)

        [alert] = await repo.persist(scope, [_candidate("p1")], now=NOW)

        assert alert.created_at == NOW
        assert serialize_alert(alert, NOW)["created_at"] == NOW.isoformat()

    async def test_redetection_is_dropped_not_merged(self, test_db, settings, scope):
        repo = AlertRepository(test_db, settings)
        first = await repo.persist(scope, [_candidate("p1", impact=280.0)], now=NOW)

        second = await repo.persist(scope, [_candidate("p1", impact=999.0)], now=NOW + timedelta(hours=1))

        assert await _count(test_db) == 1
        assert second[0].alert_id == first[0].alert_id
        assert second[0].financial_impact == 280.0

    async def test_duplicate_keys_in_one_batch_collapse(self, test_db, settings, scope):
        repo = AlertRepository(test_db, settings)

        alerts = await repo.persist(scope, [_candidate("p1"), _candidate("p1", impact=5.0)], now=NOW)

        assert len(alerts) == 1
        assert alerts[0].financial_impact == 280.0
        assert await _count(test_db) == 1

    async def test_same_key_in_other_scope_is_independent(self, test_db, settings, scope):
        repo = AlertRepository(test_db, settings)
        other = Scope(tenant_id=TENANT_ID, agency_id=AGENCY_ID)

        await repo.persist(scope, [_candidate("p1")], now=NOW)
        await repo.persist(other, [_candidate("p1")], now=NOW)

        assert await _count(test_db) == 2
        assert len(await repo.get_active(other, now=NOW)) == 1

    async def test_empty_batch_is_a_no_op(self, test_db, settings, scope):
        repo = AlertRepository(test_db, settings)
        assert await repo.persist(scope, [], now=NOW) == []
        assert await _count(test_db) == 0


@pytest.mark.asyncio
class TestDismiss:
    async def test_dismissed_alert_leaves_active_list_but_row_persists(self, test_db, settings, scope):
        repo = AlertRepository(test_db, settings)
        [alert] = await repo.persist(scope, [_candidate("p1")], now=NOW)

        dismissed = await repo.dismiss(alert.alert_id, reason="Supplier already notified", now=NOW)

        assert dismissed.status == "dismissed"
        assert dismissed.dismissed_reason == "Supplier already notified"
        assert dismissed.dismissed_at == NOW
        assert await repo.get_active(scope, now=NOW) == []
        stored = await repo.get(alert.alert_id)
        assert stored is not None
        assert stored.status == "dismissed"

    async def test_dismiss_unknown_alert(self, test_db, settings):
        repo = AlertRepository(test_db, settings)
        with pytest.raises(AlertNotFound):
            await repo.dismiss("missing-alert-id")

    async def test_dismiss_twice_is_rejected(self, test_db, settings, scope):
        repo = AlertRepository(test_db, settings)
        [alert] = await repo.persist(scope, [_candidate("p1")], now=NOW)
        await repo.dismiss(alert.alert_id, now=NOW)

        with pytest.raises(AlertStateError):
            await repo.dismiss(alert.alert_id, now=NOW)

    async def test_condition_is_raised_again_after_dismissal(self, test_db, settings, scope):
        repo = AlertRepository(test_db, settings)
        [alert] = await repo.persist(scope, [_candidate("p1")], now=NOW)
        await repo.dismiss(alert.alert_id, now=NOW)

        [again] = await repo.persist(scope, [_candidate("p1", impact=350.0)], now=NOW + timedelta(days=1))

        assert again.alert_id != alert.alert_id
        assert again.status == "active"
        assert again.financial_impact == 350.0
        assert await _count(test_db) == 2


@pytest.mark.asyncio
class TestExpiry:
    @pytest.fixture
    def ttl_settings(self):
        return Settings(database_url=TEST_DATABASE_URL, alert_ttl_hours=1)

    async def test_expired_alert_is_hidden_and_not_dismissable(self, test_db, ttl_settings, scope):
        repo = AlertRepository(test_db, ttl_settings)
        [alert] = await repo.persist(scope, [_candidate("p1")], now=NOW)
        later = NOW + timedelta(hours=2)

        assert alert.expires_at == NOW + timedelta(hours=1)
        assert await repo.get_active(scope, now=later) == []
        assert serialize_alert(alert, later)["status"] == "expired"
        with pytest.raises(AlertStateError):
            await repo.dismiss(alert.alert_id, now=later)

    async def test_expired_key_is_released_for_redetection(self, test_db, ttl_settings, scope):
        repo = AlertRepository(test_db, ttl_settings)
        [alert] = await repo.persist(scope, [_candidate("p1")], now=NOW)

        [again] = await repo.persist(scope, [_candidate("p1")], now=NOW + timedelta(hours=2))

        assert again.alert_id != alert.alert_id
        old = (await test_db.execute(select(SmartAlert.status).where(SmartAlert.alert_id == alert.alert_id))).scalar()
        assert old == "expired"


@pytest.mark.asyncio
class TestGetActive:
    async def test_ranked_and_limited(self, test_db, settings, scope):
        repo = AlertRepository(test_db, settings)
        await repo.persist(
            scope,
            [
                _candidate("low", severity=Severity.MEDIUM, impact=10.0),
                _candidate("top", severity=Severity.CRITICAL, impact=10.0),
                _candidate("mid", severity=Severity.HIGH, impact=10.0),
            ],
            now=NOW,
        )

        alerts = await repo.get_active(scope, limit=2, now=NOW)

        assert [a.alert_key for a in alerts] == ["stockout_predicted:top", "stockout_predicted:mid"]

    async def test_scope_must_match_exactly(self, test_db, settings, scope):
        repo = AlertRepository(test_db, settings)
        await repo.persist(Scope(tenant_id=TENANT_ID, agency_id=AGENCY_ID), [_candidate("p1")], now=NOW)

        assert await repo.get_active(scope, now=NOW) == []
