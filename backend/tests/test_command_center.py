"""
Tests for the command center pipeline: fan-out, partial failure isolation,
persistence, ranking and idempotent re-runs.
"""

import asyncio
import json
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from alerts.detectors import DETECTORS
from core.config import Settings
from db.models import InventoryHealthScore, SmartAlert
from fakes import NOW, TEST_DATABASE_URL, FakeMetricsRepository, daily_sales, make_product
from inventory.command_center import CommandCenter
from inventory.repository import BackorderLine, BackorderRecord, SiteStock


def _site_stock(site_id, qty):
    return SiteStock(
        site_id=site_id,
        site_name=f"Site {site_id}",
        product_id=f"widget-{site_id}",
        sku="WIDGET",
        product_name="Widget",
        available_qty=qty,
        selling_price=12.0,
    )


@pytest.fixture
def busy_repository():
    """One condition for each detector."""
    return FakeMetricsRepository(
        products=[
            make_product("p-stockout", available_qty=4),
            make_product("p-dead", available_qty=20, cost_price=15.0, last_movement_at=None),
        ],
        sales_lines=daily_sales("p-stockout", 2),
        backorders=[
            BackorderRecord(
                backorder_id="bo-1",
                status="pending",
                customer_name="Grace Hopper",
                ordered_at=NOW - timedelta(days=3),
                lines=[BackorderLine(product_id="p-stockout", quantity=300, amount=6000.0)],
            )
        ],
        site_stock=[_site_stock("A", 80), _site_stock("B", 5)],
    )


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar()


@pytest.mark.asyncio
class TestGenerateReport:
    async def test_runs_every_detector_and_ranks(self, test_db, settings, agency_scope, busy_repository):
        center = CommandCenter(test_db, busy_repository, settings)

        report = await center.generate_report(agency_scope, now=NOW)

        assert [a.alert_type for a in report.all_alerts] == [
            "stockout_predicted",
            "dead_stock",
            "stock_imbalance",
            "high_value_backorder",
        ]
        assert [a.alert_type for a in report.alerts] == [
            "high_value_backorder",
            "stockout_predicted",
            "stock_imbalance",
            "dead_stock",
        ]
        assert report.critical_alert_count == 2
        assert report.partial is False
        assert report.failed_components == []
        assert report.metrics is not None
        assert report.metrics.backorder_value == 6000.0
        assert [o.opportunity_id for o in report.opportunities] == [
            "fast_moving:p-stockout",
            "low_stock:p-stockout",
        ]

    async def test_persists_snapshot_and_alerts(self, test_db, settings, agency_scope, busy_repository):
        center = CommandCenter(test_db, busy_repository, settings)

        report = await center.generate_report(agency_scope, now=NOW)

        assert await _count(test_db, InventoryHealthScore) == 1
        assert await _count(test_db, SmartAlert) == 4
        snapshot = await center.trend_store.get_snapshot(agency_scope, NOW.date())
        assert snapshot.overall_score == report.health_score.current

    async def test_rerun_is_idempotent(self, test_db, settings, agency_scope, busy_repository):
        center = CommandCenter(test_db, busy_repository, settings)

        first = await center.generate_report(agency_scope, now=NOW)
        second = await center.generate_report(agency_scope, now=NOW + timedelta(hours=1))

        assert await _count(test_db, InventoryHealthScore) == 1
        assert await _count(test_db, SmartAlert) == 4
        assert [a.alert_id for a in second.all_alerts] == [a.alert_id for a in first.all_alerts]

    async def test_critical_view_is_limited(self, test_db, settings, scope):
        products = [make_product(f"p{i}", available_qty=1) for i in range(7)]
        lines = [line for i in range(7) for line in daily_sales(f"p{i}", 2)]
        center = CommandCenter(test_db, FakeMetricsRepository(products=products, sales_lines=lines), settings)

        report = await center.generate_report(scope, now=NOW)

        assert len(report.all_alerts) == 7
        assert len(report.alerts) == settings.critical_alert_limit

    async def test_explicit_limit_overrides_setting(self, test_db, settings, agency_scope, busy_repository):
        center = CommandCenter(test_db, busy_repository, settings)
        report = await center.generate_report(agency_scope, limit=1, now=NOW)
        assert [a.alert_type for a in report.alerts] == ["high_value_backorder"]

    async def test_failing_source_degrades_to_partial_report(self, test_db, settings, agency_scope, busy_repository):
        busy_repository.failing = {"list_backorders"}
        center = CommandCenter(test_db, busy_repository, settings)

        report = await center.generate_report(agency_scope, now=NOW)

        assert report.partial is True
        assert set(report.failed_components) == {
            "health_score.backorder_rate",
            "detector.high_value_backorder",
            "metrics",
        }
        assert report.health_score.breakdown.backorder_rate == 100
        assert report.metrics is None
        assert [a.alert_type for a in report.all_alerts] == ["stockout_predicted", "dead_stock", "stock_imbalance"]

    async def test_slow_detector_is_isolated(self, test_db, agency_scope, busy_repository):
        async def never_finishes(repository, scope, now):
            await asyncio.sleep(5)
            return []

        settings = Settings(database_url=TEST_DATABASE_URL, component_timeout_seconds=0.1)
        detectors = {**DETECTORS, "slow": never_finishes}
        center = CommandCenter(test_db, busy_repository, settings, detectors=detectors)

        report = await center.generate_report(agency_scope, now=NOW)

        assert report.failed_components == ["detector.slow"]
        assert len(report.all_alerts) == 4

    async def test_failing_opportunities_are_isolated(
        self, test_db, settings, agency_scope, busy_repository, monkeypatch
    ):
        async def broken(*args, **kwargs):
            raise RuntimeError("opportunity finder crashed")

        monkeypatch.setattr("inventory.command_center.find_revenue_opportunities", broken)
        center = CommandCenter(test_db, busy_repository, settings)

        report = await center.generate_report(agency_scope, now=NOW)

        assert report.failed_components == ["opportunities"]
        assert report.opportunities == []
        assert len(report.all_alerts) == 4

    async def test_snapshot_write_failure_propagates(
        self, test_db, settings, agency_scope, busy_repository, monkeypatch
    ):
        center = CommandCenter(test_db, busy_repository, settings)

        async def failing_save(*args, **kwargs):
            raise IntegrityError("INSERT INTO inventory_health_scores", {}, Exception("constraint failed"))

        monkeypatch.setattr(center.trend_store, "save", failing_save)

        with pytest.raises(IntegrityError):
            await center.generate_report(agency_scope, now=NOW)
        assert await _count(test_db, SmartAlert) == 0

    async def test_alert_write_failure_propagates(
        self, test_db, settings, agency_scope, busy_repository, monkeypatch
    ):
        center = CommandCenter(test_db, busy_repository, settings)

        async def failing_persist(*args, **kwargs):
            raise IntegrityError("INSERT INTO smart_alerts", {}, Exception("constraint failed"))

        monkeypatch.setattr(center.alert_repository, "persist", failing_persist)

        with pytest.raises(IntegrityError):
            await center.generate_report(agency_scope, now=NOW)

    async def test_report_serializes_to_json(self, test_db, settings, agency_scope, busy_repository):
        center = CommandCenter(test_db, busy_repository, settings)

        data = (await center.generate_report(agency_scope, now=NOW)).to_dict()

        payload = json.loads(json.dumps(data))
        assert payload["scope"] == {"tenant_id": agency_scope.tenant_id, "agency_id": agency_scope.agency_id, "site_id": None}
        assert payload["partial"] is False
        assert payload["alerts"][0]["quick_action"] is None
        assert payload["all_alerts"][0]["quick_action"]["command"] == "purchase_orders.create"
        assert payload["health_score"]["trend"][-1]["date"] == NOW.date().isoformat()
        assert payload["opportunities"][0]["quick_action"]["params"]["quantity"] == 86


@pytest.mark.asyncio
class TestAlertCommands:
    async def test_dismiss_and_list_active(self, test_db, settings, agency_scope, busy_repository):
        center = CommandCenter(test_db, busy_repository, settings)
        report = await center.generate_report(agency_scope, now=NOW)
        target = report.alerts[0]

        await center.dismiss_alert(target.alert_id, reason="Expedited")
        active = await center.get_active_alerts(agency_scope)

        assert target.alert_id not in {a.alert_id for a in active}
        assert len(active) == 3
