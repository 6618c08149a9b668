"""
Tests for revenue opportunity finders: stockout restocks, fast movers,
low stock top-ups and the top-five cut.
"""

from datetime import timedelta

import pytest

from fakes import NOW, FakeMetricsRepository, daily_sales, make_product
from inventory.opportunities import OPPORTUNITY_LIMIT, find_revenue_opportunities
from inventory.repository import DateRange


@pytest.mark.asyncio
class TestStockoutOpportunities:
    async def test_out_of_stock_item_with_recent_demand(self, scope):
        repository = FakeMetricsRepository(
            products=[make_product("oos", available_qty=0, status="out_of_stock", reorder_point=None)],
            sales_lines=daily_sales("oos", 2),
        )

        [opportunity] = await find_revenue_opportunities(repository, scope, now=NOW)

        assert opportunity.opportunity_id == "stockout:oos"
        assert opportunity.estimated_revenue == 1200.0
        assert opportunity.confidence == 0.85
        assert opportunity.products[0].suggested_stock == 60
        assert opportunity.products[0].current_stock == 0
        assert opportunity.quick_action.params == {"product_id": "oos", "quantity": 60, "supplier_id": "supplier-1"}

    async def test_out_of_stock_without_demand_is_skipped(self, scope):
        repository = FakeMetricsRepository(
            products=[make_product("oos", available_qty=0, status="out_of_stock", reorder_point=None)],
        )
        assert await find_revenue_opportunities(repository, scope, now=NOW) == []

    async def test_date_range_sets_demand_window(self, scope):
        end = NOW.date() - timedelta(days=20)
        repository = FakeMetricsRepository(
            products=[make_product("oos", available_qty=0, status="out_of_stock", reorder_point=None)],
            sales_lines=daily_sales("oos", 1, days=60),
        )
        date_range = DateRange(start_date=end - timedelta(days=9), end_date=end)

        [opportunity] = await find_revenue_opportunities(repository, scope, date_range=date_range, now=NOW)

        # 10 sales over a 10-day range, nothing after the range counts
        assert opportunity.products[0].suggested_stock == 30
        assert opportunity.estimated_revenue == 600.0


@pytest.mark.asyncio
class TestFastMovingOpportunities:
    async def test_fast_mover_topped_up_to_45_days(self, scope):
        repository = FakeMetricsRepository(
            products=[
                make_product("fast", available_qty=20, reorder_point=None),
                make_product("slow", available_qty=100, reorder_point=None),
            ],
            sales_lines=daily_sales("fast", 2) + daily_sales("slow", 1),
        )

        [opportunity] = await find_revenue_opportunities(repository, scope, now=NOW)

        assert opportunity.opportunity_id == "fast_moving:fast"
        assert opportunity.estimated_revenue == 1400.0
        assert opportunity.products[0].suggested_stock == 90
        assert opportunity.quick_action.label == "Increase Stock Level"
        assert opportunity.quick_action.params["quantity"] == 70

    async def test_small_upside_is_not_worth_showing(self, scope):
        repository = FakeMetricsRepository(
            products=[make_product("cheap", available_qty=20, reorder_point=None, selling_price=2.0)],
            sales_lines=daily_sales("cheap", 1, price=2.0),
        )
        assert await find_revenue_opportunities(repository, scope, now=NOW) == []


@pytest.mark.asyncio
class TestLowStockOpportunities:
    async def test_low_stock_without_sales_history(self, scope):
        repository = FakeMetricsRepository(
            products=[
                make_product("low", available_qty=5, status="low_stock", reorder_point=30),
                make_product("untracked", available_qty=5, reorder_point=None),
            ],
        )

        [opportunity] = await find_revenue_opportunities(repository, scope, now=NOW)

        assert opportunity.opportunity_id == "low_stock:low"
        assert opportunity.products[0].suggested_stock == 60
        assert opportunity.estimated_revenue == 1100.0
        assert "50% margin" in opportunity.reasoning

    async def test_restock_target_has_a_floor(self, scope):
        repository = FakeMetricsRepository(
            products=[make_product("low", available_qty=2, status="critical", reorder_point=5)],
        )

        [opportunity] = await find_revenue_opportunities(repository, scope, now=NOW)

        assert opportunity.products[0].suggested_stock == 50
        assert opportunity.estimated_revenue == 960.0


@pytest.mark.asyncio
async def test_only_top_five_by_revenue(scope):
    repository = FakeMetricsRepository(
        products=[
            make_product(f"p{i}", available_qty=0, status="critical", reorder_point=None, selling_price=10.0 * (i + 1))
            for i in range(7)
        ],
    )

    opportunities = await find_revenue_opportunities(repository, scope, now=NOW)

    assert len(opportunities) == OPPORTUNITY_LIMIT
    assert [o.opportunity_id for o in opportunities] == [
        "low_stock:p6",
        "low_stock:p5",
        "low_stock:p4",
        "low_stock:p3",
        "low_stock:p2",
    ]
    assert opportunities[0].estimated_revenue == 3500.0
