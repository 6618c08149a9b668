"""
Command center tables - health score snapshots and smart alerts

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # 1. Inventory health scores (one row per scope per day)
    op.create_table(
        "inventory_health_scores",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("company_id", sa.String(36), nullable=False),
        sa.Column("agency_id", sa.String(36), nullable=False, server_default=""),
        sa.Column("site_id", sa.String(36), nullable=False, server_default=""),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("overall_score", sa.Integer, nullable=False),
        sa.Column("stock_level_adequacy", sa.Integer, nullable=False),
        sa.Column("turnover_rate", sa.Integer, nullable=False),
        sa.Column("aging_inventory", sa.Integer, nullable=False),
        sa.Column("backorder_rate", sa.Integer, nullable=False),
        sa.Column("supplier_reliability", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("company_id", "agency_id", "site_id", "date", name="uq_health_score_scope_date"),
        sa.CheckConstraint("overall_score BETWEEN 0 AND 100", name="ck_health_score_overall_range"),
    )

    # 2. Smart alerts
    op.create_table(
        "smart_alerts",
        sa.Column("alert_id", sa.String(36), primary_key=True),
        sa.Column("alert_key", sa.String(255), nullable=False),
        sa.Column("company_id", sa.String(36), nullable=False),
        sa.Column("agency_id", sa.String(36), nullable=False, server_default=""),
        sa.Column("site_id", sa.String(36), nullable=False, server_default=""),
        sa.Column("alert_type", sa.String(50), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("financial_impact", sa.Float, nullable=False, server_default="0"),
        sa.Column("affected_entity_ids", sa.JSON, nullable=False),
        sa.Column("suggested_action", sa.Text, nullable=False),
        sa.Column("quick_action", sa.JSON),
        sa.Column("days_until_critical", sa.Integer),
        sa.Column("confidence", sa.Float),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("dismissed_reason", sa.Text),
        sa.Column("dismissed_at", sa.DateTime),
        sa.Column("expires_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "alert_type IN ('stockout_predicted', 'dead_stock', 'stock_imbalance', 'high_value_backorder')",
            name="ck_smart_alert_type",
        ),
        sa.CheckConstraint("severity IN ('low', 'medium', 'high', 'critical')", name="ck_smart_alert_severity"),
        sa.CheckConstraint("status IN ('active', 'dismissed', 'expired')", name="ck_smart_alert_status"),
        sa.CheckConstraint(
            "confidence IS NULL OR (confidence >= 0 AND confidence <= 1)",
            name="ck_smart_alert_confidence",
        ),
    )
    op.create_index(
        "ix_smart_alerts_scope_status",
        "smart_alerts",
        ["company_id", "agency_id", "site_id", "status"],
    )
    # Deduplication: at most one active alert per natural key within a scope
    op.create_index(
        "uq_smart_alerts_active_key",
        "smart_alerts",
        ["company_id", "agency_id", "site_id", "alert_key"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )


def downgrade() -> None:
    op.drop_index("uq_smart_alerts_active_key", table_name="smart_alerts")
    op.drop_index("ix_smart_alerts_scope_status", table_name="smart_alerts")
    op.drop_table("smart_alerts")
    op.drop_table("inventory_health_scores")
