"""Create reports and plugin_results tables.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision: str = "0001_initial"
down_revision: str | None = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "reports",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("domain", sa.String(length=253), nullable=False),
        sa.Column("dns_scan_id", sa.String(length=36), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("tier", sa.String(length=10), nullable=False),
        sa.Column("snapshot", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_reports_domain", "reports", ["domain"])
    op.create_index("ix_reports_dns_scan_id", "reports", ["dns_scan_id"])
    op.create_index("ix_reports_created_at", "reports", ["created_at"])

    op.create_table(
        "plugin_results",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("domain", sa.String(length=253), nullable=False),
        sa.Column("dns_scan_id", sa.String(length=36), nullable=False),
        sa.Column("plugin", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=10), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("produced_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_seconds", sa.Float(), nullable=False),
    )
    op.create_index("ix_plugin_results_dns_scan_id", "plugin_results", ["dns_scan_id"])
    op.create_index(
        "ix_plugin_results_domain_produced_at",
        "plugin_results",
        ["domain", "produced_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_plugin_results_domain_produced_at", table_name="plugin_results")
    op.drop_index("ix_plugin_results_dns_scan_id", table_name="plugin_results")
    op.drop_table("plugin_results")
    op.drop_index("ix_reports_created_at", table_name="reports")
    op.drop_index("ix_reports_dns_scan_id", table_name="reports")
    op.drop_index("ix_reports_domain", table_name="reports")
    op.drop_table("reports")
