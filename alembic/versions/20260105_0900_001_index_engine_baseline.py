"""index_engine_baseline

Creates the theoretical index tables: definitions, live composition,
daily history points, rebalance log and batch checkpoints.

Revision ID: 001_index_engine
Revises:
Create Date: 2026-01-05 09:00:00.000000+00:00

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "001_index_engine"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Upgrade database schema.

    Changes:
    1. index_definitions: identity and rule document (JSONB)
    2. index_compositions: current holdings, one row per (index, asset)
    3. index_history_points: one row per (index, date) with composition snapshot
    4. index_rebalance_logs: append-only audit trail
    5. index_cron_checkpoints: batch progress keyed by (job_type, index_scope)
    """
    op.create_table(
        "index_definitions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("ticker", sa.String(20), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("config", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_index_definitions"),
        sa.UniqueConstraint("ticker", name="uq_index_definitions_ticker"),
    )

    op.create_table(
        "index_compositions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("index_id", sa.Integer(), nullable=False),
        sa.Column("asset_ticker", sa.String(20), nullable=False),
        sa.Column("target_weight", sa.Float(), nullable=False),
        sa.Column("entry_price", sa.Float(), nullable=False),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.ForeignKeyConstraint(
            ["index_id"], ["index_definitions.id"],
            name="fk_index_compositions_index_id_index_definitions",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_index_compositions"),
        sa.UniqueConstraint("index_id", "asset_ticker", name="uq_index_compositions_index_asset"),
        sa.CheckConstraint(
            "target_weight >= 0 AND target_weight <= 1",
            name="ck_index_compositions_weight_range",
        ),
    )

    op.create_table(
        "index_history_points",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("index_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("points", sa.Float(), nullable=False),
        sa.Column("daily_change", sa.Float(), nullable=False, server_default="0"),
        sa.Column("current_yield", sa.Float(), nullable=True),
        sa.Column("dividends_received", sa.Float(), nullable=False, server_default="0"),
        sa.Column("dividends_by_ticker", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="{}"),
        sa.Column("composition_snapshot", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.ForeignKeyConstraint(
            ["index_id"], ["index_definitions.id"],
            name="fk_index_history_points_index_id_index_definitions",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_index_history_points"),
        # One point per index per day; writers rely on this for idempotence
        sa.UniqueConstraint("index_id", "date", name="uq_index_history_points_index_date"),
    )

    op.create_table(
        "index_rebalance_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("index_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("ticker", sa.String(20), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.ForeignKeyConstraint(
            ["index_id"], ["index_definitions.id"],
            name="fk_index_rebalance_logs_index_id_index_definitions",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_index_rebalance_logs"),
        sa.CheckConstraint(
            "action IN ('ENTRY', 'EXIT', 'REBALANCE')",
            name="ck_index_rebalance_logs_action_valid",
        ),
    )
    op.create_index(
        "idx_index_rebalance_logs_index_date",
        "index_rebalance_logs",
        ["index_id", "date"],
        unique=False,
    )

    op.create_table(
        "index_cron_checkpoints",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_type", sa.String(30), nullable=False),
        sa.Column("index_scope", sa.String(40), nullable=False),
        sa.Column("last_processed_index_id", sa.Integer(), nullable=True),
        sa.Column("processed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("errors", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="[]"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_index_cron_checkpoints"),
        sa.UniqueConstraint("job_type", "index_scope", name="uq_index_cron_checkpoints_job_scope"),
    )


def downgrade() -> None:
    """Drop the index tables."""
    op.drop_table("index_cron_checkpoints")
    op.drop_index("idx_index_rebalance_logs_index_date", table_name="index_rebalance_logs")
    op.drop_table("index_rebalance_logs")
    op.drop_table("index_history_points")
    op.drop_table("index_compositions")
    op.drop_table("index_definitions")
