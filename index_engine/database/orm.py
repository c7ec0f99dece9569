"""SQLAlchemy ORM models for theoretical indices.

This module defines all database tables using SQLAlchemy 2.0 ORM style.
Uses async support via asyncpg driver.

Usage:
    from index_engine.database.orm import IndexDefinition

    async with database.session() as session:
        index = await session.get(IndexDefinition, 1)
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Naming convention for constraints and indexes (deterministic names for Alembic)
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class for all ORM models with naming convention."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# =============================================================================
# INDEX DEFINITION
# =============================================================================


class IndexDefinition(Base):
    """Identity and rule document of a theoretical index."""
    __tablename__ = "index_definitions"

    id: Mapped[int] = mapped_column(primary_key=True)
    ticker: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    config: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# =============================================================================
# LIVE COMPOSITION (only mutable current-state table)
# =============================================================================


class IndexComposition(Base):
    """Current holding of one asset inside an index."""
    __tablename__ = "index_compositions"

    id: Mapped[int] = mapped_column(primary_key=True)
    index_id: Mapped[int] = mapped_column(
        ForeignKey("index_definitions.id", ondelete="CASCADE"), nullable=False
    )
    asset_ticker: Mapped[str] = mapped_column(String(20), nullable=False)
    target_weight: Mapped[float] = mapped_column(Float, nullable=False)
    entry_price: Mapped[float] = mapped_column(Float, nullable=False)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        UniqueConstraint("index_id", "asset_ticker", name="uq_index_compositions_index_asset"),
        CheckConstraint("target_weight >= 0 AND target_weight <= 1", name="weight_range"),
    )


# =============================================================================
# HISTORY (append-only)
# =============================================================================


class IndexHistoryPoint(Base):
    """Daily point value with a frozen composition snapshot."""
    __tablename__ = "index_history_points"

    id: Mapped[int] = mapped_column(primary_key=True)
    index_id: Mapped[int] = mapped_column(
        ForeignKey("index_definitions.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    points: Mapped[float] = mapped_column(Float, nullable=False)
    daily_change: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    current_yield: Mapped[float | None] = mapped_column(Float)
    dividends_received: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    dividends_by_ticker: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    composition_snapshot: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("index_id", "date", name="uq_index_history_points_index_date"),
    )


class IndexRebalanceLog(Base):
    """Audit trail of entries, exits and rebalance decisions."""
    __tablename__ = "index_rebalance_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    index_id: Mapped[int] = mapped_column(
        ForeignKey("index_definitions.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    ticker: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_index_rebalance_logs_index_date", "index_id", "date"),
        CheckConstraint("action IN ('ENTRY', 'EXIT', 'REBALANCE')", name="action_valid"),
    )


# =============================================================================
# BATCH CHECKPOINTS
# =============================================================================


class IndexCronCheckpoint(Base):
    """Progress of a batch job, global (scope __GLOBAL__) or per index."""
    __tablename__ = "index_cron_checkpoints"

    id: Mapped[int] = mapped_column(primary_key=True)
    job_type: Mapped[str] = mapped_column(String(30), nullable=False)
    index_scope: Mapped[str] = mapped_column(String(40), nullable=False)
    last_processed_index_id: Mapped[int | None] = mapped_column(Integer)
    processed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("job_type", "index_scope", name="uq_index_cron_checkpoints_job_scope"),
    )
