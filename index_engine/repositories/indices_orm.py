"""Index repository using SQLAlchemy ORM.

Usage:
    from index_engine.repositories.indices_orm import IndexRepository

    repo = IndexRepository(database.session)
    composition = await repo.get_composition(index_id)
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from index_engine.core.logging import get_logger
from index_engine.database.orm import (
    IndexComposition,
    IndexCronCheckpoint,
    IndexDefinition,
    IndexHistoryPoint,
    IndexRebalanceLog,
)
from index_engine.domain.models import (
    GLOBAL_SCOPE,
    Checkpoint,
    CompositionEntry,
    HistoryPoint,
    IndexRecord,
    JobType,
    LogAction,
    RebalanceLogEntry,
    SnapshotEntry,
)

logger = get_logger("repositories.indices_orm")

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def _scope(index_id: Optional[int]) -> str:
    return GLOBAL_SCOPE if index_id is None else str(index_id)


def _to_record(row: IndexDefinition) -> IndexRecord:
    return IndexRecord(id=row.id, ticker=row.ticker, name=row.name, config=dict(row.config or {}))


def _to_entry(row: IndexComposition) -> CompositionEntry:
    return CompositionEntry(
        ticker=row.asset_ticker,
        target_weight=float(row.target_weight),
        entry_price=float(row.entry_price),
        entry_date=row.entry_date,
    )


def _to_point(row: IndexHistoryPoint) -> HistoryPoint:
    snapshot = {
        ticker: SnapshotEntry.from_dict(data)
        for ticker, data in (row.composition_snapshot or {}).items()
        if isinstance(data, dict) and data.get("weight") is not None
    }
    return HistoryPoint(
        index_id=row.index_id,
        date=row.date,
        points=float(row.points),
        daily_change=float(row.daily_change or 0.0),
        current_yield=float(row.current_yield) if row.current_yield is not None else None,
        dividends_received=float(row.dividends_received or 0.0),
        dividends_by_ticker={k: float(v) for k, v in (row.dividends_by_ticker or {}).items()},
        composition_snapshot=snapshot,
    )


def _point_values(point: HistoryPoint) -> Dict[str, Any]:
    return {
        "index_id": point.index_id,
        "date": point.date,
        "points": point.points,
        "daily_change": point.daily_change,
        "current_yield": point.current_yield,
        "dividends_received": point.dividends_received,
        "dividends_by_ticker": dict(point.dividends_by_ticker),
        "composition_snapshot": {
            ticker: entry.to_dict() for ticker, entry in point.composition_snapshot.items()
        },
    }


def _to_log(row: IndexRebalanceLog) -> RebalanceLogEntry:
    return RebalanceLogEntry(
        index_id=row.index_id,
        date=row.date,
        action=LogAction(row.action),
        ticker=row.ticker,
        reason=row.reason,
    )


def _to_checkpoint(row: IndexCronCheckpoint) -> Checkpoint:
    return Checkpoint(
        job_type=JobType(row.job_type),
        index_id=None if row.index_scope == GLOBAL_SCOPE else int(row.index_scope),
        last_processed_index_id=row.last_processed_index_id,
        processed_count=row.processed_count,
        total_count=row.total_count,
        errors=list(row.errors or []),
        completed_at=row.completed_at,
        updated_at=row.updated_at,
    )


class IndexRepository:
    """PostgreSQL implementation of the engine's ``IndexStore``."""

    def __init__(self, session_factory: SessionFactory):
        self._session = session_factory

    # ----- definitions ------------------------------------------------------

    async def list_indices(self) -> List[IndexRecord]:
        async with self._session() as session:
            result = await session.execute(select(IndexDefinition).order_by(IndexDefinition.id))
            return [_to_record(row) for row in result.scalars().all()]

    async def get_index(self, index_id: int) -> Optional[IndexRecord]:
        async with self._session() as session:
            row = await session.get(IndexDefinition, index_id)
            return _to_record(row) if row else None

    # ----- composition -------------------------------------------------------

    async def get_composition(self, index_id: int) -> List[CompositionEntry]:
        async with self._session() as session:
            result = await session.execute(
                select(IndexComposition)
                .where(IndexComposition.index_id == index_id)
                .order_by(IndexComposition.asset_ticker)
            )
            return [_to_entry(row) for row in result.scalars().all()]

    async def replace_composition(
        self,
        index_id: int,
        entries: Sequence[CompositionEntry],
        logs: Sequence[RebalanceLogEntry],
        delete_logs_after: Optional[date] = None,
    ) -> None:
        """Delete-all + re-insert composition and append logs in one transaction."""
        async with self._session() as session:
            async with session.begin():
                await session.execute(
                    delete(IndexComposition).where(IndexComposition.index_id == index_id)
                )
                if delete_logs_after is not None:
                    await session.execute(
                        delete(IndexRebalanceLog).where(
                            IndexRebalanceLog.index_id == index_id,
                            IndexRebalanceLog.date > delete_logs_after,
                        )
                    )
                session.add_all(
                    IndexComposition(
                        index_id=index_id,
                        asset_ticker=entry.ticker,
                        target_weight=entry.target_weight,
                        entry_price=entry.entry_price,
                        entry_date=entry.entry_date,
                    )
                    for entry in entries
                )
                session.add_all(
                    IndexRebalanceLog(
                        index_id=log.index_id,
                        date=log.date,
                        action=log.action.value,
                        ticker=log.ticker,
                        reason=log.reason,
                    )
                    for log in logs
                )
        logger.debug(
            f"Replaced composition of index {index_id}: {len(entries)} rows, {len(logs)} logs"
        )

    # ----- history -----------------------------------------------------------

    async def get_history_point(self, index_id: int, day: date) -> Optional[HistoryPoint]:
        async with self._session() as session:
            result = await session.execute(
                select(IndexHistoryPoint).where(
                    IndexHistoryPoint.index_id == index_id,
                    IndexHistoryPoint.date == day,
                )
            )
            row = result.scalar_one_or_none()
            return _to_point(row) if row else None

    async def get_last_history_point(
        self, index_id: int, before: Optional[date] = None
    ) -> Optional[HistoryPoint]:
        query = select(IndexHistoryPoint).where(IndexHistoryPoint.index_id == index_id)
        if before is not None:
            query = query.where(IndexHistoryPoint.date < before)
        query = query.order_by(IndexHistoryPoint.date.desc()).limit(1)
        async with self._session() as session:
            result = await session.execute(query)
            row = result.scalar_one_or_none()
            return _to_point(row) if row else None

    async def list_history_points(
        self, index_id: int, start: Optional[date] = None
    ) -> List[HistoryPoint]:
        query = select(IndexHistoryPoint).where(IndexHistoryPoint.index_id == index_id)
        if start is not None:
            query = query.where(IndexHistoryPoint.date >= start)
        query = query.order_by(IndexHistoryPoint.date)
        async with self._session() as session:
            result = await session.execute(query)
            return [_to_point(row) for row in result.scalars().all()]

    async def insert_history_point(self, point: HistoryPoint) -> bool:
        """Insert with ON CONFLICT DO NOTHING on (index_id, date)."""
        async with self._session() as session:
            stmt = (
                insert(IndexHistoryPoint)
                .values(**_point_values(point))
                .on_conflict_do_nothing(index_elements=["index_id", "date"])
                .returning(IndexHistoryPoint.id)
            )
            result = await session.execute(stmt)
            inserted = result.scalar_one_or_none() is not None
            await session.commit()
            return inserted

    async def upsert_history_point(self, point: HistoryPoint) -> None:
        values = _point_values(point)
        async with self._session() as session:
            stmt = insert(IndexHistoryPoint).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["index_id", "date"],
                set_={
                    key: stmt.excluded[key]
                    for key in values
                    if key not in ("index_id", "date")
                },
            )
            await session.execute(stmt)
            await session.commit()

    async def clear_index_state(self, index_id: int) -> None:
        async with self._session() as session:
            async with session.begin():
                for model in (IndexComposition, IndexHistoryPoint, IndexRebalanceLog):
                    await session.execute(delete(model).where(model.index_id == index_id))
        logger.info(f"Cleared composition, history and logs of index {index_id}")

    # ----- rebalance logs ----------------------------------------------------

    async def has_log_on(self, index_id: int, day: date) -> bool:
        async with self._session() as session:
            result = await session.execute(
                select(IndexRebalanceLog.id)
                .where(
                    IndexRebalanceLog.index_id == index_id,
                    IndexRebalanceLog.date == day,
                )
                .limit(1)
            )
            return result.scalar_one_or_none() is not None

    async def add_log(self, entry: RebalanceLogEntry) -> None:
        async with self._session() as session:
            session.add(
                IndexRebalanceLog(
                    index_id=entry.index_id,
                    date=entry.date,
                    action=entry.action.value,
                    ticker=entry.ticker,
                    reason=entry.reason,
                )
            )
            await session.commit()

    async def list_logs(self, index_id: int) -> List[RebalanceLogEntry]:
        async with self._session() as session:
            result = await session.execute(
                select(IndexRebalanceLog)
                .where(IndexRebalanceLog.index_id == index_id)
                .order_by(IndexRebalanceLog.date, IndexRebalanceLog.id)
            )
            return [_to_log(row) for row in result.scalars().all()]

    # ----- checkpoints -------------------------------------------------------

    async def get_checkpoint(
        self, job_type: JobType, index_id: Optional[int] = None
    ) -> Optional[Checkpoint]:
        async with self._session() as session:
            result = await session.execute(
                select(IndexCronCheckpoint).where(
                    IndexCronCheckpoint.job_type == job_type.value,
                    IndexCronCheckpoint.index_scope == _scope(index_id),
                )
            )
            row = result.scalar_one_or_none()
            return _to_checkpoint(row) if row else None

    async def save_checkpoint(self, checkpoint: Checkpoint) -> None:
        now = datetime.now(timezone.utc)
        values = {
            "last_processed_index_id": checkpoint.last_processed_index_id,
            "processed_count": checkpoint.processed_count,
            "total_count": checkpoint.total_count,
            "errors": list(checkpoint.errors),
            "completed_at": checkpoint.completed_at,
            "updated_at": now,
        }
        async with self._session() as session:
            stmt = insert(IndexCronCheckpoint).values(
                job_type=checkpoint.job_type.value,
                index_scope=checkpoint.scope,
                **values,
            ).on_conflict_do_update(
                index_elements=["job_type", "index_scope"],
                set_=values,
            )
            await session.execute(stmt)
            await session.commit()
        checkpoint.updated_at = now

    async def clear_checkpoint(self, job_type: JobType, index_id: Optional[int] = None) -> None:
        async with self._session() as session:
            await session.execute(
                delete(IndexCronCheckpoint).where(
                    IndexCronCheckpoint.job_type == job_type.value,
                    IndexCronCheckpoint.index_scope == _scope(index_id),
                )
            )
            await session.commit()
