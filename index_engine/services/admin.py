"""Operator actions on a single index."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from index_engine.core.exceptions import BadRequestError, NotFoundError
from index_engine.core.logging import get_logger
from index_engine.domain.models import Checkpoint, HistoryPoint, IndexRecord, JobType
from index_engine.engine.analytics import (
    AssetPerformance,
    PendingDividend,
    calculate_current_yield,
    check_pending_dividends,
    list_assets_performance,
)
from index_engine.engine.backfill import (
    RecalculationResult,
    fill_missing_history,
    pending_trading_days,
    recalculate_index,
)
from index_engine.engine.context import EngineContext
from index_engine.engine.mark_to_market import update_index_points
from index_engine.engine.routine import run_screening_routine
from index_engine.engine.snapshot import RestoreResult, restore_composition


logger = get_logger("services.admin")

NO_FIRST_POINT_REASON = "no first history point could be created"


@dataclass
class RecreateResult:
    success: bool
    reason: Optional[str] = None
    first_date: Optional[date] = None
    constituents: int = 0
    days_filled: int = 0


@dataclass
class IndexStatus:
    index_id: int
    ticker: str
    last_date: Optional[date]
    last_points: Optional[float]
    pending_days: List[date]
    constituents: int
    current_yield: Optional[float]
    total_dividends: float
    pending_dividends: List[PendingDividend]
    checkpoints: List[Checkpoint] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.pending_days and not any(c.errors for c in self.checkpoints)


class AdminService:
    def __init__(self, ctx: EngineContext):
        self.ctx = ctx

    async def _get_index(self, index_id: int) -> IndexRecord:
        index = await self.ctx.store.get_index(index_id)
        if index is None:
            raise NotFoundError(message=f"Index {index_id} not found", details={"index_id": index_id})
        return index

    async def _latest_trading_day(self, until: date) -> Optional[date]:
        for offset in range(self.ctx.settings.first_point_lookback_days + 1):
            day = until - timedelta(days=offset)
            if day.weekday() >= 5 or not await self.ctx.calendar.was_market_open(day):
                continue
            if self.ctx.calendar.session_closed(day):
                return day
        return None

    async def recreate_index(self, index_id: int) -> RecreateResult:
        """Wipe the index, rescreen and start a new series at 100."""
        ctx = self.ctx
        index = await self._get_index(index_id)
        today = ctx.calendar.today()
        first_day = await self._latest_trading_day(today)
        if first_day is None:
            return RecreateResult(success=False, reason="nenhum dia de pregão recente encontrado")

        await ctx.store.clear_index_state(index.id)
        outcome = await run_screening_routine(ctx, index, first_day)
        if not outcome.rebalanced:
            return RecreateResult(success=False, reason=outcome.reason, first_date=first_day)

        if not await update_index_points(ctx, index.id, first_day):
            logger.error(f"Recreate of {index.ticker} failed: no first point on {first_day}")
            return RecreateResult(success=False, reason=NO_FIRST_POINT_REASON, first_date=first_day)

        filled = await fill_missing_history(ctx, index.id, until=today)
        logger.info(
            f"Index {index.ticker} recreated from {first_day.isoformat()} "
            f"with {len(outcome.composition)} constituents, {filled} day(s) filled"
        )
        return RecreateResult(
            success=True,
            first_date=first_day,
            constituents=len(outcome.composition),
            days_filled=filled,
        )

    async def run_job(self, index_id: int, job: JobType, fill_missing: bool = True) -> Dict[str, Any]:
        """Run one job for one index, outside the batch checkpoints."""
        ctx = self.ctx
        index = await self._get_index(index_id)
        today = ctx.calendar.today()

        if job == JobType.SCREENING:
            outcome = await run_screening_routine(ctx, index, today)
            return {
                "job": job.value,
                "status": outcome.status.value,
                "reason": outcome.reason,
                "changes": len(outcome.changes),
                "selected": outcome.screening.count,
            }

        has_history = await ctx.store.get_last_history_point(index.id) is not None
        if fill_missing and has_history:
            filled = await fill_missing_history(ctx, index.id, until=today)
            return {"job": job.value, "status": "ok", "days_filled": filled}

        marked = await update_index_points(ctx, index.id, today)
        return {"job": job.value, "status": "ok" if marked else "unmarked", "days_filled": int(marked)}

    async def get_status(self, index_id: int) -> IndexStatus:
        ctx = self.ctx
        index = await self._get_index(index_id)
        last: Optional[HistoryPoint] = await ctx.store.get_last_history_point(index.id)
        composition = await ctx.store.get_composition(index.id)

        checkpoints = []
        for job in JobType:
            for scope in (None, index.id):
                checkpoint = await ctx.store.get_checkpoint(job, scope)
                if checkpoint is not None:
                    checkpoints.append(checkpoint)

        return IndexStatus(
            index_id=index.id,
            ticker=index.ticker,
            last_date=last.date if last else None,
            last_points=last.points if last else None,
            pending_days=await pending_trading_days(ctx, index.id),
            constituents=len(composition),
            current_yield=await calculate_current_yield(ctx, index.id),
            total_dividends=last.dividends_received if last else 0.0,
            pending_dividends=await check_pending_dividends(ctx, index.id),
            checkpoints=checkpoints,
        )

    async def restore_composition(self, index_id: int) -> RestoreResult:
        index = await self._get_index(index_id)
        return await restore_composition(self.ctx.store, index.id)

    async def recalculate(self, index_id: int, start_date: Optional[date] = None) -> RecalculationResult:
        index = await self._get_index(index_id)
        if start_date is not None and start_date > self.ctx.calendar.today():
            raise BadRequestError(message="start_date is in the future")
        return await recalculate_index(self.ctx, index.id, start_date)

    async def list_assets_performance(self, index_id: int) -> List[AssetPerformance]:
        index = await self._get_index(index_id)
        return await list_assets_performance(self.ctx.store, index.id)
