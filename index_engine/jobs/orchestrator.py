"""Cron-facing batch runner for the index jobs.

One invocation walks every index in id order under a wall-clock budget. The
global checkpoint records the last processed index so an interrupted run is
resumed by the next invocation instead of restarted; a failing index is
recorded in the checkpoint and the run moves on.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from index_engine.cache.client import CacheClient
from index_engine.core.logging import get_logger
from index_engine.domain.models import Checkpoint, IndexRecord, JobType
from index_engine.engine.backfill import fill_missing_history
from index_engine.engine.context import EngineContext
from index_engine.engine.mark_to_market import update_index_points
from index_engine.engine.routine import ensure_trading_day, run_screening_routine


logger = get_logger("jobs.orchestrator")


@dataclass
class IndexOutcome:
    index_id: int
    ticker: str
    status: str
    detail: Optional[str] = None


@dataclass
class BatchResult:
    job_type: JobType
    day: date
    status: str = "running"
    processed: int = 0
    total: int = 0
    outcomes: List[IndexOutcome] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    timed_out: bool = False
    message: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.status == "completed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_type": self.job_type.value,
            "date": self.day.isoformat(),
            "status": self.status,
            "processed": self.processed,
            "total": self.total,
            "timed_out": self.timed_out,
            "errors": list(self.errors),
            "message": self.message,
            "indices": [
                {"id": o.index_id, "ticker": o.ticker, "status": o.status, "detail": o.detail}
                for o in self.outcomes
            ],
        }


class BatchOrchestrator:
    """Runs one job type over all indices with checkpointing."""

    def __init__(
        self,
        ctx: EngineContext,
        cache: Optional[CacheClient] = None,
        clock: Callable[[], float] = time.monotonic,
        max_seconds: Optional[float] = None,
    ):
        self.ctx = ctx
        self.cache = cache
        self.clock = clock
        self.max_seconds = (
            max_seconds if max_seconds is not None else ctx.settings.cron_max_execution_seconds
        )
        self._tz = ZoneInfo(ctx.settings.market_timezone)

    def _local_day(self, moment: Optional[datetime]) -> Optional[date]:
        if moment is None:
            return None
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        return moment.astimezone(self._tz).date()

    async def _load_checkpoint(
        self, job_type: JobType, today: date, total: int
    ) -> Optional[Checkpoint]:
        """Checkpoint to resume from; None when today's run already completed."""
        store = self.ctx.store
        checkpoint = await store.get_checkpoint(job_type)
        if checkpoint is not None:
            if checkpoint.completed_at is not None:
                if self._local_day(checkpoint.completed_at) == today:
                    return None
                logger.info(f"[BATCH] {job_type.value}: last run completed earlier, starting over")
                checkpoint = None
            elif self._local_day(checkpoint.updated_at) != today:
                logger.info(f"[BATCH] {job_type.value}: discarding stale partial checkpoint")
                checkpoint = None

        if checkpoint is None:
            checkpoint = Checkpoint(job_type=job_type, total_count=total)
        else:
            checkpoint.total_count = total
            logger.info(
                f"[BATCH] {job_type.value}: resuming after index "
                f"{checkpoint.last_processed_index_id} ({checkpoint.processed_count}/{total})"
            )
        return checkpoint

    async def run(self, job_type: JobType, today: Optional[date] = None) -> BatchResult:
        """Process every pending index for ``job_type``.

        Raises NonTradingDayError for screening on a non-trading day.
        """
        ctx = self.ctx
        today = today or ctx.calendar.today()
        result = BatchResult(job_type=job_type, day=today)

        if job_type == JobType.SCREENING:
            await ensure_trading_day(ctx.calendar, today)
        elif today.weekday() >= 5 or not await ctx.calendar.was_market_open(today):
            result.status = "skipped"
            result.message = "mercado fechado hoje"
            logger.info(f"[BATCH] {job_type.value}: market closed on {today.isoformat()}, skipping")
            return result
        elif not ctx.calendar.session_closed(today):
            result.status = "skipped"
            result.message = "pregão em andamento"
            logger.info(f"[BATCH] {job_type.value}: session of {today.isoformat()} still open, skipping")
            return result

        indices = sorted(await ctx.store.list_indices(), key=lambda i: i.id)
        result.total = len(indices)
        checkpoint = await self._load_checkpoint(job_type, today, len(indices))
        if checkpoint is None:
            result.status = "skipped"
            result.message = "execução já concluída hoje"
            result.processed = len(indices)
            return result

        start = self.clock()
        last_id = checkpoint.last_processed_index_id
        pending = [i for i in indices if last_id is None or i.id > last_id]

        for index in pending:
            elapsed = self.clock() - start
            if elapsed >= self.max_seconds:
                result.timed_out = True
                logger.warning(
                    f"[BATCH] {job_type.value}: budget of {self.max_seconds:.0f}s reached after "
                    f"{checkpoint.processed_count}/{checkpoint.total_count} indices"
                )
                break

            outcome = await self._run_isolated(job_type, index, today, checkpoint)
            result.outcomes.append(outcome)

            checkpoint.last_processed_index_id = index.id
            checkpoint.processed_count += 1
            checkpoint.updated_at = datetime.now(UTC)
            await ctx.store.save_checkpoint(checkpoint)

        result.processed = checkpoint.processed_count
        result.errors = list(checkpoint.errors)

        if checkpoint.processed_count >= checkpoint.total_count:
            checkpoint.completed_at = datetime.now(UTC)
            await ctx.store.save_checkpoint(checkpoint)
            result.status = "completed"
            await self._invalidate_cache()
        else:
            result.status = "partial"

        logger.info(
            f"[BATCH] {job_type.value}: {result.status}, "
            f"{result.processed}/{result.total} processed, {len(result.errors)} error(s)"
        )
        return result

    async def _run_isolated(
        self, job_type: JobType, index: IndexRecord, today: date, checkpoint: Checkpoint
    ) -> IndexOutcome:
        store = self.ctx.store
        try:
            if job_type == JobType.SCREENING:
                outcome = await self._screen(index, today)
            else:
                outcome = await self._mark(index, today)
        except Exception as e:
            logger.exception(f"[BATCH] {job_type.value}: index {index.ticker} failed")
            error = f"{index.ticker}: {e}"
            checkpoint.errors.append(error)
            await store.save_checkpoint(
                Checkpoint(
                    job_type=job_type,
                    index_id=index.id,
                    processed_count=0,
                    total_count=1,
                    errors=[str(e)],
                    updated_at=datetime.now(UTC),
                )
            )
            return IndexOutcome(index.id, index.ticker, "error", str(e))

        await store.clear_checkpoint(job_type, index.id)
        return outcome

    async def _mark(self, index: IndexRecord, today: date) -> IndexOutcome:
        ctx = self.ctx
        if await ctx.store.get_history_point(index.id, today) is not None:
            return IndexOutcome(index.id, index.ticker, "skipped", "já atualizado hoje")

        if await ctx.store.get_last_history_point(index.id) is None:
            marked = await update_index_points(ctx, index.id, today)
            if not marked:
                return IndexOutcome(index.id, index.ticker, "unmarked", "sem preços disponíveis")
            return IndexOutcome(index.id, index.ticker, "updated", "1 dia(s) preenchido(s)")

        filled = await fill_missing_history(ctx, index.id, until=today)
        if await ctx.store.get_history_point(index.id, today) is None:
            return IndexOutcome(
                index.id, index.ticker, "unmarked", f"{filled} dia(s) preenchido(s), hoje pendente"
            )
        return IndexOutcome(index.id, index.ticker, "updated", f"{filled} dia(s) preenchido(s)")

    async def _screen(self, index: IndexRecord, today: date) -> IndexOutcome:
        ctx = self.ctx
        if await ctx.store.has_log_on(index.id, today):
            return IndexOutcome(index.id, index.ticker, "skipped", "já processado hoje")
        outcome = await run_screening_routine(ctx, index, today)
        return IndexOutcome(index.id, index.ticker, outcome.status.value, outcome.reason)

    async def _invalidate_cache(self) -> None:
        if self.cache is None:
            return
        await self.cache.delete(self.ctx.settings.market_indices_cache_key)
