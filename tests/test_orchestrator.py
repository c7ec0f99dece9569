"""Tests for the checkpointed batch orchestrator and the job registry."""

from __future__ import annotations

from datetime import UTC, date, datetime
from unittest.mock import AsyncMock

import pytest

from conftest import TODAY, make_point
from index_engine.core.exceptions import JobError, NonTradingDayError
from index_engine.domain.models import Checkpoint, CompositionEntry, JobType
from index_engine.jobs import BatchOrchestrator, execute_job, list_job_names

ENTRY = date(2024, 1, 2)


def _clock(*ticks):
    values = iter(ticks)
    return lambda: next(values)


def _three_indices(store, config_for_second=None):
    store.add_index(1, "IDX1")
    store.add_index(2, "IDX2", config_for_second)
    store.add_index(3, "IDX3")


# =============================================================================
# Budget and checkpoints
# =============================================================================


class TestBudgetAndCheckpoint:
    """Wall-clock budget and resumption."""

    @pytest.mark.asyncio
    async def test_stops_at_deadline_and_records_progress(self, ctx, store):
        """No index starts once the budget is spent; progress is saved."""
        _three_indices(store)
        cache = AsyncMock()
        orchestrator = BatchOrchestrator(ctx, cache, clock=_clock(0.0, 0.0, 10.0, 60.0))

        result = await orchestrator.run(JobType.MARK_TO_MARKET)

        assert result.status == "partial"
        assert result.timed_out is True
        assert result.processed == 2
        assert [o.index_id for o in result.outcomes] == [1, 2]
        checkpoint = store.checkpoints[(JobType.MARK_TO_MARKET, "__GLOBAL__")]
        assert checkpoint.last_processed_index_id == 2
        assert checkpoint.completed_at is None
        cache.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_resumes_after_last_processed(self, ctx, store):
        _three_indices(store)
        store.checkpoints[(JobType.MARK_TO_MARKET, "__GLOBAL__")] = Checkpoint(
            job_type=JobType.MARK_TO_MARKET,
            last_processed_index_id=1,
            processed_count=1,
            total_count=3,
            updated_at=datetime(2024, 1, 10, 15, 0, tzinfo=UTC),
        )

        result = await BatchOrchestrator(ctx).run(JobType.MARK_TO_MARKET)

        assert result.status == "completed"
        assert result.processed == 3
        assert [o.index_id for o in result.outcomes] == [2, 3]

    @pytest.mark.asyncio
    async def test_stale_partial_checkpoint_is_discarded(self, ctx, store):
        _three_indices(store)
        store.checkpoints[(JobType.MARK_TO_MARKET, "__GLOBAL__")] = Checkpoint(
            job_type=JobType.MARK_TO_MARKET,
            last_processed_index_id=2,
            processed_count=2,
            total_count=3,
            updated_at=datetime(2024, 1, 9, 15, 0, tzinfo=UTC),
        )

        result = await BatchOrchestrator(ctx).run(JobType.MARK_TO_MARKET)

        assert [o.index_id for o in result.outcomes] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_completed_today_is_noop(self, ctx, store):
        _three_indices(store)
        store.checkpoints[(JobType.MARK_TO_MARKET, "__GLOBAL__")] = Checkpoint(
            job_type=JobType.MARK_TO_MARKET,
            processed_count=3,
            total_count=3,
            completed_at=datetime(2024, 1, 10, 20, 0, tzinfo=UTC),
        )

        result = await BatchOrchestrator(ctx).run(JobType.MARK_TO_MARKET)

        assert result.status == "skipped"
        assert result.outcomes == []

    @pytest.mark.asyncio
    async def test_completed_earlier_day_starts_over(self, ctx, store):
        _three_indices(store)
        store.checkpoints[(JobType.MARK_TO_MARKET, "__GLOBAL__")] = Checkpoint(
            job_type=JobType.MARK_TO_MARKET,
            last_processed_index_id=3,
            processed_count=3,
            total_count=3,
            completed_at=datetime(2024, 1, 9, 20, 0, tzinfo=UTC),
        )

        result = await BatchOrchestrator(ctx).run(JobType.MARK_TO_MARKET)

        assert result.status == "completed"
        assert len(result.outcomes) == 3

    @pytest.mark.asyncio
    async def test_completion_invalidates_cache(self, ctx, store):
        _three_indices(store)
        cache = AsyncMock()

        result = await BatchOrchestrator(ctx, cache).run(JobType.MARK_TO_MARKET)

        assert result.completed
        cache.delete.assert_awaited_once_with("market-indices")


# =============================================================================
# Error isolation
# =============================================================================


class TestErrorIsolation:
    """One failing index does not stop the batch."""

    @pytest.mark.asyncio
    async def test_failure_is_recorded_and_batch_continues(self, ctx, store):
        _three_indices(store, config_for_second={"selection": {"topN": 0}})

        result = await BatchOrchestrator(ctx).run(JobType.SCREENING)

        assert result.status == "completed"
        assert result.processed == 3
        assert result.errors == ["IDX2: Index configuration is invalid"]
        assert [o.status for o in result.outcomes] == ["no_candidates", "error", "no_candidates"]
        per_index = store.checkpoints[(JobType.SCREENING, "2")]
        assert per_index.errors == ["Index configuration is invalid"]
        assert (JobType.SCREENING, "1") not in store.checkpoints

    @pytest.mark.asyncio
    async def test_success_clears_per_index_checkpoint(self, ctx, store):
        _three_indices(store)
        store.checkpoints[(JobType.SCREENING, "1")] = Checkpoint(
            job_type=JobType.SCREENING, index_id=1, errors=["falha anterior"]
        )

        await BatchOrchestrator(ctx).run(JobType.SCREENING)

        assert (JobType.SCREENING, "1") not in store.checkpoints


# =============================================================================
# Trading-day rules
# =============================================================================


class TestTradingDays:
    """Closed-market handling per job type."""

    @pytest.mark.asyncio
    async def test_mark_to_market_skips_closed_market(self, ctx, store, calendar):
        _three_indices(store)
        calendar.closed.add(TODAY)

        result = await BatchOrchestrator(ctx).run(JobType.MARK_TO_MARKET)

        assert result.status == "skipped"
        assert store.checkpoints == {}

    @pytest.mark.asyncio
    async def test_mark_to_market_waits_for_session_close(self, ctx, store, calendar):
        """A run during trading hours records nothing, so the post-close run still marks today."""
        _three_indices(store)
        calendar.in_session = True

        result = await BatchOrchestrator(ctx).run(JobType.MARK_TO_MARKET)

        assert result.status == "skipped"
        assert result.outcomes == []
        assert store.checkpoints == {}

        calendar.in_session = False
        result = await BatchOrchestrator(ctx).run(JobType.MARK_TO_MARKET)

        assert result.status == "completed"

    @pytest.mark.asyncio
    async def test_screening_on_weekend_raises(self, ctx, store):
        _three_indices(store)

        with pytest.raises(NonTradingDayError):
            await BatchOrchestrator(ctx).run(JobType.SCREENING, today=date(2024, 1, 13))

        assert store.logs == {}

    @pytest.mark.asyncio
    async def test_screening_skips_index_already_logged(self, ctx, store):
        _three_indices(store)
        await BatchOrchestrator(ctx).run(JobType.SCREENING)
        store.checkpoints.clear()

        result = await BatchOrchestrator(ctx).run(JobType.SCREENING)

        assert [o.status for o in result.outcomes] == ["skipped"] * 3
        assert all(len(store.logs[i]) == 1 for i in (1, 2, 3))


class TestMarkIndex:
    @pytest.mark.asyncio
    async def test_marks_today(self, ctx, store, prices):
        store.add_index(1, "IDX1")
        store.compositions[1] = [CompositionEntry("AAAA3", 1.0, 10.0, ENTRY)]
        store.points[1] = {
            date(2024, 1, 9): make_point(1, date(2024, 1, 9), 100.0, {"AAAA3": (1.0, 10.0, 10.0, ENTRY)})
        }
        prices.set("AAAA3", date(2024, 1, 9), 10.0)
        prices.set("AAAA3", TODAY, 10.5)

        result = await BatchOrchestrator(ctx).run(JobType.MARK_TO_MARKET)

        assert result.outcomes[0].status == "updated"
        assert store.points[1][TODAY].points == pytest.approx(105.0)


# =============================================================================
# Registry and executor
# =============================================================================


class TestJobExecution:
    def test_jobs_registered(self):
        assert list_job_names() == ["index_mark_to_market", "index_screening"]

    @pytest.mark.asyncio
    async def test_unknown_job(self):
        with pytest.raises(JobError) as exc_info:
            await execute_job("nope")
        assert exc_info.value.error_code == "UNKNOWN_JOB"

    @pytest.mark.asyncio
    async def test_app_errors_propagate_unwrapped(self, ctx, store, calendar):
        _three_indices(store)
        calendar.closed.add(TODAY)

        with pytest.raises(NonTradingDayError):
            await execute_job("index_screening", ctx=ctx)

    @pytest.mark.asyncio
    async def test_runs_with_injected_context(self, ctx, store):
        _three_indices(store)

        result = await execute_job("index_mark_to_market", ctx=ctx)

        assert result.status == "completed"
