"""Tests for the composition manager and the screening routine."""

from __future__ import annotations

from datetime import date

import pytest

from conftest import TODAY, make_company
from index_engine.core.exceptions import NonTradingDayError
from index_engine.domain.models import (
    SYSTEM_TICKER,
    Candidate,
    CompositionChange,
    CompositionEntry,
    LogAction,
    Valuation,
)
from index_engine.engine.composition import (
    NO_CANDIDATES_MESSAGE,
    NO_CHANGES_MESSAGE,
    build_composition,
    ensure_screening_log_once_per_day,
    update_composition,
)
from index_engine.engine.routine import RoutineStatus, run_screening_routine

ENTRY = date(2024, 1, 2)


# =============================================================================
# Composition manager
# =============================================================================


class TestBuildComposition:
    """Rows for a new target set."""

    def test_kept_tickers_keep_entry_price_and_date(self):
        current = [CompositionEntry("AAAA3", 0.5, 8.0, ENTRY), CompositionEntry("BBBB3", 0.5, 9.0, ENTRY)]
        candidates = [
            Candidate(ticker="AAAA3", current_price=12.0),
            Candidate(ticker="CCCC3", current_price=30.0),
        ]

        entries = build_composition(
            candidates, {"AAAA3": 1.0, "CCCC3": 1.0}, TODAY, current, {"CCCC3": 31.0}
        )

        by_ticker = {e.ticker: e for e in entries}
        assert by_ticker["AAAA3"].entry_price == 8.0
        assert by_ticker["AAAA3"].entry_date == ENTRY
        assert by_ticker["CCCC3"].entry_price == 31.0
        assert by_ticker["CCCC3"].entry_date == TODAY
        assert sum(e.target_weight for e in entries) == pytest.approx(1.0)

    def test_screening_price_when_no_quote(self):
        entries = build_composition([Candidate(ticker="AAAA3", current_price=12.0)], {"AAAA3": 1.0}, TODAY)
        assert entries[0].entry_price == 12.0


class TestUpdateComposition:
    """Atomic replacement with audit trail."""

    @pytest.mark.asyncio
    async def test_replaces_and_logs_in_one_call(self, store, prices):
        store.add_index(1, "IDX1")
        store.compositions[1] = [CompositionEntry("AAAA3", 1.0, 10.0, ENTRY)]
        prices.set("BBBB3", TODAY, 20.0)
        changes = [
            CompositionChange(LogAction.EXIT, "AAAA3", "Ativo removido: teste"),
            CompositionChange(LogAction.ENTRY, "BBBB3", "Ativo adicionado: teste"),
        ]

        entries = await update_composition(
            store, prices, 1, TODAY, [Candidate(ticker="BBBB3", current_price=19.0)],
            {"BBBB3": 1.0}, changes, "Rebalanceamento necessário: teste",
        )

        assert store.replace_calls == 1
        assert entries == [CompositionEntry("BBBB3", 1.0, 20.0, TODAY)]
        assert store.compositions[1] == entries
        assert [(log.action, log.ticker) for log in store.logs[1]] == [
            (LogAction.REBALANCE, SYSTEM_TICKER),
            (LogAction.EXIT, "AAAA3"),
            (LogAction.ENTRY, "BBBB3"),
        ]

    @pytest.mark.asyncio
    async def test_routine_log_written_once_per_day(self, store):
        store.add_index(1, "IDX1")

        assert await ensure_screening_log_once_per_day(store, 1, TODAY, NO_CHANGES_MESSAGE) is True
        assert await ensure_screening_log_once_per_day(store, 1, TODAY, NO_CHANGES_MESSAGE) is False
        assert await ensure_screening_log_once_per_day(store, 1, date(2024, 1, 11), NO_CHANGES_MESSAGE) is True

        assert len(store.logs[1]) == 2


# =============================================================================
# Screening routine
# =============================================================================


class TestScreeningRoutine:
    """End-to-end routine for one index and day."""

    def _universe(self, universe, prices, valuation):
        universe.companies = [make_company("AAAA3", roe=0.2), make_company("BBBB3", roe=0.2)]
        prices.set("AAAA3", TODAY, 10.0)
        prices.set("BBBB3", TODAY, 20.0)
        valuation.valuations = {
            "AAAA3": Valuation(upside=30.0, overall_score=80.0),
            "BBBB3": Valuation(upside=20.0, overall_score=70.0),
        }

    @pytest.mark.asyncio
    async def test_first_run_rebalances(self, ctx, store, universe, prices, valuation):
        """An empty composition is always filled from the screening result."""
        index = store.add_index(1, "IDX1")
        self._universe(universe, prices, valuation)

        outcome = await run_screening_routine(ctx, index, TODAY)

        assert outcome.status == RoutineStatus.REBALANCED
        assert outcome.rebalanced
        assert [e.ticker for e in store.compositions[1]] == ["AAAA3", "BBBB3"]
        assert sum(e.target_weight for e in store.compositions[1]) == pytest.approx(1.0)
        assert all(e.entry_date == TODAY for e in store.compositions[1])
        actions = [log.action for log in store.logs[1]]
        assert actions == [LogAction.REBALANCE, LogAction.ENTRY, LogAction.ENTRY]

    @pytest.mark.asyncio
    async def test_no_changes_writes_only_routine_log(self, ctx, store, universe, prices, valuation):
        index = store.add_index(1, "IDX1")
        self._universe(universe, prices, valuation)
        held = [CompositionEntry("AAAA3", 0.5, 9.0, ENTRY), CompositionEntry("BBBB3", 0.5, 18.0, ENTRY)]
        store.compositions[1] = list(held)

        outcome = await run_screening_routine(ctx, index, TODAY)

        assert outcome.status == RoutineStatus.NO_CHANGES
        assert store.replace_calls == 0
        assert store.compositions[1] == held
        assert [log.reason for log in store.logs[1]] == [NO_CHANGES_MESSAGE]

    @pytest.mark.asyncio
    async def test_empty_screening_logs_once(self, ctx, store, universe):
        """A filter matching nothing is a normal outcome with a single log per day."""
        index = store.add_index(1, "IDX1", {"quality": {"pvpFilter": {"enabled": True, "max": 1.5}}})
        universe.companies = [make_company("AAAA3", pb_ratio=2.5), make_company("BBBB3", pb_ratio=1.9)]

        first = await run_screening_routine(ctx, index, TODAY)
        second = await run_screening_routine(ctx, index, TODAY)

        assert first.status == RoutineStatus.NO_CANDIDATES
        assert second.status == RoutineStatus.NO_CANDIDATES
        assert first.screening.count == 0
        assert len(store.logs[1]) == 1
        assert "nenhuma empresa encontrada" in store.logs[1][0].reason
        assert store.logs[1][0].reason == NO_CANDIDATES_MESSAGE
        assert store.replace_calls == 0

    @pytest.mark.asyncio
    async def test_weekend_is_rejected(self, ctx, store):
        index = store.add_index(1, "IDX1")

        with pytest.raises(NonTradingDayError) as exc_info:
            await run_screening_routine(ctx, index, date(2024, 1, 13))

        assert exc_info.value.constraint == "weekend"
        assert 1 not in store.logs

    @pytest.mark.asyncio
    async def test_holiday_is_rejected(self, ctx, store, calendar):
        index = store.add_index(1, "IDX1")
        calendar.closed.add(TODAY)

        with pytest.raises(NonTradingDayError) as exc_info:
            await run_screening_routine(ctx, index, TODAY)

        assert exc_info.value.constraint == "market_closed"
