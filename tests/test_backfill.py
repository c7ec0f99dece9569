"""Tests for history backfill and recalculation."""

from __future__ import annotations

from datetime import date, timedelta

import numpy as np
import pytest

from conftest import make_point
from index_engine.domain.models import CompositionEntry, DividendEvent
from index_engine.engine.backfill import (
    fill_missing_history,
    pending_trading_days,
    recalculate_index,
)

ENTRY = date(2024, 1, 2)
LAST = date(2024, 1, 3)
HOLIDAY = date(2024, 1, 8)


def _seed(store, prices, calendar):
    """Two-asset index last marked on Wed 2024-01-03; daily +1% afterwards."""
    store.add_index(1, "IDX1")
    store.compositions[1] = [
        CompositionEntry("AAAA3", 0.5, 10.0, ENTRY),
        CompositionEntry("BBBB3", 0.5, 20.0, ENTRY),
    ]
    store.points[1] = {
        LAST: make_point(1, LAST, 100.0, {
            "AAAA3": (0.5, 10.0, 10.0, ENTRY),
            "BBBB3": (0.5, 20.0, 20.0, ENTRY),
        })
    }
    calendar.closed.add(HOLIDAY)
    day, a, b = LAST, 10.0, 20.0
    while day <= calendar.today():
        prices.set("AAAA3", day, a)
        prices.set("BBBB3", day, b)
        day += timedelta(days=1)
        a, b = a * 1.01, b * 1.01


class TestPendingTradingDays:
    """Detection of days to fill."""

    @pytest.mark.asyncio
    async def test_skips_weekends_holidays_and_existing(self, ctx, store, prices, calendar):
        """Only open weekdays after the last point without a row are pending."""
        _seed(store, prices, calendar)

        days = await pending_trading_days(ctx, 1)

        assert days == [date(2024, 1, 4), date(2024, 1, 5), date(2024, 1, 9), date(2024, 1, 10)]

    @pytest.mark.asyncio
    async def test_no_history_means_nothing_pending(self, ctx, store):
        """Without a first point there is nothing to chain onto."""
        store.add_index(1, "IDX1")
        assert await pending_trading_days(ctx, 1) == []

    @pytest.mark.asyncio
    async def test_today_pending_only_after_close(self, ctx, store, prices, calendar):
        _seed(store, prices, calendar)
        calendar.in_session = True

        days = await pending_trading_days(ctx, 1)

        assert days == [date(2024, 1, 4), date(2024, 1, 5), date(2024, 1, 9)]


class TestFillMissingHistory:
    """Gap filling, oldest first."""

    @pytest.mark.asyncio
    async def test_fills_every_trading_day_in_order(self, ctx, store, prices, calendar):
        """A gap of N trading days produces exactly N rows, ascending, none on closed days."""
        _seed(store, prices, calendar)

        filled = await fill_missing_history(ctx, 1)

        assert filled == 4
        stored = sorted(store.points[1])
        assert stored == [LAST, date(2024, 1, 4), date(2024, 1, 5), date(2024, 1, 9), date(2024, 1, 10)]
        assert HOLIDAY not in store.points[1]
        assert date(2024, 1, 6) not in store.points[1]

    @pytest.mark.asyncio
    async def test_series_is_chained(self, ctx, store, prices, calendar):
        """Each point equals the previous one times (1 + weighted return)."""
        _seed(store, prices, calendar)
        await fill_missing_history(ctx, 1)

        points = [store.points[1][d] for d in sorted(store.points[1])]
        for prev, cur in zip(points, points[1:]):
            a_ret = cur.composition_snapshot["AAAA3"].price / prev.composition_snapshot["AAAA3"].price - 1
            b_ret = cur.composition_snapshot["BBBB3"].price / prev.composition_snapshot["BBBB3"].price - 1
            assert np.isclose(cur.points, prev.points * (1 + 0.5 * a_ret + 0.5 * b_ret))

    @pytest.mark.asyncio
    async def test_stops_at_first_unmarkable_day(self, ctx, store, prices, calendar):
        """A day without prices stops the walk so later days are not chained onto a gap."""
        _seed(store, prices, calendar)
        prices.missing.add(date(2024, 1, 5))

        filled = await fill_missing_history(ctx, 1)

        assert filled == 1
        assert sorted(store.points[1]) == [LAST, date(2024, 1, 4)]

    @pytest.mark.asyncio
    async def test_second_run_fills_nothing(self, ctx, store, prices, calendar):
        """Backfill is idempotent once the series is complete."""
        _seed(store, prices, calendar)
        await fill_missing_history(ctx, 1)

        assert await fill_missing_history(ctx, 1) == 0


class TestRecalculateIndex:
    """Rechaining the stored series."""

    @pytest.mark.asyncio
    async def test_applies_missed_dividend(self, ctx, store, prices, calendar, dividends):
        """A dividend found later lifts the day it belongs to and every later point."""
        _seed(store, prices, calendar)
        await fill_missing_history(ctx, 1)
        before = {d: p.points for d, p in store.points[1].items()}

        dividends.events.append(DividendEvent("AAAA3", date(2024, 1, 5), 0.2))
        result = await recalculate_index(ctx, 1)

        assert result.recalculated == 4
        assert result.dividends_found == 1
        assert [c[0] for c in result.changes] == [date(2024, 1, 5), date(2024, 1, 9), date(2024, 1, 10)]
        assert store.points[1][date(2024, 1, 4)].points == before[date(2024, 1, 4)]
        assert store.points[1][date(2024, 1, 10)].points > before[date(2024, 1, 10)]
        assert store.points[1][date(2024, 1, 5)].dividends_by_ticker == {"AAAA3": 0.2}

    @pytest.mark.asyncio
    async def test_unchanged_series_reports_no_changes(self, ctx, store, prices, calendar):
        """Recalculating a consistent series changes nothing."""
        _seed(store, prices, calendar)
        await fill_missing_history(ctx, 1)

        result = await recalculate_index(ctx, 1)

        assert result.changes == []
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_dividend_before_entry_not_reapplied(self, ctx, store, dividends):
        """A dividend that went ex before an asset entered does not lift the rechained point."""
        entered = date(2024, 1, 5)
        store.add_index(1, "IDX1")
        store.points[1] = {
            LAST: make_point(1, LAST, 100.0, {"OLDD3": (1.0, 8.0, 8.0, ENTRY)}),
            date(2024, 1, 9): make_point(1, date(2024, 1, 9), 100.0, {"NEWW3": (1.0, 10.0, 10.0, entered)}),
        }
        dividends.events.append(DividendEvent("NEWW3", date(2024, 1, 4), 1.0))

        result = await recalculate_index(ctx, 1)

        assert result.recalculated == 1
        assert result.dividends_found == 0
        assert result.changes == []
        assert store.points[1][date(2024, 1, 9)].points == 100.0
