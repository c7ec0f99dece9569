"""History backfill and full-series recalculation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

from index_engine.core.logging import get_logger
from index_engine.domain.models import CompositionEntry, HistoryPoint
from index_engine.engine.context import EngineContext
from index_engine.engine.mark_to_market import (
    accrued_dividends,
    calculate_daily_return,
    update_index_points,
)

logger = get_logger("engine.backfill")

POINT_TOLERANCE = 1e-6


def calendar_days(start: date, end: date) -> List[date]:
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


async def pending_trading_days(
    ctx: EngineContext, index_id: int, until: Optional[date] = None
) -> List[date]:
    """Closed trading sessions after the last point, up to ``until`` (default today), without a point."""
    last = await ctx.store.get_last_history_point(index_id)
    if last is None:
        return []
    until = until or ctx.calendar.today()

    pending = []
    for day in calendar_days(last.date + timedelta(days=1), until):
        if day.weekday() >= 5:
            continue
        if not await ctx.calendar.was_market_open(day):
            continue
        if not ctx.calendar.session_closed(day):
            continue
        if await ctx.store.get_history_point(index_id, day) is not None:
            continue
        pending.append(day)
    return pending


async def fill_missing_history(
    ctx: EngineContext, index_id: int, until: Optional[date] = None
) -> int:
    """Mark every pending trading day, oldest first. Returns the number filled.

    Stops at the first day that cannot be marked: later days chain onto it and
    are retried on the next run.
    """
    days = await pending_trading_days(ctx, index_id, until)
    if not days:
        return 0

    filled = 0
    for day in days:
        if not await update_index_points(ctx, index_id, day):
            logger.warning(
                f"[BACKFILL] Index {index_id}: could not mark {day.isoformat()}, "
                f"{len(days) - filled - 1} later day(s) deferred"
            )
            break
        filled += 1

    logger.info(f"[BACKFILL] Index {index_id}: filled {filled}/{len(days)} day(s)")
    return filled


@dataclass
class RecalculationResult:
    recalculated: int = 0
    dividends_found: int = 0
    changes: List[Tuple[date, float, float]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "recalculated": self.recalculated,
            "dividends_found": self.dividends_found,
            "changes": [
                {"date": day.isoformat(), "old_points": old, "new_points": new}
                for day, old, new in self.changes
            ],
            "errors": list(self.errors),
        }


def _composition_from_point(point: HistoryPoint) -> List[CompositionEntry]:
    return [
        CompositionEntry(
            ticker=ticker,
            target_weight=snap.weight,
            entry_price=snap.entry_price,
            entry_date=snap.entry_date,
        )
        for ticker, snap in sorted(point.composition_snapshot.items())
    ]


async def recalculate_index(
    ctx: EngineContext, index_id: int, start_date: Optional[date] = None
) -> RecalculationResult:
    """Rechain stored points from their snapshots with dividends re-applied.

    Each point's own snapshot holds the holdings and closing prices of that
    day; the previous point's snapshot supplies the previous prices. Points
    before ``start_date`` are kept as they are and seed the chain.
    """
    result = RecalculationResult()
    points = await ctx.store.list_history_points(index_id)
    if len(points) < 2:
        return result

    tickers = sorted({t for p in points for t in p.composition_snapshot})
    events = await ctx.dividends.dividends_between(
        tickers, points[0].date + timedelta(days=1), points[-1].date
    )

    previous = points[0]
    for point in points[1:]:
        if start_date is not None and point.date < start_date:
            previous = point
            continue
        if not point.has_snapshot:
            result.errors.append(f"{point.date.isoformat()}: sem snapshot de composição")
            previous = point
            continue

        composition = _composition_from_point(point)
        dividends = accrued_dividends(composition, events, previous.date, point.date)
        prices = {t: s.price for t, s in point.composition_snapshot.items()}
        previous_prices = {t: s.price for t, s in previous.composition_snapshot.items()}
        daily = calculate_daily_return(
            point.date,
            composition,
            previous,
            prices,
            previous_prices,
            dividends,
        )
        if daily is None:
            result.errors.append(f"{point.date.isoformat()}: nenhum preço disponível")
            previous = point
            continue

        result.dividends_found += len(daily.dividends_by_ticker)
        recalculated = daily.to_point(index_id)
        recalculated.current_yield = point.current_yield
        recalculated.composition_snapshot = dict(point.composition_snapshot)

        if (
            abs(recalculated.points - point.points) > POINT_TOLERANCE
            or abs(recalculated.dividends_received - point.dividends_received) > POINT_TOLERANCE
            or recalculated.dividends_by_ticker != point.dividends_by_ticker
        ):
            await ctx.store.upsert_history_point(recalculated)
            result.changes.append((point.date, point.points, recalculated.points))
        result.recalculated += 1
        previous = recalculated

    logger.info(
        f"[RECALC] Index {index_id}: {result.recalculated} point(s) recalculated, "
        f"{len(result.changes)} changed, {result.dividends_found} dividend(s) applied"
    )
    return result
