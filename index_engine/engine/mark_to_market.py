"""Mark-to-market: advance an index's point series by one trading day.

The series is a total-return index chained day over day::

    r_i    = (p_t + d_i - p_prev) / p_prev
    R      = sum(w_i * r_i)            over constituents with a price on t
    points = previous_points * (1 + R)

``d_i`` is the per-share dividend with ex-date after the previous point (or
after the entry date, for an asset bought since) and up to ``t``. Its points-equivalent ``previous_points * w_i * d_i / p_prev`` is
accumulated in ``dividends_received`` so the price-only return can be
recovered from the series. Constituents without a price are skipped, never
counted as a zero return, and a day where nothing prices is not written.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Mapping, Optional, Sequence

from index_engine.core.logging import get_logger
from index_engine.domain.models import (
    CompositionEntry,
    DividendEvent,
    HistoryPoint,
    SnapshotEntry,
    snapshot_from_composition,
)
from index_engine.engine.context import EngineContext

logger = get_logger("engine.mark_to_market")

BASE_POINTS = 100.0

# Entry-price fallback for freshly added assets with a stale previous price
SUSPICIOUS_MOVE = 0.50
SUSPICIOUS_DEVIATION = 0.30
RECENT_ENTRY_DAYS = 7


@dataclass(frozen=True)
class AssetReturn:
    ticker: str
    weight: float
    previous_price: float
    price: float
    dividend: float
    value: float


@dataclass
class DailyReturn:
    """Result of one mark-to-market step, before it is persisted."""

    day: date
    portfolio_return: float
    points: float
    dividends_today: float
    dividends_received: float
    dividends_by_ticker: Dict[str, float] = field(default_factory=dict)
    asset_returns: Dict[str, AssetReturn] = field(default_factory=dict)
    current_yield: Optional[float] = None
    snapshot: Dict[str, SnapshotEntry] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)

    @property
    def daily_change(self) -> float:
        return self.portfolio_return * 100

    def to_point(self, index_id: int) -> HistoryPoint:
        return HistoryPoint(
            index_id=index_id,
            date=self.day,
            points=self.points,
            daily_change=self.daily_change,
            current_yield=self.current_yield,
            dividends_received=self.dividends_received,
            dividends_by_ticker=dict(self.dividends_by_ticker),
            composition_snapshot=dict(self.snapshot),
        )


def weighted_yield(
    composition: Sequence[CompositionEntry], yields: Mapping[str, Optional[float]]
) -> Optional[float]:
    """Weight-averaged trailing dividend yield in percent."""
    reported = [(e.target_weight, yields[e.ticker]) for e in composition if yields.get(e.ticker) is not None]
    total_weight = sum(weight for weight, _ in reported)
    if total_weight <= 0:
        return None
    return sum(weight * value for weight, value in reported) / total_weight * 100


def _previous_price(
    entry: CompositionEntry,
    day: date,
    price: float,
    previous: HistoryPoint,
    previous_prices: Mapping[str, float],
) -> Optional[float]:
    if entry.entry_date >= previous.date:
        return entry.entry_price

    prev = previous_prices.get(entry.ticker)
    if prev is None or prev <= 0:
        return None

    if (
        abs(price / prev - 1) > SUSPICIOUS_MOVE
        and (day - entry.entry_date).days <= RECENT_ENTRY_DAYS
        and entry.entry_price > 0
        and abs(prev / entry.entry_price - 1) > SUSPICIOUS_DEVIATION
    ):
        logger.warning(
            f"[MTM] {entry.ticker}: previous price {prev:.2f} looks stale, "
            f"using entry price {entry.entry_price:.2f}"
        )
        return entry.entry_price
    return prev


def calculate_daily_return(
    day: date,
    composition: Sequence[CompositionEntry],
    previous: HistoryPoint,
    prices: Mapping[str, Optional[float]],
    previous_prices: Mapping[str, float],
    dividends: Optional[Mapping[str, float]] = None,
    yields: Optional[Mapping[str, Optional[float]]] = None,
) -> Optional[DailyReturn]:
    """Chain one day onto ``previous``; None when no constituent has a price."""
    dividends = dividends or {}
    asset_returns: Dict[str, AssetReturn] = {}
    skipped: List[str] = []
    portfolio_return = 0.0
    dividends_today = 0.0

    for entry in composition:
        price = prices.get(entry.ticker)
        if price is None or price <= 0:
            skipped.append(entry.ticker)
            continue
        prev = _previous_price(entry, day, price, previous, previous_prices)
        if prev is None:
            skipped.append(entry.ticker)
            continue

        dividend = dividends.get(entry.ticker, 0.0)
        value = (price + dividend - prev) / prev
        portfolio_return += entry.target_weight * value
        dividends_today += previous.points * entry.target_weight * dividend / prev
        asset_returns[entry.ticker] = AssetReturn(
            entry.ticker, entry.target_weight, prev, price, dividend, value
        )

    if not asset_returns:
        return None

    snapshot_prices = {t: s.price for t, s in previous.composition_snapshot.items()}
    snapshot_prices.update({t: r.price for t, r in asset_returns.items()})

    return DailyReturn(
        day=day,
        portfolio_return=portfolio_return,
        points=previous.points * (1 + portfolio_return),
        dividends_today=dividends_today,
        dividends_received=previous.dividends_received + dividends_today,
        dividends_by_ticker={t: r.dividend for t, r in asset_returns.items() if r.dividend > 0},
        asset_returns=asset_returns,
        current_yield=weighted_yield(composition, yields or {}),
        snapshot=snapshot_from_composition(list(composition), snapshot_prices),
        skipped=skipped,
    )


async def fetch_close_prices(
    ctx: EngineContext, tickers: Sequence[str], day: date
) -> Dict[str, Optional[float]]:
    results = await asyncio.gather(
        *(ctx.prices.close_price_on_or_before(ticker, day) for ticker in tickers)
    )
    return dict(zip(tickers, results))


def dividend_window_start(entry: CompositionEntry, previous_date: date) -> date:
    """First ex-date that pays the index for ``entry``.

    The entry price of an asset bought after the previous point is already
    ex-dividend for anything that went ex on or before its entry date.
    """
    return max(previous_date, entry.entry_date) + timedelta(days=1)


def accrued_dividends(
    composition: Sequence[CompositionEntry],
    events: Sequence[DividendEvent],
    previous_date: date,
    day: date,
) -> Dict[str, float]:
    """Per-share dividends summed by ticker for ex-dates the index held through."""
    starts = {entry.ticker: dividend_window_start(entry, previous_date) for entry in composition}
    totals: Dict[str, float] = {}
    for event in events:
        start = starts.get(event.ticker)
        if start is None or not start <= event.ex_date <= day:
            continue
        totals[event.ticker] = totals.get(event.ticker, 0.0) + event.amount
    return totals


async def is_markable_day(ctx: EngineContext, day: date) -> bool:
    """True when ``day`` traded and its session is over."""
    if day.weekday() >= 5 or not await ctx.calendar.was_market_open(day):
        logger.info(f"[MTM] Market closed on {day.isoformat()}, nothing to mark")
        return False
    if not ctx.calendar.session_closed(day):
        logger.info(f"[MTM] Session of {day.isoformat()} not closed yet, close price pending")
        return False
    return True


async def _resolve_previous_prices(
    ctx: EngineContext, composition: Sequence[CompositionEntry], previous: HistoryPoint
) -> Dict[str, float]:
    resolved: Dict[str, float] = {}
    missing: List[str] = []
    for entry in composition:
        if entry.entry_date >= previous.date:
            continue
        snap = previous.composition_snapshot.get(entry.ticker)
        if snap is not None and snap.price > 0:
            resolved[entry.ticker] = snap.price
        else:
            missing.append(entry.ticker)
    if missing:
        fetched = await fetch_close_prices(ctx, missing, previous.date)
        resolved.update({t: p for t, p in fetched.items() if p is not None and p > 0})
    return resolved


async def create_first_point(
    ctx: EngineContext,
    index_id: int,
    day: date,
    composition: Sequence[CompositionEntry],
    recompute: bool = False,
) -> bool:
    """Write the base-100 point; False when no constituent has a price."""
    prices = await fetch_close_prices(ctx, [e.ticker for e in composition], day)
    priced = {t: p for t, p in prices.items() if p is not None and p > 0}
    if not priced:
        logger.warning(f"[MTM] Index {index_id}: no prices for first point on {day.isoformat()}")
        return False

    yields = await ctx.dividends.dividend_yields([e.ticker for e in composition])
    point = HistoryPoint(
        index_id=index_id,
        date=day,
        points=BASE_POINTS,
        daily_change=0.0,
        current_yield=weighted_yield(composition, yields),
        dividends_received=0.0,
        composition_snapshot=snapshot_from_composition(list(composition), priced),
    )
    if recompute:
        await ctx.store.upsert_history_point(point)
    else:
        await ctx.store.insert_history_point(point)
    logger.info(f"[MTM] Index {index_id}: first point {BASE_POINTS} on {day.isoformat()}")
    return True


async def update_index_points(
    ctx: EngineContext, index_id: int, day: date, recompute: bool = False
) -> bool:
    """Compute and persist the point for ``day``.

    An existing row is left untouched unless ``recompute`` is set. Returns
    False when the day could not be marked: a closed market, a session still
    trading, an empty composition or no price at all.
    """
    if not await is_markable_day(ctx, day):
        return False

    store = ctx.store
    if not recompute and await store.get_history_point(index_id, day) is not None:
        logger.debug(f"[MTM] Index {index_id} already marked on {day.isoformat()}")
        return True

    composition = await store.get_composition(index_id)
    if not composition:
        logger.warning(f"[MTM] Index {index_id} has no composition")
        return False

    previous = await store.get_last_history_point(index_id, before=day)
    if previous is None:
        return await create_first_point(ctx, index_id, day, composition, recompute=recompute)

    tickers = [entry.ticker for entry in composition]
    prices = await fetch_close_prices(ctx, tickers, day)
    previous_prices = await _resolve_previous_prices(ctx, composition, previous)
    events = await ctx.dividends.dividends_between(tickers, previous.date + timedelta(days=1), day)
    dividends = accrued_dividends(composition, events, previous.date, day)
    yields = await ctx.dividends.dividend_yields(tickers)

    result = calculate_daily_return(day, composition, previous, prices, previous_prices, dividends, yields)
    if result is None:
        logger.warning(
            f"[MTM] Index {index_id}: no constituent price resolved for {day.isoformat()}"
        )
        return False

    for ticker in result.skipped:
        logger.warning(f"[MTM] Index {index_id}: {ticker} skipped on {day.isoformat()}, no price")

    point = result.to_point(index_id)
    if recompute:
        await store.upsert_history_point(point)
    elif not await store.insert_history_point(point):
        logger.info(f"[MTM] Index {index_id}: concurrent write for {day.isoformat()}, kept existing")
        return True

    logger.info(
        f"[MTM] Index {index_id} {day.isoformat()}: {previous.points:.4f} -> {result.points:.4f} "
        f"({result.daily_change:+.3f}%)"
    )
    return True
