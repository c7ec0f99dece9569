"""Read-only analytics over an index's composition and history."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import List, Optional

import numpy as np

from index_engine.core.logging import get_logger
from index_engine.engine.context import EngineContext
from index_engine.engine.mark_to_market import weighted_yield
from index_engine.gateways import IndexStore

logger = get_logger("engine.analytics")


@dataclass(frozen=True)
class PendingDividend:
    ticker: str
    ex_date: date
    amount: float


@dataclass(frozen=True)
class AssetPerformance:
    ticker: str
    first_date: date
    last_date: date
    entry_price: float
    last_price: float
    total_return: float
    average_weight: float
    days_held: int
    status: str


@dataclass(frozen=True)
class RealtimeReturn:
    last_points: float
    estimated_points: float
    return_pct: float
    reference_date: date
    priced: int


async def calculate_current_yield(ctx: EngineContext, index_id: int) -> Optional[float]:
    """Weighted trailing dividend yield of the live composition, in percent."""
    composition = await ctx.store.get_composition(index_id)
    if not composition:
        return None
    yields = await ctx.dividends.dividend_yields([e.ticker for e in composition])
    return weighted_yield(composition, yields)


async def check_pending_dividends(ctx: EngineContext, index_id: int) -> List[PendingDividend]:
    """Dividends of current constituents that no stored point accounted for."""
    composition = await ctx.store.get_composition(index_id)
    points = await ctx.store.list_history_points(index_id)
    if not composition or len(points) < 2:
        return []

    by_date = {p.date: p for p in points}
    ordered_dates = [p.date for p in points]
    events = await ctx.dividends.dividends_between(
        [e.ticker for e in composition], ordered_dates[0], ordered_dates[-1]
    )

    pending = []
    for event in events:
        # The point that would have applied the dividend is the first on/after the ex-date
        point_date = next((d for d in ordered_dates if d >= event.ex_date), None)
        if point_date is None or point_date == ordered_dates[0]:
            continue
        if event.ticker not in by_date[point_date].dividends_by_ticker:
            pending.append(PendingDividend(event.ticker, event.ex_date, event.amount))
    return sorted(pending, key=lambda d: (d.ex_date, d.ticker))


async def calculate_asset_performance(
    store: IndexStore, index_id: int, ticker: str
) -> Optional[AssetPerformance]:
    points = [p for p in await store.list_history_points(index_id) if ticker in p.composition_snapshot]
    if not points:
        return None

    first, last = points[0], points[-1]
    entry_price = first.composition_snapshot[ticker].entry_price
    last_price = last.composition_snapshot[ticker].price
    weights = np.array([p.composition_snapshot[ticker].weight for p in points], dtype=float)
    current = {e.ticker for e in await store.get_composition(index_id)}

    return AssetPerformance(
        ticker=ticker,
        first_date=first.date,
        last_date=last.date,
        entry_price=entry_price,
        last_price=last_price,
        total_return=(last_price / entry_price - 1) * 100 if entry_price > 0 else 0.0,
        average_weight=float(weights.mean()),
        days_held=(last.date - first.date).days,
        status="ACTIVE" if ticker in current else "EXITED",
    )


async def list_assets_performance(store: IndexStore, index_id: int) -> List[AssetPerformance]:
    points = await store.list_history_points(index_id)
    tickers = sorted({t for p in points for t in p.composition_snapshot})
    results = []
    for ticker in tickers:
        performance = await calculate_asset_performance(store, index_id, ticker)
        if performance is not None:
            results.append(performance)
    return results


async def calculate_realtime_return(ctx: EngineContext, index_id: int) -> Optional[RealtimeReturn]:
    """Intraday estimate from latest quotes against the last snapshot prices."""
    last = await ctx.store.get_last_history_point(index_id)
    composition = await ctx.store.get_composition(index_id)
    if last is None or not composition:
        return None

    quotes = await ctx.prices.latest_prices([e.ticker for e in composition])
    estimated = 0.0
    priced = 0
    for entry in composition:
        quote = quotes.get(entry.ticker)
        snap = last.composition_snapshot.get(entry.ticker)
        reference = snap.price if snap is not None else entry.entry_price
        if quote is None or quote.price <= 0 or reference <= 0:
            continue
        estimated += entry.target_weight * (quote.price / reference - 1)
        priced += 1

    if priced == 0:
        return None
    return RealtimeReturn(
        last_points=last.points,
        estimated_points=last.points * (1 + estimated),
        return_pct=estimated * 100,
        reference_date=last.date,
        priced=priced,
    )


async def check_after_market_ran(store: IndexStore, index_id: int, day: date) -> bool:
    point = await store.get_history_point(index_id, day)
    return point is not None and point.has_snapshot
