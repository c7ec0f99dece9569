"""Composition manager: the only writer of the live composition."""

from __future__ import annotations

from datetime import date
from typing import Dict, List, Mapping, Optional, Sequence

from index_engine.core.logging import get_logger
from index_engine.domain.models import (
    SYSTEM_TICKER,
    Candidate,
    CompositionChange,
    CompositionEntry,
    LogAction,
    RebalanceLogEntry,
)
from index_engine.engine.weights import normalize_weights
from index_engine.gateways import IndexStore, PriceGateway

logger = get_logger("engine.composition")

NO_CANDIDATES_MESSAGE = (
    "Rotina de rebalanceamento executada: nenhuma empresa encontrada no screening"
)
NONE_PASSED_QUALITY_MESSAGE = (
    "Rotina de rebalanceamento executada: nenhuma empresa passou na validação de qualidade"
)
NO_CHANGES_MESSAGE = (
    "Rotina de rebalanceamento executada: nenhuma mudança necessária na composição após screening"
)


def build_composition(
    candidates: Sequence[Candidate],
    weights: Mapping[str, float],
    day: date,
    current: Sequence[CompositionEntry] = (),
    latest_prices: Optional[Mapping[str, float]] = None,
) -> List[CompositionEntry]:
    """Composition rows for the new target set.

    Tickers already held keep their original entry price and date; new ones
    enter at the latest quote (or the screening price) on ``day``.
    """
    latest_prices = latest_prices or {}
    held = {entry.ticker: entry for entry in current}
    normalized = normalize_weights({c.ticker: weights.get(c.ticker, 0.0) for c in candidates})

    entries = []
    for candidate in candidates:
        previous = held.get(candidate.ticker)
        if previous is not None:
            entry_price, entry_date = previous.entry_price, previous.entry_date
        else:
            entry_price = latest_prices.get(candidate.ticker) or candidate.current_price
            entry_date = day
        entries.append(
            CompositionEntry(
                ticker=candidate.ticker,
                target_weight=normalized[candidate.ticker],
                entry_price=entry_price,
                entry_date=entry_date,
            )
        )
    return entries


async def update_composition(
    store: IndexStore,
    prices: PriceGateway,
    index_id: int,
    day: date,
    candidates: Sequence[Candidate],
    weights: Mapping[str, float],
    changes: Sequence[CompositionChange],
    reason: str,
) -> List[CompositionEntry]:
    """Replace the composition and append its audit trail in one transaction."""
    current = await store.get_composition(index_id)
    new_tickers = [c.ticker for c in candidates if c.ticker not in {e.ticker for e in current}]

    quotes: Dict[str, float] = {}
    if new_tickers:
        quotes = {t: q.price for t, q in (await prices.latest_prices(new_tickers)).items() if q.price > 0}

    entries = build_composition(candidates, weights, day, current, quotes)

    logs: List[RebalanceLogEntry] = []
    if changes:
        logs.append(RebalanceLogEntry(index_id, day, LogAction.REBALANCE, SYSTEM_TICKER, reason))
        logs.extend(
            RebalanceLogEntry(index_id, day, change.action, change.ticker, change.reason)
            for change in changes
        )

    await store.replace_composition(index_id, entries, logs)
    logger.info(
        f"[COMPOSITION] Index {index_id}: {len(entries)} constituents, "
        f"{len(changes)} changes on {day.isoformat()}"
    )
    return entries


async def ensure_screening_log_once_per_day(
    store: IndexStore, index_id: int, day: date, message: str
) -> bool:
    """Write a routine log unless the index already has one for ``day``.

    Returns True when a row was written.
    """
    if await store.has_log_on(index_id, day):
        logger.debug(f"[COMPOSITION] Index {index_id} already logged on {day.isoformat()}")
        return False
    await store.add_log(RebalanceLogEntry(index_id, day, LogAction.REBALANCE, SYSTEM_TICKER, message))
    return True
