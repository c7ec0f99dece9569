"""Screening/rebalance routine for a single index and day."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, List, Optional

from index_engine.core.exceptions import NonTradingDayError
from index_engine.core.logging import get_logger
from index_engine.domain.config import parse_index_config
from index_engine.domain.models import (
    CompositionChange,
    CompositionEntry,
    IndexRecord,
    ScreeningResult,
)
from index_engine.engine.composition import (
    NO_CANDIDATES_MESSAGE,
    NO_CHANGES_MESSAGE,
    NONE_PASSED_QUALITY_MESSAGE,
    ensure_screening_log_once_per_day,
    update_composition,
)
from index_engine.engine.context import EngineContext
from index_engine.engine.quality import filter_by_quality
from index_engine.engine.rebalance import (
    RebalanceDecision,
    compare_composition,
    evaluate_rebalance,
    generate_rebalance_reason,
)
from index_engine.engine.screening import run_screening
from index_engine.engine.weights import calculate_weights
from index_engine.gateways import MarketCalendar

logger = get_logger("engine.routine")


class RoutineStatus(str, Enum):
    REBALANCED = "rebalanced"
    NO_CANDIDATES = "no_candidates"
    NONE_PASSED_QUALITY = "none_passed_quality"
    NO_CHANGES = "no_changes"


@dataclass
class RoutineOutcome:
    status: RoutineStatus
    screening: ScreeningResult
    decision: Optional[RebalanceDecision] = None
    changes: List[CompositionChange] = field(default_factory=list)
    composition: List[CompositionEntry] = field(default_factory=list)
    quality_rejected: Dict[str, str] = field(default_factory=dict)
    reason: Optional[str] = None

    @property
    def rebalanced(self) -> bool:
        return self.status == RoutineStatus.REBALANCED


async def ensure_trading_day(calendar: MarketCalendar, day: date) -> None:
    """Raise NonTradingDayError unless ``day`` is a weekday with an open market."""
    if day.weekday() >= 5:
        raise NonTradingDayError(day, "weekend")
    if not await calendar.was_market_open(day):
        raise NonTradingDayError(day, "market_closed")


async def run_screening_routine(
    ctx: EngineContext, index: IndexRecord, day: Optional[date] = None
) -> RoutineOutcome:
    """Screen, quality-check and, when warranted, rebalance one index.

    Empty outcomes write a single routine log per day and return normally.
    """
    day = day or ctx.calendar.today()
    await ensure_trading_day(ctx.calendar, day)

    config = parse_index_config(index.config)
    screening = await run_screening(config, ctx.universe, ctx.prices, ctx.valuation)

    if screening.is_empty:
        logger.info(f"[ROUTINE] {index.ticker}: no companies passed screening")
        await ensure_screening_log_once_per_day(ctx.store, index.id, day, NO_CANDIDATES_MESSAGE)
        return RoutineOutcome(RoutineStatus.NO_CANDIDATES, screening, reason=NO_CANDIDATES_MESSAGE)

    quality = filter_by_quality(screening.selected, config)
    rejected = quality.rejected_reasons
    if not quality.valid:
        logger.info(f"[ROUTINE] {index.ticker}: every candidate failed quality checks")
        await ensure_screening_log_once_per_day(ctx.store, index.id, day, NONE_PASSED_QUALITY_MESSAGE)
        return RoutineOutcome(
            RoutineStatus.NONE_PASSED_QUALITY,
            screening,
            quality_rejected=rejected,
            reason=NONE_PASSED_QUALITY_MESSAGE,
        )

    ideal = quality.valid
    weights = calculate_weights(ideal, config)
    current = await ctx.store.get_composition(index.id)
    decision = evaluate_rebalance(
        current, ideal, config.rebalance.threshold, config.rebalance.upside_type, weights
    )

    if not decision.should_rebalance:
        logger.info(
            f"[ROUTINE] {index.ticker}: no rebalance (distance {decision.distance:.4f}, "
            f"threshold {config.rebalance.threshold:.4f})"
        )
        await ensure_screening_log_once_per_day(ctx.store, index.id, day, NO_CHANGES_MESSAGE)
        return RoutineOutcome(
            RoutineStatus.NO_CHANGES,
            screening,
            decision=decision,
            composition=list(current),
            quality_rejected=rejected,
            reason=NO_CHANGES_MESSAGE,
        )

    changes = compare_composition(current, ideal, config, rejected, screening, weights)
    reason = generate_rebalance_reason(current, ideal, config, rejected, decision)
    composition = await update_composition(
        ctx.store, ctx.prices, index.id, day, ideal, weights, changes, reason
    )
    logger.info(f"[ROUTINE] {index.ticker}: {reason}")
    return RoutineOutcome(
        RoutineStatus.REBALANCED,
        screening,
        decision=decision,
        changes=changes,
        composition=composition,
        quality_rejected=rejected,
        reason=reason,
    )
