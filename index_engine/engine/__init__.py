"""Index computation engine."""

from .backfill import fill_missing_history, pending_trading_days, recalculate_index
from .composition import ensure_screening_log_once_per_day, update_composition
from .context import EngineContext
from .mark_to_market import BASE_POINTS, calculate_daily_return, update_index_points
from .quality import filter_by_quality
from .rebalance import (
    compare_composition,
    evaluate_rebalance,
    generate_rebalance_reason,
    should_rebalance,
)
from .routine import RoutineStatus, ensure_trading_day, run_screening_routine
from .screening import run_screening
from .snapshot import get_last_snapshot, restore_composition
from .weights import calculate_weights

__all__ = [
    "BASE_POINTS",
    "EngineContext",
    "RoutineStatus",
    "calculate_daily_return",
    "calculate_weights",
    "compare_composition",
    "ensure_screening_log_once_per_day",
    "ensure_trading_day",
    "evaluate_rebalance",
    "fill_missing_history",
    "filter_by_quality",
    "generate_rebalance_reason",
    "get_last_snapshot",
    "pending_trading_days",
    "recalculate_index",
    "restore_composition",
    "run_screening",
    "run_screening_routine",
    "should_rebalance",
    "update_composition",
    "update_index_points",
]
