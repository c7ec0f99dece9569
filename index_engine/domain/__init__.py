"""Domain types for theoretical indices."""

from .config import IndexConfig, UpsideType, WeightType, parse_index_config
from .models import (
    Candidate,
    Checkpoint,
    Company,
    CompositionChange,
    CompositionEntry,
    DividendEvent,
    FundamentalMetrics,
    HistoryPoint,
    IndexRecord,
    JobType,
    LogAction,
    PriceQuote,
    QualityResult,
    RebalanceLogEntry,
    Rejection,
    ScreeningResult,
    SnapshotEntry,
    Valuation,
)

__all__ = [
    "Candidate",
    "Checkpoint",
    "Company",
    "CompositionChange",
    "CompositionEntry",
    "DividendEvent",
    "FundamentalMetrics",
    "HistoryPoint",
    "IndexConfig",
    "IndexRecord",
    "JobType",
    "LogAction",
    "PriceQuote",
    "QualityResult",
    "RebalanceLogEntry",
    "Rejection",
    "ScreeningResult",
    "SnapshotEntry",
    "UpsideType",
    "Valuation",
    "WeightType",
    "parse_index_config",
]
