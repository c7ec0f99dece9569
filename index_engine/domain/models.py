"""Domain records shared by the engine, the repository and the gateways."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

GLOBAL_SCOPE = "__GLOBAL__"
SYSTEM_TICKER = "SYSTEM"

_TRAILING_DIGITS = re.compile(r"\d+$")


class LogAction(str, Enum):
    """Rebalance log actions."""

    ENTRY = "ENTRY"
    EXIT = "EXIT"
    REBALANCE = "REBALANCE"


class JobType(str, Enum):
    """Batch jobs run by the orchestrator."""

    MARK_TO_MARKET = "mark-to-market"
    SCREENING = "screening"


def company_base(ticker: str) -> str:
    """Share-class agnostic company code (PETR3/PETR4 -> PETR)."""
    return _TRAILING_DIGITS.sub("", ticker.upper())


# =============================================================================
# MARKET DATA
# =============================================================================


@dataclass(frozen=True)
class PriceQuote:
    price: float
    as_of: date


@dataclass(frozen=True)
class DividendEvent:
    ticker: str
    ex_date: date
    amount: float


@dataclass
class FundamentalMetrics:
    """Fundamentals as fractions/multiples; None when the source has no value."""

    roe: Optional[float] = None
    net_margin: Optional[float] = None
    net_debt_ebitda: Optional[float] = None
    payout: Optional[float] = None
    market_cap: Optional[float] = None
    pe_ratio: Optional[float] = None
    pb_ratio: Optional[float] = None
    dividend_yield: Optional[float] = None
    revenue_growth: Optional[float] = None

    def get(self, name: str) -> Optional[float]:
        return getattr(self, name, None)

    def has_data(self) -> bool:
        return any(value is not None for value in vars(self).values())


@dataclass
class Company:
    """One member of the investable universe."""

    ticker: str
    name: str = ""
    sector: Optional[str] = None
    industry: Optional[str] = None
    asset_type: str = "STOCK"
    average_daily_volume: Optional[float] = None
    metrics: FundamentalMetrics = field(default_factory=FundamentalMetrics)


@dataclass
class Valuation:
    """Output of the valuation/scoring service for one ticker."""

    upside: Optional[float] = None
    fair_value: Optional[float] = None
    fair_value_model: Optional[str] = None
    overall_score: Optional[float] = None
    technical_margin: Optional[float] = None
    upside_by_model: Dict[str, float] = field(default_factory=dict)


# =============================================================================
# SCREENING
# =============================================================================


@dataclass
class Candidate:
    """A company that survived screening, with the figures used to rank it."""

    ticker: str
    name: str = ""
    sector: Optional[str] = None
    industry: Optional[str] = None
    current_price: float = 0.0
    upside: Optional[float] = None
    fair_value: Optional[float] = None
    fair_value_model: Optional[str] = None
    overall_score: Optional[float] = None
    technical_margin: Optional[float] = None
    dividend_yield: Optional[float] = None
    market_cap: Optional[float] = None
    average_daily_volume: Optional[float] = None
    upside_by_model: Dict[str, float] = field(default_factory=dict)
    metrics: FundamentalMetrics = field(default_factory=FundamentalMetrics)
    debug: Optional[Dict[str, Any]] = None

    @property
    def sector_label(self) -> str:
        return self.sector or "Outros"


@dataclass(frozen=True)
class Rejection:
    ticker: str
    reason: str


@dataclass
class ScreeningResult:
    """Ranked target composition plus what was discarded along the way."""

    selected: List[Candidate] = field(default_factory=list)
    candidates_before_selection: List[Candidate] = field(default_factory=list)
    removed_by_diversification: List[str] = field(default_factory=list)
    rejected: List[Rejection] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.selected)

    @property
    def is_empty(self) -> bool:
        return not self.selected


@dataclass
class QualityResult:
    valid: List[Candidate] = field(default_factory=list)
    rejected: List[tuple[Candidate, str]] = field(default_factory=list)

    @property
    def rejected_reasons(self) -> Dict[str, str]:
        return {candidate.ticker: reason for candidate, reason in self.rejected}


# =============================================================================
# COMPOSITION / HISTORY
# =============================================================================


@dataclass(frozen=True)
class CompositionEntry:
    ticker: str
    target_weight: float
    entry_price: float
    entry_date: date


@dataclass(frozen=True)
class SnapshotEntry:
    """Frozen copy of one composition row at computation time."""

    weight: float
    price: float
    entry_price: float
    entry_date: date

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weight": self.weight,
            "price": self.price,
            "entry_price": self.entry_price,
            "entry_date": self.entry_date.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SnapshotEntry":
        raw_date = data.get("entry_date", data.get("entryDate"))
        if isinstance(raw_date, datetime):
            entry_date = raw_date.date()
        elif isinstance(raw_date, date):
            entry_date = raw_date
        else:
            entry_date = date.fromisoformat(str(raw_date)[:10])
        entry_price = data.get("entry_price", data.get("entryPrice"))
        return cls(
            weight=float(data["weight"]),
            price=float(data["price"]),
            entry_price=float(entry_price),
            entry_date=entry_date,
        )


def snapshot_from_composition(
    composition: List[CompositionEntry], prices: Dict[str, float]
) -> Dict[str, SnapshotEntry]:
    """Freeze a composition; assets without a price keep their entry price."""
    return {
        entry.ticker: SnapshotEntry(
            weight=entry.target_weight,
            price=prices.get(entry.ticker, entry.entry_price),
            entry_price=entry.entry_price,
            entry_date=entry.entry_date,
        )
        for entry in composition
    }


@dataclass
class HistoryPoint:
    index_id: int
    date: date
    points: float
    daily_change: float = 0.0
    current_yield: Optional[float] = None
    dividends_received: float = 0.0
    dividends_by_ticker: Dict[str, float] = field(default_factory=dict)
    composition_snapshot: Dict[str, SnapshotEntry] = field(default_factory=dict)

    @property
    def has_snapshot(self) -> bool:
        return bool(self.composition_snapshot)


@dataclass
class RebalanceLogEntry:
    index_id: int
    date: date
    action: LogAction
    ticker: str
    reason: str


@dataclass
class IndexRecord:
    id: int
    ticker: str
    name: str
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Checkpoint:
    """Progress of one batch job, globally or for a single index."""

    job_type: JobType
    index_id: Optional[int] = None
    last_processed_index_id: Optional[int] = None
    processed_count: int = 0
    total_count: int = 0
    errors: List[str] = field(default_factory=list)
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def scope(self) -> str:
        return GLOBAL_SCOPE if self.index_id is None else str(self.index_id)


# =============================================================================
# CHANGES
# =============================================================================


@dataclass
class CompositionChange:
    action: LogAction
    ticker: str
    reason: str
    old_weight: Optional[float] = None
    new_weight: Optional[float] = None
