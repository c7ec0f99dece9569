"""Collaborator contracts consumed by the index engine.

The engine never talks to yfinance, Valkey or PostgreSQL directly; it is
handed objects satisfying these protocols. Production implementations live in
``index_engine.services.market_data`` and ``index_engine.repositories``.
"""

from __future__ import annotations

from datetime import date
from typing import Dict, List, Optional, Protocol, Sequence

from index_engine.domain.models import (
    Checkpoint,
    Company,
    CompositionEntry,
    DividendEvent,
    HistoryPoint,
    IndexRecord,
    JobType,
    PriceQuote,
    RebalanceLogEntry,
    Valuation,
)


class MarketCalendar(Protocol):
    """Trading calendar of the exchange."""

    def today(self) -> date:
        """Current date in the exchange's timezone."""
        ...

    async def was_market_open(self, day: date) -> bool:
        """True when the exchange traded on ``day``."""
        ...

    def session_closed(self, day: date) -> bool:
        """True once the closing price of ``day`` is final."""
        ...


class PriceGateway(Protocol):
    """Closing and latest prices by local ticker."""

    async def latest_prices(self, tickers: Sequence[str]) -> Dict[str, PriceQuote]:
        ...

    async def close_price_on_or_before(self, ticker: str, day: date) -> Optional[float]:
        ...


class DividendGateway(Protocol):
    """Dividend events and trailing yields."""

    async def dividends_between(
        self, tickers: Sequence[str], start: date, end: date
    ) -> List[DividendEvent]:
        """Events with ``start <= ex_date <= end``."""
        ...

    async def dividend_yields(self, tickers: Sequence[str]) -> Dict[str, Optional[float]]:
        """Trailing dividend yield as a fraction."""
        ...


class ValuationService(Protocol):
    """Fair value / upside / score provider. May raise for a ticker."""

    async def evaluate(self, company: Company, price: float) -> Valuation:
        ...


class UniverseProvider(Protocol):
    """Investable universe with fundamentals."""

    async def list_companies(self, universe: str) -> List[Company]:
        ...


class IndexStore(Protocol):
    """Persistence operations the engine relies on."""

    async def list_indices(self) -> List[IndexRecord]:
        ...

    async def get_index(self, index_id: int) -> Optional[IndexRecord]:
        ...

    async def get_composition(self, index_id: int) -> List[CompositionEntry]:
        ...

    async def replace_composition(
        self,
        index_id: int,
        entries: Sequence[CompositionEntry],
        logs: Sequence[RebalanceLogEntry],
        delete_logs_after: Optional[date] = None,
    ) -> None:
        """Atomically swap composition rows, append logs, optionally prune logs."""
        ...

    async def get_history_point(self, index_id: int, day: date) -> Optional[HistoryPoint]:
        ...

    async def get_last_history_point(
        self, index_id: int, before: Optional[date] = None
    ) -> Optional[HistoryPoint]:
        """Latest point, or latest strictly before ``before``."""
        ...

    async def list_history_points(
        self, index_id: int, start: Optional[date] = None
    ) -> List[HistoryPoint]:
        """Points in ascending date order, from ``start`` inclusive."""
        ...

    async def insert_history_point(self, point: HistoryPoint) -> bool:
        """Insert unless a row exists for (index_id, date). True when inserted."""
        ...

    async def upsert_history_point(self, point: HistoryPoint) -> None:
        ...

    async def clear_index_state(self, index_id: int) -> None:
        """Delete composition, history and logs of one index."""
        ...

    async def has_log_on(self, index_id: int, day: date) -> bool:
        ...

    async def add_log(self, entry: RebalanceLogEntry) -> None:
        ...

    async def list_logs(self, index_id: int) -> List[RebalanceLogEntry]:
        ...

    async def get_checkpoint(
        self, job_type: JobType, index_id: Optional[int] = None
    ) -> Optional[Checkpoint]:
        ...

    async def save_checkpoint(self, checkpoint: Checkpoint) -> None:
        ...

    async def clear_checkpoint(self, job_type: JobType, index_id: Optional[int] = None) -> None:
        ...
