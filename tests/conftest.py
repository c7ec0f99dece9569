"""Pytest configuration and fixtures.

Engine tests run against an in-memory ``IndexStore`` and fake market data
collaborators; nothing here touches PostgreSQL, Valkey or yfinance.
"""

from __future__ import annotations

import copy
from datetime import date
from typing import Dict, List, Optional, Sequence

import pytest

from index_engine.core.config import Settings
from index_engine.domain.models import (
    GLOBAL_SCOPE,
    Checkpoint,
    Company,
    CompositionEntry,
    DividendEvent,
    FundamentalMetrics,
    HistoryPoint,
    IndexRecord,
    JobType,
    PriceQuote,
    RebalanceLogEntry,
    SnapshotEntry,
    Valuation,
)
from index_engine.engine.context import EngineContext


# =============================================================================
# IN-MEMORY STORE
# =============================================================================


class InMemoryIndexStore:
    """Dict-backed IndexStore with the same uniqueness rules as the tables."""

    def __init__(self):
        self.indices: Dict[int, IndexRecord] = {}
        self.compositions: Dict[int, List[CompositionEntry]] = {}
        self.points: Dict[int, Dict[date, HistoryPoint]] = {}
        self.logs: Dict[int, List[RebalanceLogEntry]] = {}
        self.checkpoints: Dict[tuple, Checkpoint] = {}
        self.replace_calls = 0

    def add_index(self, index_id: int, ticker: str, config: Optional[dict] = None) -> IndexRecord:
        record = IndexRecord(id=index_id, ticker=ticker, name=f"Índice {ticker}", config=config or {})
        self.indices[index_id] = record
        return record

    async def list_indices(self) -> List[IndexRecord]:
        return [copy.deepcopy(r) for _, r in sorted(self.indices.items())]

    async def get_index(self, index_id: int) -> Optional[IndexRecord]:
        record = self.indices.get(index_id)
        return copy.deepcopy(record) if record else None

    async def get_composition(self, index_id: int) -> List[CompositionEntry]:
        return sorted(self.compositions.get(index_id, []), key=lambda e: e.ticker)

    async def replace_composition(self, index_id, entries, logs, delete_logs_after=None) -> None:
        self.replace_calls += 1
        self.compositions[index_id] = list(entries)
        kept = self.logs.get(index_id, [])
        if delete_logs_after is not None:
            kept = [log for log in kept if log.date <= delete_logs_after]
        self.logs[index_id] = kept + list(logs)

    async def get_history_point(self, index_id: int, day: date) -> Optional[HistoryPoint]:
        point = self.points.get(index_id, {}).get(day)
        return copy.deepcopy(point) if point else None

    async def get_last_history_point(self, index_id, before=None) -> Optional[HistoryPoint]:
        days = [d for d in self.points.get(index_id, {}) if before is None or d < before]
        if not days:
            return None
        return copy.deepcopy(self.points[index_id][max(days)])

    async def list_history_points(self, index_id, start=None) -> List[HistoryPoint]:
        points = self.points.get(index_id, {})
        return [
            copy.deepcopy(points[d]) for d in sorted(points) if start is None or d >= start
        ]

    async def insert_history_point(self, point: HistoryPoint) -> bool:
        points = self.points.setdefault(point.index_id, {})
        if point.date in points:
            return False
        points[point.date] = copy.deepcopy(point)
        return True

    async def upsert_history_point(self, point: HistoryPoint) -> None:
        self.points.setdefault(point.index_id, {})[point.date] = copy.deepcopy(point)

    async def clear_index_state(self, index_id: int) -> None:
        self.compositions.pop(index_id, None)
        self.points.pop(index_id, None)
        self.logs.pop(index_id, None)

    async def has_log_on(self, index_id: int, day: date) -> bool:
        return any(log.date == day for log in self.logs.get(index_id, []))

    async def add_log(self, entry: RebalanceLogEntry) -> None:
        self.logs.setdefault(entry.index_id, []).append(entry)

    async def list_logs(self, index_id: int) -> List[RebalanceLogEntry]:
        return list(self.logs.get(index_id, []))

    async def get_checkpoint(self, job_type: JobType, index_id=None) -> Optional[Checkpoint]:
        scope = GLOBAL_SCOPE if index_id is None else str(index_id)
        checkpoint = self.checkpoints.get((job_type, scope))
        return copy.deepcopy(checkpoint) if checkpoint else None

    async def save_checkpoint(self, checkpoint: Checkpoint) -> None:
        self.checkpoints[(checkpoint.job_type, checkpoint.scope)] = copy.deepcopy(checkpoint)

    async def clear_checkpoint(self, job_type: JobType, index_id=None) -> None:
        scope = GLOBAL_SCOPE if index_id is None else str(index_id)
        self.checkpoints.pop((job_type, scope), None)


# =============================================================================
# FAKE MARKET DATA
# =============================================================================


class FakeCalendar:
    def __init__(self, today: date, closed: Sequence[date] = ()):
        self._today = today
        self.closed = set(closed)
        # Today's session still trading
        self.in_session = False

    def today(self) -> date:
        return self._today

    async def was_market_open(self, day: date) -> bool:
        return day.weekday() < 5 and day not in self.closed

    def session_closed(self, day: date) -> bool:
        if day == self._today:
            return not self.in_session
        return day < self._today


class FakePrices:
    """Close prices by ticker and day; ``missing`` days return no price at all."""

    def __init__(self, closes: Optional[Dict[str, Dict[date, float]]] = None):
        self.closes = closes or {}
        self.missing: set = set()

    def set(self, ticker: str, day: date, price: float) -> None:
        self.closes.setdefault(ticker, {})[day] = price

    async def latest_prices(self, tickers: Sequence[str]) -> Dict[str, PriceQuote]:
        quotes = {}
        for ticker in tickers:
            series = self.closes.get(ticker)
            if series:
                last = max(series)
                quotes[ticker] = PriceQuote(price=series[last], as_of=last)
        return quotes

    async def close_price_on_or_before(self, ticker: str, day: date) -> Optional[float]:
        if day in self.missing:
            return None
        series = self.closes.get(ticker, {})
        days = [d for d in series if d <= day]
        return series[max(days)] if days else None


class FakeDividends:
    def __init__(self, events: Sequence[DividendEvent] = (), yields: Optional[Dict[str, float]] = None):
        self.events = list(events)
        self.yields = yields or {}

    async def dividends_between(self, tickers, start, end) -> List[DividendEvent]:
        return [e for e in self.events if e.ticker in tickers and start <= e.ex_date <= end]

    async def dividend_yields(self, tickers) -> Dict[str, Optional[float]]:
        return {t: self.yields.get(t) for t in tickers}


class FakeValuation:
    """Returns the configured Valuation per ticker, or raises a configured error."""

    def __init__(self, valuations: Optional[Dict[str, object]] = None):
        self.valuations = valuations or {}

    async def evaluate(self, company: Company, price: float) -> Valuation:
        result = self.valuations.get(company.ticker, Valuation())
        if isinstance(result, Exception):
            raise result
        return result


class FakeUniverse:
    def __init__(self, companies: Sequence[Company] = ()):
        self.companies = list(companies)

    async def list_companies(self, universe: str) -> List[Company]:
        return list(self.companies)


# =============================================================================
# BUILDERS
# =============================================================================


def make_company(ticker: str, sector: str = "Financeiro", **metrics) -> Company:
    return Company(
        ticker=ticker,
        name=ticker,
        sector=sector,
        average_daily_volume=metrics.pop("volume", 1_000_000.0),
        metrics=FundamentalMetrics(**metrics),
    )


def make_point(
    index_id: int,
    day: date,
    points: float,
    snapshot: Dict[str, tuple],
    dividends_received: float = 0.0,
) -> HistoryPoint:
    """``snapshot`` maps ticker -> (weight, price, entry_price, entry_date)."""
    return HistoryPoint(
        index_id=index_id,
        date=day,
        points=points,
        dividends_received=dividends_received,
        composition_snapshot={
            ticker: SnapshotEntry(weight=w, price=p, entry_price=ep, entry_date=ed)
            for ticker, (w, p, ep, ed) in snapshot.items()
        },
    )


# =============================================================================
# FIXTURES
# =============================================================================

# Wednesday
TODAY = date(2024, 1, 10)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(cron_max_execution_seconds=50.0, cron_secret="")


@pytest.fixture
def store() -> InMemoryIndexStore:
    return InMemoryIndexStore()


@pytest.fixture
def calendar() -> FakeCalendar:
    return FakeCalendar(TODAY)


@pytest.fixture
def prices() -> FakePrices:
    return FakePrices()


@pytest.fixture
def dividends() -> FakeDividends:
    return FakeDividends()


@pytest.fixture
def valuation() -> FakeValuation:
    return FakeValuation()


@pytest.fixture
def universe() -> FakeUniverse:
    return FakeUniverse()


@pytest.fixture
def ctx(store, calendar, prices, dividends, valuation, universe, test_settings) -> EngineContext:
    return EngineContext(
        store=store,
        calendar=calendar,
        prices=prices,
        dividends=dividends,
        valuation=valuation,
        universe=universe,
        settings=test_settings,
    )
