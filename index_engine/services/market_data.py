"""yfinance-backed market data collaborators.

Local B3 tickers (``PETR4``) map to Yahoo symbols with the configured suffix
(``PETR4.SA``); index symbols (``^BVSP``) and already-suffixed symbols pass
through. yfinance is blocking, so every call runs in a small thread pool.
Prices are unadjusted closes: dividends are applied explicitly by the
mark-to-market step.
"""

from __future__ import annotations

import asyncio
import math
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

import pandas as pd
import yfinance as yf

from index_engine.core.config import Settings
from index_engine.core.exceptions import ExternalServiceError
from index_engine.core.logging import get_logger
from index_engine.domain.models import (
    Company,
    DividendEvent,
    FundamentalMetrics,
    PriceQuote,
    Valuation,
)

logger = get_logger("services.market_data")

# Thread pool for yfinance calls (not async native)
_executor = ThreadPoolExecutor(max_workers=4)

PRICE_LOOKBACK_DAYS = 10
CALENDAR_WINDOW_DAYS = 14

# Valuation model constants
GRAHAM_MULTIPLIER = 22.5
BARSI_TARGET_YIELD = 0.06
GORDON_DISCOUNT_RATE = 0.12
GORDON_MAX_GROWTH = 0.08
GORDON_DEFAULT_GROWTH = 0.03


async def _run(func: Callable[..., Any], *args: Any) -> Any:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_executor, func, *args)


def to_yahoo_symbol(ticker: str, suffix: str) -> str:
    ticker = ticker.upper()
    if ticker.startswith("^") or "." in ticker:
        return ticker
    return f"{ticker}{suffix}"


def from_yahoo_symbol(symbol: str, suffix: str) -> str:
    if suffix and symbol.endswith(suffix):
        return symbol[: -len(suffix)]
    return symbol


def _safe_float(value: Any) -> Optional[float]:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def _download_closes(symbols: List[str], start: date, end: date) -> pd.DataFrame:
    """Daily closes, one column per symbol, indexed by date."""
    try:
        # yfinance end is exclusive
        df = yf.download(
            " ".join(symbols),
            start=start.isoformat(),
            end=(end + timedelta(days=1)).isoformat(),
            auto_adjust=False,
            actions=False,
            progress=False,
            timeout=30,
        )
    except Exception as e:
        raise ExternalServiceError(
            message=f"yfinance download failed: {e}",
            details={"symbols": symbols, "start": start.isoformat(), "end": end.isoformat()},
        ) from e

    if df is None or df.empty or "Close" not in df.columns.get_level_values(0):
        return pd.DataFrame()

    closes = df["Close"]
    if isinstance(closes, pd.Series):
        closes = closes.to_frame(symbols[0])
    closes.index = pd.to_datetime(closes.index).date
    return closes


def _fetch_info(symbol: str) -> Dict[str, Any]:
    try:
        return yf.Ticker(symbol).info or {}
    except Exception as e:
        raise ExternalServiceError(
            message=f"yfinance info failed for {symbol}: {e}", details={"symbol": symbol}
        ) from e


def _fetch_dividends(symbol: str) -> pd.Series:
    try:
        return yf.Ticker(symbol).dividends
    except Exception as e:
        raise ExternalServiceError(
            message=f"yfinance dividends failed for {symbol}: {e}", details={"symbol": symbol}
        ) from e


class YahooInfoSource:
    """Memoised ``Ticker.info`` lookups shared by the gateways."""

    def __init__(self, settings: Settings):
        self.suffix = settings.yahoo_ticker_suffix
        self._cache: Dict[str, Dict[str, Any]] = {}

    async def get(self, ticker: str) -> Dict[str, Any]:
        symbol = to_yahoo_symbol(ticker, self.suffix)
        if symbol not in self._cache:
            self._cache[symbol] = await _run(_fetch_info, symbol)
        return self._cache[symbol]


# =============================================================================
# CALENDAR
# =============================================================================


class YahooMarketCalendar:
    """Exchange calendar inferred from the benchmark's daily bars."""

    def __init__(self, settings: Settings):
        self.tz = ZoneInfo(settings.market_timezone)
        self.close_time = settings.market_close_time
        self.benchmark = settings.benchmark_ticker
        self._open: Dict[date, bool] = {}

    def today(self) -> date:
        return datetime.now(self.tz).date()

    def session_closed(self, day: date) -> bool:
        # Today's daily bar is the live price until the session ends
        now = datetime.now(self.tz)
        if day != now.date():
            return day < now.date()
        return now.time() >= self.close_time

    async def was_market_open(self, day: date) -> bool:
        if day.weekday() >= 5:
            return False
        if day in self._open:
            return self._open[day]

        start = day - timedelta(days=CALENDAR_WINDOW_DAYS)
        closes = await _run(_download_closes, [self.benchmark], start, day)
        bar_days = set(closes.index) if not closes.empty else set()
        today = self.today()

        for offset in range(CALENDAR_WINDOW_DAYS + 1):
            current = start + timedelta(days=offset)
            if current.weekday() >= 5:
                continue
            # Today's bar may not exist yet
            if current in bar_days or current < today:
                self._open[current] = current in bar_days

        is_open = day in bar_days
        logger.debug(f"Market {'open' if is_open else 'closed'} on {day.isoformat()}")
        return is_open


# =============================================================================
# PRICES / DIVIDENDS
# =============================================================================


class YahooPriceGateway:
    def __init__(self, settings: Settings):
        self.suffix = settings.yahoo_ticker_suffix
        self.tz = ZoneInfo(settings.market_timezone)
        self._closes: Dict[tuple[str, date], Optional[float]] = {}

    async def latest_prices(self, tickers: Sequence[str]) -> Dict[str, PriceQuote]:
        if not tickers:
            return {}
        symbols = {to_yahoo_symbol(t, self.suffix): t for t in tickers}
        end = datetime.now(self.tz).date()
        closes = await _run(
            _download_closes, list(symbols), end - timedelta(days=PRICE_LOOKBACK_DAYS), end
        )

        quotes: Dict[str, PriceQuote] = {}
        for symbol, ticker in symbols.items():
            if symbol not in closes.columns:
                continue
            series = closes[symbol].dropna()
            if series.empty:
                continue
            quotes[ticker] = PriceQuote(price=float(series.iloc[-1]), as_of=series.index[-1])
        missing = sorted(set(tickers) - set(quotes))
        if missing:
            logger.warning(f"No latest price for {len(missing)} ticker(s): {', '.join(missing)}")
        return quotes

    async def close_price_on_or_before(self, ticker: str, day: date) -> Optional[float]:
        key = (ticker, day)
        if key not in self._closes:
            symbol = to_yahoo_symbol(ticker, self.suffix)
            closes = await _run(
                _download_closes, [symbol], day - timedelta(days=PRICE_LOOKBACK_DAYS), day
            )
            price = None
            if symbol in closes.columns:
                series = closes[symbol].dropna()
                series = series[[d <= day for d in series.index]]
                if not series.empty:
                    price = _safe_float(series.iloc[-1])
            self._closes[key] = price
        return self._closes[key]


class YahooDividendGateway:
    def __init__(self, settings: Settings, info: Optional[YahooInfoSource] = None):
        self.suffix = settings.yahoo_ticker_suffix
        self.info = info or YahooInfoSource(settings)
        self._history: Dict[str, pd.Series] = {}

    async def _dividend_history(self, ticker: str) -> pd.Series:
        if ticker not in self._history:
            self._history[ticker] = await _run(_fetch_dividends, to_yahoo_symbol(ticker, self.suffix))
        return self._history[ticker]

    async def dividends_between(
        self, tickers: Sequence[str], start: date, end: date
    ) -> List[DividendEvent]:
        events: List[DividendEvent] = []
        for ticker in tickers:
            history = await self._dividend_history(ticker)
            if history is None or history.empty:
                continue
            for stamp, amount in history.items():
                ex_date = pd.Timestamp(stamp).date()
                value = _safe_float(amount)
                if start <= ex_date <= end and value:
                    events.append(DividendEvent(ticker=ticker, ex_date=ex_date, amount=value))
        return sorted(events, key=lambda e: (e.ex_date, e.ticker))

    async def dividend_yields(self, tickers: Sequence[str]) -> Dict[str, Optional[float]]:
        yields: Dict[str, Optional[float]] = {}
        for ticker in tickers:
            info = await self.info.get(ticker)
            yields[ticker] = _safe_float(info.get("trailingAnnualDividendYield"))
        return yields


# =============================================================================
# UNIVERSE / VALUATION
# =============================================================================


def _net_debt_ebitda(info: Dict[str, Any]) -> Optional[float]:
    debt = _safe_float(info.get("totalDebt"))
    cash = _safe_float(info.get("totalCash")) or 0.0
    ebitda = _safe_float(info.get("ebitda"))
    if debt is None or not ebitda or ebitda <= 0:
        return None
    return (debt - cash) / ebitda


def metrics_from_info(info: Dict[str, Any]) -> FundamentalMetrics:
    return FundamentalMetrics(
        roe=_safe_float(info.get("returnOnEquity")),
        net_margin=_safe_float(info.get("profitMargins")),
        net_debt_ebitda=_net_debt_ebitda(info),
        payout=_safe_float(info.get("payoutRatio")),
        market_cap=_safe_float(info.get("marketCap")),
        pe_ratio=_safe_float(info.get("trailingPE")),
        pb_ratio=_safe_float(info.get("priceToBook")),
        dividend_yield=_safe_float(info.get("trailingAnnualDividendYield")),
        revenue_growth=_safe_float(info.get("revenueGrowth")),
    )


class YahooUniverseProvider:
    """Universe built from the configured ticker list."""

    def __init__(self, settings: Settings, info: Optional[YahooInfoSource] = None):
        self.tickers = list(settings.universe_tickers)
        self.info = info or YahooInfoSource(settings)

    async def list_companies(self, universe: str) -> List[Company]:
        companies = []
        for ticker in self.tickers:
            try:
                info = await self.info.get(ticker)
            except ExternalServiceError as e:
                logger.warning(f"Skipping {ticker} from universe {universe}: {e.message}")
                continue
            if not info:
                continue
            quote_type = str(info.get("quoteType") or "EQUITY").upper()
            companies.append(
                Company(
                    ticker=ticker,
                    name=info.get("longName") or info.get("shortName") or ticker,
                    sector=info.get("sector"),
                    industry=info.get("industry"),
                    asset_type="STOCK" if quote_type == "EQUITY" else quote_type,
                    average_daily_volume=_safe_float(info.get("averageVolume")),
                    metrics=metrics_from_info(info),
                )
            )
        logger.info(f"Universe {universe}: {len(companies)}/{len(self.tickers)} companies loaded")
        return companies


def normalize_score(
    value: Optional[float],
    good_range: tuple[float, float],
    bad_threshold: Optional[float] = None,
    inverse: bool = False,
) -> float:
    """Map a metric onto 0-100; 50 when missing, 60-100 inside ``good_range``."""
    if value is None:
        return 50.0

    if inverse:
        value = -value
        good_range = (-good_range[1], -good_range[0])
        if bad_threshold is not None:
            bad_threshold = -bad_threshold

    low, high = good_range
    if low <= value <= high:
        if high == low:
            return 80.0
        return 60.0 + (value - low) / (high - low) * 40.0
    if value > high:
        bonus = min((value - high) / (high - low + 0.001) * 10, 10)
        return min(100.0, 90.0 + bonus)
    if bad_threshold is not None and value < bad_threshold:
        return 20.0
    if low > 0:
        return 40.0 + max(0.0, value / low) * 20.0
    return 40.0


def overall_score(metrics: FundamentalMetrics) -> Optional[float]:
    """Average of profitability, leverage and valuation sub-scores."""
    if not metrics.has_data():
        return None
    profitability = (
        normalize_score(metrics.roe, (0.10, 0.25), bad_threshold=0.0)
        + normalize_score(metrics.net_margin, (0.08, 0.25), bad_threshold=0.0)
    ) / 2
    leverage = normalize_score(metrics.net_debt_ebitda, (0.0, 2.5), bad_threshold=4.0, inverse=True)
    valuation = (
        normalize_score(metrics.pe_ratio, (4.0, 12.0), bad_threshold=25.0, inverse=True)
        + normalize_score(metrics.pb_ratio, (0.5, 1.5), bad_threshold=4.0, inverse=True)
    ) / 2
    return round((profitability + leverage + valuation) / 3, 2)


class YahooValuationService:
    """Fair value by Graham, analyst target, Gordon and Bazin/Barsi models."""

    def __init__(self, settings: Settings, info: Optional[YahooInfoSource] = None):
        self.info = info or YahooInfoSource(settings)

    @staticmethod
    def fair_values(info: Dict[str, Any]) -> Dict[str, float]:
        models: Dict[str, float] = {}
        eps = _safe_float(info.get("trailingEps"))
        bvps = _safe_float(info.get("bookValue"))
        if eps and bvps and eps > 0 and bvps > 0:
            models["graham"] = math.sqrt(GRAHAM_MULTIPLIER * eps * bvps)

        target = _safe_float(info.get("targetMeanPrice"))
        if target and target > 0:
            models["analyst"] = target

        dps = _safe_float(info.get("trailingAnnualDividendRate")) or _safe_float(info.get("dividendRate"))
        if dps and dps > 0:
            models["barsi"] = dps / BARSI_TARGET_YIELD
            growth = _safe_float(info.get("earningsGrowth"))
            growth = GORDON_DEFAULT_GROWTH if growth is None else max(min(growth, GORDON_MAX_GROWTH), 0.0)
            models["gordon"] = dps * (1 + growth) / (GORDON_DISCOUNT_RATE - growth)
        return models

    async def evaluate(self, company: Company, price: float) -> Valuation:
        if price <= 0:
            raise ValueError(f"invalid price {price} for {company.ticker}")
        info = await self.info.get(company.ticker)
        if not info:
            raise ExternalServiceError(message=f"No fundamentals for {company.ticker}")

        fair = self.fair_values(info)
        upsides = {model: (value / price - 1) * 100 for model, value in fair.items()}
        best_model = max(upsides, key=upsides.get) if upsides else None

        technical_margin = None
        sma200 = _safe_float(info.get("twoHundredDayAverage"))
        if sma200 and sma200 > 0:
            technical_margin = (sma200 / price - 1) * 100

        return Valuation(
            upside=upsides[best_model] if best_model else None,
            fair_value=fair[best_model] if best_model else None,
            fair_value_model=best_model,
            overall_score=overall_score(company.metrics),
            technical_margin=technical_margin,
            upside_by_model=upsides,
        )
