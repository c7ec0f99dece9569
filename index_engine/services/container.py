"""Wiring of the production collaborators."""

from __future__ import annotations

from typing import Optional

from index_engine.core.config import Settings, get_settings
from index_engine.database.connection import Database
from index_engine.engine.context import EngineContext
from index_engine.repositories.indices_orm import IndexRepository
from index_engine.services.market_data import (
    YahooDividendGateway,
    YahooInfoSource,
    YahooMarketCalendar,
    YahooPriceGateway,
    YahooUniverseProvider,
    YahooValuationService,
)


def build_context(database: Database, settings: Optional[Settings] = None) -> EngineContext:
    """Engine context backed by PostgreSQL and yfinance."""
    settings = settings or get_settings()
    info = YahooInfoSource(settings)
    return EngineContext(
        store=IndexRepository(database.session),
        calendar=YahooMarketCalendar(settings),
        prices=YahooPriceGateway(settings),
        dividends=YahooDividendGateway(settings, info),
        valuation=YahooValuationService(settings, info),
        universe=YahooUniverseProvider(settings, info),
        settings=settings,
    )
