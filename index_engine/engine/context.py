"""Collaborators handed to every engine operation."""

from __future__ import annotations

from dataclasses import dataclass, field

from index_engine.core.config import Settings, get_settings
from index_engine.gateways import (
    DividendGateway,
    IndexStore,
    MarketCalendar,
    PriceGateway,
    UniverseProvider,
    ValuationService,
)


@dataclass
class EngineContext:
    store: IndexStore
    calendar: MarketCalendar
    prices: PriceGateway
    dividends: DividendGateway
    valuation: ValuationService
    universe: UniverseProvider
    settings: Settings = field(default_factory=get_settings)
