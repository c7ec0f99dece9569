"""Tests for the index rule document and application settings."""

from __future__ import annotations

from datetime import time

import pytest
from pydantic import ValidationError

from index_engine.core.config import Settings
from index_engine.core.exceptions import InvalidIndexConfigError
from index_engine.domain.config import OrderBy, UpsideType, WeightType, parse_index_config


class TestParseIndexConfig:
    """Validation of the per-index config document."""

    def test_defaults(self):
        config = parse_index_config(None)

        assert config.universe == "B3"
        assert config.selection.top_n == 10
        assert config.selection.order_by == OrderBy.UPSIDE
        assert config.selection.order_direction == "desc"
        assert config.weights.type == WeightType.EQUAL
        assert config.rebalance.threshold == 0.05
        assert config.rebalance.upside_type == UpsideType.BEST
        assert config.diversification is None
        assert config.quality.active_filters() == {}

    def test_camel_case_document(self):
        config = parse_index_config({
            "selection": {"topN": 5, "orderBy": "dy", "orderDirection": "asc"},
            "quality": {"pvp": {"lte": 1.5}, "margemLiquida": {"gte": 0.1}},
            "rebalance": {"threshold": 0.1, "checkQuality": True, "upsideType": "graham"},
            "excludedTickers": [" petr4 ", ""],
        })

        assert config.selection.top_n == 5
        assert config.selection.order_by == OrderBy.DIVIDEND_YIELD
        assert config.quality.pb_ratio.max == 1.5
        assert config.quality.net_margin.min == 0.1
        assert list(config.quality.active_filters()) == ["net_margin", "pb_ratio"]
        assert config.rebalance.check_quality is True
        assert config.rebalance.upside_type == UpsideType.GRAHAM
        assert config.excluded_tickers == ["PETR4"]

    def test_disabled_filter_is_inactive(self):
        config = parse_index_config({"quality": {"roe": {"enabled": False, "min": 0.1}}})
        assert config.quality.active_filters() == {}

    def test_invalid_value_raises_typed_error(self):
        with pytest.raises(InvalidIndexConfigError) as exc_info:
            parse_index_config({"selection": {"topN": 0}})

        assert exc_info.value.status_code == 422
        assert exc_info.value.details["errors"]

    def test_inverted_bounds_rejected(self):
        with pytest.raises(InvalidIndexConfigError):
            parse_index_config({"quality": {"roe": {"min": 0.3, "max": 0.1}}})

    @pytest.mark.parametrize(
        "ticker,excluded",
        [
            ("PETR4", True),
            ("PETR3", True),
            ("SANB11", True),
            ("VALE3", False),
            ("ITUB4", True),
        ],
    )
    def test_exclusion_patterns(self, ticker, excluded):
        config = parse_index_config({
            "excludedTickers": ["itub4"],
            "excludedTickerPatterns": ["PETR*", "*11"],
        })
        assert config.is_excluded(ticker) is excluded


class TestSettings:
    """Environment-backed application settings."""

    def test_universe_from_comma_separated_string(self):
        settings = Settings(universe_tickers="petr4, vale3,,")
        assert settings.universe_tickers == ["PETR4", "VALE3"]

    def test_log_level_normalised(self):
        assert Settings(log_level="debug").log_level == "DEBUG"

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            Settings(log_level="verbose")

    def test_budget_bounds(self):
        with pytest.raises(ValidationError):
            Settings(cron_max_execution_seconds=0.5)

    def test_market_close_time_parsed(self):
        assert Settings(market_close_time="17:45").market_close_time == time(17, 45)
