"""Tests for the screening engine."""

from __future__ import annotations

from datetime import date

import pytest

from conftest import make_company
from index_engine.domain.config import parse_index_config
from index_engine.domain.models import Candidate, Valuation
from index_engine.engine.screening import (
    apply_diversification,
    apply_score_bands,
    rank_candidates,
    run_screening,
)

DAY = date(2024, 1, 9)


def _candidate(ticker, upside=None, score=None, sector="Financeiro"):
    return Candidate(ticker=ticker, sector=sector, current_price=10.0, upside=upside, overall_score=score)


def _price_all(prices, companies, price=10.0):
    for company in companies:
        prices.set(company.ticker, DAY, price)


# =============================================================================
# Filters
# =============================================================================


class TestScreeningFilters:
    """Universe and metric filters."""

    @pytest.mark.asyncio
    async def test_pvp_filter_with_no_match_is_empty_result(self, universe, prices, valuation):
        """P/VP max 1.5 against expensive companies yields count 0, not an error."""
        universe.companies = [
            make_company("AAAA3", pb_ratio=2.0),
            make_company("BBBB3", pb_ratio=3.1),
        ]
        config = parse_index_config({"quality": {"pvpFilter": {"enabled": True, "max": 1.5}}})

        result = await run_screening(config, universe, prices, valuation)

        assert result.count == 0
        assert result.is_empty
        assert {r.ticker for r in result.rejected} == {"AAAA3", "BBBB3"}
        assert "P/VP 2.00 acima do máximo 1.50" in [r.reason for r in result.rejected]

    @pytest.mark.asyncio
    async def test_missing_metric_rejects(self, universe, prices, valuation):
        """An enabled filter rejects companies that do not report the metric."""
        universe.companies = [make_company("AAAA3"), make_company("BBBB3", roe=0.2)]
        _price_all(prices, universe.companies)
        config = parse_index_config({"quality": {"roe": {"min": 0.1}}})

        result = await run_screening(config, universe, prices, valuation)

        assert [c.ticker for c in result.selected] == ["BBBB3"]
        assert result.rejected[0].reason == "ROE não disponível"

    @pytest.mark.asyncio
    async def test_exclusions_and_missing_quotes(self, universe, prices, valuation):
        """Excluded patterns and companies without quotes are rejected with a reason."""
        universe.companies = [
            make_company("PETR4"),
            make_company("ITUB4"),
            make_company("WEGE3"),
        ]
        prices.set("PETR4", DAY, 30.0)
        prices.set("ITUB4", DAY, 30.0)
        config = parse_index_config({"excludedTickerPatterns": ["PET*"]})

        result = await run_screening(config, universe, prices, valuation)

        reasons = {r.ticker: r.reason for r in result.rejected}
        assert [c.ticker for c in result.selected] == ["ITUB4"]
        assert reasons["PETR4"] == "ticker excluído pela configuração"
        assert reasons["WEGE3"] == "sem cotação disponível"

    @pytest.mark.asyncio
    async def test_liquidity_floor(self, universe, prices, valuation):
        """Companies below the average volume floor are rejected."""
        universe.companies = [make_company("AAAA3", volume=10.0), make_company("BBBB3")]
        _price_all(prices, universe.companies)
        config = parse_index_config({"liquidity": {"minAverageDailyVolume": 1000}})

        result = await run_screening(config, universe, prices, valuation)

        assert [c.ticker for c in result.selected] == ["BBBB3"]


# =============================================================================
# Valuation
# =============================================================================


class TestValuation:
    """Valuation results and failures."""

    @pytest.mark.asyncio
    async def test_failed_valuation_keeps_debug_payload(self, universe, prices, valuation):
        """A valuation error is recorded on the candidate instead of dropping it."""
        universe.companies = [make_company("AAAA3", roe=0.2), make_company("BBBB3")]
        _price_all(prices, universe.companies)
        valuation.valuations = {
            "AAAA3": RuntimeError("modelo indisponível"),
            "BBBB3": Valuation(upside=20.0, overall_score=70.0),
        }

        result = await run_screening(parse_index_config({}), universe, prices, valuation)

        by_ticker = {c.ticker: c for c in result.selected}
        assert set(by_ticker) == {"AAAA3", "BBBB3"}
        debug = by_ticker["AAAA3"].debug
        assert debug["score_calculation_failed"] is True
        assert debug["error"] == "modelo indisponível"
        assert debug["has_financial_data"] is True
        assert debug["has_price_data"] is True
        assert by_ticker["BBBB3"].debug is None

    @pytest.mark.asyncio
    async def test_upside_filters(self, universe, prices, valuation):
        """Negative or missing upside is rejected when positive upside is required."""
        universe.companies = [make_company("AAAA3"), make_company("BBBB3"), make_company("CCCC3")]
        _price_all(prices, universe.companies)
        valuation.valuations = {
            "AAAA3": Valuation(upside=-5.0),
            "BBBB3": Valuation(upside=15.0),
        }
        config = parse_index_config({"filters": {"requirePositiveUpside": True}})

        result = await run_screening(config, universe, prices, valuation)

        reasons = {r.ticker: r.reason for r in result.rejected}
        assert [c.ticker for c in result.selected] == ["BBBB3"]
        assert reasons["CCCC3"] == "upside não disponível"
        assert "não positivo" in reasons["AAAA3"]


# =============================================================================
# Ranking and selection
# =============================================================================


class TestRankingAndSelection:
    """Ordering, share-class dedupe, bands and diversification."""

    def test_nulls_last_and_ticker_tie_break(self):
        """Missing sort values go last; equal values order by ticker."""
        config = parse_index_config({})
        ranked = rank_candidates(
            [_candidate("ZZZZ3", 10.0), _candidate("BBBB3"), _candidate("AAAA3", 10.0), _candidate("CCCC3", 30.0)],
            config.selection,
        )
        assert [c.ticker for c in ranked] == ["CCCC3", "AAAA3", "ZZZZ3", "BBBB3"]

    @pytest.mark.asyncio
    async def test_dedupe_keeps_best_share_class(self, universe, prices, valuation):
        """Only the best-ranked class of a company is kept."""
        universe.companies = [make_company("PETR3"), make_company("PETR4"), make_company("VALE3")]
        _price_all(prices, universe.companies)
        valuation.valuations = {
            "PETR3": Valuation(upside=10.0),
            "PETR4": Valuation(upside=25.0),
            "VALE3": Valuation(upside=5.0),
        }

        result = await run_screening(parse_index_config({}), universe, prices, valuation)

        assert [c.ticker for c in result.selected] == ["PETR4", "VALE3"]
        assert "outra classe da mesma empresa (PETR4)" in {r.ticker: r.reason for r in result.rejected}["PETR3"]

    @pytest.mark.asyncio
    async def test_top_n(self, universe, prices, valuation):
        """Selection keeps the top N ranked candidates."""
        universe.companies = [make_company(t) for t in ("AAAA3", "BBBB3", "CCCC3")]
        _price_all(prices, universe.companies)
        valuation.valuations = {
            "AAAA3": Valuation(upside=5.0),
            "BBBB3": Valuation(upside=50.0),
            "CCCC3": Valuation(upside=20.0),
        }

        result = await run_screening(parse_index_config({"selection": {"topN": 2}}), universe, prices, valuation)

        assert [c.ticker for c in result.selected] == ["BBBB3", "CCCC3"]
        assert [c.ticker for c in result.candidates_before_selection] == ["BBBB3", "CCCC3", "AAAA3"]

    def test_score_bands(self):
        """Each band contributes at most max_count candidates, in rank order."""
        config = parse_index_config({
            "selection": {"scoreBands": [{"min": 80, "max": 100, "maxCount": 1}, {"min": 50, "max": 79.99, "maxCount": 2}]},
        })
        ranked = [
            _candidate("AAAA3", 40.0, 90.0),
            _candidate("BBBB3", 30.0, 85.0),
            _candidate("CCCC3", 20.0, 60.0),
            _candidate("DDDD3", 10.0, 55.0),
            _candidate("EEEE3", 5.0, 52.0),
        ]

        selected = apply_score_bands(ranked, config.selection.score_bands)

        assert [c.ticker for c in selected] == ["AAAA3", "CCCC3", "DDDD3"]

    def test_default_sector_limit(self):
        """Without explicit limits a sector holds at most 4 constituents."""
        config = parse_index_config({"diversification": {"type": "maxCount"}})
        ranked = [_candidate(f"BNK{c}3", 50.0 - i) for i, c in enumerate("ABCDE")]
        ranked.append(_candidate("ENGY3", 1.0, sector="Energia"))

        selected, removed = apply_diversification(ranked, config.diversification, 10)

        assert [c.ticker for c in selected] == ["BNKA3", "BNKB3", "BNKC3", "BNKD3", "ENGY3"]
        assert removed == ["BNKE3"]

    def test_sector_allocation_quota(self):
        """Allocation mode fills each sector quota before unlisted sectors."""
        config = parse_index_config({
            "diversification": {"type": "allocation", "sectorAllocation": {"Financeiro": 0.5, "Energia": 0.5}},
        })
        ranked = [
            _candidate("BNKA3", 50.0),
            _candidate("BNKB3", 40.0),
            _candidate("BNKC3", 30.0),
            _candidate("ENGA3", 20.0, sector="Energia"),
        ]

        selected, removed = apply_diversification(ranked, config.diversification, 2)

        assert [c.ticker for c in selected] == ["BNKA3", "ENGA3"]
        assert removed == ["BNKB3"]
