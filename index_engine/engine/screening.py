"""Screening engine: universe + rule document -> ranked target composition.

Pipeline, in order:

1. universe filters (asset type, exclusions, sector/industry allow-lists,
   size bucket) and fundamental metric filters; a missing metric rejects
2. latest prices; companies without a quote are rejected
3. liquidity floor
4. valuation (upside, per-model upsides, overall score) and upside filters;
   a failing valuation is kept on the candidate as a ``debug`` payload
5. ranking with nulls last, then one share class per company
6. ``top_n`` or ``score_bands`` selection, then sector diversification

Every discarded company ends up in ``ScreeningResult.rejected`` with a reason.
An empty selection is a normal result.
"""

from __future__ import annotations

import math
from typing import Dict, List, Optional, Sequence, Tuple

from index_engine.core.logging import get_logger
from index_engine.domain.config import (
    SIZE_BUCKET_BOUNDS,
    DiversificationConfig,
    IndexConfig,
    OrderBy,
    ScoreBand,
    SelectionConfig,
)
from index_engine.domain.models import (
    Candidate,
    Company,
    Rejection,
    ScreeningResult,
    company_base,
)
from index_engine.engine.quality import check_fundamentals, check_metric
from index_engine.gateways import PriceGateway, UniverseProvider, ValuationService

logger = get_logger("engine.screening")


def _universe_rejection(company: Company, config: IndexConfig) -> Optional[str]:
    if config.asset_types and company.asset_type.upper() not in {t.upper() for t in config.asset_types}:
        return f"tipo de ativo {company.asset_type} fora do universo"
    if config.is_excluded(company.ticker):
        return "ticker excluído pela configuração"
    if config.sectors and company.sector not in config.sectors:
        return f"setor {company.sector or 'N/A'} fora da lista permitida"
    if config.industries and company.industry not in config.industries:
        return f"indústria {company.industry or 'N/A'} fora da lista permitida"
    if config.size_bucket is not None:
        market_cap = company.metrics.market_cap
        low, high = SIZE_BUCKET_BOUNDS[config.size_bucket]
        if market_cap is None or not (low <= market_cap < high):
            return f"porte fora da faixa {config.size_bucket.value}"
    return None


def sort_value(candidate: Candidate, order_by: OrderBy) -> Optional[float]:
    if order_by == OrderBy.DIVIDEND_YIELD:
        return candidate.dividend_yield
    if order_by == OrderBy.OVERALL_SCORE:
        return candidate.overall_score
    if order_by == OrderBy.MARKET_CAP:
        return candidate.market_cap
    if order_by == OrderBy.TECHNICAL_MARGIN:
        return candidate.technical_margin
    return candidate.upside


def rank_candidates(candidates: Sequence[Candidate], selection: SelectionConfig) -> List[Candidate]:
    """Sort by the configured key; nulls last in both directions, ties by ticker."""
    sign = -1.0 if selection.order_direction == "desc" else 1.0

    def key(candidate: Candidate) -> Tuple[bool, float, str]:
        value = sort_value(candidate, selection.order_by)
        if value is None:
            return (True, 0.0, candidate.ticker)
        return (False, sign * value, candidate.ticker)

    return sorted(candidates, key=key)


def dedupe_share_classes(
    ranked: Sequence[Candidate], rejected: List[Rejection]
) -> List[Candidate]:
    """Keep the best-ranked share class of each company."""
    kept: Dict[str, str] = {}
    result = []
    for candidate in ranked:
        base = company_base(candidate.ticker)
        if base in kept:
            rejected.append(
                Rejection(
                    candidate.ticker,
                    f"outra classe da mesma empresa ({kept[base]}) melhor classificada",
                )
            )
            continue
        kept[base] = candidate.ticker
        result.append(candidate)
    return result


def _in_band(candidate: Candidate, band: ScoreBand) -> bool:
    score = candidate.overall_score
    return score is not None and band.min <= score <= band.max


def apply_score_bands(ranked: Sequence[Candidate], bands: Sequence[ScoreBand]) -> List[Candidate]:
    """Up to ``max_count`` best-ranked candidates per score band, rank order kept."""
    chosen = set()
    for band in bands:
        picked = 0
        for candidate in ranked:
            if picked >= band.max_count:
                break
            if candidate.ticker in chosen or not _in_band(candidate, band):
                continue
            chosen.add(candidate.ticker)
            picked += 1
    return [c for c in ranked if c.ticker in chosen]


def apply_diversification(
    ranked: Sequence[Candidate], diversification: DiversificationConfig, target: int
) -> Tuple[List[Candidate], List[str]]:
    """Pick ``target`` candidates honouring sector limits.

    Returns the selection in rank order and the tickers skipped because their
    sector was full.
    """
    selected: List[Candidate] = []
    removed: List[str] = []

    if diversification.type == "allocation" and diversification.sector_allocation:
        quotas = {
            sector: math.ceil(target * share)
            for sector, share in diversification.sector_allocation.items()
        }
        counts: Dict[str, int] = {}
        chosen = set()
        for candidate in ranked:
            if len(chosen) >= target:
                break
            sector = candidate.sector_label
            if sector in quotas and counts.get(sector, 0) < quotas[sector]:
                counts[sector] = counts.get(sector, 0) + 1
                chosen.add(candidate.ticker)
        for candidate in ranked:
            if len(chosen) >= target:
                break
            if candidate.ticker not in chosen and candidate.sector_label not in quotas:
                chosen.add(candidate.ticker)
        selected = [c for c in ranked if c.ticker in chosen]
        removed = [c.ticker for c in ranked[:target] if c.ticker not in chosen]
        return selected, removed

    counts = {}
    for candidate in ranked:
        if len(selected) >= target:
            break
        sector = candidate.sector_label
        limit = diversification.sector_limit(sector)
        if limit is not None and counts.get(sector, 0) >= limit:
            removed.append(candidate.ticker)
            continue
        counts[sector] = counts.get(sector, 0) + 1
        selected.append(candidate)
    return selected, removed


def select_candidates(
    ranked: Sequence[Candidate], config: IndexConfig
) -> Tuple[List[Candidate], List[str]]:
    selection = config.selection
    if selection.score_bands:
        pool = apply_score_bands(ranked, selection.score_bands)
        if config.diversification is not None:
            return apply_diversification(pool, config.diversification, len(pool))
        return pool, []
    if config.diversification is not None:
        return apply_diversification(ranked, config.diversification, selection.top_n)
    return list(ranked[: selection.top_n]), []


async def _attach_valuation(
    candidate: Candidate, company: Company, valuation: ValuationService
) -> None:
    try:
        result = await valuation.evaluate(company, candidate.current_price)
    except Exception as e:
        logger.warning(f"[SCREENING] Valuation failed for {candidate.ticker}: {e}")
        candidate.debug = {
            "score_calculation_failed": True,
            "error": str(e),
            "has_financial_data": company.metrics.has_data(),
            "has_price_data": candidate.current_price > 0,
        }
        return

    candidate.upside = result.upside
    candidate.fair_value = result.fair_value
    candidate.fair_value_model = result.fair_value_model
    candidate.overall_score = result.overall_score
    candidate.technical_margin = result.technical_margin
    candidate.upside_by_model = dict(result.upside_by_model)
    if result.overall_score is None:
        candidate.debug = {
            "score_calculation_failed": True,
            "error": "score indisponível",
            "has_financial_data": company.metrics.has_data(),
            "has_price_data": candidate.current_price > 0,
        }


def _upside_rejection(candidate: Candidate, config: IndexConfig) -> Optional[str]:
    filters = config.filters
    if filters.min_upside is None and not filters.require_positive_upside:
        return None
    if candidate.upside is None:
        return "upside não disponível"
    if filters.require_positive_upside and candidate.upside <= 0:
        return f"upside {candidate.upside:.1f}% não positivo"
    if filters.min_upside is not None and candidate.upside < filters.min_upside:
        return f"upside {candidate.upside:.1f}% abaixo do mínimo {filters.min_upside:.1f}%"
    return None


async def run_screening(
    config: IndexConfig,
    universe: UniverseProvider,
    prices: PriceGateway,
    valuation: ValuationService,
) -> ScreeningResult:
    """Screen the universe and return the ranked target composition."""
    result = ScreeningResult()
    filters = config.quality.active_filters()

    companies = await universe.list_companies(config.universe)
    eligible: List[Company] = []
    for company in companies:
        reason = _universe_rejection(company, config) or check_fundamentals(company.metrics, filters)
        if reason:
            result.rejected.append(Rejection(company.ticker, reason))
        else:
            eligible.append(company)

    logger.info(
        f"[SCREENING] {len(eligible)}/{len(companies)} companies passed universe and metric filters"
    )
    if not eligible:
        return result

    quotes = await prices.latest_prices([c.ticker for c in eligible])
    min_volume = config.liquidity.min_average_daily_volume
    score_filter = filters.get("overall_score")

    candidates: List[Candidate] = []
    for company in eligible:
        quote = quotes.get(company.ticker)
        if quote is None or quote.price <= 0:
            result.rejected.append(Rejection(company.ticker, "sem cotação disponível"))
            continue

        volume = company.average_daily_volume
        if min_volume is not None and (volume is None or volume < min_volume):
            shown = f"{volume:,.0f}" if volume is not None else "N/A"
            result.rejected.append(
                Rejection(company.ticker, f"liquidez média {shown} abaixo do mínimo {min_volume:,.0f}")
            )
            continue

        candidate = Candidate(
            ticker=company.ticker,
            name=company.name,
            sector=company.sector,
            industry=company.industry,
            current_price=quote.price,
            dividend_yield=company.metrics.dividend_yield,
            market_cap=company.metrics.market_cap,
            average_daily_volume=volume,
            metrics=company.metrics,
        )
        await _attach_valuation(candidate, company, valuation)

        reason = _upside_rejection(candidate, config)
        if reason is None and score_filter is not None:
            reason = check_metric("overall_score", candidate.overall_score, score_filter)
            if reason and candidate.debug:
                reason += f" (falha no cálculo: {candidate.debug['error']})"
        if reason:
            result.rejected.append(Rejection(candidate.ticker, reason))
            continue
        candidates.append(candidate)

    ranked = dedupe_share_classes(rank_candidates(candidates, config.selection), result.rejected)
    result.candidates_before_selection = ranked
    result.selected, result.removed_by_diversification = select_candidates(ranked, config)

    logger.info(
        f"[SCREENING] Selected {result.count} of {len(ranked)} ranked candidates "
        f"({len(result.removed_by_diversification)} removed by diversification)"
    )
    return result
