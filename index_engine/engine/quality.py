"""Quality guardrails applied to screened candidates.

The same metric checks run twice: once inside screening against the
universe's fundamentals, and again here as an optional second pass enabled
by ``rebalance.check_quality``. Rejections carry a human-readable reason
(Portuguese, as shown in the audit trail) so exits can be explained.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, Optional

from index_engine.core.logging import get_logger
from index_engine.domain.config import IndexConfig, MetricFilter
from index_engine.domain.models import Candidate, FundamentalMetrics, QualityResult

logger = get_logger("engine.quality")


def _percent(value: float) -> str:
    return f"{value * 100:.1f}%"


def _multiple(value: float) -> str:
    return f"{value:.2f}x"


def _brl_billions(value: float) -> str:
    return f"R$ {value / 1_000_000_000:.2f}bi"


def _ratio(value: float) -> str:
    return f"{value:.2f}"


def _score(value: float) -> str:
    return f"{value:.0f}"


METRIC_LABELS: Dict[str, tuple[str, Callable[[float], str]]] = {
    "roe": ("ROE", _percent),
    "net_margin": ("Margem Líquida", _percent),
    "net_debt_ebitda": ("Dívida Líq./EBITDA", _multiple),
    "payout": ("Payout", _percent),
    "market_cap": ("Market Cap", _brl_billions),
    "pe_ratio": ("P/L", _ratio),
    "pb_ratio": ("P/VP", _ratio),
    "dividend_yield": ("Dividend Yield", _percent),
    "revenue_growth": ("Crescimento de Receita", _percent),
    "overall_score": ("Overall Score", _score),
}


def check_metric(name: str, value: Optional[float], metric_filter: MetricFilter) -> Optional[str]:
    """Return the rejection reason for one metric, or None when it passes."""
    label, fmt = METRIC_LABELS[name]
    if value is None:
        return f"{label} não disponível"
    if metric_filter.min is not None and value < metric_filter.min:
        return f"{label} {fmt(value)} abaixo do mínimo {fmt(metric_filter.min)}"
    if metric_filter.max is not None and value > metric_filter.max:
        return f"{label} {fmt(value)} acima do máximo {fmt(metric_filter.max)}"
    return None


def check_fundamentals(
    metrics: FundamentalMetrics,
    filters: Dict[str, MetricFilter],
    skip: Iterable[str] = ("overall_score",),
) -> Optional[str]:
    """First failing fundamental filter, in declaration order."""
    skipped = set(skip)
    for name, metric_filter in filters.items():
        if name in skipped:
            continue
        reason = check_metric(name, metrics.get(name), metric_filter)
        if reason:
            return reason
    return None


def _candidate_metric(candidate: Candidate, name: str) -> Optional[float]:
    if name == "overall_score":
        return candidate.overall_score
    value = candidate.metrics.get(name)
    if value is None and name == "market_cap":
        return candidate.market_cap
    if value is None and name == "dividend_yield":
        return candidate.dividend_yield
    return value


def validate_candidate_quality(candidate: Candidate, config: IndexConfig) -> Optional[str]:
    """Rejection reason for a candidate, or None when it meets every guardrail."""
    filters = config.quality.active_filters()
    if not filters:
        return None

    if candidate.current_price <= 0:
        return "sem cotação válida"

    needs_fundamentals = any(name != "overall_score" for name in filters)
    if needs_fundamentals and not candidate.metrics.has_data():
        return "sem dados financeiros disponíveis"

    for name, metric_filter in filters.items():
        reason = check_metric(name, _candidate_metric(candidate, name), metric_filter)
        if reason:
            return reason
    return None


def filter_by_quality(candidates: Iterable[Candidate], config: IndexConfig) -> QualityResult:
    """Split candidates into accepted and rejected-with-reason.

    Pass-through when ``rebalance.check_quality`` is off. An all-rejected
    outcome is a normal result.
    """
    candidates = list(candidates)
    if not config.rebalance.check_quality:
        return QualityResult(valid=candidates)

    result = QualityResult()
    for candidate in candidates:
        reason = validate_candidate_quality(candidate, config)
        if reason is None:
            result.valid.append(candidate)
        else:
            result.rejected.append((candidate, reason))
            logger.info(f"[QUALITY] {candidate.ticker} rejected: {reason}")

    logger.info(
        f"[QUALITY] {len(result.valid)} accepted, {len(result.rejected)} rejected"
    )
    return result
