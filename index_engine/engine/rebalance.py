"""Rebalance decision engine.

Compares the live composition with the screened target and decides whether
the difference justifies a rebalance. The distance between the two is the
larger of:

- weight turnover, ``0.5 * sum(|w_target - w_current|)`` over both sets
- upside gain, how far (in fraction points) the best new entrant's upside
  beats the weakest holding that survives screening

A rebalance happens when at least one concrete change exists and either the
distance exceeds the threshold or a current holding dropped out of the target
set (a disqualified asset is never kept).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from index_engine.domain.config import IndexConfig, UpsideType
from index_engine.domain.models import (
    Candidate,
    CompositionChange,
    CompositionEntry,
    LogAction,
    ScreeningResult,
)
from index_engine.engine.screening import rank_candidates

WEIGHT_CHANGE_TOLERANCE = 1e-4

_UPSIDE_LABELS = {
    UpsideType.FCD: "FCD",
    UpsideType.TECHNICAL: "Análise Técnica",
}


@dataclass
class RebalanceDecision:
    should_rebalance: bool
    distance: float
    weight_distance: float
    upside_delta: float
    forced: bool
    has_changes: bool


def get_upside_for_rebalance(
    candidate: Candidate, upside_type: UpsideType = UpsideType.BEST
) -> Optional[float]:
    """Upside figure used for comparisons, falling back to the headline upside."""
    models = {k: v for k, v in candidate.upside_by_model.items() if v is not None}
    if upside_type == UpsideType.BEST:
        if models:
            return max(models.values())
    elif upside_type == UpsideType.AVERAGE:
        if models:
            return float(np.mean(list(models.values())))
    elif upside_type.value in models:
        return models[upside_type.value]
    return candidate.upside


def target_weights(
    ideal: Sequence[Candidate], ideal_weights: Optional[Mapping[str, float]] = None
) -> Dict[str, float]:
    if ideal_weights:
        return {c.ticker: float(ideal_weights.get(c.ticker, 0.0)) for c in ideal}
    if not ideal:
        return {}
    return {c.ticker: 1.0 / len(ideal) for c in ideal}


def weight_turnover(current: Mapping[str, float], target: Mapping[str, float]) -> float:
    """Half the L1 distance between two weight vectors (0 = identical, 1 = disjoint)."""
    tickers = sorted(set(current) | set(target))
    if not tickers:
        return 0.0
    a = np.array([current.get(t, 0.0) for t in tickers], dtype=float)
    b = np.array([target.get(t, 0.0) for t in tickers], dtype=float)
    return float(0.5 * np.abs(a - b).sum())


def _upside_gap(
    current_tickers: set, ideal: Sequence[Candidate], upside_type: UpsideType
) -> Optional[float]:
    """Upside (percent) of the first new entrant minus the last surviving holding."""
    surviving = [c for c in ideal if c.ticker in current_tickers]
    newcomers = [c for c in ideal if c.ticker not in current_tickers]
    if not surviving or not newcomers:
        return None
    last_current = get_upside_for_rebalance(surviving[-1], upside_type)
    first_new = get_upside_for_rebalance(newcomers[0], upside_type)
    if last_current is None or first_new is None:
        return None
    return first_new - last_current


def evaluate_rebalance(
    current: Sequence[CompositionEntry],
    ideal: Sequence[Candidate],
    threshold: float = 0.05,
    upside_type: UpsideType = UpsideType.BEST,
    ideal_weights: Optional[Mapping[str, float]] = None,
) -> RebalanceDecision:
    current_weights = {entry.ticker: entry.target_weight for entry in current}
    targets = target_weights(ideal, ideal_weights)

    current_tickers = set(current_weights)
    ideal_tickers = set(targets)
    exits = current_tickers - ideal_tickers
    entries = ideal_tickers - current_tickers
    reweights = [
        t for t in current_tickers & ideal_tickers
        if abs(current_weights[t] - targets[t]) > WEIGHT_CHANGE_TOLERANCE
    ]
    has_changes = bool(exits or entries or reweights)

    turnover = weight_turnover(current_weights, targets)
    gap = _upside_gap(current_tickers, ideal, upside_type)
    upside_delta = max(gap, 0.0) / 100.0 if gap is not None else 0.0
    distance = max(turnover, upside_delta)

    forced = bool(ideal) and (not current or bool(exits))
    return RebalanceDecision(
        should_rebalance=has_changes and (forced or distance > threshold),
        distance=distance,
        weight_distance=turnover,
        upside_delta=upside_delta,
        forced=forced,
        has_changes=has_changes,
    )


def should_rebalance(
    current: Sequence[CompositionEntry],
    ideal: Sequence[Candidate],
    threshold: float = 0.05,
    upside_type: UpsideType = UpsideType.BEST,
    ideal_weights: Optional[Mapping[str, float]] = None,
) -> bool:
    return evaluate_rebalance(current, ideal, threshold, upside_type, ideal_weights).should_rebalance


# =============================================================================
# DIFF AND AUDIT TEXT
# =============================================================================


def _exit_reason(
    ticker: str,
    ideal: Sequence[Candidate],
    config: IndexConfig,
    quality_rejected: Mapping[str, str],
    screening: Optional[ScreeningResult],
) -> str:
    reason = "Ativo removido: "
    screening_rejected = {r.ticker: r.reason for r in screening.rejected} if screening else {}
    before_selection = {c.ticker: c for c in screening.candidates_before_selection} if screening else {}
    diversified = set(screening.removed_by_diversification) if screening else set()
    selection = config.selection

    if ticker in quality_rejected:
        return reason + f"não passou na validação de qualidade ({quality_rejected[ticker]})"
    if ticker in screening_rejected:
        return reason + screening_rejected[ticker]
    if ticker in diversified:
        candidate = before_selection.get(ticker)
        sector = candidate.sector_label if candidate else "Outros"
        in_sector = sum(1 for c in ideal if c.sector_label == sector)
        limit = config.diversification.sector_limit(sector) if config.diversification else None
        if limit is not None:
            return reason + (
                f'removido por diversificação (setor "{sector}" com {in_sector} ativos '
                f"selecionados, limite: {limit} por setor)"
            )
        return reason + f'removido por regras de diversificação (setor "{sector}")'
    if ticker in before_selection:
        candidate = before_selection[ticker]
        score = f"{candidate.overall_score:.0f}" if candidate.overall_score is not None else "N/A"
        if selection.score_bands:
            band = next((b for b in selection.score_bands if candidate.overall_score is not None and b.min <= candidate.overall_score <= b.max), None)
            if band is None:
                return reason + f"não está dentro das faixas de score configuradas (Score: {score})"
            in_band = sum(
                1 for c in ideal
                if c.overall_score is not None and band.min <= c.overall_score <= band.max
            )
            return reason + (
                f"não está dentro da faixa de score [{band.min:g}-{band.max:g}] "
                f"(Score: {score}, {in_band}/{band.max_count} ativos já selecionados nesta faixa)"
            )
        ranked = rank_candidates(list(before_selection.values()), selection)
        position = next(i for i, c in enumerate(ranked, start=1) if c.ticker == ticker)
        return reason + (
            f"não está entre os top {selection.top_n} selecionados "
            f"(posição {position} no ranking por {selection.order_by.value})"
        )
    if selection.score_bands:
        return reason + "não está dentro das faixas de score configuradas"
    return reason + (
        f"não está entre os top {selection.top_n} selecionados "
        "(não passou nos filtros ou ranking insuficiente)"
    )


def _entry_reason(
    candidate: Candidate,
    position: int,
    ideal: Sequence[Candidate],
    current_tickers: set,
    config: IndexConfig,
) -> str:
    details = [f"posição {position}/{len(ideal)}"]
    if candidate.fair_value_model:
        details.append(f"Modelo: {candidate.fair_value_model}")
    if candidate.upside is not None:
        details.append(f"Upside: {candidate.upside:.1f}%")
    if candidate.overall_score is not None:
        details.append(f"Score: {candidate.overall_score:.0f}")
    if candidate.technical_margin is not None:
        details.append(f"Margem técnica: {candidate.technical_margin:.1f}%")
    reason = f"Ativo adicionado: selecionado pelo screening ({', '.join(details)})"

    rebalance = config.rebalance
    surviving = [c for c in ideal if c.ticker in current_tickers]
    if surviving:
        last_current = get_upside_for_rebalance(surviving[-1], rebalance.upside_type)
        upside = get_upside_for_rebalance(candidate, rebalance.upside_type)
        if last_current is not None and upside is not None:
            diff = upside - last_current
            if diff > rebalance.threshold * 100:
                reason += f" - adicionado por threshold ({diff:.1f}% superior ao último da lista)"

    if candidate.overall_score is not None:
        band = next(
            (b for b in config.selection.score_bands if b.min <= candidate.overall_score <= b.max),
            None,
        )
        if band is not None:
            reason += f" - dentro da faixa de score [{band.min:g}-{band.max:g}]"
    return reason


def compare_composition(
    current: Sequence[CompositionEntry],
    ideal: Sequence[Candidate],
    config: IndexConfig,
    quality_rejected: Optional[Mapping[str, str]] = None,
    screening: Optional[ScreeningResult] = None,
    ideal_weights: Optional[Mapping[str, float]] = None,
) -> List[CompositionChange]:
    """Diff current vs. target: EXITs, then ENTRYs, then re-weights, each by ticker."""
    quality_rejected = quality_rejected or {}
    current_weights = {entry.ticker: entry.target_weight for entry in current}
    current_tickers = set(current_weights)
    positions = {c.ticker: i for i, c in enumerate(ideal, start=1)}
    targets = target_weights(ideal, ideal_weights) if ideal_weights else {}

    exits = [
        CompositionChange(
            action=LogAction.EXIT,
            ticker=ticker,
            reason=_exit_reason(ticker, ideal, config, quality_rejected, screening),
            old_weight=current_weights[ticker],
            new_weight=0.0,
        )
        for ticker in sorted(current_tickers - set(positions))
    ]
    entries = [
        CompositionChange(
            action=LogAction.ENTRY,
            ticker=candidate.ticker,
            reason=_entry_reason(candidate, positions[candidate.ticker], ideal, current_tickers, config),
            old_weight=0.0,
            new_weight=targets.get(candidate.ticker),
        )
        for candidate in sorted(ideal, key=lambda c: c.ticker)
        if candidate.ticker not in current_tickers
    ]
    reweights = []
    for ticker in sorted(current_tickers & set(targets)):
        old, new = current_weights[ticker], targets[ticker]
        if abs(old - new) > WEIGHT_CHANGE_TOLERANCE:
            reweights.append(
                CompositionChange(
                    action=LogAction.REBALANCE,
                    ticker=ticker,
                    reason=f"Peso ajustado de {old * 100:.2f}% para {new * 100:.2f}%",
                    old_weight=old,
                    new_weight=new,
                )
            )
    return exits + entries + reweights


def generate_rebalance_reason(
    current: Sequence[CompositionEntry],
    ideal: Sequence[Candidate],
    config: IndexConfig,
    quality_rejected: Optional[Mapping[str, str]] = None,
    decision: Optional[RebalanceDecision] = None,
) -> str:
    """One-line audit explanation of why a rebalance was (or would be) applied."""
    rebalance = config.rebalance
    current_tickers = {entry.ticker for entry in current}
    ideal_tickers = {c.ticker for c in ideal}
    exits = current_tickers - ideal_tickers
    entries = [c for c in ideal if c.ticker not in current_tickers]
    reasons: List[str] = []

    if exits and entries:
        reasons.append(f"{len(exits)} ativo(s) removido(s) e {len(entries)} ativo(s) adicionado(s)")
    elif exits:
        reasons.append(f"{len(exits)} ativo(s) removido(s) da composição")
    elif entries:
        reasons.append(f"{len(entries)} ativo(s) adicionado(s) à composição")

    gap = _upside_gap(current_tickers, ideal, rebalance.upside_type)
    if gap is not None and gap > rebalance.threshold * 100:
        label = ""
        if rebalance.upside_type not in (UpsideType.BEST, UpsideType.AVERAGE):
            label = f" ({_UPSIDE_LABELS.get(rebalance.upside_type, rebalance.upside_type.value.capitalize())})"
        reasons.append(
            f"novo ativo com upside{label} {gap:.1f}% superior ao último da lista atual "
            f"(threshold: {rebalance.threshold * 100:.0f}%)"
        )

    if rebalance.check_quality and exits and quality_rejected:
        rejected_current = [t for t in quality_rejected if t in current_tickers]
        if rejected_current:
            reasons.append(
                f"{len(rejected_current)} ativo(s) removido(s) por não passar na validação de qualidade"
            )

    if exits:
        if config.selection.score_bands:
            reasons.append("alguns ativos removidos por não estarem nas faixas de score configuradas")
        else:
            reasons.append(
                f"alguns ativos removidos por não estarem entre os top {config.selection.top_n} selecionados"
            )
        if config.diversification is not None:
            reasons.append("alguns ativos removidos por regras de diversificação")

    if decision is not None and not exits and not entries and decision.weight_distance > rebalance.threshold:
        reasons.append(
            f"distância de pesos {decision.weight_distance * 100:.1f}% acima do threshold "
            f"({rebalance.threshold * 100:.0f}%)"
        )

    if not reasons:
        return "Rebalanceamento executado após screening"
    return f"Rebalanceamento necessário: {', '.join(reasons)}"
