"""Composition weighting schemes."""

from __future__ import annotations

from typing import Dict, Mapping, Sequence

import numpy as np

from index_engine.core.logging import get_logger
from index_engine.domain.config import IndexConfig, WeightType
from index_engine.domain.models import Candidate

logger = get_logger("engine.weights")


def _equal(tickers: Sequence[str]) -> Dict[str, float]:
    if not tickers:
        return {}
    weight = 1.0 / len(tickers)
    return {ticker: weight for ticker in tickers}


def normalize_weights(weights: Mapping[str, float]) -> Dict[str, float]:
    """Clip negatives and rescale so the weights sum to exactly 1.

    Falls back to equal weights when nothing positive remains.
    """
    tickers = list(weights)
    if not tickers:
        return {}
    values = np.clip(np.array([weights[t] for t in tickers], dtype=float), 0.0, None)
    values = np.nan_to_num(values, nan=0.0, posinf=0.0)
    total = values.sum()
    if total <= 0:
        return _equal(tickers)
    values = values / total
    # Push the float residue onto the largest weight
    values[int(np.argmax(values))] += 1.0 - values.sum()
    return dict(zip(tickers, values.tolist()))


def _score_weights(candidates: Sequence[Candidate], min_weight: float, max_weight: float) -> Dict[str, float]:
    scored = [c for c in candidates if c.overall_score is not None]
    unscored = [c for c in candidates if c.overall_score is None]
    if not scored:
        return _equal([c.ticker for c in candidates])

    scores = np.array([c.overall_score for c in scored], dtype=float)
    total = scores.sum()
    if total <= 0:
        return _equal([c.ticker for c in candidates])

    raw = np.clip(scores / total, min_weight, max_weight)
    weights = dict(zip((c.ticker for c in scored), raw.tolist()))
    assigned = float(raw.sum())

    if unscored:
        share = max(1.0 - assigned, 0.0) / len(unscored)
        weights.update({c.ticker: share for c in unscored})
    return weights


def _custom_weights(candidates: Sequence[Candidate], custom: Mapping[str, float]) -> Dict[str, float]:
    explicit = {
        c.ticker: float(custom[c.ticker.upper()])
        for c in candidates
        if custom.get(c.ticker.upper()) is not None
    }
    if not explicit or sum(explicit.values()) <= 0:
        logger.warning("[WEIGHTS] Custom weighting without usable weights, using equal weight")
        return _equal([c.ticker for c in candidates])

    missing = [c.ticker for c in candidates if c.ticker not in explicit]
    total = sum(explicit.values())
    if missing:
        # Explicit weights keep their proportions; the rest share what is left
        if total >= 1.0:
            explicit = {t: w / total for t, w in explicit.items()}
            total = 1.0
        remainder = (1.0 - total) / len(missing)
        explicit.update({t: remainder for t in missing})
    return explicit


def calculate_weights(candidates: Sequence[Candidate], config: IndexConfig) -> Dict[str, float]:
    """Target weights for a new composition, always normalised to 1."""
    if not candidates:
        return {}

    scheme = config.weights
    tickers = [c.ticker for c in candidates]

    if scheme.type == WeightType.OVERALL_SCORE:
        weights = _score_weights(candidates, scheme.min_weight, scheme.max_weight)
    elif scheme.type == WeightType.MARKET_CAP:
        caps = {c.ticker: c.market_cap or 0.0 for c in candidates}
        weights = caps if sum(caps.values()) > 0 else _equal(tickers)
    elif scheme.type == WeightType.CUSTOM:
        weights = _custom_weights(candidates, scheme.custom_weights)
    else:
        weights = _equal(tickers)

    return normalize_weights(weights)
