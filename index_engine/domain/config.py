"""Validated index rule document.

An index's ``config`` column holds a JSON document describing how the
screening engine picks constituents and how the rebalance routine treats
them. Documents written by the production admin use camelCase keys
(``topN``, ``pvp``, ``margemLiquida``, ``{gte, lte}`` bounds); both that form
and the snake_case field names are accepted.

Usage:
    from index_engine.domain.config import parse_index_config

    config = parse_index_config(index.config)
    config.selection.top_n
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

from index_engine.core.exceptions import InvalidIndexConfigError


class OrderBy(str, Enum):
    """Ranking key for screened candidates."""

    UPSIDE = "upside"
    DIVIDEND_YIELD = "dy"
    OVERALL_SCORE = "overallScore"
    MARKET_CAP = "marketCap"
    TECHNICAL_MARGIN = "technicalMargin"


class WeightType(str, Enum):
    """Weighting scheme applied to a new composition."""

    EQUAL = "equal"
    MARKET_CAP = "marketCap"
    OVERALL_SCORE = "overallScore"
    CUSTOM = "custom"


class UpsideType(str, Enum):
    """Which upside figure rebalance comparisons use."""

    BEST = "best"
    AVERAGE = "average"
    GRAHAM = "graham"
    FCD = "fcd"
    GORDON = "gordon"
    BARSI = "barsi"
    TECHNICAL = "technical"
    ANALYST = "analyst"


class SizeBucket(str, Enum):
    """Company size buckets by market capitalisation (BRL)."""

    SMALL = "small"
    MID = "mid"
    LARGE = "large"


SIZE_BUCKET_BOUNDS: Dict[SizeBucket, tuple[float, float]] = {
    SizeBucket.SMALL: (0.0, 2e9),
    SizeBucket.MID: (2e9, 10e9),
    SizeBucket.LARGE: (10e9, math.inf),
}


class _ConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class MetricFilter(_ConfigModel):
    """Bounds on one fundamental metric. A missing metric fails an enabled filter."""

    enabled: bool = True
    min: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("min", "gte")
    )
    max: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("max", "lte")
    )

    @model_validator(mode="after")
    def check_bounds(self) -> "MetricFilter":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"min ({self.min}) greater than max ({self.max})")
        return self

    @property
    def active(self) -> bool:
        return self.enabled and (self.min is not None or self.max is not None)


class QualityFilters(_ConfigModel):
    """Named metric filters. Ratios are fractions (ROE 0.15 = 15%)."""

    roe: Optional[MetricFilter] = None
    net_margin: Optional[MetricFilter] = Field(
        default=None, validation_alias=AliasChoices("net_margin", "margemLiquida")
    )
    net_debt_ebitda: Optional[MetricFilter] = Field(
        default=None,
        validation_alias=AliasChoices("net_debt_ebitda", "dividaLiquidaEbitda"),
    )
    payout: Optional[MetricFilter] = None
    market_cap: Optional[MetricFilter] = Field(
        default=None, validation_alias=AliasChoices("market_cap", "marketCap")
    )
    pe_ratio: Optional[MetricFilter] = Field(
        default=None, validation_alias=AliasChoices("pe_ratio", "pl")
    )
    pb_ratio: Optional[MetricFilter] = Field(
        default=None, validation_alias=AliasChoices("pb_ratio", "pvp", "pvpFilter")
    )
    dividend_yield: Optional[MetricFilter] = Field(
        default=None, validation_alias=AliasChoices("dividend_yield", "dy")
    )
    revenue_growth: Optional[MetricFilter] = Field(
        default=None,
        validation_alias=AliasChoices("revenue_growth", "crescimentoReceita"),
    )
    overall_score: Optional[MetricFilter] = Field(
        default=None, validation_alias=AliasChoices("overall_score", "overallScore")
    )

    def active_filters(self) -> Dict[str, MetricFilter]:
        """Enabled filters keyed by metric name, in declaration order."""
        active: Dict[str, MetricFilter] = {}
        for name in type(self).model_fields:
            metric_filter = getattr(self, name)
            if metric_filter is not None and metric_filter.active:
                active[name] = metric_filter
        return active


class LiquidityConfig(_ConfigModel):
    min_average_daily_volume: Optional[float] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices(
            "min_average_daily_volume", "minAverageDailyVolume"
        ),
    )


class ScoreBand(_ConfigModel):
    min: float
    max: float
    max_count: int = Field(
        ge=0, validation_alias=AliasChoices("max_count", "maxCount")
    )


class SelectionConfig(_ConfigModel):
    top_n: int = Field(default=10, ge=1, validation_alias=AliasChoices("top_n", "topN"))
    order_by: OrderBy = Field(
        default=OrderBy.UPSIDE, validation_alias=AliasChoices("order_by", "orderBy")
    )
    order_direction: Literal["asc", "desc"] = Field(
        default="desc",
        validation_alias=AliasChoices("order_direction", "orderDirection"),
    )
    score_bands: List[ScoreBand] = Field(
        default_factory=list,
        validation_alias=AliasChoices("score_bands", "scoreBands"),
    )


class WeightsConfig(_ConfigModel):
    type: WeightType = WeightType.EQUAL
    min_weight: float = Field(
        default=0.02, ge=0, le=1, validation_alias=AliasChoices("min_weight", "minWeight")
    )
    max_weight: float = Field(
        default=0.15, gt=0, le=1, validation_alias=AliasChoices("max_weight", "maxWeight")
    )
    custom_weights: Dict[str, float] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("custom_weights", "customWeights"),
    )

    @field_validator("custom_weights")
    @classmethod
    def upper_tickers(cls, v: Dict[str, float]) -> Dict[str, float]:
        return {ticker.upper(): weight for ticker, weight in v.items()}


class RebalanceConfig(_ConfigModel):
    threshold: float = Field(default=0.05, ge=0, le=1)
    check_quality: bool = Field(
        default=False, validation_alias=AliasChoices("check_quality", "checkQuality")
    )
    upside_type: UpsideType = Field(
        default=UpsideType.BEST, validation_alias=AliasChoices("upside_type", "upsideType")
    )


class DiversificationConfig(_ConfigModel):
    type: Literal["maxCount", "allocation"] = "maxCount"
    max_count_per_sector: Dict[str, int] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("max_count_per_sector", "maxCountPerSector"),
    )
    sector_allocation: Dict[str, float] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("sector_allocation", "sectorAllocation"),
    )

    def sector_limit(self, sector: str) -> Optional[int]:
        """Max constituents for a sector; 4 per sector when no limits are set."""
        if not self.max_count_per_sector:
            return 4
        return self.max_count_per_sector.get(sector)


class UpsideFilters(_ConfigModel):
    min_upside: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("min_upside", "minUpside")
    )
    require_positive_upside: bool = Field(
        default=False,
        validation_alias=AliasChoices("require_positive_upside", "requirePositiveUpside"),
    )


class IndexConfig(_ConfigModel):
    """Screening and rebalance rules of one index."""

    universe: str = "B3"
    asset_types: List[str] = Field(
        default_factory=lambda: ["STOCK"],
        validation_alias=AliasChoices("asset_types", "assetTypes"),
    )
    excluded_tickers: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("excluded_tickers", "excludedTickers"),
    )
    excluded_ticker_patterns: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices(
            "excluded_ticker_patterns", "excludedTickerPatterns"
        ),
    )
    sectors: List[str] = Field(default_factory=list)
    industries: List[str] = Field(default_factory=list)
    size_bucket: Optional[SizeBucket] = Field(
        default=None, validation_alias=AliasChoices("size_bucket", "sizeBucket")
    )
    liquidity: LiquidityConfig = Field(default_factory=LiquidityConfig)
    quality: QualityFilters = Field(default_factory=QualityFilters)
    selection: SelectionConfig = Field(default_factory=SelectionConfig)
    weights: WeightsConfig = Field(default_factory=WeightsConfig)
    rebalance: RebalanceConfig = Field(default_factory=RebalanceConfig)
    diversification: Optional[DiversificationConfig] = None
    filters: UpsideFilters = Field(default_factory=UpsideFilters)

    @field_validator("excluded_tickers")
    @classmethod
    def upper_excluded(cls, v: List[str]) -> List[str]:
        return [ticker.strip().upper() for ticker in v if ticker.strip()]

    def is_excluded(self, ticker: str) -> bool:
        """Exact, ``PREFIX*`` and ``*SUFFIX`` exclusion rules."""
        ticker = ticker.upper()
        if ticker in self.excluded_tickers:
            return True
        for pattern in self.excluded_ticker_patterns:
            pattern = pattern.strip().upper()
            if not pattern:
                continue
            if pattern.startswith("*") and ticker.endswith(pattern[1:]):
                return True
            if pattern.endswith("*") and ticker.startswith(pattern[:-1]):
                return True
            if pattern == ticker:
                return True
        return False


def parse_index_config(document: Optional[Dict[str, Any]]) -> IndexConfig:
    """Validate a raw config document once, at the screening boundary."""
    try:
        return IndexConfig.model_validate(document or {})
    except PydanticValidationError as e:
        raise InvalidIndexConfigError(
            details={"errors": e.errors(include_url=False, include_context=False)}
        ) from e
