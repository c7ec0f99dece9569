"""Index operator schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from index_engine.domain.models import JobType


class _FromAttributes(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class RunJobRequest(BaseModel):
    """Body of ``POST /admin/indices/{id}/run-job``."""

    job: JobType = Field(..., description="Job to run", examples=["mark-to-market"])
    fill_missing: bool = Field(
        default=True, description="Backfill every pending trading day instead of only today"
    )


class RecalculateRequest(BaseModel):
    start_date: Optional[date] = Field(
        default=None, description="Recalculate points from this date on (default: whole series)"
    )


class RecreateResponse(_FromAttributes):
    success: bool
    reason: Optional[str] = None
    first_date: Optional[date] = None
    constituents: int = 0
    days_filled: int = 0


class RestoreResponse(_FromAttributes):
    success: bool
    reason: Optional[str] = None
    snapshot_date: Optional[date] = None
    restored: int = 0


class CheckpointResponse(_FromAttributes):
    job_type: JobType
    index_id: Optional[int] = None
    last_processed_index_id: Optional[int] = None
    processed_count: int
    total_count: int
    errors: List[str] = Field(default_factory=list)
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PendingDividendResponse(_FromAttributes):
    ticker: str
    ex_date: date
    amount: float


class IndexStatusResponse(_FromAttributes):
    index_id: int
    ticker: str
    last_date: Optional[date] = None
    last_points: Optional[float] = None
    pending_days: List[date] = Field(default_factory=list)
    constituents: int
    current_yield: Optional[float] = Field(default=None, description="Weighted dividend yield (%)")
    total_dividends: float = Field(..., description="Cumulative dividends in index points")
    pending_dividends: List[PendingDividendResponse] = Field(default_factory=list)
    checkpoints: List[CheckpointResponse] = Field(default_factory=list)
    healthy: bool


class PointChange(BaseModel):
    date: date
    old_points: float
    new_points: float


class RecalculateResponse(BaseModel):
    recalculated: int
    dividends_found: int
    changes: List[PointChange] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class AssetPerformanceResponse(_FromAttributes):
    ticker: str
    first_date: date
    last_date: date
    entry_price: float
    last_price: float
    total_return: float = Field(..., description="Return since entry (%)")
    average_weight: float
    days_held: int
    status: str = Field(..., examples=["ACTIVE", "EXITED"])


class JobRunResponse(BaseModel):
    job: str
    status: str
    reason: Optional[str] = None
    changes: Optional[int] = None
    selected: Optional[int] = None
    days_filled: Optional[int] = None


class BatchIndexResult(BaseModel):
    id: int
    ticker: str
    status: str
    detail: Optional[str] = None


class BatchRunResponse(BaseModel):
    job_type: JobType
    date: date
    status: str = Field(..., examples=["completed", "partial", "skipped"])
    processed: int
    total: int
    timed_out: bool
    errors: List[str] = Field(default_factory=list)
    message: Optional[str] = None
    indices: List[BatchIndexResult] = Field(default_factory=list)

    @classmethod
    def from_result(cls, data: Dict[str, Any]) -> "BatchRunResponse":
        return cls.model_validate(data)
