"""Cron trigger for the index batch jobs."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from index_engine.api.dependencies import get_cache, get_engine_context, require_operator
from index_engine.cache.client import CacheClient
from index_engine.domain.models import JobType
from index_engine.engine.context import EngineContext
from index_engine.jobs import JOB_NAMES, execute_job
from index_engine.schemas.indices import BatchRunResponse


router = APIRouter()


@router.post(
    "/update-indices",
    response_model=BatchRunResponse,
    summary="Run an index batch job",
    description=(
        "Run mark-to-market or screening over every index. Resumes from the last "
        "checkpoint and stops before the configured time budget."
    ),
)
async def update_indices(
    job: JobType = Query(..., description="Batch job to run"),
    _: None = Depends(require_operator),
    ctx: EngineContext = Depends(get_engine_context),
    cache: CacheClient | None = Depends(get_cache),
) -> BatchRunResponse:
    result = await execute_job(JOB_NAMES[job], ctx=ctx, cache=cache)
    return BatchRunResponse.from_result(result.to_dict())
