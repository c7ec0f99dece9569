"""Operator routes for a single index."""

from __future__ import annotations

from typing import Annotated, List

from fastapi import APIRouter, Depends, Path

from index_engine.api.dependencies import get_admin_service, require_operator
from index_engine.schemas.indices import (
    AssetPerformanceResponse,
    IndexStatusResponse,
    JobRunResponse,
    RecalculateRequest,
    RecalculateResponse,
    RecreateResponse,
    RestoreResponse,
    RunJobRequest,
)
from index_engine.services.admin import AdminService


router = APIRouter(dependencies=[Depends(require_operator)])

IndexId = Annotated[int, Path(ge=1, description="Index id")]


@router.post(
    "/{index_id}/recreate",
    response_model=RecreateResponse,
    summary="Recreate index",
    description="Wipe composition, history and logs, rescreen and start a new series at 100.",
)
async def recreate_index(
    index_id: IndexId,
    service: AdminService = Depends(get_admin_service),
) -> RecreateResponse:
    result = await service.recreate_index(index_id)
    return RecreateResponse.model_validate(result)


@router.post(
    "/{index_id}/run-job",
    response_model=JobRunResponse,
    summary="Run a job for one index",
)
async def run_job(
    payload: RunJobRequest,
    index_id: IndexId,
    service: AdminService = Depends(get_admin_service),
) -> JobRunResponse:
    result = await service.run_job(index_id, payload.job, fill_missing=payload.fill_missing)
    return JobRunResponse(**result)


@router.get(
    "/{index_id}/status",
    response_model=IndexStatusResponse,
    summary="Index status",
    description="Pending trading days, last point, checkpoint health and pending dividends.",
)
async def get_status(
    index_id: IndexId,
    service: AdminService = Depends(get_admin_service),
) -> IndexStatusResponse:
    status = await service.get_status(index_id)
    return IndexStatusResponse.model_validate(status)


@router.post(
    "/{index_id}/restore",
    response_model=RestoreResponse,
    summary="Restore composition from the last snapshot",
)
async def restore_composition(
    index_id: IndexId,
    service: AdminService = Depends(get_admin_service),
) -> RestoreResponse:
    result = await service.restore_composition(index_id)
    return RestoreResponse.model_validate(result)


@router.post(
    "/{index_id}/recalculate",
    response_model=RecalculateResponse,
    summary="Recalculate the point series",
)
async def recalculate(
    index_id: IndexId,
    payload: RecalculateRequest | None = None,
    service: AdminService = Depends(get_admin_service),
) -> RecalculateResponse:
    start_date = payload.start_date if payload else None
    result = await service.recalculate(index_id, start_date)
    return RecalculateResponse.model_validate(result.to_dict())


@router.get(
    "/{index_id}/assets",
    response_model=List[AssetPerformanceResponse],
    summary="Performance of every asset that was ever held",
)
async def list_assets(
    index_id: IndexId,
    service: AdminService = Depends(get_admin_service),
) -> List[AssetPerformanceResponse]:
    performances = await service.list_assets_performance(index_id)
    return [AssetPerformanceResponse.model_validate(p) for p in performances]
