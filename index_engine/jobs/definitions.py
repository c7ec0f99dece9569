"""Built-in job definitions for the index batch.

Jobs:
- index_mark_to_market: backfill and mark every index (Mon-Fri after close)
- index_screening: screening/rebalance routine for every index (Mon-Fri)

Both accept an existing engine context and cache client; when called without
them (scheduler, CLI) they open their own connections for the run.
"""

from __future__ import annotations

from typing import Any, Optional

from index_engine.cache.client import CacheClient
from index_engine.core.config import get_settings
from index_engine.core.logging import get_logger
from index_engine.database.connection import Database
from index_engine.domain.models import JobType
from index_engine.engine.context import EngineContext
from index_engine.services.container import build_context

from .orchestrator import BatchOrchestrator, BatchResult
from .registry import register_job


logger = get_logger("jobs.definitions")

JOB_NAMES = {
    JobType.MARK_TO_MARKET: "index_mark_to_market",
    JobType.SCREENING: "index_screening",
}


async def run_batch(
    job_type: JobType,
    ctx: Optional[EngineContext] = None,
    cache: Optional[CacheClient] = None,
) -> BatchResult:
    if ctx is not None:
        return await BatchOrchestrator(ctx, cache).run(job_type)

    settings = get_settings()
    database = Database.from_settings(settings)
    own_cache = CacheClient.from_settings(settings)
    try:
        await database.connect()
        orchestrator = BatchOrchestrator(build_context(database, settings), own_cache)
        return await orchestrator.run(job_type)
    finally:
        await own_cache.disconnect()
        await database.dispose()


@register_job("index_mark_to_market")
async def index_mark_to_market_job(**kwargs: Any) -> BatchResult:
    """
    Advance every index's point series to today.

    Schedule: Mon-Fri after the B3 close
    """
    result = await run_batch(JobType.MARK_TO_MARKET, **kwargs)
    logger.info(f"index_mark_to_market: {result.status} ({result.processed}/{result.total})")
    return result


@register_job("index_screening")
async def index_screening_job(**kwargs: Any) -> BatchResult:
    """
    Screen and, when warranted, rebalance every index.

    Schedule: Mon-Fri after mark-to-market
    """
    result = await run_batch(JobType.SCREENING, **kwargs)
    logger.info(f"index_screening: {result.status} ({result.processed}/{result.total})")
    return result
