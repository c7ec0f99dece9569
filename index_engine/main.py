"""Application entry point.

    uvicorn index_engine.main:app
    python -m index_engine.main mark-to-market
"""

from __future__ import annotations

import asyncio
import sys

from index_engine.api.app import create_api_app
from index_engine.core.logging import get_logger, setup_logging
from index_engine.domain.models import JobType
from index_engine.jobs import JOB_NAMES, execute_job


setup_logging()
logger = get_logger("main")

app = create_api_app()


async def run_job_cli(job: str) -> int:
    result = await execute_job(JOB_NAMES[JobType(job)])
    logger.info(f"{job}: {result.status}, {result.processed}/{result.total} processed")
    return 0 if not result.errors else 1


if __name__ == "__main__":
    if len(sys.argv) != 2 or sys.argv[1] not in {j.value for j in JobType}:
        print(f"usage: python -m index_engine.main [{'|'.join(j.value for j in JobType)}]")
        sys.exit(2)
    sys.exit(asyncio.run(run_job_cli(sys.argv[1])))
