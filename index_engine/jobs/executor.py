"""Job execution with timing and error wrapping."""

from __future__ import annotations

import inspect
import time
from typing import Any

from index_engine.core.exceptions import AppException, JobError
from index_engine.core.logging import get_logger

from .registry import get_job


logger = get_logger("jobs.executor")


async def execute_job(name: str, **kwargs: Any) -> Any:
    """
    Execute a registered job by name.

    Raises:
        JobError: Unknown job, or the job raised.
    """
    job_func = get_job(name)
    if job_func is None:
        raise JobError(message=f"Unknown job: {name}", error_code="UNKNOWN_JOB")

    start_time = time.monotonic()
    try:
        if inspect.iscoroutinefunction(job_func):
            result = await job_func(**kwargs)
        else:
            result = job_func(**kwargs)
    except AppException:
        raise
    except Exception as e:
        duration = time.monotonic() - start_time
        logger.exception(f"Job {name} failed after {duration:.2f}s")
        raise JobError(
            message=f"Job execution failed: {e!s}",
            error_code="JOB_EXECUTION_FAILED",
            details={"job_name": name, "duration_seconds": duration},
        ) from e

    duration = time.monotonic() - start_time
    logger.info(f"Job {name} executed in {duration:.2f}s")
    return result
