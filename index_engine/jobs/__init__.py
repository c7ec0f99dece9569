"""Batch jobs for the index engine."""

# Import definitions so the jobs register themselves
from . import definitions  # noqa: F401
from .definitions import JOB_NAMES, run_batch
from .executor import execute_job
from .orchestrator import BatchOrchestrator, BatchResult, IndexOutcome
from .registry import get_job, list_job_names, register_job

__all__ = [
    "JOB_NAMES",
    "BatchOrchestrator",
    "BatchResult",
    "IndexOutcome",
    "execute_job",
    "get_job",
    "list_job_names",
    "register_job",
    "run_batch",
]
