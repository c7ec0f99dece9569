"""Production collaborators and operator services."""

from .admin import AdminService, IndexStatus, RecreateResult
from .container import build_context

__all__ = ["AdminService", "IndexStatus", "RecreateResult", "build_context"]
