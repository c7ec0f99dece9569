"""Database module: SQLAlchemy async engine lifecycle and ORM models."""

from .connection import Database, get_async_database_url
from .orm import (
    Base,
    IndexComposition,
    IndexCronCheckpoint,
    IndexDefinition,
    IndexHistoryPoint,
    IndexRebalanceLog,
)

__all__ = [
    "Base",
    "Database",
    "IndexComposition",
    "IndexCronCheckpoint",
    "IndexDefinition",
    "IndexHistoryPoint",
    "IndexRebalanceLog",
    "get_async_database_url",
]
