"""Repositories backed by SQLAlchemy ORM."""

from .indices_orm import IndexRepository

__all__ = ["IndexRepository"]
