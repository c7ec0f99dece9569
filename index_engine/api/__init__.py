"""HTTP surface of the index engine."""

from .app import create_api_app

__all__ = ["create_api_app"]
