"""Valkey-backed cache."""

from .client import CacheClient, cache_key

__all__ = ["CacheClient", "cache_key"]
