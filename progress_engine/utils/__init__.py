"""Utility helpers package."""

from progress_engine.utils.cache import CacheBackend, CacheMetrics, build_cache_key

__all__ = ["CacheBackend", "CacheMetrics", "build_cache_key"]
