"""
Storage package: file persistence and the two-tier search result cache.
"""

from .file_storage import FileStorageService
from .result_cache import CachedItem, CacheStats, ResultCache

__all__ = ["CachedItem", "CacheStats", "FileStorageService", "ResultCache"]
