"""Thread-safe two-tier TTL cache for search results."""

import hashlib
import json
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from models.errors import CacheError
from models.search_result import SearchResult
from storage.file_storage import FileStorageService
from utils.logger import get_logger, log_fields

logger = get_logger(__name__)

DEFAULT_MAX_AGE_MS = 24 * 60 * 60 * 1000
DEFAULT_MAX_MEMORY_ITEMS = 1000
DEFAULT_PRIORITY = 5

# camelCase spellings accepted from transport payloads
_KEY_FIELD_ALIASES = {
    "provider": ("provider", "provider_name", "providerName"),
    "model": ("model",),
    "detailed": ("detailed",),
    "max_tokens": ("max_tokens", "maxTokens"),
}


@dataclass
class CachedItem:
    timestamp: int  # epoch ms
    data: SearchResult
    priority: int = DEFAULT_PRIORITY
    access_count: int = 0
    last_accessed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "data": self.data.to_dict(),
            "priority": self.priority,
            "accessCount": self.access_count,
            "lastAccessed": self.last_accessed,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "CachedItem":
        return cls(
            timestamp=int(payload["timestamp"]),
            data=SearchResult.from_dict(payload["data"]),
            priority=int(payload.get("priority", DEFAULT_PRIORITY)),
            access_count=int(payload.get("accessCount", 0)),
            last_accessed=int(payload.get("lastAccessed", 0)),
        )


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    expired: int = 0
    memory_items: int = 0
    file_items: int = 0
    last_cleanup: int | None = None

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "expired": self.expired,
            "memoryItems": self.memory_items,
            "fileItems": self.file_items,
            "lastCleanup": self.last_cleanup,
            "hitRate": self.hit_rate,
        }


class ResultCache:
    """
    Search result cache with an in-process tier and a file-per-key durable tier.

    Expiry is checked lazily on read: memory entries by their stored timestamp,
    files by modification time. Durable-tier failures are logged and treated as
    misses; they never reach the caller.

    Args:
        cache_dir: Directory holding ``<key>.json`` files
        max_age_ms: Entry lifetime
        use_memory_cache: Enable the in-process tier
        use_file_cache: Enable the durable tier
        max_memory_items: Memory tier bound; lowest priority, least recently
            used entries are evicted first
        storage: File persistence collaborator
        clock: Returns epoch seconds (must agree with filesystem mtimes)
    """

    def __init__(
        self,
        cache_dir: str | Path = "./cache/web-search",
        max_age_ms: int = DEFAULT_MAX_AGE_MS,
        use_memory_cache: bool = True,
        use_file_cache: bool = True,
        max_memory_items: int = DEFAULT_MAX_MEMORY_ITEMS,
        storage: FileStorageService | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.cache_dir = Path(cache_dir)
        self.max_age_ms = max_age_ms
        self.use_memory_cache = use_memory_cache
        self.use_file_cache = use_file_cache
        self.max_memory_items = max_memory_items
        self._storage = storage or FileStorageService()
        self._clock = clock
        self._memory: dict[str, CachedItem] = {}
        self._lock = threading.Lock()
        self._stats = CacheStats()

    # ---------- keys ----------

    @staticmethod
    def generate_key(query: str, options: dict[str, Any] | None = None) -> str:
        """
        MD5 of the normalized query plus the options that change provider output.

        Only provider, model, detailed and max_tokens participate; timeouts,
        no_cache and anything else are ignored. Option spelling (camelCase or
        snake_case) and dict ordering do not affect the key.
        """
        options = options or {}
        key_data: dict[str, Any] = {"query": query.lower().strip()}
        for canonical, aliases in _KEY_FIELD_ALIASES.items():
            value = None
            for alias in aliases:
                if options.get(alias) is not None:
                    value = options[alias]
                    break
            key_data[canonical] = value

        encoded = json.dumps(key_data, sort_keys=True, separators=(",", ":"))
        return hashlib.md5(encoded.encode("utf-8")).hexdigest()

    # ---------- public API ----------

    def get(self, key: str) -> SearchResult | None:
        """Return the cached result stamped ``cached=True``, or None on miss/expiry."""
        now_ms = self._now_ms()

        if self.use_memory_cache:
            with self._lock:
                item = self._memory.get(key)
                if item is not None:
                    if now_ms - item.timestamp <= self.max_age_ms:
                        item.access_count += 1
                        item.last_accessed = now_ms
                        self._stats.hits += 1
                        logger.debug("Cache hit (memory)", extra=log_fields(key=key))
                        return item.data.with_cached_flag()

                    del self._memory[key]
                    self._stats.expired += 1

        if self.use_file_cache:
            item = self._read_file_item(key, now_ms)
            if item is not None:
                item.access_count += 1
                item.last_accessed = now_ms
                if self.use_memory_cache:
                    with self._lock:
                        self._memory[key] = item
                        self._evict_if_needed()
                with self._lock:
                    self._stats.hits += 1
                logger.debug("Cache hit (file)", extra=log_fields(key=key))
                return item.data.with_cached_flag()

        with self._lock:
            self._stats.misses += 1
        logger.debug("Cache miss", extra=log_fields(key=key))
        return None

    def set(self, key: str, result: SearchResult, priority: int = DEFAULT_PRIORITY) -> None:
        """Store ``result`` in every enabled tier. Never raises for durable-tier failures."""
        now_ms = self._now_ms()
        item = CachedItem(
            timestamp=now_ms,
            data=result,
            priority=priority,
            access_count=0,
            last_accessed=now_ms,
        )

        if self.use_memory_cache:
            with self._lock:
                self._memory[key] = item
                self._evict_if_needed()

        if self.use_file_cache:
            try:
                self._write_file_item(key, item)
                logger.debug("Saved to cache", extra=log_fields(key=key))
            except CacheError as e:
                logger.error(
                    "Failed to write to cache file",
                    extra=log_fields(key=key, error=str(e.__cause__ or e)),
                )

    def clear(self) -> None:
        """Empty the memory tier and delete every cache file; per-file failures are logged."""
        if self.use_memory_cache:
            with self._lock:
                self._memory.clear()

        deleted = 0
        failed = 0
        if self.use_file_cache:
            for path in self._cache_files():
                try:
                    if self._storage.delete_file(path):
                        deleted += 1
                except OSError as e:
                    failed += 1
                    logger.error(
                        "Failed to delete cache file", extra=log_fields(file=str(path), error=str(e))
                    )

        logger.info(
            "Cache cleared",
            extra=log_fields(
                memory_cleared=self.use_memory_cache,
                files_deleted=deleted,
                files_failed=failed,
            ),
        )

    def refresh(self, key: str) -> bool:
        """Drop one entry from both tiers. Returns True if anything was removed."""
        found = False
        with self._lock:
            if self._memory.pop(key, None) is not None:
                found = True

        try:
            if self._storage.delete_file(self._file_path(key)):
                found = True
        except OSError as e:
            logger.error(
                "Failed to remove cache file during refresh", extra=log_fields(key=key, error=str(e))
            )

        if found:
            logger.info("Refreshed cache item", extra=log_fields(key=key))
        return found

    def cleanup(self) -> dict[str, int]:
        """Sweep expired entries from both tiers on demand."""
        now_ms = self._now_ms()
        expired_memory = 0
        expired_file = 0

        with self._lock:
            for key in [k for k, v in self._memory.items() if now_ms - v.timestamp > self.max_age_ms]:
                del self._memory[key]
                expired_memory += 1

        if self.use_file_cache:
            for path in self._cache_files():
                try:
                    if now_ms - self._storage.modified_time(path) * 1000 > self.max_age_ms:
                        if self._storage.delete_file(path):
                            expired_file += 1
                except OSError as e:
                    logger.warning(
                        "Skipping cache file during cleanup", extra=log_fields(file=str(path), error=str(e))
                    )

        with self._lock:
            self._stats.expired += expired_memory + expired_file
            self._stats.last_cleanup = now_ms

        logger.info(
            "Cache cleanup completed",
            extra=log_fields(expired_memory=expired_memory, expired_file=expired_file),
        )
        return {"expired_memory": expired_memory, "expired_file": expired_file}

    def get_stats(self) -> CacheStats:
        with self._lock:
            memory_items = len(self._memory)
            stats = CacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                expired=self._stats.expired,
                memory_items=memory_items,
                last_cleanup=self._stats.last_cleanup,
            )
        stats.file_items = len(self._cache_files()) if self.use_file_cache else 0
        return stats

    # ---------- helpers ----------

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _file_path(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    def _cache_files(self) -> list[Path]:
        try:
            return self._storage.list_files(self.cache_dir, "*.json")
        except OSError as e:
            logger.error("Failed to list cache directory", extra=log_fields(error=str(e)))
            return []

    def _read_file_item(self, key: str, now_ms: int) -> CachedItem | None:
        path = self._file_path(key)
        try:
            if not self._storage.file_exists(path):
                return None

            mtime_ms = int(self._storage.modified_time(path) * 1000)
            if now_ms - mtime_ms > self.max_age_ms:
                with self._lock:
                    self._stats.expired += 1
                try:
                    self._storage.delete_file(path)
                except OSError as e:
                    logger.warning(
                        "Failed to delete expired cache file", extra=log_fields(key=key, error=str(e))
                    )
                return None

            payload = json.loads(self._storage.read_from_file(path))
            item = CachedItem.from_dict(payload)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(
                "Unreadable cache file treated as miss",
                extra=log_fields(key=key, error=str(e), error_type=type(e).__name__),
            )
            return None

        # Memory tier expiry should track the file's age, not the payload
        item.timestamp = mtime_ms
        return item

    def _write_file_item(self, key: str, item: CachedItem) -> None:
        try:
            self._storage.save_to_file(
                self._file_path(key),
                json.dumps(item.to_dict(), indent=2),
                create_directory=True,
            )
        except (OSError, TypeError, ValueError) as e:
            raise CacheError(f"Failed to write cache file for {key}", key=key) from e

    def _evict_if_needed(self) -> None:
        # Caller holds self._lock
        overflow = len(self._memory) - self.max_memory_items
        if overflow <= 0:
            return

        ordered = sorted(
            self._memory.items(), key=lambda kv: (kv[1].priority, kv[1].last_accessed)
        )
        for key, _item in ordered[:overflow]:
            del self._memory[key]

        logger.debug(
            "Memory cache cleaned up",
            extra=log_fields(removed=overflow, size=len(self._memory)),
        )
