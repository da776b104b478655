"""In-process store of compiled artifacts keyed by ``CacheKey``.

Entries are indexed by ``CacheKey.subkey()``: the prefix alone when the
request has no guaranteed constants, otherwise the prefix joined with the
session handle and the constants fingerprint. Looking a key up therefore
forces its deferred fingerprint.

There is no eviction and no persistence.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from pydantic import BaseModel

from compkey.types import CacheKey
from compkey.utils.logging import configure_module_logger

logger = configure_module_logger(__name__, level=logging.INFO)


class CacheStats(BaseModel):
    """Hit/miss counters for a ``CompilationCache``."""

    hits: int = 0
    misses: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total


class CompilationCache:
    """Thread-safe dict-backed artifact cache.

    Example::

        cache = CompilationCache()
        key = create_compilation_cache_key(...)
        program = cache.lookup_or_compile(key, lambda: compile_program(...))
    """

    def __init__(self) -> None:
        self._entries: dict[str, Any] = {}
        self._lock = threading.Lock()
        self.stats = CacheStats()

    def get(self, key: CacheKey) -> Optional[Any]:
        """Return the artifact stored under *key*, or ``None``."""
        subkey = key.subkey()
        with self._lock:
            artifact = self._entries.get(subkey)
            if artifact is None:
                self.stats.misses += 1
            else:
                self.stats.hits += 1
        return artifact

    def put(self, key: CacheKey, artifact: Any) -> Any:
        """Store *artifact* under *key*, replacing any previous entry."""
        subkey = key.subkey()
        with self._lock:
            self._entries[subkey] = artifact
        logger.debug(f"Stored artifact under subkey {subkey}")
        return artifact

    def lookup_or_compile(self, key: CacheKey, compile_fn: Callable[[], Any]) -> Any:
        """Return the cached artifact for *key*, compiling it on a miss.

        Exceptions raised by *compile_fn* propagate and nothing is stored.
        Concurrent misses on the same key may each compile; the last one
        stored wins.
        """
        cached = self.get(key)
        if cached is not None:
            logger.debug(f"Cache hit for prefix {key.prefix}")
            return cached

        logger.debug(f"Cache miss for prefix {key.prefix}, compiling")
        return self.put(key, compile_fn())

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, CacheKey):
            return False
        subkey = key.subkey()
        with self._lock:
            return subkey in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.stats = CacheStats()
