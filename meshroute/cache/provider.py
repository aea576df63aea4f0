"""Key/value stores for solved sub-problems.

Solvers never assume persistence beyond "a value stored under a key is
returned for that exact key while the store lives". A lookup that finds
nothing returns ``None``; a miss is not an error.
"""

import copy
import hashlib
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)


class CacheProvider(ABC):
    """Interface consumed by every cachable solver."""

    is_sync_cache = True

    def __init__(self):
        self.cache_hits = 0
        self.cache_misses = 0

    @abstractmethod
    def get_cached_solution_sync(self, cache_key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def set_cached_solution_sync(self, cache_key: str, cached_solution: Any):
        ...

    async def get_cached_solution(self, cache_key: str) -> Optional[Any]:
        return self.get_cached_solution_sync(cache_key)

    async def set_cached_solution(self, cache_key: str, cached_solution: Any):
        self.set_cached_solution_sync(cache_key, cached_solution)

    def clear_cache(self):
        self.cache_hits = 0
        self.cache_misses = 0

    def get_stats(self) -> Dict[str, int]:
        return {"hits": self.cache_hits, "misses": self.cache_misses}


class InMemoryCache(CacheProvider):
    """Process-local cache; values are deep-copied in and out."""

    def __init__(self):
        super().__init__()
        self._cache: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._cache)

    def get_cached_solution_sync(self, cache_key: str) -> Optional[Any]:
        with self._lock:
            cached = self._cache.get(cache_key)
            if cached is None:
                self.cache_misses += 1
                return None
            self.cache_hits += 1
            return copy.deepcopy(cached)

    def set_cached_solution_sync(self, cache_key: str, cached_solution: Any):
        value = copy.deepcopy(cached_solution)
        with self._lock:
            self._cache[cache_key] = value
        logger.debug(f"Cached solution for {cache_key[:48]}")

    def clear_cache(self):
        with self._lock:
            self._cache.clear()
        super().clear_cache()


class FileCache(CacheProvider):
    """JSON-file-per-key cache that survives across runs.

    Entries are written to a temporary file and renamed into place, so a
    reader never sees a partial entry.
    """

    def __init__(self, directory: Union[str, Path]):
        super().__init__()
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path_for(self, cache_key: str) -> Path:
        digest = hashlib.sha256(cache_key.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def get_cached_solution_sync(self, cache_key: str) -> Optional[Any]:
        path = self._path_for(cache_key)
        if not path.exists():
            self.cache_misses += 1
            return None
        try:
            with open(path, "r") as f:
                entry = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable cache entry {path}: {e}")
            self.cache_misses += 1
            return None
        if entry.get("key") != cache_key:
            self.cache_misses += 1
            return None
        self.cache_hits += 1
        return entry["value"]

    def set_cached_solution_sync(self, cache_key: str, cached_solution: Any):
        path = self._path_for(cache_key)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump({"key": cache_key, "value": cached_solution}, f)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def clear_cache(self):
        for path in self.directory.glob("*.json"):
            path.unlink()
        super().clear_cache()
