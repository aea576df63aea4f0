"""Mixin for solvers whose result can be stored under a canonical key."""

import logging
from typing import Any, Optional, Tuple

from .provider import CacheProvider

logger = logging.getLogger(__name__)


class CachableSolver:
    """Cache protocol shared by the section pathing and unravel solvers.

    ``compute_cache_key_and_transform()`` turns the solver inputs into a
    key that is independent of absolute ids and positions, plus a transform
    that maps cache-space ids back to this instance's ids.
    ``apply_cached_solution()`` uses that transform to install a cached
    result and must leave the solver ``solved`` (or ``failed`` for a cached
    failure).
    """

    cache_provider: Optional[CacheProvider] = None
    cache_key: Optional[str] = None
    cache_to_solve_space_transform: Any = None
    cache_hit = False
    has_attempted_to_use_cache = False

    def compute_cache_key_and_transform(self) -> Tuple[str, Any]:
        raise NotImplementedError

    def apply_cached_solution(self, cached_solution: Any):
        raise NotImplementedError

    def build_cached_solution(self) -> Any:
        """Cache-space value describing the current (solved or failed) result."""
        raise NotImplementedError

    def _ensure_cache_key(self) -> Optional[str]:
        if self.cache_key is None:
            self.cache_key, self.cache_to_solve_space_transform = (
                self.compute_cache_key_and_transform()
            )
        return self.cache_key

    def attempt_to_use_cache_sync(self) -> bool:
        """Install a cached solution if one exists. Returns True on a hit."""
        self.has_attempted_to_use_cache = True
        if self.cache_provider is None or not self.cache_provider.is_sync_cache:
            return False

        cache_key = self._ensure_cache_key()
        if not cache_key:
            logger.error("Failed to compute cache key")
            return False

        cached_solution = self.cache_provider.get_cached_solution_sync(cache_key)
        if cached_solution is None:
            logger.debug(f"Cache miss for {type(self).__name__}")
            return False

        self.apply_cached_solution(cached_solution)
        self.cache_hit = True
        logger.debug(f"Cache hit for {type(self).__name__}")
        return True

    def save_to_cache_sync(self):
        if self.cache_provider is None or self.cache_hit:
            return
        cache_key = self._ensure_cache_key()
        self.cache_provider.set_cached_solution_sync(cache_key, self.build_cached_solution())
