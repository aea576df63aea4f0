"""Solution caches for translation-invariant sub-problems."""

from .provider import CacheProvider, FileCache, InMemoryCache
from .cachable import CachableSolver

__all__ = [
    "CacheProvider",
    "FileCache",
    "InMemoryCache",
    "CachableSolver",
]
