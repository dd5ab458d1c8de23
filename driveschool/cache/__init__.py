"""TTL cache shared by the content store and scheduling lookups."""

from .backends import CacheBackend, InMemoryCacheBackend, RedisCacheBackend
from .keys import CacheKeyBuilder, CacheKeys
from .layer import CacheLayer, CircuitBreaker, CircuitState, build_cache_layer

__all__ = [
    "CacheBackend",
    "CacheKeyBuilder",
    "CacheKeys",
    "CacheLayer",
    "CircuitBreaker",
    "CircuitState",
    "InMemoryCacheBackend",
    "RedisCacheBackend",
    "build_cache_layer",
]
