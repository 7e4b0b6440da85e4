# ==============================================================================
# Cache Infrastructure
# ==============================================================================
"""
Cache implementations for the ports-and-adapters architecture.

Available implementations:
- ValkeyCache: Valkey/Redis-based cache with JSON serialization
- InMemoryCache: process-local cache with TTL and LRU eviction
"""

from presence.infrastructure.cache.memory import InMemoryCache
from presence.infrastructure.cache.valkey import (
    ValkeyCache,
    check_valkey_connection,
    get_valkey_client,
)

__all__ = [
    "InMemoryCache",
    "ValkeyCache",
    "check_valkey_connection",
    "get_valkey_client",
]
