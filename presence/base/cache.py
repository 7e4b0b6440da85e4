# ==============================================================================
# Cache Abstract Base Class
# ==============================================================================
"""
Abstract interface for key-value caching with TTL support.

This is NOT the activity store (which owns durable presence totals).
Cache is transient storage for member lists and finished reports.

Implementations: Valkey, in-memory.
"""

from abc import ABC, abstractmethod


class Cache(ABC):
    """
    Generic cache interface for key-value storage with TTL support.

    All values are stored as dicts (JSON-serializable). Implementations
    handle serialization/deserialization internally.
    """

    @abstractmethod
    def get(self, key: str) -> dict | None:
        """
        Get a cached value.

        Args:
            key: Cache key

        Returns:
            Cached value as dict, or None if not found or expired
        """
        ...

    @abstractmethod
    def set(self, key: str, value: dict, ttl_seconds: float | None = None) -> None:
        """
        Set a cached value with optional TTL.

        Args:
            key: Cache key
            value: Value to cache (must be JSON-serializable dict)
            ttl_seconds: Optional time-to-live in seconds
        """
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        """
        Delete a key.

        Returns:
            True if key was deleted, False if not found
        """
        ...

    @abstractmethod
    def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching a glob pattern.

        Args:
            pattern: Pattern to match (e.g., "report:guild-1:*")

        Returns:
            Count of keys deleted
        """
        ...

    def get_many(self, keys: list[str]) -> dict[str, dict]:
        """
        Batch get multiple keys.

        Returns:
            Dict mapping key to value (missing keys are omitted)
        """
        result = {}
        for key in keys:
            value = self.get(key)
            if value is not None:
                result[key] = value
        return result
