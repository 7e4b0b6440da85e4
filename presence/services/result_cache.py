# ==============================================================================
# Report Result Cache
# ==============================================================================
"""
Read-through cache for finished reports.

Keys are built from ``(group_id, period, config_hash)`` so a report is only
reused for the same group, window and report configuration. Anything that can
change a report's outcome (thresholds, excusals, totals resets, membership)
invalidates every cached report of the group.
"""

import hashlib
import json
import logging

from pydantic import BaseModel

from presence.base.cache import Cache
from presence.core.models import ReportPeriod
from presence.infrastructure.cache.memory import InMemoryCache

logger = logging.getLogger(__name__)


class ResultCache:
    """
    Args:
        backend: Cache implementation (defaults to an in-memory cache)
        default_ttl_seconds: TTL used when ``set`` gets none
        namespace: Key prefix
    """

    def __init__(
        self,
        backend: Cache | None = None,
        default_ttl_seconds: float = 600,
        namespace: str = "report",
    ):
        self._backend = backend or InMemoryCache(max_size=256)
        self._default_ttl = default_ttl_seconds
        self._namespace = namespace
        self.hits = 0
        self.misses = 0
        self.invalidations = 0

    @staticmethod
    def config_hash(config: BaseModel | dict) -> str:
        """Stable short hash of a report configuration."""
        data = config.model_dump(mode="json") if isinstance(config, BaseModel) else config
        encoded = json.dumps(data, sort_keys=True, separators=(",", ":")).encode()
        return hashlib.sha256(encoded).hexdigest()[:16]

    def make_key(self, group_id: str, period: ReportPeriod, config_hash: str) -> str:
        return f"{self._namespace}:{group_id}:{period.label}:{config_hash}"

    def get(self, key: str) -> dict | None:
        value = self._backend.get(key)
        if value is None:
            self.misses += 1
        else:
            self.hits += 1
        return value

    def set(self, key: str, value: dict, ttl: float | None = None) -> None:
        self._backend.set(key, value, ttl if ttl is not None else self._default_ttl)

    def invalidate(self, pattern: str) -> int:
        """
        Drop every entry whose key matches a glob pattern.

        Returns:
            Count of entries removed
        """
        removed = self._backend.delete_pattern(pattern)
        self.invalidations += 1
        if removed:
            logger.info("Invalidated %d cached reports matching %s", removed, pattern)
        return removed

    def invalidate_group(self, group_id: str) -> int:
        return self.invalidate(f"{self._namespace}:{group_id}:*")
