# ==============================================================================
# Valkey Cache Implementation
# ==============================================================================
"""
Valkey/Redis implementation of the Cache interface.

Provides:
- Generic key-value storage with millisecond TTLs
- Batch reads (get_many)
- Pattern-based deletion for cache invalidation

Uses JSON serialization for storing dict values.
"""

import json
import logging

import redis
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.retry import Retry

from presence.base.cache import Cache
from presence.utils.config import get_settings
from presence.utils.retry import VALKEY_RETRIES

logger = logging.getLogger(__name__)


def get_valkey_client(
    url: str | None = None,
    socket_timeout: int = 10,
    retries: int | None = None,
    health_check_interval: int = 30,
) -> redis.Redis:
    """
    Get a Valkey/Redis client connection.

    Configured with:
    - 10 second socket timeouts for fast failure detection
    - Automatic retries with exponential backoff for transient failures
    - Health check interval to keep connections alive
    """
    if url is None:
        url = get_settings().valkey.url

    retry_count = retries if retries is not None else VALKEY_RETRIES
    retry_strategy = Retry(ExponentialBackoff(cap=32, base=1), retries=retry_count)

    return redis.from_url(
        url,
        decode_responses=True,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
        retry=retry_strategy,
        retry_on_error=[RedisTimeoutError, RedisConnectionError],
        health_check_interval=health_check_interval,
    )


class ValkeyCache(Cache):
    """
    Valkey/Redis implementation of the Cache interface.

    All values are stored as JSON strings and deserialized on retrieval.
    """

    def __init__(self, client: redis.Redis | None = None, url: str | None = None):
        """
        Initialize Valkey cache.

        Args:
            client: Existing Redis client. If None, one is created from ``url``.
            url: Valkey/Redis connection URL. If None, uses settings.
        """
        self._client = client or get_valkey_client(url)

    @property
    def client(self) -> redis.Redis:
        """Get the underlying Redis client for advanced operations."""
        return self._client

    def get(self, key: str) -> dict | None:
        value = self._client.get(key)
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.warning("Failed to decode JSON for key %s", key)
            return None

    def set(self, key: str, value: dict, ttl_seconds: float | None = None) -> None:
        json_value = json.dumps(value)
        if ttl_seconds is not None:
            self._client.set(key, json_value, px=max(1, int(ttl_seconds * 1000)))
        else:
            self._client.set(key, json_value)

    def delete(self, key: str) -> bool:
        return self._client.delete(key) > 0

    def get_many(self, keys: list[str]) -> dict[str, dict]:
        if not keys:
            return {}

        values = self._client.mget(keys)
        result = {}
        for key, value in zip(keys, values):
            if value is not None:
                try:
                    result[key] = json.loads(value)
                except json.JSONDecodeError:
                    logger.warning("Failed to decode JSON for key %s", key)
        return result

    def delete_pattern(self, pattern: str) -> int:
        keys = list(self._client.scan_iter(pattern))
        if keys:
            return self._client.delete(*keys)
        return 0

    def ping(self) -> bool:
        """
        Check if the cache is reachable.

        Returns:
            True if ping succeeds, False otherwise
        """
        try:
            return bool(self._client.ping())
        except (RedisConnectionError, RedisTimeoutError):
            return False

    def close(self) -> None:
        """Close the connection."""
        self._client.close()


def check_valkey_connection() -> bool:
    """
    Check if Valkey is reachable.

    Uses a shorter timeout (5 seconds) since this is just a health check.
    """
    client = get_valkey_client(socket_timeout=5, retries=0)
    try:
        return bool(client.ping())
    except (RedisConnectionError, RedisTimeoutError):
        return False
    finally:
        client.close()
