# ==============================================================================
# Membership Fetcher
# ==============================================================================
"""
Resilient group membership fetch from an unreliable, rate-limited upstream.

Fetch order:

    1. Fresh cache entry (younger than the cache TTL), unless forced
    2. Full fetch, retried with exponential backoff and jitter; every attempt
       has its own timeout
    3. Partial fetch with a smaller page size
    4. Cached list within the grace TTL, flagged stale
    5. FailedFetch carrying NoDataAvailableError

Only transient errors, timeouts and connection errors are retried. Any other
error from the upstream, such as a rejected or malformed reply, skips straight
to the next step.

The whole sequence runs under one operation deadline. Requests to the
upstream share a concurrency limit and a token bucket.
"""

import asyncio
import hashlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from presence.base.cache import Cache
from presence.base.transport import Transport
from presence.core.errors import (
    NoDataAvailableError,
    StaleDataError,
    TransientFetchError,
)
from presence.core.models import FetchMetadata, FetchSource, Member
from presence.core.outcomes import (
    FailedFetch,
    FetchOutcome,
    FullFetch,
    PartialFetch,
    StaleFetch,
    filter_outcome,
)
from presence.infrastructure.cache.memory import InMemoryCache
from presence.utils.clock import Clock, now_ms
from presence.utils.config import FetcherSettings
from presence.utils.rate_limiter import TokenBucketRateLimiter
from presence.utils.retry import fetch_retrying

logger = logging.getLogger(__name__)

# Errors worth another attempt against the same upstream
RETRYABLE_ERRORS = (TransientFetchError, TimeoutError, ConnectionError)


@dataclass(frozen=True)
class FetchOptions:
    """
    Attributes:
        force_refresh: Skip the fresh-cache shortcut
        timeout_seconds: Override the whole-operation deadline
    """

    force_refresh: bool = False
    timeout_seconds: float | None = None


class _FullFetchFailed(Exception):
    def __init__(self, cause: BaseException, retries: int):
        super().__init__(str(cause))
        self.cause = cause
        self.retries = retries


class FetchStatistics:
    """Running counters for fetch outcomes."""

    def __init__(self):
        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.cache_hits = 0
        self.partial_fetches = 0
        self.fallback_usage = 0
        self._fetch_ms_total = 0
        self._retries_total = 0
        self._upstream_fetches = 0

    def record_upstream(self, elapsed_ms: int, retries: int) -> None:
        self._upstream_fetches += 1
        self._fetch_ms_total += elapsed_ms
        self._retries_total += retries

    def as_dict(self) -> dict:
        fetches = self._upstream_fetches
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "cache_hits": self.cache_hits,
            "partial_fetches": self.partial_fetches,
            "fallback_usage": self.fallback_usage,
            "average_fetch_ms": self._fetch_ms_total / fetches if fetches else 0.0,
            "average_retry_count": self._retries_total / fetches if fetches else 0.0,
        }


def _fingerprint(members: list[Member]) -> str:
    joined = "\n".join(sorted(m.member_id for m in members))
    return hashlib.sha1(joined.encode()).hexdigest()


class MembershipFetcher:
    """
    Args:
        transport: Upstream member listing
        settings: Retry, timeout, cache and rate settings
        cache: Member list cache (defaults to an in-memory TTL/LRU cache)
        on_membership_changed: Called with a group ID when a full fetch returns
            a different member set than the cached one
        clock: Epoch-milliseconds clock
    """

    def __init__(
        self,
        transport: Transport,
        settings: FetcherSettings | None = None,
        cache: Cache | None = None,
        on_membership_changed: Callable[[str], None] | None = None,
        clock: Clock = now_ms,
    ):
        self._transport = transport
        self._settings = settings or FetcherSettings()
        self._cache = cache or InMemoryCache(max_size=self._settings.cache_max_size)
        self._on_membership_changed = on_membership_changed
        self._clock = clock
        self._semaphore = asyncio.Semaphore(self._settings.max_concurrent)
        self._limiter = TokenBucketRateLimiter(
            rate=self._settings.requests_per_minute / 60.0,
            burst=self._settings.burst,
        )
        self._stats = FetchStatistics()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_group_members(
        self, group_id: str, options: FetchOptions | None = None
    ) -> FetchOutcome:
        """
        Fetch a group's members, falling back as described in the module docs.

        Any error raised by the transport, malformed payloads included, moves
        on to the next fallback step, so upstream failures never raise here;
        inspect the returned variant.
        """
        options = options or FetchOptions()
        started = time.monotonic()
        self._stats.total_requests += 1
        cached = self._cache.get(self._cache_key(group_id))

        if cached is not None and not options.force_refresh:
            age = self._clock() - cached["fetched_at"]
            if age <= self._settings.cache_ttl_seconds * 1000:
                self._stats.cache_hits += 1
                self._stats.successful_requests += 1
                return FullFetch(
                    group_id,
                    self._members_from(cached),
                    FetchMetadata(
                        source=FetchSource.CACHE,
                        elapsed_ms=self._elapsed(started),
                        fetched_at=cached["fetched_at"],
                        cache_age_ms=age,
                    ),
                )

        deadline = options.timeout_seconds or self._settings.operation_timeout_seconds
        error: BaseException | None = None
        retries = 0

        try:
            async with asyncio.timeout(deadline):
                try:
                    members, retries = await self._full_fetch(group_id)
                except _FullFetchFailed as e:
                    error, retries = e.cause, e.retries
                    logger.warning(
                        "Full fetch of %s failed after %d retries: %s", group_id, retries, error
                    )
                else:
                    elapsed = self._elapsed(started)
                    self._stats.record_upstream(elapsed, retries)
                    self._stats.successful_requests += 1
                    self._remember(group_id, members, cached)
                    return FullFetch(
                        group_id,
                        members,
                        FetchMetadata(
                            source=FetchSource.FULL_FETCH, elapsed_ms=elapsed, retry_count=retries
                        ),
                    )

                try:
                    members = await self._request(
                        group_id,
                        self._settings.partial_page_size,
                        self._settings.partial_timeout_seconds,
                    )
                except Exception as e:
                    error = e
                    logger.warning("Partial fetch of %s failed: %s", group_id, e)
                else:
                    elapsed = self._elapsed(started)
                    self._stats.record_upstream(elapsed, retries)
                    self._stats.successful_requests += 1
                    self._stats.partial_fetches += 1
                    logger.info("Using partial member list for %s (%d members)", group_id, len(members))
                    return PartialFetch(
                        group_id,
                        members,
                        FetchMetadata(
                            source=FetchSource.PARTIAL_FETCH,
                            elapsed_ms=elapsed,
                            retry_count=retries,
                        ),
                    )
        except TimeoutError as e:
            error = e
            logger.warning("Fetch of %s exceeded its %.1fs deadline", group_id, deadline)

        return self._fallback(group_id, cached, error, retries, started)

    async def fetch_filtered(
        self,
        group_id: str,
        predicate: Callable[[Member], bool],
        options: FetchOptions | None = None,
    ) -> FetchOutcome:
        """Fetch a group and keep only members matching ``predicate``."""
        outcome = await self.fetch_group_members(group_id, options)
        return filter_outcome(outcome, predicate)

    async def fetch_many(
        self, group_ids: list[str], options: FetchOptions | None = None
    ) -> dict[str, FetchOutcome]:
        """Fetch several groups concurrently within the shared limits."""
        outcomes = await asyncio.gather(
            *(self.fetch_group_members(group_id, options) for group_id in group_ids)
        )
        return dict(zip(group_ids, outcomes))

    def clear_cache(self, group_id: str | None = None) -> int:
        """Drop cached member lists for one group, or all groups."""
        if group_id is None:
            return self._cache.delete_pattern("members:*")
        return int(self._cache.delete(self._cache_key(group_id)))

    def get_statistics(self) -> dict:
        return self._stats.as_dict()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _cache_key(group_id: str) -> str:
        return f"members:{group_id}"

    @staticmethod
    def _elapsed(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    @staticmethod
    def _members_from(cached: dict) -> list[Member]:
        return [Member.model_validate(item) for item in cached["members"]]

    async def _request(self, group_id: str, limit: int | None, timeout: float) -> list[Member]:
        async with self._semaphore:
            await self._limiter.acquire()
            return await asyncio.wait_for(
                self._transport.fetch_members(group_id, limit=limit), timeout
            )

    async def _full_fetch(self, group_id: str) -> tuple[list[Member], int]:
        """
        Full member listing with retries.

        Returns:
            (members, retries used)

        Raises:
            _FullFetchFailed: Retries exhausted, or a non-retryable upstream error
        """
        s = self._settings
        attempts = 0
        try:
            async for attempt in fetch_retrying(
                RETRYABLE_ERRORS,
                logger,
                max_retries=s.max_retries,
                base_delay=s.base_delay_seconds,
                max_delay=s.max_delay_seconds,
                jitter_ratio=s.jitter_ratio,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    members = await self._request(group_id, None, s.attempt_timeout_seconds)
        except Exception as e:
            raise _FullFetchFailed(e, max(0, attempts - 1)) from e
        return members, attempts - 1

    def _remember(self, group_id: str, members: list[Member], previous: dict | None) -> None:
        fingerprint = _fingerprint(members)
        self._cache.set(
            self._cache_key(group_id),
            {
                "members": [m.model_dump(mode="json") for m in members],
                "fetched_at": self._clock(),
                "fingerprint": fingerprint,
            },
            ttl_seconds=max(self._settings.grace_ttl_seconds, self._settings.cache_ttl_seconds),
        )
        if previous is not None and previous.get("fingerprint") != fingerprint:
            logger.info("Membership of %s changed", group_id)
            if self._on_membership_changed:
                self._on_membership_changed(group_id)

    def _fallback(
        self,
        group_id: str,
        cached: dict | None,
        error: BaseException | None,
        retries: int,
        started: float,
    ) -> FetchOutcome:
        elapsed = self._elapsed(started)
        self._stats.record_upstream(elapsed, retries)

        if cached is not None:
            age = self._clock() - cached["fetched_at"]
            if age <= self._settings.grace_ttl_seconds * 1000:
                self._stats.fallback_usage += 1
                self._stats.successful_requests += 1
                warning = StaleDataError(group_id, age)
                logger.warning("%s", warning)
                return StaleFetch(
                    group_id,
                    self._members_from(cached),
                    FetchMetadata(
                        source=FetchSource.FALLBACK,
                        elapsed_ms=elapsed,
                        retry_count=retries,
                        fetched_at=cached["fetched_at"],
                        cache_age_ms=age,
                    ),
                    warning,
                )

        self._stats.failed_requests += 1
        failure = NoDataAvailableError(group_id, error)
        logger.error("%s", failure)
        return FailedFetch(
            group_id,
            FetchMetadata(source=FetchSource.FALLBACK, elapsed_ms=elapsed, retry_count=retries),
            failure,
        )
