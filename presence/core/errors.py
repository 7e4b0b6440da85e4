# ==============================================================================
# Presence Error Taxonomy
# ==============================================================================
"""
Exceptions raised across the presence tracker.

Fetch errors are handled inside MembershipFetcher (retries and cache
fallback); callers only ever see ``FetchFailedError`` subclasses attached to a
fetch outcome. Persistence errors are retried by the tracker, which keeps its
in-memory state authoritative until a flush succeeds.
"""


class PresenceError(Exception):
    """Base class for all presence tracker errors."""


# ==============================================================================
# Membership Fetch
# ==============================================================================


class TransientFetchError(PresenceError):
    """Upstream hiccup (timeout, rate limit, reset). Retried with backoff."""


class UpstreamUnavailableError(PresenceError):
    """Upstream refused the request outright. Skips straight to fallbacks."""


class FetchFailedError(PresenceError):
    """A membership fetch could not produce fresh, complete data."""

    def __init__(self, group_id: str, message: str):
        super().__init__(message)
        self.group_id = group_id


class StaleDataError(FetchFailedError):
    """Fetch failed; cached data within the grace TTL was returned instead."""

    def __init__(self, group_id: str, age_ms: int):
        super().__init__(group_id, f"serving cached members for {group_id} ({age_ms} ms old)")
        self.age_ms = age_ms


class NoDataAvailableError(FetchFailedError):
    """Fetch failed and no usable cached data exists."""

    def __init__(self, group_id: str, cause: BaseException | None = None):
        detail = f": {cause}" if cause else ""
        super().__init__(group_id, f"no member data available for {group_id}{detail}")
        self.cause = cause


# ==============================================================================
# Persistence and Configuration
# ==============================================================================


class PersistenceWriteError(PresenceError):
    """The durable store rejected or timed out on a write."""


class ValidationError(PresenceError):
    """Invalid configuration or command input."""


# ==============================================================================
# Reports
# ==============================================================================


class JobCancelledError(PresenceError):
    """A report job was cancelled on request. Not a failure."""

    def __init__(self, job_id: str):
        super().__init__(f"report job {job_id} was cancelled")
        self.job_id = job_id


class ReportFailedError(PresenceError):
    """A report job ended in the Failed state."""

    def __init__(self, job_id: str, reason: str):
        super().__init__(f"report job {job_id} failed: {reason}")
        self.job_id = job_id
        self.reason = reason


class ChunkingError(PresenceError):
    """Content cannot be delivered within any configured limit."""
