# ==============================================================================
# Membership Fetch Outcomes
# ==============================================================================
"""
Tagged result of a membership fetch.

Exactly one of four variants is returned by ``MembershipFetcher``:

    FullFetch     complete member list (fresh from upstream or cache)
    PartialFetch  first page only, after full fetch retries were exhausted
    StaleFetch    cached list older than the TTL but within the grace TTL
    FailedFetch   nothing usable; carries NoDataAvailableError

Callers branch on ``kind`` or ``isinstance``. ``raise_for_status()`` turns the
failure variant into an exception for callers that want one.
"""

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Literal

from presence.core.errors import NoDataAvailableError, StaleDataError
from presence.core.models import FetchMetadata, Member


@dataclass(frozen=True)
class FullFetch:
    group_id: str
    members: list[Member]
    metadata: FetchMetadata
    kind: Literal["full"] = field(default="full", init=False)

    @property
    def ok(self) -> bool:
        return True

    def raise_for_status(self) -> None:
        return None


@dataclass(frozen=True)
class PartialFetch:
    group_id: str
    members: list[Member]
    metadata: FetchMetadata
    kind: Literal["partial"] = field(default="partial", init=False)

    @property
    def ok(self) -> bool:
        return True

    def raise_for_status(self) -> None:
        return None


@dataclass(frozen=True)
class StaleFetch:
    group_id: str
    members: list[Member]
    metadata: FetchMetadata
    warning: StaleDataError
    kind: Literal["stale"] = field(default="stale", init=False)

    @property
    def ok(self) -> bool:
        return True

    def raise_for_status(self, strict: bool = False) -> None:
        if strict:
            raise self.warning


@dataclass(frozen=True)
class FailedFetch:
    group_id: str
    metadata: FetchMetadata
    error: NoDataAvailableError
    members: list[Member] = field(default_factory=list)
    kind: Literal["failed"] = field(default="failed", init=False)

    @property
    def ok(self) -> bool:
        return False

    def raise_for_status(self) -> None:
        raise self.error


FetchOutcome = FullFetch | PartialFetch | StaleFetch | FailedFetch


def filter_outcome(outcome: FetchOutcome, predicate: Callable[[Member], bool]) -> FetchOutcome:
    """Return the same outcome variant with only members matching ``predicate``."""
    if isinstance(outcome, FailedFetch):
        return outcome
    return replace(outcome, members=[m for m in outcome.members if predicate(m)])
