# ==============================================================================
# Shared Test Fixtures
# ==============================================================================
"""
Pytest fixtures shared across all test modules.

Provides:
- fakeredis-backed ValkeyCache and ValkeyActivityStore instances
- Clean Redis state per test (automatic flush)
- A controllable epoch-milliseconds clock
- A scriptable in-memory transport
- A presence event factory
"""

import fakeredis
import pytest

from presence.base.transport import Transport
from presence.core.models import Chunk, EventType, Member, MemberActivityRecord, PresenceEvent
from presence.infrastructure.activity_store import ValkeyActivityStore
from presence.infrastructure.cache import ValkeyCache

# 2023-11-14T22:13:20Z, a round number far from the epoch
T0 = 1_700_000_000_000
HOUR = 3_600_000
MINUTE = 60_000


class FakeClock:
    """Epoch-milliseconds clock that only moves when told to."""

    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class FakeTransport(Transport):
    """
    In-memory transport with scripted fetch failures.

    ``failures`` is consumed one entry per fetch call: an exception instance is
    raised, ``None`` lets the call succeed.
    """

    name = "fake"

    def __init__(self, groups: dict[str, list[Member]] | None = None):
        self.groups = groups or {}
        self.failures: list[BaseException | None] = []
        self.fetch_calls: list[tuple[str, int | None]] = []
        self.sent: list[tuple[str, Chunk]] = []
        self.send_failures: list[BaseException | None] = []
        self.events: list[PresenceEvent] = []

    async def subscribe(self):
        for event in self.events:
            yield event

    async def fetch_members(self, group_id: str, limit: int | None = None) -> list[Member]:
        self.fetch_calls.append((group_id, limit))
        if self.failures:
            failure = self.failures.pop(0)
            if failure is not None:
                raise failure
        members = list(self.groups.get(group_id, []))
        return members[:limit] if limit is not None else members

    async def send_message(self, channel_id: str, chunk: Chunk) -> bool:
        if self.send_failures:
            failure = self.send_failures.pop(0)
            if failure is not None:
                raise failure
        self.sent.append((channel_id, chunk))
        return True


class StubTracker:
    """Returns fixed presence totals per member."""

    def __init__(self, totals: dict[str, int] | None = None):
        self.totals = totals or {}

    def get_totals(self, group_id: str, member_id: str) -> MemberActivityRecord:
        return MemberActivityRecord(member_id=member_id, total_duration=self.totals.get(member_id, 0))


@pytest.fixture()
def fake_redis():
    """A clean fakeredis instance for each test.

    Uses decode_responses=True to match the real Valkey client behavior.
    """
    server = fakeredis.FakeServer()
    client = fakeredis.FakeRedis(server=server, decode_responses=True)
    yield client
    client.flushall()
    client.close()


@pytest.fixture()
def fake_cache(fake_redis):
    """A ValkeyCache backed by fakeredis."""
    return ValkeyCache(client=fake_redis)


@pytest.fixture()
def store(fake_redis):
    """An activity store on fakeredis with a single write attempt."""
    return ValkeyActivityStore(client=fake_redis, prefix="test", write_attempts=1, retry_wait_min=0)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def transport():
    return FakeTransport()


@pytest.fixture()
def make_event(clock):
    """Factory for presence events stamped with the fake clock's current time."""

    def _make(
        event_type: EventType | str,
        member_id: str = "m1",
        channel_id: str | None = "voice-1",
        group_id: str = "g1",
        display_name: str = "",
        tags: list[str] | None = None,
        timestamp: int | None = None,
    ) -> PresenceEvent:
        return PresenceEvent(
            group_id=group_id,
            member_id=member_id,
            display_name=display_name or member_id,
            type=EventType(event_type),
            channel_id=channel_id,
            tags=tags or [],
            timestamp=clock() if timestamp is None else timestamp,
        )

    return _make


def members(*ids: str, **fields) -> list[Member]:
    """Members with the given IDs and shared extra fields."""
    return [Member(member_id=member_id, display_name=member_id.upper(), **fields) for member_id in ids]
