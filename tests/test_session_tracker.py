# ==============================================================================
# Tests for SessionTracker
# ==============================================================================
"""
Tests for the live session tracker on top of a fakeredis activity store.

Tests cover:
- Totals including the open session's elapsed time
- Debounced and explicit flushes
- Crash recovery crediting only up to the last heartbeat
- Group reset snapshots, threshold stamping and open sessions
- Failed flushes keeping records dirty
- Bounded queues dropping events instead of blocking
"""

import asyncio

import pytest
import redis

from conftest import HOUR, MINUTE, T0
from presence.core.errors import PersistenceWriteError
from presence.core.models import GroupThreshold
from presence.services.tracker import SessionTracker
from presence.utils.config import TrackerSettings


class FlakyStore:
    """Activity store wrapper whose next ``fail_writes`` saves raise ``error``."""

    def __init__(self, inner, error=None):
        self.inner = inner
        self.fail_writes = 0
        self.error = error or PersistenceWriteError("valkey unavailable")

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def save_records(self, group_id, records):
        if self.fail_writes:
            self.fail_writes -= 1
            raise self.error
        self.inner.save_records(group_id, records)


def _tracker(store, clock, **settings) -> SessionTracker:
    settings.setdefault("flush_interval_seconds", 60)
    return SessionTracker(store, TrackerSettings(**settings), clock=clock)


# ==============================================================================
# Totals
# ==============================================================================


class TestTotals:
    """Tests for reading totals while events stream in."""

    @pytest.mark.asyncio
    async def test_open_session_counts_toward_total(self, store, clock, make_event):
        """get_totals includes time in the still-open session."""
        tracker = _tracker(store, clock)
        tracker.on_presence_event(make_event("joined"))
        await tracker.drain()

        clock.advance(HOUR)
        record = tracker.get_totals("g1", "m1")
        assert record.total_duration == HOUR
        assert record.is_active
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_unknown_member_has_zero_total(self, store, clock):
        tracker = _tracker(store, clock)
        record = tracker.get_totals("g1", "nobody")
        assert record.total_duration == 0
        assert not record.is_active

    @pytest.mark.asyncio
    async def test_closed_sessions_accumulate(self, store, clock, make_event):
        tracker = _tracker(store, clock)
        tracker.on_presence_event(make_event("joined"))
        clock.advance(HOUR)
        tracker.on_presence_event(make_event("left"))
        clock.advance(HOUR)
        tracker.on_presence_event(make_event("joined"))
        clock.advance(30 * MINUTE)
        tracker.on_presence_event(make_event("left"))
        await tracker.drain()

        assert tracker.get_totals("g1", "m1").total_duration == HOUR + 30 * MINUTE
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_groups_are_independent(self, store, clock, make_event):
        tracker = _tracker(store, clock)
        tracker.on_presence_event(make_event("joined", group_id="g1"))
        tracker.on_presence_event(make_event("joined", group_id="g2", member_id="m2"))
        await tracker.drain()
        clock.advance(MINUTE)

        assert tracker.groups() == ["g1", "g2"]
        assert set(tracker.get_group_totals("g1")) == {"m1"}
        assert tracker.get_group_totals("g2")["m2"].total_duration == MINUTE
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_excluded_channel_from_settings(self, store, clock, make_event):
        tracker = _tracker(store, clock, excluded_channels=["afk"])
        tracker.on_presence_event(make_event("joined", channel_id="afk"))
        await tracker.drain()
        clock.advance(HOUR)

        assert tracker.get_totals("g1", "m1").total_duration == 0
        await tracker.stop()


# ==============================================================================
# Persistence
# ==============================================================================


class TestPersistence:
    """Tests for flushing records to the store."""

    @pytest.mark.asyncio
    async def test_explicit_flush_writes_records(self, store, clock, make_event):
        tracker = _tracker(store, clock)
        tracker.on_presence_event(make_event("joined"))
        clock.advance(HOUR)
        tracker.on_presence_event(make_event("left"))

        assert await tracker.flush()
        persisted = store.load_records("g1")
        assert persisted["m1"].total_duration == HOUR
        assert store.list_groups() == ["g1"]
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_flush_is_debounced(self, store, clock, make_event):
        """Changes land after the flush interval, not per event."""
        tracker = _tracker(store, clock, flush_interval_seconds=0.05)
        tracker.on_presence_event(make_event("joined"))
        await tracker.drain()
        assert store.load_records("g1") == {}

        await asyncio.sleep(0.3)
        assert "m1" in store.load_records("g1")
        assert tracker.stats()["g1"]["flushes"] == 1
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_stop_flushes_pending_changes(self, store, clock, make_event):
        tracker = _tracker(store, clock)
        tracker.on_presence_event(make_event("joined"))
        await tracker.stop()
        assert store.load_records("g1")["m1"].is_active

    @pytest.mark.asyncio
    async def test_failed_flush_keeps_records_dirty(self, store, clock, make_event):
        """A failed write leaves memory authoritative and retries later."""
        flaky = FlakyStore(store)
        flaky.fail_writes = 1
        tracker = _tracker(flaky, clock)
        tracker.on_presence_event(make_event("joined"))
        clock.advance(HOUR)
        tracker.on_presence_event(make_event("left"))

        assert not await tracker.flush()
        stats = tracker.stats()["g1"]
        assert stats["dirty"] == 1
        assert stats["flush_failures"] == 1
        assert tracker.get_totals("g1", "m1").total_duration == HOUR

        assert await tracker.flush()
        assert tracker.stats()["g1"]["dirty"] == 0
        assert store.load_records("g1")["m1"].total_duration == HOUR
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_unexpected_store_error_keeps_records_dirty(self, store, clock, make_event):
        """Errors other than PersistenceWriteError still leave the batch pending."""
        flaky = FlakyStore(store, error=redis.exceptions.ReadOnlyError("READONLY replica"))
        flaky.fail_writes = 1
        tracker = _tracker(flaky, clock)
        tracker.on_presence_event(make_event("joined"))

        assert not await tracker.flush()
        assert tracker.stats()["g1"]["dirty"] == 1
        assert tracker.stats()["g1"]["flush_failures"] == 1

        assert await tracker.flush()
        assert store.load_records("g1")["m1"].is_active
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_heartbeat_persists_open_sessions(self, store, clock, make_event):
        tracker = _tracker(store, clock)
        tracker.on_presence_event(make_event("joined"))
        await tracker.drain()
        clock.advance(5 * MINUTE)
        tracker.heartbeat()
        await tracker.flush()

        session = store.load_records("g1")["m1"].current_session
        assert session.last_heartbeat_at == T0 + 5 * MINUTE
        await tracker.stop()


# ==============================================================================
# Recovery
# ==============================================================================


class TestRecovery:
    """Tests for restoring state after a restart."""

    @pytest.mark.asyncio
    async def test_restart_credits_only_until_last_heartbeat(self, store, clock, make_event):
        """Downtime after the last heartbeat is never credited."""
        first = _tracker(store, clock)
        first.on_presence_event(make_event("joined"))
        await first.drain()
        clock.advance(10 * MINUTE)
        first.heartbeat()
        await first.stop()

        # Process was down for 50 minutes
        clock.advance(50 * MINUTE)
        second = _tracker(store, clock)
        restored = await second.restore_from_persistence()

        assert restored == 1
        record = second.get_totals("g1", "m1")
        assert record.total_duration == 10 * MINUTE
        assert not record.is_active
        assert store.load_records("g1")["m1"].current_session is None
        await second.stop()

    @pytest.mark.asyncio
    async def test_read_only_restore_leaves_store_untouched(self, store, clock, make_event):
        """Readers see sessions closed at the last heartbeat without writing them back."""
        live = _tracker(store, clock)
        live.on_presence_event(make_event("joined"))
        await live.drain()
        clock.advance(10 * MINUTE)
        live.heartbeat()
        await live.flush()

        clock.advance(5 * MINUTE)
        reader = _tracker(store, clock)
        assert await reader.restore_from_persistence(persist=False) == 1
        assert reader.get_totals("g1", "m1").total_duration == 10 * MINUTE
        await reader.stop()

        assert store.load_records("g1")["m1"].is_active
        await live.stop()

    @pytest.mark.asyncio
    async def test_restore_skips_live_groups(self, store, clock, make_event):
        tracker = _tracker(store, clock)
        tracker.on_presence_event(make_event("joined"))
        await tracker.flush()

        assert await tracker.restore_from_persistence() == 0
        assert tracker.get_totals("g1", "m1").is_active
        await tracker.stop()


# ==============================================================================
# Reset
# ==============================================================================


class TestReset:
    """Tests for administrative group resets."""

    @pytest.mark.asyncio
    async def test_reset_returns_snapshot_and_zeroes(self, store, clock, make_event):
        mutated = []
        tracker = SessionTracker(
            store, TrackerSettings(flush_interval_seconds=60), clock=clock, on_group_mutated=mutated.append
        )
        store.save_threshold(GroupThreshold(group_id="g1", min_duration=HOUR))

        tracker.on_presence_event(make_event("joined", member_id="m1"))
        tracker.on_presence_event(make_event("joined", member_id="m2"))
        clock.advance(HOUR)
        tracker.on_presence_event(make_event("left", member_id="m1"))
        clock.advance(HOUR)

        snapshot = await tracker.reset_group("g1")

        assert snapshot == {"m1": HOUR, "m2": 2 * HOUR}
        assert tracker.get_totals("g1", "m1").total_duration == 0
        assert tracker.get_totals("g1", "m2").total_duration == 0
        assert store.get_threshold("g1").reset_at == clock()
        assert mutated == ["g1"]

        # m2 is still present and counts from the reset onwards
        clock.advance(30 * MINUTE)
        assert tracker.get_totals("g1", "m2").total_duration == 30 * MINUTE
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_reset_loads_persisted_group(self, store, clock, make_event):
        first = _tracker(store, clock)
        first.on_presence_event(make_event("joined"))
        clock.advance(HOUR)
        first.on_presence_event(make_event("left"))
        await first.stop()

        second = _tracker(store, clock)
        snapshot = await second.reset_group("g1")
        await second.stop()

        assert snapshot == {"m1": HOUR}
        assert store.load_records("g1")["m1"].total_duration == 0


# ==============================================================================
# Backpressure
# ==============================================================================


class TestBoundedQueue:
    """Tests for the per-group queue bound."""

    @pytest.mark.asyncio
    async def test_full_queue_drops_without_blocking(self, store, clock, make_event):
        tracker = _tracker(store, clock, queue_max_size=1)
        assert tracker.on_presence_event(make_event("joined"))
        assert not tracker.on_presence_event(make_event("left"))
        await tracker.drain()

        assert tracker.stats()["g1"]["events_dropped"] == 1
        assert tracker.get_totals("g1", "m1").is_active
        await tracker.stop()
