# ==============================================================================
# Session Tracker
# ==============================================================================
"""
Live presence accounting across all groups.

One GroupActor per group drains that group's event queue and applies events
through the pure SessionProcessor, so all mutations of a group are serialized
without locks. Records are immutable and replaced atomically, which lets
``get_totals`` read the latest state at any time without waiting for writers.

Persistence is decoupled from event handling:
- Changes mark records dirty; a debounced flush writes them in one batch per
  flush interval, in a worker thread.
- A failed flush keeps the records dirty and is retried with backoff. The
  in-memory state stays authoritative until a flush lands.
- A periodic heartbeat stamps every open session and is flushed right away,
  so a crash loses at most one heartbeat interval of presence.

Usage::

    tracker = SessionTracker(store, settings.tracker)
    await tracker.restore_from_persistence()
    tracker.start()
    async for event in transport.subscribe():
        tracker.on_presence_event(event)
    await tracker.stop()
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from presence.base.activity_store import ActivityStore
from presence.core.models import MemberActivityRecord, PresenceEvent
from presence.core.session_processor import SessionProcessor
from presence.utils.clock import Clock, now_ms
from presence.utils.config import TrackerSettings

logger = logging.getLogger(__name__)

# Cap for the flush retry backoff, in seconds
FLUSH_RETRY_MAX_SECONDS = 300.0


# ==============================================================================
# Actor Messages
# ==============================================================================


@dataclass(frozen=True)
class _Heartbeat:
    at: int


@dataclass(frozen=True)
class _Reset:
    future: asyncio.Future


@dataclass(frozen=True)
class _Stop:
    pass


# ==============================================================================
# Group Actor
# ==============================================================================


class GroupActor:
    """
    Serializes all state changes for one group.

    Only the actor's drain task mutates ``records``; everyone else reads.
    """

    def __init__(
        self,
        group_id: str,
        processor: SessionProcessor,
        store: ActivityStore,
        settings: TrackerSettings,
        clock: Clock,
        records: dict[str, MemberActivityRecord] | None = None,
    ):
        self.group_id = group_id
        self.records: dict[str, MemberActivityRecord] = dict(records or {})
        self._processor = processor
        self._store = store
        self._settings = settings
        self._clock = clock

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=settings.queue_max_size)
        self._dirty: set[str] = set()
        self._task: asyncio.Task | None = None
        self._flush_task: asyncio.Task | None = None
        self._flush_lock = asyncio.Lock()
        self._background: set[asyncio.Task] = set()
        self._consecutive_failures = 0

        self.events_processed = 0
        self.events_dropped = 0
        self.flushes = 0
        self.flush_failures = 0

    @property
    def dirty_count(self) -> int:
        return len(self._dirty)

    def start(self) -> None:
        self._task = asyncio.create_task(self._drain(), name=f"presence-actor-{self.group_id}")

    def submit(self, message) -> bool:
        """Enqueue without waiting. Returns False if the bounded queue is full."""
        try:
            self._queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            self.events_dropped += 1
            logger.error(
                "Event queue full for group %s, dropped message (%d dropped so far)",
                self.group_id,
                self.events_dropped,
            )
            return False

    def mark_dirty(self, member_ids) -> None:
        self._dirty.update(member_ids)

    async def join(self) -> None:
        """Wait until every queued message has been applied."""
        await self._queue.join()

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self.submit(_Stop())
            await self._task
        if self._flush_task is not None:
            self._flush_task.cancel()
        for task in list(self._background):
            await task
        await self.flush()

    # ------------------------------------------------------------------
    # Message handling
    # ------------------------------------------------------------------

    async def _drain(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                if isinstance(message, _Stop):
                    return
                self._handle(message)
            except Exception:
                # A single bad message must not stop accounting for the group
                logger.exception("Failed to apply %r for group %s", message, self.group_id)
            finally:
                self._queue.task_done()

    def _handle(self, message) -> None:
        if isinstance(message, PresenceEvent):
            self._apply_event(message)
        elif isinstance(message, _Heartbeat):
            self._apply_heartbeat(message.at)
        elif isinstance(message, _Reset):
            self._apply_reset(message.future)
        else:
            logger.warning("Unknown actor message %r", message)

    def _apply_event(self, event: PresenceEvent) -> None:
        self.events_processed += 1
        current = self.records.get(event.member_id)
        transition = self._processor.apply(current, event)

        if transition.record is current:
            logger.debug(
                "Ignored %s for %s in %s: %s",
                event.type.value,
                event.member_id,
                self.group_id,
                transition.reason,
            )
            return

        self.records[event.member_id] = transition.record
        self._dirty.add(event.member_id)
        self._schedule_flush()

        if transition.credited or transition.kind in ("closed", "moved"):
            logger.info(
                "Session %s for %s in %s, credited %d ms (total %d ms)",
                transition.kind,
                event.member_id,
                self.group_id,
                transition.credited,
                transition.record.total_duration,
            )

    def _apply_heartbeat(self, at: int) -> None:
        touched = []
        for member_id, record in list(self.records.items()):
            updated = self._processor.heartbeat(record, at)
            if updated is not record:
                self.records[member_id] = updated
                touched.append(member_id)
        if touched:
            self._dirty.update(touched)
            self._spawn(self.flush())

    def _apply_reset(self, future: asyncio.Future) -> None:
        at = self._clock()
        snapshot: dict[str, int] = {}
        for member_id, record in list(self.records.items()):
            updated, prior = self._processor.reset(record, at)
            snapshot[member_id] = prior
            self.records[member_id] = updated
        self._dirty.update(snapshot)
        if not future.done():
            future.set_result(snapshot)
        self._spawn(self.flush())
        logger.info("Reset %d member totals in group %s", len(snapshot), self.group_id)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _schedule_flush(self, delay: float | None = None) -> None:
        """Start the debounce timer unless one is already pending."""
        if self._flush_task is not None and not self._flush_task.done():
            return
        wait = self._settings.flush_interval_seconds if delay is None else delay
        self._flush_task = asyncio.create_task(self._delayed_flush(wait))

    async def _delayed_flush(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._flush_task = None
        if not await self.flush():
            backoff = min(
                self._settings.flush_interval_seconds * (2 ** self._consecutive_failures),
                FLUSH_RETRY_MAX_SECONDS,
            )
            self._schedule_flush(backoff)

    async def flush(self) -> bool:
        """
        Write dirty records to the store in one batch.

        Returns:
            True if nothing was pending or the write landed
        """
        async with self._flush_lock:
            if not self._dirty:
                return True

            member_ids = list(self._dirty)
            batch = [self.records[member_id] for member_id in member_ids]
            self._dirty.difference_update(member_ids)

            try:
                await asyncio.to_thread(self._store.save_records, self.group_id, batch)
            except asyncio.CancelledError:
                self._dirty.update(member_ids)
                raise
            except Exception as e:
                self._dirty.update(member_ids)
                self._consecutive_failures += 1
                self.flush_failures += 1
                logger.warning(
                    "Flush of %d records for group %s failed (attempt %d): %s",
                    len(batch),
                    self.group_id,
                    self._consecutive_failures,
                    e,
                )
                return False

            self._consecutive_failures = 0
            self.flushes += 1
            logger.debug("Flushed %d records for group %s", len(batch), self.group_id)
            return True


# ==============================================================================
# Session Tracker
# ==============================================================================


class SessionTracker:
    """
    Owns every MemberActivityRecord. Read-only for everyone else.

    Args:
        store: Durable activity store
        settings: Tracker settings (filters, flush and heartbeat intervals)
        clock: Epoch-milliseconds clock
        on_group_mutated: Called with a group ID after an administrative change
            (used to invalidate cached reports)
    """

    def __init__(
        self,
        store: ActivityStore,
        settings: TrackerSettings | None = None,
        clock: Clock = now_ms,
        on_group_mutated: Callable[[str], None] | None = None,
    ):
        self._store = store
        self._settings = settings or TrackerSettings()
        self._clock = clock
        self._on_group_mutated = on_group_mutated
        self._processor = SessionProcessor(
            excluded_channels=self._settings.excluded_channels,
            ignored_tags=self._settings.ignored_tags,
        )
        self._actors: dict[str, GroupActor] = {}
        self._heartbeat_task: asyncio.Task | None = None

    @property
    def processor(self) -> SessionProcessor:
        return self._processor

    def start(self) -> None:
        """Start the periodic heartbeat. Requires a running event loop."""
        if self._heartbeat_task is None or self._heartbeat_task.done():
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def stop(self) -> None:
        """Stop the heartbeat, drain every queue and flush what is left."""
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None
        for actor in list(self._actors.values()):
            await actor.stop()
        logger.info("Session tracker stopped (%d groups)", len(self._actors))

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on_presence_event(self, event: PresenceEvent) -> bool:
        """
        Hand an event to its group's actor. Never blocks.

        Returns:
            False if the group's bounded queue was full and the event dropped
        """
        return self._actor(event.group_id).submit(event)

    def heartbeat(self) -> None:
        """Stamp every open session with the current time and persist it."""
        at = self._clock()
        for actor in self._actors.values():
            actor.submit(_Heartbeat(at))

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.heartbeat_interval_seconds)
            self.heartbeat()

    def _actor(self, group_id: str, records: dict[str, MemberActivityRecord] | None = None) -> GroupActor:
        actor = self._actors.get(group_id)
        if actor is None:
            actor = GroupActor(
                group_id, self._processor, self._store, self._settings, self._clock, records
            )
            self._actors[group_id] = actor
            actor.start()
        return actor

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_totals(self, group_id: str, member_id: str) -> MemberActivityRecord:
        """
        Current totals of a member, including the open session's elapsed time.

        Unknown members get an empty record.
        """
        actor = self._actors.get(group_id)
        record = actor.records.get(member_id) if actor else None
        if record is None:
            return MemberActivityRecord(member_id=member_id)
        return record.model_copy(update={"total_duration": record.total_at(self._clock())})

    def get_group_totals(self, group_id: str) -> dict[str, MemberActivityRecord]:
        actor = self._actors.get(group_id)
        if actor is None:
            return {}
        now = self._clock()
        return {
            member_id: record.model_copy(update={"total_duration": record.total_at(now)})
            for member_id, record in list(actor.records.items())
        }

    def groups(self) -> list[str]:
        return sorted(self._actors)

    def stats(self) -> dict[str, dict]:
        return {
            group_id: {
                "members": len(actor.records),
                "active_sessions": sum(1 for r in actor.records.values() if r.is_active),
                "events_processed": actor.events_processed,
                "events_dropped": actor.events_dropped,
                "dirty": actor.dirty_count,
                "flushes": actor.flushes,
                "flush_failures": actor.flush_failures,
            }
            for group_id, actor in sorted(self._actors.items())
        }

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait until every queued event has been applied."""
        for actor in list(self._actors.values()):
            await actor.join()

    async def flush(self) -> bool:
        """Apply queued events and write all dirty records now."""
        ok = True
        for actor in list(self._actors.values()):
            await actor.join()
            ok = await actor.flush() and ok
        return ok

    async def reset_group(self, group_id: str) -> dict[str, int]:
        """
        Zero every member total of a group.

        Open sessions keep running and count from the reset onwards.

        Returns:
            Dict mapping member_id to its total just before the reset
        """
        if group_id not in self._actors:
            await self._load_group(group_id, persist=True)
        future = asyncio.get_running_loop().create_future()
        self._actors[group_id].submit(_Reset(future))
        snapshot = await future

        threshold = await asyncio.to_thread(self._store.get_threshold, group_id)
        if threshold is not None:
            stamped = threshold.model_copy(update={"reset_at": self._clock()})
            await asyncio.to_thread(self._store.save_threshold, stamped)
        if self._on_group_mutated:
            self._on_group_mutated(group_id)
        return snapshot

    async def restore_from_persistence(self, persist: bool = True) -> int:
        """
        Load persisted records for every group.

        Sessions left open by a crash are closed at their last heartbeat.
        Groups already live in memory are left untouched.

        Args:
            persist: Write the closed sessions back to the store. Readers that
                share the store with a live tracker pass False.

        Returns:
            Number of member records restored
        """
        group_ids = await asyncio.to_thread(self._store.list_groups)
        restored = 0
        for group_id in group_ids:
            if group_id in self._actors:
                continue
            restored += await self._load_group(group_id, persist)
        logger.info("Restored %d activity records across %d groups", restored, len(group_ids))
        return restored

    async def _load_group(self, group_id: str, persist: bool) -> int:
        records = await asyncio.to_thread(self._store.load_records, group_id)
        recovered: list[str] = []
        for member_id, record in list(records.items()):
            closed, credited = self._processor.recover(record)
            if closed is not record:
                records[member_id] = closed
                recovered.append(member_id)
                logger.info(
                    "Closed stale session for %s in %s at last heartbeat, credited %d ms",
                    member_id,
                    group_id,
                    credited,
                )
        actor = self._actor(group_id, records)
        if recovered and persist:
            actor.mark_dirty(recovered)
            await actor.flush()
        return len(records)
