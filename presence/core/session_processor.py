# ==============================================================================
# Session Processor - Pure Domain Logic
# ==============================================================================
"""
Pure presence state machine with no external dependencies.

This module contains the domain logic for presence accounting:
- Channel and member-tag filtering
- Opening, closing and moving sessions
- Crediting closed sessions to the member's running total
- Heartbeats, restart recovery and administrative resets

All methods take an immutable MemberActivityRecord and return a new one, so
the caller can swap records atomically. No storage, clock or asyncio
dependencies, which keeps the logic:
- Unit testable without mocks
- Replayable over recorded event streams
- Reusable from the tracker actor and the CLI
"""

from collections.abc import Iterable
from dataclasses import dataclass

from presence.core.models import (
    EventType,
    MemberActivityRecord,
    PresenceEvent,
    Session,
)

# Display tags that mark members who are present but not participating
DEFAULT_IGNORED_TAGS = ("[observer]", "[waiting]")


@dataclass(frozen=True)
class Transition:
    """
    Result of applying one event to one record.

    Attributes:
        kind: opened, closed, moved, ignored or updated
        record: The record after the event (same object if nothing changed)
        credited: Milliseconds added to the total by a closed session
        reason: Short explanation for ignored events
    """

    kind: str
    record: MemberActivityRecord
    credited: int = 0
    reason: str = ""


class SessionProcessor:
    """
    Presence state machine: ``Idle --joined--> Active --left--> Idle``.

    A member has at most one Active session. Moving between channels closes
    the old session and opens the new one at the same instant. Joins to
    excluded channels and members carrying an ignored tag never open a session.
    """

    def __init__(
        self,
        excluded_channels: Iterable[str] = (),
        ignored_tags: Iterable[str] = DEFAULT_IGNORED_TAGS,
    ):
        """
        Initialize session processor.

        Args:
            excluded_channels: Channel IDs whose presence is never counted
            ignored_tags: Display-name markers (or explicit tags) that suspend tracking
        """
        self.excluded_channels = frozenset(excluded_channels)
        self.ignored_tags = tuple(ignored_tags)

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def is_tracked_channel(self, channel_id: str | None) -> bool:
        return channel_id is not None and channel_id not in self.excluded_channels

    def is_ignored_member(self, display_name: str, tags: Iterable[str] = ()) -> bool:
        """True if the member carries an ignored tag in its name or tag list."""
        tag_set = set(tags)
        return any(tag in display_name or tag in tag_set for tag in self.ignored_tags)

    # ------------------------------------------------------------------
    # Session primitives
    # ------------------------------------------------------------------

    @staticmethod
    def open_session(record: MemberActivityRecord, channel_id: str, at: int) -> MemberActivityRecord:
        session = Session(
            member_id=record.member_id,
            channel_id=channel_id,
            started_at=at,
            last_heartbeat_at=at,
            opened_at=at,
        )
        return record.model_copy(update={"current_session": session, "updated_at": at})

    @staticmethod
    def close_session(record: MemberActivityRecord, end: int) -> tuple[MemberActivityRecord, int]:
        """
        Close the open session at ``end`` and credit its duration.

        Returns:
            (new record, credited milliseconds). Credits 0 if no session is open
            or ``end`` precedes the session start.
        """
        session = record.current_session
        if session is None:
            return record, 0
        credited = session.elapsed(end)
        updated = record.model_copy(
            update={
                "total_duration": record.total_duration + credited,
                "current_session": None,
                "updated_at": max(end, record.updated_at),
            }
        )
        return updated, credited

    @staticmethod
    def heartbeat(record: MemberActivityRecord, at: int) -> MemberActivityRecord:
        """Refresh the open session's heartbeat. Idle records are returned unchanged."""
        session = record.current_session
        if session is None or at <= session.last_heartbeat_at:
            return record
        return record.model_copy(
            update={"current_session": session.model_copy(update={"last_heartbeat_at": at})}
        )

    @staticmethod
    def recover(record: MemberActivityRecord) -> tuple[MemberActivityRecord, int]:
        """
        Close a session left open by a crash at its last recorded heartbeat.

        Time between the last heartbeat and the restart is never credited.
        """
        session = record.current_session
        if session is None:
            return record, 0
        return SessionProcessor.close_session(record, session.last_heartbeat_at)

    @staticmethod
    def reset(record: MemberActivityRecord, at: int) -> tuple[MemberActivityRecord, int]:
        """
        Zero the running total, keeping any open session running from ``at``.

        Returns:
            (new record, total before the reset including open session time)
        """
        prior = record.total_at(at)
        session = record.current_session
        if session is not None:
            session = session.model_copy(update={"started_at": at, "last_heartbeat_at": at})
        updated = record.model_copy(
            update={"total_duration": 0, "current_session": session, "updated_at": at}
        )
        return updated, prior

    # ------------------------------------------------------------------
    # Event application
    # ------------------------------------------------------------------

    def apply(self, record: MemberActivityRecord | None, event: PresenceEvent) -> Transition:
        """
        Apply a presence event to a member's record.

        Args:
            record: Current record, or None for a member never seen before
            event: Presence event for that member

        Returns:
            Transition describing what happened and the resulting record
        """
        if record is None:
            record = MemberActivityRecord(
                member_id=event.member_id,
                display_name=event.display_name,
                updated_at=event.timestamp,
            )
        elif event.display_name and event.display_name != record.display_name:
            record = record.model_copy(update={"display_name": event.display_name})

        ignored = self.is_ignored_member(event.display_name, event.tags)

        if event.type in (EventType.JOINED, EventType.MOVED):
            return self._enter(record, event, ignored)
        if event.type in (EventType.LEFT, EventType.DISCONNECTED):
            return self._leave(record, event)
        return self._member_updated(record, event, ignored)

    def _enter(self, record: MemberActivityRecord, event: PresenceEvent, ignored: bool) -> Transition:
        target = event.channel_id
        session = record.current_session

        if session is not None and session.channel_id == target:
            return Transition("ignored", record, reason="already active in channel")
        if session is not None and session.predates(event.timestamp):
            return Transition("ignored", record, reason="stale event before session start")

        credited = 0
        if session is not None:
            record, credited = self.close_session(record, event.timestamp)

        if ignored:
            kind = "closed" if session is not None else "ignored"
            return Transition(kind, record, credited, reason="ignored member tag")
        if not self.is_tracked_channel(target):
            kind = "closed" if session is not None else "ignored"
            return Transition(kind, record, credited, reason="excluded channel")

        record = self.open_session(record, target, event.timestamp)
        return Transition("moved" if session is not None else "opened", record, credited)

    def _leave(self, record: MemberActivityRecord, event: PresenceEvent) -> Transition:
        session = record.current_session
        if session is None:
            return Transition("ignored", record, reason="no open session")
        if (
            event.type is EventType.LEFT
            and event.channel_id is not None
            and event.channel_id != session.channel_id
        ):
            return Transition("ignored", record, reason="stale leave for another channel")
        if session.predates(event.timestamp):
            return Transition("ignored", record, reason="stale event before session start")
        record, credited = self.close_session(record, event.timestamp)
        return Transition("closed", record, credited)

    def _member_updated(
        self, record: MemberActivityRecord, event: PresenceEvent, ignored: bool
    ) -> Transition:
        session = record.current_session
        if ignored and session is not None:
            if session.predates(event.timestamp):
                return Transition("ignored", record, reason="stale event before session start")
            record, credited = self.close_session(record, event.timestamp)
            return Transition("closed", record, credited, reason="ignored member tag")
        if not ignored and session is None and self.is_tracked_channel(event.channel_id):
            record = self.open_session(record, event.channel_id, event.timestamp)
            return Transition("opened", record)
        return Transition("updated", record)
