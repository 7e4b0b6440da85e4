# ==============================================================================
# Activity Store Implementation (Valkey/Redis)
# ==============================================================================
"""
Valkey/Redis implementation of the ActivityStore interface.

Each member's running total is one Redis hash, written in pipelined batches
by the session tracker. Thresholds and excusals are hashes too. Per-group
index sets avoid SCANs when loading a group.
"""

import logging
from collections.abc import Callable

import redis
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from presence.base.activity_store import ActivityStore
from presence.core.errors import PersistenceWriteError
from presence.core.models import Excusal, GroupThreshold, MemberActivityRecord, Session
from presence.infrastructure.cache.valkey import get_valkey_client
from presence.utils.config import get_settings
from presence.utils.retry import REDIS_RETRY_EXCEPTIONS, RETRY_ATTEMPTS_LIGHT, RETRY_WAIT_MAX

logger = logging.getLogger(__name__)


def _optional_int(value: str | None) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def _str(value) -> str:
    return "" if value is None else str(value)


class ValkeyActivityStore(ActivityStore):
    """
    Valkey/Redis implementation of ActivityStore.

    Key layout (``{p}`` is the configured key prefix):

    - ``{p}:groups``                       set of group IDs
    - ``{p}:members:{group}``              set of member IDs with records
    - ``{p}:record:{group}:{member}``      activity record hash
    - ``{p}:threshold:{group}``            threshold hash
    - ``{p}:excusals:{group}``             set of excused member IDs
    - ``{p}:excusal:{group}:{member}``     excusal hash

    Each record hash contains:
    - member_id, display_name
    - total_duration: credited milliseconds
    - session_channel, session_started_at, session_opened_at, last_heartbeat_at:
      open session, empty strings when the member is idle
    - updated_at: last change (ms)
    """

    def __init__(
        self,
        client: redis.Redis | None = None,
        prefix: str | None = None,
        write_attempts: int = RETRY_ATTEMPTS_LIGHT,
        retry_wait_min: float = 1,
    ):
        """
        Initialize the activity store.

        Args:
            client: Redis client instance. If None, creates a new connection.
            prefix: Key namespace. If None, uses settings.
            write_attempts: Attempts for each pipelined write
            retry_wait_min: First backoff delay between write attempts (seconds)
        """
        self._client = client or get_valkey_client()
        self._prefix = prefix if prefix is not None else get_settings().valkey.key_prefix
        self._write_attempts = write_attempts
        self._retry_wait_min = retry_wait_min

    @property
    def client(self) -> redis.Redis:
        """Get the underlying Redis client."""
        return self._client

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def _groups_key(self) -> str:
        return f"{self._prefix}:groups"

    def _members_key(self, group_id: str) -> str:
        return f"{self._prefix}:members:{group_id}"

    def _record_key(self, group_id: str, member_id: str) -> str:
        return f"{self._prefix}:record:{group_id}:{member_id}"

    def _threshold_key(self, group_id: str) -> str:
        return f"{self._prefix}:threshold:{group_id}"

    def _excusals_key(self, group_id: str) -> str:
        return f"{self._prefix}:excusals:{group_id}"

    def _excusal_key(self, group_id: str, member_id: str) -> str:
        return f"{self._prefix}:excusal:{group_id}:{member_id}"

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def _parse_record(self, member_id: str, data: dict) -> MemberActivityRecord:
        """Parse raw Redis hash data into an activity record."""
        session = None
        channel = data.get("session_channel")
        started = _optional_int(data.get("session_started_at"))
        opened = _optional_int(data.get("session_opened_at"))
        if channel and started is not None:
            heartbeat = _optional_int(data.get("last_heartbeat_at"))
            session = Session(
                member_id=member_id,
                channel_id=channel,
                started_at=started,
                last_heartbeat_at=heartbeat if heartbeat is not None else started,
                opened_at=opened,
            )
        return MemberActivityRecord(
            member_id=data.get("member_id", member_id),
            display_name=data.get("display_name", ""),
            total_duration=int(data.get("total_duration", 0)),
            current_session=session,
            updated_at=int(data.get("updated_at", 0)),
        )

    def _serialize_record(self, record: MemberActivityRecord) -> dict:
        """Serialize an activity record for Redis hash storage."""
        session = record.current_session
        return {
            "member_id": record.member_id,
            "display_name": record.display_name,
            "total_duration": str(record.total_duration),
            "session_channel": session.channel_id if session else "",
            "session_started_at": _str(session.started_at if session else None),
            "last_heartbeat_at": _str(session.last_heartbeat_at if session else None),
            "session_opened_at": _str(session.opened_at if session else None),
            "updated_at": str(record.updated_at),
        }

    def _execute_pipeline_with_retry(self, pipeline_builder: Callable) -> list:
        """
        Execute a Redis pipeline with retry logic for network resilience.

        Args:
            pipeline_builder: Callable that takes a pipeline and adds commands to it

        Returns:
            List of results from pipeline execution

        Raises:
            PersistenceWriteError: Redis rejected the write, or every retry failed
        """

        @retry(
            stop=stop_after_attempt(self._write_attempts),
            wait=wait_exponential(multiplier=self._retry_wait_min, max=RETRY_WAIT_MAX),
            retry=retry_if_exception_type(REDIS_RETRY_EXCEPTIONS),
            reraise=True,
        )
        def _execute():
            pipe = self._client.pipeline()
            pipeline_builder(pipe)
            return pipe.execute()

        try:
            return _execute()
        except redis.RedisError as e:
            raise PersistenceWriteError(str(e)) from e

    # ==========================================================================
    # ActivityStore Interface Implementation
    # ==========================================================================

    def load_records(self, group_id: str) -> dict[str, MemberActivityRecord]:
        member_ids = sorted(self._client.smembers(self._members_key(group_id)))
        if not member_ids:
            return {}

        pipe = self._client.pipeline()
        for member_id in member_ids:
            pipe.hgetall(self._record_key(group_id, member_id))
        results = pipe.execute()

        records: dict[str, MemberActivityRecord] = {}
        for member_id, data in zip(member_ids, results):
            if data:
                records[member_id] = self._parse_record(member_id, data)
        return records

    def save_records(self, group_id: str, records: list[MemberActivityRecord]) -> None:
        if not records:
            return

        def build_pipeline(pipe):
            pipe.sadd(self._groups_key(), group_id)
            pipe.sadd(self._members_key(group_id), *[r.member_id for r in records])
            for record in records:
                pipe.hset(
                    self._record_key(group_id, record.member_id),
                    mapping=self._serialize_record(record),
                )

        self._execute_pipeline_with_retry(build_pipeline)

    def list_groups(self) -> list[str]:
        return sorted(self._client.smembers(self._groups_key()))

    def get_threshold(self, group_id: str) -> GroupThreshold | None:
        data = self._client.hgetall(self._threshold_key(group_id))
        if not data:
            return None
        return GroupThreshold(
            group_id=group_id,
            min_duration=int(data.get("min_duration", 0)),
            reset_at=_optional_int(data.get("reset_at")),
            report_cycle=data.get("report_cycle") or None,
            proration_enabled=data.get("proration_enabled") == "1",
        )

    def save_threshold(self, threshold: GroupThreshold) -> None:
        mapping = {
            "min_duration": str(threshold.min_duration),
            "reset_at": _str(threshold.reset_at),
            "report_cycle": threshold.report_cycle.value if threshold.report_cycle else "",
            "proration_enabled": "1" if threshold.proration_enabled else "0",
        }
        self._execute_pipeline_with_retry(
            lambda pipe: pipe.hset(self._threshold_key(threshold.group_id), mapping=mapping)
        )

    def get_excusals(self, group_id: str) -> dict[str, Excusal]:
        member_ids = sorted(self._client.smembers(self._excusals_key(group_id)))
        if not member_ids:
            return {}

        pipe = self._client.pipeline()
        for member_id in member_ids:
            pipe.hgetall(self._excusal_key(group_id, member_id))
        results = pipe.execute()

        excusals = {}
        for member_id, data in zip(member_ids, results):
            if not data:
                continue
            excusals[member_id] = Excusal(
                group_id=group_id,
                member_id=member_id,
                granted_at=int(data["granted_at"]),
                until=_optional_int(data.get("until")),
                revoked_at=_optional_int(data.get("revoked_at")),
                reason=data.get("reason", ""),
            )
        return excusals

    def save_excusal(self, excusal: Excusal) -> None:
        mapping = {
            "granted_at": str(excusal.granted_at),
            "until": _str(excusal.until),
            "revoked_at": _str(excusal.revoked_at),
            "reason": excusal.reason,
        }

        def build_pipeline(pipe):
            pipe.sadd(self._excusals_key(excusal.group_id), excusal.member_id)
            pipe.hset(self._excusal_key(excusal.group_id, excusal.member_id), mapping=mapping)

        self._execute_pipeline_with_retry(build_pipeline)
