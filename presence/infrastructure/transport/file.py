# ==============================================================================
# JSON File Transport
# ==============================================================================
"""
File-backed transport for replaying exported presence data.

- Member lists come from a JSON file mapping group IDs to member objects.
- Presence events come from a JSON Lines file, one event per line.
- Sent chunks are collected in ``sent`` and optionally appended to an outbox
  JSON Lines file.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from pathlib import Path

from presence.base.transport import Transport
from presence.core.errors import TransientFetchError, UpstreamUnavailableError
from presence.core.models import Chunk, Member, PresenceEvent

logger = logging.getLogger(__name__)


class JsonFileTransport(Transport):
    """
    Transport reading from local JSON exports.

    Args:
        members_path: JSON file ``{"group_id": [{"member_id": ...}, ...]}``
        events_path: JSON Lines file of presence events
        outbox_path: Optional JSON Lines file receiving sent chunks
    """

    name = "file"

    def __init__(
        self,
        members_path: Path | None = None,
        events_path: Path | None = None,
        outbox_path: Path | None = None,
    ):
        self.members_path = members_path
        self.events_path = events_path
        self.outbox_path = outbox_path
        self.sent: list[tuple[str, Chunk]] = []

    async def subscribe(self) -> AsyncIterator[PresenceEvent]:
        if self.events_path is None:
            return
        with self.events_path.open(encoding="utf-8") as fh:
            for line_number, line in enumerate(fh, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield PresenceEvent.model_validate(json.loads(line))
                except ValueError as e:
                    logger.warning("Skipping malformed event on line %d: %s", line_number, e)
                # Let other tasks run between events
                await asyncio.sleep(0)

    async def fetch_members(self, group_id: str, limit: int | None = None) -> list[Member]:
        if self.members_path is None:
            raise UpstreamUnavailableError("no members file configured")
        try:
            data = await asyncio.to_thread(self._read_members)
        except OSError as e:
            raise TransientFetchError(f"cannot read {self.members_path}: {e}") from e

        if group_id not in data:
            raise UpstreamUnavailableError(f"group {group_id} not found in {self.members_path}")
        members = [Member.model_validate(item) for item in data[group_id]]
        return members[:limit] if limit is not None else members

    async def send_message(self, channel_id: str, chunk: Chunk) -> bool:
        self.sent.append((channel_id, chunk))
        if self.outbox_path is not None:
            line = json.dumps({"channel_id": channel_id, **chunk.model_dump(mode="json")})
            await asyncio.to_thread(self._append_outbox, line)
        return True

    def _read_members(self) -> dict:
        with self.members_path.open(encoding="utf-8") as fh:
            return json.load(fh)

    def _append_outbox(self, line: str) -> None:
        with self.outbox_path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
