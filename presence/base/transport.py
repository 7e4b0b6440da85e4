# ==============================================================================
# Transport Abstract Base Class
# ==============================================================================
"""
Base class for the chat-platform transport.

The transport delivers presence events, lists group members and sends output
messages. Platform clients differ widely, so this ABC is intentionally small.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from presence.core.models import Chunk, Member, PresenceEvent


class Transport(ABC):
    """Base class for transports."""

    #: Identifies the upstream for per-upstream rate limiting
    name: str = "transport"

    @abstractmethod
    def subscribe(self) -> AsyncIterator[PresenceEvent]:
        """
        Stream presence events.

        Delivery is at-least-once and may be reordered within a small window.
        The iterator ends when the transport is closed.
        """
        ...

    @abstractmethod
    async def fetch_members(self, group_id: str, limit: int | None = None) -> list[Member]:
        """
        List the members of a group.

        Args:
            group_id: Group to list
            limit: Return at most this many members (partial fetch)

        Raises:
            TransientFetchError: Retryable upstream failure
            UpstreamUnavailableError: Upstream refused the request
        """
        ...

    @abstractmethod
    async def send_message(self, channel_id: str, chunk: Chunk) -> bool:
        """
        Deliver one output chunk to a channel.

        Returns:
            True once the upstream acknowledged the message
        """
        ...

    async def close(self) -> None:
        """Release transport resources. Optional override."""
        return None
