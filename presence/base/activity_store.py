# ==============================================================================
# Activity Store Abstract Base Class
# ==============================================================================
"""
Abstract interface for durable presence state.

Holds one MemberActivityRecord per (group, member), one GroupThreshold per
group and the group's excusals. The session tracker writes records in
debounced batches; configuration commands write thresholds and excusals.

All methods are synchronous; async callers run them in a worker thread.
"""

from abc import ABC, abstractmethod

from presence.core.models import Excusal, GroupThreshold, MemberActivityRecord


class ActivityStore(ABC):
    """
    Store for presence totals and group configuration.
    """

    @abstractmethod
    def load_records(self, group_id: str) -> dict[str, MemberActivityRecord]:
        """
        Load every activity record of a group.

        Returns:
            Dict mapping member_id to record
        """
        ...

    @abstractmethod
    def save_records(self, group_id: str, records: list[MemberActivityRecord]) -> None:
        """
        Persist activity records of one group in a single batch.

        Raises:
            PersistenceWriteError: The write did not land
        """
        ...

    @abstractmethod
    def list_groups(self) -> list[str]:
        """Group IDs that have persisted activity records."""
        ...

    @abstractmethod
    def get_threshold(self, group_id: str) -> GroupThreshold | None:
        ...

    @abstractmethod
    def save_threshold(self, threshold: GroupThreshold) -> None:
        ...

    @abstractmethod
    def get_excusals(self, group_id: str) -> dict[str, Excusal]:
        """
        Excusals of a group, revoked ones included.

        Returns:
            Dict mapping member_id to excusal
        """
        ...

    @abstractmethod
    def save_excusal(self, excusal: Excusal) -> None:
        ...
