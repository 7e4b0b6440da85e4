# ==============================================================================
# Classification Engine
# ==============================================================================
"""
Classify group members against the group's presence threshold.

Durations come from the live SessionTracker (open sessions included), the
threshold and excusals from the activity store. The rules themselves live in
``presence.core.classification``.
"""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from presence.base.activity_store import ActivityStore
from presence.core.classification import classify_member, effective_threshold, sort_results
from presence.core.models import (
    ClassificationResult,
    Excusal,
    GroupThreshold,
    Member,
    ReportPeriod,
)
from presence.services.tracker import SessionTracker
from presence.utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationContext:
    """Threshold and excusals of a group, loaded once per report."""

    threshold: GroupThreshold
    excusals: dict[str, Excusal] = field(default_factory=dict)


class ClassificationEngine:
    """
    Args:
        tracker: Source of member presence totals
        store: Source of thresholds and excusals
        excused_roles: Member roles that excuse a member outright
    """

    def __init__(
        self,
        tracker: SessionTracker,
        store: ActivityStore,
        excused_roles: Iterable[str] = ("afk",),
        clock: Clock = now_ms,
    ):
        self._tracker = tracker
        self._store = store
        self._excused_roles = frozenset(excused_roles)
        self._clock = clock

    async def load_context(self, group_id: str) -> ClassificationContext:
        threshold = await asyncio.to_thread(self._store.get_threshold, group_id)
        excusals = await asyncio.to_thread(self._store.get_excusals, group_id)
        return ClassificationContext(
            threshold=threshold or GroupThreshold(group_id=group_id),
            excusals=excusals,
        )

    def is_excused(
        self, member: Member, excusal: Excusal | None, period: ReportPeriod | None
    ) -> bool:
        if member.excused or self._excused_roles.intersection(member.roles):
            return True
        if excusal is None:
            return False
        if period is not None:
            return excusal.covers(period)
        now = self._clock()
        return excusal.revoked_at is None and (excusal.until is None or excusal.until >= now)

    async def classify(
        self,
        group_id: str,
        members: list[Member],
        period: ReportPeriod | None = None,
        context: ClassificationContext | None = None,
    ) -> list[ClassificationResult]:
        """
        Classify members of a group.

        Args:
            group_id: Group the members belong to
            members: Members to classify
            period: Reporting period, used for proration and excusal overlap
            context: Preloaded threshold and excusals (loaded if omitted)

        Returns:
            Results grouped by category, longest presence first
        """
        if context is None:
            context = await self.load_context(group_id)

        results = []
        for member in members:
            record = self._tracker.get_totals(group_id, member.member_id)
            excused = self.is_excused(member, context.excusals.get(member.member_id), period)
            threshold, prorated = effective_threshold(context.threshold, member, period)
            results.append(
                ClassificationResult(
                    member_id=member.member_id,
                    display_name=member.display_name or record.display_name,
                    category=classify_member(record.total_duration, threshold, excused),
                    duration=record.total_duration,
                    effective_threshold=threshold,
                    prorated=prorated,
                )
            )
        logger.debug("Classified %d members of %s", len(results), group_id)
        return sort_results(results)
