# ==============================================================================
# Group Configuration Commands
# ==============================================================================
"""
Configuration commands for group thresholds and member excusals.

Input is validated before anything is written. Every successful change
notifies ``on_group_mutated`` so cached reports of the group are dropped.
"""

import asyncio
import logging
from collections.abc import Callable

import pydantic

from presence.base.activity_store import ActivityStore
from presence.core.errors import ValidationError
from presence.core.models import Excusal, GroupThreshold, ReportCycle
from presence.utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)


class GroupConfigService:
    def __init__(
        self,
        store: ActivityStore,
        on_group_mutated: Callable[[str], None] | None = None,
        clock: Clock = now_ms,
    ):
        self._store = store
        self._on_group_mutated = on_group_mutated
        self._clock = clock

    def _notify(self, group_id: str) -> None:
        if self._on_group_mutated:
            self._on_group_mutated(group_id)

    async def get_threshold(self, group_id: str) -> GroupThreshold:
        """The group's threshold, or a zero threshold if none is configured."""
        threshold = await asyncio.to_thread(self._store.get_threshold, group_id)
        return threshold or GroupThreshold(group_id=group_id)

    async def set_threshold(
        self,
        group_id: str,
        min_duration: int,
        proration_enabled: bool | None = None,
        report_cycle: ReportCycle | str | None = None,
    ) -> GroupThreshold:
        """
        Create or update a group's threshold.

        Fields left as None keep their current value. ``reset_at`` is never
        changed here.

        Raises:
            ValidationError: Negative duration, unknown cycle or empty group ID
        """
        current = await self.get_threshold(group_id) if group_id else None
        try:
            threshold = GroupThreshold(
                group_id=group_id,
                min_duration=min_duration,
                reset_at=current.reset_at if current else None,
                report_cycle=report_cycle if report_cycle is not None else (
                    current.report_cycle if current else None
                ),
                proration_enabled=(
                    proration_enabled
                    if proration_enabled is not None
                    else (current.proration_enabled if current else False)
                ),
            )
        except pydantic.ValidationError as e:
            raise ValidationError(f"invalid threshold for group {group_id!r}: {e}") from e

        await asyncio.to_thread(self._store.save_threshold, threshold)
        logger.info(
            "Threshold for %s set to %d ms (proration %s)",
            group_id,
            threshold.min_duration,
            "on" if threshold.proration_enabled else "off",
        )
        self._notify(group_id)
        return threshold

    async def excuse(
        self, group_id: str, member_id: str, until: int | None = None, reason: str = ""
    ) -> Excusal:
        """
        Excuse a member from the threshold.

        The excusal applies to every reporting period it overlaps, in full,
        until revoked.
        """
        granted_at = self._clock()
        if until is not None and until < granted_at:
            raise ValidationError(f"excusal end {until} is before now ({granted_at})")
        try:
            excusal = Excusal(
                group_id=group_id,
                member_id=member_id,
                granted_at=granted_at,
                until=until,
                reason=reason,
            )
        except pydantic.ValidationError as e:
            raise ValidationError(f"invalid excusal: {e}") from e

        await asyncio.to_thread(self._store.save_excusal, excusal)
        logger.info("Excused %s in group %s until %s", member_id, group_id, until or "revoked")
        self._notify(group_id)
        return excusal

    async def revoke_excusal(self, group_id: str, member_id: str) -> Excusal:
        """
        Revoke a member's excusal.

        Raises:
            ValidationError: The member has no active excusal
        """
        excusals = await self.list_excusals(group_id)
        current = excusals.get(member_id)
        if current is None or current.revoked_at is not None:
            raise ValidationError(f"member {member_id} has no active excusal in {group_id}")

        revoked = current.model_copy(update={"revoked_at": self._clock()})
        await asyncio.to_thread(self._store.save_excusal, revoked)
        logger.info("Revoked excusal of %s in group %s", member_id, group_id)
        self._notify(group_id)
        return revoked

    async def list_excusals(self, group_id: str) -> dict[str, Excusal]:
        return await asyncio.to_thread(self._store.get_excusals, group_id)
