# ==============================================================================
# Tests for Classification
# ==============================================================================
"""
Tests for threshold classification rules and the ClassificationEngine.

Tests cover:
- Inclusive threshold boundary
- Proration: rounding up, clamping and monotonicity
- Excusals overriding thresholds, including after threshold changes
- Excused roles and member flags
- Result ordering and summary statistics
"""

import pytest

from conftest import HOUR, T0, StubTracker, members
from presence.core.classification import (
    classify_member,
    effective_threshold,
    prorate_threshold,
    sort_results,
    summarize,
)
from presence.core.models import (
    ClassificationCategory,
    ClassificationResult,
    GroupThreshold,
    Member,
    ReportPeriod,
)
from presence.services.classification import ClassificationEngine
from presence.services.group_config import GroupConfigService

ACHIEVING = ClassificationCategory.ACHIEVING
UNDERPERFORMING = ClassificationCategory.UNDERPERFORMING
EXCUSED = ClassificationCategory.EXCUSED

WEEK = 7 * 24 * HOUR
PERIOD = ReportPeriod(start=T0, end=T0 + WEEK)


# ==============================================================================
# Rules
# ==============================================================================


class TestClassifyMember:
    """Tests for the category rule."""

    def test_boundary_is_inclusive(self):
        assert classify_member(HOUR, HOUR) is ACHIEVING
        assert classify_member(HOUR - 1, HOUR) is UNDERPERFORMING

    def test_zero_threshold_everyone_achieves(self):
        assert classify_member(0, 0) is ACHIEVING

    def test_excused_wins_over_duration(self):
        assert classify_member(10 * HOUR, HOUR, excused=True) is EXCUSED
        assert classify_member(0, HOUR, excused=True) is EXCUSED


class TestProration:
    """Tests for prorate_threshold and effective_threshold."""

    def test_joined_before_period_gets_full_threshold(self):
        assert prorate_threshold(10 * HOUR, T0 - HOUR, PERIOD) == 10 * HOUR
        assert prorate_threshold(10 * HOUR, None, PERIOD) == 10 * HOUR

    def test_joined_halfway_gets_half(self):
        assert prorate_threshold(10 * HOUR, T0 + WEEK // 2, PERIOD) == 5 * HOUR

    def test_rounds_up(self):
        period = ReportPeriod(start=0, end=3)
        # 10 * 2 / 3 = 6.67
        assert prorate_threshold(10, 1, period) == 7

    def test_joined_after_end_needs_nothing(self):
        assert prorate_threshold(10 * HOUR, T0 + WEEK, PERIOD) == 0
        assert prorate_threshold(10 * HOUR, T0 + 2 * WEEK, PERIOD) == 0

    def test_later_join_never_raises_threshold(self):
        """Effective threshold is non-increasing in join time."""
        previous = 10 * HOUR
        for day in range(8):
            value = prorate_threshold(10 * HOUR, T0 + day * 24 * HOUR, PERIOD)
            assert 0 <= value <= previous
            previous = value

    def test_disabled_proration_uses_full_threshold(self):
        threshold = GroupThreshold(group_id="g1", min_duration=10 * HOUR)
        member = Member(member_id="m1", joined_at=T0 + WEEK // 2)
        assert effective_threshold(threshold, member, PERIOD) == (10 * HOUR, False)

    def test_enabled_proration_flags_result(self):
        threshold = GroupThreshold(group_id="g1", min_duration=10 * HOUR, proration_enabled=True)
        member = Member(member_id="m1", joined_at=T0 + WEEK // 2)
        assert effective_threshold(threshold, member, PERIOD) == (5 * HOUR, True)


# ==============================================================================
# Engine
# ==============================================================================


class TestClassificationEngine:
    """Tests for classifying members with stored configuration."""

    @pytest.mark.asyncio
    async def test_threshold_scenario(self, store):
        """One hour threshold: exactly one hour achieves, one ms short does not."""
        store.save_threshold(GroupThreshold(group_id="g1", min_duration=HOUR))
        tracker = StubTracker({"a": HOUR, "b": HOUR - 1, "c": 0})
        engine = ClassificationEngine(tracker, store)

        results = await engine.classify("g1", members("a", "b", "c"), PERIOD)
        by_id = {r.member_id: r.category for r in results}

        assert by_id == {"a": ACHIEVING, "b": UNDERPERFORMING, "c": UNDERPERFORMING}

    @pytest.mark.asyncio
    async def test_no_threshold_means_everyone_achieves(self, store):
        engine = ClassificationEngine(StubTracker({}), store)
        results = await engine.classify("g1", members("a"), PERIOD)
        assert results[0].category is ACHIEVING
        assert results[0].effective_threshold == 0

    @pytest.mark.asyncio
    async def test_excusal_survives_threshold_change(self, store, clock):
        """An excusal stays binding for the period when the threshold is raised."""
        config = GroupConfigService(store, clock=clock)
        await config.set_threshold("g1", HOUR)
        await config.excuse("g1", "c", reason="medical leave")
        await config.set_threshold("g1", 20 * HOUR)

        engine = ClassificationEngine(StubTracker({"a": 30 * HOUR, "c": 0}), store, clock=clock)
        period = ReportPeriod(start=clock() - WEEK, end=clock() + HOUR)
        results = await engine.classify("g1", members("a", "c"), period)
        by_id = {r.member_id: r for r in results}

        assert by_id["c"].category is EXCUSED
        assert by_id["a"].category is ACHIEVING
        assert by_id["a"].effective_threshold == 20 * HOUR

    @pytest.mark.asyncio
    async def test_revoked_excusal_is_classified_normally(self, store, clock):
        config = GroupConfigService(store, clock=clock)
        await config.set_threshold("g1", HOUR)
        await config.excuse("g1", "c")
        clock.advance(HOUR)
        await config.revoke_excusal("g1", "c")

        engine = ClassificationEngine(StubTracker({"c": 0}), store, clock=clock)
        period = ReportPeriod(start=clock() - WEEK, end=clock())
        results = await engine.classify("g1", members("c"), period)
        assert results[0].category is UNDERPERFORMING

    @pytest.mark.asyncio
    async def test_excusal_outside_period_does_not_apply(self, store, clock):
        config = GroupConfigService(store, clock=clock)
        await config.set_threshold("g1", HOUR)
        await config.excuse("g1", "c", until=clock() + HOUR)

        engine = ClassificationEngine(StubTracker({}), store, clock=clock)
        later = ReportPeriod(start=clock() + 2 * HOUR, end=clock() + WEEK)
        results = await engine.classify("g1", members("c"), later)
        assert results[0].category is UNDERPERFORMING

    @pytest.mark.asyncio
    async def test_excused_role_and_flag(self, store):
        store.save_threshold(GroupThreshold(group_id="g1", min_duration=HOUR))
        engine = ClassificationEngine(StubTracker({}), store, excused_roles=["leave"])
        group = [
            Member(member_id="a", roles=["leave"]),
            Member(member_id="b", excused=True),
            Member(member_id="c"),
        ]
        results = await engine.classify("g1", group, PERIOD)
        by_id = {r.member_id: r.category for r in results}
        assert by_id == {"a": EXCUSED, "b": EXCUSED, "c": UNDERPERFORMING}

    @pytest.mark.asyncio
    async def test_prorated_member_in_report(self, store):
        store.save_threshold(
            GroupThreshold(group_id="g1", min_duration=10 * HOUR, proration_enabled=True)
        )
        engine = ClassificationEngine(StubTracker({"late": 5 * HOUR}), store)
        late = Member(member_id="late", joined_at=T0 + WEEK // 2)
        results = await engine.classify("g1", [late], PERIOD)
        assert results[0].category is ACHIEVING
        assert results[0].prorated


# ==============================================================================
# Ordering and Statistics
# ==============================================================================


def _result(member_id, category, duration):
    return ClassificationResult(
        member_id=member_id, category=category, duration=duration, effective_threshold=HOUR
    )


class TestOrderingAndSummary:
    """Tests for sort_results and summarize."""

    def test_sort_by_category_then_duration(self):
        results = [
            _result("x", EXCUSED, 0),
            _result("u", UNDERPERFORMING, 10),
            _result("a1", ACHIEVING, 2 * HOUR),
            _result("a2", ACHIEVING, 3 * HOUR),
        ]
        assert [r.member_id for r in sort_results(results)] == ["a2", "a1", "u", "x"]

    def test_summary_percentages(self):
        results = [
            _result("a", ACHIEVING, 4 * HOUR),
            _result("b", UNDERPERFORMING, 2 * HOUR),
            _result("c", UNDERPERFORMING, 0),
            _result("d", EXCUSED, 0),
        ]
        stats = summarize(results)
        assert stats.achieving_percentage == 25.0
        assert stats.underperforming_percentage == 50.0
        assert stats.excused_percentage == 25.0
        assert stats.average_duration == 3 * HOUR
        assert stats.top_members == ["a"]

    def test_summary_flags_at_risk(self):
        results = [
            _result("a", ACHIEVING, 10 * HOUR),
            _result("b", ACHIEVING, 10 * HOUR),
            _result("low", UNDERPERFORMING, 60_000),
        ]
        assert summarize(results).at_risk_members == ["low"]

    def test_empty_summary(self):
        assert summarize([]).achieving_percentage == 0.0
