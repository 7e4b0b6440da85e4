# ==============================================================================
# Classification Rules - Pure Domain Logic
# ==============================================================================
"""
Threshold classification with proration, plus report statistics.

Rules:
- An excused member is Excused regardless of duration.
- Otherwise ``duration >= effective_threshold`` is Achieving (inclusive), else
  Underperforming.
- With proration, a member who joined mid-period needs
  ``ceil(min_duration * eligible / full)`` where ``eligible`` is the part of
  the period after joining. Joining at or after the period end needs 0.
"""

import math

from presence.core.models import (
    ClassificationCategory,
    ClassificationResult,
    GroupThreshold,
    Member,
    ReportPeriod,
    ReportStatistics,
)

# Underperforming members below this share of the average are flagged at risk
AT_RISK_RATIO = 0.2
TOP_MEMBERS_LIMIT = 10

_CATEGORY_ORDER = {
    ClassificationCategory.ACHIEVING: 0,
    ClassificationCategory.UNDERPERFORMING: 1,
    ClassificationCategory.EXCUSED: 2,
}


def prorate_threshold(min_duration: int, joined_at: int | None, period: ReportPeriod) -> int:
    """
    Scale a threshold to the part of the period the member could attend.

    Args:
        min_duration: Full-period requirement in ms
        joined_at: When the member joined the group, or None if unknown
        period: Reporting period

    Returns:
        Effective threshold in ms, never negative and never above ``min_duration``
    """
    if joined_at is None or joined_at <= period.start:
        return min_duration
    if joined_at >= period.end:
        return 0
    eligible = period.end - joined_at
    return max(0, math.ceil(min_duration * eligible / period.length))


def effective_threshold(
    threshold: GroupThreshold, member: Member, period: ReportPeriod | None
) -> tuple[int, bool]:
    """Return (effective threshold, whether it was prorated)."""
    if not threshold.proration_enabled or period is None:
        return threshold.min_duration, False
    value = prorate_threshold(threshold.min_duration, member.joined_at, period)
    return value, value != threshold.min_duration


def classify_member(duration: int, threshold: int, excused: bool = False) -> ClassificationCategory:
    if excused:
        return ClassificationCategory.EXCUSED
    if duration >= threshold:
        return ClassificationCategory.ACHIEVING
    return ClassificationCategory.UNDERPERFORMING


def sort_results(results: list[ClassificationResult]) -> list[ClassificationResult]:
    """Group by category, longest presence first within each category."""
    return sorted(results, key=lambda r: (_CATEGORY_ORDER[r.category], -r.duration, r.member_id))


def summarize(results: list[ClassificationResult]) -> ReportStatistics:
    """
    Compute distribution statistics over classified members.

    Average and median only consider members with some presence.
    """
    total = len(results)
    if total == 0:
        return ReportStatistics()

    counts = {category: 0 for category in ClassificationCategory}
    for result in results:
        counts[result.category] += 1

    durations = sorted(r.duration for r in results if r.duration > 0)
    average = sum(durations) / len(durations) if durations else 0.0
    median = durations[len(durations) // 2] if durations else 0

    achieving = [r for r in results if r.category is ClassificationCategory.ACHIEVING]
    achieving.sort(key=lambda r: -r.duration)
    risk_cutoff = average * AT_RISK_RATIO
    at_risk = [
        r.member_id
        for r in results
        if r.category is ClassificationCategory.UNDERPERFORMING and 0 < r.duration < risk_cutoff
    ]

    return ReportStatistics(
        average_duration=average,
        median_duration=median,
        achieving_percentage=counts[ClassificationCategory.ACHIEVING] / total * 100,
        underperforming_percentage=counts[ClassificationCategory.UNDERPERFORMING] / total * 100,
        excused_percentage=counts[ClassificationCategory.EXCUSED] / total * 100,
        top_members=[r.member_id for r in achieving[:TOP_MEMBERS_LIMIT]],
        at_risk_members=at_risk,
    )
