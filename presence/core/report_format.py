# ==============================================================================
# Report Text Formatting
# ==============================================================================
"""
Plain-text rendering of reports as chunkable line items.
"""

from presence.core.models import (
    ClassificationCategory,
    ClassificationResult,
    PartialReportResult,
    ReportResult,
)
from presence.utils.clock import format_duration

_SECTION_TITLES = {
    ClassificationCategory.ACHIEVING: "Achieving",
    ClassificationCategory.UNDERPERFORMING: "Underperforming",
    ClassificationCategory.EXCUSED: "Excused",
}


def _member_line(result: ClassificationResult) -> str:
    name = result.display_name or result.member_id
    line = f"{name}: {format_duration(result.duration)}"
    if result.category is not ClassificationCategory.EXCUSED:
        line += f" / {format_duration(result.effective_threshold)}"
    if result.prorated:
        line += " (prorated)"
    return line


def report_to_items(report: ReportResult) -> list[str]:
    """One header line, then a title line and one line per member for each category."""
    agg = report.aggregate
    items = [
        f"Presence report for {report.group_id}: {agg.total_members} members, "
        f"{agg.achieving} achieving, {agg.underperforming} underperforming, "
        f"{agg.excused} excused"
    ]
    if report.data_quality.value != "full":
        items.append(f"Data quality: {report.data_quality.value}")
    if report.error_count:
        items.append(f"Members skipped after errors: {agg.failed_members}")

    for category, title in _SECTION_TITLES.items():
        members = report.by_category(category)
        if not members:
            continue
        items.append(f"## {title} ({len(members)})")
        items.extend(_member_line(r) for r in members)
    return items


def progress_line(partial: PartialReportResult) -> str:
    progress = partial.progress
    agg = partial.aggregate
    return (
        f"[{progress.percentage:5.1f}%] {progress.stage.value}: "
        f"{agg.total_members} classified, {agg.achieving} achieving, "
        f"{agg.underperforming} underperforming, {agg.excused} excused"
    )
