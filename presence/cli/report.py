# ==============================================================================
# Report Command
# ==============================================================================
"""
Compliance report command for the presence CLI.

Runs a streaming report job against the tracked totals, showing partial
results while batches complete, then renders the final report as chunked
pages (or an attachment) and optionally delivers them to a channel outbox.
"""

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from presence.cli.shared import C, I, CliContext, build_context, build_period, require_valkey
from presence.core.errors import ChunkingError, JobCancelledError, ReportFailedError
from presence.core.models import ChunkKind, ClassificationCategory, ReportPeriod, ReportResult
from presence.core.report_format import progress_line, report_to_items
from presence.services.delivery import send_chunks
from presence.services.report_engine import StreamingReportConfig
from presence.utils.clock import format_duration

_CATEGORY_STYLES = {
    ClassificationCategory.ACHIEVING: "green",
    ClassificationCategory.UNDERPERFORMING: "red",
    ClassificationCategory.EXCUSED: "yellow",
}


# ==============================================================================
# Helpers
# ==============================================================================


async def _generate(
    ctx: CliContext,
    group_id: str,
    period: ReportPeriod,
    config: StreamingReportConfig,
    show_progress: bool,
) -> ReportResult:
    try:
        await ctx.tracker.restore_from_persistence(persist=False)
        stream = ctx.engine.generate_report(group_id, period, config)
        async for partial in stream:
            if show_progress and not partial.is_final:
                print(f"  {C.DIM}{progress_line(partial)}{C.RESET}")
        return await stream.result()
    finally:
        await ctx.tracker.stop()


def _print_table(report: ReportResult) -> None:
    agg = report.aggregate
    console = Console()
    table = Table(
        title=f"Presence report: {report.group_id}",
        caption=(
            f"{agg.achieving} achieving, {agg.underperforming} underperforming, "
            f"{agg.excused} excused ({agg.achieving_percentage:.1f}% achieving)"
        ),
        title_style="bold",
    )
    table.add_column("Member", style="white")
    table.add_column("Presence", justify="right", style="cyan")
    table.add_column("Required", justify="right")
    table.add_column("Status", justify="center")
    for result in report.results:
        style = _CATEGORY_STYLES[result.category]
        required = format_duration(result.effective_threshold)
        if result.prorated:
            required += "*"
        table.add_row(
            result.display_name or result.member_id,
            format_duration(result.duration),
            required if result.category is not ClassificationCategory.EXCUSED else "-",
            f"[{style}]{result.category.value}[/{style}]",
        )
    console.print(table)


def _print_summary(report: ReportResult) -> None:
    period = report.period
    start = datetime.fromtimestamp(period.start / 1000).strftime("%Y-%m-%d %H:%M")
    end = datetime.fromtimestamp(period.end / 1000).strftime("%Y-%m-%d %H:%M")
    print(f"  Period:     {C.WHITE}{start} to {end}{C.RESET}")
    print(f"  Members:    {C.WHITE}{report.aggregate.total_members}{C.RESET}")
    print(f"  Average:    {C.WHITE}{format_duration(int(report.aggregate.average_duration))}{C.RESET}")
    quality = report.data_quality.value
    if quality != "full":
        print(f"  {C.BRIGHT_YELLOW}{I.WARN} Member list is {quality}{C.RESET}")
    if report.error_count:
        print(
            f"  {C.BRIGHT_YELLOW}{I.WARN} {report.error_count} batches skipped "
            f"({report.aggregate.failed_members} members){C.RESET}"
        )
    if report.from_cache:
        print(f"  {C.DIM}Served from cache{C.RESET}")
    print(f"  {C.DIM}{report.batches_processed} batches in {report.processing_ms} ms{C.RESET}")


# ==============================================================================
# Command
# ==============================================================================


def report_run(
    group_id: Annotated[str, typer.Argument(help="Group ID")],
    members: Annotated[
        Path,
        typer.Option("--members", "-m", exists=True, dir_okay=False, help="JSON member list export"),
    ],
    days: Annotated[int, typer.Option("--days", "-d", min=1, help="Report on the last N days")] = 7,
    start: Annotated[
        Optional[str], typer.Option("--start", help="Period start (ISO date); overrides --days")
    ] = None,
    end: Annotated[Optional[str], typer.Option("--end", help="Period end (ISO date)")] = None,
    batch_size: Annotated[
        Optional[int], typer.Option("--batch-size", "-b", min=1, help="Members per batch")
    ] = None,
    refresh: Annotated[
        bool, typer.Option("--refresh", help="Ignore cached member lists and reports")
    ] = False,
    channel: Annotated[
        Optional[str], typer.Option("--channel", "-c", help="Deliver the report to this channel")
    ] = None,
    outbox: Annotated[
        Optional[Path], typer.Option("--outbox", help="JSON Lines file receiving delivered chunks")
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Generate a presence compliance report for a group.

    Examples:
        presence report guild-1 --members members.json
        presence report guild-1 -m members.json --start 2024-05-01 --end 2024-05-08
        presence report guild-1 -m members.json --channel reports --outbox outbox.jsonl
    """
    require_valkey()
    period = build_period(days, start, end)
    ctx = build_context(members_path=members, outbox_path=outbox)

    overrides: dict = {"force_refresh": refresh}
    if batch_size is not None:
        overrides["batch_size"] = batch_size
    config = StreamingReportConfig.from_settings(ctx.settings.report, **overrides)

    if not json_output:
        print()
        print(f"{C.BOLD}Generating report for {group_id}{C.RESET}")
    try:
        report = asyncio.run(_generate(ctx, group_id, period, config, not json_output))
    except JobCancelledError as e:
        print(f"{C.BRIGHT_YELLOW}{I.WARN} {e}{C.RESET}")
        raise typer.Exit(1)
    except ReportFailedError as e:
        print(f"{C.BRIGHT_RED}{I.CROSS} {e}{C.RESET}")
        raise typer.Exit(1)

    if json_output:
        print(report.model_dump_json(indent=2))
    else:
        print()
        _print_table(report)
        _print_summary(report)

    if channel is None:
        return

    try:
        chunks = ctx.chunker.chunk(report_to_items(report), filename=f"presence-{group_id}")
    except ChunkingError as e:
        print(f"{C.BRIGHT_RED}{I.CROSS} {e}{C.RESET}")
        raise typer.Exit(1)

    sent = asyncio.run(
        send_chunks(
            ctx.transport, channel, chunks, delay_seconds=ctx.settings.chunker.send_delay_seconds
        )
    )
    if json_output:
        return
    kind = "attachment" if chunks and chunks[0].kind is ChunkKind.ATTACHMENT else "messages"
    print(
        f"{C.BRIGHT_GREEN}{I.CHECK} Delivered {sent}/{len(chunks)} {kind} to {channel}{C.RESET}"
    )
