# ==============================================================================
# Tracker Commands
# ==============================================================================
"""
Session tracker commands for the presence CLI.

``tracker run`` replays a JSON Lines presence stream into the tracker in the
foreground; Ctrl+C stops it after a final flush.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from presence.cli.shared import C, I, build_context, require_valkey
from presence.infrastructure.activity_store import ValkeyActivityStore
from presence.infrastructure.transport import JsonFileTransport
from presence.tracker_runner import TrackerRunner
from presence.utils.clock import format_duration
from presence.utils.config import get_settings


# ==============================================================================
# Commands
# ==============================================================================


def tracker_run(
    events: Annotated[
        Path,
        typer.Option("--events", "-e", exists=True, dir_okay=False, help="JSON Lines presence events"),
    ],
) -> None:
    """Consume presence events and keep activity records up to date.

    Examples:
        presence tracker run --events presence.jsonl
    """
    require_valkey()
    settings = get_settings()
    runner = TrackerRunner(
        JsonFileTransport(events_path=events),
        ValkeyActivityStore(),
        settings.tracker,
        log_level="DEBUG" if settings.debug else settings.log_level,
    )
    runner.run()

    print(
        f"{C.BRIGHT_GREEN}{I.CHECK} Consumed {runner.events_consumed} events{C.RESET}"
    )
    if runner.tracker is not None:
        for group_id, stats in runner.tracker.stats().items():
            print(
                f"  {I.BULLET} {group_id}: {stats['members']} members, "
                f"{stats['events_processed']} applied, {stats['events_dropped']} dropped"
            )


def tracker_restore() -> None:
    """Close sessions left open by a crash, crediting time up to their last heartbeat."""
    require_valkey()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    ctx = build_context()

    async def _restore() -> int:
        try:
            return await ctx.tracker.restore_from_persistence()
        finally:
            await ctx.tracker.stop()

    restored = asyncio.run(_restore())
    print(
        f"{C.BRIGHT_GREEN}{I.CHECK} Restored {restored} records across "
        f"{len(ctx.tracker.groups())} groups{C.RESET}"
    )


def tracker_totals(
    group_id: Annotated[str, typer.Argument(help="Group ID")],
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Show tracked presence per member, including open sessions."""
    require_valkey()
    ctx = build_context()

    async def _load():
        try:
            await ctx.tracker.restore_from_persistence(persist=False)
            return ctx.tracker.get_group_totals(group_id)
        finally:
            await ctx.tracker.stop()

    totals = asyncio.run(_load())
    ordered = sorted(totals.values(), key=lambda r: (-r.total_duration, r.member_id))

    if json_output:
        print(json.dumps([r.model_dump(mode="json") for r in ordered], indent=2))
        return

    if not ordered:
        print(f"\n  {C.BRIGHT_YELLOW}{I.WARN} No activity recorded for '{group_id}'{C.RESET}\n")
        return

    console = Console()
    table = Table(title=f"Presence totals: {group_id}", title_style="bold")
    table.add_column("Member", style="white")
    table.add_column("Total", justify="right", style="cyan")
    table.add_column("Session", justify="center")
    for record in ordered:
        table.add_row(
            record.display_name or record.member_id,
            format_duration(record.total_duration),
            "[green]open[/green]" if record.is_active else "[dim]-[/dim]",
        )
    console.print(table)
