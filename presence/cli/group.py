# ==============================================================================
# Group Commands
# ==============================================================================
"""
Per-group administration: thresholds, excusals and resets.
"""

import asyncio
import json
from datetime import datetime
from typing import Annotated, Optional

import typer

from presence.cli.shared import C, I, build_context, parse_duration_ms, parse_timestamp_ms, require_valkey
from presence.core.errors import ValidationError
from presence.core.models import ReportCycle
from presence.utils.clock import format_duration


def _fmt_ts(ms: int | None) -> str:
    if ms is None:
        return "never"
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M")


# ==============================================================================
# Commands
# ==============================================================================


def threshold_set(
    group_id: Annotated[str, typer.Argument(help="Group ID")],
    duration: Annotated[str, typer.Argument(help="Minimum duration per period (e.g., 10h, 90m)")],
    prorate: Annotated[
        Optional[bool],
        typer.Option("--prorate/--no-prorate", help="Scale the threshold for late joiners"),
    ] = None,
    cycle: Annotated[
        Optional[ReportCycle], typer.Option("--cycle", help="Reporting cycle")
    ] = None,
) -> None:
    """Set the minimum presence duration for a group.

    Examples:
        presence group threshold-set guild-1 10h
        presence group threshold-set guild-1 90m --prorate --cycle weekly
    """
    require_valkey()
    ctx = build_context()
    try:
        threshold = asyncio.run(
            ctx.group_config.set_threshold(
                group_id, parse_duration_ms(duration), proration_enabled=prorate, report_cycle=cycle
            )
        )
    except ValidationError as e:
        print(f"{C.BRIGHT_RED}{I.CROSS} {e}{C.RESET}")
        raise typer.Exit(1)

    print(
        f"{C.BRIGHT_GREEN}{I.CHECK} Threshold for {group_id} set to "
        f"{format_duration(threshold.min_duration)}"
        f"{' (prorated)' if threshold.proration_enabled else ''}{C.RESET}"
    )


def threshold_show(
    group_id: Annotated[str, typer.Argument(help="Group ID")],
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Show a group's threshold and active excusals."""
    require_valkey()
    ctx = build_context()

    async def _load():
        return (
            await ctx.group_config.get_threshold(group_id),
            await ctx.group_config.list_excusals(group_id),
        )

    threshold, excusals = asyncio.run(_load())
    active = {m: e for m, e in excusals.items() if e.revoked_at is None}

    if json_output:
        print(
            json.dumps(
                {
                    "threshold": threshold.model_dump(mode="json"),
                    "excusals": [e.model_dump(mode="json") for e in active.values()],
                },
                indent=2,
            )
        )
        return

    print()
    print(f"{C.BOLD}{group_id}{C.RESET}")
    print(f"  Threshold:  {C.WHITE}{format_duration(threshold.min_duration)}{C.RESET}")
    print(f"  Cycle:      {C.WHITE}{threshold.report_cycle.value if threshold.report_cycle else 'none'}{C.RESET}")
    print(f"  Proration:  {C.WHITE}{'on' if threshold.proration_enabled else 'off'}{C.RESET}")
    print(f"  Last reset: {C.WHITE}{_fmt_ts(threshold.reset_at)}{C.RESET}")
    print()
    if not active:
        print(f"  {C.DIM}No active excusals{C.RESET}")
    for member_id, excusal in sorted(active.items()):
        until = _fmt_ts(excusal.until) if excusal.until else "revoked"
        reason = f" {C.DIM}({excusal.reason}){C.RESET}" if excusal.reason else ""
        print(f"  {I.BULLET} {member_id} until {until}{reason}")
    print()


def excuse(
    group_id: Annotated[str, typer.Argument(help="Group ID")],
    member_id: Annotated[str, typer.Argument(help="Member ID")],
    until: Annotated[
        Optional[str], typer.Option("--until", help="Excusal end (ISO date); default until revoked")
    ] = None,
    reason: Annotated[str, typer.Option("--reason", "-r", help="Reason shown in reports")] = "",
) -> None:
    """Excuse a member from the group's threshold."""
    require_valkey()
    ctx = build_context()
    until_ms = parse_timestamp_ms(until) if until else None
    try:
        asyncio.run(ctx.group_config.excuse(group_id, member_id, until=until_ms, reason=reason))
    except ValidationError as e:
        print(f"{C.BRIGHT_RED}{I.CROSS} {e}{C.RESET}")
        raise typer.Exit(1)
    print(f"{C.BRIGHT_GREEN}{I.CHECK} {member_id} excused in {group_id}{C.RESET}")


def revoke(
    group_id: Annotated[str, typer.Argument(help="Group ID")],
    member_id: Annotated[str, typer.Argument(help="Member ID")],
) -> None:
    """Revoke a member's excusal."""
    require_valkey()
    ctx = build_context()
    try:
        asyncio.run(ctx.group_config.revoke_excusal(group_id, member_id))
    except ValidationError as e:
        print(f"{C.BRIGHT_RED}{I.CROSS} {e}{C.RESET}")
        raise typer.Exit(1)
    print(f"{C.BRIGHT_GREEN}{I.CHECK} Excusal of {member_id} in {group_id} revoked{C.RESET}")


def group_reset(
    group_id: Annotated[str, typer.Argument(help="Group ID")],
    confirm: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
) -> None:
    """Zero every member total of a group.

    Open sessions keep running and count from the reset onwards.

    Examples:
        presence group reset guild-1
        presence group reset guild-1 -y
    """
    require_valkey()
    if not confirm:
        print(f"  {C.BRIGHT_YELLOW}{I.WARN} This zeroes all tracked time in {group_id}.{C.RESET}")
        typer.confirm("Continue?", abort=True)

    ctx = build_context()

    async def _reset() -> dict[str, int]:
        try:
            return await ctx.tracker.reset_group(group_id)
        finally:
            await ctx.tracker.stop()

    snapshot = asyncio.run(_reset())
    total = sum(snapshot.values())
    print(
        f"{C.BRIGHT_GREEN}{I.CHECK} Reset {len(snapshot)} members in {group_id} "
        f"({format_duration(total)} cleared){C.RESET}"
    )
