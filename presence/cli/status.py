# ==============================================================================
# Status Command
# ==============================================================================
"""
Status command for the presence CLI.

Shows Valkey health and the persisted state of each tracked group, in boxed
text or JSON.
"""

import json as json_module
from typing import Annotated, Any

import typer

from presence.cli.shared import (
    BOX_WIDTH,
    C,
    I,
    _box_bottom,
    _box_header,
    _box_line,
    _section_header,
    _status_badge,
)
from presence.infrastructure.activity_store import ValkeyActivityStore
from presence.infrastructure.cache import check_valkey_connection
from presence.utils.clock import format_duration, now_ms
from presence.utils.config import get_settings


# ==============================================================================
# Data Collection
# ==============================================================================


def _collect_groups(store: ValkeyActivityStore) -> list[dict[str, Any]]:
    now = now_ms()
    groups = []
    for group_id in store.list_groups():
        records = store.load_records(group_id)
        threshold = store.get_threshold(group_id)
        excusals = store.get_excusals(group_id)
        groups.append(
            {
                "group_id": group_id,
                "members": len(records),
                "open_sessions": sum(1 for r in records.values() if r.is_active),
                "total_duration": sum(r.total_at(now) for r in records.values()),
                "threshold": threshold.min_duration if threshold else None,
                "excused": sum(1 for e in excusals.values() if e.revoked_at is None),
            }
        )
    return groups


# ==============================================================================
# Command
# ==============================================================================


def show_status(
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Show Valkey health and tracked groups."""
    settings = get_settings()
    valkey_ok = check_valkey_connection()
    groups = _collect_groups(ValkeyActivityStore()) if valkey_ok else []

    if json_output:
        print(
            json_module.dumps(
                {
                    "valkey": {
                        "host": settings.valkey.host,
                        "port": settings.valkey.port,
                        "reachable": valkey_ok,
                    },
                    "groups": groups,
                },
                indent=2,
            )
        )
        return

    print()
    print(_box_header("Presence Status", BOX_WIDTH))
    print(_section_header("Services", I.CIRCLE))
    print(
        _box_line(
            f"  Valkey  {settings.valkey.host}:{settings.valkey.port}  "
            f"{_status_badge(valkey_ok, 'reachable')}"
        )
    )
    print(_section_header("Groups", I.BULLET))
    if not valkey_ok:
        print(_box_line(f"  {C.DIM}unknown (Valkey unavailable){C.RESET}"))
    elif not groups:
        print(_box_line(f"  {C.DIM}no tracked groups{C.RESET}"))
    for group in groups:
        threshold = (
            format_duration(group["threshold"]) if group["threshold"] is not None else "unset"
        )
        print(
            _box_line(
                f"  {C.BOLD}{group['group_id']}{C.RESET}  {group['members']} members, "
                f"{group['open_sessions']} open, threshold {threshold}"
            )
        )
        print(
            _box_line(
                f"    {C.DIM}tracked {format_duration(group['total_duration'])}, "
                f"{group['excused']} excused{C.RESET}"
            )
        )
    print(_box_bottom())
    print()
