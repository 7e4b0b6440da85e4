# ==============================================================================
# Config Commands
# ==============================================================================
"""
Configuration commands for the presence CLI.
"""

import json
from typing import Annotated

import typer

from presence.cli.shared import C
from presence.utils.clock import format_duration
from presence.utils.config import get_settings


# ==============================================================================
# Commands
# ==============================================================================


def config_show(
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output configuration as JSON")
    ] = False,
) -> None:
    """Display current configuration (includes secrets in JSON mode)."""
    settings = get_settings()

    if json_output:
        print(json.dumps(settings.model_dump(mode="json"), indent=2))
        return

    tracker = settings.tracker
    fetcher = settings.fetcher
    report = settings.report
    chunker = settings.chunker

    print()
    print(f"{C.BOLD}Configuration{C.RESET}")
    print()

    print(f"{C.CYAN}Valkey{C.RESET}")
    print(f"  Host:       {C.WHITE}{settings.valkey.host}{C.RESET}")
    print(f"  Port:       {C.WHITE}{settings.valkey.port}{C.RESET}")
    print(f"  Database:   {C.WHITE}{settings.valkey.db}{C.RESET}")
    print(f"  SSL:        {C.WHITE}{'enabled' if settings.valkey.ssl else 'disabled'}{C.RESET}")
    print(f"  Prefix:     {C.WHITE}{settings.valkey.key_prefix}{C.RESET}")
    print()

    print(f"{C.CYAN}Tracker{C.RESET}")
    excluded = ", ".join(tracker.excluded_channels) or "none"
    print(f"  Excluded:   {C.WHITE}{excluded}{C.RESET}")
    print(f"  Ignored:    {C.WHITE}{', '.join(tracker.ignored_tags) or 'none'}{C.RESET}")
    print(f"  Flush:      {C.WHITE}every {tracker.flush_interval_seconds:g}s{C.RESET}")
    print(f"  Heartbeat:  {C.WHITE}every {tracker.heartbeat_interval_seconds:g}s{C.RESET}")
    print()

    print(f"{C.CYAN}Fetcher{C.RESET}")
    print(
        f"  Retries:    {C.WHITE}{fetcher.max_retries} "
        f"(backoff {fetcher.base_delay_seconds:g}s to {fetcher.max_delay_seconds:g}s){C.RESET}"
    )
    print(
        f"  Timeouts:   {C.WHITE}{fetcher.attempt_timeout_seconds:g}s per attempt, "
        f"{fetcher.operation_timeout_seconds:g}s overall{C.RESET}"
    )
    print(
        f"  Cache:      {C.WHITE}fresh {format_duration(int(fetcher.cache_ttl_seconds * 1000))}, "
        f"stale up to {format_duration(int(fetcher.grace_ttl_seconds * 1000))}{C.RESET}"
    )
    print(
        f"  Rate:       {C.WHITE}{fetcher.requests_per_minute:g}/min, burst {fetcher.burst}, "
        f"{fetcher.max_concurrent} concurrent{C.RESET}"
    )
    print()

    print(f"{C.CYAN}Reports{C.RESET}")
    print(f"  Batch size: {C.WHITE}{report.batch_size}{C.RESET}")
    print(f"  Memory cap: {C.WHITE}{report.max_memory_mb} MiB{C.RESET}")
    print(
        f"  Recovery:   {C.WHITE}"
        f"{'enabled' if report.enable_error_recovery else 'disabled'} "
        f"({report.max_retries} retries){C.RESET}"
    )
    print(f"  Timeout:    {C.WHITE}{report.timeout_seconds:g}s{C.RESET}")
    print(f"  Cache:      {C.WHITE}{settings.cache.backend}, {settings.cache.result_ttl_seconds}s{C.RESET}")
    print()

    print(f"{C.CYAN}Delivery{C.RESET}")
    print(f"  Per chunk:  {C.WHITE}{chunker.max_items} items, {chunker.max_bytes} bytes{C.RESET}")
    print(
        f"  Attachment: {C.WHITE}above {chunker.hard_ceiling_bytes} bytes, "
        f"as {chunker.attachment_format}{C.RESET}"
    )
    print()
