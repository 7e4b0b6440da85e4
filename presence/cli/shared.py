# ==============================================================================
# Shared Utilities for CLI Commands
# ==============================================================================
"""
Shared utilities, constants, and helper functions used across CLI command modules.

This module provides:
- ANSI color codes and box-drawing characters
- Duration and date option parsing
- Service wiring for one CLI invocation
- Box drawing helpers for formatted output
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

import typer

from presence.base.cache import Cache
from presence.core.chunker import OutputChunker
from presence.core.models import AttachmentFormat, ChunkLimits, ReportPeriod
from presence.infrastructure.activity_store import ValkeyActivityStore
from presence.infrastructure.cache import InMemoryCache, ValkeyCache, check_valkey_connection
from presence.infrastructure.transport import JsonFileTransport
from presence.services.classification import ClassificationEngine
from presence.services.fetcher import MembershipFetcher
from presence.services.group_config import GroupConfigService
from presence.services.report_engine import StreamingReportEngine
from presence.services.result_cache import ResultCache
from presence.services.tracker import SessionTracker
from presence.utils.config import Settings, get_settings

# ==============================================================================
# Constants
# ==============================================================================

# Box drawing width (unified for all commands)
BOX_WIDTH = 68


# ==============================================================================
# ANSI Colors and Box Drawing
# ==============================================================================


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    # Colors
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"

    # Bright colors
    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_YELLOW = "\033[93m"
    BRIGHT_CYAN = "\033[96m"


class Box:
    """Unicode box-drawing characters."""

    H = "─"  # horizontal
    V = "│"  # vertical
    TL = "┌"  # top-left
    TR = "┐"  # top-right
    BL = "└"  # bottom-left
    BR = "┘"  # bottom-right
    LT = "├"  # left-tee
    RT = "┤"  # right-tee


class Icons:
    """Status icons using Unicode symbols."""

    CHECK = "✓"
    CROSS = "✗"
    WARN = "!"
    CIRCLE = "●"
    BULLET = "•"
    ARROW = "→"
    CLOCK = "◷"
    PAGE = "▤"


# Module-level aliases for convenience
C, B, I = Colors, Box, Icons


# ==============================================================================
# Option Parsing
# ==============================================================================

_DURATION_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)([smhd])$", re.IGNORECASE)


def parse_duration_ms(text: str) -> int:
    """Parse a duration string (e.g., '90m', '10h', '1.5h', '2d') to milliseconds.

    Raises:
        typer.BadParameter: If format is invalid
    """
    match = _DURATION_PATTERN.match(text.strip())
    if not match:
        raise typer.BadParameter(
            f"Invalid duration: '{text}'. Use Ns, Nm, Nh or Nd (e.g., 90m, 10h, 2d)"
        )
    value = float(match.group(1))
    multipliers = {"s": 1_000, "m": 60_000, "h": 3_600_000, "d": 86_400_000}
    return int(value * multipliers[match.group(2).lower()])


def parse_timestamp_ms(text: str) -> int:
    """Parse an ISO date or datetime to epoch milliseconds."""
    try:
        return int(datetime.fromisoformat(text).timestamp() * 1000)
    except ValueError as e:
        raise typer.BadParameter(f"Invalid date: '{text}'. Use ISO format (2024-05-01)") from e


def build_period(days: int, start: str | None, end: str | None) -> ReportPeriod:
    """Reporting window from explicit dates, or the last ``days`` days."""
    end_ms = parse_timestamp_ms(end) if end else int(datetime.now().timestamp() * 1000)
    if start:
        start_ms = parse_timestamp_ms(start)
    else:
        start_ms = end_ms - int(timedelta(days=days).total_seconds() * 1000)
    if end_ms <= start_ms:
        raise typer.BadParameter("Report end must be after its start")
    return ReportPeriod(start=start_ms, end=end_ms)


# ==============================================================================
# Service Wiring
# ==============================================================================


@dataclass
class CliContext:
    """Services for one CLI invocation."""

    settings: Settings
    store: ValkeyActivityStore
    transport: JsonFileTransport
    result_cache: ResultCache
    tracker: SessionTracker
    fetcher: MembershipFetcher
    classifier: ClassificationEngine
    engine: StreamingReportEngine
    group_config: GroupConfigService
    chunker: OutputChunker


def _result_backend(settings: Settings) -> Cache:
    if settings.cache.backend == "valkey":
        return ValkeyCache()
    return InMemoryCache(max_size=settings.cache.max_size)


def build_context(
    members_path: Path | None = None,
    events_path: Path | None = None,
    outbox_path: Path | None = None,
) -> CliContext:
    """Wire the store, transport and services from settings."""
    settings = get_settings()
    store = ValkeyActivityStore()
    transport = JsonFileTransport(members_path, events_path, outbox_path)
    result_cache = ResultCache(
        _result_backend(settings), default_ttl_seconds=settings.cache.result_ttl_seconds
    )
    tracker = SessionTracker(
        store, settings.tracker, on_group_mutated=result_cache.invalidate_group
    )
    fetcher = MembershipFetcher(
        transport, settings.fetcher, on_membership_changed=result_cache.invalidate_group
    )
    classifier = ClassificationEngine(tracker, store, settings.report.excused_roles)
    engine = StreamingReportEngine(fetcher, classifier, result_cache, settings.report)
    chunk_settings = settings.chunker
    chunker = OutputChunker(
        ChunkLimits(
            max_items=chunk_settings.max_items,
            max_bytes=chunk_settings.max_bytes,
            hard_ceiling_bytes=chunk_settings.hard_ceiling_bytes,
            attachment_max_bytes=chunk_settings.attachment_max_bytes,
            attachment_format=AttachmentFormat(chunk_settings.attachment_format),
        )
    )
    return CliContext(
        settings=settings,
        store=store,
        transport=transport,
        result_cache=result_cache,
        tracker=tracker,
        fetcher=fetcher,
        classifier=classifier,
        engine=engine,
        group_config=GroupConfigService(store, on_group_mutated=result_cache.invalidate_group),
        chunker=chunker,
    )


# ==============================================================================
# Box Drawing Helpers
# ==============================================================================

# Regex pattern for stripping ANSI escape codes
_ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m")


def _visible_len(s: str) -> int:
    """Calculate visible length of string, ignoring ANSI escape codes."""
    return len(_ANSI_ESCAPE_PATTERN.sub("", s))


def _box_header(title: str, width: int = BOX_WIDTH) -> str:
    """Create a single-line box header."""
    inner_width = width - 2
    title_padded = f" {title} "
    left_bar = (inner_width - len(title_padded)) // 2
    right_bar = inner_width - left_bar - len(title_padded)
    return (
        f"{C.CYAN}{B.TL}{B.H * left_bar}{C.BOLD}{C.WHITE}{title_padded}"
        f"{C.RESET}{C.CYAN}{B.H * right_bar}{B.TR}{C.RESET}"
    )


def _section_header(title: str, icon: str, width: int = BOX_WIDTH) -> str:
    """Create a section header with icon."""
    inner_width = width - 2
    title_with_icon = f" {icon} {title} "
    bar_len = inner_width - len(title_with_icon) - 1  # -1 for the first H after LT
    return f"{C.CYAN}{B.LT}{B.H}{C.BOLD}{title_with_icon}{C.RESET}{C.CYAN}{B.H * bar_len}{B.RT}{C.RESET}"


def _box_line(content: str, width: int = BOX_WIDTH) -> str:
    """Create a line inside the box with proper padding to right border."""
    inner_width = width - 2
    padding = max(0, inner_width - _visible_len(content))
    return f"{C.CYAN}{B.V}{C.RESET}{content}{' ' * padding}{C.CYAN}{B.V}{C.RESET}"


def _box_bottom(width: int = BOX_WIDTH) -> str:
    """Create a box bottom border."""
    return f"{C.CYAN}{B.BL}{B.H * (width - 2)}{B.BR}{C.RESET}"


def _status_badge(ok: bool, ok_text: str = "ok", bad_text: str = "unavailable") -> str:
    """Colored status text with icon."""
    if ok:
        return f"{C.BRIGHT_GREEN}{I.CHECK} {ok_text}{C.RESET}"
    return f"{C.BRIGHT_RED}{I.CROSS} {bad_text}{C.RESET}"


def require_valkey() -> None:
    """Exit with an error message unless Valkey answers a ping."""
    if not check_valkey_connection():
        settings = get_settings()
        print(
            f"{C.BRIGHT_RED}{I.CROSS} Cannot reach Valkey at "
            f"{settings.valkey.host}:{settings.valkey.port}{C.RESET}"
        )
        raise typer.Exit(1)
