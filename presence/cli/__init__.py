# ==============================================================================
# CLI Commands Module
# ==============================================================================
"""
CLI commands for the presence tracker.

Commands are organized into separate modules for maintainability:
- shared.py: Common utilities, constants, service wiring and box helpers
- status.py: Status command showing Valkey health and tracked groups
- tracker.py: Event consumption and totals
- group.py: Thresholds, excusals and resets
- report.py: Streaming compliance reports
"""

from presence.cli.shared import (
    # Constants
    BOX_WIDTH,
    # Classes
    Box,
    CliContext,
    Colors,
    Icons,
    # Aliases
    B,
    C,
    I,
    # Box drawing helpers (private)
    _box_bottom,
    _box_header,
    _box_line,
    _section_header,
    _status_badge,
    _visible_len,
    # Option parsing
    build_period,
    parse_duration_ms,
    parse_timestamp_ms,
    # Wiring
    build_context,
    require_valkey,
)

__all__ = [
    # Constants
    "BOX_WIDTH",
    # Classes
    "Box",
    "CliContext",
    "Colors",
    "Icons",
    # Aliases
    "B",
    "C",
    "I",
    # Box drawing helpers (private - kept for internal use)
    "_box_bottom",
    "_box_header",
    "_box_line",
    "_section_header",
    "_status_badge",
    "_visible_len",
    # Option parsing
    "build_period",
    "parse_duration_ms",
    "parse_timestamp_ms",
    # Wiring
    "build_context",
    "require_valkey",
]
