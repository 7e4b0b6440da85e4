# ==============================================================================
# Clock Helpers
# ==============================================================================
"""
Wall-clock helpers. All presence timestamps are Unix epoch milliseconds.
"""

import time
from collections.abc import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Current Unix time in milliseconds."""
    return int(time.time() * 1000)


def format_duration(ms: int) -> str:
    """Render a millisecond duration as ``1h 02m`` / ``5m 30s`` / ``12s``."""
    seconds = max(0, ms) // 1000
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes:02d}m"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"
