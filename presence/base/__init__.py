# ==============================================================================
# Base Abstract Classes
# ==============================================================================
"""
Abstract base classes defining the ports of the ports-and-adapters architecture.

Adapters live in ``presence.infrastructure``; services depend only on these.
"""

from presence.base.activity_store import ActivityStore
from presence.base.cache import Cache
from presence.base.runner import BaseRunner
from presence.base.transport import Transport

__all__ = [
    "ActivityStore",
    "BaseRunner",
    "Cache",
    "Transport",
]
