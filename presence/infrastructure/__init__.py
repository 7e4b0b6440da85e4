# ==============================================================================
# Infrastructure Adapters
# ==============================================================================
"""
Concrete adapters for the abstract ports in ``presence.base``.
"""

from presence.infrastructure.activity_store import ValkeyActivityStore
from presence.infrastructure.cache import InMemoryCache, ValkeyCache
from presence.infrastructure.transport import JsonFileTransport

__all__ = [
    "InMemoryCache",
    "JsonFileTransport",
    "ValkeyActivityStore",
    "ValkeyCache",
]
