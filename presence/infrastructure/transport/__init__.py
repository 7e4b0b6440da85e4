# ==============================================================================
# Transport Infrastructure
# ==============================================================================
"""
Transport implementations.

Available implementations:
- JsonFileTransport: replays presence events and member lists from local files
"""

from presence.infrastructure.transport.file import JsonFileTransport

__all__ = ["JsonFileTransport"]
