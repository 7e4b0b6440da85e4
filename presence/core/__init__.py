# ==============================================================================
# Core Domain Logic
# ==============================================================================
"""
Pure domain logic with no external dependencies.

This module contains:
- Domain models (PresenceEvent, MemberActivityRecord, GroupThreshold, ...)
- The presence state machine (SessionProcessor)
- Threshold classification rules and report statistics
- Output chunking

All code here is framework-agnostic and easily unit-testable.
"""

from presence.core.chunker import OutputChunker
from presence.core.models import (
    ClassificationCategory,
    ClassificationResult,
    EventType,
    GroupThreshold,
    Member,
    MemberActivityRecord,
    PresenceEvent,
    ReportPeriod,
    Session,
)
from presence.core.session_processor import SessionProcessor

__all__ = [
    "ClassificationCategory",
    "ClassificationResult",
    "EventType",
    "GroupThreshold",
    "Member",
    "MemberActivityRecord",
    "OutputChunker",
    "PresenceEvent",
    "ReportPeriod",
    "Session",
    "SessionProcessor",
]
