# ==============================================================================
# Presence Services
# ==============================================================================
"""
Stateful services built on the core domain and the abstract ports.
"""

from presence.services.classification import ClassificationContext, ClassificationEngine
from presence.services.delivery import send_chunks
from presence.services.fetcher import FetchOptions, MembershipFetcher
from presence.services.group_config import GroupConfigService
from presence.services.report_engine import (
    ReportStream,
    StreamingReportConfig,
    StreamingReportEngine,
)
from presence.services.result_cache import ResultCache
from presence.services.tracker import SessionTracker

__all__ = [
    "ClassificationContext",
    "ClassificationEngine",
    "FetchOptions",
    "GroupConfigService",
    "MembershipFetcher",
    "ReportStream",
    "ResultCache",
    "SessionTracker",
    "StreamingReportConfig",
    "StreamingReportEngine",
    "send_chunks",
]
