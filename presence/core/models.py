# ==============================================================================
# Presence Domain Models
# ==============================================================================
"""
Pydantic models for presence events, sessions, thresholds and reports.

These models are used for:
- Validating presence events delivered by the transport
- Serializing activity records to and from the durable store
- Passing immutable snapshots between the tracker and report readers

All timestamps are Unix epoch milliseconds and all durations are milliseconds.
This module is part of the core domain layer and has no external dependencies
beyond Pydantic.
"""

from enum import Enum

from pydantic import BaseModel, Field, model_validator

from presence.utils.clock import now_ms


# ==============================================================================
# Presence Events and Sessions
# ==============================================================================


class EventType(str, Enum):
    """Presence event types emitted by the transport."""

    JOINED = "joined"
    LEFT = "left"
    MOVED = "moved"
    DISCONNECTED = "disconnected"
    MEMBER_UPDATED = "member_updated"


class PresenceEvent(BaseModel):
    """
    A single presence change for one member of a group.

    Attributes:
        group_id: Group the member belongs to
        member_id: Member identifier
        display_name: Display name at the time of the event
        type: What happened (joined, left, moved, disconnected, member_updated)
        channel_id: Channel entered (joined/moved) or left (left/disconnected).
            For member_updated, the channel the member currently sits in.
        previous_channel_id: Channel left on a move
        tags: Display tags attached to the member (observer/waiting markers)
        timestamp: When the change happened (ms since epoch)
    """

    model_config = {"frozen": True}

    group_id: str = Field(..., min_length=1, description="Group identifier")
    member_id: str = Field(..., min_length=1, description="Member identifier")
    display_name: str = Field(default="", description="Display name")
    type: EventType = Field(..., description="Event type")
    channel_id: str | None = Field(default=None, description="Channel involved")
    previous_channel_id: str | None = Field(default=None, description="Channel left on move")
    tags: list[str] = Field(default_factory=list, description="Member display tags")
    timestamp: int = Field(default_factory=now_ms, description="Unix timestamp in ms")


class SessionState(str, Enum):
    """Lifecycle state of a presence session."""

    ACTIVE = "active"
    IDLE = "idle"


class Session(BaseModel):
    """
    One contiguous stay of a member in a tracked channel.

    A member has at most one Active session at a time.
    """

    model_config = {"frozen": True}

    member_id: str
    channel_id: str
    state: SessionState = SessionState.ACTIVE
    started_at: int
    last_heartbeat_at: int
    opened_at: int | None = None

    def elapsed(self, until: int) -> int:
        """Milliseconds between session start and ``until``, never negative."""
        return max(0, until - self.started_at)

    def predates(self, ts: int) -> bool:
        """True when ``ts`` is older than the join that opened this session."""
        return ts < (self.opened_at if self.opened_at is not None else self.started_at)


class MemberActivityRecord(BaseModel):
    """
    Running presence total for one member of one group.

    ``total_duration`` only grows, except on an administrative group reset.
    Records are immutable; the tracker replaces them wholesale on every change.
    """

    model_config = {"frozen": True}

    member_id: str
    display_name: str = ""
    total_duration: int = Field(default=0, ge=0)
    current_session: Session | None = None
    updated_at: int = 0

    @property
    def is_active(self) -> bool:
        return self.current_session is not None

    def total_at(self, now: int) -> int:
        """Total including the open session's elapsed time up to ``now``."""
        if self.current_session is None:
            return self.total_duration
        return self.total_duration + self.current_session.elapsed(now)


# ==============================================================================
# Group Configuration
# ==============================================================================


class ReportCycle(str, Enum):
    """How often a group's compliance report is produced."""

    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class GroupThreshold(BaseModel):
    """Minimum-presence requirement for a group."""

    model_config = {"frozen": True}

    group_id: str = Field(..., min_length=1)
    min_duration: int = Field(default=0, ge=0, description="Required presence in ms")
    reset_at: int | None = Field(default=None, description="Last totals reset (ms)")
    report_cycle: ReportCycle | None = None
    proration_enabled: bool = False


class Excusal(BaseModel):
    """
    Administrative leave for a member.

    An excusal that overlaps a reporting period excuses the member for the whole
    period. Only an explicit revocation lifts it.
    """

    model_config = {"frozen": True}

    group_id: str = Field(..., min_length=1)
    member_id: str = Field(..., min_length=1)
    granted_at: int = Field(default_factory=now_ms)
    until: int | None = None
    revoked_at: int | None = None
    reason: str = ""

    def covers(self, period: "ReportPeriod") -> bool:
        if self.revoked_at is not None:
            return False
        if self.granted_at > period.end:
            return False
        return self.until is None or self.until >= period.start


class ReportPeriod(BaseModel):
    """Half-open reporting window ``[start, end)`` in ms."""

    model_config = {"frozen": True}

    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _check_order(self) -> "ReportPeriod":
        if self.end <= self.start:
            raise ValueError(f"period end ({self.end}) must be after start ({self.start})")
        return self

    @property
    def length(self) -> int:
        return self.end - self.start

    @property
    def label(self) -> str:
        return f"{self.start}-{self.end}"


# ==============================================================================
# Membership
# ==============================================================================


class Member(BaseModel):
    """A group member as returned by the transport's member listing."""

    model_config = {"frozen": True}

    member_id: str = Field(..., min_length=1)
    display_name: str = ""
    joined_at: int | None = Field(default=None, description="When the member joined the group")
    roles: list[str] = Field(default_factory=list)
    excused: bool = False


class FetchSource(str, Enum):
    """Where a membership list came from."""

    CACHE = "cache"
    FULL_FETCH = "full_fetch"
    PARTIAL_FETCH = "partial_fetch"
    FALLBACK = "fallback"


class FetchMetadata(BaseModel):
    """Provenance of a membership fetch."""

    model_config = {"frozen": True}

    source: FetchSource
    elapsed_ms: int = 0
    retry_count: int = 0
    fetched_at: int = Field(default_factory=now_ms)
    cache_age_ms: int | None = None


# ==============================================================================
# Classification
# ==============================================================================


class ClassificationCategory(str, Enum):
    """Compliance category for a member in a reporting period."""

    ACHIEVING = "achieving"
    UNDERPERFORMING = "underperforming"
    EXCUSED = "excused"


class ClassificationResult(BaseModel):
    model_config = {"frozen": True}

    member_id: str
    display_name: str = ""
    category: ClassificationCategory
    duration: int = Field(..., ge=0)
    effective_threshold: int = Field(..., ge=0)
    prorated: bool = False


class ReportAggregate(BaseModel):
    """
    Running totals over classified members.

    Built incrementally one batch at a time; adding the same results in any
    batch split yields an equal aggregate.
    """

    total_members: int = 0
    achieving: int = 0
    underperforming: int = 0
    excused: int = 0
    failed_members: int = 0
    total_duration: int = 0

    def add(self, results: list[ClassificationResult]) -> None:
        for result in results:
            self.total_members += 1
            self.total_duration += result.duration
            if result.category is ClassificationCategory.ACHIEVING:
                self.achieving += 1
            elif result.category is ClassificationCategory.UNDERPERFORMING:
                self.underperforming += 1
            else:
                self.excused += 1

    @property
    def average_duration(self) -> float:
        if self.total_members == 0:
            return 0.0
        return self.total_duration / self.total_members

    @property
    def achieving_percentage(self) -> float:
        if self.total_members == 0:
            return 0.0
        return self.achieving / self.total_members * 100


class ReportStatistics(BaseModel):
    """Distribution statistics over a finished report."""

    average_duration: float = 0.0
    median_duration: int = 0
    achieving_percentage: float = 0.0
    underperforming_percentage: float = 0.0
    excused_percentage: float = 0.0
    top_members: list[str] = Field(default_factory=list)
    at_risk_members: list[str] = Field(default_factory=list)


# ==============================================================================
# Streaming Reports
# ==============================================================================


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PARTIAL_EMITTED = "partial_emitted"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class StreamingStage(str, Enum):
    INITIALIZING = "initializing"
    FETCHING_MEMBERS = "fetching_members"
    PROCESSING_DATA = "processing_data"
    GENERATING_PARTIAL = "generating_partial"
    STREAMING_RESULTS = "streaming_results"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DataQuality(str, Enum):
    """How complete the membership list behind a report was."""

    FULL = "full"
    PARTIAL = "partial"
    STALE = "stale"


class StreamingProgress(BaseModel):
    job_id: str
    stage: StreamingStage
    status: JobStatus
    current: int = 0
    total: int = 0
    percentage: float = 0.0
    message: str = ""
    estimated_remaining_ms: int | None = None
    processing_rate: float = 0.0
    has_partial_results: bool = False
    updated_at: int = Field(default_factory=now_ms)


class BatchInfo(BaseModel):
    model_config = {"frozen": True}

    batch_number: int = Field(..., ge=1)
    total_batches: int = Field(..., ge=1)
    items_in_batch: int = Field(..., ge=0)


class ReportResult(BaseModel):
    """Final output of a report job."""

    job_id: str
    group_id: str
    period: ReportPeriod
    results: list[ClassificationResult] = Field(default_factory=list)
    aggregate: ReportAggregate = Field(default_factory=ReportAggregate)
    statistics: ReportStatistics = Field(default_factory=ReportStatistics)
    data_quality: DataQuality = DataQuality.FULL
    fetch: FetchMetadata | None = None
    errors_recovered: int = 0
    error_count: int = 0
    batches_processed: int = 0
    processing_ms: int = 0
    memory_peak_mb: float = 0.0
    generated_at: int = Field(default_factory=now_ms)
    from_cache: bool = False

    def by_category(self, category: ClassificationCategory) -> list[ClassificationResult]:
        return [r for r in self.results if r.category is category]


class PartialReportResult(BaseModel):
    """One item of a report stream: a cumulative partial, or the final report."""

    job_id: str
    progress: StreamingProgress
    aggregate: ReportAggregate
    batch_info: BatchInfo | None = None
    is_final: bool = False
    report: ReportResult | None = None
    timestamp: int = Field(default_factory=now_ms)


class ReportJob(BaseModel):
    """Mutable job state owned by the streaming report engine."""

    job_id: str
    group_id: str
    period: ReportPeriod
    status: JobStatus = JobStatus.PENDING
    stage: StreamingStage = StreamingStage.INITIALIZING
    cursor: int = 0
    total_batches: int = 0
    total_members: int = 0
    partial_aggregate: ReportAggregate = Field(default_factory=ReportAggregate)
    created_at: int = Field(default_factory=now_ms)
    finished_at: int | None = None
    error: str | None = None


# ==============================================================================
# Output Chunking
# ==============================================================================


class ChunkKind(str, Enum):
    MESSAGE = "message"
    ATTACHMENT = "attachment"


class AttachmentFormat(str, Enum):
    TXT = "txt"
    JSON = "json"
    CSV = "csv"


class ChunkLimits(BaseModel):
    """Size limits of the delivery channel."""

    model_config = {"frozen": True}

    max_items: int = Field(default=25, ge=1, description="Items per chunk")
    max_bytes: int = Field(default=6000, ge=64, description="UTF-8 bytes per chunk")
    hard_ceiling_bytes: int = Field(
        default=60_000, ge=1, description="Total size above which an attachment is used"
    )
    attachment_max_bytes: int = Field(default=8 * 1024 * 1024, ge=1)
    attachment_format: AttachmentFormat = AttachmentFormat.TXT


class Chunk(BaseModel):
    model_config = {"frozen": True}

    chunk_index: int = Field(..., ge=0)
    total_chunks: int = Field(..., ge=1)
    payload: str
    size_bytes: int = Field(..., ge=0)
    item_count: int = 0
    kind: ChunkKind = ChunkKind.MESSAGE
    filename: str | None = None


class Violation(BaseModel):
    """A size-limit problem found by ``OutputChunker.validate``."""

    model_config = {"frozen": True}

    kind: str
    current: int
    limit: int
    severity: str = "warning"
    index: int | None = None


class CacheEntry(BaseModel):
    model_config = {"frozen": True}

    key: str
    value: dict
    expires_at: float | None = None
