# ==============================================================================
# Streaming Report Engine
# ==============================================================================
"""
Memory-bounded, cancellable compliance report generation.

Each report runs as one supervising asyncio task:

    INITIALIZING -> FETCHING_MEMBERS -> PROCESSING_DATA
        -> (GENERATING_PARTIAL -> STREAMING_RESULTS)* -> FINALIZING
        -> COMPLETED | FAILED | CANCELLED

Members are classified in fixed-size batches. After each batch:
- the cumulative aggregate is emitted as a partial result (if enabled)
- process memory is checked; above the limit the engine collects garbage
  and pauses before the next batch
- the cancel flag is checked; a cancelled job emits nothing further

A failing batch is retried with backoff and then skipped and counted. The job
only fails when the membership fetch yields no data at all, when every batch
fails, or when the report deadline passes.

Usage::

    stream = engine.generate_report("guild-1", period)
    async for partial in stream:
        print(partial.progress.percentage)
    report = await stream.result()
"""

import asyncio
import gc
import logging
import time
import uuid
from collections.abc import AsyncIterator, Callable

import psutil
from pydantic import BaseModel, Field
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from presence.core.classification import sort_results, summarize
from presence.core.errors import JobCancelledError, ReportFailedError
from presence.core.models import (
    BatchInfo,
    ClassificationResult,
    DataQuality,
    JobStatus,
    Member,
    PartialReportResult,
    ReportAggregate,
    ReportJob,
    ReportPeriod,
    ReportResult,
    StreamingProgress,
    StreamingStage,
)
from presence.core.outcomes import FailedFetch, PartialFetch, StaleFetch
from presence.services.classification import ClassificationContext, ClassificationEngine
from presence.services.fetcher import FetchOptions, MembershipFetcher
from presence.services.result_cache import ResultCache
from presence.utils.clock import Clock, now_ms
from presence.utils.config import ReportSettings
from presence.utils.retry import log_retry_attempt

logger = logging.getLogger(__name__)

_END = object()


def process_memory_mb() -> float:
    """Resident set size of this process in MiB."""
    return psutil.Process().memory_info().rss / (1024 * 1024)


class StreamingReportConfig(BaseModel):
    """Per-report options. Defaults come from ReportSettings."""

    batch_size: int = Field(default=50, ge=1)
    max_memory_mb: int = Field(default=256, ge=1)
    enable_partial_streaming: bool = True
    enable_error_recovery: bool = True
    max_retries: int = Field(default=3, ge=0)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    backpressure_pause_seconds: float = Field(default=0.5, ge=0)
    timeout_seconds: float = Field(default=300.0, gt=0)
    use_cache: bool = True
    force_refresh: bool = False

    @classmethod
    def from_settings(cls, settings: ReportSettings, **overrides) -> "StreamingReportConfig":
        values = {
            "batch_size": settings.batch_size,
            "max_memory_mb": settings.max_memory_mb,
            "enable_partial_streaming": settings.enable_partial_streaming,
            "enable_error_recovery": settings.enable_error_recovery,
            "max_retries": settings.max_retries,
            "retry_base_delay_seconds": settings.retry_base_delay_seconds,
            "backpressure_pause_seconds": settings.backpressure_pause_seconds,
            "timeout_seconds": settings.timeout_seconds,
        }
        values.update(overrides)
        return cls(**values)

    def cache_identity(self) -> dict:
        """Options that can change a finished report's content."""
        return self.model_dump(include={"enable_error_recovery", "max_retries"})


class _JobCancelled(Exception):
    pass


class _JobFailed(Exception):
    pass


class _JobHandle:
    """Engine-side bookkeeping for one job."""

    def __init__(self, job: ReportJob):
        self.job = job
        self.queue: asyncio.Queue = asyncio.Queue()
        self.cancel_requested = False
        self.task: asyncio.Task | None = None
        self.report: ReportResult | None = None
        self.progress = StreamingProgress(
            job_id=job.job_id, stage=job.stage, status=job.status, message="Queued"
        )
        self.started_monotonic = time.monotonic()


class ReportStream:
    """
    Async iterator over a job's partial results, ending with the final one.

    Iterating is optional; ``result()`` waits for the job either way.
    """

    def __init__(self, handle: _JobHandle):
        self._handle = handle

    @property
    def job_id(self) -> str:
        return self._handle.job.job_id

    @property
    def job(self) -> ReportJob:
        return self._handle.job

    def __aiter__(self) -> AsyncIterator[PartialReportResult]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[PartialReportResult]:
        while True:
            item = await self._handle.queue.get()
            if item is _END:
                # Leave the marker for other readers and result()
                self._handle.queue.put_nowait(_END)
                return
            yield item

    async def result(self) -> ReportResult:
        """
        Wait for the job to finish.

        Raises:
            JobCancelledError: The job was cancelled
            ReportFailedError: The job failed
        """
        if self._handle.task is not None:
            await self._handle.task
        job = self._handle.job
        if job.status is JobStatus.CANCELLED:
            raise JobCancelledError(job.job_id)
        if job.status is JobStatus.FAILED or self._handle.report is None:
            raise ReportFailedError(job.job_id, job.error or "no report produced")
        return self._handle.report


class StreamingReportEngine:
    """
    Args:
        fetcher: Membership source
        classifier: Classification of member batches
        result_cache: Optional read-through cache for finished reports
        settings: Engine defaults and limits
        memory_probe: Returns current process memory in MiB
        clock: Epoch-milliseconds clock
    """

    def __init__(
        self,
        fetcher: MembershipFetcher,
        classifier: ClassificationEngine,
        result_cache: ResultCache | None = None,
        settings: ReportSettings | None = None,
        memory_probe: Callable[[], float] = process_memory_mb,
        clock: Clock = now_ms,
    ):
        self._fetcher = fetcher
        self._classifier = classifier
        self._result_cache = result_cache
        self._settings = settings or ReportSettings()
        self._memory_probe = memory_probe
        self._clock = clock
        self._jobs: dict[str, _JobHandle] = {}
        self._job_slots = asyncio.Semaphore(self._settings.max_concurrent_jobs)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate_report(
        self,
        group_id: str,
        period: ReportPeriod,
        config: StreamingReportConfig | None = None,
    ) -> ReportStream:
        """
        Start a report job. Requires a running event loop.

        Returns:
            Stream of partial results; the last item has ``is_final=True``
        """
        self._purge_finished()
        config = config or StreamingReportConfig.from_settings(self._settings)
        job = ReportJob(job_id=uuid.uuid4().hex, group_id=group_id, period=period)
        handle = _JobHandle(job)
        self._jobs[job.job_id] = handle
        handle.task = asyncio.create_task(
            self._supervise(handle, config), name=f"presence-report-{job.job_id}"
        )
        logger.info("Report job %s started for %s (%s)", job.job_id, group_id, period.label)
        return ReportStream(handle)

    def cancel(self, job_id: str) -> bool:
        """
        Request cooperative cancellation.

        Returns:
            False if the job is unknown or already finished
        """
        handle = self._jobs.get(job_id)
        if handle is None or handle.job.status.is_terminal:
            return False
        handle.cancel_requested = True
        logger.info("Cancellation requested for report job %s", job_id)
        return True

    def get_status(self, job_id: str) -> StreamingProgress | None:
        handle = self._jobs.get(job_id)
        return handle.progress if handle else None

    def get_job(self, job_id: str) -> ReportJob | None:
        handle = self._jobs.get(job_id)
        return handle.job if handle else None

    def list_jobs(self) -> list[ReportJob]:
        return [handle.job for handle in self._jobs.values()]

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    async def _supervise(self, handle: _JobHandle, config: StreamingReportConfig) -> None:
        job = handle.job
        try:
            async with self._job_slots:
                async with asyncio.timeout(config.timeout_seconds):
                    await self._execute(handle, config)
        except _JobCancelled:
            self._finish(handle, JobStatus.CANCELLED, StreamingStage.CANCELLED, "Cancelled")
            logger.info("Report job %s cancelled after %d batches", job.job_id, job.cursor)
        except _JobFailed as e:
            job.error = str(e)
            self._finish(handle, JobStatus.FAILED, StreamingStage.FAILED, str(e))
            logger.error("Report job %s failed: %s", job.job_id, e)
        except TimeoutError:
            job.error = f"timed out after {config.timeout_seconds:.0f}s"
            self._finish(handle, JobStatus.FAILED, StreamingStage.FAILED, job.error)
            logger.error("Report job %s %s", job.job_id, job.error)
        except Exception as e:
            job.error = f"{type(e).__name__}: {e}"
            self._finish(handle, JobStatus.FAILED, StreamingStage.FAILED, job.error)
            logger.exception("Report job %s crashed", job.job_id)
        finally:
            handle.queue.put_nowait(_END)

    def _finish(
        self, handle: _JobHandle, status: JobStatus, stage: StreamingStage, message: str
    ) -> None:
        handle.job.status = status
        handle.job.stage = stage
        handle.job.finished_at = self._clock()
        self._set_progress(handle, message)

    def _purge_finished(self) -> None:
        cutoff = self._clock() - self._settings.job_retention_seconds * 1000
        expired = [
            job_id
            for job_id, handle in self._jobs.items()
            if handle.job.finished_at is not None and handle.job.finished_at < cutoff
        ]
        for job_id in expired:
            del self._jobs[job_id]

    def _check_cancel(self, handle: _JobHandle) -> None:
        if handle.cancel_requested:
            raise _JobCancelled()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _execute(self, handle: _JobHandle, config: StreamingReportConfig) -> None:
        job = handle.job
        self._check_cancel(handle)
        job.status = JobStatus.RUNNING
        self._enter(handle, StreamingStage.INITIALIZING, "Starting report")

        cache_key = None
        if self._result_cache is not None and config.use_cache:
            cache_key = self._result_cache.make_key(
                job.group_id, job.period, ResultCache.config_hash(config.cache_identity())
            )
            cached = None if config.force_refresh else self._result_cache.get(cache_key)
            if cached is not None:
                report = ReportResult.model_validate(cached).model_copy(
                    update={"job_id": job.job_id, "from_cache": True}
                )
                logger.info("Report job %s served from cache", job.job_id)
                self._complete(handle, report)
                return

        self._check_cancel(handle)
        self._enter(handle, StreamingStage.FETCHING_MEMBERS, "Fetching members")
        outcome = await self._fetcher.fetch_group_members(
            job.group_id, FetchOptions(force_refresh=config.force_refresh)
        )
        if isinstance(outcome, FailedFetch):
            raise _JobFailed(str(outcome.error))
        if isinstance(outcome, PartialFetch):
            quality = DataQuality.PARTIAL
        elif isinstance(outcome, StaleFetch):
            quality = DataQuality.STALE
        else:
            quality = DataQuality.FULL

        members = outcome.members
        context = await self._classifier.load_context(job.group_id)
        batches = [
            members[i : i + config.batch_size] for i in range(0, len(members), config.batch_size)
        ]
        job.total_members = len(members)
        job.total_batches = len(batches)

        aggregate = job.partial_aggregate
        collected: list[ClassificationResult] = []
        error_count = 0
        errors_recovered = 0
        memory_peak = 0.0

        self._enter(handle, StreamingStage.PROCESSING_DATA, f"Classifying {len(members)} members")
        for number, batch in enumerate(batches, start=1):
            self._check_cancel(handle)
            results, retried = await self._process_batch(job, batch, context, config)
            # The in-flight batch finished; a cancel that arrived meanwhile wins
            self._check_cancel(handle)

            if results is None:
                error_count += 1
                aggregate.failed_members += len(batch)
            else:
                aggregate.add(results)
                collected.extend(results)
                if retried:
                    errors_recovered += 1
            job.cursor = number

            memory_peak = max(memory_peak, await self._check_memory(job, config))

            if config.enable_partial_streaming:
                self._enter(handle, StreamingStage.GENERATING_PARTIAL, f"Batch {number}/{len(batches)}")
                partial = PartialReportResult(
                    job_id=job.job_id,
                    progress=handle.progress,
                    aggregate=aggregate.model_copy(),
                    batch_info=BatchInfo(
                        batch_number=number,
                        total_batches=len(batches),
                        items_in_batch=len(batch),
                    ),
                )
                self._enter(handle, StreamingStage.STREAMING_RESULTS, f"Batch {number}/{len(batches)}")
                handle.queue.put_nowait(partial)
                job.status = JobStatus.PARTIAL_EMITTED
                self._set_progress(handle, f"Batch {number}/{len(batches)} streamed")
            # Yield so consumers see the partial before the next batch starts
            await asyncio.sleep(0)

        if batches and error_count == len(batches):
            raise _JobFailed(f"all {len(batches)} batches failed")

        self._check_cancel(handle)
        self._enter(handle, StreamingStage.FINALIZING, "Finalizing report")
        ordered = sort_results(collected)
        report = ReportResult(
            job_id=job.job_id,
            group_id=job.group_id,
            period=job.period,
            results=ordered,
            aggregate=aggregate.model_copy(),
            statistics=summarize(ordered),
            data_quality=quality,
            fetch=outcome.metadata,
            errors_recovered=errors_recovered,
            error_count=error_count,
            batches_processed=job.cursor,
            processing_ms=int((time.monotonic() - handle.started_monotonic) * 1000),
            memory_peak_mb=round(memory_peak, 1),
        )

        # Only complete, fresh reports are worth reusing
        if cache_key is not None and quality is DataQuality.FULL and error_count == 0:
            self._result_cache.set(cache_key, report.model_dump(mode="json"))
        self._complete(handle, report)

    async def _process_batch(
        self,
        job: ReportJob,
        batch: list[Member],
        context: ClassificationContext,
        config: StreamingReportConfig,
    ) -> tuple[list[ClassificationResult] | None, bool]:
        """
        Classify one batch.

        Returns:
            (results or None if the batch was skipped, whether a retry was needed)

        Raises:
            Exception: The batch failed and error recovery is disabled
        """
        if not config.enable_error_recovery:
            results = await self._classifier.classify(job.group_id, batch, job.period, context)
            return results, False

        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(config.max_retries + 1),
                wait=wait_exponential(multiplier=config.retry_base_delay_seconds),
                retry=retry_if_exception_type(Exception),
                before_sleep=log_retry_attempt(logger, config.max_retries + 1),
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    results = await self._classifier.classify(
                        job.group_id, batch, job.period, context
                    )
        except Exception as e:
            logger.error(
                "Skipping batch %d of job %s after %d attempts: %s",
                job.cursor + 1,
                job.job_id,
                attempts,
                e,
            )
            return None, True
        return results, attempts > 1

    async def _check_memory(self, job: ReportJob, config: StreamingReportConfig) -> float:
        usage = self._memory_probe()
        if usage > config.max_memory_mb:
            logger.warning(
                "Report job %s using %.1f MiB (limit %d MiB), pausing",
                job.job_id,
                usage,
                config.max_memory_mb,
            )
            gc.collect()
            await asyncio.sleep(config.backpressure_pause_seconds)
        return usage

    def _complete(self, handle: _JobHandle, report: ReportResult) -> None:
        job = handle.job
        handle.report = report
        job.partial_aggregate = report.aggregate.model_copy()
        self._finish(handle, JobStatus.COMPLETED, StreamingStage.COMPLETED, "Report complete")
        handle.queue.put_nowait(
            PartialReportResult(
                job_id=job.job_id,
                progress=handle.progress,
                aggregate=report.aggregate.model_copy(),
                is_final=True,
                report=report,
            )
        )
        logger.info(
            "Report job %s completed: %d members, %d batches, %d errors",
            job.job_id,
            report.aggregate.total_members,
            report.batches_processed,
            report.error_count,
        )

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def _enter(self, handle: _JobHandle, stage: StreamingStage, message: str) -> None:
        handle.job.stage = stage
        self._set_progress(handle, message)

    def _set_progress(self, handle: _JobHandle, message: str) -> None:
        job = handle.job
        processed = job.partial_aggregate.total_members + job.partial_aggregate.failed_members
        total = job.total_members
        elapsed = max(time.monotonic() - handle.started_monotonic, 1e-6)
        rate = processed / elapsed
        remaining = None
        if rate > 0 and total > processed:
            remaining = int((total - processed) / rate * 1000)

        if job.status is JobStatus.COMPLETED:
            percentage = 100.0
        elif total:
            percentage = round(processed / total * 100, 1)
        else:
            percentage = 0.0

        handle.progress = StreamingProgress(
            job_id=job.job_id,
            stage=job.stage,
            status=job.status,
            current=processed,
            total=total,
            percentage=percentage,
            message=message,
            estimated_remaining_ms=remaining,
            processing_rate=round(rate, 2),
            has_partial_results=job.cursor > 0,
        )
