# ==============================================================================
# Tests for StreamingReportEngine
# ==============================================================================
"""
Tests for streaming, cancellable report generation.

Tests cover:
- Aggregates independent of batch size
- Partial results per batch followed by one final result
- Cooperative cancellation mid-report
- Batch retry, skip and all-batches-failed handling
- Membership fetch failures and data quality flags
- Memory backpressure and report deadlines
- Result caching and job bookkeeping
"""

import asyncio

import pytest

from conftest import HOUR, T0, FakeTransport, StubTracker, members
from presence.core.errors import JobCancelledError, ReportFailedError, TransientFetchError
from presence.core.models import (
    DataQuality,
    GroupThreshold,
    JobStatus,
    ReportPeriod,
    StreamingStage,
)
from presence.services.classification import ClassificationEngine
from presence.services.fetcher import MembershipFetcher
from presence.services.report_engine import StreamingReportConfig, StreamingReportEngine
from presence.services.result_cache import ResultCache
from presence.utils.config import FetcherSettings, ReportSettings

WEEK = 7 * 24 * HOUR
PERIOD = ReportPeriod(start=T0, end=T0 + WEEK)
MEMBER_IDS = [f"m{i}" for i in range(10)]
# m0..m4 reach the one hour threshold, m5..m9 do not
TOTALS = {member_id: (i < 5) * HOUR + i * 60_000 for i, member_id in enumerate(MEMBER_IDS)}


class ScriptedClassifier(ClassificationEngine):
    """
    ClassificationEngine with hooks around each ``classify`` call.

    ``on_call(n, batch)`` runs before call ``n``; ``fail_when(n, batch)``
    returning True makes that call raise.
    """

    def __init__(self, *args, on_call=None, fail_when=None, delay=0.0, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = 0
        self.on_call = on_call
        self.fail_when = fail_when
        self.delay = delay

    async def classify(self, group_id, members, period=None, context=None):
        self.calls += 1
        if self.on_call:
            self.on_call(self.calls, members)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_when and self.fail_when(self.calls, members):
            raise RuntimeError(f"classifier failed on call {self.calls}")
        return await super().classify(group_id, members, period, context)


@pytest.fixture()
def upstream():
    return FakeTransport({"g1": members(*MEMBER_IDS)})


@pytest.fixture()
def build(store, clock, upstream):
    """Factory for an engine wired to fakes."""
    store.save_threshold(GroupThreshold(group_id="g1", min_duration=HOUR))

    def _build(classifier_kwargs=None, result_cache=None, memory_probe=lambda: 50.0, **settings):
        values = {
            "batch_size": 3,
            "max_retries": 2,
            "retry_base_delay_seconds": 0,
            "backpressure_pause_seconds": 0,
        }
        values.update(settings)
        fetcher = MembershipFetcher(
            upstream,
            FetcherSettings(
                max_retries=0, base_delay_seconds=0, requests_per_minute=60_000, burst=100
            ),
            clock=clock,
        )
        classifier = ScriptedClassifier(StubTracker(TOTALS), store, **(classifier_kwargs or {}))
        engine = StreamingReportEngine(
            fetcher,
            classifier,
            result_cache,
            ReportSettings(**values),
            memory_probe=memory_probe,
            clock=clock,
        )
        return engine, classifier, fetcher

    return _build


async def _collect(stream):
    return [item async for item in stream]


# ==============================================================================
# Streaming
# ==============================================================================


class TestStreaming:
    """Tests for partial results and final reports."""

    @pytest.mark.asyncio
    async def test_partials_then_final(self, build):
        engine, _, _ = build()
        stream = engine.generate_report("g1", PERIOD)

        items = await _collect(stream)
        report = await stream.result()

        partials, final = items[:-1], items[-1]
        assert len(partials) == 4
        assert [p.batch_info.batch_number for p in partials] == [1, 2, 3, 4]
        assert all(p.batch_info.total_batches == 4 for p in partials)
        assert [p.aggregate.total_members for p in partials] == [3, 6, 9, 10]
        assert final.is_final
        assert final.report == report
        assert final.progress.percentage == 100.0

    @pytest.mark.asyncio
    async def test_report_contents(self, build):
        engine, _, _ = build()
        report = await engine.generate_report("g1", PERIOD).result()

        assert report.aggregate.total_members == 10
        assert report.aggregate.achieving == 5
        assert report.aggregate.underperforming == 5
        assert report.data_quality is DataQuality.FULL
        assert report.batches_processed == 4
        assert [r.member_id for r in report.results[:5]] == ["m4", "m3", "m2", "m1", "m0"]

    @pytest.mark.asyncio
    async def test_aggregate_independent_of_batch_size(self, build):
        """Any batch split yields the same final aggregate and results."""
        engine, _, _ = build()
        reports = []
        for batch_size in (1, 3, 4, 10, 50):
            config = StreamingReportConfig.from_settings(
                ReportSettings(retry_base_delay_seconds=0), batch_size=batch_size, use_cache=False
            )
            reports.append(await engine.generate_report("g1", PERIOD, config).result())

        first = reports[0]
        for report in reports[1:]:
            assert report.aggregate == first.aggregate
            assert report.results == first.results

    @pytest.mark.asyncio
    async def test_partial_streaming_disabled(self, build):
        engine, _, _ = build(enable_partial_streaming=False)
        stream = engine.generate_report("g1", PERIOD)
        items = await _collect(stream)
        assert len(items) == 1
        assert items[0].is_final

    @pytest.mark.asyncio
    async def test_empty_group(self, build, upstream):
        upstream.groups["g1"] = []
        engine, _, _ = build()
        report = await engine.generate_report("g1", PERIOD).result()
        assert report.aggregate.total_members == 0
        assert report.batches_processed == 0


# ==============================================================================
# Cancellation
# ==============================================================================


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_during_third_batch(self, build):
        """Cancelling while batch 3 of 10 runs leaves exactly two partials."""
        holder = {}

        def cancel_on_third(call, batch):
            if call == 3:
                holder["engine"].cancel(holder["job_id"])

        engine, _, _ = build(classifier_kwargs={"on_call": cancel_on_third}, batch_size=1)
        holder["engine"] = engine
        stream = engine.generate_report("g1", PERIOD)
        holder["job_id"] = stream.job_id

        items = await _collect(stream)

        assert len(items) == 2
        assert not any(item.is_final for item in items)
        with pytest.raises(JobCancelledError):
            await stream.result()
        assert engine.get_job(stream.job_id).status is JobStatus.CANCELLED
        assert engine.get_status(stream.job_id).stage is StreamingStage.CANCELLED

    @pytest.mark.asyncio
    async def test_cancelled_queued_job_skips_warm_cache(self, build):
        """A job cancelled while waiting for a slot ends cancelled even on a cache hit."""
        engine, _, _ = build(
            result_cache=ResultCache(), max_concurrent_jobs=1, classifier_kwargs={"delay": 0.01}
        )
        await engine.generate_report("g1", PERIOD).result()

        busy = engine.generate_report(
            "g1",
            PERIOD,
            StreamingReportConfig(
                batch_size=3,
                retry_base_delay_seconds=0,
                backpressure_pause_seconds=0,
                use_cache=False,
            ),
        )
        queued = engine.generate_report("g1", PERIOD)
        assert engine.cancel(queued.job_id)

        assert await _collect(queued) == []
        with pytest.raises(JobCancelledError):
            await queued.result()
        assert engine.get_job(queued.job_id).status is JobStatus.CANCELLED
        assert not (await busy.result()).from_cache

    @pytest.mark.asyncio
    async def test_cancel_finished_job_is_rejected(self, build):
        engine, _, _ = build()
        stream = engine.generate_report("g1", PERIOD)
        await stream.result()
        assert not engine.cancel(stream.job_id)
        assert not engine.cancel("unknown")


# ==============================================================================
# Error Recovery
# ==============================================================================


class TestErrorRecovery:
    """Tests for batch retries and skips."""

    @pytest.mark.asyncio
    async def test_batch_recovers_after_retry(self, build):
        engine, classifier, _ = build(classifier_kwargs={"fail_when": lambda n, b: n == 2})
        report = await engine.generate_report("g1", PERIOD).result()

        assert report.error_count == 0
        assert report.errors_recovered == 1
        assert report.aggregate.total_members == 10
        assert classifier.calls == 5

    @pytest.mark.asyncio
    async def test_persistently_failing_batch_is_skipped(self, build):
        def bad_batch(n, batch):
            return any(m.member_id == "m4" for m in batch)

        result_cache = ResultCache()
        engine, classifier, _ = build(
            classifier_kwargs={"fail_when": bad_batch}, result_cache=result_cache
        )
        report = await engine.generate_report("g1", PERIOD).result()

        # Batch 2 (m3, m4, m5) failed all three attempts
        assert report.error_count == 1
        assert report.aggregate.failed_members == 3
        assert report.aggregate.total_members == 7
        assert classifier.calls == 3 + 3

        # Reports with skipped batches are not reused
        again = await engine.generate_report("g1", PERIOD).result()
        assert not again.from_cache

    @pytest.mark.asyncio
    async def test_all_batches_failing_fails_job(self, build):
        engine, _, _ = build(classifier_kwargs={"fail_when": lambda n, b: True})
        stream = engine.generate_report("g1", PERIOD)
        with pytest.raises(ReportFailedError, match="all 4 batches failed"):
            await stream.result()
        assert stream.job.status is JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_recovery_disabled_fails_on_first_error(self, build):
        engine, classifier, _ = build(
            classifier_kwargs={"fail_when": lambda n, b: n == 2}, enable_error_recovery=False
        )
        with pytest.raises(ReportFailedError):
            await engine.generate_report("g1", PERIOD).result()
        assert classifier.calls == 2


# ==============================================================================
# Membership and Resources
# ==============================================================================


class TestMembershipAndResources:
    """Tests for fetch outcomes, memory and deadlines."""

    @pytest.mark.asyncio
    async def test_failed_fetch_fails_job(self, build, upstream):
        upstream.failures = [TransientFetchError("503"), TransientFetchError("503")]
        engine, classifier, _ = build()
        with pytest.raises(ReportFailedError, match="no member data"):
            await engine.generate_report("g1", PERIOD).result()
        assert classifier.calls == 0

    @pytest.mark.asyncio
    async def test_partial_fetch_flags_quality(self, build, upstream):
        upstream.failures = [TransientFetchError("503"), None]
        engine, _, _ = build()
        report = await engine.generate_report("g1", PERIOD).result()
        assert report.data_quality is DataQuality.PARTIAL

    @pytest.mark.asyncio
    async def test_memory_pressure_pauses_but_completes(self, build):
        samples = []

        def high_memory():
            samples.append(1)
            return 512.0

        engine, _, _ = build(memory_probe=high_memory, max_memory_mb=64)
        report = await engine.generate_report("g1", PERIOD).result()

        assert report.aggregate.total_members == 10
        assert report.memory_peak_mb == 512.0
        assert len(samples) == 4

    @pytest.mark.asyncio
    async def test_deadline_fails_job(self, build):
        engine, _, _ = build(classifier_kwargs={"delay": 0.5}, timeout_seconds=0.05)
        stream = engine.generate_report("g1", PERIOD)
        with pytest.raises(ReportFailedError, match="timed out"):
            await stream.result()


# ==============================================================================
# Caching and Bookkeeping
# ==============================================================================


class TestCachingAndJobs:
    """Tests for the result cache and job listing."""

    @pytest.mark.asyncio
    async def test_second_report_served_from_cache(self, build):
        engine, classifier, fetcher = build(result_cache=ResultCache())
        first = await engine.generate_report("g1", PERIOD).result()
        second = await engine.generate_report("g1", PERIOD).result()

        assert not first.from_cache
        assert second.from_cache
        assert second.job_id != first.job_id
        assert second.aggregate == first.aggregate
        assert fetcher.get_statistics()["total_requests"] == 1
        assert classifier.calls == 4

    @pytest.mark.asyncio
    async def test_invalidation_forces_recompute(self, build):
        result_cache = ResultCache()
        engine, _, _ = build(result_cache=result_cache)
        await engine.generate_report("g1", PERIOD).result()
        result_cache.invalidate_group("g1")
        report = await engine.generate_report("g1", PERIOD).result()
        assert not report.from_cache

    @pytest.mark.asyncio
    async def test_jobs_are_listed(self, build):
        engine, _, _ = build()
        stream = engine.generate_report("g1", PERIOD)
        await stream.result()
        assert [job.job_id for job in engine.list_jobs()] == [stream.job_id]
        assert engine.get_job(stream.job_id).status is JobStatus.COMPLETED
        assert engine.get_status("unknown") is None
