"""Integration tests for the background job scheduler.

Runs against a SQLite file database so that claims, retries, and status
transitions go through the real conditional UPDATEs.
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from psychosocial_automation.adapters.repositories import ProcessingJobRepository
from psychosocial_automation.core.domain import ProcessingResult, TriggerMode
from psychosocial_automation.core.errors import NotFoundError, TransientStoreError
from psychosocial_automation.core.models import ProcessingJob
from psychosocial_automation.core.scheduler import JobScheduler

_COMPANY_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
_START = datetime(2030, 1, 1, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = _START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class ScriptedPipeline:
    """Pipeline stand-in that raises the scripted failures, then succeeds."""

    def __init__(self, failures: list[Exception] | None = None) -> None:
        self.failures = list(failures or [])
        self.calls: list[uuid.UUID] = []

    async def process_assessment(
        self,
        assessment_response_id: uuid.UUID,
        processing_job_id: uuid.UUID | None = None,
        trigger_mode: TriggerMode = TriggerMode.AUTOMATIC,
    ) -> ProcessingResult:
        self.calls.append(assessment_response_id)
        await asyncio.sleep(0)
        if self.failures:
            raise self.failures.pop(0)
        return ProcessingResult(
            success=True,
            assessment_response_id=assessment_response_id,
            message="ok",
            job_id=processing_job_id,
            analyses_created=5,
            plans_created=1,
        )


class ReplayingJobRepository(ProcessingJobRepository):
    """Job repository that hands out a batch fetched earlier by another poll."""

    def __init__(self, session: AsyncSession, batch: list[ProcessingJob]) -> None:
        super().__init__(session)
        self._batch = batch

    async def fetch_due_pending(self, limit: int, now: datetime) -> list[ProcessingJob]:
        return list(self._batch)


class UnavailableRetryRepository(ProcessingJobRepository):
    """Job repository whose retry write fails as if the store went away."""

    async def schedule_retry(
        self, job_id: uuid.UUID, retry_count: int, scheduled_for: datetime, error_message: str
    ) -> bool:
        raise TransientStoreError("Store unavailable during job retry")


def _scheduler(
    session_factory: async_sessionmaker[AsyncSession],
    pipeline: ScriptedPipeline,
    clock: FakeClock,
    job_repository_factory: Any = ProcessingJobRepository,
    **options: Any,
) -> JobScheduler:
    return JobScheduler(
        session_factory,
        job_repository_factory,
        lambda session: pipeline,
        clock=clock,
        **options,
    )


async def _enqueue(
    session_factory: async_sessionmaker[AsyncSession],
    priority: str = "medium",
    max_retries: int = 3,
) -> uuid.UUID:
    async with session_factory() as session:
        job = await ProcessingJobRepository(session).enqueue(uuid.uuid4(), _COMPANY_ID, priority, max_retries, {})
        await session.commit()
        return job.id


async def _load(session_factory: async_sessionmaker[AsyncSession], job_id: uuid.UUID) -> ProcessingJob:
    async with session_factory() as session:
        job = await session.get(ProcessingJob, job_id)
        assert job is not None
        return job


def _naive(value: datetime | None) -> datetime | None:
    return value.replace(tzinfo=None) if value is not None else None


# ---------------------------------------------------------------------------
# Retry behaviour
# ---------------------------------------------------------------------------


class TestRetries:
    """Retry and failure handling of JobScheduler."""

    @pytest.mark.asyncio()
    async def test_transient_failures_retry_with_growing_delays(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Two transient failures with max_retries=3 end completed on the third attempt."""
        clock = FakeClock()
        pipeline = ScriptedPipeline([TransientStoreError("database locked"), TransientStoreError("database locked")])
        scheduler = _scheduler(session_factory, pipeline, clock, retry_delays_seconds=(1.0, 5.0, 15.0))
        job_id = await _enqueue(session_factory, max_retries=3)

        assert await scheduler.run_once() == 1
        job = await _load(session_factory, job_id)
        assert job.status == "pending"
        assert job.retry_count == 1
        assert job.error_message == "database locked"
        assert _naive(job.scheduled_for) == _naive(clock.now + timedelta(seconds=1))

        # Not due until the backoff has elapsed
        assert await scheduler.run_once() == 0

        clock.advance(1)
        assert await scheduler.run_once() == 1
        job = await _load(session_factory, job_id)
        assert job.status == "pending"
        assert job.retry_count == 2
        assert _naive(job.scheduled_for) == _naive(clock.now + timedelta(seconds=5))

        clock.advance(4)
        assert await scheduler.run_once() == 0
        clock.advance(1)
        assert await scheduler.run_once() == 1

        job = await _load(session_factory, job_id)
        assert job.status == "completed"
        assert job.retry_count == 2
        assert job.error_message is None
        assert job.job_metadata["result"]["analyses_created"] == 5
        assert _naive(job.completed_at) == _naive(clock.now)
        assert len(pipeline.calls) == 3

    @pytest.mark.asyncio()
    async def test_retries_exhausted_ends_in_error(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """A job that keeps failing stops at max_retries."""
        clock = FakeClock()
        pipeline = ScriptedPipeline([TransientStoreError("timeout")] * 3)
        scheduler = _scheduler(session_factory, pipeline, clock, retry_delays_seconds=(1.0,))
        job_id = await _enqueue(session_factory, max_retries=1)

        assert await scheduler.run_once() == 1
        clock.advance(1)
        assert await scheduler.run_once() == 1

        job = await _load(session_factory, job_id)
        assert job.status == "error"
        assert job.retry_count == 1
        assert job.error_message == "timeout"
        assert len(pipeline.calls) == 2

        clock.advance(60)
        assert await scheduler.run_once() == 0

    @pytest.mark.asyncio()
    async def test_not_found_fails_without_retry(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Errors that cannot succeed on a retry fail the job immediately."""
        pipeline = ScriptedPipeline([NotFoundError("Assessment response missing.")])
        scheduler = _scheduler(session_factory, pipeline, FakeClock())
        job_id = await _enqueue(session_factory, max_retries=3)

        assert await scheduler.run_once() == 1

        job = await _load(session_factory, job_id)
        assert job.status == "error"
        assert job.retry_count == 0
        assert job.error_message == "Assessment response missing."

    @pytest.mark.asyncio()
    async def test_uniform_retry_policy_option(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """retry_non_transient_errors retries every failure kind."""
        pipeline = ScriptedPipeline([NotFoundError("Assessment response missing.")])
        scheduler = _scheduler(session_factory, pipeline, FakeClock(), retry_non_transient_errors=True)
        job_id = await _enqueue(session_factory, max_retries=3)

        await scheduler.run_once()

        job = await _load(session_factory, job_id)
        assert job.status == "pending"
        assert job.retry_count == 1

    @pytest.mark.asyncio()
    async def test_unexpected_exception_is_retried(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Unknown failures are treated as transient."""
        pipeline = ScriptedPipeline([RuntimeError("boom")])
        scheduler = _scheduler(session_factory, pipeline, FakeClock())
        job_id = await _enqueue(session_factory)

        await scheduler.run_once()

        job = await _load(session_factory, job_id)
        assert job.status == "pending"
        assert job.error_message == "boom"

    @pytest.mark.asyncio()
    async def test_failed_retry_write_does_not_abort_the_batch(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A job whose failure cannot be recorded leaves its siblings running."""
        pipeline = ScriptedPipeline([TransientStoreError("timeout")])
        scheduler = _scheduler(
            session_factory,
            pipeline,
            FakeClock(),
            job_repository_factory=UnavailableRetryRepository,
            max_concurrency=1,
        )
        first = await _enqueue(session_factory, priority="critical")
        second = await _enqueue(session_factory, priority="low")

        assert await scheduler.run_once() == 1

        statuses = [(await _load(session_factory, job_id)).status for job_id in (first, second)]
        assert sorted(statuses) == ["completed", "processing"]
        assert len(pipeline.calls) == 2
        assert scheduler.active_jobs == 0

    @pytest.mark.asyncio()
    async def test_retry_delay_table(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """The last delay repeats once the table is exhausted."""
        scheduler = _scheduler(session_factory, ScriptedPipeline(), FakeClock(), retry_delays_seconds=(1.0, 5.0, 15.0))

        assert [scheduler.retry_delay(attempt) for attempt in (1, 2, 3, 4, 9)] == [1.0, 5.0, 15.0, 15.0, 15.0]


# ---------------------------------------------------------------------------
# Claiming and ordering
# ---------------------------------------------------------------------------


class TestClaiming:
    """Atomic claims and dequeue order."""

    @pytest.mark.asyncio()
    async def test_concurrent_claims_have_one_winner(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Two transactions claiming the same job: exactly one succeeds."""
        job_id = await _enqueue(session_factory)

        async def _claim() -> bool:
            async with session_factory() as session:
                won = await ProcessingJobRepository(session).claim(job_id, _START)
                await session.commit()
                return won

        outcomes = await asyncio.gather(_claim(), _claim())

        assert sorted(outcomes) == [False, True]
        job = await _load(session_factory, job_id)
        assert job.status == "processing"

    @pytest.mark.asyncio()
    async def test_two_schedulers_execute_a_job_once(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Workers sharing a queue never run the same job twice."""
        pipeline = ScriptedPipeline()
        clock = FakeClock()
        first = _scheduler(session_factory, pipeline, clock)
        second = _scheduler(session_factory, pipeline, clock)
        job_id = await _enqueue(session_factory)

        executed = await asyncio.gather(first.run_once(), second.run_once())

        assert sum(executed) == 1
        assert len(pipeline.calls) == 1
        assert (await _load(session_factory, job_id)).status == "completed"

    @pytest.mark.asyncio()
    async def test_completed_job_cannot_be_claimed(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Claims only match pending rows."""
        scheduler = _scheduler(session_factory, ScriptedPipeline(), FakeClock())
        job_id = await _enqueue(session_factory)
        await scheduler.run_once()

        assert await scheduler.claim(job_id) is None

    @pytest.mark.asyncio()
    async def test_claim_waits_for_retry_backoff(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """A pending job scheduled in the future is not claimable until it is due."""
        job_id = await _enqueue(session_factory)
        due_at = _START + timedelta(seconds=10)

        async with session_factory() as session:
            repository = ProcessingJobRepository(session)
            assert await repository.claim(job_id, _START) is True
            assert await repository.schedule_retry(job_id, 1, due_at, "timeout") is True
            await session.commit()

        async with session_factory() as session:
            repository = ProcessingJobRepository(session)
            assert await repository.claim(job_id, _START + timedelta(seconds=9)) is False
            assert await repository.claim(job_id, due_at) is True
            await session.commit()

    @pytest.mark.asyncio()
    async def test_retry_is_recorded_once_per_attempt(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """schedule_retry only matches the attempt right after the stored retry_count."""
        job_id = await _enqueue(session_factory)

        async with session_factory() as session:
            repository = ProcessingJobRepository(session)
            assert await repository.claim(job_id, _START) is True
            assert await repository.schedule_retry(job_id, 2, _START, "timeout") is False
            await session.commit()

        job = await _load(session_factory, job_id)
        assert job.status == "processing"
        assert job.retry_count == 0

    @pytest.mark.asyncio()
    async def test_stale_batch_uses_stored_retry_state(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A worker dispatching an outdated batch honours the backoff and the retry limit."""
        clock = FakeClock()
        job_id = await _enqueue(session_factory, max_retries=1)
        async with session_factory() as session:
            stale_batch = await ProcessingJobRepository(session).fetch_due_pending(10, clock.now)
            await session.commit()

        fast_pipeline = ScriptedPipeline([TransientStoreError("timeout")])
        fast = _scheduler(session_factory, fast_pipeline, clock, retry_delays_seconds=(1.0,))
        assert await fast.run_once() == 1
        job = await _load(session_factory, job_id)
        assert job.status == "pending"
        assert job.retry_count == 1

        slow_pipeline = ScriptedPipeline([TransientStoreError("timeout")])
        slow = _scheduler(
            session_factory,
            slow_pipeline,
            clock,
            job_repository_factory=lambda session: ReplayingJobRepository(session, stale_batch),
            retry_delays_seconds=(1.0,),
        )

        # Backoff has not elapsed: the outdated snapshot must not be claimed
        assert await slow.run_once() == 0
        assert slow_pipeline.calls == []
        job = await _load(session_factory, job_id)
        assert job.status == "pending"
        assert job.retry_count == 1

        clock.advance(1)
        assert await slow.run_once() == 1

        job = await _load(session_factory, job_id)
        assert job.status == "error"
        assert job.retry_count == 1
        assert job.error_message == "timeout"

    @pytest.mark.asyncio()
    async def test_critical_jobs_are_fetched_first(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Priority tiers dequeue highest first, oldest first within a tier."""
        low = await _enqueue(session_factory, priority="low")
        critical_old = await _enqueue(session_factory, priority="critical")
        medium = await _enqueue(session_factory, priority="medium")
        high = await _enqueue(session_factory, priority="high")
        critical_new = await _enqueue(session_factory, priority="critical")

        async with session_factory() as session:
            jobs = await ProcessingJobRepository(session).fetch_due_pending(10, _START)
            await session.commit()

        assert [job.id for job in jobs] == [critical_old, critical_new, high, medium, low]

    @pytest.mark.asyncio()
    async def test_batch_size_limits_fetch(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """At most batch_size jobs run per poll."""
        pipeline = ScriptedPipeline()
        scheduler = _scheduler(session_factory, pipeline, FakeClock(), batch_size=2, max_concurrency=2)
        for _ in range(3):
            await _enqueue(session_factory)

        assert await scheduler.run_once() == 2
        assert await scheduler.run_once() == 1
        assert await scheduler.run_once() == 0


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


async def _wait_for_status(
    session_factory: async_sessionmaker[AsyncSession],
    job_id: uuid.UUID,
    status: str,
    attempts: int = 200,
) -> ProcessingJob:
    job = await _load(session_factory, job_id)
    for _ in range(attempts):
        if job.status == status:
            break
        await asyncio.sleep(0.02)
        job = await _load(session_factory, job_id)
    return job


class TestLifecycle:
    """start/stop/pause/resume and status reporting."""

    @pytest.mark.asyncio()
    async def test_loop_processes_queued_jobs(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """A started scheduler drains the queue on its own."""
        pipeline = ScriptedPipeline()
        scheduler = _scheduler(session_factory, pipeline, FakeClock(), poll_interval_seconds=0.01)
        job_id = await _enqueue(session_factory)

        await scheduler.start()
        assert scheduler.is_running is True
        job = await _wait_for_status(session_factory, job_id, "completed")
        await scheduler.stop()

        assert job.status == "completed"
        assert scheduler.is_running is False

    @pytest.mark.asyncio()
    async def test_paused_scheduler_claims_nothing(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Pausing keeps jobs pending until resume."""
        pipeline = ScriptedPipeline()
        scheduler = _scheduler(session_factory, pipeline, FakeClock(), poll_interval_seconds=0.01)
        job_id = await _enqueue(session_factory)

        scheduler.pause()
        await scheduler.start()
        await asyncio.sleep(0.1)
        assert (await _load(session_factory, job_id)).status == "pending"
        assert pipeline.calls == []

        scheduler.resume()
        job = await _wait_for_status(session_factory, job_id, "completed")
        await scheduler.stop()

        assert job.status == "completed"

    @pytest.mark.asyncio()
    async def test_processing_status_counts(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Status reports queue counts and scheduler flags."""
        clock = FakeClock()
        pipeline = ScriptedPipeline([NotFoundError("gone")])
        scheduler = _scheduler(session_factory, pipeline, clock, max_concurrency=1, batch_size=1)
        await _enqueue(session_factory, priority="critical")
        await _enqueue(session_factory, priority="high")
        await _enqueue(session_factory, priority="low")

        await scheduler.run_once()
        await scheduler.run_once()
        scheduler.pause()
        status = await scheduler.get_processing_status()

        assert status.failed_jobs == 1
        assert status.completed_jobs == 1
        assert status.queue_length == 1
        assert status.active_jobs == 0
        assert status.is_paused is True
        assert status.is_running is False
        assert status.max_concurrency == 1
