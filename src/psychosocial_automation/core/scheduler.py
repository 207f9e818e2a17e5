"""Background job scheduler for assessment processing.

A single scheduler loop per process polls the durable job table, claims due
jobs with an atomic conditional update, and runs them through the processing
pipeline under a fixed concurrency ceiling. Any number of worker processes may
run against the same database: the claim update is the only mutual-exclusion
point and no in-memory lock is shared between them.

Job lifecycle:
    pending → processing → completed
    processing → pending   (retryable failure, retry_count < max_retries)
    processing → error     (retries exhausted, or a non-retryable failure)

Retries are deferred by setting scheduled_for; workers never sleep on a
failed job.
"""

import asyncio
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from psychosocial_automation.core.criteria import priority_for_level
from psychosocial_automation.core.domain import ProcessingResult, ProcessingStatus, TriggerMode
from psychosocial_automation.core.errors import PsychosocialError, TransientStoreError, is_retryable
from psychosocial_automation.core.interfaces import IProcessingJobRepository
from psychosocial_automation.core.pipeline import ProcessingPipeline
from psychosocial_automation.observability import get_logger
from psychosocial_automation.settings import Settings

logger = get_logger(__name__)

JobRepositoryFactory = Callable[[AsyncSession], IProcessingJobRepository]
PipelineFactory = Callable[[AsyncSession], ProcessingPipeline]


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class JobScheduler:
    """Explicit scheduler handle with start/stop/pause/resume.

    Args:
        session_factory: Factory for one session per unit of work.
        job_repository_factory: Builds the job repository for a session.
        pipeline_factory: Builds the processing pipeline for a session.
        max_concurrency: Maximum jobs executed at once by this process.
        poll_interval_seconds: Idle wait when the queue has no due jobs.
        batch_size: Maximum jobs fetched per poll.
        retry_delays_seconds: Backoff table indexed by retry attempt; the last
            entry repeats for later attempts.
        retry_non_transient_errors: Retry not-found and validation failures too.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        job_repository_factory: JobRepositoryFactory,
        pipeline_factory: PipelineFactory,
        max_concurrency: int = 3,
        poll_interval_seconds: float = 5.0,
        batch_size: int = 10,
        retry_delays_seconds: Sequence[float] = (1.0, 5.0, 15.0),
        retry_non_transient_errors: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._job_repository_factory = job_repository_factory
        self._pipeline_factory = pipeline_factory
        self._max_concurrency = max_concurrency
        self._poll_interval = poll_interval_seconds
        self._batch_size = batch_size
        self._retry_delays = tuple(retry_delays_seconds) or (0.0,)
        self._retry_non_transient = retry_non_transient_errors
        self._clock = clock

        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._paused = False
        self._active = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        job_repository_factory: JobRepositoryFactory,
        pipeline_factory: PipelineFactory,
    ) -> "JobScheduler":
        """Build a scheduler configured from service settings."""
        return cls(
            session_factory,
            job_repository_factory,
            pipeline_factory,
            max_concurrency=settings.scheduler_max_concurrency,
            poll_interval_seconds=settings.scheduler_poll_interval_seconds,
            batch_size=settings.scheduler_batch_size,
            retry_delays_seconds=settings.scheduler_retry_delays_seconds,
            retry_non_transient_errors=settings.retry_non_transient_errors,
        )

    @property
    def is_running(self) -> bool:
        """True while the polling loop task is alive."""
        return self._task is not None and not self._task.done()

    @property
    def is_paused(self) -> bool:
        """True while intake of new jobs is paused."""
        return self._paused

    @property
    def active_jobs(self) -> int:
        """Jobs currently executing in this process."""
        return self._active

    async def start(self) -> None:
        """Start the polling loop. No-op when already running."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(), name="psychosocial-job-scheduler")
        logger.info(
            "Job scheduler started",
            max_concurrency=self._max_concurrency,
            poll_interval_seconds=self._poll_interval,
        )

    async def stop(self) -> None:
        """Signal the loop to stop and wait for in-flight jobs to finish."""
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("Job scheduler stopped")

    def pause(self) -> None:
        """Stop claiming new jobs. Queued jobs stay pending."""
        self._paused = True
        logger.info("Job scheduler paused")

    def resume(self) -> None:
        """Resume claiming jobs after pause()."""
        self._paused = False
        logger.info("Job scheduler resumed")

    def retry_delay(self, retry_count: int) -> float:
        """Backoff in seconds before retry number retry_count (1-based)."""
        index = min(max(retry_count, 1) - 1, len(self._retry_delays) - 1)
        return self._retry_delays[index]

    async def run_once(self) -> int:
        """Fetch one batch of due jobs and execute the ones this process claims.

        Returns:
            Number of jobs claimed and executed.
        """
        async with self._session_factory() as session:
            jobs = await self._job_repository_factory(session).fetch_due_pending(
                self._batch_size, self._clock()
            )
            await session.commit()
        if not jobs:
            return 0
        outcomes = await asyncio.gather(*(self._dispatch(job) for job in jobs), return_exceptions=True)
        executed = 0
        for job, outcome in zip(jobs, outcomes):
            if isinstance(outcome, Exception):
                logger.error(
                    "Job dispatch failed",
                    job_id=str(job.id),
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            executed += outcome
        return executed

    async def claim(self, job_id: uuid.UUID) -> Any | None:
        """Atomically claim a due pending job in its own committed transaction.

        Returns:
            The job as stored right after the claim, or None when another
            worker holds it or its retry backoff has not elapsed.
        """
        async with self._session_factory() as session:
            repository = self._job_repository_factory(session)
            job = None
            if await repository.claim(job_id, self._clock()):
                job = await repository.get_by_id(job_id)
            await session.commit()
        return job

    async def execute_job(self, job: Any) -> ProcessingResult | None:
        """Run a claimed job and record its terminal or retry state.

        The pipeline's writes and the completed status are committed together.
        On failure the pipeline session is rolled back before the retry or
        error state is written in a fresh transaction.

        Args:
            job: Claimed ProcessingJob row (detached snapshot).

        Returns:
            The ProcessingResult on success, None when the job failed.
        """
        log = logger.bind(
            job_id=str(job.id),
            assessment_response_id=str(job.assessment_response_id),
            attempt=job.retry_count + 1,
        )
        try:
            async with self._session_factory() as session:
                result = await self._pipeline_factory(session).process_assessment(
                    job.assessment_response_id,
                    processing_job_id=job.id,
                    trigger_mode=TriggerMode.AUTOMATIC,
                )
                completed = await self._job_repository_factory(session).mark_completed(
                    job.id,
                    self._clock(),
                    {
                        "analyses_created": result.analyses_created,
                        "plans_created": result.plans_created,
                        "notifications_created": result.notifications_created,
                        "elapsed_ms": result.elapsed_ms,
                    },
                )
                await session.commit()
        except Exception as exc:  # noqa: BLE001
            await self._handle_failure(job, exc)
            return None

        if not completed:
            log.warning("Job was no longer processing when marked completed")
        log.info(
            "Job completed",
            analyses_created=result.analyses_created,
            plans_created=result.plans_created,
            notifications_created=result.notifications_created,
            elapsed_ms=result.elapsed_ms,
        )
        return result

    async def get_processing_status(self) -> ProcessingStatus:
        """Queue statistics across all workers plus this scheduler's flags."""
        async with self._session_factory() as session:
            counts = await self._job_repository_factory(session).count_by_status()
            await session.commit()
        return ProcessingStatus(
            is_running=self.is_running,
            is_paused=self._paused,
            queue_length=counts.get("pending", 0),
            active_jobs=counts.get("processing", 0),
            completed_jobs=counts.get("completed", 0),
            failed_jobs=counts.get("error", 0),
            max_concurrency=self._max_concurrency,
        )

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            executed = 0
            if not self._paused:
                try:
                    executed = await self.run_once()
                except (TransientStoreError, SQLAlchemyError) as exc:
                    logger.error("Job queue poll failed", error=str(exc))
            if executed == 0:
                await self._idle()

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
        except asyncio.TimeoutError:
            pass

    async def _dispatch(self, job: Any) -> int:
        async with self._semaphore:
            if self._paused or self._stop_event.is_set():
                return 0
            # The fetched row may be stale; retry counters come from the claim
            claimed = await self.claim(job.id)
            if claimed is None:
                logger.debug("Job claimed by another worker or not yet due", job_id=str(job.id))
                return 0
            self._active += 1
            try:
                await self.execute_job(claimed)
            finally:
                self._active -= 1
            return 1

    async def _handle_failure(self, job: Any, exc: Exception) -> None:
        message = exc.message if isinstance(exc, PsychosocialError) else (str(exc) or type(exc).__name__)
        retryable = self._retry_non_transient or is_retryable(exc)
        now = self._clock()
        log = logger.bind(
            job_id=str(job.id),
            assessment_response_id=str(job.assessment_response_id),
            error=message,
            error_type=type(exc).__name__,
        )

        async with self._session_factory() as session:
            repository = self._job_repository_factory(session)
            if retryable and job.retry_count < job.max_retries:
                retry_count = job.retry_count + 1
                delay = self.retry_delay(retry_count)
                scheduled = await repository.schedule_retry(
                    job.id, retry_count, now + timedelta(seconds=delay), message
                )
                if scheduled:
                    log.warning("Job failed; retry scheduled", retry_count=retry_count, delay_seconds=delay)
                else:
                    log.warning("Job state changed before the retry was recorded", retry_count=retry_count)
            else:
                await repository.mark_error(job.id, now, message)
                log.error(
                    "Job failed permanently",
                    retry_count=job.retry_count,
                    max_retries=job.max_retries,
                    retryable=retryable,
                )
            await session.commit()


async def enqueue_completed_assessment(
    pipeline: ProcessingPipeline,
    job_repository: IProcessingJobRepository,
    assessment_response_id: uuid.UUID,
    max_retries: int = 3,
) -> Any | None:
    """Queue processing for a newly completed assessment.

    The job priority follows the assessment's headline risk level, so
    critical assessments are processed first.

    Args:
        pipeline: Pipeline used for context, settings, and headline level.
        job_repository: Job queue persistence.
        assessment_response_id: The completed assessment.
        max_retries: Retry budget of the new job.

    Returns:
        The new ProcessingJob, or None when the company disabled auto processing.

    Raises:
        NotFoundError: If the assessment or employee does not exist.
    """
    context = await pipeline.load_context(assessment_response_id)
    settings = await pipeline.load_automation_settings(context.company_id)
    if not settings.auto_process_enabled:
        logger.info(
            "Automatic processing disabled; job not queued",
            assessment_response_id=str(assessment_response_id),
            company_id=str(context.company_id),
        )
        return None

    level = await pipeline.headline_risk_level(context)
    job = await job_repository.enqueue(
        assessment_response_id,
        context.company_id,
        priority_for_level(level),
        max_retries,
        {"trigger": "assessment_completed", "headline_risk_level": level.value},
    )
    logger.info(
        "Processing job queued",
        job_id=str(job.id),
        assessment_response_id=str(assessment_response_id),
        priority=job.priority,
    )
    return job
