"""Abstract interfaces (Protocol classes) for the psychosocial automation core.

Core components depend on these interfaces, not on the SQLAlchemy
implementations in adapters/repositories.py. This keeps the calculation
engine, plan generator, gate, and pipeline testable with plain mocks.
"""

import uuid
from datetime import date, datetime
from typing import Any, Protocol, runtime_checkable

from psychosocial_automation.core.criteria import RiskThresholds
from psychosocial_automation.core.domain import (
    AssessmentContext,
    CalculationResult,
    GeneratedActionPlan,
    SectorExposure,
)


@runtime_checkable
class IAssessmentRepository(Protocol):
    """Read access to completed assessment responses."""

    async def get_context(self, assessment_response_id: uuid.UUID) -> AssessmentContext | None:
        """Load an assessment joined with its employee and sector, or None."""
        ...


@runtime_checkable
class ICriteriaProvider(Protocol):
    """Read access to category weights, sector profiles, and unified criteria."""

    async def get_category_weights(self, company_id: uuid.UUID) -> dict[str, Any]:
        """Return CategoryWeight rows for a company keyed by category."""
        ...

    async def get_sector_profile(
        self, company_id: uuid.UUID, sector_id: uuid.UUID | None
    ) -> Any | None:
        """Return the SectorRiskProfile row for a company sector, or None."""
        ...

    async def get_unified_thresholds(self, company_id: uuid.UUID) -> RiskThresholds:
        """Return the headline thresholds for a company (defaults when unset)."""
        ...


@runtime_checkable
class ITemplateRepository(Protocol):
    """Read access to the NR-01 action template catalog."""

    async def list_templates(self, category: str, exposure_level: str) -> list[Any]:
        """Return templates for a (category, level), mandatory ones first."""
        ...


@runtime_checkable
class IAutomationConfigRepository(Protocol):
    """Read access to per-company automation switches."""

    async def get_by_company(self, company_id: uuid.UUID) -> Any | None:
        """Return the AutomationConfig row for a company, or None."""
        ...


@runtime_checkable
class IRiskAnalysisRepository(Protocol):
    """Append-only persistence for per-category risk analyses."""

    async def create(
        self,
        context: AssessmentContext,
        result: CalculationResult,
        processing_job_id: uuid.UUID | None,
        evaluation_date: date,
        next_evaluation_date: date,
    ) -> Any:
        """Insert one analysis row inside its own savepoint."""
        ...

    async def list_categories_for_job(self, processing_job_id: uuid.UUID) -> set[str]:
        """Return the categories already written by a job."""
        ...

    async def list_sector_exposures(self, company_id: uuid.UUID) -> list[SectorExposure]:
        """Return the company's analyses located in a sector, with their respondent."""
        ...


@runtime_checkable
class IActionPlanRepository(Protocol):
    """Persistence for generated action plans and their items."""

    async def get_by_assessment(self, assessment_response_id: uuid.UUID) -> Any | None:
        """Return the primary plan tied to an assessment, or None."""
        ...

    async def find_open_collective_plan(
        self, company_id: uuid.UUID, sector_id: uuid.UUID, risk_level: str
    ) -> Any | None:
        """Return a draft or in-progress collective plan for a sector at a level, or None."""
        ...

    async def create_with_items(
        self,
        company_id: uuid.UUID,
        plan: GeneratedActionPlan,
        start_date: date,
        assessment_response_id: uuid.UUID | None = None,
        parent_plan_id: uuid.UUID | None = None,
        sector_id: uuid.UUID | None = None,
    ) -> Any:
        """Insert a plan and its ordered items.

        Raises:
            DuplicateActionPlanError: If the assessment already has a plan.
        """
        ...


@runtime_checkable
class IProcessingLogRepository(Protocol):
    """Audit log persistence."""

    async def create(
        self,
        assessment_response_id: uuid.UUID,
        company_id: uuid.UUID,
        processing_stage: str,
        status: str,
        details: dict[str, Any],
    ) -> Any:
        """Insert one audit row."""
        ...


@runtime_checkable
class INotificationRepository(Protocol):
    """Persistence for notification records."""

    async def exists(
        self,
        company_id: uuid.UUID,
        notification_type: str,
        assessment_response_id: uuid.UUID,
    ) -> bool:
        """Return True when a notification for the trigger was already recorded."""
        ...

    async def create(
        self,
        company_id: uuid.UUID,
        assessment_response_id: uuid.UUID,
        notification_type: str,
        title: str,
        message: str,
        priority: str,
        recipients: list[str],
    ) -> Any:
        """Insert one notification record."""
        ...


@runtime_checkable
class INotificationDispatcher(Protocol):
    """Sends (records) a notification keyed by company, event, and assessment."""

    async def send(
        self,
        company_id: uuid.UUID,
        trigger_event: str,
        assessment_response_id: uuid.UUID,
        title: str,
        message: str,
        priority: str = "medium",
        recipients: list[str] | None = None,
    ) -> bool:
        """Dispatch a notification.

        Returns:
            True if a new notification was created, False if it already existed.

        Raises:
            NotificationError: If the notification could not be recorded.
        """
        ...


@runtime_checkable
class IProcessingJobRepository(Protocol):
    """Durable job queue persistence. All state changes are conditional updates."""

    async def enqueue(
        self,
        assessment_response_id: uuid.UUID,
        company_id: uuid.UUID,
        priority: str,
        max_retries: int,
        job_metadata: dict[str, Any] | None = None,
    ) -> Any:
        """Insert a pending job."""
        ...

    async def get_by_id(self, job_id: uuid.UUID) -> Any | None:
        """Return a job by id, or None."""
        ...

    async def fetch_due_pending(self, limit: int, now: datetime) -> list[Any]:
        """Return up to limit due pending jobs, priority first then oldest first."""
        ...

    async def claim(self, job_id: uuid.UUID, now: datetime) -> bool:
        """Atomically move a due job from pending to processing.

        Returns:
            True only for the single caller whose update matched the row.
            Jobs with scheduled_for in the future never match.
        """
        ...

    async def mark_completed(
        self, job_id: uuid.UUID, now: datetime, job_metadata: dict[str, Any]
    ) -> bool:
        """Move a processing job to completed."""
        ...

    async def schedule_retry(
        self, job_id: uuid.UUID, retry_count: int, scheduled_for: datetime, error_message: str
    ) -> bool:
        """Move a processing job back to pending with a deferred claim time.

        Matches only when the stored retry_count equals retry_count - 1.
        """
        ...

    async def mark_error(self, job_id: uuid.UUID, now: datetime, error_message: str) -> bool:
        """Move a processing job to the terminal error state."""
        ...

    async def count_by_status(self) -> dict[str, int]:
        """Return the number of jobs in each status."""
        ...
