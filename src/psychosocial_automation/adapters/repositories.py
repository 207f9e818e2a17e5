"""SQLAlchemy repository implementations for the psychosocial automation service.

Each repository wraps one AsyncSession and implements an interface from
core/interfaces.py. Store failures surface as TransientStoreError so the
scheduler can tell them apart from not-found and validation failures.
Writes that must not poison the surrounding unit of work (per-category
analyses, plans, notifications) run inside a SAVEPOINT.
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from psychosocial_automation.core.criteria import RiskThresholds
from psychosocial_automation.core.domain import (
    AssessmentContext,
    CalculationResult,
    GeneratedActionPlan,
    JobPriority,
    JobStatus,
    SectorExposure,
)
from psychosocial_automation.core.errors import DuplicateActionPlanError, TransientStoreError
from psychosocial_automation.core.models import (
    ActionPlan,
    ActionPlanItem,
    ActionPlanTemplate,
    AssessmentResponse,
    AutomationConfig,
    CategoryWeight,
    CriteriaSettings,
    Notification,
    ProcessingJob,
    ProcessingLog,
    RiskAnalysis,
    Sector,
    SectorRiskProfile,
)
from psychosocial_automation.core.taxonomy import TAXONOMY_VERSION
from psychosocial_automation.observability import get_logger

logger = get_logger(__name__)

_PRIORITY_ORDER = case(
    {priority.value: priority.rank for priority in JobPriority},
    value=ProcessingJob.priority,
    else_=0,
)

# Plan statuses that block a new collective plan for the same sector and level
OPEN_PLAN_STATUSES: tuple[str, ...] = ("draft", "in_progress")


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Translate SQLAlchemy failures into TransientStoreError.

    Args:
        operation: Short description used in the error message.

    Raises:
        TransientStoreError: If the wrapped block raises SQLAlchemyError.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Store operation failed", operation=operation, error=str(exc))
        raise TransientStoreError(f"Store failure during {operation}: {exc}") from exc


class BaseRepository:
    """Holds the session shared by every repository of one unit of work."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialise with async database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session


class AssessmentRepository(BaseRepository):
    """Reads completed assessments with their employee and sector."""

    async def get_context(self, assessment_response_id: uuid.UUID) -> AssessmentContext | None:
        """Load an assessment joined with employee and sector.

        Args:
            assessment_response_id: Assessment UUID.

        Returns:
            AssessmentContext, or None if the assessment or its employee is missing.
        """
        with store_errors("assessment lookup"):
            result = await self.session.execute(
                select(AssessmentResponse)
                .where(AssessmentResponse.id == assessment_response_id)
                .execution_options(populate_existing=True)
            )
        assessment = result.unique().scalar_one_or_none()
        if assessment is None or assessment.employee is None:
            return None

        employee = assessment.employee
        return AssessmentContext(
            assessment_response_id=assessment.id,
            company_id=employee.company_id,
            employee_id=employee.id,
            employee_name=employee.name,
            sector_id=employee.sector_id,
            role_id=employee.role_id,
            sector_type=employee.sector.sector_type if employee.sector is not None else None,
            raw_score=float(assessment.raw_score or 0.0),
            response_data=assessment.response_data,
        )


class CriteriaRepository(BaseRepository):
    """Category weights, sector profiles, and unified headline criteria."""

    async def get_category_weights(self, company_id: uuid.UUID) -> dict[str, CategoryWeight]:
        """Return the company's CategoryWeight rows keyed by category."""
        with store_errors("category weight lookup"):
            result = await self.session.execute(
                select(CategoryWeight).where(CategoryWeight.company_id == company_id)
            )
        return {row.category: row for row in result.scalars().all()}

    async def get_sector_profile(
        self, company_id: uuid.UUID, sector_id: uuid.UUID | None
    ) -> SectorRiskProfile | None:
        """Return the SectorRiskProfile for a company sector, or None."""
        if sector_id is None:
            return None
        with store_errors("sector profile lookup"):
            result = await self.session.execute(
                select(SectorRiskProfile).where(
                    SectorRiskProfile.company_id == company_id,
                    SectorRiskProfile.sector_id == sector_id,
                )
            )
        return result.scalar_one_or_none()

    async def get_unified_thresholds(self, company_id: uuid.UUID) -> RiskThresholds:
        """Return the company's headline thresholds.

        Falls back to the global row (company_id NULL), then to the defaults.
        """
        with store_errors("criteria lookup"):
            result = await self.session.execute(
                select(CriteriaSettings)
                .where(
                    or_(
                        CriteriaSettings.company_id == company_id,
                        CriteriaSettings.company_id.is_(None),
                    )
                )
                .order_by(CriteriaSettings.company_id.is_(None))
                .limit(1)
            )
        return RiskThresholds.from_row(result.scalar_one_or_none())


class TemplateRepository(BaseRepository):
    """Reads the NR-01 action template catalog."""

    async def list_templates(self, category: str, exposure_level: str) -> list[ActionPlanTemplate]:
        """Return templates for a (category, level), mandatory ones first."""
        with store_errors("template lookup"):
            result = await self.session.execute(
                select(ActionPlanTemplate)
                .where(
                    ActionPlanTemplate.category == category,
                    ActionPlanTemplate.exposure_level == exposure_level,
                )
                .order_by(ActionPlanTemplate.is_mandatory.desc(), ActionPlanTemplate.created_at)
            )
        return list(result.scalars().all())


class AutomationConfigRepository(BaseRepository):
    """Reads per-company automation switches."""

    async def get_by_company(self, company_id: uuid.UUID) -> AutomationConfig | None:
        """Return the AutomationConfig for a company, or None."""
        with store_errors("automation config lookup"):
            result = await self.session.execute(
                select(AutomationConfig).where(AutomationConfig.company_id == company_id)
            )
        return result.scalar_one_or_none()


class RiskAnalysisRepository(BaseRepository):
    """Append-only RiskAnalysis persistence."""

    async def create(
        self,
        context: AssessmentContext,
        result: CalculationResult,
        processing_job_id: uuid.UUID | None,
        evaluation_date: date,
        next_evaluation_date: date,
    ) -> RiskAnalysis:
        """Insert one category analysis inside its own savepoint.

        Args:
            context: Assessment context (company, sector, role).
            result: Category calculation result.
            processing_job_id: Job writing the row, if any.
            evaluation_date: Date of this evaluation.
            next_evaluation_date: Scheduled re-evaluation date.

        Returns:
            The persisted RiskAnalysis.
        """
        analysis = RiskAnalysis(
            assessment_response_id=context.assessment_response_id,
            processing_job_id=processing_job_id,
            company_id=context.company_id,
            sector_id=context.sector_id,
            role_id=context.role_id,
            category=result.category,
            raw_score=result.raw_score,
            weighted_score=result.weighted_score,
            risk_score=result.sector_adjusted_score,
            exposure_level=result.risk_level.value,
            confidence_level=result.confidence_level,
            contributing_factors=list(result.contributing_factors),
            recommended_actions=list(result.recommended_actions),
            taxonomy_version=TAXONOMY_VERSION,
            evaluation_date=evaluation_date,
            next_evaluation_date=next_evaluation_date,
        )
        with store_errors(f"risk analysis insert ({result.category})"):
            async with self.session.begin_nested():
                self.session.add(analysis)
                await self.session.flush()
        return analysis

    async def list_categories_for_job(self, processing_job_id: uuid.UUID) -> set[str]:
        """Return the categories a job has already written."""
        with store_errors("risk analysis lookup"):
            result = await self.session.execute(
                select(RiskAnalysis.category).where(RiskAnalysis.processing_job_id == processing_job_id)
            )
        return set(result.scalars().all())

    async def list_by_assessment(self, assessment_response_id: uuid.UUID) -> list[RiskAnalysis]:
        """Return all analyses of an assessment, newest first."""
        with store_errors("risk analysis lookup"):
            result = await self.session.execute(
                select(RiskAnalysis)
                .where(RiskAnalysis.assessment_response_id == assessment_response_id)
                .order_by(RiskAnalysis.created_at.desc())
            )
        return list(result.scalars().all())

    async def list_sector_exposures(self, company_id: uuid.UUID) -> list[SectorExposure]:
        """Return the company's analyses that belong to a sector and a known employee.

        Args:
            company_id: Owning company.

        Returns:
            One SectorExposure per analysis row.
        """
        with store_errors("sector exposure lookup"):
            result = await self.session.execute(
                select(
                    RiskAnalysis.sector_id,
                    Sector.name.label("sector_name"),
                    AssessmentResponse.employee_id,
                    RiskAnalysis.assessment_response_id,
                    RiskAnalysis.exposure_level,
                    AssessmentResponse.completed_at,
                )
                .join(AssessmentResponse, AssessmentResponse.id == RiskAnalysis.assessment_response_id)
                .join(Sector, Sector.id == RiskAnalysis.sector_id)
                .where(
                    RiskAnalysis.company_id == company_id,
                    AssessmentResponse.employee_id.is_not(None),
                )
            )
        return [
            SectorExposure(
                sector_id=row.sector_id,
                sector_name=row.sector_name,
                employee_id=row.employee_id,
                assessment_response_id=row.assessment_response_id,
                exposure_level=row.exposure_level,
                completed_at=row.completed_at,
            )
            for row in result.all()
        ]


class ActionPlanRepository(BaseRepository):
    """ActionPlan + ActionPlanItem persistence."""

    async def get_by_assessment(self, assessment_response_id: uuid.UUID) -> ActionPlan | None:
        """Return the primary plan tied to an assessment, or None."""
        with store_errors("action plan lookup"):
            result = await self.session.execute(
                select(ActionPlan).where(ActionPlan.assessment_response_id == assessment_response_id)
            )
        return result.scalar_one_or_none()

    async def find_open_collective_plan(
        self, company_id: uuid.UUID, sector_id: uuid.UUID, risk_level: str
    ) -> ActionPlan | None:
        """Return a draft or in-progress collective plan for a sector at a level, or None."""
        with store_errors("collective plan lookup"):
            result = await self.session.execute(
                select(ActionPlan)
                .where(
                    ActionPlan.company_id == company_id,
                    ActionPlan.sector_id == sector_id,
                    ActionPlan.is_collective.is_(True),
                    ActionPlan.risk_level == risk_level,
                    ActionPlan.status.in_(OPEN_PLAN_STATUSES),
                )
                .order_by(ActionPlan.created_at.desc())
                .limit(1)
            )
        return result.scalars().first()

    async def list_children(self, parent_plan_id: uuid.UUID) -> list[ActionPlan]:
        """Return the category plans linked to a primary plan."""
        with store_errors("action plan lookup"):
            result = await self.session.execute(
                select(ActionPlan)
                .where(ActionPlan.parent_plan_id == parent_plan_id)
                .order_by(ActionPlan.created_at)
            )
        return list(result.scalars().all())

    async def create_with_items(
        self,
        company_id: uuid.UUID,
        plan: GeneratedActionPlan,
        start_date: date,
        assessment_response_id: uuid.UUID | None = None,
        parent_plan_id: uuid.UUID | None = None,
        sector_id: uuid.UUID | None = None,
    ) -> ActionPlan:
        """Insert a plan and its ordered items inside a savepoint.

        Args:
            company_id: Owning company.
            plan: Generated plan.
            start_date: Plan start; due dates are offsets from it.
            assessment_response_id: Set only on an assessment's primary plan.
            parent_plan_id: Primary plan of a multi-category assessment.
            sector_id: Employee sector.

        Returns:
            The persisted ActionPlan.

        Raises:
            DuplicateActionPlanError: If the assessment already has a plan.
            TransientStoreError: On any other store failure.
        """
        row = ActionPlan(
            company_id=company_id,
            assessment_response_id=assessment_response_id,
            parent_plan_id=parent_plan_id,
            sector_id=sector_id,
            title=plan.title,
            description=plan.description,
            status="draft",
            priority=plan.priority,
            risk_level=plan.risk_level.value,
            category=plan.category,
            is_integrated=plan.is_integrated,
            is_collective=plan.is_collective,
            total_estimated_days=plan.total_estimated_days,
            total_estimated_hours=plan.total_estimated_hours,
            estimated_cost=plan.estimated_cost,
            success_metrics=list(plan.success_metrics),
            compliance_requirements=list(plan.compliance_requirements),
            monitoring_frequency_days=plan.monitoring_frequency_days,
            start_date=start_date,
            due_date=start_date + timedelta(days=plan.total_estimated_days),
            items=[
                ActionPlanItem(
                    position=position,
                    title=action.title,
                    description=action.description,
                    responsible_role=action.responsible_role,
                    estimated_hours=action.estimated_hours,
                    timeline_days=action.timeline_days,
                    is_mandatory=action.mandatory,
                    dependencies=list(action.dependencies),
                    status="pending",
                    due_date=start_date + timedelta(days=action.timeline_days),
                )
                for position, action in enumerate(plan.actions)
            ],
        )
        try:
            async with self.session.begin_nested():
                self.session.add(row)
                await self.session.flush()
        except IntegrityError as exc:
            if assessment_response_id is not None:
                raise DuplicateActionPlanError(
                    f"An action plan already exists for assessment response {assessment_response_id}."
                ) from exc
            raise TransientStoreError(f"Store failure during action plan insert: {exc}") from exc
        except SQLAlchemyError as exc:
            raise TransientStoreError(f"Store failure during action plan insert: {exc}") from exc
        return row


class ProcessingLogRepository(BaseRepository):
    """Audit log persistence."""

    async def create(
        self,
        assessment_response_id: uuid.UUID,
        company_id: uuid.UUID,
        processing_stage: str,
        status: str,
        details: dict[str, Any],
    ) -> ProcessingLog:
        """Insert one audit row."""
        entry = ProcessingLog(
            assessment_response_id=assessment_response_id,
            company_id=company_id,
            processing_stage=processing_stage,
            status=status,
            details=details,
        )
        with store_errors("processing log insert"):
            self.session.add(entry)
            await self.session.flush()
        return entry

    async def list_by_assessment(self, assessment_response_id: uuid.UUID) -> list[ProcessingLog]:
        """Return the audit trail of an assessment, oldest first."""
        with store_errors("processing log lookup"):
            result = await self.session.execute(
                select(ProcessingLog)
                .where(ProcessingLog.assessment_response_id == assessment_response_id)
                .order_by(ProcessingLog.created_at)
            )
        return list(result.scalars().all())


class NotificationRepository(BaseRepository):
    """Notification record persistence."""

    async def exists(
        self,
        company_id: uuid.UUID,
        notification_type: str,
        assessment_response_id: uuid.UUID,
    ) -> bool:
        """Return True when the trigger already produced a notification."""
        with store_errors("notification lookup"):
            result = await self.session.execute(
                select(func.count(Notification.id)).where(
                    Notification.company_id == company_id,
                    Notification.notification_type == notification_type,
                    Notification.assessment_response_id == assessment_response_id,
                )
            )
        return result.scalar_one() > 0

    async def create(
        self,
        company_id: uuid.UUID,
        assessment_response_id: uuid.UUID,
        notification_type: str,
        title: str,
        message: str,
        priority: str,
        recipients: list[str],
    ) -> Notification:
        """Insert a pending notification inside a savepoint."""
        notification = Notification(
            company_id=company_id,
            assessment_response_id=assessment_response_id,
            notification_type=notification_type,
            title=title,
            message=message,
            priority=priority,
            recipients=recipients,
            status="pending",
        )
        with store_errors("notification insert"):
            async with self.session.begin_nested():
                self.session.add(notification)
                await self.session.flush()
        return notification


class ProcessingJobRepository(BaseRepository):
    """Durable job queue. Every state change is a conditional UPDATE."""

    async def enqueue(
        self,
        assessment_response_id: uuid.UUID,
        company_id: uuid.UUID,
        priority: str,
        max_retries: int,
        job_metadata: dict[str, Any] | None = None,
    ) -> ProcessingJob:
        """Insert a pending job.

        Args:
            assessment_response_id: Assessment to process.
            company_id: Owning company.
            priority: low, medium, high, or critical.
            max_retries: Retry budget.
            job_metadata: Free-form context stored with the job.

        Returns:
            The new ProcessingJob.
        """
        job = ProcessingJob(
            assessment_response_id=assessment_response_id,
            company_id=company_id,
            status=JobStatus.PENDING.value,
            priority=JobPriority(priority).value,
            retry_count=0,
            max_retries=max_retries,
            job_metadata=job_metadata or {},
        )
        with store_errors("job enqueue"):
            self.session.add(job)
            await self.session.flush()
        return job

    async def get_by_id(self, job_id: uuid.UUID) -> ProcessingJob | None:
        """Return a job by id, or None."""
        with store_errors("job lookup"):
            return await self.session.get(ProcessingJob, job_id)

    async def fetch_due_pending(self, limit: int, now: datetime) -> list[ProcessingJob]:
        """Return due pending jobs: critical first, oldest first within a tier.

        Args:
            limit: Maximum number of jobs.
            now: Current time; jobs scheduled later are not due.

        Returns:
            Ordered pending jobs.
        """
        with store_errors("job fetch"):
            result = await self.session.execute(
                select(ProcessingJob)
                .where(
                    ProcessingJob.status == JobStatus.PENDING.value,
                    or_(ProcessingJob.scheduled_for.is_(None), ProcessingJob.scheduled_for <= now),
                )
                .order_by(_PRIORITY_ORDER.desc(), ProcessingJob.created_at.asc())
                .limit(limit)
            )
        return list(result.scalars().all())

    async def claim(self, job_id: uuid.UUID, now: datetime) -> bool:
        """Compare-and-swap pending → processing for a job that is due.

        A job whose retry backoff has not elapsed is not claimable, even by a
        worker holding an older snapshot of it.

        Returns:
            True only when this UPDATE matched the due pending row.
        """
        return await self._transition(
            job_id,
            JobStatus.PENDING,
            "job claim",
            or_(ProcessingJob.scheduled_for.is_(None), ProcessingJob.scheduled_for <= now),
            status=JobStatus.PROCESSING.value,
            started_at=now,
        )

    async def mark_completed(self, job_id: uuid.UUID, now: datetime, job_metadata: dict[str, Any]) -> bool:
        """Move a processing job to completed, recording its result summary."""
        with store_errors("job lookup"):
            result = await self.session.execute(
                select(ProcessingJob.job_metadata).where(ProcessingJob.id == job_id)
            )
        existing = result.scalar_one_or_none() or {}
        return await self._transition(
            job_id,
            JobStatus.PROCESSING,
            "job completion",
            status=JobStatus.COMPLETED.value,
            completed_at=now,
            error_message=None,
            job_metadata={**existing, "result": job_metadata},
        )

    async def schedule_retry(
        self, job_id: uuid.UUID, retry_count: int, scheduled_for: datetime, error_message: str
    ) -> bool:
        """Move a processing job back to pending with a deferred claim time.

        Only matches while the stored retry_count is the one just before
        retry_count, so a retry is never recorded twice for one attempt.
        """
        return await self._transition(
            job_id,
            JobStatus.PROCESSING,
            "job retry",
            ProcessingJob.retry_count == retry_count - 1,
            status=JobStatus.PENDING.value,
            retry_count=retry_count,
            scheduled_for=scheduled_for,
            started_at=None,
            error_message=error_message,
        )

    async def mark_error(self, job_id: uuid.UUID, now: datetime, error_message: str) -> bool:
        """Move a processing job to the terminal error state."""
        return await self._transition(
            job_id,
            JobStatus.PROCESSING,
            "job failure",
            status=JobStatus.ERROR.value,
            completed_at=now,
            error_message=error_message,
        )

    async def count_by_status(self) -> dict[str, int]:
        """Return the number of jobs per status."""
        with store_errors("job statistics"):
            result = await self.session.execute(
                select(ProcessingJob.status, func.count(ProcessingJob.id)).group_by(ProcessingJob.status)
            )
        return {status: count for status, count in result.all()}

    async def _transition(
        self,
        job_id: uuid.UUID,
        expected: JobStatus,
        operation: str,
        *criteria: Any,
        **values: Any,
    ) -> bool:
        with store_errors(operation):
            result = await self.session.execute(
                update(ProcessingJob)
                .where(ProcessingJob.id == job_id, ProcessingJob.status == expected.value, *criteria)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1
