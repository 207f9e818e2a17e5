"""Shared processing pipeline.

One implementation of "calculate, decide, deduplicate, generate, persist,
audit, notify" used by both the synchronous automation gate and the queued
background jobs. All writes go through the repositories bound to a single
session; committing is the caller's responsibility so that a job's artifacts
and its terminal status land in the same transaction.
"""

import time
import uuid
from collections.abc import Callable
from datetime import date, timedelta

from psychosocial_automation.core.action_planner import ActionPlanGenerator
from psychosocial_automation.core.calculation import RiskCalculationEngine
from psychosocial_automation.core.criteria import (
    classify_risk_level,
    monitoring_frequency_days,
    priority_for_level,
    requires_action_plan,
)
from psychosocial_automation.core.domain import (
    AssessmentContext,
    AutomationSettings,
    CalculationResult,
    GeneratedActionPlan,
    PlanOutcome,
    ProcessingResult,
    TriggerMode,
)
from psychosocial_automation.core.errors import (
    DuplicateActionPlanError,
    NotFoundError,
    NotificationError,
    TransientStoreError,
)
from psychosocial_automation.core.interfaces import (
    IActionPlanRepository,
    IAssessmentRepository,
    IAutomationConfigRepository,
    ICriteriaProvider,
    INotificationDispatcher,
    IProcessingLogRepository,
    IRiskAnalysisRepository,
)
from psychosocial_automation.core.taxonomy import CATEGORY_LABELS, RiskLevel
from psychosocial_automation.observability import get_logger

logger = get_logger(__name__)

STAGE_ANALYSIS_COMPLETED = "risk_analysis_completed"
STAGE_ACTION_PLAN_GENERATED = "action_plan_generated"

EVENT_HIGH_RISK_DETECTED = "high_risk_detected"
EVENT_ACTION_PLAN_GENERATED = "action_plan_generated"


class ProcessingPipeline:
    """Runs one assessment through calculation, plan generation, and notification.

    Args:
        assessment_repository: Assessment + employee context reads.
        criteria_provider: Unified headline thresholds.
        config_repository: Per-company automation switches.
        analysis_repository: RiskAnalysis writes.
        plan_repository: ActionPlan reads and writes.
        log_repository: Audit log writes.
        notification_dispatcher: Notification records keyed by trigger.
        calculation_engine: Per-category risk calculation.
        plan_generator: Action plan builder.
        today: Returns the current date; injectable for tests.
    """

    def __init__(
        self,
        assessment_repository: IAssessmentRepository,
        criteria_provider: ICriteriaProvider,
        config_repository: IAutomationConfigRepository,
        analysis_repository: IRiskAnalysisRepository,
        plan_repository: IActionPlanRepository,
        log_repository: IProcessingLogRepository,
        notification_dispatcher: INotificationDispatcher,
        calculation_engine: RiskCalculationEngine,
        plan_generator: ActionPlanGenerator,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._assessments = assessment_repository
        self._criteria = criteria_provider
        self._configs = config_repository
        self._analyses = analysis_repository
        self._plans = plan_repository
        self._logs = log_repository
        self._notifier = notification_dispatcher
        self._engine = calculation_engine
        self._generator = plan_generator
        self._today = today

    async def load_context(self, assessment_response_id: uuid.UUID) -> AssessmentContext:
        """Load assessment + employee context.

        Raises:
            NotFoundError: If the assessment or its employee does not exist.
        """
        context = await self._assessments.get_context(assessment_response_id)
        if context is None:
            raise NotFoundError(f"Assessment response {assessment_response_id} not found.")
        return context

    async def headline_risk_level(self, context: AssessmentContext) -> RiskLevel:
        """Classify the assessment's overall raw score against the unified criteria."""
        thresholds = await self._criteria.get_unified_thresholds(context.company_id)
        return classify_risk_level(context.raw_score, thresholds)

    async def load_automation_settings(self, company_id: uuid.UUID) -> AutomationSettings:
        """Return the company's automation switches (defaults when unset)."""
        return AutomationSettings.from_row(await self._configs.get_by_company(company_id))

    async def calculate(self, context: AssessmentContext) -> list[CalculationResult]:
        """Run the calculation engine over a loaded context."""
        return await self._engine.calculate(context)

    async def has_existing_plan(self, assessment_response_id: uuid.UUID) -> uuid.UUID | None:
        """Return the id of the plan already tied to an assessment, if any."""
        existing = await self._plans.get_by_assessment(assessment_response_id)
        return existing.id if existing is not None else None

    async def persist_analyses(
        self,
        context: AssessmentContext,
        results: list[CalculationResult],
        processing_job_id: uuid.UUID | None = None,
    ) -> int:
        """Write one RiskAnalysis per category.

        Categories already written by the same job (a retried run) are
        skipped. A failed insert is logged and does not stop the others.

        Returns:
            Number of rows written by this call.
        """
        already_written: set[str] = set()
        if processing_job_id is not None:
            already_written = await self._analyses.list_categories_for_job(processing_job_id)

        evaluation_date = self._today()
        created = 0
        for result in results:
            if result.category in already_written:
                continue
            next_evaluation = evaluation_date + timedelta(days=monitoring_frequency_days(result.risk_level))
            try:
                await self._analyses.create(
                    context,
                    result,
                    processing_job_id=processing_job_id,
                    evaluation_date=evaluation_date,
                    next_evaluation_date=next_evaluation,
                )
            except TransientStoreError as exc:
                logger.warning(
                    "Risk analysis insert failed",
                    assessment_response_id=str(context.assessment_response_id),
                    category=result.category,
                    error=exc.message,
                )
                continue
            created += 1
        return created

    async def ensure_action_plan(
        self,
        context: AssessmentContext,
        results: list[CalculationResult],
        trigger_mode: TriggerMode,
        settings: AutomationSettings,
        headline_level: RiskLevel | None = None,
    ) -> PlanOutcome:
        """Generate and persist the assessment's plans unless one already exists.

        The primary plan (integrated when several categories qualify, the
        single category plan otherwise) carries the assessment id, which is
        unique. Remaining category plans are linked to it via parent_plan_id.
        When only the headline level is actionable, the top-scoring category
        gets a plan at the headline level.

        Args:
            context: Loaded assessment context.
            results: Category results of the assessment.
            trigger_mode: automatic or manual, recorded in the audit log.
            settings: Company automation switches (notification flag).
            headline_level: Headline level that may force a plan.

        Returns:
            PlanOutcome describing what was created.
        """
        existing_id = await self.has_existing_plan(context.assessment_response_id)
        if existing_id is not None:
            return PlanOutcome(action_plan_id=existing_id, created=False)

        plans = await self._generator.generate_action_plans(results, sector_type=context.sector_type)
        if not plans and headline_level is not None and requires_action_plan(headline_level) and results:
            top = max(results, key=lambda result: result.sector_adjusted_score)
            plans = [
                await self._generator.generate_category_plan(
                    top, sector_type=context.sector_type, risk_level=headline_level
                )
            ]
        if not plans:
            return PlanOutcome(action_plan_id=None, created=False)

        primary = plans[-1] if plans[-1].is_integrated else plans[0]
        start_date = self._today()
        try:
            primary_row = await self._plans.create_with_items(
                context.company_id,
                primary,
                start_date,
                assessment_response_id=context.assessment_response_id,
                sector_id=context.sector_id,
            )
        except DuplicateActionPlanError:
            # Another worker created the plan between the check and the insert
            existing_id = await self.has_existing_plan(context.assessment_response_id)
            return PlanOutcome(action_plan_id=existing_id, created=False)

        for plan in plans:
            if plan is primary:
                continue
            await self._plans.create_with_items(
                context.company_id,
                plan,
                start_date,
                parent_plan_id=primary_row.id,
                sector_id=context.sector_id,
            )

        await self._logs.create(
            context.assessment_response_id,
            context.company_id,
            STAGE_ACTION_PLAN_GENERATED,
            "completed",
            {
                "action_plan_id": str(primary_row.id),
                "risk_level": primary.risk_level.value,
                "triggered_by": trigger_mode.value,
                "generated_automatically": trigger_mode == TriggerMode.AUTOMATIC,
                "plans_created": len(plans),
                "categories": [plan.category for plan in plans if plan.category],
            },
        )
        logger.info(
            "Action plan persisted",
            assessment_response_id=str(context.assessment_response_id),
            action_plan_id=str(primary_row.id),
            plans_created=len(plans),
            triggered_by=trigger_mode.value,
        )

        notifications = 0
        if settings.notification_enabled:
            sent = await self.notify(
                context,
                EVENT_ACTION_PLAN_GENERATED,
                title=f"Plano de ação gerado: {primary.title}",
                message=_plan_message(context, primary),
                priority=primary.priority,
                recipients=list(settings.notification_recipients),
            )
            notifications += int(sent)

        return PlanOutcome(
            action_plan_id=primary_row.id,
            created=True,
            plans_created=len(plans),
            notifications_created=notifications,
        )

    async def notify(
        self,
        context: AssessmentContext,
        event: str,
        title: str,
        message: str,
        priority: str,
        recipients: list[str],
    ) -> bool:
        """Best-effort notification. Failures are logged, never raised.

        Returns:
            True if a new notification record was created.
        """
        try:
            return await self._notifier.send(
                context.company_id,
                event,
                context.assessment_response_id,
                title=title,
                message=message,
                priority=priority,
                recipients=recipients,
            )
        except NotificationError as exc:
            logger.warning(
                "Notification dispatch failed",
                assessment_response_id=str(context.assessment_response_id),
                trigger_event=event,
                error=exc.message,
            )
            return False

    async def process_assessment(
        self,
        assessment_response_id: uuid.UUID,
        processing_job_id: uuid.UUID | None = None,
        trigger_mode: TriggerMode = TriggerMode.AUTOMATIC,
    ) -> ProcessingResult:
        """Run the full pipeline for one assessment.

        Args:
            assessment_response_id: Assessment to process.
            processing_job_id: Queued job driving the run, if any.
            trigger_mode: automatic (queue) or manual (HTTP trigger).

        Returns:
            ProcessingResult with the counts of created artifacts.

        Raises:
            NotFoundError: If the assessment or employee is missing.
            ValidationFailureError: If the response payload is malformed.
            TransientStoreError: If the store fails outside per-category inserts.
        """
        started = time.perf_counter()
        context = await self.load_context(assessment_response_id)
        results = await self.calculate(context)
        analyses_created = await self.persist_analyses(context, results, processing_job_id)
        highest = max((result.risk_level for result in results), key=lambda level: level.rank)

        await self._logs.create(
            context.assessment_response_id,
            context.company_id,
            STAGE_ANALYSIS_COMPLETED,
            "completed",
            {
                "processing_job_id": str(processing_job_id) if processing_job_id else None,
                "analyses_created": analyses_created,
                "levels": {result.category: result.risk_level.value for result in results},
            },
        )

        settings = await self.load_automation_settings(context.company_id)
        plans_created = 0
        notifications_created = 0
        if settings.auto_generate_action_plans:
            outcome = await self.ensure_action_plan(context, results, trigger_mode, settings)
            plans_created = outcome.plans_created
            notifications_created += outcome.notifications_created

        if settings.notification_enabled and requires_action_plan(highest):
            flagged = [
                CATEGORY_LABELS.get(result.category, result.category)
                for result in results
                if requires_action_plan(result.risk_level)
            ]
            sent = await self.notify(
                context,
                EVENT_HIGH_RISK_DETECTED,
                title=f"Risco psicossocial {highest.value} detectado",
                message=(
                    f"A avaliação de {context.employee_name} apresentou risco elevado em: "
                    f"{', '.join(flagged)}."
                ),
                priority=priority_for_level(highest),
                recipients=list(settings.notification_recipients),
            )
            notifications_created += int(sent)

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info(
            "Assessment processed",
            assessment_response_id=str(assessment_response_id),
            processing_job_id=str(processing_job_id) if processing_job_id else None,
            analyses_created=analyses_created,
            plans_created=plans_created,
            notifications_created=notifications_created,
            highest_risk_level=highest.value,
            elapsed_ms=elapsed_ms,
        )
        return ProcessingResult(
            success=True,
            assessment_response_id=assessment_response_id,
            message=f"Avaliação processada: risco máximo {highest.value}",
            job_id=processing_job_id,
            analyses_created=analyses_created,
            plans_created=plans_created,
            notifications_created=notifications_created,
            highest_risk_level=highest,
            elapsed_ms=elapsed_ms,
        )


def _plan_message(context: AssessmentContext, plan: GeneratedActionPlan) -> str:
    return (
        f"Plano com {len(plan.actions)} ações gerado para a avaliação de "
        f"{context.employee_name} (risco {plan.risk_level.value}, "
        f"prazo estimado de {plan.total_estimated_days} dias)."
    )
