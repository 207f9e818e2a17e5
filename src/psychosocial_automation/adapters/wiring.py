"""Composition helpers that bind repositories to a session.

Shared by the HTTP dependency factories, the embedded scheduler, and the
standalone worker so every entry point runs the same pipeline.
"""

from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from psychosocial_automation.adapters.notifications import DatabaseNotificationDispatcher
from psychosocial_automation.adapters.repositories import (
    ActionPlanRepository,
    AssessmentRepository,
    AutomationConfigRepository,
    CriteriaRepository,
    NotificationRepository,
    ProcessingJobRepository,
    ProcessingLogRepository,
    RiskAnalysisRepository,
    TemplateRepository,
)
from psychosocial_automation.core.action_planner import ActionPlanGenerator
from psychosocial_automation.core.calculation import RiskCalculationEngine
from psychosocial_automation.core.collective import CollectiveRiskAnalyzer
from psychosocial_automation.core.pipeline import ProcessingPipeline
from psychosocial_automation.core.scheduler import JobScheduler
from psychosocial_automation.settings import Settings


def build_pipeline(session: AsyncSession, settings: Settings) -> ProcessingPipeline:
    """Build a ProcessingPipeline whose repositories share one session.

    Args:
        session: Unit-of-work session.
        settings: Service settings (scale, gate, plan cost parameters).

    Returns:
        Ready-to-use pipeline.
    """
    assessments = AssessmentRepository(session)
    criteria = CriteriaRepository(session)
    templates = TemplateRepository(session)
    return ProcessingPipeline(
        assessment_repository=assessments,
        criteria_provider=criteria,
        config_repository=AutomationConfigRepository(session),
        analysis_repository=RiskAnalysisRepository(session),
        plan_repository=ActionPlanRepository(session),
        log_repository=ProcessingLogRepository(session),
        notification_dispatcher=DatabaseNotificationDispatcher(NotificationRepository(session)),
        calculation_engine=RiskCalculationEngine(
            assessments,
            criteria,
            templates,
            scale_min=settings.answer_scale_min,
            scale_max=settings.answer_scale_max,
            factor_gate=settings.contributing_factor_gate,
        ),
        plan_generator=ActionPlanGenerator(
            templates,
            hourly_cost=settings.plan_hourly_cost,
            low_confidence_threshold=settings.plan_low_confidence_threshold,
        ),
        today=date.today,
    )


def build_scheduler(settings: Settings, session_factory: async_sessionmaker[AsyncSession]) -> JobScheduler:
    """Build the JobScheduler for this process from settings."""
    return JobScheduler.from_settings(
        settings,
        session_factory,
        job_repository_factory=ProcessingJobRepository,
        pipeline_factory=lambda session: build_pipeline(session, settings),
    )


def build_collective_analyzer(session: AsyncSession, settings: Settings) -> CollectiveRiskAnalyzer:
    """Build the sector-level analyzer bound to a session."""
    return CollectiveRiskAnalyzer(
        RiskAnalysisRepository(session),
        ActionPlanRepository(session),
        hourly_cost=settings.plan_hourly_cost,
        today=date.today,
    )
