"""FastAPI router for the psychosocial automation API.

Routes are thin: they validate inputs, delegate to the automation gate, the
processing pipeline, or the job scheduler, and serialize the results.

API prefix: /api/v1/psychosocial
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from psychosocial_automation.adapters.repositories import ProcessingJobRepository
from psychosocial_automation.adapters.wiring import build_collective_analyzer, build_pipeline
from psychosocial_automation.api.schemas import (
    AssessmentCompletedResponse,
    AutomatedActionPlanResponse,
    CollectiveActionPlanResponse,
    CollectiveRiskResponse,
    EnqueueJobRequest,
    GenerateActionPlanRequest,
    ProcessingJobResponse,
    ProcessingResultResponse,
    ProcessingStatusResponse,
    RequiresActionPlanResponse,
)
from psychosocial_automation.core.automation import ActionPlanAutomation
from psychosocial_automation.core.collective import CollectiveRiskAnalyzer
from psychosocial_automation.core.domain import CollectiveRiskAnalysis, ProcessingStatus, TriggerMode
from psychosocial_automation.core.errors import NotFoundError
from psychosocial_automation.core.pipeline import ProcessingPipeline
from psychosocial_automation.core.scheduler import JobScheduler, enqueue_completed_assessment
from psychosocial_automation.database import get_db_session
from psychosocial_automation.settings import Settings

router = APIRouter(prefix="/psychosocial", tags=["Psychosocial Risk Automation"])


# ---------------------------------------------------------------------------
# Dependency factories
# ---------------------------------------------------------------------------


def get_settings(request: Request) -> Settings:
    """Return the settings the application was created with."""
    return request.app.state.settings


def get_scheduler(request: Request) -> JobScheduler:
    """Return the application's JobScheduler handle."""
    return request.app.state.scheduler


def get_pipeline(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> ProcessingPipeline:
    """Build the processing pipeline bound to the request session."""
    return build_pipeline(session, settings)


def get_automation(pipeline: ProcessingPipeline = Depends(get_pipeline)) -> ActionPlanAutomation:
    """Build the automation gate with injected dependencies."""
    return ActionPlanAutomation(pipeline)


def get_job_repository(session: AsyncSession = Depends(get_db_session)) -> ProcessingJobRepository:
    """Build the job repository bound to the request session."""
    return ProcessingJobRepository(session)


def get_collective_analyzer(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> CollectiveRiskAnalyzer:
    """Build the sector-level analyzer bound to the request session."""
    return build_collective_analyzer(session, settings)


# ---------------------------------------------------------------------------
# Action plan endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/assessments/{assessment_response_id}/action-plan",
    response_model=AutomatedActionPlanResponse,
)
async def generate_action_plan(
    assessment_response_id: uuid.UUID,
    body: Annotated[GenerateActionPlanRequest | None, Body()] = None,
    session: AsyncSession = Depends(get_db_session),
    automation: ActionPlanAutomation = Depends(get_automation),
) -> AutomatedActionPlanResponse:
    """Manual "generate plan now" action.

    Always answers 200 with the gate's structured result; a failed run is
    rolled back and reported through success=false and the message.
    """
    company_id = body.company_id if body is not None else None
    result = await automation.generate_manual_action_plan(assessment_response_id, company_id)
    if not result.success:
        await session.rollback()
    return AutomatedActionPlanResponse(
        success=result.success,
        plan_generated=result.plan_generated,
        risk_level=result.risk_level,
        message=result.message,
        triggered_by=result.triggered_by.value,
        action_plan_id=result.action_plan_id,
        has_existing=result.has_existing,
    )


@router.get(
    "/assessments/{assessment_response_id}/action-plan/requirement",
    response_model=RequiresActionPlanResponse,
)
async def get_action_plan_requirement(
    assessment_response_id: uuid.UUID,
    automation: ActionPlanAutomation = Depends(get_automation),
) -> RequiresActionPlanResponse:
    """Whether the assessment requires a plan and whether one already exists."""
    answer = await automation.check_if_requires_action_plan(assessment_response_id)
    return RequiresActionPlanResponse(
        requires=answer.requires,
        risk_level=answer.risk_level,
        has_existing=answer.has_existing,
    )


# ---------------------------------------------------------------------------
# Collective analysis endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/companies/{company_id}/collective-risk",
    response_model=list[CollectiveRiskResponse],
)
async def get_collective_risk(
    company_id: uuid.UUID,
    analyzer: CollectiveRiskAnalyzer = Depends(get_collective_analyzer),
) -> list[CollectiveRiskResponse]:
    """Per-sector risk distribution, most severe sectors first."""
    analyses = await analyzer.analyze_sectors(company_id)
    return [_collective_response(analysis) for analysis in analyses]


@router.post(
    "/companies/{company_id}/collective-action-plans",
    response_model=CollectiveActionPlanResponse,
)
async def generate_collective_action_plans(
    company_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
    analyzer: CollectiveRiskAnalyzer = Depends(get_collective_analyzer),
) -> CollectiveActionPlanResponse:
    """Analyse every sector and create the missing collective plans.

    Answers 200 with success=false when the analysis could not be read.
    """
    result = await analyzer.analyze_and_generate_action_plans(company_id)
    if not result.success:
        await session.rollback()
    return CollectiveActionPlanResponse(
        success=result.success,
        analysis_performed=result.analysis_performed,
        action_plans_generated=result.action_plans_generated,
        collective_risks=[_collective_response(analysis) for analysis in result.collective_risks],
        message=result.message,
        action_plan_ids=result.action_plan_ids,
    )


# ---------------------------------------------------------------------------
# Processing endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/assessments/{assessment_response_id}/completed",
    response_model=AssessmentCompletedResponse,
    status_code=202,
)
async def assessment_completed(
    assessment_response_id: uuid.UUID,
    pipeline: ProcessingPipeline = Depends(get_pipeline),
    jobs: ProcessingJobRepository = Depends(get_job_repository),
    settings: Settings = Depends(get_settings),
) -> AssessmentCompletedResponse:
    """Assessment-completed trigger: queue background processing when enabled."""
    job = await enqueue_completed_assessment(
        pipeline, jobs, assessment_response_id, max_retries=settings.job_default_max_retries
    )
    if job is None:
        return AssessmentCompletedResponse(
            queued=False,
            message="Processamento automático desabilitado para a empresa",
        )
    return AssessmentCompletedResponse(
        queued=True,
        job=ProcessingJobResponse.model_validate(job, from_attributes=True),
        message=f"Processamento agendado com prioridade {job.priority}",
    )


@router.post(
    "/assessments/{assessment_response_id}/process",
    response_model=ProcessingResultResponse,
)
async def process_assessment(
    assessment_response_id: uuid.UUID,
    pipeline: ProcessingPipeline = Depends(get_pipeline),
) -> ProcessingResultResponse:
    """Run the full pipeline synchronously for one assessment."""
    result = await pipeline.process_assessment(assessment_response_id, trigger_mode=TriggerMode.MANUAL)
    return ProcessingResultResponse(
        success=result.success,
        assessment_response_id=result.assessment_response_id,
        message=result.message,
        job_id=result.job_id,
        analyses_created=result.analyses_created,
        plans_created=result.plans_created,
        notifications_created=result.notifications_created,
        highest_risk_level=result.highest_risk_level.value if result.highest_risk_level else None,
        elapsed_ms=result.elapsed_ms,
    )


@router.post("/jobs", response_model=ProcessingJobResponse, status_code=201)
async def enqueue_job(
    body: EnqueueJobRequest,
    jobs: ProcessingJobRepository = Depends(get_job_repository),
    settings: Settings = Depends(get_settings),
) -> ProcessingJobResponse:
    """Queue an assessment for background processing."""
    job = await jobs.enqueue(
        body.assessment_response_id,
        body.company_id,
        body.priority,
        body.max_retries if body.max_retries is not None else settings.job_default_max_retries,
        body.job_metadata,
    )
    return ProcessingJobResponse.model_validate(job, from_attributes=True)


@router.get("/jobs/{job_id}", response_model=ProcessingJobResponse)
async def get_job(
    job_id: uuid.UUID,
    jobs: ProcessingJobRepository = Depends(get_job_repository),
) -> ProcessingJobResponse:
    """Return the current state of a processing job."""
    job = await jobs.get_by_id(job_id)
    if job is None:
        raise NotFoundError(f"Processing job {job_id} not found.")
    return ProcessingJobResponse.model_validate(job, from_attributes=True)


@router.get("/processing/status", response_model=ProcessingStatusResponse)
async def get_processing_status(
    scheduler: JobScheduler = Depends(get_scheduler),
) -> ProcessingStatusResponse:
    """Queue statistics and scheduler flags."""
    return _status_response(await scheduler.get_processing_status())


@router.post("/processing/pause", response_model=ProcessingStatusResponse)
async def pause_processing(
    scheduler: JobScheduler = Depends(get_scheduler),
) -> ProcessingStatusResponse:
    """Stop claiming new jobs; queued jobs are kept."""
    scheduler.pause()
    return _status_response(await scheduler.get_processing_status())


@router.post("/processing/resume", response_model=ProcessingStatusResponse)
async def resume_processing(
    scheduler: JobScheduler = Depends(get_scheduler),
) -> ProcessingStatusResponse:
    """Resume claiming jobs."""
    scheduler.resume()
    return _status_response(await scheduler.get_processing_status())


def _status_response(status: ProcessingStatus) -> ProcessingStatusResponse:
    return ProcessingStatusResponse(
        is_running=status.is_running,
        is_paused=status.is_paused,
        queue_length=status.queue_length,
        active_jobs=status.active_jobs,
        completed_jobs=status.completed_jobs,
        failed_jobs=status.failed_jobs,
        max_concurrency=status.max_concurrency,
    )


def _collective_response(analysis: CollectiveRiskAnalysis) -> CollectiveRiskResponse:
    return CollectiveRiskResponse(
        sector_id=analysis.sector_id,
        sector_name=analysis.sector_name,
        total_employees=analysis.total_employees,
        risk_distribution=analysis.risk_distribution,
        risk_percentages=analysis.risk_percentages,
        collective_risk_level=analysis.collective_risk_level.value,
        requires_action_plan=analysis.requires_action_plan,
        intervention_priority=analysis.intervention_priority.value,
    )
