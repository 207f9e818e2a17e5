"""Pydantic request/response models for the psychosocial automation API.

All API inputs and outputs are typed Pydantic models, never raw dicts.
"""

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

JobPriorityLiteral = Literal["low", "medium", "high", "critical"]


# ---------------------------------------------------------------------------
# Action plan schemas
# ---------------------------------------------------------------------------


class GenerateActionPlanRequest(BaseModel):
    """Optional body for the manual "generate now" action."""

    company_id: uuid.UUID | None = Field(
        None,
        description="Expected owning company; a mismatch is reported as not found",
    )


class AutomatedActionPlanResponse(BaseModel):
    """Outcome of the automation gate."""

    success: bool
    plan_generated: bool
    risk_level: str = Field(..., description="baixo | medio | alto | critico, or unknown / error")
    message: str
    triggered_by: Literal["automatic", "manual"]
    action_plan_id: uuid.UUID | None = None
    has_existing: bool = False


class RequiresActionPlanResponse(BaseModel):
    """Display-only answer to "does this assessment need a plan"."""

    requires: bool
    risk_level: str
    has_existing: bool


# ---------------------------------------------------------------------------
# Collective analysis schemas
# ---------------------------------------------------------------------------


class CollectiveRiskResponse(BaseModel):
    """Employee risk distribution of one sector."""

    sector_id: uuid.UUID
    sector_name: str
    total_employees: int
    risk_distribution: dict[str, int]
    risk_percentages: dict[str, float]
    collective_risk_level: Literal["baixo", "medio", "alto", "critico"]
    requires_action_plan: bool
    intervention_priority: Literal["monitoring", "preventive", "corrective", "emergency"]


class CollectiveActionPlanResponse(BaseModel):
    """Outcome of a company-wide collective analysis run."""

    success: bool
    analysis_performed: bool
    action_plans_generated: int
    collective_risks: list[CollectiveRiskResponse]
    message: str
    action_plan_ids: list[uuid.UUID] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Processing schemas
# ---------------------------------------------------------------------------


class ProcessingResultResponse(BaseModel):
    """Summary of one full pipeline run."""

    success: bool
    assessment_response_id: uuid.UUID
    message: str
    job_id: uuid.UUID | None = None
    analyses_created: int = 0
    plans_created: int = 0
    notifications_created: int = 0
    highest_risk_level: str | None = None
    elapsed_ms: float = 0.0


class EnqueueJobRequest(BaseModel):
    """Request body for queueing an assessment explicitly."""

    assessment_response_id: uuid.UUID
    company_id: uuid.UUID
    priority: JobPriorityLiteral = "medium"
    max_retries: int | None = Field(None, ge=0, le=10, description="Defaults to the service setting")
    job_metadata: dict[str, Any] = Field(default_factory=dict)


class ProcessingJobResponse(BaseModel):
    """Current state of a processing job."""

    id: uuid.UUID
    assessment_response_id: uuid.UUID
    company_id: uuid.UUID
    status: Literal["pending", "processing", "completed", "error"]
    priority: JobPriorityLiteral
    retry_count: int
    max_retries: int
    scheduled_for: datetime | None
    started_at: datetime | None
    completed_at: datetime | None
    error_message: str | None
    job_metadata: dict[str, Any]
    created_at: datetime


class AssessmentCompletedResponse(BaseModel):
    """Result of the assessment-completed trigger."""

    queued: bool
    job: ProcessingJobResponse | None = None
    message: str


class ProcessingStatusResponse(BaseModel):
    """Queue statistics and scheduler flags."""

    is_running: bool
    is_paused: bool
    queue_length: int
    active_jobs: int
    completed_jobs: int
    failed_jobs: int
    max_concurrency: int


class ErrorResponse(BaseModel):
    """Error body returned by the exception handlers."""

    error_code: str
    message: str
