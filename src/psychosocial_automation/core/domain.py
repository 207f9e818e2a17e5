"""Plain domain types exchanged between the core components.

These are framework-free dataclasses. ORM rows live in core/models.py and
HTTP payloads in api/schemas.py.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from psychosocial_automation.core.taxonomy import RiskLevel


class TriggerMode(str, Enum):
    """How an action plan generation was requested."""

    AUTOMATIC = "automatic"
    MANUAL = "manual"


class JobStatus(str, Enum):
    """ProcessingJob lifecycle states.

    Transitions:
        pending → processing → completed
        processing → pending   (retry)
        processing → error     (terminal)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class JobPriority(str, Enum):
    """Queue priority tiers, dequeued strictly highest first."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Higher rank is dequeued first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK: dict[JobPriority, int] = {
    JobPriority.LOW: 0,
    JobPriority.MEDIUM: 1,
    JobPriority.HIGH: 2,
    JobPriority.CRITICAL: 3,
}


@dataclass(frozen=True)
class AssessmentContext:
    """An assessment response joined with its employee and sector.

    Attributes:
        assessment_response_id: The completed questionnaire.
        company_id: Owning company of the employee.
        employee_id: Respondent.
        employee_name: Respondent display name.
        sector_id: Employee sector, if any.
        role_id: Employee role, if any.
        sector_type: Sector classification used for template matching.
        raw_score: Overall headline score recorded by the assessment flow.
        response_data: Raw answers keyed by question id.
    """

    assessment_response_id: uuid.UUID
    company_id: uuid.UUID
    employee_id: uuid.UUID
    employee_name: str
    sector_id: uuid.UUID | None
    role_id: uuid.UUID | None
    sector_type: str | None
    raw_score: float
    response_data: dict[str, Any]


@dataclass(frozen=True)
class CalculationResult:
    """Risk calculation outcome for one category of one assessment."""

    category: str
    raw_score: float
    weighted_score: float
    sector_adjusted_score: float
    risk_level: RiskLevel
    confidence_level: int
    contributing_factors: tuple[str, ...] = ()
    recommended_actions: tuple[str, ...] = ()
    answer_count: int = 0


@dataclass(frozen=True)
class ActionItem:
    """One step of a generated action plan."""

    title: str
    description: str
    responsible_role: str
    estimated_hours: float
    timeline_days: int
    mandatory: bool = False
    dependencies: tuple[str, ...] = ()


@dataclass
class GeneratedActionPlan:
    """A remediation plan produced by the ActionPlanGenerator.

    Attributes:
        category: Category addressed; None for the integrated plan.
        risk_level: Level that triggered the plan.
        is_integrated: True for the cross-category plan.
        template_id: Catalog template the plan was built from, if any.
    """

    title: str
    description: str
    priority: str
    risk_level: RiskLevel
    category: str | None
    actions: list[ActionItem]
    total_estimated_days: int
    total_estimated_hours: float
    success_metrics: list[str]
    monitoring_frequency_days: int
    compliance_requirements: list[str] = field(default_factory=list)
    estimated_cost: float = 0.0
    is_integrated: bool = False
    is_collective: bool = False
    template_id: uuid.UUID | None = None


@dataclass
class ProcessingResult:
    """Summary of one full pipeline run, returned to manual-trigger call sites."""

    success: bool
    assessment_response_id: uuid.UUID
    message: str
    job_id: uuid.UUID | None = None
    analyses_created: int = 0
    plans_created: int = 0
    notifications_created: int = 0
    highest_risk_level: RiskLevel | None = None
    elapsed_ms: float = 0.0


@dataclass
class AutomatedActionPlanResult:
    """Structured outcome of the automation gate (never raised, always returned)."""

    success: bool
    plan_generated: bool
    risk_level: str
    message: str
    triggered_by: TriggerMode
    action_plan_id: uuid.UUID | None = None
    # True when the assessment already had a plan and nothing was generated
    has_existing: bool = False


@dataclass(frozen=True)
class RequiresActionPlan:
    """Display-only answer to "does this assessment need a plan"."""

    requires: bool
    risk_level: str
    has_existing: bool


@dataclass(frozen=True)
class AutomationSettings:
    """Per-company automation switches with the defaults used when unset."""

    auto_process_enabled: bool = True
    auto_generate_action_plans: bool = True
    notification_enabled: bool = True
    notification_recipients: tuple[str, ...] = ()

    @classmethod
    def from_row(cls, row: Any | None) -> "AutomationSettings":
        """Build settings from an AutomationConfig row (None means defaults)."""
        if row is None:
            return cls()
        return cls(
            auto_process_enabled=bool(row.auto_process_enabled),
            auto_generate_action_plans=bool(row.auto_generate_action_plans),
            notification_enabled=bool(row.notification_enabled),
            notification_recipients=tuple(row.notification_recipients or ()),
        )


@dataclass
class PlanOutcome:
    """Result of the shared decide/dedup/generate/persist step."""

    action_plan_id: uuid.UUID | None
    created: bool
    plans_created: int = 0
    notifications_created: int = 0


@dataclass
class ProcessingStatus:
    """Queue and scheduler statistics for operators."""

    is_running: bool
    is_paused: bool
    queue_length: int
    active_jobs: int
    completed_jobs: int
    failed_jobs: int
    max_concurrency: int


class InterventionPriority(str, Enum):
    """Urgency of a sector intervention, derived from its collective level."""

    MONITORING = "monitoring"
    PREVENTIVE = "preventive"
    CORRECTIVE = "corrective"
    EMERGENCY = "emergency"


@dataclass(frozen=True)
class SectorExposure:
    """One persisted category analysis located in a sector and tied to its respondent."""

    sector_id: uuid.UUID
    sector_name: str
    employee_id: uuid.UUID
    assessment_response_id: uuid.UUID
    exposure_level: str
    completed_at: datetime | None = None


@dataclass
class CollectiveRiskAnalysis:
    """Distribution of employee risk levels in one sector.

    Attributes:
        total_employees: Employees with at least one analysis in the sector.
        risk_distribution: Employee count per level (baixo..critico).
        risk_percentages: Share of employees per level, 0-100.
        collective_risk_level: Level assigned to the sector as a whole.
        requires_action_plan: True for every level above baixo.
        intervention_priority: Urgency of the collective intervention.
    """

    sector_id: uuid.UUID
    sector_name: str
    total_employees: int
    risk_distribution: dict[str, int]
    risk_percentages: dict[str, float]
    collective_risk_level: RiskLevel
    requires_action_plan: bool
    intervention_priority: InterventionPriority


@dataclass
class CollectiveActionPlanResult:
    """Outcome of a company-wide collective analysis run."""

    success: bool
    analysis_performed: bool
    action_plans_generated: int
    collective_risks: list[CollectiveRiskAnalysis]
    message: str
    action_plan_ids: list[uuid.UUID] = field(default_factory=list)
