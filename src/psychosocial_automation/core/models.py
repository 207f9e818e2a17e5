"""SQLAlchemy ORM models for the psychosocial automation service.

The assessment, employee, sector, and configuration tables are owned by other
parts of the platform; this service only reads them. It appends rows to the
analysis, plan, job, log, and notification tables.

Domain model:
  AssessmentResponse : completed questionnaire (read-only)
  Employee / Sector : respondent context (read-only)
  CategoryWeight : per-company category weight and thresholds (read-only)
  SectorRiskProfile : per-sector risk multipliers (read-only)
  CriteriaSettings : per-company unified headline thresholds (read-only)
  ActionPlanTemplate : NR-01 action template catalog (read-only)
  AutomationConfig : per-company automation switches (read-only)
  RiskAnalysis : one row per category per assessment (append-only)
  ActionPlan / ActionPlanItem : generated remediation plans
  ProcessingJob : durable background work queue
  ProcessingLog : audit trail of pipeline stages
  Notification : notification records for managers
"""

import uuid
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all service tables."""


class TimestampedModel(Base):
    """Abstract base supplying a UUID primary key and created_at."""

    __abstract__ = True

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Primary key UUID",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )


# ---------------------------------------------------------------------------
# Read-only collaborator tables
# ---------------------------------------------------------------------------


class Sector(TimestampedModel):
    """A company sector. Table: sectors"""

    __tablename__ = "sectors"

    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sector_type: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Sector classification used to pick sector-specific templates",
    )


class Employee(TimestampedModel):
    """An employee who answers assessments. Table: employees"""

    __tablename__ = "employees"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    sector_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("sectors.id"), nullable=True
    )
    role_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    sector: Mapped[Sector | None] = relationship(lazy="joined")


class AssessmentResponse(TimestampedModel):
    """A completed questionnaire. Never mutated by this service.

    Table: assessment_responses
    """

    __tablename__ = "assessment_responses"

    employee_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("employees.id"), nullable=True, index=True
    )
    response_data: Mapped[Any] = mapped_column(
        JSONType,
        nullable=True,
        comment="Raw answers keyed by question id (q1..q25) on a 1-5 scale",
    )
    raw_score: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
        comment="Overall 0-100 headline score computed by the assessment flow",
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    employee: Mapped[Employee | None] = relationship(lazy="joined")


class CategoryWeight(TimestampedModel):
    """Per-company weight and thresholds for one category.

    Table: psychosocial_category_weights
    """

    __tablename__ = "psychosocial_category_weights"
    __table_args__ = (UniqueConstraint("company_id", "category"),)

    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    weight: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    critical_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=80.0)
    high_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=60.0)
    medium_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=40.0)


class SectorRiskProfile(TimestampedModel):
    """Per-sector multipliers applied after weighting.

    Table: sector_risk_profiles
    """

    __tablename__ = "sector_risk_profiles"
    __table_args__ = (UniqueConstraint("company_id", "sector_id"),)

    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    sector_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    risk_multipliers: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    baseline_scores: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)


class CriteriaSettings(TimestampedModel):
    """Unified headline thresholds. A null company_id row is the global default.

    Table: assessment_criteria_settings
    """

    __tablename__ = "assessment_criteria_settings"

    company_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, unique=True)
    critical_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=80.0)
    high_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=60.0)
    medium_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=40.0)


class ActionPlanTemplate(TimestampedModel):
    """Catalog entry keyed by category x exposure level x optional sector type.

    Table: nr01_action_templates
    """

    __tablename__ = "nr01_action_templates"
    __table_args__ = (Index("ix_nr01_action_templates_lookup", "category", "exposure_level"),)

    template_name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    exposure_level: Mapped[str] = mapped_column(String(16), nullable=False)
    sector_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_mandatory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recommended_timeline_days: Mapped[int] = mapped_column(Integer, nullable=False, default=90)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    template_actions: Mapped[list] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Ordered action dicts: title, description, mandatory, timeline_days, ...",
    )
    required_resources: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    success_metrics: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    legal_requirements: Mapped[str | None] = mapped_column(Text, nullable=True)


class AutomationConfig(TimestampedModel):
    """Per-company automation switches.

    Table: psychosocial_automation_config
    """

    __tablename__ = "psychosocial_automation_config"

    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    auto_process_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_generate_action_plans: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notification_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notification_recipients: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)


# ---------------------------------------------------------------------------
# Tables written by this service
# ---------------------------------------------------------------------------


class RiskAnalysis(TimestampedModel):
    """Calculated risk for one category of one assessment. Append-only.

    Table: psychosocial_risk_analysis
    """

    __tablename__ = "psychosocial_risk_analysis"
    __table_args__ = (
        Index("ix_psychosocial_risk_analysis_assessment", "assessment_response_id", "category"),
    )

    assessment_response_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("assessment_responses.id"), nullable=False
    )
    processing_job_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        nullable=True,
        index=True,
        comment="Job that wrote the row; lets a retried job skip categories already written",
    )
    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    sector_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    role_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    raw_score: Mapped[float] = mapped_column(Float, nullable=False)
    weighted_score: Mapped[float] = mapped_column(Float, nullable=False)
    risk_score: Mapped[float] = mapped_column(
        Float, nullable=False, comment="Sector-adjusted score used for classification"
    )
    exposure_level: Mapped[str] = mapped_column(String(16), nullable=False)
    confidence_level: Mapped[int] = mapped_column(Integer, nullable=False)
    contributing_factors: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    recommended_actions: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    taxonomy_version: Mapped[str] = mapped_column(String(20), nullable=False)
    evaluation_date: Mapped[date] = mapped_column(Date, nullable=False)
    next_evaluation_date: Mapped[date] = mapped_column(Date, nullable=False)


class ActionPlan(TimestampedModel):
    """A persisted remediation plan.

    The primary plan of an assessment carries assessment_response_id (unique).
    Additional per-category plans of a multi-category assessment point at the
    primary plan through parent_plan_id.

    Table: action_plans
    """

    __tablename__ = "action_plans"

    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    assessment_response_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("assessment_responses.id"), nullable=True, unique=True
    )
    parent_plan_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("action_plans.id"), nullable=True, index=True
    )
    sector_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    priority: Mapped[str] = mapped_column(String(16), nullable=False)
    risk_level: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="Null for the integrated cross-category plan"
    )
    is_integrated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_collective: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, comment="Sector-level plan from the collective analysis"
    )
    total_estimated_days: Mapped[int] = mapped_column(Integer, nullable=False)
    total_estimated_hours: Mapped[float] = mapped_column(Float, nullable=False)
    estimated_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    success_metrics: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    compliance_requirements: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    monitoring_frequency_days: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    items: Mapped[list["ActionPlanItem"]] = relationship(
        back_populates="action_plan",
        lazy="selectin",
        order_by="ActionPlanItem.position",
        cascade="all, delete-orphan",
    )


class ActionPlanItem(TimestampedModel):
    """An ordered step of an ActionPlan. Table: action_plan_items"""

    __tablename__ = "action_plan_items"

    action_plan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("action_plans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    responsible_role: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    estimated_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    timeline_days: Mapped[int] = mapped_column(Integer, nullable=False)
    is_mandatory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dependencies: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    action_plan: Mapped[ActionPlan] = relationship(back_populates="items")


class ProcessingJob(TimestampedModel):
    """Durable unit of background work: fully process one assessment response.

    Status transitions:
        pending → processing → completed
        processing → pending (retry, retry_count incremented)
        processing → error (retries exhausted or fatal error)

    Table: psychosocial_processing_jobs
    """

    __tablename__ = "psychosocial_processing_jobs"
    __table_args__ = (
        Index("ix_psychosocial_processing_jobs_queue", "status", "priority", "created_at"),
    )

    assessment_response_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    scheduled_for: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Earliest claim time; set by retry backoff, null means immediately",
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_metadata: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)


class ProcessingLog(TimestampedModel):
    """Audit trail entry for a pipeline stage. Table: psychosocial_processing_logs"""

    __tablename__ = "psychosocial_processing_logs"

    assessment_response_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    processing_stage: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    details: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)


class Notification(TimestampedModel):
    """Notification record picked up by the delivery subsystem.

    Table: psychosocial_notifications
    """

    __tablename__ = "psychosocial_notifications"
    __table_args__ = (
        Index(
            "ix_psychosocial_notifications_trigger",
            "company_id",
            "notification_type",
            "assessment_response_id",
        ),
    )

    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    assessment_response_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    notification_type: Mapped[str] = mapped_column(
        String(64), nullable=False, comment="Trigger event, e.g. high_risk_detected"
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    recipients: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
