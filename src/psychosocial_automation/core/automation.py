"""Automation gate: decides whether an assessment needs an action plan.

Entry point invoked once per completed assessment, either automatically or
from a manual "generate now" action. The gate classifies the assessment's
headline score against the unified criteria, generates only at alto or
critico, never creates a second plan for the same assessment, and reports
every outcome (including failures) as an AutomatedActionPlanResult.
"""

import uuid

from sqlalchemy.exc import SQLAlchemyError

from psychosocial_automation.core.criteria import requires_action_plan
from psychosocial_automation.core.domain import (
    AutomatedActionPlanResult,
    RequiresActionPlan,
    TriggerMode,
)
from psychosocial_automation.core.errors import NotFoundError, PsychosocialError
from psychosocial_automation.core.pipeline import ProcessingPipeline
from psychosocial_automation.observability import get_logger

logger = get_logger(__name__)

MESSAGE_NOT_FOUND = "Dados da avaliação não encontrados"
MESSAGE_ALREADY_EXISTS = "Plano de ação já existe para esta avaliação"


class ActionPlanAutomation:
    """Gate in front of the shared processing pipeline.

    Args:
        pipeline: Shared pipeline bound to the caller's unit of work.
    """

    def __init__(self, pipeline: ProcessingPipeline) -> None:
        self._pipeline = pipeline

    async def process_automatic_action_plan(
        self,
        assessment_response_id: uuid.UUID,
        company_id: uuid.UUID | None = None,
        triggered_by: TriggerMode = TriggerMode.AUTOMATIC,
    ) -> AutomatedActionPlanResult:
        """Apply the generation policy to one assessment.

        Args:
            assessment_response_id: Completed assessment.
            company_id: Expected owning company; a mismatch is treated as not found.
            triggered_by: automatic or manual.

        Returns:
            AutomatedActionPlanResult. Never raises for domain or store errors.
        """
        log = logger.bind(
            assessment_response_id=str(assessment_response_id),
            triggered_by=triggered_by.value,
        )
        try:
            context = await self._pipeline.load_context(assessment_response_id)
            if company_id is not None and context.company_id != company_id:
                raise NotFoundError(
                    f"Assessment response {assessment_response_id} does not belong to company {company_id}."
                )
        except NotFoundError as exc:
            log.warning("Action plan automation skipped: assessment not found", error=exc.message)
            return AutomatedActionPlanResult(
                success=False,
                plan_generated=False,
                risk_level="unknown",
                message=MESSAGE_NOT_FOUND,
                triggered_by=triggered_by,
            )

        try:
            level = await self._pipeline.headline_risk_level(context)
            if not requires_action_plan(level):
                log.info("Action plan not required", risk_level=level.value)
                return AutomatedActionPlanResult(
                    success=True,
                    plan_generated=False,
                    risk_level=level.value,
                    message=f"Risco {level.value} não requer plano automático",
                    triggered_by=triggered_by,
                )

            existing_id = await self._pipeline.has_existing_plan(assessment_response_id)
            if existing_id is not None:
                return _already_exists(level.value, existing_id, triggered_by)

            results = await self._pipeline.calculate(context)
            settings = await self._pipeline.load_automation_settings(context.company_id)
            outcome = await self._pipeline.ensure_action_plan(
                context, results, triggered_by, settings, headline_level=level
            )
        except (PsychosocialError, SQLAlchemyError) as exc:
            message = exc.message if isinstance(exc, PsychosocialError) else str(exc)
            log.error("Action plan automation failed", error=message)
            return AutomatedActionPlanResult(
                success=False,
                plan_generated=False,
                risk_level="error",
                message=f"Erro na automação: {message}",
                triggered_by=triggered_by,
            )

        if not outcome.created:
            return _already_exists(level.value, outcome.action_plan_id, triggered_by)

        log.info("Action plan generated", risk_level=level.value, action_plan_id=str(outcome.action_plan_id))
        return AutomatedActionPlanResult(
            success=True,
            plan_generated=True,
            risk_level=level.value,
            message=f"Plano de ação gerado automaticamente para risco {level.value}",
            triggered_by=triggered_by,
            action_plan_id=outcome.action_plan_id,
        )

    async def generate_manual_action_plan(
        self,
        assessment_response_id: uuid.UUID,
        company_id: uuid.UUID | None = None,
    ) -> AutomatedActionPlanResult:
        """Manual "generate now" variant of process_automatic_action_plan."""
        return await self.process_automatic_action_plan(
            assessment_response_id, company_id, triggered_by=TriggerMode.MANUAL
        )

    async def check_if_requires_action_plan(self, assessment_response_id: uuid.UUID) -> RequiresActionPlan:
        """Display-only query: does this assessment need a plan, and does one exist?

        Performs no generation. A missing assessment answers
        requires=False with risk level "unknown".
        """
        try:
            context = await self._pipeline.load_context(assessment_response_id)
        except NotFoundError:
            return RequiresActionPlan(requires=False, risk_level="unknown", has_existing=False)

        level = await self._pipeline.headline_risk_level(context)
        existing_id = await self._pipeline.has_existing_plan(assessment_response_id)
        return RequiresActionPlan(
            requires=requires_action_plan(level),
            risk_level=level.value,
            has_existing=existing_id is not None,
        )


def _already_exists(
    risk_level: str,
    action_plan_id: uuid.UUID | None,
    triggered_by: TriggerMode,
) -> AutomatedActionPlanResult:
    return AutomatedActionPlanResult(
        success=True,
        plan_generated=False,
        risk_level=risk_level,
        message=MESSAGE_ALREADY_EXISTS,
        triggered_by=triggered_by,
        action_plan_id=action_plan_id,
        has_existing=True,
    )
