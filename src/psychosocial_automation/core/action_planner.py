"""Template-driven action plan generator.

Builds one GeneratedActionPlan per category at alto or critico, plus one
integrated plan when more than one category qualifies. The generator only
reads the template catalog; persistence and notifications belong to the
processing pipeline.
"""

import math
from typing import Any

from psychosocial_automation.core.criteria import (
    monitoring_frequency_days,
    priority_for_level,
    requires_action_plan,
)
from psychosocial_automation.core.domain import (
    ActionItem,
    CalculationResult,
    GeneratedActionPlan,
)
from psychosocial_automation.core.interfaces import ITemplateRepository
from psychosocial_automation.core.plan_templates import (
    CATEGORY_SUCCESS_METRICS,
    FACTOR_ACTIONS,
    GENERIC_SUCCESS_METRICS,
    INTEGRATED_SUCCESS_METRICS,
    PLAN_DESCRIPTION_FOOTER,
    compliance_requirements_for,
    fallback_actions,
    integrated_actions,
    parse_template_actions,
)
from psychosocial_automation.core.taxonomy import CATEGORY_LABELS, RiskLevel
from psychosocial_automation.observability import get_logger

logger = get_logger(__name__)

# Maximum number of actions kept per plan
MAX_ACTIONS_CRITICAL: int = 10
MAX_ACTIONS_DEFAULT: int = 6

# Scale applied to the longest action timeline
TIMELINE_SCALE: dict[RiskLevel, float] = {
    RiskLevel.CRITICO: 0.5,
    RiskLevel.ALTO: 0.7,
}

LOW_CONFIDENCE_FACTOR: float = 1.2
TARGET_SCORE_RATIO: float = 0.7
INTEGRATED_MONITORING_DAYS: int = 7


class ActionPlanGenerator:
    """Selects templates and customises them into structured remediation plans.

    Args:
        template_repository: Read-only NR-01 template catalog.
        hourly_cost: Cost of one estimated hour, used for estimated_cost.
        low_confidence_threshold: Confidence at or below which hours and days
            are inflated by 20%.
    """

    def __init__(
        self,
        template_repository: ITemplateRepository,
        hourly_cost: float = 100.0,
        low_confidence_threshold: float = 80.0,
    ) -> None:
        self._templates = template_repository
        self._hourly_cost = hourly_cost
        self._low_confidence_threshold = low_confidence_threshold

    async def generate_action_plans(
        self,
        results: list[CalculationResult],
        sector_type: str | None = None,
    ) -> list[GeneratedActionPlan]:
        """Build the plans required by one assessment's category results.

        Category plans are returned most severe first (ties keep taxonomy
        order). The integrated plan, when present, is the last element.

        Args:
            results: The five CalculationResults of one assessment.
            sector_type: Employee sector type used to prefer sector templates.

        Returns:
            Zero or more category plans plus at most one integrated plan.
        """
        qualifying = [result for result in results if requires_action_plan(result.risk_level)]
        qualifying.sort(key=lambda result: result.risk_level.rank, reverse=True)

        plans = [await self.generate_category_plan(result, sector_type=sector_type) for result in qualifying]
        if len(plans) > 1:
            plans.append(self.build_integrated_plan(plans, qualifying))

        logger.info(
            "Action plans generated",
            qualifying_categories=[result.category for result in qualifying],
            plan_count=len(plans),
            integrated=len(plans) > 1,
        )
        return plans

    async def generate_category_plan(
        self,
        result: CalculationResult,
        sector_type: str | None = None,
        risk_level: RiskLevel | None = None,
    ) -> GeneratedActionPlan:
        """Build the plan for a single category.

        Args:
            result: Category calculation result.
            sector_type: Employee sector type used to prefer sector templates.
            risk_level: Overrides the result level (used when the headline
                score triggers a plan but no single category does).

        Returns:
            GeneratedActionPlan for the category.
        """
        level = risk_level or result.risk_level
        templates = await self._templates.list_templates(result.category, level.value)
        template = select_best_template(templates, sector_type)
        label = CATEGORY_LABELS.get(result.category, result.category)

        base_actions = parse_template_actions(template.template_actions) if template is not None else []
        if not base_actions:
            base_actions = fallback_actions(level)

        actions = customize_actions(base_actions, result.contributing_factors, level)
        low_confidence = result.confidence_level <= self._low_confidence_threshold
        total_hours, total_days = compute_timeline(actions, level, low_confidence)

        if template is not None:
            title = f"{template.template_name} - {label}"
            description = f"{template.description}\n\n{PLAN_DESCRIPTION_FOOTER}".strip()
            legal = template.legal_requirements
            template_metrics = list(template.success_metrics or [])
        else:
            title = f"Plano de Ação NR-01 - {label}"
            description = (
                f"Controle do risco psicossocial em {label} (nível {level.value}).\n\n"
                f"{PLAN_DESCRIPTION_FOOTER}"
            )
            legal = None
            template_metrics = []

        return GeneratedActionPlan(
            title=title,
            description=description,
            priority=priority_for_level(level),
            risk_level=level,
            category=result.category,
            actions=actions,
            total_estimated_days=total_days,
            total_estimated_hours=total_hours,
            success_metrics=_unique(
                [
                    *CATEGORY_SUCCESS_METRICS.get(result.category, ()),
                    *template_metrics,
                    _score_target_metric(label, result.sector_adjusted_score),
                    *GENERIC_SUCCESS_METRICS,
                ]
            ),
            monitoring_frequency_days=monitoring_frequency_days(level),
            compliance_requirements=compliance_requirements_for(result.category, legal),
            estimated_cost=round(total_hours * self._hourly_cost, 2),
            template_id=getattr(template, "id", None),
        )

    def build_integrated_plan(
        self,
        category_plans: list[GeneratedActionPlan],
        results: list[CalculationResult],
    ) -> GeneratedActionPlan:
        """Layer cross-category actions over the mandatory actions of each plan.

        Args:
            category_plans: Plans of the qualifying categories.
            results: The qualifying CalculationResults.

        Returns:
            The integrated plan: critical priority, weekly monitoring.
        """
        layered = integrated_actions()
        seen = {action.title for action in layered}
        mandatory: list[ActionItem] = []
        for plan in category_plans:
            for action in plan.actions:
                if action.mandatory and action.title not in seen:
                    seen.add(action.title)
                    mandatory.append(action)
        mandatory.sort(key=lambda action: action.timeline_days)
        actions = (layered + mandatory)[:MAX_ACTIONS_CRITICAL]

        low_confidence = any(
            result.confidence_level <= self._low_confidence_threshold for result in results
        )
        factor = LOW_CONFIDENCE_FACTOR if low_confidence else 1.0
        total_hours = round(sum(action.estimated_hours for action in actions) * factor, 1)
        total_days = max(
            [plan.total_estimated_days for plan in category_plans]
            + [_ceil_days(max(action.timeline_days for action in layered) * factor)]
        )
        top_level = max((plan.risk_level for plan in category_plans), key=lambda level: level.rank)
        labels = [CATEGORY_LABELS.get(plan.category or "", plan.category or "") for plan in category_plans]

        compliance: list[str] = []
        for plan in category_plans:
            compliance.extend(plan.compliance_requirements)

        return GeneratedActionPlan(
            title="Plano de Ação Integrado - Riscos Psicossociais",
            description=(
                f"Plano integrado para as categorias em risco elevado: {', '.join(labels)}.\n\n"
                f"{PLAN_DESCRIPTION_FOOTER}"
            ),
            priority="critical",
            risk_level=top_level,
            category=None,
            actions=actions,
            total_estimated_days=total_days,
            total_estimated_hours=total_hours,
            success_metrics=_unique(
                [
                    *INTEGRATED_SUCCESS_METRICS,
                    *(
                        _score_target_metric(CATEGORY_LABELS.get(r.category, r.category), r.sector_adjusted_score)
                        for r in results
                    ),
                ]
            ),
            monitoring_frequency_days=INTEGRATED_MONITORING_DAYS,
            compliance_requirements=_unique(compliance),
            estimated_cost=round(total_hours * self._hourly_cost, 2),
            is_integrated=True,
        )


def select_best_template(templates: list[Any], sector_type: str | None = None) -> Any | None:
    """Pick the best template for a (category, level).

    Sector-specific templates for the employee's sector type win over generic
    ones; templates for other sector types are ignored. Within the winning
    group a mandatory template is preferred, otherwise catalog order.

    Args:
        templates: Catalog rows for the (category, level).
        sector_type: Employee sector type, if known.

    Returns:
        The chosen template, or None when nothing applies.
    """
    sector_specific = [t for t in templates if sector_type and t.sector_type == sector_type]
    generic = [t for t in templates if not t.sector_type]
    candidates = sector_specific or generic
    if not candidates:
        return None
    for template in candidates:
        if template.is_mandatory:
            return template
    return candidates[0]


def customize_actions(
    base_actions: list[ActionItem],
    contributing_factors: tuple[str, ...] | list[str],
    risk_level: RiskLevel,
) -> list[ActionItem]:
    """Add factor-driven actions, order, and cap a plan's action list.

    One action is appended per contributing factor with a known mapping
    (skipping titles already present). Mandatory actions come first, then
    ascending timeline; the sort is stable so catalog order breaks ties.

    Args:
        base_actions: Template or fallback actions.
        contributing_factors: Factor labels from the calculation.
        risk_level: Level of the plan; critico keeps up to 10 actions, others 6.

    Returns:
        The customised action list.
    """
    actions = list(base_actions)
    titles = {action.title for action in actions}
    for factor in contributing_factors:
        extra = FACTOR_ACTIONS.get(factor)
        if extra is not None and extra.title not in titles:
            titles.add(extra.title)
            actions.append(extra)

    actions.sort(key=lambda action: (not action.mandatory, action.timeline_days))
    limit = MAX_ACTIONS_CRITICAL if risk_level == RiskLevel.CRITICO else MAX_ACTIONS_DEFAULT
    return actions[:limit]


def compute_timeline(
    actions: list[ActionItem],
    risk_level: RiskLevel,
    low_confidence: bool,
) -> tuple[float, int]:
    """Estimate total hours and days for a plan.

    hours = sum of action hours, x1.2 when confidence is low
    days  = longest action timeline x level scale, x1.2 when confidence is low,
            rounded up to whole days

    Returns:
        (total_hours, total_days)
    """
    factor = LOW_CONFIDENCE_FACTOR if low_confidence else 1.0
    total_hours = round(sum(action.estimated_hours for action in actions) * factor, 1)
    longest = max((action.timeline_days for action in actions), default=0)
    total_days = _ceil_days(longest * TIMELINE_SCALE.get(risk_level, 1.0) * factor)
    return total_hours, total_days


def _ceil_days(value: float) -> int:
    # Round first so 0.7 * 30 lands on 21, not 22
    return math.ceil(round(value, 6))


def _score_target_metric(label: str, current_score: float) -> str:
    target = round(current_score * TARGET_SCORE_RATIO, 1)
    return f"Reduzir o escore de {label} para menos de 70% do atual (meta: {target})"


def _unique(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))
