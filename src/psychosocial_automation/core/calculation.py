"""Weighted, sector-adjusted psychosocial risk calculation engine.

For each of the five fixed categories the engine:

    1. extracts the category answers via the taxonomy question map
    2. rescales the mean answer from the 1-5 scale to 0-100   (raw score)
    3. multiplies by the company category weight               (weighted score)
    4. multiplies by the sector risk multiplier                (adjusted score)
    5. classifies the adjusted score against the thresholds    (risk level)
    6. derives a confidence percentage from completeness and consistency
    7. gates contributing factors on the raw category mean (>= 3.5)
    8. looks up recommended actions in the template catalog, falling back to
       the taxonomy defaults

The scoring functions are pure and synchronous so they can be unit-tested
without any infrastructure. RiskCalculationEngine only adds the reads of the
reference tables around them.
"""

import math
import uuid
from collections.abc import Mapping
from typing import Any

from psychosocial_automation.core.criteria import (
    DEFAULT_WEIGHT,
    RiskThresholds,
    classify_risk_level,
)
from psychosocial_automation.core.domain import AssessmentContext, CalculationResult
from psychosocial_automation.core.errors import NotFoundError, ValidationFailureError
from psychosocial_automation.core.interfaces import (
    IAssessmentRepository,
    ICriteriaProvider,
    ITemplateRepository,
)
from psychosocial_automation.core.taxonomy import (
    ALL_CATEGORIES,
    CATEGORY_FACTORS,
    RiskLevel,
    default_actions_for,
    questions_for_category,
)
from psychosocial_automation.observability import get_logger

logger = get_logger(__name__)

# Keys under which some assessment flows nest the answer map
_NESTED_ANSWER_KEYS: tuple[str, ...] = ("answers", "responses")


def extract_answers(
    response_data: Any,
    scale_min: int = 1,
    scale_max: int = 5,
) -> dict[str, float]:
    """Validate a raw response payload and return its numeric answers.

    Non-numeric values (free text, skipped questions) are ignored. Numeric
    values outside the answer scale make the whole payload invalid.

    Args:
        response_data: Payload stored on the assessment response.
        scale_min: Lowest valid answer.
        scale_max: Highest valid answer.

    Returns:
        Mapping of question id to numeric answer.

    Raises:
        ValidationFailureError: If the payload is not a mapping or an answer
            is out of range.
    """
    if response_data is None:
        return {}
    if not isinstance(response_data, Mapping):
        raise ValidationFailureError(
            f"Assessment response payload must be a mapping, got {type(response_data).__name__}."
        )

    answers_source: Mapping[str, Any] = response_data
    for key in _NESTED_ANSWER_KEYS:
        nested = response_data.get(key)
        if isinstance(nested, Mapping):
            answers_source = nested
            break

    answers: dict[str, float] = {}
    for question_id, value in answers_source.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if math.isnan(value) or not (scale_min <= value <= scale_max):
            raise ValidationFailureError(
                f"Answer {value!r} for question {question_id!r} is outside the "
                f"{scale_min}-{scale_max} scale."
            )
        answers[str(question_id)] = float(value)
    return answers


def category_answers(answers: Mapping[str, float], category: str) -> list[float]:
    """Return the answers of the questions mapped to a category, in question order."""
    return [answers[question_id] for question_id in questions_for_category(category) if question_id in answers]


def compute_raw_score(values: list[float], scale_min: int = 1, scale_max: int = 5) -> float:
    """Rescale the mean answer linearly from the answer scale to 0-100.

    (mean - min) / (max - min) * 100, clamped to [0, 100]. Empty input is 0.
    """
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    score = (mean - scale_min) / (scale_max - scale_min) * 100.0
    return round(min(100.0, max(0.0, score)), 2)


def compute_variance(values: list[float]) -> float:
    """Population variance of the answers (0 for empty input)."""
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((value - mean) ** 2 for value in values) / len(values)


def compute_confidence(
    values: list[float],
    expected_count: int,
    scale_min: int = 1,
    scale_max: int = 5,
) -> int:
    """Confidence percentage from answer completeness and consistency.

    completeness = min(1, answered / expected)
    consistency  = max(0, 1 - variance / max_variance), where max_variance is
                   the largest population variance possible on the scale
    confidence   = round(mean(completeness, consistency) * 100)

    Args:
        values: Category answers.
        expected_count: Number of questions the category should have.
        scale_min: Lowest valid answer.
        scale_max: Highest valid answer.

    Returns:
        Integer confidence 0-100. Empty input is 0.
    """
    if not values or expected_count <= 0:
        return 0
    completeness = min(1.0, len(values) / expected_count)
    max_variance = ((scale_max - scale_min) / 2) ** 2
    consistency = max(0.0, 1.0 - compute_variance(values) / max_variance)
    return round((completeness + consistency) / 2 * 100)


def identify_contributing_factors(values: list[float], category: str, gate: float = 3.5) -> list[str]:
    """Return the category factor labels when the raw mean reaches the gate.

    Factor presence is a threshold gate on the 1-5 scale mean, not a continuum.
    """
    if not values:
        return []
    mean = sum(values) / len(values)
    if mean >= gate:
        return list(CATEGORY_FACTORS.get(category, ()))
    return []


def calculate_category(
    category: str,
    answers: Mapping[str, float],
    weight_row: Any | None = None,
    sector_profile: Any | None = None,
    recommended_actions: list[str] | None = None,
    scale_min: int = 1,
    scale_max: int = 5,
    factor_gate: float = 3.5,
) -> CalculationResult:
    """Compute the full CalculationResult for one category.

    Args:
        category: One of ALL_CATEGORIES.
        answers: Validated answers keyed by question id.
        weight_row: CategoryWeight row (weight + thresholds), or None for defaults.
        sector_profile: SectorRiskProfile row, or None for a 1.0 multiplier.
        recommended_actions: Catalog template names; None or empty uses defaults.
        scale_min: Lowest valid answer.
        scale_max: Highest valid answer.
        factor_gate: Minimum category mean for contributing factors.

    Returns:
        CalculationResult for the category.
    """
    values = category_answers(answers, category)
    raw_score = compute_raw_score(values, scale_min, scale_max)

    weight = getattr(weight_row, "weight", None)
    weight = DEFAULT_WEIGHT if weight is None else float(weight)
    weighted_score = round(raw_score * weight, 2)

    multipliers = getattr(sector_profile, "risk_multipliers", None) or {}
    multiplier = multipliers.get(category)
    multiplier = 1.0 if multiplier is None else float(multiplier)
    adjusted_score = round(weighted_score * multiplier, 2)

    risk_level = classify_risk_level(adjusted_score, RiskThresholds.from_row(weight_row))
    confidence = compute_confidence(values, len(questions_for_category(category)), scale_min, scale_max)
    factors = identify_contributing_factors(values, category, factor_gate)
    actions = recommended_actions or default_actions_for(category, risk_level)

    return CalculationResult(
        category=category,
        raw_score=raw_score,
        weighted_score=weighted_score,
        sector_adjusted_score=adjusted_score,
        risk_level=risk_level,
        confidence_level=confidence,
        contributing_factors=tuple(factors),
        recommended_actions=tuple(actions),
        answer_count=len(values),
    )


class RiskCalculationEngine:
    """Reads the reference tables and scores all five categories.

    Produces exactly one CalculationResult per category, in taxonomy order,
    even for categories without answers. Has no side effects.
    """

    def __init__(
        self,
        assessment_repository: IAssessmentRepository,
        criteria_provider: ICriteriaProvider,
        template_repository: ITemplateRepository,
        scale_min: int = 1,
        scale_max: int = 5,
        factor_gate: float = 3.5,
    ) -> None:
        """Initialise with read-only collaborators.

        Args:
            assessment_repository: Source of assessment context.
            criteria_provider: Category weights and sector profiles.
            template_repository: Action template catalog.
            scale_min: Lowest valid answer.
            scale_max: Highest valid answer.
            factor_gate: Minimum category mean for contributing factors.
        """
        self._assessments = assessment_repository
        self._criteria = criteria_provider
        self._templates = template_repository
        self._scale_min = scale_min
        self._scale_max = scale_max
        self._factor_gate = factor_gate

    async def calculate_psychosocial_risk(
        self,
        assessment_response_id: uuid.UUID,
        company_id: uuid.UUID,
        sector_id: uuid.UUID | None = None,
        role_id: uuid.UUID | None = None,
    ) -> list[CalculationResult]:
        """Load an assessment and compute its five category results.

        Args:
            assessment_response_id: Completed assessment to score.
            company_id: Company whose weights apply.
            sector_id: Overrides the employee's sector for the profile lookup.
            role_id: Accepted for interface symmetry; roles do not alter scores.

        Returns:
            Five CalculationResults in taxonomy order.

        Raises:
            NotFoundError: If the assessment or its employee does not exist.
            ValidationFailureError: If the response payload is malformed.
        """
        context = await self._assessments.get_context(assessment_response_id)
        if context is None:
            raise NotFoundError(f"Assessment response {assessment_response_id} not found.")
        return await self.calculate(context, company_id=company_id, sector_id=sector_id)

    async def calculate(
        self,
        context: AssessmentContext,
        company_id: uuid.UUID | None = None,
        sector_id: uuid.UUID | None = None,
    ) -> list[CalculationResult]:
        """Compute the five category results for an already loaded context.

        Args:
            context: Assessment joined with employee and sector.
            company_id: Company whose weights apply (defaults to the employee's).
            sector_id: Sector whose profile applies (defaults to the employee's).

        Returns:
            Five CalculationResults in taxonomy order.

        Raises:
            ValidationFailureError: If the response payload is malformed.
        """
        company = company_id or context.company_id
        sector = sector_id or context.sector_id

        answers = extract_answers(context.response_data, self._scale_min, self._scale_max)
        weights = await self._criteria.get_category_weights(company)
        profile = await self._criteria.get_sector_profile(company, sector) if sector else None

        results: list[CalculationResult] = []
        for category in ALL_CATEGORIES:
            preliminary = calculate_category(
                category,
                answers,
                weight_row=weights.get(category),
                sector_profile=profile,
                recommended_actions=None,
                scale_min=self._scale_min,
                scale_max=self._scale_max,
                factor_gate=self._factor_gate,
            )
            template_names = await self._recommended_from_catalog(category, preliminary.risk_level)
            if template_names:
                preliminary = calculate_category(
                    category,
                    answers,
                    weight_row=weights.get(category),
                    sector_profile=profile,
                    recommended_actions=template_names,
                    scale_min=self._scale_min,
                    scale_max=self._scale_max,
                    factor_gate=self._factor_gate,
                )
            results.append(preliminary)

        logger.info(
            "Psychosocial risk calculated",
            assessment_response_id=str(context.assessment_response_id),
            company_id=str(company),
            answer_count=len(answers),
            levels={result.category: result.risk_level.value for result in results},
        )
        return results

    async def _recommended_from_catalog(self, category: str, risk_level: RiskLevel) -> list[str]:
        templates = await self._templates.list_templates(category, risk_level.value)
        return [template.template_name for template in templates]
