"""Collective (sector-level) psychosocial risk analysis.

NR-01 calls for collective control measures when a significant share of a
sector is exposed. The analyzer groups the persisted category analyses by
sector, counts each employee once at the worst level of their latest
assessment, and classifies the sector:

    > 30% of employees at alto/critico          critico  (emergency)
    > 20% of employees at alto/critico          alto     (corrective)
    > 10% of employees at medio/alto/critico    medio    (preventive)
    otherwise                                   baixo    (monitoring)

Every sector above baixo gets one collective plan. An open plan (draft or
in_progress) for the same sector and level is kept instead of adding another.
"""

import uuid
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import date, datetime
from types import MappingProxyType

from sqlalchemy.exc import SQLAlchemyError

from psychosocial_automation.core.criteria import monitoring_frequency_days, priority_for_level
from psychosocial_automation.core.domain import (
    ActionItem,
    CollectiveActionPlanResult,
    CollectiveRiskAnalysis,
    GeneratedActionPlan,
    InterventionPriority,
    SectorExposure,
)
from psychosocial_automation.core.errors import PsychosocialError, TransientStoreError
from psychosocial_automation.core.interfaces import IActionPlanRepository, IRiskAnalysisRepository
from psychosocial_automation.core.plan_templates import NR01_REQUIREMENT
from psychosocial_automation.core.taxonomy import RiskLevel
from psychosocial_automation.observability import get_logger

logger = get_logger(__name__)

# Share of employees (percent) that must be exceeded for each collective level
CRITICAL_SHARE: float = 30.0
HIGH_SHARE: float = 20.0
MEDIUM_SHARE: float = 10.0

# Days from plan start to plan due date per intervention
PLAN_DUE_DAYS: Mapping[InterventionPriority, int] = MappingProxyType(
    {
        InterventionPriority.EMERGENCY: 7,
        InterventionPriority.CORRECTIVE: 30,
        InterventionPriority.PREVENTIVE: 60,
        InterventionPriority.MONITORING: 180,
    }
)

INTERVENTION_ACTIONS: Mapping[InterventionPriority, tuple[ActionItem, ...]] = MappingProxyType(
    {
        InterventionPriority.EMERGENCY: (
            ActionItem(
                title="Intervenção Imediata - Análise de Causas",
                description="Investigar as causas do risco crítico coletivo identificado no setor.",
                responsible_role="SESMT",
                estimated_hours=16,
                timeline_days=3,
                mandatory=True,
            ),
            ActionItem(
                title="Implementação de Medidas de Controle Imediatas",
                description="Aplicar medidas de controle administrativo e coletivo urgentes.",
                responsible_role="SESMT / Gestor da área",
                estimated_hours=40,
                timeline_days=7,
                mandatory=True,
                dependencies=("Intervenção Imediata - Análise de Causas",),
            ),
            ActionItem(
                title="Monitoramento Diário",
                description="Estabelecer monitoramento diário da efetividade das medidas.",
                responsible_role="Gestor da área",
                estimated_hours=8,
                timeline_days=14,
                mandatory=True,
            ),
        ),
        InterventionPriority.CORRECTIVE: (
            ActionItem(
                title="Análise das Condições de Trabalho",
                description="Realizar análise detalhada das condições psicossociais do setor.",
                responsible_role="SESMT / Psicologia Organizacional",
                estimated_hours=24,
                timeline_days=15,
                mandatory=True,
            ),
            ActionItem(
                title="Implementação de Melhorias Organizacionais",
                description="Implementar mudanças organizacionais baseadas na análise.",
                responsible_role="Gestor da área",
                estimated_hours=60,
                timeline_days=30,
                dependencies=("Análise das Condições de Trabalho",),
            ),
            ActionItem(
                title="Capacitação de Lideranças",
                description="Treinar gestores sobre gestão de riscos psicossociais.",
                responsible_role="Recursos Humanos",
                estimated_hours=16,
                timeline_days=45,
            ),
        ),
        InterventionPriority.PREVENTIVE: (
            ActionItem(
                title="Programa de Prevenção Psicossocial",
                description="Desenvolver programa preventivo específico para o setor.",
                responsible_role="Recursos Humanos",
                estimated_hours=32,
                timeline_days=60,
            ),
            ActionItem(
                title="Monitoramento Mensal",
                description="Estabelecer rotina de monitoramento mensal dos indicadores.",
                responsible_role="Gestor da área",
                estimated_hours=8,
                timeline_days=30,
            ),
        ),
        InterventionPriority.MONITORING: (),
    }
)

_LEVELS_BY_VALUE: Mapping[str, RiskLevel] = MappingProxyType({level.value: level for level in RiskLevel})


def classify_collective_risk(percentages: Mapping[str, float]) -> tuple[RiskLevel, InterventionPriority]:
    """Map a sector's level shares to its collective level and intervention.

    Args:
        percentages: Share of employees per level value, 0-100.

    Returns:
        (collective level, intervention priority).
    """
    high_share = percentages.get(RiskLevel.ALTO.value, 0.0) + percentages.get(RiskLevel.CRITICO.value, 0.0)
    elevated_share = high_share + percentages.get(RiskLevel.MEDIO.value, 0.0)
    if high_share > CRITICAL_SHARE:
        return RiskLevel.CRITICO, InterventionPriority.EMERGENCY
    if high_share > HIGH_SHARE:
        return RiskLevel.ALTO, InterventionPriority.CORRECTIVE
    if elevated_share > MEDIUM_SHARE:
        return RiskLevel.MEDIO, InterventionPriority.PREVENTIVE
    return RiskLevel.BAIXO, InterventionPriority.MONITORING


def summarize_sector(
    sector_id: uuid.UUID,
    sector_name: str,
    employee_levels: Sequence[RiskLevel],
) -> CollectiveRiskAnalysis:
    """Build the collective analysis of one sector from one level per employee."""
    distribution = {level.value: 0 for level in RiskLevel}
    for level in employee_levels:
        distribution[level.value] += 1

    total = len(employee_levels)
    percentages = {name: (count / total * 100 if total else 0.0) for name, count in distribution.items()}
    collective_level, intervention = classify_collective_risk(percentages)
    return CollectiveRiskAnalysis(
        sector_id=sector_id,
        sector_name=sector_name,
        total_employees=total,
        risk_distribution=distribution,
        risk_percentages={name: round(share, 2) for name, share in percentages.items()},
        collective_risk_level=collective_level,
        requires_action_plan=collective_level is not RiskLevel.BAIXO,
        intervention_priority=intervention,
    )


def group_sector_exposures(rows: Iterable[SectorExposure]) -> list[CollectiveRiskAnalysis]:
    """Group analysis rows into one collective analysis per sector.

    Each employee counts once per sector, at the highest level among the
    categories of their most recently completed assessment. Rows with an
    unknown level are ignored.

    Returns:
        Analyses ordered by collective level (most severe first), then sector name.
    """
    sector_names: dict[uuid.UUID, str] = {}
    # (sector, employee) -> (assessment, completed_at, worst level)
    latest: dict[tuple[uuid.UUID, uuid.UUID], tuple[uuid.UUID, datetime | None, RiskLevel]] = {}

    for row in rows:
        level = _LEVELS_BY_VALUE.get(row.exposure_level)
        if level is None:
            continue
        sector_names.setdefault(row.sector_id, row.sector_name)
        key = (row.sector_id, row.employee_id)
        current = latest.get(key)
        if current is None:
            latest[key] = (row.assessment_response_id, row.completed_at, level)
        elif row.assessment_response_id == current[0]:
            if level.rank > current[2].rank:
                latest[key] = (current[0], current[1], level)
        elif _is_newer(row.completed_at, current[1]):
            latest[key] = (row.assessment_response_id, row.completed_at, level)

    levels_by_sector: dict[uuid.UUID, list[RiskLevel]] = defaultdict(list)
    for (sector_id, _employee_id), (_assessment_id, _completed_at, level) in latest.items():
        levels_by_sector[sector_id].append(level)

    analyses = [
        summarize_sector(sector_id, sector_names[sector_id], levels)
        for sector_id, levels in levels_by_sector.items()
    ]
    analyses.sort(key=lambda analysis: (-analysis.collective_risk_level.rank, analysis.sector_name))
    return analyses


def collective_plan_description(analysis: CollectiveRiskAnalysis) -> str:
    """Plain-text summary of the sector distribution written on the plan."""
    shares = analysis.risk_percentages
    high_count = analysis.risk_distribution[RiskLevel.ALTO.value] + analysis.risk_distribution[RiskLevel.CRITICO.value]
    high_share = shares[RiskLevel.ALTO.value] + shares[RiskLevel.CRITICO.value]
    lines = [
        f"PLANO DE AÇÃO COLETIVO - RISCO {analysis.collective_risk_level.value.upper()}",
        "",
        f"Setor: {analysis.sector_name}",
        f"Total de funcionários avaliados: {analysis.total_employees}",
        f"Funcionários em risco alto/crítico: {high_count} ({high_share:.1f}%)",
        "",
        "Distribuição de riscos:",
        f"- Baixo: {shares[RiskLevel.BAIXO.value]:.1f}%",
        f"- Médio: {shares[RiskLevel.MEDIO.value]:.1f}%",
        f"- Alto: {shares[RiskLevel.ALTO.value]:.1f}%",
        f"- Crítico: {shares[RiskLevel.CRITICO.value]:.1f}%",
        "",
        "Conforme NR-01, é obrigatória a implementação de medidas de controle coletivo para este setor.",
    ]
    return "\n".join(lines)


def build_collective_plan(analysis: CollectiveRiskAnalysis, hourly_cost: float = 100.0) -> GeneratedActionPlan:
    """Build the sector plan for a collective analysis that requires one."""
    level = analysis.collective_risk_level
    actions = list(INTERVENTION_ACTIONS[analysis.intervention_priority])
    total_hours = float(sum(action.estimated_hours for action in actions))
    return GeneratedActionPlan(
        title=f"Plano de Ação Coletivo - {analysis.sector_name}",
        description=collective_plan_description(analysis),
        priority=priority_for_level(level),
        risk_level=level,
        category=None,
        actions=actions,
        total_estimated_days=PLAN_DUE_DAYS[analysis.intervention_priority],
        total_estimated_hours=total_hours,
        success_metrics=[
            f"Reduzir para até {HIGH_SHARE:.0f}% a parcela do setor em risco alto ou crítico",
            "Reavaliar todos os funcionários do setor ao final do plano",
        ],
        monitoring_frequency_days=monitoring_frequency_days(level),
        compliance_requirements=[NR01_REQUIREMENT],
        estimated_cost=round(total_hours * hourly_cost, 2),
        is_collective=True,
    )


class CollectiveRiskAnalyzer:
    """Sector-level analysis and collective plan generation for a company.

    Args:
        analysis_repository: Source of the persisted category analyses.
        plan_repository: Plan persistence and open-plan lookup.
        hourly_cost: Cost of one estimated hour, used for estimated_cost.
        today: Returns the plan start date; injectable for tests.
    """

    def __init__(
        self,
        analysis_repository: IRiskAnalysisRepository,
        plan_repository: IActionPlanRepository,
        hourly_cost: float = 100.0,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._analyses = analysis_repository
        self._plans = plan_repository
        self._hourly_cost = hourly_cost
        self._today = today

    async def analyze_sectors(self, company_id: uuid.UUID) -> list[CollectiveRiskAnalysis]:
        """Read-only collective analysis of every sector of a company."""
        rows = await self._analyses.list_sector_exposures(company_id)
        return group_sector_exposures(rows)

    async def analyze_and_generate_action_plans(self, company_id: uuid.UUID) -> CollectiveActionPlanResult:
        """Analyse every sector and create the collective plans that are missing.

        A failed plan insert skips that sector only. Failures reading the
        analyses are reported in the result, never raised.

        Args:
            company_id: Company to analyse.

        Returns:
            CollectiveActionPlanResult with the per-sector analyses.
        """
        log = logger.bind(company_id=str(company_id))
        try:
            collective_risks = await self.analyze_sectors(company_id)
        except (PsychosocialError, SQLAlchemyError) as exc:
            message = exc.message if isinstance(exc, PsychosocialError) else str(exc)
            log.error("Collective risk analysis failed", error=message)
            return CollectiveActionPlanResult(
                success=False,
                analysis_performed=False,
                action_plans_generated=0,
                collective_risks=[],
                message=f"Erro na análise coletiva: {message}",
            )

        plan_ids: list[uuid.UUID] = []
        for analysis in collective_risks:
            if not analysis.requires_action_plan:
                continue
            plan_id = await self._create_sector_plan(company_id, analysis)
            if plan_id is not None:
                plan_ids.append(plan_id)

        log.info(
            "Collective risk analysis completed",
            sectors=len(collective_risks),
            action_plans_generated=len(plan_ids),
        )
        return CollectiveActionPlanResult(
            success=True,
            analysis_performed=True,
            action_plans_generated=len(plan_ids),
            collective_risks=collective_risks,
            message=(
                f"Análise coletiva realizada. {len(plan_ids)} planos de ação gerados "
                "baseados em riscos coletivos."
            ),
            action_plan_ids=plan_ids,
        )

    async def _create_sector_plan(
        self, company_id: uuid.UUID, analysis: CollectiveRiskAnalysis
    ) -> uuid.UUID | None:
        log = logger.bind(
            company_id=str(company_id),
            sector_id=str(analysis.sector_id),
            collective_risk_level=analysis.collective_risk_level.value,
        )
        try:
            existing = await self._plans.find_open_collective_plan(
                company_id, analysis.sector_id, analysis.collective_risk_level.value
            )
            if existing is not None:
                log.info("Collective action plan already open", action_plan_id=str(existing.id))
                return None
            row = await self._plans.create_with_items(
                company_id,
                build_collective_plan(analysis, self._hourly_cost),
                self._today(),
                sector_id=analysis.sector_id,
            )
        except TransientStoreError as exc:
            log.warning("Collective action plan not created", error=exc.message)
            return None

        log.info("Collective action plan created", action_plan_id=str(row.id))
        return row.id


def _is_newer(candidate: datetime | None, current: datetime | None) -> bool:
    if candidate is None:
        return False
    return current is None or candidate > current
