"""Built-in plan building blocks used by the ActionPlanGenerator.

The template catalog in the store supplies the main action lists. This module
holds the fixed vocabulary layered on top of it:

    FACTOR_ACTIONS           extra action per contributing factor
    CATEGORY_SUCCESS_METRICS category-specific success metrics
    CATEGORY_COMPLIANCE      legal references per category
    fallback_actions()       2-step plan used when no template matches
    integrated_actions()     cross-category actions of the integrated plan
"""

import json
from types import MappingProxyType
from typing import Any, Mapping

from psychosocial_automation.core.domain import ActionItem
from psychosocial_automation.core.taxonomy import RiskLevel
from psychosocial_automation.observability import get_logger

logger = get_logger(__name__)

NR01_REQUIREMENT: str = "NR-01 - Disposições Gerais e Gerenciamento de Riscos Ocupacionais"

CATEGORY_COMPLIANCE: Mapping[str, str] = MappingProxyType(
    {
        "organizacao_trabalho": "CLT Art. 157 - Normas de segurança do trabalho",
        "condicoes_ambientais": "NR-17 - Ergonomia",
        "relacoes_socioprofissionais": "Lei 13.467/2017 - Reforma Trabalhista",
    }
)

PLAN_DESCRIPTION_FOOTER: str = (
    "Plano gerado automaticamente baseado na análise de risco psicossocial conforme NR-01."
)

# Defaults applied to template actions missing a field
DEFAULT_ACTION_TIMELINE_DAYS: int = 30
DEFAULT_ACTION_HOURS: float = 0.0


def _action(
    title: str,
    description: str,
    responsible_role: str,
    estimated_hours: float,
    timeline_days: int,
    mandatory: bool = False,
) -> ActionItem:
    return ActionItem(
        title=title,
        description=description,
        responsible_role=responsible_role,
        estimated_hours=estimated_hours,
        timeline_days=timeline_days,
        mandatory=mandatory,
    )


FACTOR_ACTIONS: Mapping[str, ActionItem] = MappingProxyType(
    {
        "Sobrecarga de trabalho": _action(
            "Redimensionar carga de trabalho",
            "Mapear demandas por colaborador e redistribuir tarefas acima da capacidade.",
            "Gestor da área",
            16,
            30,
        ),
        "Prazos irrealistas": _action(
            "Revisar prazos e metas",
            "Renegociar prazos com as áreas demandantes e ajustar metas à capacidade real.",
            "Gestor da área",
            8,
            21,
        ),
        "Interrupções frequentes": _action(
            "Proteger períodos de trabalho focado",
            "Definir janelas sem reuniões e fluxo único de entrada de demandas.",
            "Gestor da área",
            4,
            14,
        ),
        "Ergonomia deficiente": _action(
            "Realizar análise ergonômica dos postos",
            "Aplicar a AET prevista na NR-17 e adequar mobiliário e equipamentos.",
            "SESMT",
            24,
            45,
        ),
        "Ruído excessivo": _action(
            "Controlar fontes de ruído",
            "Medir níveis de pressão sonora e implantar medidas de controle coletivo.",
            "SESMT",
            12,
            30,
        ),
        "Recursos insuficientes": _action(
            "Levantar e suprir recursos de trabalho",
            "Inventariar ferramentas e insumos faltantes e priorizar a aquisição.",
            "Gestor da área",
            8,
            30,
        ),
        "Conflitos com chefia": _action(
            "Mediar conflitos com lideranças",
            "Conduzir mediação com apoio de RH e acompanhar os acordos firmados.",
            "Recursos Humanos",
            12,
            14,
        ),
        "Isolamento social": _action(
            "Promover integração da equipe",
            "Criar rituais de equipe e programa de padrinhos para reduzir o isolamento.",
            "Recursos Humanos",
            8,
            30,
        ),
        "Comunicação deficiente": _action(
            "Estruturar canais de comunicação",
            "Definir reuniões periódicas de alinhamento e canal formal de feedback.",
            "Gestor da área",
            6,
            21,
        ),
        "Falta de reconhecimento": _action(
            "Implantar práticas de reconhecimento",
            "Criar rotina de reconhecimento público e feedback positivo estruturado.",
            "Recursos Humanos",
            10,
            30,
        ),
        "Falta de desenvolvimento": _action(
            "Elaborar planos de desenvolvimento individual",
            "Definir PDI com metas de capacitação para cada colaborador da área.",
            "Recursos Humanos",
            16,
            60,
        ),
        "Injustiça organizacional": _action(
            "Revisar critérios de avaliação e promoção",
            "Tornar públicos e objetivos os critérios de avaliação e ascensão.",
            "Recursos Humanos",
            12,
            45,
        ),
        "Jornadas extensas": _action(
            "Controlar jornada e horas extras",
            "Monitorar registros de ponto e limitar horas extras recorrentes.",
            "Recursos Humanos",
            8,
            14,
        ),
        "Trabalho fora do horário": _action(
            "Formalizar política de desconexão",
            "Restringir contatos fora do expediente e comunicar a política às lideranças.",
            "Recursos Humanos",
            6,
            21,
        ),
        "Falta de tempo para descanso": _action(
            "Garantir pausas e descanso",
            "Assegurar intervalos intrajornada e programação de férias.",
            "Gestor da área",
            4,
            14,
        ),
    }
)

CATEGORY_SUCCESS_METRICS: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "organizacao_trabalho": (
            "Redução de horas extras em 30%",
            "Cumprimento de prazos sem sobrecarga relatado na reavaliação",
        ),
        "condicoes_ambientais": (
            "100% dos postos avaliados ergonomicamente",
            "Redução de queixas sobre o ambiente físico",
        ),
        "relacoes_socioprofissionais": (
            "Redução de conflitos registrados",
            "Aumento da percepção de suporte da liderança",
        ),
        "reconhecimento_crescimento": (
            "Planos de desenvolvimento individual para 100% da equipe",
            "Aumento da percepção de reconhecimento na reavaliação",
        ),
        "elo_trabalho_vida_social": (
            "Redução de jornadas acima de 10 horas",
            "Aumento da satisfação com o equilíbrio trabalho-vida",
        ),
    }
)

GENERIC_SUCCESS_METRICS: tuple[str, ...] = (
    "Conclusão de 100% das ações obrigatórias no prazo",
    "Reavaliação psicossocial sem agravamento do nível de risco",
)

INTEGRATED_SUCCESS_METRICS: tuple[str, ...] = (
    "Redução do número de categorias em risco alto ou crítico",
    "Reavaliação integrada semanal realizada",
)


def fallback_actions(risk_level: RiskLevel) -> list[ActionItem]:
    """Minimal plan used when the catalog has no template for a category/level.

    Immediate control measures are mandatory only at critico.
    """
    critical = risk_level == RiskLevel.CRITICO
    return [
        _action(
            "Avaliação detalhada",
            "Aprofundar a avaliação dos fatores de risco identificados com entrevistas e grupos focais.",
            "SESMT",
            8,
            7 if critical else 15,
            mandatory=True,
        ),
        _action(
            "Medidas de controle imediatas",
            "Implementar medidas de controle para reduzir a exposição enquanto o plano definitivo é elaborado.",
            "Gestor da área",
            16,
            3 if critical else 30,
            mandatory=critical,
        ),
    ]


CROSS_CATEGORY_ASSESSMENT_TITLE: str = "Avaliação integrada de riscos psicossociais"
MULTI_FACTOR_INTERVENTION_TITLE: str = "Intervenção multifatorial coordenada"


def integrated_actions() -> list[ActionItem]:
    """Cross-category actions placed on top of an integrated plan."""
    return [
        _action(
            CROSS_CATEGORY_ASSESSMENT_TITLE,
            "Avaliar em conjunto as categorias em risco elevado e as relações entre seus fatores.",
            "SESMT / Psicologia Organizacional",
            16,
            7,
            mandatory=True,
        ),
        ActionItem(
            title=MULTI_FACTOR_INTERVENTION_TITLE,
            description="Coordenar as intervenções das categorias afetadas em um cronograma único.",
            responsible_role="Comitê de Saúde e Segurança",
            estimated_hours=40,
            timeline_days=30,
            mandatory=True,
            dependencies=(CROSS_CATEGORY_ASSESSMENT_TITLE,),
        ),
    ]


def parse_template_actions(raw: Any) -> list[ActionItem]:
    """Convert stored template actions into ActionItems.

    Accepts a list of dicts or a JSON-encoded list. Missing fields take the
    documented defaults. Unreadable payloads yield an empty list so the caller
    falls back to the built-in plan.

    Args:
        raw: template_actions column value.

    Returns:
        Parsed actions in stored order.
    """
    if not raw:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Unreadable template actions; using fallback")
            return []
    if not isinstance(raw, list):
        return []

    actions: list[ActionItem] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        actions.append(
            ActionItem(
                title=str(entry.get("title") or ""),
                description=str(entry.get("description") or ""),
                responsible_role=str(entry.get("responsible_role") or ""),
                estimated_hours=float(entry.get("estimated_hours") or DEFAULT_ACTION_HOURS),
                timeline_days=int(entry.get("timeline_days") or DEFAULT_ACTION_TIMELINE_DAYS),
                mandatory=bool(entry.get("mandatory", False)),
                dependencies=tuple(entry.get("dependencies") or ()),
            )
        )
    return actions


def compliance_requirements_for(category: str | None, legal_requirements: str | None = None) -> list[str]:
    """NR-01 plus the template's legal reference and the category reference."""
    requirements = [NR01_REQUIREMENT]
    if legal_requirements:
        requirements.append(legal_requirements)
    category_requirement = CATEGORY_COMPLIANCE.get(category or "")
    if category_requirement and category_requirement not in requirements:
        requirements.append(category_requirement)
    return requirements
