"""Psychosocial risk taxonomy (NR-01 / MTE guide).

Single auditable source for the five fixed risk categories, the mapping of
questionnaire items to categories, the contributing-factor labels attached to
each category, and the default recommended actions used when the template
catalog has no entry for a (category, risk level) pair.

Bump TAXONOMY_VERSION whenever a mapping below changes. The version is stamped
on every persisted risk analysis so historical rows stay interpretable.

Categories:
    organizacao_trabalho : work organisation: load, pace, deadlines
    condicoes_ambientais : environmental and physical conditions
    relacoes_socioprofissionais : relations with peers and leadership
    reconhecimento_crescimento : recognition and career growth
    elo_trabalho_vida_social : work / social-life balance
"""

from enum import Enum
from types import MappingProxyType
from typing import Mapping

TAXONOMY_VERSION: str = "2024.1"


class RiskLevel(str, Enum):
    """Ordinal exposure level derived from a 0-100 adjusted score."""

    BAIXO = "baixo"
    MEDIO = "medio"
    ALTO = "alto"
    CRITICO = "critico"

    @property
    def rank(self) -> int:
        """Position of the level in ascending severity order (0-3)."""
        return _LEVEL_ORDER.index(self)


_LEVEL_ORDER: tuple[RiskLevel, ...] = (
    RiskLevel.BAIXO,
    RiskLevel.MEDIO,
    RiskLevel.ALTO,
    RiskLevel.CRITICO,
)

# Levels that require a remediation plan
ACTIONABLE_LEVELS: frozenset[RiskLevel] = frozenset({RiskLevel.ALTO, RiskLevel.CRITICO})

ALL_CATEGORIES: tuple[str, ...] = (
    "organizacao_trabalho",
    "condicoes_ambientais",
    "relacoes_socioprofissionais",
    "reconhecimento_crescimento",
    "elo_trabalho_vida_social",
)

CATEGORY_LABELS: Mapping[str, str] = MappingProxyType(
    {
        "organizacao_trabalho": "Organização do Trabalho",
        "condicoes_ambientais": "Condições Ambientais",
        "relacoes_socioprofissionais": "Relações Socioprofissionais",
        "reconhecimento_crescimento": "Reconhecimento e Crescimento",
        "elo_trabalho_vida_social": "Elo Trabalho-Vida Social",
    }
)

CATEGORY_QUESTIONS: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "organizacao_trabalho": ("q1", "q2", "q3", "q4", "q5"),
        "condicoes_ambientais": ("q6", "q7", "q8", "q9", "q10"),
        "relacoes_socioprofissionais": ("q11", "q12", "q13", "q14", "q15"),
        "reconhecimento_crescimento": ("q16", "q17", "q18", "q19", "q20"),
        "elo_trabalho_vida_social": ("q21", "q22", "q23", "q24", "q25"),
    }
)

QUESTION_CATEGORY: Mapping[str, str] = MappingProxyType(
    {
        question_id: category
        for category, question_ids in CATEGORY_QUESTIONS.items()
        for question_id in question_ids
    }
)

CATEGORY_FACTORS: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "organizacao_trabalho": (
            "Sobrecarga de trabalho",
            "Prazos irrealistas",
            "Complexidade excessiva",
            "Interrupções frequentes",
        ),
        "condicoes_ambientais": (
            "Ambiente físico inadequado",
            "Ruído excessivo",
            "Ergonomia deficiente",
            "Recursos insuficientes",
        ),
        "relacoes_socioprofissionais": (
            "Conflitos com chefia",
            "Isolamento social",
            "Falta de suporte",
            "Comunicação deficiente",
        ),
        "reconhecimento_crescimento": (
            "Falta de reconhecimento",
            "Falta de desenvolvimento",
            "Injustiça organizacional",
            "Desvalorização profissional",
        ),
        "elo_trabalho_vida_social": (
            "Jornadas extensas",
            "Trabalho fora do horário",
            "Conflito trabalho-família",
            "Falta de tempo para descanso",
        ),
    }
)

DEFAULT_ACTIONS: Mapping[str, Mapping[RiskLevel, tuple[str, ...]]] = MappingProxyType(
    {
        "organizacao_trabalho": {
            RiskLevel.CRITICO: (
                "Redistribuir carga de trabalho imediatamente",
                "Contratar pessoal adicional",
                "Reavaliar processos críticos",
            ),
            RiskLevel.ALTO: (
                "Revisar distribuição de tarefas",
                "Implementar pausas obrigatórias",
                "Treinar gestão de tempo",
            ),
            RiskLevel.MEDIO: (
                "Monitorar carga de trabalho",
                "Capacitar em organização",
                "Melhorar planejamento",
            ),
            RiskLevel.BAIXO: ("Manter monitoramento preventivo",),
        },
        "condicoes_ambientais": {
            RiskLevel.CRITICO: (
                "Interditar ou adequar postos de trabalho inseguros",
                "Realizar análise ergonômica do trabalho (NR-17)",
                "Fornecer recursos e equipamentos adequados",
            ),
            RiskLevel.ALTO: (
                "Adequar ergonomia dos postos de trabalho",
                "Controlar ruído e iluminação",
                "Revisar disponibilidade de recursos",
            ),
            RiskLevel.MEDIO: (
                "Inspecionar condições do ambiente",
                "Coletar sugestões de melhoria do ambiente",
            ),
            RiskLevel.BAIXO: ("Manter inspeções periódicas do ambiente",),
        },
        "relacoes_socioprofissionais": {
            RiskLevel.CRITICO: (
                "Mediação imediata de conflitos",
                "Apurar denúncias de assédio",
                "Suporte psicológico imediato",
            ),
            RiskLevel.ALTO: (
                "Capacitar lideranças em gestão de pessoas",
                "Estruturar canais de comunicação",
                "Programa de apoio entre pares",
            ),
            RiskLevel.MEDIO: (
                "Workshops de comunicação",
                "Reuniões periódicas de alinhamento",
            ),
            RiskLevel.BAIXO: ("Manter canais de escuta ativos",),
        },
        "reconhecimento_crescimento": {
            RiskLevel.CRITICO: (
                "Revisar políticas de reconhecimento e remuneração",
                "Criar plano de desenvolvimento individual",
                "Revisar critérios de promoção",
            ),
            RiskLevel.ALTO: (
                "Implementar programa de reconhecimento",
                "Ofertar trilhas de capacitação",
                "Feedback estruturado periódico",
            ),
            RiskLevel.MEDIO: (
                "Divulgar oportunidades de crescimento",
                "Ampliar práticas de feedback",
            ),
            RiskLevel.BAIXO: ("Manter práticas de reconhecimento",),
        },
        "elo_trabalho_vida_social": {
            RiskLevel.CRITICO: (
                "Limitar horas extras imediatamente",
                "Garantir direito à desconexão",
                "Suporte psicológico imediato",
            ),
            RiskLevel.ALTO: (
                "Revisar escalas e jornadas",
                "Implementar política de flexibilidade",
                "Programa de qualidade de vida",
            ),
            RiskLevel.MEDIO: (
                "Campanhas de equilíbrio trabalho-vida",
                "Monitorar horas extras",
            ),
            RiskLevel.BAIXO: ("Atividades de bem-estar preventivas",),
        },
    }
)

FALLBACK_ACTION: str = "Acompanhar evolução"


def questions_for_category(category: str) -> tuple[str, ...]:
    """Return the question ids mapped to a category (empty for unknown categories)."""
    return CATEGORY_QUESTIONS.get(category, ())


def default_actions_for(category: str, risk_level: RiskLevel) -> list[str]:
    """Return the built-in recommended actions for a (category, level) pair.

    Args:
        category: One of ALL_CATEGORIES.
        risk_level: Classified exposure level.

    Returns:
        Non-empty list of action labels.
    """
    actions = DEFAULT_ACTIONS.get(category, {}).get(risk_level)
    return list(actions) if actions else [FALLBACK_ACTION]
