"""Rule-based stand-in for the model, used for offline dry runs."""
from __future__ import annotations

import re

from .models import AnalysisResult, Lead

STRUCTURED_CLINIC_TOKENS = ["clínica", "clinica", "centro", "instituto", "equipe", "profissionais"]
MARKETING_TOKENS = ["instagram", "facebook", "blog", "marketing", "ads", "digital"]
PREMIUM_SERVICE_TOKENS = ["laser", "harmonização", "harmonizacao", "bioestimulador", "premium"]
REVIEW_COUNT_RE = re.compile(r"(\d+)\s*avalia", re.IGNORECASE)


def _has_any(text: str, tokens: list[str]) -> bool:
    lower = text.lower()
    return any(token in lower for token in tokens)


def icp_points(lead: Lead) -> int:
    score = 0
    if lead.website.strip():
        score += 1
    if _has_any(lead.raw_description, STRUCTURED_CLINIC_TOKENS):
        score += 1
    if _has_any(lead.raw_description, MARKETING_TOKENS):
        score += 1
    return score


def revenue_points(lead: Lead) -> int:
    text = f"{lead.business_name} {lead.raw_description}"
    score = 0
    if lead.website.strip():
        score += 2
    if _has_any(text, STRUCTURED_CLINIC_TOKENS):
        score += 2
    if _has_any(text, MARKETING_TOKENS):
        score += 1
    if _has_any(text, PREMIUM_SERVICE_TOKENS):
        score += 1
    match = REVIEW_COUNT_RE.search(text)
    if match and int(match.group(1)) >= 100:
        score += 1
    return min(score, 10)


def heuristic_payload(lead: Lead) -> dict:
    icp = icp_points(lead)
    revenue = revenue_points(lead)
    brecha = (
        "Captação digital sem presença estruturada"
        if not lead.website
        else "Jornada do paciente sem agendamento online evidente"
    )
    return {
        "icp_score": icp,
        "faturamento_score": revenue,
        "brecha": brecha,
        "script_video": f"Oi, equipe da {lead.business_name}! Vi o trabalho de vocês em {lead.city} e tive uma ideia rápida.",
        "texto_direct": f"Olá! Acompanhei a {lead.business_name} e notei uma oportunidade: {brecha.lower()}. Posso te mostrar?",
        "justificativa": f"Pontuação heurística: ICP {icp}/3, faturamento {revenue}/10.",
    }


def heuristic_result(lead: Lead) -> AnalysisResult:
    return AnalysisResult.coerce(heuristic_payload(lead))
