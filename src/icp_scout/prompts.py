from __future__ import annotations

from typing import Optional

from .models import Lead

SYSTEM_PROMPT = """Você é um especialista em qualificação de leads B2B para o mercado de clínicas de estética e saúde no Brasil.

Analise o lead e retorne SOMENTE um JSON válido, sem texto adicional, com esta estrutura exata:

{
  "icp_score": 0,
  "icp_level": "descartar",
  "faturamento_score": 0,
  "faturamento_estimado": "<100k",
  "faturamento_nivel": "baixo",
  "brecha": "string",
  "script_video": "string",
  "texto_direct": "string",
  "justificativa": "string",
  "quebra_gelo": "string",
  "sinais_vitais": {"tem_login": false, "ticket_medio_alto": false, "custo_fixo_alto": false}
}

REGRAS ICP SCORE (0-3):
- +1 se tem site profissional
- +1 se é clínica estruturada (não consultório individual)
- +1 se há sinais de marketing/tecnologia

ICP LEVELS:
- 0 = descartar
- 1 = N3
- 2 = N2
- 3 = N1

REGRAS FATURAMENTO SCORE (0-10) - FOCO EM >500k:
- +2 site premium (design moderno, múltiplas páginas)
- +2 estrutura física robusta (múltiplos profissionais, consultórios)
- +2 equipe/secretária (indícios de organização)
- +1 marketing ativo (blog, redes sociais, ads)
- +1 serviços premium (laser, harmonização, bioestimuladores)
- +1 reviews elevadas (muitas avaliações positivas)
- +1 localização premium (bairros nobres)

CLASSIFICAÇÃO FATURAMENTO:
- 8-10 pontos → >500k (premium)
- 6-7 pontos → 300k-500k (alto)
- 3-5 pontos → 100k-300k (médio)
- 0-2 pontos → <100k (baixo)

BRECHA:
Uma única oportunidade concreta relacionada a: eficiência, governança, jornada do paciente, posicionamento, captação ou experiência.

SCRIPT DE VÍDEO:
- Máximo 12 segundos
- Linguagem natural, primeira pessoa
- Tom consultivo, sem pressão
- Gancho leve e personalizado

TEXTO DIRECT:
- Curto e humano
- Zero pressão de venda
- Menciona a brecha identificada
- Convite leve para conversa

QUEBRA-GELO:
Uma frase curta e específica sobre o negócio para abrir a conversa.

JUSTIFICATIVA:
Breve explicação lógica da classificação baseada nos dados analisados.

IMPORTANTE: Retorne APENAS o JSON, sem markdown, sem explicações."""

NOT_INFORMED = "não informado"


def build_user_prompt(lead: Lead, site_notes: Optional[str] = None) -> str:
    lines = [
        "Analise este lead:",
        "",
        f"Nome: {lead.business_name}",
        f"Cidade: {lead.city} - {lead.uf}",
        f"Website: {lead.website or NOT_INFORMED}",
        f"Endereço: {lead.address}",
        f"Telefone: {lead.phone or NOT_INFORMED}",
        f"Descrição: {lead.raw_description}",
        f"URL Maps: {lead.maps_url}",
    ]
    if site_notes:
        lines.append(f"Sinais do site: {site_notes}")
    return "\n".join(lines)


def build_prompt(lead: Lead, site_notes: Optional[str] = None) -> str:
    return SYSTEM_PROMPT + "\n\n" + build_user_prompt(lead, site_notes)
