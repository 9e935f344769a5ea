import pytest

from icp_scout.models import (
    AnalysisResult,
    AnalyzedLead,
    BatchStats,
    Lead,
    ScoreOutcome,
    icp_level_for,
    revenue_bucket_for,
)

from helpers import GOOD_PAYLOAD, make_lead


@pytest.mark.parametrize(
    "score, level",
    [(0, "descartar"), (1, "N3"), (2, "N2"), (3, "N1")],
)
def test_icp_level_mapping(score: int, level: str) -> None:
    assert icp_level_for(score) == level
    assert AnalysisResult.coerce({"icp_score": score}).icp_level == level


@pytest.mark.parametrize(
    "score, expected",
    [
        (0, ("<100k", "baixo")),
        (2, ("<100k", "baixo")),
        (3, ("100k-300k", "médio")),
        (5, ("100k-300k", "médio")),
        (6, ("300k-500k", "alto")),
        (7, ("300k-500k", "alto")),
        (8, (">500k", "premium")),
        (10, (">500k", "premium")),
    ],
)
def test_revenue_bucket_boundaries(score: int, expected: tuple[str, str]) -> None:
    assert revenue_bucket_for(score) == expected
    result = AnalysisResult.coerce({"faturamento_score": score})
    assert (result.faturamento_estimado, result.faturamento_nivel) == expected


def test_coerce_defaults_out_of_range_and_missing_values() -> None:
    result = AnalysisResult.coerce({"icp_score": 7, "faturamento_score": "muito", "brecha": None})

    assert result.icp_score == 0
    assert result.icp_level == "descartar"
    assert result.faturamento_score == 0
    assert result.faturamento_nivel == "baixo"
    assert result.brecha == ""


def test_coerce_defaults_non_finite_scores() -> None:
    result = AnalysisResult.coerce({"icp_score": float("inf"), "faturamento_score": float("-inf")})

    assert result.icp_score == 0
    assert result.icp_level == "descartar"
    assert result.faturamento_nivel == "baixo"


def test_coerce_ignores_unknown_fields_and_derives_labels_from_scores() -> None:
    payload = dict(GOOD_PAYLOAD, icp_level="N3", faturamento_nivel="baixo", unexpected="ignored")
    result = AnalysisResult.coerce(payload)

    assert result.icp_level == "N1"
    assert result.faturamento_nivel == "premium"
    assert not hasattr(result, "unexpected")


def test_coerce_reads_extended_fields() -> None:
    result = AnalysisResult.coerce(
        {
            "icp_score": "2",
            "quebra_gelo": "Adorei o antes e depois de vocês",
            "sinais_vitais": {"tem_login": True, "ticket_medio_alto": "sim"},
            "site_tech": "WordPress, Elementor",
        }
    )

    assert result.icp_score == 2
    assert result.quebra_gelo == "Adorei o antes e depois de vocês"
    assert result.sinais_vitais is not None
    assert result.sinais_vitais.tem_login is True
    assert result.sinais_vitais.ticket_medio_alto is True
    assert result.sinais_vitais.custo_fixo_alto is False
    assert result.site_tech == ["WordPress", "Elementor"]


def test_coerce_accepts_non_object_payload() -> None:
    assert AnalysisResult.coerce(["not", "an", "object"]) == AnalysisResult()


def test_failed_outcome_produces_baseline_lead() -> None:
    lead = make_lead()
    outcome = ScoreOutcome(success=False, error="API error: 418 - teapot", error_kind="api_error")

    analyzed = AnalyzedLead.from_outcome(lead, outcome)

    assert analyzed.success is False
    assert analyzed.icp_level == "descartar"
    assert analyzed.icp_score == 0
    assert analyzed.faturamento_score == 0
    assert analyzed.error == "API error: 418 - teapot"
    assert analyzed.justificativa == "API error: 418 - teapot"
    assert analyzed.analysis_status == "error"
    assert analyzed.lead == lead


def test_lead_normalizes_uf_and_blank_fields() -> None:
    lead = Lead(business_name="Clínica X", city="Rio", uf=" rj ", website=None)

    assert lead.uf == "RJ"
    assert lead.website == ""
    assert lead.identity == ("clínica x", "rio", "rj", "")


def test_batch_stats_rates() -> None:
    stats = BatchStats(total=4)
    lead = make_lead()
    good = AnalyzedLead.from_outcome(lead, ScoreOutcome(success=True, result=AnalysisResult.coerce(GOOD_PAYLOAD)))
    cached = AnalyzedLead.from_outcome(lead, ScoreOutcome(success=True, result=AnalysisResult()), from_cache=True)
    limited = AnalyzedLead.from_outcome(
        lead, ScoreOutcome(success=False, error="Rate limit", error_kind="rate_limit_exceeded")
    )
    for analyzed in (good, cached, limited, good):
        stats.record(analyzed)

    assert stats.successful == 3
    assert stats.failed == 1
    assert stats.cached == 1
    assert stats.rate_limit_errors == 1
    assert stats.success_rate == 75.0
    assert stats.cache_hit_rate == 25.0
    assert BatchStats().success_rate == 0.0
