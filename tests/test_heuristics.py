import pytest

from icp_scout.heuristics import heuristic_result, icp_points, revenue_points

from helpers import make_lead


@pytest.mark.parametrize(
    ("website", "description", "expected"),
    [
        ("", "consultório individual", 0),
        ("https://dra-ana.com.br", "consultório individual", 1),
        ("https://bella.com.br", "clínica com equipe", 2),
        ("https://bella.com.br", "clínica com equipe e instagram ativo", 3),
        ("", "", 0),
    ],
)
def test_icp_points(website: str, description: str, expected: int) -> None:
    assert icp_points(make_lead(website=website, raw_description=description)) == expected


def test_revenue_points_reward_structure_and_reviews() -> None:
    small = make_lead("Dra. Ana", website="", raw_description="atendimento individual")
    large = make_lead(
        "Instituto Bella",
        raw_description="clínica com laser e harmonização, instagram ativo, 240 avaliações",
    )

    assert revenue_points(small) == 0
    assert revenue_points(large) == 7


def test_heuristic_result_labels_follow_scores() -> None:
    result = heuristic_result(make_lead())

    assert result.icp_score == 3
    assert result.icp_level == "N1"
    assert result.faturamento_score == 5
    assert (result.faturamento_estimado, result.faturamento_nivel) == ("100k-300k", "médio")
    assert "Clínica Bella" in result.script_video
