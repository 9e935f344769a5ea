import csv
import re
from pathlib import Path

import pytest
from typer.testing import CliRunner

from icp_scout.cli import app

runner = CliRunner()

LEADS_CSV = """business_name,city,uf,website,raw_description
Clínica Bella,Rio de Janeiro,RJ,https://bella.com.br,Clínica de estética com equipe e instagram ativo
Consultório Dr. Silva,Niterói,RJ,,consultório
"""


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ICP_SCOUT_DB_PATH", str(tmp_path / "icp.db"))
    monkeypatch.setenv("ICP_SCOUT_REQUEST_DELAY_MS", "0")
    monkeypatch.setenv("ICP_SCOUT_BATCH_DELAY_MS", "0")
    for variable in ["ICP_SCOUT_PROVIDER", "ICP_SCOUT_INSPECT_SITES", "GOOGLE_AI_API_KEY", "OPENAI_API_KEY"]:
        monkeypatch.delenv(variable, raising=False)
    (tmp_path / "leads.csv").write_text(LEADS_CSV, encoding="utf-8")
    return tmp_path


def _session_id(output: str) -> str:
    match = re.search(r"Session: (\S+)", output)
    assert match, output
    return match.group(1)


def test_analyze_then_export(workspace: Path) -> None:
    result = runner.invoke(
        app,
        ["analyze", "leads.csv", "--dry-run", "--session-name", "Rio", "--output", "out/analisados.csv"],
    )

    assert result.exit_code == 0, result.output
    assert "Analyzed 2 leads: 2 successful, 0 failed, 0 from cache" in result.output
    session_id = _session_id(result.output)

    with (workspace / "out" / "analisados.csv").open(newline="", encoding="utf-8") as f:
        rows = {row["business_name"]: row for row in csv.DictReader(f)}
    assert rows["Clínica Bella"]["icp_level"] == "N1"
    assert rows["Consultório Dr. Silva"]["icp_level"] == "descartar"

    exported = runner.invoke(app, ["export", session_id, "--output", "export.csv"])
    assert exported.exit_code == 0, exported.output
    assert "Exported 2 leads" in exported.output
    with (workspace / "export.csv").open(newline="", encoding="utf-8") as f:
        assert sorted(row["business_name"] for row in csv.DictReader(f)) == ["Clínica Bella", "Consultório Dr. Silva"]

    listed = runner.invoke(app, ["sessions"])
    assert session_id in listed.output
    assert "completed" in listed.output
    assert "2/2 processed" in listed.output


def test_second_run_hits_cache(workspace: Path) -> None:
    runner.invoke(app, ["analyze", "leads.csv", "--dry-run"])
    result = runner.invoke(app, ["analyze", "leads.csv", "--dry-run"])

    assert result.exit_code == 0, result.output
    assert "2 from cache (100.0% cache hits" in result.output


def test_missing_api_key_exits_with_error(workspace: Path) -> None:
    result = runner.invoke(app, ["analyze", "leads.csv"])

    assert result.exit_code == 1
    assert "GOOGLE_AI_API_KEY" in result.output


def test_export_unknown_session(workspace: Path) -> None:
    result = runner.invoke(app, ["export", "does-not-exist"])

    assert result.exit_code != 0


def test_purge_cache_reports_removed_entries(workspace: Path) -> None:
    runner.invoke(app, ["analyze", "leads.csv", "--dry-run"])

    result = runner.invoke(app, ["purge-cache"])

    assert result.exit_code == 0, result.output
    assert "Removed 0 expired cache entries" in result.output


def test_malformed_input_exits_with_error(workspace: Path) -> None:
    (workspace / "notes.txt").write_text("just a note, not leads", encoding="utf-8")

    result = runner.invoke(app, ["analyze", "notes.txt", "--dry-run"])

    assert result.exit_code == 1
    assert "Error: Input must be a CSV" in result.output
