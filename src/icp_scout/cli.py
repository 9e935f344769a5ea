from __future__ import annotations

import asyncio
import logging
from datetime import date
from pathlib import Path
from typing import Optional

import typer

from .cache import SqliteCacheStore
from .config import PipelineConfig
from .core_store import fetch_session_leads
from .llm import get_transport
from .models import BatchReport, Lead
from .orchestrator import BatchOrchestrator
from .scoring import ScoringClient
from .sink import SessionContext, SqliteLeadSink, SqliteSessionStore
from .storage import load_leads, write_results_csv

app = typer.Typer(help="icp-scout: qualify clinic leads against the ICP and export the results.")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")


async def run_batch(
    config: PipelineConfig,
    leads: list[Lead],
    session_name: str,
    user_id: Optional[str],
) -> BatchReport:
    transport = get_transport(config)
    try:
        orchestrator = BatchOrchestrator(
            config,
            ScoringClient(transport, config),
            cache=SqliteCacheStore(config.db_path, ttl_days=config.cache_ttl_days),
            sink=SqliteLeadSink(config.db_path),
            sessions=SqliteSessionStore(config.db_path),
        )
        return await orchestrator.process(
            leads,
            SessionContext(user_id=user_id),
            session_name=session_name,
        )
    finally:
        await transport.aclose()


@app.command()
def analyze(
    input: Path = typer.Argument(..., exists=True, dir_okay=False, help="CSV or JSON file with leads"),
    output: Optional[Path] = typer.Option(None, "--output"),
    session_name: Optional[str] = typer.Option(None, "--session-name"),
    user_id: Optional[str] = typer.Option(None, "--user-id"),
    provider: Optional[str] = typer.Option(None, "--provider", help="gemini, openai or dry-run"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    max_concurrency: Optional[int] = typer.Option(None, "--max-concurrency", min=1),
    inspect_sites: bool = typer.Option(False, "--inspect-sites"),
    verbose: bool = typer.Option(False, "--verbose"),
) -> None:
    """Score every lead in INPUT and store the results."""
    _configure_logging(verbose)
    name = session_name or f"{input.stem} {date.today().isoformat()}"

    try:
        leads = load_leads(input)
        config = PipelineConfig.from_env(
            provider="dry-run" if dry_run else provider,
            max_concurrency=max_concurrency,
            inspect_sites=inspect_sites or None,
        )
        report = asyncio.run(run_batch(config, leads, name, user_id))
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(
        f"Analyzed {report.total} leads: {report.successful} successful, {report.failed} failed, "
        f"{report.cached} from cache ({report.cache_hit_rate}% cache hits, {report.success_rate}% success)"
    )
    typer.echo(f"Session: {report.session_id}")
    if output:
        write_results_csv(report.results, output)
        typer.echo(f"Results written to {output}")


@app.command()
def export(
    session_id: str = typer.Argument(...),
    output: Optional[Path] = typer.Option(None, "--output"),
    include_failed: bool = typer.Option(False, "--all", help="Include leads whose analysis failed"),
) -> None:
    """Export the leads of one session as CSV."""
    config = PipelineConfig.from_env()
    store = SqliteSessionStore(config.db_path)
    session = asyncio.run(store.get(session_id))
    if session is None:
        raise typer.BadParameter(f"Session id not found: {session_id}")

    leads = fetch_session_leads(config.db_path, session_id, completed_only=not include_failed)
    output = output or Path(f"{session.name or 'leads_analisados'}_{date.today().isoformat()}.csv")
    write_results_csv(leads, output)
    typer.echo(f"Exported {len(leads)} leads -> {output}")


@app.command()
def sessions() -> None:
    """List analysis sessions with their counters."""
    config = PipelineConfig.from_env()
    for session in SqliteSessionStore(config.db_path).list_sessions():
        typer.echo(
            f"{session.session_id}  {session.status:<10} {session.processed_leads}/{session.total_leads} processed, "
            f"{session.successful_leads} ok, {session.failed_leads} failed  {session.name}"
        )


@app.command("purge-cache")
def purge_cache() -> None:
    """Delete cache entries older than the configured horizon."""
    config = PipelineConfig.from_env()
    removed = SqliteCacheStore(config.db_path, ttl_days=config.cache_ttl_days).purge_expired()
    typer.echo(f"Removed {removed} expired cache entries")


if __name__ == "__main__":
    app()
