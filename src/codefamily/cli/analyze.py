"""Analyze CLI command -- full history analysis of one repository."""

import asyncio
from typing import Optional

import typer

from ..exceptions import AnalysisCancelledError, CodeFamilyError
from ..pipeline import AnalysisRun, AnalysisSupervisor, RunSummary
from ..services import ExternalServices
from . import app
from ._common import console, get_config, open_store, split_repository


@app.command()
def analyze(
    ctx: typer.Context,
    repository: str = typer.Argument(..., metavar="OWNER/NAME", help="Repository to analyze"),
    url: Optional[str] = typer.Option(
        None,
        "--url",
        help="Clone URL (default: https://github.com/OWNER/NAME.git)",
    ),
    recalculate: bool = typer.Option(
        False,
        "--recalculate",
        help="Rebuild ownership, events and scores from stored facts without walking history",
    ),
):
    """
    Walk every branch of a repository and rebuild its aggregates.

    The first run clones into the configured clone directory; later runs
    fetch and only ingest commits that are not stored yet.

    [bold cyan]Examples:[/bold cyan]

      codefamily analyze acme/widgets

      codefamily analyze acme/widgets --url git@github.com:acme/widgets.git

      codefamily analyze acme/widgets --recalculate
    """
    owner, name = split_repository(repository)
    config = get_config(ctx)

    async def run() -> RunSummary:
        services = ExternalServices.from_config(config)
        supervisor = AnalysisSupervisor()
        try:
            with open_store(config) as store:

                async def factory(token) -> RunSummary:
                    analysis = AnalysisRun(store, config, services, token=token)
                    if recalculate:
                        return await analysis.recalculate(owner, name)
                    return await analysis.full(owner, name, url=url)

                return await supervisor.run(f"{owner}/{name}", factory)
        finally:
            await supervisor.shutdown()
            await services.aclose()

    try:
        summary = asyncio.run(run())
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted.[/yellow]")
        raise typer.Exit(130)
    except AnalysisCancelledError:
        console.print("[yellow]Analysis cancelled.[/yellow]")
        raise typer.Exit(1)
    except CodeFamilyError as e:
        console.print(f"[red]Analysis failed:[/red] {e}")
        raise typer.Exit(1)

    _output_rich(summary)


def _output_rich(summary: RunSummary) -> None:
    from rich.table import Table

    table = Table(title=f"Analysis of {summary.repository}", show_header=False, pad_edge=True)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    rows = [
        ("Commits walked", summary.commits_walked),
        ("New commits", summary.commits_new),
        ("Commits skipped", summary.commits_failed),
        ("Files processed", summary.files_processed),
        ("Semantic deltas", summary.deltas),
        ("Dependency edges", summary.edges),
        ("Edges dropped", summary.edges_dropped),
        ("Edges reconciled", summary.edges_reconciled),
        ("Review requests", summary.review_requests),
        ("Replacement events", summary.events),
        ("Contributors scored", summary.contributors),
    ]
    for label, value in rows:
        table.add_row(label, str(value))

    console.print()
    console.print(table)
