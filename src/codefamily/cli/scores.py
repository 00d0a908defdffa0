"""Scores and ownership CLI commands -- read stored aggregates."""

import json
from dataclasses import asdict
from typing import Optional

import typer

from ..models import ContributorScore, OwnershipShare
from ..replacement import NegativeScoreAggregator
from . import app
from ._common import console, get_config, open_store, split_repository


@app.command()
def scores(
    ctx: typer.Context,
    repository: str = typer.Argument(..., metavar="OWNER/NAME"),
    window_days: Optional[int] = typer.Option(
        None,
        "--window-days",
        help="Only count replacements from the last N days (computed on the fly)",
        min=1,
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output in machine-readable JSON format",
    ),
):
    """
    Show contributor instability scores, highest first.

    [bold cyan]Examples:[/bold cyan]

      codefamily scores acme/widgets

      codefamily scores acme/widgets --window-days 90 --json
    """
    owner, name = split_repository(repository)
    config = get_config(ctx)
    with open_store(config) as store:
        repo = store.get_repository(owner, name)
        if repo is None:
            console.print(f"[red]Unknown repository:[/red] {owner}/{name}")
            raise typer.Exit(1)
        results = NegativeScoreAggregator(store, config.scoring).scores(repo.id, window_days)

    if json_output:
        print(json.dumps([_score_dict(s) for s in results], indent=2))
        return
    if not results:
        console.print("[yellow]No scores yet.[/yellow] Run [bold]codefamily analyze[/bold] first.")
        return

    from rich.table import Table

    table = Table(title=f"Instability scores for {owner}/{name}")
    table.add_column("Contributor", style="bold")
    table.add_column("Name")
    table.add_column("Normalized", justify="right", style="yellow")
    table.add_column("Raw", justify="right")
    table.add_column("Events", justify="right")
    table.add_column("Commits", justify="right")
    for s in results:
        table.add_row(
            s.contributor_id,
            s.contributor_name,
            f"{s.normalized_score:.3f}",
            f"{s.raw_score:.3f}",
            str(s.event_count),
            str(s.total_commits),
        )
    console.print()
    console.print(table)


@app.command()
def ownership(
    ctx: typer.Context,
    repository: str = typer.Argument(..., metavar="OWNER/NAME"),
    path: str = typer.Argument(..., help="Repository-relative file path"),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output in machine-readable JSON format",
    ),
):
    """
    Show ownership shares for one file.

    [bold cyan]Examples:[/bold cyan]

      codefamily ownership acme/widgets src/app.py
    """
    owner, name = split_repository(repository)
    config = get_config(ctx)
    with open_store(config) as store:
        repo = store.get_repository(owner, name)
        record = store.get_file(repo.id, path) if repo is not None else None
        if record is None:
            console.print(f"[red]Unknown file:[/red] {owner}/{name}:{path}")
            raise typer.Exit(1)
        shares = store.ownership_for_file(record.id)

    if json_output:
        print(json.dumps([_share_dict(s) for s in shares], indent=2))
        return
    if not shares:
        console.print(f"[yellow]No ownership recorded for {path}.[/yellow]")
        return

    from rich.table import Table

    table = Table(title=f"Ownership of {path}")
    table.add_column("Contributor", style="bold")
    table.add_column("Share", justify="right", style="cyan")
    for share in shares:
        table.add_row(share.author_id, f"{share.score:.1%}")
    console.print()
    console.print(table)


def _score_dict(score: ContributorScore) -> dict:
    data = asdict(score)
    data["last_calculated_at"] = score.last_calculated_at.isoformat()
    return data


def _share_dict(share: OwnershipShare) -> dict:
    return {"path": share.path, "author_id": share.author_id, "score": share.score}
