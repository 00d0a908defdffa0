"""Worker and enqueue CLI commands -- the incremental pipeline."""

import asyncio
import signal
from pathlib import Path

import typer

from ..logging_config import get_logger
from ..pipeline import AnalysisSupervisor, PipelineCoordinator
from ..services import ExternalServices
from . import app
from ._common import console, get_config, open_store

logger = get_logger(__name__)


@app.command()
def worker(ctx: typer.Context):
    """
    Drain the work queue until interrupted.

    Push deliveries are ingested incrementally and assessed for conflict
    risk; review request deliveries update the stored open requests.

    [bold cyan]Examples:[/bold cyan]

      codefamily worker

      codefamily -v worker
    """
    config = get_config(ctx)

    async def run() -> None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                # Windows event loops have no signal handlers
                pass

        services = ExternalServices.from_config(config)
        supervisor = AnalysisSupervisor()
        try:
            with open_store(config) as store:
                coordinator = PipelineCoordinator(store, config, services, supervisor)
                await coordinator.run(stop)
        finally:
            await supervisor.shutdown()
            await services.aclose()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Worker interrupted")


@app.command()
def enqueue(
    ctx: typer.Context,
    event_type: str = typer.Argument(..., help="Event type, e.g. push or pull_request"),
    payload_file: Path = typer.Argument(
        ...,
        help="JSON payload file",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
):
    """
    Put a webhook payload on the work queue without signature checks.

    [bold cyan]Examples:[/bold cyan]

      codefamily enqueue push payload.json
    """
    config = get_config(ctx)
    try:
        payload = payload_file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        console.print(f"[red]Cannot read payload:[/red] {e}")
        raise typer.Exit(1)

    with open_store(config) as store:
        item_id = store.enqueue(event_type, payload)
    console.print(f"Queued [bold]{event_type}[/bold] as item [cyan]{item_id}[/cyan]")
