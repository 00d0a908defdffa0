"""CLI entry point: registers all subcommands."""

import typer

app = typer.Typer(
    name="codefamily",
    help="codefamily - Contributor ownership, replacement scoring and conflict risk",
    add_completion=False,
    rich_markup_mode="rich",
)


# Import subcommands to register them
from .main import main as _main_callback  # noqa: F401, E402
from .analyze import analyze as _analyze  # noqa: F401, E402
from .worker import worker as _worker, enqueue as _enqueue  # noqa: F401, E402
from .scores import scores as _scores, ownership as _ownership  # noqa: F401, E402
