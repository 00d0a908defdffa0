"""Shared CLI helpers."""

from contextlib import contextmanager
from typing import Iterator

import typer
from rich.console import Console

from ..config import AppConfig
from ..persistence import AnalysisDB, AnalysisStore

console = Console()


def get_config(ctx: typer.Context) -> AppConfig:
    """Configuration loaded by the main callback."""
    return ctx.obj["config"]


def split_repository(value: str) -> tuple[str, str]:
    """Parse ``OWNER/NAME``."""
    owner, sep, name = value.strip().strip("/").partition("/")
    if not sep or not owner or not name or "/" in name:
        raise typer.BadParameter(f"expected OWNER/NAME, got '{value}'")
    return owner, name


@contextmanager
def open_store(config: AppConfig) -> Iterator[AnalysisStore]:
    with AnalysisDB(config.database_path) as db:
        yield AnalysisStore(db.conn)
