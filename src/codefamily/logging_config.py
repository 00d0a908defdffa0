"""
Logging for the codefamily CLI and worker.

Everything logs under the ``codefamily`` namespace. Terminal output goes
through rich on stderr so stdout stays clean for ``--json``; a worker can
additionally append plain lines to a file.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "codefamily"

FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Third-party loggers that are chatty at INFO
_QUIETED = ("httpx", "httpcore")


def _level(verbose: bool, quiet: bool) -> int:
    if quiet:
        return logging.ERROR
    if verbose:
        return logging.DEBUG
    return logging.INFO


def setup_logging(
    verbose: bool = False, quiet: bool = False, log_file: Optional[str] = None
) -> logging.Logger:
    """
    Install handlers on the ``codefamily`` logger.

    Calling it again replaces the handlers from the previous call, so a
    process that re-parses its options never logs twice.

    Args:
        verbose: DEBUG level, with source paths and locals in tracebacks
        quiet: ERROR level only; wins over ``verbose``
        log_file: Also append to this file

    Returns:
        The configured ``codefamily`` logger
    """
    level = _level(verbose, quiet)
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    terminal = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        tracebacks_show_locals=verbose,
        markup=False,
        show_path=verbose,
        log_time_format="[%X]",
    )
    logger.addHandler(terminal)

    if log_file:
        to_file = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        to_file.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(to_file)

    logger.setLevel(level)
    logger.propagate = False

    for name in _QUIETED:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Module logger under the ``codefamily`` namespace (``get_logger(__name__)``)."""
    if not name:
        return logging.getLogger(ROOT_LOGGER)
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
