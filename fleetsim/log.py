"""Logging setup for processes that embed fleetsim.

Library modules only create module loggers with ``logging.getLogger(__name__)``. The owning
process calls :func:`configure_logging` once to get readable console output through Rich.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "fleetsim"
CONSOLE = Console(stderr=True)


def configure_logging(level: int | str = logging.INFO, console: Console | None = None) -> logging.Logger:
    """Attach a RichHandler to the ``fleetsim`` logger.

    Calling this more than once replaces the previously installed Rich handler instead of
    stacking duplicates.

    Args:
        level: Logging level for the package logger.
        console: Console to render to. Defaults to stderr.

    Returns:
        logging.Logger: The configured package logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(console=console or CONSOLE, show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger
