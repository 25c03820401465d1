"""Logging setup for command-line use."""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "WARNING", console: Optional[Console] = None) -> None:
    """Route circdesk loggers through a Rich handler.

    Library code only creates module loggers; handlers are installed
    here so embedding applications keep control of their own logging.
    """
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    logger = logging.getLogger("circdesk")
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(level.upper())
