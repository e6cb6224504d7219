"""Log handler setup for the command-line entry points."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

from tariff_sync.core.config import LoggingConfig


def configure_logging(
    config: LoggingConfig | None = None,
    verbose: bool = False,
    console: Console | None = None,
) -> None:
    """Route the ``tariff_sync`` logger tree through a Rich handler.

    Library modules only create loggers; handlers are installed here so
    that importing the package never changes the host's logging setup.
    """
    config = config or LoggingConfig()
    level = logging.DEBUG if verbose else getattr(logging, config.level)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter(config.format))

    root = logging.getLogger("tariff_sync")
    for existing in list(root.handlers):
        if isinstance(existing, RichHandler):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)
