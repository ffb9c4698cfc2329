"""Logging configuration for the CLI and API server."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_NOISY_LOGGERS = ("sqlalchemy", "aiosqlite", "asyncio", "uvicorn.access")

_configured = False


def setup_logging(level: int | str = logging.INFO, *, console: Console | None = None) -> None:
    """Route all logs through a single rich handler on stderr.

    Call this once, early. Repeated calls only adjust the level.
    """
    global _configured

    root = logging.getLogger()
    root.setLevel(level)
    if _configured:
        return

    # Remove any pre-existing handlers to avoid duplicates.
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        log_time_format="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.captureWarnings(True)
    _configured = True
