"""Logging setup for the CLI.

Library modules only create ``logging.getLogger(__name__)`` loggers; the CLI
attaches a Rich handler bound to stderr, since stdout may carry relayed data.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

stderr_console = Console(stderr=True)


def configure_logging(level: str | int = "WARNING", *, console: Console | None = None) -> None:
    """Route the root logger through a single RichHandler on stderr."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING

    handler = RichHandler(
        console=console or stderr_console,
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s", datefmt="%H:%M:%S"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing, RichHandler):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
    # websockets is chatty at INFO (one line per handshake).
    logging.getLogger("websockets").setLevel(max(level, logging.WARNING))
