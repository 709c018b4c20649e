"""Logging setup.

All log output goes to stderr: stdout is the stdio transport's channel.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_stderr_console = Console(stderr=True)


def configure_logging(level: str | int = "INFO") -> None:
    """Install a stderr :class:`RichHandler` on the root logger."""
    handler = RichHandler(
        console=_stderr_console,
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    logging.basicConfig(
        level=level.upper() if isinstance(level, str) else level,
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )
    # The Elasticsearch transport logs every request at INFO.
    logging.getLogger("elastic_transport").setLevel(logging.WARNING)
