"""Tests for logging setup."""

from __future__ import annotations

import logging
import sys

from rich.logging import RichHandler

from esmcp.utils.logs import configure_logging


class TestConfigureLogging:
    def test_installs_stderr_rich_handler(self) -> None:
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging("debug")

            (handler,) = root.handlers
            assert isinstance(handler, RichHandler)
            assert handler.console.file is sys.stderr
            assert root.level == logging.DEBUG
            assert logging.getLogger("elastic_transport").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
