"""Startup error types."""

from __future__ import annotations


class ConfigError(Exception):
    """Raised when the configuration file or environment is invalid."""
