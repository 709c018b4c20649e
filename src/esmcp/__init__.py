"""esmcp — Elasticsearch tools for AI agents over the Model Context Protocol."""

from __future__ import annotations

__version__ = "0.1.0"
