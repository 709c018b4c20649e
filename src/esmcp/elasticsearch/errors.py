"""Translate Elasticsearch client failures into :class:`UpstreamError`."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from elasticsearch import ApiError, ConnectionTimeout, TransportError

from esmcp.protocols.errors import UpstreamError


def upstream_error(exc: Exception) -> UpstreamError:
    """Map a client exception to the upstream error kind, keeping the HTTP status."""
    if isinstance(exc, ApiError):
        return UpstreamError(_api_reason(exc), status=exc.meta.status)
    if isinstance(exc, ConnectionTimeout):
        return UpstreamError(f"request timed out: {exc}")
    if isinstance(exc, TransportError):
        return UpstreamError(f"connection failed: {exc}")
    return UpstreamError(str(exc))


@contextmanager
def upstream_errors() -> Iterator[None]:
    """Re-raise client exceptions inside the block as :class:`UpstreamError`."""
    try:
        yield
    except (ApiError, TransportError) as exc:
        raise upstream_error(exc) from exc


def _api_reason(exc: ApiError) -> str:
    """Pull the most specific reason out of an Elasticsearch error body."""
    body: Any = exc.body
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            root_causes = error.get("root_cause") or []
            if root_causes and isinstance(root_causes[0], dict) and root_causes[0].get("reason"):
                cause = root_causes[0]
                return f"{cause.get('type', error.get('type', 'error'))}: {cause['reason']}"
            if error.get("reason"):
                return f"{error.get('type', 'error')}: {error['reason']}"
        elif isinstance(error, str):
            return error
    return str(exc.message)
