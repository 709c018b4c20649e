"""AsyncElasticsearch construction from configuration."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from elasticsearch import AsyncElasticsearch

from esmcp.elasticsearch.errors import upstream_errors

if TYPE_CHECKING:
    from esmcp.config import ElasticsearchSettings

logger = logging.getLogger(__name__)


def create_client(settings: ElasticsearchSettings) -> AsyncElasticsearch:
    """Build the shared client. No connection is made until the first request."""
    kwargs: dict[str, Any] = {"request_timeout": settings.request_timeout}
    if settings.api_key:
        kwargs["api_key"] = settings.api_key
    elif settings.username:
        kwargs["basic_auth"] = (settings.username, settings.password or "")
    if settings.ssl_skip_verify:
        kwargs["verify_certs"] = False
        kwargs["ssl_show_warn"] = False
    return AsyncElasticsearch(settings.url, **kwargs)


async def check_connection(client: AsyncElasticsearch) -> dict[str, Any]:
    """Call the cluster root endpoint.

    Raises:
        UpstreamError: If the cluster is unreachable or rejects the credentials.
    """
    with upstream_errors():
        response = await client.info()
    info: dict[str, Any] = dict(response.body)
    logger.info(
        "Connected to cluster %s (Elasticsearch %s)",
        info.get("cluster_name", "?"),
        info.get("version", {}).get("number", "?"),
    )
    return info
