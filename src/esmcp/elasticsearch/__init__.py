"""Elasticsearch collaborators — client factory, error mapping and tool handlers."""

from esmcp.elasticsearch.client import check_connection, create_client
from esmcp.elasticsearch.errors import upstream_error, upstream_errors
from esmcp.elasticsearch.tools import ElasticsearchTools

__all__ = [
    "ElasticsearchTools",
    "check_connection",
    "create_client",
    "upstream_error",
    "upstream_errors",
]
