"""ElasticsearchTools — the five read-only tools exposed over MCP.

Each handler receives arguments that already passed schema validation and
turns them into one Elasticsearch API call. The result is a short text
summary followed by the JSON payload.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from esmcp.elasticsearch.errors import upstream_errors
from esmcp.protocols.errors import UpstreamError
from esmcp.protocols.mcp.models import CallToolResult, TextContent
from esmcp.protocols.registry import ToolRegistry, ToolSpec
from esmcp.protocols.schema import FieldKind, FieldSpec

if TYPE_CHECKING:
    from elasticsearch import AsyncElasticsearch

logger = logging.getLogger(__name__)

CAT_INDICES_COLUMNS = ["index", "status", "docs.count"]
CAT_SHARDS_COLUMNS = ["index", "shard", "prirep", "state", "docs", "store", "node"]


class ElasticsearchTools:
    """Binds the tool handlers to a shared :class:`AsyncElasticsearch` client.

    The client may be ``None`` when only the descriptors are needed
    (e.g. ``esmcp tools``); calling a handler then raises ``RuntimeError``.
    """

    def __init__(self, client: AsyncElasticsearch | None) -> None:
        self._client = client

    def _es(self) -> AsyncElasticsearch:
        if self._client is None:
            msg = "ElasticsearchTools was created without a client"
            raise RuntimeError(msg)
        return self._client

    def specs(self) -> list[ToolSpec]:
        return [
            ToolSpec(
                name="list_indices",
                title="List ES indices",
                description="List all available Elasticsearch indices",
                fields=(
                    FieldSpec(
                        name="index_pattern",
                        kind=FieldKind.STRING,
                        description="Index pattern of Elasticsearch indices to list (defaults to all)",
                    ),
                ),
                handler=self.list_indices,
            ),
            ToolSpec(
                name="get_mappings",
                title="Get ES index mappings",
                description="Get field mappings for a specific Elasticsearch index",
                fields=(
                    FieldSpec(
                        name="index",
                        kind=FieldKind.STRING,
                        required=True,
                        description="Name of the Elasticsearch index to get mappings for",
                    ),
                ),
                handler=self.get_mappings,
            ),
            ToolSpec(
                name="search",
                title="Elasticsearch search DSL query",
                description="Perform an Elasticsearch search with the provided query DSL.",
                fields=(
                    FieldSpec(
                        name="index",
                        kind=FieldKind.STRING,
                        required=True,
                        description="Name of the Elasticsearch index to search",
                    ),
                    FieldSpec(
                        name="query_body",
                        kind=FieldKind.OBJECT,
                        required=True,
                        description=(
                            "Complete Elasticsearch query DSL object that can include "
                            "query, size, from, sort, etc."
                        ),
                    ),
                    FieldSpec(
                        name="fields",
                        kind=FieldKind.ARRAY,
                        items=FieldKind.STRING,
                        description="Name of the fields that need to be returned (optional)",
                    ),
                ),
                handler=self.search,
            ),
            ToolSpec(
                name="esql",
                title="Elasticsearch ES|QL query",
                description="Perform an Elasticsearch ES|QL query.",
                fields=(
                    FieldSpec(
                        name="query",
                        kind=FieldKind.STRING,
                        required=True,
                        description="Complete Elasticsearch ES|QL query.",
                    ),
                ),
                handler=self.esql,
            ),
            ToolSpec(
                name="get_shards",
                title="Get ES shard information",
                description="Get shard information for all or specific indices.",
                fields=(
                    FieldSpec(
                        name="index",
                        kind=FieldKind.STRING,
                        description="Optional index name to get shard information for",
                    ),
                ),
                handler=self.get_shards,
            ),
        ]

    def registry(self) -> ToolRegistry:
        return ToolRegistry(self.specs())

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def list_indices(self, arguments: dict[str, Any]) -> CallToolResult:
        pattern = arguments.get("index_pattern") or "*"
        with upstream_errors():
            response = await self._es().cat.indices(
                index=pattern, h=CAT_INDICES_COLUMNS, format="json"
            )
        indices = [
            {
                "index": row.get("index"),
                "status": row.get("status"),
                "docs.count": _as_int(row.get("docs.count")),
            }
            for row in response.body
        ]
        return CallToolResult.text_and_json(f"Found {len(indices)} indices:", indices)

    async def get_mappings(self, arguments: dict[str, Any]) -> CallToolResult:
        index = arguments["index"]
        with upstream_errors():
            response = await self._es().indices.get_mapping(index=index)
        body: dict[str, Any] = dict(response.body)
        if not body:
            raise UpstreamError(f"no mappings found for index {index}", status=404)
        # A wildcard can match several indices; only the first one is reported.
        mapping = next(iter(body.values()))
        return CallToolResult.text_and_json(f"Mappings for index {index}:", mapping)

    async def search(self, arguments: dict[str, Any]) -> CallToolResult:
        index = arguments["index"]
        query_body = dict(arguments["query_body"])
        fields = arguments.get("fields")
        if fields:
            source = query_body.get("_source")
            query_body["_source"] = [*source, *fields] if isinstance(source, list) else list(fields)

        with upstream_errors():
            response = await self._es().search(index=index, body=query_body)
        result: dict[str, Any] = dict(response.body)

        hits = result.get("hits") or {}
        documents = hits.get("hits") or []
        aggregations = result.get("aggregations") or {}

        content: list[TextContent] = []
        # Pure aggregation queries skip the hit statistics.
        if not aggregations or documents:
            total = hits.get("total")
            if isinstance(total, dict):
                total = total.get("value")
            shown = "unknown" if total is None else str(total)
            content.append(TextContent(text=f"Total results: {shown}, showing {len(documents)}."))
        if documents:
            sources = [doc.get("_source") for doc in documents]
            content.append(TextContent(text=json.dumps(sources, default=str)))
        if aggregations:
            content.append(TextContent(text="Aggregations results:"))
            content.append(TextContent(text=json.dumps(aggregations, default=str)))
        return CallToolResult(content=content)

    async def esql(self, arguments: dict[str, Any]) -> CallToolResult:
        with upstream_errors():
            response = await self._es().esql.query(query=arguments["query"])
        result: dict[str, Any] = dict(response.body)

        names = [column["name"] for column in result.get("columns", [])]
        rows = [dict(zip(names, values)) for values in result.get("values", [])]
        summary = "Results"
        if result.get("is_partial"):
            summary = "Results (partial)"
        return CallToolResult.text_and_json(summary, rows)

    async def get_shards(self, arguments: dict[str, Any]) -> CallToolResult:
        with upstream_errors():
            response = await self._es().cat.shards(
                index=arguments.get("index"), h=CAT_SHARDS_COLUMNS, format="json"
            )
        shards = [
            {
                "index": row.get("index"),
                "shard": _as_int(row.get("shard")),
                "prirep": row.get("prirep"),
                "state": row.get("state"),
                "docs": _as_int(row.get("docs")),
                "store": row.get("store"),
                "node": row.get("node"),
            }
            for row in response.body
        ]
        return CallToolResult.text_and_json(f"Found {len(shards)} shards:", shards)


def _as_int(value: Any) -> int | None:
    """``_cat`` APIs return numbers as strings, or null for unassigned shards."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.debug("Non-numeric _cat value %r", value)
        return None
