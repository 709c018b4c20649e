"""Tests for ``esmcp tools``."""

from __future__ import annotations

import json

from click.testing import CliRunner

from esmcp.cli import main


class TestToolsCommand:
    def test_table(self) -> None:
        result = CliRunner().invoke(main, ["tools"])

        assert result.exit_code == 0, result.output
        assert "Registered Tools" in result.output
        assert "esql" in result.output

    def test_json(self) -> None:
        result = CliRunner().invoke(main, ["tools", "--json"])

        assert result.exit_code == 0, result.output
        tools = json.loads(result.output)
        assert [t["name"] for t in tools] == [
            "list_indices",
            "get_mappings",
            "search",
            "esql",
            "get_shards",
        ]
        search = next(t for t in tools if t["name"] == "search")
        assert search["inputSchema"]["required"] == ["index", "query_body"]
        assert search["annotations"]["readOnlyHint"] is True

    def test_does_not_need_elasticsearch(self) -> None:
        result = CliRunner().invoke(main, ["tools"], env={"ES_URL": ""})
        assert result.exit_code == 0
