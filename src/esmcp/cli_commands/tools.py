"""``esmcp tools`` — inspect the tools the server exposes."""

from __future__ import annotations

import json

import click

from esmcp.cli_commands._output import console, print_tools_table


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Print the tools/list payload as JSON.")
def tools(as_json: bool) -> None:
    """List the registered tools and their arguments.

    Does not contact Elasticsearch.
    """
    from esmcp.runner import build_server

    registry = build_server(None).registry

    if as_json:
        payload = [t.model_dump(by_alias=True, exclude_none=True) for t in registry.definitions()]
        console.print_json(json.dumps(payload))
        return

    print_tools_table(registry)
