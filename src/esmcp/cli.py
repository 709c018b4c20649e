"""esmcp CLI entrypoint."""

from __future__ import annotations

import click

from esmcp import __version__


@click.group()
@click.version_option(version=__version__, prog_name="esmcp")
def main() -> None:
    """esmcp — Elasticsearch tools for AI agents over MCP."""


# Register subcommands
from esmcp.cli_commands import register_commands  # noqa: E402

register_commands(main)

if __name__ == "__main__":
    main()
