"""``esmcp stdio`` / ``esmcp http`` — run the MCP server."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Callable, Coroutine
from pathlib import Path
from typing import Any

import click

from esmcp.cli_commands._output import err_console


_SERVER_OPTIONS = (
    click.option(
        "--config",
        "-c",
        "config_path",
        type=click.Path(exists=True, dir_okay=False),
        default=None,
        help="YAML configuration file (ES_* environment variables are used otherwise).",
    ),
    click.option(
        "--env-file",
        type=click.Path(exists=True, dir_okay=False),
        default=None,
        help="File of KEY=value environment variables (default: ./.env if present).",
    ),
    click.option(
        "--log-level",
        type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
        default="INFO",
        show_default=True,
    ),
    click.option("--telemetry", is_flag=True, help="Enable OpenTelemetry tracing."),
    click.option(
        "--skip-check", is_flag=True, help="Do not check the cluster connection before serving."
    ),
)


def _server_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by every serving command."""
    for option in reversed(_SERVER_OPTIONS):
        func = option(func)
    return func


def _parse_address(
    ctx: click.Context, param: click.Parameter, value: str | None
) -> tuple[str, int] | None:
    if value is None:
        return None
    host, sep, port = value.rpartition(":")
    if not sep or not host or not port.isdigit():
        msg = "expected HOST:PORT, e.g. 127.0.0.1:8080"
        raise click.BadParameter(msg)
    return host, int(port)


@click.command()
@_server_options
def stdio(
    config_path: str | None,
    env_file: str | None,
    log_level: str,
    telemetry: bool,
    skip_check: bool,
) -> None:
    """Serve MCP over stdin/stdout."""
    from esmcp.runner import run_stdio

    config = _prepare(config_path, env_file, log_level, telemetry)
    _run(lambda: run_stdio(config, check=not skip_check))


@click.command()
@_server_options
@click.option(
    "--address",
    callback=_parse_address,
    default=None,
    help="HOST:PORT to listen on (overrides the configuration).",
)
@click.option("--stateless", is_flag=True, help="Serve every request on a fresh session.")
def http(
    config_path: str | None,
    env_file: str | None,
    log_level: str,
    telemetry: bool,
    skip_check: bool,
    address: tuple[str, int] | None,
    stateless: bool,
) -> None:
    """Serve MCP over streamable HTTP."""
    from esmcp.runner import run_http

    config = _prepare(config_path, env_file, log_level, telemetry)
    overrides: dict[str, Any] = {}
    if address is not None:
        overrides["host"], overrides["port"] = address
    if stateless:
        overrides["stateless"] = True
    if overrides:
        config = config.model_copy(update={"http": config.http.model_copy(update=overrides)})

    _run(lambda: run_http(config, check=not skip_check))


def _prepare(
    config_path: str | None, env_file: str | None, log_level: str, telemetry: bool
) -> Any:
    """Configure logging and telemetry and load the configuration, or exit 1."""
    from esmcp.config import ConfigLoader, load_env_file
    from esmcp.errors import ConfigError
    from esmcp.utils.logs import configure_logging
    from esmcp.utils.telemetry import configure_telemetry

    configure_logging(log_level)

    try:
        load_env_file(Path(env_file) if env_file else None)
        config = ConfigLoader(Path(config_path) if config_path else None).load()
    except ConfigError as exc:
        err_console.print(f"[red]Configuration error:[/red] {exc}")
        sys.exit(1)

    if telemetry or config.telemetry.enabled:
        try:
            configure_telemetry(
                export_to_console=config.telemetry.export_to_console,
                otlp_endpoint=config.telemetry.otlp_endpoint,
            )
        except ImportError as exc:
            err_console.print(f"[red]Telemetry error:[/red] {exc}")
            sys.exit(1)

    return config


def _run(factory: Callable[[], Coroutine[Any, Any, None]]) -> None:
    """Run a server coroutine; exit 1 on a startup failure, 0 on interrupt."""
    from esmcp.errors import ConfigError
    from esmcp.protocols.errors import UpstreamError

    try:
        asyncio.run(factory())
    except KeyboardInterrupt:
        err_console.print("Interrupted, shutting down.")
    except ConfigError as exc:
        err_console.print(f"[red]Configuration error:[/red] {exc}")
        sys.exit(1)
    except UpstreamError as exc:
        err_console.print(f"[red]Cannot reach {exc.source}:[/red] {exc}")
        sys.exit(1)
