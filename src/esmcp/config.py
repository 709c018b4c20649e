"""Server configuration — pydantic models and the YAML/environment loader."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Annotated, Any, Literal, Union

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from esmcp.errors import ConfigError

logger = logging.getLogger(__name__)

# Environment variables read when the config file has no ``elasticsearch`` section.
ENV_MAPPING = {
    "url": "ES_URL",
    "api_key": "ES_API_KEY",
    "username": "ES_USERNAME",
    "password": "ES_PASSWORD",
    "ssl_skip_verify": "ES_SSL_SKIP_VERIFY",
}


class ElasticsearchSettings(BaseModel):
    """Cluster endpoint and credentials."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str
    api_key: str | None = None
    username: str | None = None
    password: str | None = None
    ssl_skip_verify: bool = False
    request_timeout: float = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def _validate_auth(self) -> ElasticsearchSettings:
        if self.api_key and (self.username or self.password):
            msg = "use either 'api_key' or 'username'/'password', not both"
            raise ValueError(msg)
        if self.username and not self.password:
            msg = "'username' requires 'password'"
            raise ValueError(msg)
        if self.password and not self.username:
            msg = "'password' requires 'username'"
            raise ValueError(msg)
        return self


class HttpSettings(BaseModel):
    """Streamable HTTP transport settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=0, le=65535)
    path: str = "/mcp"
    stateless: bool = False
    session_idle_timeout: float = Field(default=300.0, gt=0)


class StdioSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    max_frame_bytes: int = Field(default=4 * 1024 * 1024, gt=0)


class TelemetrySettings(BaseModel):
    """Optional telemetry configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = False
    export_to_console: bool = True
    otlp_endpoint: str | None = None


class StdioServerSettings(BaseModel):
    """A child MCP server launched as a subprocess."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["stdio"]
    command: str = Field(min_length=1)
    args: tuple[str, ...] = ()
    # Added to this process's environment.
    env: dict[str, str] = Field(default_factory=dict)


class HttpServerSettings(BaseModel):
    """A child MCP server reached over streamable HTTP.

    ``sse`` is accepted as an alias of ``streamable-http``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["streamable-http", "sse"]
    url: str = Field(pattern=r"^https?://")
    headers: dict[str, str] = Field(default_factory=dict)
    timeout: float = Field(default=30.0, gt=0)


ChildServerSettings = Annotated[
    Union[StdioServerSettings, HttpServerSettings], Field(discriminator="type")
]

_CHILD_NAME = re.compile(r"^[A-Za-z0-9-]+$")


class ServerConfig(BaseModel):
    """Top-level configuration, loaded once at startup."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    elasticsearch: ElasticsearchSettings
    http: HttpSettings = Field(default_factory=HttpSettings)
    stdio: StdioSettings = Field(default_factory=StdioSettings)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)
    mcp_servers: dict[str, ChildServerSettings] = Field(default_factory=dict)

    @field_validator("mcp_servers")
    @classmethod
    def _validate_child_names(
        cls, servers: dict[str, ChildServerSettings]
    ) -> dict[str, ChildServerSettings]:
        # Names become tool name suffixes.
        for name in servers:
            if not _CHILD_NAME.match(name):
                msg = f"MCP server name {name!r} may only contain letters, digits and '-'"
                raise ValueError(msg)
        return servers


def load_env_file(path: Path | None = None) -> bool:
    """Load ``KEY=value`` pairs from a ``.env`` file into the process environment.

    Variables that are already set keep their value. Without *path*, ``.env``
    is looked up from the working directory upwards; not finding one is not
    an error. Returns whether a file was loaded.

    Raises:
        ConfigError: If an explicit *path* does not exist.
    """
    if path is not None:
        if not path.is_file():
            raise ConfigError(f"Environment file not found: {path}")
        env_file = str(path)
    else:
        env_file = find_dotenv(usecwd=True)
        if not env_file:
            return False

    load_dotenv(env_file, override=False)
    logger.debug("Loaded environment from %s", env_file)
    return True


class ConfigLoader:
    """Load and validate the server configuration.

    Sources, in order:
    1. The YAML file at *path*, if given.
    2. ``ES_*`` environment variables, used for the ``elasticsearch`` section
       when the file does not define one.

    Call :func:`load_env_file` first for ``.env`` values to take part in
    both ``${VAR}`` interpolation and the ``ES_*`` fallback.
    """

    def __init__(self, path: Path | None = None, environ: Mapping[str, str] | None = None) -> None:
        self._path = path
        self._environ = os.environ if environ is None else environ

    def load(self) -> ServerConfig:
        """Read YAML, interpolate env vars, merge the environment, and validate.

        Environment variables in the form ``${VAR}`` or ``$VAR`` are expanded
        using :func:`os.path.expandvars` before YAML parsing.

        Raises:
            ConfigError: On unreadable files, YAML errors or validation failures.
        """
        data = self._read_file() if self._path is not None else {}

        if "elasticsearch" not in data:
            data["elasticsearch"] = self._from_environment()

        try:
            return ServerConfig.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"Invalid configuration: {exc}") from exc

    def _read_file(self) -> dict[str, Any]:
        assert self._path is not None
        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Cannot read {self._path}: {exc}") from exc

        expanded = os.path.expandvars(raw)

        try:
            data: Any = yaml.safe_load(expanded)
        except yaml.YAMLError as exc:
            raise ConfigError(f"YAML parse error: {exc}") from exc

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError("Configuration YAML must be a mapping")
        return data

    def _from_environment(self) -> dict[str, Any]:
        section: dict[str, Any] = {}
        for key, env_key in ENV_MAPPING.items():
            value = self._environ.get(env_key, "").strip()
            if value:
                section[key] = value
        if "url" not in section:
            msg = (
                "Elasticsearch URL is not configured: set ES_URL or the "
                "'elasticsearch.url' key of the configuration file"
            )
            raise ConfigError(msg)
        return section
