"""Configuration documents and gateway settings."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ConfigurationError
from .models import ConnectionProfile, Topology

HOST_SETTINGS_FILE = Path.home() / ".cursor" / "mcp.json"
PROJECT_FILE = Path("config") / "mysql-connections.json"
DOTENV_FILE = Path(".env")

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 3306
DEFAULT_USER = "root"

SETTINGS_ENV_PREFIX = "MYSQLGATE_"


class ProfileDocument(BaseModel):
    """One entry under ``connections`` in a topology document."""

    model_config = ConfigDict(extra="ignore", frozen=True, coerce_numbers_to_str=True)

    host: str = Field(min_length=1)
    port: int = Field(default=DEFAULT_PORT, gt=0, lt=65536)
    user: str = Field(min_length=1)
    password: str = ""
    database: str | None = None
    description: str | None = None
    environment: str | None = None

    def to_profile(self, name: str) -> ConnectionProfile:
        return ConnectionProfile(
            name=name,
            host=self.host,
            port=self.port,
            user=self.user,
            password=self.password,
            database=self.database or None,
            description=self.description,
            environment=self.environment,
        )


class TopologyDocument(BaseModel):
    """Shape shared by the project file and the serialized env variable."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    connections: dict[str, ProfileDocument] = Field(min_length=1)
    default_connection: str = Field(alias="defaultConnection")

    @model_validator(mode="after")
    def _default_is_defined(self) -> TopologyDocument:
        if self.default_connection not in self.connections:
            raise ValueError(f"defaultConnection '{self.default_connection}' is not defined under connections")
        return self

    def to_topology(self) -> Topology:
        return Topology(
            profiles={name: entry.to_profile(name) for name, entry in self.connections.items()},
            default_profile_name=self.default_connection,
        )


class HostServerEntry(BaseModel):
    """A named server entry in the host IDE settings file."""

    model_config = ConfigDict(extra="ignore")

    env: dict[str, Any] = Field(default_factory=dict)


class HostSettingsDocument(BaseModel):
    """Host IDE settings file listing tool servers."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    servers: dict[str, HostServerEntry] = Field(default_factory=dict, alias="mcpServers")


def parse_topology(raw: str | bytes | Mapping[str, Any], *, origin: str) -> Topology:
    """Strictly parse a serialized or decoded topology document."""

    try:
        if isinstance(raw, (str, bytes)):
            document = TopologyDocument.model_validate_json(raw)
        else:
            document = TopologyDocument.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"{origin}: {describe_validation_error(exc)}") from exc
    return document.to_topology()


def describe_validation_error(exc: ValidationError) -> str:
    """Collapse pydantic errors into one readable line."""

    parts: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or str(exc)


class GatewaySettings(BaseModel):
    """Where configuration lives and how long network calls may take."""

    model_config = ConfigDict(frozen=True)

    host_settings_file: Path = HOST_SETTINGS_FILE
    project_root: Path = Field(default_factory=Path.cwd)
    project_file: Path = PROJECT_FILE
    dotenv_file: Path = DOTENV_FILE
    topology_env_var: str = "MYSQL_CONNECTIONS"
    discrete_env_prefix: str = "MYSQL_"
    product_identifier: str = "mysql"
    connect_timeout: float = Field(default=10.0, gt=0)
    probe_timeout: float = Field(default=5.0, gt=0)
    query_timeout: float = Field(default=30.0, gt=0)
    log_level: str = "WARNING"

    @property
    def project_file_path(self) -> Path:
        return self._under_root(self.project_file)

    @property
    def dotenv_path(self) -> Path:
        return self._under_root(self.dotenv_file)

    def _under_root(self, path: Path) -> Path:
        path = path.expanduser()
        if path.is_absolute():
            return path
        return self.project_root / path


_SETTINGS_FIELDS = {
    "HOST_SETTINGS_FILE": "host_settings_file",
    "PROJECT_ROOT": "project_root",
    "PROJECT_FILE": "project_file",
    "CONNECT_TIMEOUT": "connect_timeout",
    "PROBE_TIMEOUT": "probe_timeout",
    "QUERY_TIMEOUT": "query_timeout",
    "LOG_LEVEL": "log_level",
}


def load_settings(environ: Mapping[str, str] | None = None) -> GatewaySettings:
    """Build settings from ``MYSQLGATE_*`` variables; unset keys keep defaults."""

    if environ is None:
        environ = os.environ
    data: dict[str, object] = {}
    for suffix, field_name in _SETTINGS_FIELDS.items():
        value = environ.get(SETTINGS_ENV_PREFIX + suffix)
        if value:
            data[field_name] = value
    if "log_level" in data:
        data["log_level"] = str(data["log_level"]).upper()
    try:
        return GatewaySettings(**data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid gateway settings: {describe_validation_error(exc)}") from exc


__all__ = [
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "DEFAULT_USER",
    "GatewaySettings",
    "HOST_SETTINGS_FILE",
    "HostSettingsDocument",
    "PROJECT_FILE",
    "ProfileDocument",
    "TopologyDocument",
    "describe_validation_error",
    "load_settings",
    "parse_topology",
]
