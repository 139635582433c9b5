"""Ranked discovery of the connection topology."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Mapping

from dotenv import dotenv_values
from pydantic import ValidationError

from .config import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_USER,
    GatewaySettings,
    HostSettingsDocument,
    ProfileDocument,
    describe_validation_error,
    parse_topology,
)
from .errors import ConfigurationError
from .models import ConfigSource, ConnectionProfile, Resolution, Topology

LOG = logging.getLogger(__name__)

HOST_SETTINGS_PRIORITY = 1
PROJECT_FILE_PRIORITY = 2
TOPOLOGY_VARIABLE_PRIORITY = 3
DISCRETE_VARIABLES_PRIORITY = 4
FALLBACK_PRIORITY = 5

IMPLICIT_PROFILE_NAME = "default"
DISCRETE_KEYS = ("HOST", "PORT", "USER", "PASSWORD", "DATABASE")

FALLBACK_TOPOLOGY = Topology(
    profiles={
        "localhost": ConnectionProfile(
            name="localhost",
            host=DEFAULT_HOST,
            port=DEFAULT_PORT,
            user="guest",
            password="",
            database="information_schema",
            description="Built-in local fallback",
            environment="local",
        )
    },
    default_profile_name="localhost",
)


class ConfigResolver:
    """Checks every known configuration origin and picks the best one.

    Sources are never merged: the valid source with the lowest priority
    number supplies the whole topology. Resolution is read-only and is not
    cached here; callers that need a stable topology memoize the result.
    """

    def __init__(
        self,
        settings: GatewaySettings | None = None,
        *,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._settings = settings or GatewaySettings()
        self._environ = environ

    @property
    def settings(self) -> GatewaySettings:
        return self._settings

    def resolve(self) -> Resolution:
        """Examine every source and return the winning topology."""

        environ = self._environ if self._environ is not None else dict(os.environ)
        sources = self.rank(
            (
                self._from_host_settings(),
                self._from_project_file(),
                self._from_topology_variable(environ),
                self._from_discrete_variables(environ),
                self._from_fallback(),
            )
        )
        for source in sources:
            if source.error:
                LOG.warning(
                    "Skipping configuration source",
                    extra={"origin": source.origin, "priority": source.priority, "reason": source.error},
                )
            else:
                LOG.debug(
                    "Examined configuration source",
                    extra={"origin": source.origin, "priority": source.priority, "valid": source.valid},
                )
        winner = self.choose(sources)
        LOG.info(
            "Resolved connection topology",
            extra={
                "origin": winner.origin,
                "profiles": list(winner.topology.names),
                "default_profile": winner.topology.default_profile_name,
            },
        )
        return Resolution(topology=winner.topology, source=winner, sources=sources)

    @staticmethod
    def rank(sources: Iterable[ConfigSource]) -> tuple[ConfigSource, ...]:
        return tuple(sorted(sources, key=lambda source: source.priority))

    @classmethod
    def choose(cls, sources: Iterable[ConfigSource]) -> ConfigSource:
        """Return the valid source with the numerically lowest priority."""

        for source in cls.rank(sources):
            if source.valid:
                return source
        raise ConfigurationError("No configuration source produced a usable topology.")

    def _from_host_settings(self) -> ConfigSource:
        path = self._settings.host_settings_file.expanduser()
        origin = str(path)
        text, error = _read_text(path)
        if text is None:
            return ConfigSource(origin=origin, priority=HOST_SETTINGS_PRIORITY, error=error)
        try:
            document = HostSettingsDocument.model_validate_json(text)
        except ValidationError as exc:
            return ConfigSource(
                origin=origin,
                priority=HOST_SETTINGS_PRIORITY,
                available=True,
                error=describe_validation_error(exc),
            )

        identifier = self._settings.product_identifier.lower()
        variable = self._settings.topology_env_var
        problems: list[str] = []
        for server_name, entry in document.servers.items():
            if identifier not in server_name.lower():
                continue
            raw = entry.env.get(variable)
            if raw is None:
                continue
            entry_origin = f"{origin}#{server_name}"
            if not isinstance(raw, (str, dict)):
                problems.append(f"{entry_origin}: {variable} must be a JSON string or object")
                continue
            try:
                topology = parse_topology(raw, origin=entry_origin)
            except ConfigurationError as exc:
                problems.append(str(exc))
                continue
            return ConfigSource(
                origin=entry_origin,
                priority=HOST_SETTINGS_PRIORITY,
                topology=topology,
                available=True,
            )
        return ConfigSource(
            origin=origin,
            priority=HOST_SETTINGS_PRIORITY,
            available=True,
            error="; ".join(problems) or None,
        )

    def _from_project_file(self) -> ConfigSource:
        path = self._settings.project_file_path
        origin = str(path)
        text, error = _read_text(path)
        if text is None:
            return ConfigSource(origin=origin, priority=PROJECT_FILE_PRIORITY, error=error)
        return _parsed_source(text, origin=origin, priority=PROJECT_FILE_PRIORITY)

    def _from_topology_variable(self, environ: Mapping[str, str]) -> ConfigSource:
        variable = self._settings.topology_env_var
        value = environ.get(variable)
        if value:
            return _parsed_source(value, origin=f"env:{variable}", priority=TOPOLOGY_VARIABLE_PRIORITY)

        dotenv_path = self._settings.dotenv_path
        origin = f"{dotenv_path}:{variable}"
        if not dotenv_path.is_file():
            return ConfigSource(origin=f"env:{variable}", priority=TOPOLOGY_VARIABLE_PRIORITY)
        try:
            value = dotenv_values(dotenv_path).get(variable)
        except (OSError, UnicodeDecodeError) as exc:
            return ConfigSource(origin=origin, priority=TOPOLOGY_VARIABLE_PRIORITY, error=str(exc))
        if not value:
            return ConfigSource(origin=origin, priority=TOPOLOGY_VARIABLE_PRIORITY)
        return _parsed_source(value, origin=origin, priority=TOPOLOGY_VARIABLE_PRIORITY)

    def _from_discrete_variables(self, environ: Mapping[str, str]) -> ConfigSource:
        prefix = self._settings.discrete_env_prefix
        origin = "env:" + ",".join(prefix + key for key in DISCRETE_KEYS)
        present = {key: environ[prefix + key] for key in DISCRETE_KEYS if prefix + key in environ}
        if not present:
            return ConfigSource(origin=origin, priority=DISCRETE_VARIABLES_PRIORITY)
        try:
            document = ProfileDocument.model_validate(
                {
                    "host": present.get("HOST") or DEFAULT_HOST,
                    "port": present.get("PORT") or DEFAULT_PORT,
                    "user": present.get("USER") or DEFAULT_USER,
                    "password": present.get("PASSWORD", ""),
                    "database": present.get("DATABASE") or None,
                }
            )
        except ValidationError as exc:
            return ConfigSource(
                origin=origin,
                priority=DISCRETE_VARIABLES_PRIORITY,
                available=True,
                error=describe_validation_error(exc),
            )
        topology = Topology(
            profiles={IMPLICIT_PROFILE_NAME: document.to_profile(IMPLICIT_PROFILE_NAME)},
            default_profile_name=IMPLICIT_PROFILE_NAME,
        )
        return ConfigSource(origin=origin, priority=DISCRETE_VARIABLES_PRIORITY, topology=topology, available=True)

    @staticmethod
    def _from_fallback() -> ConfigSource:
        return ConfigSource(origin="builtin", priority=FALLBACK_PRIORITY, topology=FALLBACK_TOPOLOGY, available=True)


def describe(resolution: Resolution) -> str:
    """Render a ranked, human-readable summary of every examined source."""

    lines = ["Configuration sources:"]
    for source in resolution.sources:
        if source is resolution.source:
            status = "ACTIVE"
        elif source.valid:
            status = "available"
        elif source.error:
            status = "invalid"
        else:
            status = "absent"
        lines.append(f"  [{status}] {source.origin} (priority {source.priority})")
        if source.topology is not None:
            lines.append(f"      profiles: {', '.join(source.topology.names)}")
            lines.append(f"      default: {source.topology.default_profile_name}")
        if source.error:
            lines.append(f"      error: {source.error}")
    topology = resolution.topology
    lines.append(f"Selected: {resolution.source.origin} ({len(topology.profiles)} profile(s))")
    return "\n".join(lines)


def _read_text(path: Path) -> tuple[str | None, str | None]:
    try:
        return path.read_text(encoding="utf-8"), None
    except FileNotFoundError:
        return None, None
    except (OSError, UnicodeDecodeError) as exc:
        return None, f"{path}: {exc}"


def _parsed_source(raw: str, *, origin: str, priority: int) -> ConfigSource:
    try:
        topology = parse_topology(raw, origin=origin)
    except ConfigurationError as exc:
        return ConfigSource(origin=origin, priority=priority, available=True, error=str(exc))
    return ConfigSource(origin=origin, priority=priority, topology=topology, available=True)


__all__ = [
    "ConfigResolver",
    "FALLBACK_TOPOLOGY",
    "IMPLICIT_PROFILE_NAME",
    "describe",
]
