"""Shared dataclasses used across resolver and registry modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from .errors import ConfigurationError, UnknownProfileError

DEFAULT_ENVIRONMENT = "default"


@dataclass(frozen=True, slots=True)
class ConnectionProfile:
    """Runtime representation of one named database target."""

    name: str
    host: str
    port: int
    user: str
    password: str = field(default="", repr=False)
    database: str | None = None
    description: str | None = None
    environment: str | None = None

    def summary(self) -> dict[str, Any]:
        """Descriptive metadata safe to show to callers (no password)."""

        return {
            "name": self.name,
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "database": self.database,
            "description": self.description,
            "environment": self.environment or DEFAULT_ENVIRONMENT,
        }


@dataclass(frozen=True, slots=True)
class Topology:
    """Resolved set of profiles plus the name used when callers pass none."""

    profiles: Mapping[str, ConnectionProfile]
    default_profile_name: str

    def __post_init__(self) -> None:
        if not self.profiles:
            raise ConfigurationError("Topology must define at least one profile.")
        if self.default_profile_name not in self.profiles:
            raise ConfigurationError(
                f"Default profile '{self.default_profile_name}' is not among the defined profiles."
            )
        for key, profile in self.profiles.items():
            if key != profile.name:
                raise ConfigurationError(f"Profile key '{key}' does not match profile name '{profile.name}'.")
        object.__setattr__(self, "profiles", MappingProxyType(dict(self.profiles)))

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self.profiles)

    @property
    def default_profile(self) -> ConnectionProfile:
        return self.profiles[self.default_profile_name]

    def profile(self, name: str | None = None) -> ConnectionProfile:
        """Look up a profile by name, falling back to the default."""

        key = self.default_profile_name if name is None else name
        try:
            return self.profiles[key]
        except KeyError:
            raise UnknownProfileError(key, self.names) from None


@dataclass(frozen=True, slots=True)
class ConfigSource:
    """One ranked candidate origin of a topology."""

    origin: str
    priority: int
    topology: Topology | None = None
    available: bool = False
    error: str | None = None

    @property
    def valid(self) -> bool:
        return self.available and self.topology is not None


@dataclass(frozen=True, slots=True)
class Resolution:
    """Outcome of a resolver run: the winner plus every source examined."""

    topology: Topology
    source: ConfigSource
    sources: tuple[ConfigSource, ...]


__all__ = [
    "ConfigSource",
    "ConnectionProfile",
    "DEFAULT_ENVIRONMENT",
    "Resolution",
    "Topology",
]
