"""Connection and configuration lifecycle for a MySQL administration gateway."""

from __future__ import annotations

__version__ = "0.1.0"

from .config import GatewaySettings, load_settings
from .connections import AiomysqlConnectionBackend, ConnectionBackend, ConnectionHandle
from .errors import (
    CloseError,
    ConfigurationError,
    GatewayError,
    ProfileConnectionError,
    QueryExecutionError,
    UnknownProfileError,
)
from .models import ConfigSource, ConnectionProfile, Resolution, Topology
from .registry import ConnectionRegistry, ProbeResult, ProfileStatus, RegistryEvent, RegistryEventKind
from .resolver import ConfigResolver

__all__ = [
    "AiomysqlConnectionBackend",
    "CloseError",
    "ConfigResolver",
    "ConfigSource",
    "ConfigurationError",
    "ConnectionBackend",
    "ConnectionHandle",
    "ConnectionProfile",
    "ConnectionRegistry",
    "GatewayError",
    "GatewaySettings",
    "ProbeResult",
    "ProfileConnectionError",
    "ProfileStatus",
    "QueryExecutionError",
    "RegistryEvent",
    "RegistryEventKind",
    "Resolution",
    "Topology",
    "UnknownProfileError",
    "__version__",
    "load_settings",
]
