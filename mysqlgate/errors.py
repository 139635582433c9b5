"""Error taxonomy shared by the resolver, registry, and backends."""

from __future__ import annotations

from typing import Iterable


class GatewayError(RuntimeError):
    """Base class for every error raised by mysqlgate."""


class ConfigurationError(GatewayError):
    """Raised when no usable connection topology can be resolved."""


class UnknownProfileError(GatewayError):
    """Raised when a caller asks for a profile the topology does not define."""

    def __init__(self, name: str, available: Iterable[str] = ()) -> None:
        self.name = name
        self.available = tuple(available)
        message = f"Profile '{name}' not found."
        if self.available:
            message += f" Available: {', '.join(self.available)}."
        super().__init__(message)


class ProfileConnectionError(GatewayError):
    """Raised when a session cannot be opened or probed for a profile."""

    def __init__(self, profile_name: str, message: str) -> None:
        self.profile_name = profile_name
        super().__init__(message)


class CloseError(GatewayError):
    """Raised by backends when a session does not close cleanly."""


class QueryExecutionError(GatewayError):
    """Raised when a statement fails on a live handle."""


__all__ = [
    "CloseError",
    "ConfigurationError",
    "GatewayError",
    "ProfileConnectionError",
    "QueryExecutionError",
    "UnknownProfileError",
]
