"""Connection backends and the handles the registry hands out."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol, Sequence, runtime_checkable

import aiomysql

from .config import GatewaySettings
from .errors import CloseError, ProfileConnectionError, QueryExecutionError
from .models import ConnectionProfile

QueryParams = Sequence[Any] | dict[str, Any] | None

PROBE_QUERY = "SELECT 1"
SESSION_IDENTITY_QUERY = (
    "SELECT DATABASE() AS `current_database`, USER() AS `current_user`, @@hostname AS `server_host`"
)


@runtime_checkable
class ConnectionBackend(Protocol):
    """Protocol implemented by connection backends.

    Every coroutine is expected to enforce its own timeout so a stalled
    target can never hang the caller indefinitely.
    """

    async def connect(self, profile: ConnectionProfile) -> Any:
        """Open a new session for the profile."""

    async def ping(self, session: Any) -> None:
        """Run a minimal round trip; raise if the session is unusable."""

    async def fetch(self, session: Any, sql: str, params: QueryParams = None) -> list[dict[str, Any]]:
        """Run a row-returning statement and return rows as dicts."""

    async def execute(self, session: Any, sql: str, params: QueryParams = None) -> int:
        """Run a statement and return the affected row count."""

    async def close(self, session: Any) -> None:
        """Close the session; raise ``CloseError`` if it did not close cleanly."""


class AiomysqlConnectionBackend:
    """Connection backend that talks to MySQL via aiomysql."""

    def __init__(
        self,
        *,
        connect_timeout: float = 10.0,
        probe_timeout: float = 5.0,
        query_timeout: float = 30.0,
    ) -> None:
        self._connect_timeout = connect_timeout
        self._probe_timeout = probe_timeout
        self._query_timeout = query_timeout

    @classmethod
    def from_settings(cls, settings: GatewaySettings) -> AiomysqlConnectionBackend:
        return cls(
            connect_timeout=settings.connect_timeout,
            probe_timeout=settings.probe_timeout,
            query_timeout=settings.query_timeout,
        )

    async def connect(self, profile: ConnectionProfile) -> Any:
        try:
            return await asyncio.wait_for(
                aiomysql.connect(connect_timeout=self._connect_timeout, **self._connect_kwargs(profile)),
                self._connect_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProfileConnectionError(
                profile.name,
                f"Timed out connecting to profile '{profile.name}' after {self._connect_timeout:g}s",
            ) from exc
        except Exception as exc:
            raise ProfileConnectionError(
                profile.name, f"Failed to connect to profile '{profile.name}': {exc}"
            ) from exc

    async def ping(self, session: Any) -> None:
        await self._bounded(self._fetch(session, PROBE_QUERY, None), self._probe_timeout)

    async def fetch(self, session: Any, sql: str, params: QueryParams = None) -> list[dict[str, Any]]:
        return await self._bounded(self._fetch(session, sql, params), self._query_timeout)

    async def execute(self, session: Any, sql: str, params: QueryParams = None) -> int:
        return await self._bounded(self._execute(session, sql, params), self._query_timeout)

    async def close(self, session: Any) -> None:
        try:
            await asyncio.wait_for(session.ensure_closed(), self._probe_timeout)
        except Exception as exc:
            session.close()
            raise CloseError(f"Session did not close cleanly: {str(exc) or type(exc).__name__}") from exc

    @staticmethod
    async def _fetch(session: Any, sql: str, params: QueryParams) -> list[dict[str, Any]]:
        async with session.cursor(aiomysql.DictCursor) as cursor:
            await cursor.execute(sql, params)
            rows = await cursor.fetchall()
        return [dict(row) for row in rows or ()]

    @staticmethod
    async def _execute(session: Any, sql: str, params: QueryParams) -> int:
        async with session.cursor() as cursor:
            affected = await cursor.execute(sql, params)
        return int(affected or 0)

    @staticmethod
    async def _bounded(coro: Any, timeout: float) -> Any:
        try:
            return await asyncio.wait_for(coro, timeout)
        except asyncio.TimeoutError as exc:
            raise QueryExecutionError(f"Statement timed out after {timeout:g}s") from exc
        except QueryExecutionError:
            raise
        except Exception as exc:
            raise QueryExecutionError(str(exc) or type(exc).__name__) from exc

    @staticmethod
    def _connect_kwargs(profile: ConnectionProfile) -> dict[str, object]:
        kwargs: dict[str, object] = {
            "host": profile.host,
            "port": profile.port,
            "user": profile.user,
            "password": profile.password,
            "autocommit": True,
        }
        if profile.database:
            kwargs["db"] = profile.database
        return kwargs


@dataclass(eq=False, slots=True)
class ConnectionHandle:
    """A live, reusable session to one profile's target.

    The registry owns every handle; callers borrow it to issue statements
    and must not close the session themselves. A MySQL session runs one
    command at a time, so every round trip holds the handle lock.
    """

    profile_name: str
    session: Any
    backend: ConnectionBackend
    opened_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    async def ping(self) -> None:
        """Probe the session, surfacing failures as ``ProfileConnectionError``."""

        async with self._lock:
            try:
                await self.backend.ping(self.session)
            except Exception as exc:
                raise ProfileConnectionError(
                    self.profile_name, f"Liveness probe failed for profile '{self.profile_name}': {exc}"
                ) from exc

    async def fetch(self, sql: str, params: QueryParams = None) -> list[dict[str, Any]]:
        async with self._lock:
            return await self.backend.fetch(self.session, sql, params)

    async def execute(self, sql: str, params: QueryParams = None) -> int:
        async with self._lock:
            return await self.backend.execute(self.session, sql, params)

    async def close(self) -> None:
        """Close the session once any in-flight statement has finished."""

        async with self._lock:
            await self.backend.close(self.session)

    async def session_identity(self) -> dict[str, Any]:
        rows = await self.fetch(SESSION_IDENTITY_QUERY)
        return dict(rows[0]) if rows else {}


__all__ = [
    "AiomysqlConnectionBackend",
    "ConnectionBackend",
    "ConnectionHandle",
    "PROBE_QUERY",
    "SESSION_IDENTITY_QUERY",
]
