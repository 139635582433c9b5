"""Per-profile connection handle registry."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping

from .config import GatewaySettings
from .connections import AiomysqlConnectionBackend, ConnectionBackend, ConnectionHandle
from .errors import GatewayError, ProfileConnectionError
from .models import ConfigSource, ConnectionProfile, Resolution, Topology
from .resolver import ConfigResolver

LOG = logging.getLogger(__name__)


class RegistryEventKind(str, Enum):
    """Lifecycle events reported to registry listeners."""

    TOPOLOGY_RESOLVED = "topology_resolved"
    HANDLE_CREATED = "handle_created"
    HANDLE_RECREATED = "handle_recreated"
    HANDLE_EVICTED = "handle_evicted"
    HANDLE_CLOSED = "handle_closed"
    CLOSE_FAILED = "close_failed"


@dataclass(frozen=True, slots=True)
class RegistryEvent:
    """Snapshot emitted whenever the registry changes a handle or topology."""

    kind: RegistryEventKind
    profile_name: str | None = None
    detail: str | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))


RegistryListener = Callable[[RegistryEvent], None]


@dataclass(frozen=True, slots=True)
class ProbeResult:
    """Outcome of testing one profile."""

    profile_name: str
    success: bool
    message: str
    error: str | None = None
    profile: Mapping[str, Any] | None = None
    latency_ms: int | None = None

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.error is not None:
            data["error"] = self.error
        if self.profile is not None:
            data["connection"] = dict(self.profile)
        if self.latency_ms is not None:
            data["latency_ms"] = self.latency_ms
        return data


@dataclass(frozen=True, slots=True)
class ProfileStatus:
    """Activity report for one profile, derived from its cached handle."""

    profile_name: str
    active: bool
    cached: bool
    info: Mapping[str, Any] | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"active": self.active, "cached": self.cached}
        if self.info is not None:
            data["info"] = dict(self.info)
        if self.error is not None:
            data["error"] = self.error
        return data


class ConnectionRegistry:
    """Hands out validated, reusable connection handles per profile name.

    The topology is resolved on first use and kept until ``reload()``. At
    most one handle is cached per profile; creation and revalidation for a
    name are serialized by a per-name lock, so concurrent callers share a
    single session instead of racing to open several.
    """

    def __init__(
        self,
        resolver: ConfigResolver | None = None,
        *,
        backend: ConnectionBackend | None = None,
        settings: GatewaySettings | None = None,
    ) -> None:
        self._resolver = resolver or ConfigResolver(settings)
        settings = settings or self._resolver.settings
        self._backend = backend or AiomysqlConnectionBackend.from_settings(settings)
        self._resolution: Resolution | None = None
        self._handles: dict[str, ConnectionHandle] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._listeners: set[RegistryListener] = set()

    async def __aenter__(self) -> ConnectionRegistry:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close_all()

    @property
    def resolution(self) -> Resolution:
        """Memoized resolver output; resolved on first access."""

        if self._resolution is None:
            self._resolution = self._resolver.resolve()
            self._emit(
                RegistryEvent(
                    RegistryEventKind.TOPOLOGY_RESOLVED,
                    detail=self._resolution.source.origin,
                )
            )
        return self._resolution

    @property
    def topology(self) -> Topology:
        return self.resolution.topology

    def sources(self) -> tuple[ConfigSource, ...]:
        """Every configuration source examined, ranked by priority."""

        return self.resolution.sources

    def profile(self, profile_name: str | None = None) -> ConnectionProfile:
        """Return the named profile (or the default) without touching the network."""

        return self.topology.profile(profile_name)

    def cached_profiles(self) -> tuple[str, ...]:
        return tuple(self._handles)

    def subscribe(self, listener: RegistryListener) -> Callable[[], None]:
        """Subscribe to lifecycle events; returns an unsubscribe handle."""

        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    async def get_handle(self, profile_name: str | None = None) -> ConnectionHandle:
        """Return a live handle for the profile, creating or replacing it as needed."""

        handle, _ = await self._checkout(self.profile(profile_name))
        return handle

    async def _checkout(self, profile: ConnectionProfile) -> tuple[ConnectionHandle, bool]:
        """Return the handle and whether it was just probed rather than opened."""

        async with self._lock_for(profile.name):
            replaced = False
            handle = self._handles.get(profile.name)
            if handle is not None:
                try:
                    await handle.ping()
                except ProfileConnectionError as exc:
                    replaced = True
                    await self._evict(handle, str(exc))
                else:
                    if self._handles.get(profile.name) is handle:
                        return handle, True
            handle = await self._open(profile)
            self._handles[profile.name] = handle
            if replaced:
                LOG.info("Recreated connection handle", extra={"profile": profile.name})
                self._emit(RegistryEvent(RegistryEventKind.HANDLE_RECREATED, profile.name))
            else:
                LOG.info("Created connection handle", extra={"profile": profile.name})
                self._emit(RegistryEvent(RegistryEventKind.HANDLE_CREATED, profile.name))
            return handle, False

    async def close_handle(self, profile_name: str) -> None:
        """Close and forget the cached handle for a profile; no-op when absent."""

        async with self._lock_for(profile_name):
            handle = self._handles.pop(profile_name, None)
            if handle is None:
                return
            await self._close_quietly(handle)

    async def close_all(self) -> None:
        """Close every cached handle concurrently and empty the cache."""

        handles = list(self._handles.values())
        self._handles.clear()
        if handles:
            await asyncio.gather(*(self._close_quietly(handle) for handle in handles))
        LOG.info("Closed all connection handles", extra={"count": len(handles)})

    async def reload(self) -> Resolution:
        """Drop every handle and re-resolve configuration from scratch."""

        await self.close_all()
        self._resolution = None
        return self.resolution

    def list_profiles(self) -> list[dict[str, Any]]:
        """Describe every configured profile without connecting."""

        topology = self.topology
        return [
            {**profile.summary(), "is_default": name == topology.default_profile_name}
            for name, profile in topology.profiles.items()
        ]

    async def test_profile(self, profile_name: str | None = None) -> ProbeResult:
        """Connect (or reuse) and probe a profile, reporting rather than raising."""

        profile = self.profile(profile_name)
        started = time.perf_counter()
        try:
            handle, probed = await self._checkout(profile)
            if not probed:
                await handle.ping()
        except ProfileConnectionError as exc:
            return ProbeResult(
                profile_name=profile.name,
                success=False,
                message=f"Connection test failed for profile '{profile.name}': {exc}",
                error=str(exc),
                profile=profile.summary(),
            )
        return ProbeResult(
            profile_name=profile.name,
            success=True,
            message=f"Profile '{profile.name}' connected successfully",
            profile=profile.summary(),
            latency_ms=int((time.perf_counter() - started) * 1000),
        )

    async def test_all_profiles(self) -> dict[str, ProbeResult]:
        """Test every configured profile; one failure never hides another result."""

        names = self.topology.names
        results = await asyncio.gather(*(self.test_profile(name) for name in names))
        return dict(zip(names, results))

    async def status_snapshot(self) -> dict[str, ProfileStatus]:
        """Report activity per profile, querying only handles already cached."""

        names = self.topology.names
        statuses = await asyncio.gather(*(self._status_for(name) for name in names))
        return dict(zip(names, statuses))

    async def _status_for(self, profile_name: str) -> ProfileStatus:
        handle = self._handles.get(profile_name)
        if handle is None:
            return ProfileStatus(profile_name=profile_name, active=False, cached=False)
        try:
            info = await handle.session_identity()
        except GatewayError as exc:
            return ProfileStatus(profile_name=profile_name, active=False, cached=True, error=str(exc))
        return ProfileStatus(profile_name=profile_name, active=True, cached=True, info=info)

    async def _open(self, profile: ConnectionProfile) -> ConnectionHandle:
        try:
            session = await self._backend.connect(profile)
        except ProfileConnectionError:
            LOG.warning("Failed to create connection handle", extra={"profile": profile.name})
            raise
        except Exception as exc:
            LOG.warning("Failed to create connection handle", extra={"profile": profile.name})
            raise ProfileConnectionError(
                profile.name, f"Failed to connect to profile '{profile.name}': {exc}"
            ) from exc
        return ConnectionHandle(profile_name=profile.name, session=session, backend=self._backend)

    async def _evict(self, handle: ConnectionHandle, reason: str) -> None:
        if self._handles.get(handle.profile_name) is handle:
            del self._handles[handle.profile_name]
        LOG.warning("Evicted dead connection handle", extra={"profile": handle.profile_name, "reason": reason})
        self._emit(RegistryEvent(RegistryEventKind.HANDLE_EVICTED, handle.profile_name, detail=reason))
        await self._close_quietly(handle)

    async def _close_quietly(self, handle: ConnectionHandle) -> None:
        try:
            await handle.close()
        except Exception as exc:
            LOG.error(
                "Failed to close connection handle",
                extra={"profile": handle.profile_name, "reason": str(exc)},
            )
            self._emit(RegistryEvent(RegistryEventKind.CLOSE_FAILED, handle.profile_name, detail=str(exc)))
            return
        LOG.info("Closed connection handle", extra={"profile": handle.profile_name})
        self._emit(RegistryEvent(RegistryEventKind.HANDLE_CLOSED, handle.profile_name))

    def _lock_for(self, profile_name: str) -> asyncio.Lock:
        lock = self._locks.get(profile_name)
        if lock is None:
            lock = self._locks[profile_name] = asyncio.Lock()
        return lock

    def _emit(self, event: RegistryEvent) -> None:
        for listener in tuple(self._listeners):
            try:
                listener(event)
            except Exception:  # pragma: no cover
                LOG.exception("Registry listener failed", extra={"event": event.kind.value})


__all__ = [
    "ConnectionRegistry",
    "ProbeResult",
    "ProfileStatus",
    "RegistryEvent",
    "RegistryEventKind",
    "RegistryListener",
]
