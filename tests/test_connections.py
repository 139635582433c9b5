"""Tests for the aiomysql connection backend and handles."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from mysqlgate.connections import PROBE_QUERY, AiomysqlConnectionBackend, ConnectionHandle
from mysqlgate.errors import CloseError, ProfileConnectionError, QueryExecutionError
from mysqlgate.models import ConnectionProfile


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _FakeCursor:
    def __init__(self, connection: _FakeConnection) -> None:
        self._connection = connection

    async def __aenter__(self) -> _FakeCursor:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None

    async def execute(self, sql: str, params: Any = None) -> int:
        self._connection.statements.append((sql, params))
        if self._connection.broken:
            raise RuntimeError("Lost connection to MySQL server during query")
        return self._connection.affected

    async def fetchall(self) -> list[dict[str, Any]]:
        return self._connection.rows


class _FakeConnection:
    def __init__(self, rows: list[dict[str, Any]] | None = None, affected: int = 1) -> None:
        self.rows = rows or [{"1": 1}]
        self.affected = affected
        self.broken = False
        self.fail_close = False
        self.statements: list[tuple[str, Any]] = []
        self.cursor_classes: list[Any] = []
        self.ensure_closed_called = False
        self.force_closed = False

    def cursor(self, *cursor_classes: Any) -> _FakeCursor:
        self.cursor_classes.extend(cursor_classes)
        return _FakeCursor(self)

    async def ensure_closed(self) -> None:
        self.ensure_closed_called = True
        if self.fail_close:
            raise ConnectionResetError("socket already gone")

    def close(self) -> None:
        self.force_closed = True


PROFILE = ConnectionProfile(name="dev", host="localhost", port=3306, user="root", password="x", database="testdb")


@pytest.mark.anyio
async def test_connect_passes_profile_parameters(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}
    connection = _FakeConnection()

    async def _connect(**kwargs: Any) -> _FakeConnection:
        captured.update(kwargs)
        return connection

    monkeypatch.setattr("mysqlgate.connections.aiomysql.connect", _connect)
    backend = AiomysqlConnectionBackend(connect_timeout=3.0)

    session = await backend.connect(PROFILE)

    assert session is connection
    assert captured == {
        "host": "localhost",
        "port": 3306,
        "user": "root",
        "password": "x",
        "db": "testdb",
        "autocommit": True,
        "connect_timeout": 3.0,
    }


@pytest.mark.anyio
async def test_connect_omits_database_when_unset(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    async def _connect(**kwargs: Any) -> _FakeConnection:
        captured.update(kwargs)
        return _FakeConnection()

    monkeypatch.setattr("mysqlgate.connections.aiomysql.connect", _connect)
    profile = ConnectionProfile(name="bare", host="db", port=3307, user="app")

    await AiomysqlConnectionBackend().connect(profile)

    assert "db" not in captured
    assert captured["port"] == 3307


@pytest.mark.anyio
async def test_connect_surfaces_driver_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _broken_connect(**kwargs: Any) -> None:
        raise RuntimeError("Access denied for user 'root'@'localhost'")

    monkeypatch.setattr("mysqlgate.connections.aiomysql.connect", _broken_connect)

    with pytest.raises(ProfileConnectionError) as excinfo:
        await AiomysqlConnectionBackend().connect(PROFILE)

    assert excinfo.value.profile_name == "dev"
    assert "Access denied" in str(excinfo.value)


@pytest.mark.anyio
async def test_connect_times_out(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _slow_connect(**kwargs: Any) -> _FakeConnection:
        await asyncio.sleep(5)
        return _FakeConnection()

    monkeypatch.setattr("mysqlgate.connections.aiomysql.connect", _slow_connect)

    with pytest.raises(ProfileConnectionError) as excinfo:
        await AiomysqlConnectionBackend(connect_timeout=0.01).connect(PROFILE)

    assert "Timed out" in str(excinfo.value)


@pytest.mark.anyio
async def test_ping_runs_probe_query() -> None:
    connection = _FakeConnection()

    await AiomysqlConnectionBackend().ping(connection)

    assert connection.statements == [(PROBE_QUERY, None)]


@pytest.mark.anyio
async def test_fetch_returns_rows_and_wraps_failures() -> None:
    connection = _FakeConnection(rows=[{"id": 1, "email": "alice@example.com"}])
    backend = AiomysqlConnectionBackend()

    rows = await backend.fetch(connection, "SELECT id, email FROM accounts WHERE id = %s", (1,))

    assert rows == [{"id": 1, "email": "alice@example.com"}]
    assert connection.statements[-1] == ("SELECT id, email FROM accounts WHERE id = %s", (1,))

    connection.broken = True
    with pytest.raises(QueryExecutionError) as excinfo:
        await backend.fetch(connection, "SELECT 1")
    assert "Lost connection" in str(excinfo.value)


@pytest.mark.anyio
async def test_execute_returns_affected_rows() -> None:
    connection = _FakeConnection(affected=3)

    affected = await AiomysqlConnectionBackend().execute(connection, "DELETE FROM sessions")

    assert affected == 3


@pytest.mark.anyio
async def test_close_forces_transport_shut_on_failure() -> None:
    connection = _FakeConnection()
    connection.fail_close = True

    with pytest.raises(CloseError):
        await AiomysqlConnectionBackend().close(connection)

    assert connection.ensure_closed_called is True
    assert connection.force_closed is True


@pytest.mark.anyio
async def test_handle_ping_reports_profile_on_failure() -> None:
    connection = _FakeConnection()
    handle = ConnectionHandle(profile_name="dev", session=connection, backend=AiomysqlConnectionBackend())

    await handle.ping()
    connection.broken = True

    with pytest.raises(ProfileConnectionError) as excinfo:
        await handle.ping()

    assert excinfo.value.profile_name == "dev"
    assert "Liveness probe failed" in str(excinfo.value)


@pytest.mark.anyio
async def test_handle_session_identity_returns_first_row() -> None:
    identity = {"current_database": "testdb", "current_user": "root@localhost", "server_host": "db01"}
    handle = ConnectionHandle(
        profile_name="dev",
        session=_FakeConnection(rows=[identity]),
        backend=AiomysqlConnectionBackend(),
    )

    assert await handle.session_identity() == identity
