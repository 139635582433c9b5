"""Tests for statement pass-through helpers."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from mysqlgate.config import GatewaySettings
from mysqlgate.errors import QueryExecutionError
from mysqlgate.models import ConnectionProfile
from mysqlgate.query import returns_rows, run_statement
from mysqlgate.registry import ConnectionRegistry
from mysqlgate.resolver import ConfigResolver


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _RecordingBackend:
    def __init__(self, rows: list[dict[str, Any]] | None = None, affected: int = 1) -> None:
        self.rows = rows or []
        self.affected = affected
        self.fetched: list[tuple[str, Any]] = []
        self.executed: list[tuple[str, Any]] = []
        self.profiles: list[str] = []

    async def connect(self, profile: ConnectionProfile) -> object:
        self.profiles.append(profile.name)
        return object()

    async def ping(self, session: object) -> None:
        return None

    async def fetch(self, session: object, sql: str, params: Any = None) -> list[dict[str, Any]]:
        self.fetched.append((sql, params))
        return self.rows

    async def execute(self, session: object, sql: str, params: Any = None) -> int:
        self.executed.append((sql, params))
        return self.affected

    async def close(self, session: object) -> None:
        return None


def _registry(tmp_path: Path, backend: _RecordingBackend) -> ConnectionRegistry:
    environ = {
        "MYSQL_CONNECTIONS": json.dumps(
            {
                "connections": {
                    "dev": {"host": "localhost", "user": "root"},
                    "reporting": {"host": "replica", "user": "reader"},
                },
                "defaultConnection": "dev",
            }
        )
    }
    settings = GatewaySettings(host_settings_file=tmp_path / "mcp.json", project_root=tmp_path)
    return ConnectionRegistry(ConfigResolver(settings, environ=environ), backend=backend)


@pytest.mark.anyio
async def test_run_statement_fetches_rows(tmp_path: Path) -> None:
    backend = _RecordingBackend(
        rows=[
            {"id": 1, "email": "alice@example.com"},
            {"id": 2, "email": "bob@example.com"},
        ]
    )
    registry = _registry(tmp_path, backend)

    result = await run_statement(registry, "  SELECT id, email FROM accounts  ")

    assert result.columns == ("id", "email")
    assert result.rows == ((1, "alice@example.com"), (2, "bob@example.com"))
    assert result.row_count == 2
    assert result.status == "2 row(s)"
    assert backend.fetched == [("SELECT id, email FROM accounts", None)]
    assert backend.profiles == ["dev"]


@pytest.mark.anyio
async def test_run_statement_handles_writes_on_named_profile(tmp_path: Path) -> None:
    backend = _RecordingBackend(affected=4)
    registry = _registry(tmp_path, backend)

    result = await run_statement(registry, "UPDATE accounts SET status = %s", "reporting", ("active",))

    assert result.columns == ()
    assert result.rows == ()
    assert result.row_count == 4
    assert result.status == "OK, 4 row(s) affected"
    assert backend.executed == [("UPDATE accounts SET status = %s", ("active",))]
    assert backend.profiles == ["reporting"]


@pytest.mark.anyio
async def test_run_statement_rejects_empty_sql(tmp_path: Path) -> None:
    backend = _RecordingBackend()
    registry = _registry(tmp_path, backend)

    with pytest.raises(QueryExecutionError):
        await run_statement(registry, "   ")

    assert backend.profiles == []


@pytest.mark.parametrize(
    ("statement", "expected"),
    [
        ("SELECT 1", True),
        ("  show databases", True),
        ("WITH t AS (SELECT 1) SELECT * FROM t", True),
        ("(SELECT 1) UNION (SELECT 2)", True),
        ("DESCRIBE accounts", True),
        ("INSERT INTO accounts VALUES (1)", False),
        ("", False),
    ],
)
def test_returns_rows_classifies_statements(statement: str, expected: bool) -> None:
    assert returns_rows(statement) is expected
