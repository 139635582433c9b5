"""Tests for the diagnostic command line."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from mysqlgate import cli

TOPOLOGY = {
    "connections": {
        "dev": {"host": "localhost", "user": "root", "password": "x", "database": "testdb"},
        "prod": {"host": "db.internal", "user": "admin", "password": "secret"},
    },
    "defaultConnection": "dev",
}


@pytest.fixture(autouse=True)
def _isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("MYSQL_HOST", "MYSQL_PORT", "MYSQL_USER", "MYSQL_PASSWORD", "MYSQL_DATABASE"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("MYSQLGATE_PROJECT_ROOT", str(tmp_path))
    monkeypatch.setenv("MYSQLGATE_HOST_SETTINGS_FILE", str(tmp_path / "mcp.json"))
    monkeypatch.setenv("MYSQLGATE_CONNECT_TIMEOUT", "0.5")
    monkeypatch.setenv("MYSQL_CONNECTIONS", json.dumps(TOPOLOGY))


def test_sources_command_prints_ranked_summary(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(["sources"])

    output = capsys.readouterr().out
    assert exit_code == 0
    assert "[ACTIVE] env:MYSQL_CONNECTIONS (priority 3)" in output
    assert "profiles: dev, prod" in output


def test_profiles_command_lists_profiles_without_passwords(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(["profiles"])

    profiles = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert [entry["name"] for entry in profiles] == ["dev", "prod"]
    assert all("password" not in entry for entry in profiles)


def test_test_command_reports_failures_with_exit_code(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    async def _refused(**kwargs: Any) -> None:
        raise OSError("Can't connect to MySQL server on 'db.internal'")

    monkeypatch.setattr("mysqlgate.connections.aiomysql.connect", _refused)

    exit_code = cli.main(["test", "--all"])

    results = json.loads(capsys.readouterr().out)
    assert exit_code == 1
    assert set(results) == {"dev", "prod"}
    assert results["prod"]["success"] is False
    assert "Can't connect" in results["prod"]["error"]


def test_unknown_profile_exits_with_error(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(["test", "staging"])

    assert exit_code == 2
    assert "Profile 'staging' not found" in capsys.readouterr().err


def test_invalid_settings_exit_before_resolving(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("MYSQLGATE_CONNECT_TIMEOUT", "never")

    exit_code = cli.main(["profiles"])

    assert exit_code == 2
    assert "Invalid gateway settings" in capsys.readouterr().err
