"""Statement pass-through for callers that hold a profile name, not a handle."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from .connections import QueryParams
from .errors import QueryExecutionError
from .registry import ConnectionRegistry

ROW_RETURNING_KEYWORDS = frozenset({"select", "with", "show", "describe", "desc", "explain", "values", "table"})


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Normalized statement output."""

    columns: tuple[str, ...]
    rows: tuple[tuple[object, ...], ...]
    status: str
    elapsed_ms: int
    row_count: int | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "columns": list(self.columns),
            "rows": [list(row) for row in self.rows],
            "status": self.status,
            "elapsed_ms": self.elapsed_ms,
            "row_count": self.row_count,
        }


async def run_statement(
    registry: ConnectionRegistry,
    sql: str,
    profile_name: str | None = None,
    params: QueryParams = None,
) -> QueryResult:
    """Run one statement on the profile's cached handle."""

    statement = sql.strip()
    if not statement:
        raise QueryExecutionError("Provide SQL to execute.")
    handle = await registry.get_handle(profile_name)
    started = time.perf_counter()
    if returns_rows(statement):
        records = await handle.fetch(statement, params)
        columns, rows = _records_to_rows(records)
        row_count: int | None = len(rows)
        status = f"{row_count} row(s)"
    else:
        affected = await handle.execute(statement, params)
        columns, rows = (), ()
        row_count = affected
        status = f"OK, {affected} row(s) affected"
    elapsed_ms = int((time.perf_counter() - started) * 1000)
    return QueryResult(columns=columns, rows=rows, status=status, elapsed_ms=elapsed_ms, row_count=row_count)


def returns_rows(statement: str) -> bool:
    token = statement.lstrip().lstrip("(").split(None, 1)
    if not token:
        return False
    return token[0].lower() in ROW_RETURNING_KEYWORDS


def _records_to_rows(
    records: Iterable[Mapping[str, object]],
) -> tuple[tuple[str, ...], tuple[tuple[object, ...], ...]]:
    rows: list[tuple[object, ...]] = []
    columns: tuple[str, ...] = ()
    for record in records:
        if not columns:
            columns = tuple(str(key) for key in record.keys())
        rows.append(tuple(record.get(key) for key in columns))
    return columns, tuple(rows)


__all__ = [
    "QueryResult",
    "returns_rows",
    "run_statement",
]
