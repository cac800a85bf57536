"""Shared pytest fixtures for all tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from tablestage.core.models import Result
from tablestage.dialects import MySQLDialect, PostgresDialect
from tablestage.executor.base import QueryExecutor
from tablestage.query.models import QueryField, QueryResult
from tablestage.structure.models import SchemaColumn, TableStructure


class FakeExecutor(QueryExecutor):
    """Scripted executor that records every call.

    - `rows` answer `SELECT *` statements, `count` answers `SELECT COUNT(*)`
    - `estimate` (or `estimate_error`) answers get_row_count
    - `fail_on[fragment] = error` fails any statement containing `fragment`
    - `raise_on[fragment] = exc` raises from any statement containing `fragment`
    - `fail_when(sql, params)` fails a statement when it returns an error message
    - `hold(fragment, gate)` blocks the next matching statement until `gate` is set
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, list[Any]]] = []
        self.rows: list[dict[str, Any]] = []
        self.count = 0
        self.estimate = 0
        self.estimate_error: str | None = None
        self.estimate_calls = 0
        self.structure = TableStructure()
        self.structure_calls = 0
        self.fail_on: dict[str, str] = {}
        self.raise_on: dict[str, Exception] = {}
        self.fail_when: Callable[[str, list[Any]], str | None] | None = None
        self.batches: list[list[str]] = []
        self.batch_error: str | None = None
        self._holds: list[tuple[str, asyncio.Event]] = []

    @property
    def statements(self) -> list[str]:
        return [sql for sql, _ in self.calls]

    def count_queries(self) -> int:
        return sum(1 for sql in self.statements if sql.startswith("SELECT COUNT(*)"))

    def hold(self, fragment: str, gate: asyncio.Event) -> None:
        self._holds.append((fragment, gate))

    async def query(
        self, session_id: str, sql: str, params: list[Any] | None = None
    ) -> Result[QueryResult]:
        self.calls.append((sql, list(params or [])))

        for i, (fragment, gate) in enumerate(self._holds):
            if fragment in sql:
                del self._holds[i]
                await gate.wait()
                break

        for fragment, exc in self.raise_on.items():
            if fragment in sql:
                raise exc
        for fragment, error in self.fail_on.items():
            if fragment in sql:
                return Result.fail(error)
        if self.fail_when is not None:
            error = self.fail_when(sql, list(params or []))
            if error is not None:
                return Result.fail(error)

        if sql.startswith("SELECT COUNT(*)"):
            return Result.ok(QueryResult(rows=[{"count": self.count}], row_count=1))
        if sql.startswith("SELECT"):
            fields = [QueryField(name=k) for k in (self.rows[0] if self.rows else {})]
            return Result.ok(
                QueryResult(rows=[dict(r) for r in self.rows], fields=fields, row_count=len(self.rows))
            )
        return Result.ok(QueryResult(affected_rows=1))

    async def get_row_count(
        self, session_id: str, table: str, schema: str | None = None
    ) -> Result[int]:
        self.estimate_calls += 1
        if self.estimate_error is not None:
            return Result.fail(self.estimate_error)
        return Result.ok(self.estimate)

    async def get_table_structure(
        self, session_id: str, table: str, schema: str | None = None
    ) -> Result[TableStructure]:
        self.structure_calls += 1
        return Result.ok(self.structure)

    async def execute_statements(self, session_id: str, statements: list[str]) -> Result[int]:
        self.batches.append(list(statements))
        if self.batch_error is not None:
            return Result.fail(self.batch_error)
        return Result.ok(len(statements))


@pytest.fixture
def mysql() -> MySQLDialect:
    return MySQLDialect()


@pytest.fixture
def postgres() -> PostgresDialect:
    return PostgresDialect()


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def users_structure() -> TableStructure:
    """users(id PK auto-increment, name, email)."""
    return TableStructure(
        columns=[
            SchemaColumn(
                name="id",
                type="int",
                nullable=False,
                is_primary_key=True,
                is_auto_increment=True,
                ordinal_position=1,
            ),
            SchemaColumn(name="name", type="varchar(100)", ordinal_position=2),
            SchemaColumn(name="email", type="varchar(255)", ordinal_position=3),
        ]
    )


@pytest.fixture
def users_rows() -> list[dict[str, Any]]:
    return [
        {"id": 1, "name": "Ada", "email": "ada@example.com"},
        {"id": 2, "name": "Grace", "email": None},
        {"id": 3, "name": "Linus", "email": "linus@example.com"},
    ]
