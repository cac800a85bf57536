"""Executor decorator that logs every statement and keeps a query history."""

from __future__ import annotations

import time
from typing import Any

from tablestage.core.logging import get_logger
from tablestage.core.models import Result
from tablestage.executor.base import QueryExecutor
from tablestage.query.history import QueryHistory
from tablestage.query.models import QueryResult
from tablestage.structure.models import TableStructure

logger = get_logger(__name__)


class RecordingExecutor(QueryExecutor):
    """Wraps an executor; statements are timed, logged and added to `history`.

    Args:
        inner: Executor doing the actual work
        history: Query log to append to (a new bounded one by default)
        database: Database name stored on history entries
    """

    def __init__(
        self, inner: QueryExecutor, history: QueryHistory | None = None, database: str = ""
    ):
        self.inner = inner
        self.history = history if history is not None else QueryHistory()
        self.database = database

    async def query(
        self, session_id: str, sql: str, params: list[Any] | None = None
    ) -> Result[QueryResult]:
        start = time.perf_counter()
        result = await self.inner.query(session_id, sql, params)
        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)

        row_count = None
        if result.success and result.value is not None:
            value = result.value
            row_count = value.affected_rows if value.affected_rows is not None else value.row_count

        self.history.record(
            sql,
            params,
            execution_time_ms=elapsed_ms,
            row_count=row_count,
            error=None if result.success else result.error,
            database=self.database,
        )

        if result.success:
            logger.debug("query_executed", session_id=session_id, duration_ms=elapsed_ms, rows=row_count)
        else:
            logger.warning(
                "query_failed", session_id=session_id, duration_ms=elapsed_ms, error=result.error
            )
        return result

    async def get_row_count(
        self, session_id: str, table: str, schema: str | None = None
    ) -> Result[int]:
        result = await self.inner.get_row_count(session_id, table, schema)
        logger.debug("row_estimate", table=table, success=result.success, estimate=result.value)
        return result

    async def get_table_structure(
        self, session_id: str, table: str, schema: str | None = None
    ) -> Result[TableStructure]:
        return await self.inner.get_table_structure(session_id, table, schema)

    async def execute_statements(self, session_id: str, statements: list[str]) -> Result[int]:
        start = time.perf_counter()
        result = await self.inner.execute_statements(session_id, statements)
        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)

        self.history.record(
            "\n".join(statements),
            execution_time_ms=elapsed_ms,
            error=None if result.success else result.error,
            database=self.database,
        )
        if result.success:
            logger.info("statements_executed", count=len(statements), duration_ms=elapsed_ms)
        else:
            logger.warning("statements_failed", count=len(statements), error=result.error)
        return result
