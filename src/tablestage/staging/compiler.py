"""Compile staged changes into one transaction.

Statements are ordered updates, then inserts, then deletes, and run one at
a time between BEGIN and COMMIT. The first failure stops the batch, issues a
single best-effort ROLLBACK and raises TransactionError naming the staged
change that failed; the ledger is left untouched so the user can retry or
discard. Only after COMMIT succeeds are the compiled entries removed.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from tablestage.core.errors import TransactionError
from tablestage.core.logging import get_logger
from tablestage.staging.models import ChangeType, CommitSummary, SqlExpression, StagedChange

if TYPE_CHECKING:
    from tablestage.dialects import Dialect
    from tablestage.executor.base import QueryExecutor
    from tablestage.staging.ledger import ChangeLedger

logger = get_logger(__name__)

_ORDER = (ChangeType.UPDATE, ChangeType.INSERT, ChangeType.DELETE)


@dataclass
class CompiledStatement:
    """One parameterized statement and the staged change it came from."""

    sql: str
    params: list[Any] = field(default_factory=list)
    change: StagedChange | None = None


class _Params:
    """Collects bound values and hands out placeholders for one statement."""

    def __init__(self, dialect: Dialect):
        self.dialect = dialect
        self.values: list[Any] = []

    def bind(self, value: Any) -> str:
        if isinstance(value, SqlExpression):
            return value.value
        self.values.append(value)
        return self.dialect.placeholder(len(self.values))


class TransactionCompiler:
    """Turns a snapshot of staged changes into ordered DML.

    Args:
        dialect: Session dialect
        auto_increment_columns: Columns the engine assigns; omitted from
            inserts when their staged value is None
    """

    def __init__(self, dialect: Dialect, auto_increment_columns: list[str] | None = None):
        self.dialect = dialect
        self.auto_increment_columns = set(auto_increment_columns or [])

    def compile(self, changes: list[StagedChange]) -> list[CompiledStatement]:
        """Compile changes to statements, without BEGIN/COMMIT."""
        statements: list[CompiledStatement] = []
        for change_type in _ORDER:
            for change in changes:
                if change.type != change_type:
                    continue
                compiled = self.compile_change(change)
                if compiled is not None:
                    statements.append(compiled)
        return statements

    def compile_change(self, change: StagedChange) -> CompiledStatement | None:
        if change.type == ChangeType.UPDATE:
            return self._update(change)
        if change.type == ChangeType.INSERT:
            return self._insert(change)
        return self._delete(change)

    def _where(self, primary_key: dict[str, Any], params: _Params) -> str:
        parts = []
        for col, value in primary_key.items():
            quoted = self.dialect.quote_identifier(col)
            if value is None:
                parts.append(f"{quoted} IS NULL")
            else:
                parts.append(f"{quoted} = {params.bind(value)}")
        return " AND ".join(parts)

    def _limit(self) -> str:
        return " LIMIT 1" if self.dialect.limits_writes else ""

    def _update(self, change: StagedChange) -> CompiledStatement | None:
        if not change.changes or not change.primary_key:
            logger.warning("update_skipped", table=change.table, reason="missing identity")
            return None

        params = _Params(self.dialect)
        sets = ", ".join(
            f"{self.dialect.quote_identifier(col)} = {params.bind(cell.new)}"
            for col, cell in change.changes.items()
        )
        where = self._where(change.primary_key, params)
        table = self.dialect.qualified_table(change.table, change.schema)
        sql = f"UPDATE {table} SET {sets} WHERE {where}{self._limit()}"
        return CompiledStatement(sql=sql, params=params.values, change=change)

    def _insert(self, change: StagedChange) -> CompiledStatement:
        table = self.dialect.qualified_table(change.table, change.schema)
        entries = [
            (col, value)
            for col, value in (change.new_row or {}).items()
            if not (col in self.auto_increment_columns and value is None)
        ]
        if not entries:
            return CompiledStatement(sql=self.dialect.empty_insert(table), change=change)

        params = _Params(self.dialect)
        cols = ", ".join(self.dialect.quote_identifier(col) for col, _ in entries)
        values = ", ".join(params.bind(value) for _, value in entries)
        sql = f"INSERT INTO {table} ({cols}) VALUES ({values})"
        return CompiledStatement(sql=sql, params=params.values, change=change)

    def _delete(self, change: StagedChange) -> CompiledStatement | None:
        if not change.primary_key:
            logger.warning("delete_skipped", table=change.table, reason="missing identity")
            return None

        params = _Params(self.dialect)
        where = self._where(change.primary_key, params)
        table = self.dialect.qualified_table(change.table, change.schema)
        sql = f"DELETE FROM {table} WHERE {where}{self._limit()}"
        return CompiledStatement(sql=sql, params=params.values, change=change)

    async def apply(
        self,
        executor: QueryExecutor,
        session_id: str,
        ledger: ChangeLedger,
        table: str,
        schema: str | None = None,
        on_committed: Callable[[str], None] | None = None,
    ) -> CommitSummary:
        """Commit the table's staged changes in a single transaction.

        Args:
            executor: Executor for the session
            session_id: Database session
            ledger: Ledger to snapshot and, on success, settle
            table: Table whose changes are committed
            schema: Schema of the table
            on_committed: Called with the table name after COMMIT (cache
                invalidation)

        Returns:
            CommitSummary with statement counts

        Raises:
            TransactionError: If any statement fails; the transaction was
                rolled back and the ledger is unchanged
        """
        snapshot = ledger.snapshot(table, schema)
        summary = CommitSummary()
        if not snapshot:
            return summary

        statements = self.compile(snapshot)
        if not statements:
            return summary
        start = time.time()

        await self._run(executor, session_id, CompiledStatement(sql="BEGIN"))
        for statement in statements:
            await self._run(executor, session_id, statement)
            summary.statements.append(statement.sql)
        await self._run(executor, session_id, CompiledStatement(sql="COMMIT"))

        # Skipped changes produced no statement and stay staged
        for change in [s.change for s in statements if s.change is not None]:
            ledger.settle(change)
            if change.type == ChangeType.UPDATE:
                summary.updates += 1
            elif change.type == ChangeType.INSERT:
                summary.inserts += 1
            else:
                summary.deletes += 1

        if on_committed is not None:
            on_committed(table)

        logger.info(
            "transaction_committed",
            table=table,
            updates=summary.updates,
            inserts=summary.inserts,
            deletes=summary.deletes,
            duration_ms=round((time.time() - start) * 1000, 2),
        )
        return summary

    async def _run(
        self, executor: QueryExecutor, session_id: str, statement: CompiledStatement
    ) -> None:
        """Run one statement; on failure roll back and raise TransactionError."""
        try:
            result = await executor.query(session_id, statement.sql, statement.params)
            error = None if result.success else (result.error or "unknown error")
        except Exception as e:
            error = str(e) or type(e).__name__

        if error is None:
            return

        logger.error(
            "transaction_statement_failed",
            statement=statement.sql,
            table=statement.change.table if statement.change else None,
            column=statement.change.column if statement.change else None,
            error=error,
        )
        await self._rollback(executor, session_id)
        raise TransactionError(error, change=statement.change, statement=statement.sql)

    async def _rollback(self, executor: QueryExecutor, session_id: str) -> None:
        # Attempted once; nothing more can be done if it fails
        try:
            result = await executor.query(session_id, "ROLLBACK", [])
        except Exception as e:
            logger.error("rollback_failed", error=str(e))
            return
        if not result.success:
            logger.error("rollback_failed", error=result.error)
