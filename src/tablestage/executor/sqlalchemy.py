"""QueryExecutor over an SQLAlchemy AsyncEngine.

Each session id gets its own AsyncConnection, so a BEGIN ... COMMIT issued
through `query()` spans every statement of that session in between.
Statements outside an explicit transaction are committed right away.

Usage:
    engine = create_async_engine("postgresql+asyncpg://...")
    executor = SQLAlchemyQueryExecutor(engine, get_dialect("postgres"))
    result = await executor.query("s1", 'SELECT * FROM "users" LIMIT $1', [10])
    await executor.close()
"""

from __future__ import annotations

import re
import time
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from tablestage.core.logging import get_logger
from tablestage.core.models import Result
from tablestage.dialects import Dialect
from tablestage.executor.base import QueryExecutor
from tablestage.query.models import QueryField, QueryResult
from tablestage.structure.models import (
    SchemaColumn,
    SchemaForeignKey,
    SchemaIndex,
    TableStructure,
)

logger = get_logger(__name__)

# Quoted literals/identifiers are copied untouched; everything else is scanned
# for ? / $N placeholders and stray colons.
_TOKENS = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|`(?:[^`]|``)*`|\$\d+|\?|:")

_BEGIN = {"BEGIN", "START TRANSACTION", "BEGIN TRANSACTION"}


def to_named_binds(sql: str, params: list[Any] | None = None) -> tuple[str, dict[str, Any]]:
    """Rewrite `?` / `$N` placeholders to SQLAlchemy `:pN` binds.

    Colons that are not binds are escaped so text() leaves them alone.

    Returns:
        (rewritten SQL, bind values by name)
    """
    params = params or []
    binds: dict[str, Any] = {}
    position = 0

    def substitute(match: re.Match[str]) -> str:
        nonlocal position
        token = match.group(0)
        if token[0] in "'\"`":
            return token.replace(":", "\\:")
        if token == ":":
            return "\\:"
        if token == "?":
            index = position
            position += 1
        else:
            index = int(token[1:]) - 1
        if not 0 <= index < len(params):
            return token
        name = f"p{index}"
        binds[name] = params[index]
        return f":{name}"

    return _TOKENS.sub(substitute, sql), binds


def _error_message(error: SQLAlchemyError) -> str:
    orig = getattr(error, "orig", None)
    return str(orig) if orig is not None else str(error)


def _type_name(column: dict[str, Any], conn: Connection) -> str:
    type_ = column["type"]
    try:
        return str(type_.compile(dialect=conn.dialect))
    except SQLAlchemyError:
        return str(type_)


def _read_structure(conn: Connection, table: str, schema: str | None) -> TableStructure:
    inspector = inspect(conn)
    if not inspector.has_table(table, schema=schema):
        raise NoSuchTableError(table)

    pk = inspector.get_pk_constraint(table, schema=schema) or {}
    pk_columns = list(pk.get("constrained_columns") or [])

    unique_sets = [
        list(u.get("column_names") or [])
        for u in inspector.get_unique_constraints(table, schema=schema)
    ]
    raw_indexes = inspector.get_indexes(table, schema=schema)
    unique_sets += [list(i.get("column_names") or []) for i in raw_indexes if i.get("unique")]
    single_unique = {cols[0] for cols in unique_sets if len(cols) == 1}

    columns: list[SchemaColumn] = []
    for position, col in enumerate(inspector.get_columns(table, schema=schema), start=1):
        name = col["name"]
        default = col.get("default")
        computed = col.get("computed") or {}
        is_pk = name in pk_columns
        columns.append(
            SchemaColumn(
                name=name,
                type=_type_name(col, conn),
                nullable=bool(col.get("nullable", True)),
                default_value=str(default) if default is not None else None,
                is_primary_key=is_pk,
                is_auto_increment=col.get("autoincrement") is True or "identity" in col,
                comment=col.get("comment") or "",
                charset=getattr(col["type"], "charset", None),
                collation=getattr(col["type"], "collation", None),
                ordinal_position=position,
                column_key="PRI" if is_pk else ("UNI" if name in single_unique else ""),
                is_generated=bool(computed),
                generation_expression=str(computed["sqltext"]) if computed else None,
            )
        )

    indexes: list[SchemaIndex] = []
    if pk_columns:
        indexes.append(
            SchemaIndex(
                name=pk.get("name") or "PRIMARY",
                columns=pk_columns,
                is_unique=True,
                is_primary=True,
            )
        )
    for idx in raw_indexes:
        options = idx.get("dialect_options") or {}
        indexes.append(
            SchemaIndex(
                name=idx.get("name"),
                columns=[c for c in idx.get("column_names") or [] if c],
                is_unique=bool(idx.get("unique")),
                type=options.get("mysql_using") or options.get("postgresql_using") or "",
            )
        )

    foreign_keys = []
    for fk in inspector.get_foreign_keys(table, schema=schema):
        options = fk.get("options") or {}
        foreign_keys.append(
            SchemaForeignKey(
                name=fk.get("name"),
                columns=list(fk.get("constrained_columns") or []),
                referenced_table=fk["referred_table"],
                referenced_schema=fk.get("referred_schema"),
                referenced_columns=list(fk.get("referred_columns") or []),
                on_update=(options.get("onupdate") or "NO ACTION").upper(),
                on_delete=(options.get("ondelete") or "NO ACTION").upper(),
            )
        )

    return TableStructure(columns=columns, indexes=indexes, foreign_keys=foreign_keys)


class SQLAlchemyQueryExecutor(QueryExecutor):
    """Runs engine statements on per-session AsyncConnections.

    Args:
        engine: Engine for the target database (caller owns its lifecycle)
        dialect: Dialect the incoming SQL is written in
    """

    def __init__(self, engine: AsyncEngine, dialect: Dialect):
        self.engine = engine
        self.dialect = dialect
        self._connections: dict[str, AsyncConnection] = {}
        self._explicit: set[str] = set()

    async def _connection(self, session_id: str) -> AsyncConnection:
        conn = self._connections.get(session_id)
        if conn is None:
            conn = await self.engine.connect()
            self._connections[session_id] = conn
            logger.debug("session_connected", session_id=session_id)
        return conn

    def in_transaction(self, session_id: str) -> bool:
        """Whether the session is inside an explicit BEGIN."""
        return session_id in self._explicit

    async def query(
        self, session_id: str, sql: str, params: list[Any] | None = None
    ) -> Result[QueryResult]:
        conn = await self._connection(session_id)
        keyword = sql.strip().rstrip(";").strip().upper()
        start = time.perf_counter()

        try:
            if keyword in _BEGIN:
                if conn.in_transaction():
                    await conn.commit()
                await conn.begin()
                self._explicit.add(session_id)
                return Result.ok(QueryResult())
            if keyword == "COMMIT":
                await conn.commit()
                self._explicit.discard(session_id)
                return Result.ok(QueryResult())
            if keyword == "ROLLBACK":
                await conn.rollback()
                self._explicit.discard(session_id)
                return Result.ok(QueryResult())

            statement, binds = to_named_binds(sql, params)
            cursor = await conn.execute(text(statement), binds)

            if cursor.returns_rows:
                keys = list(cursor.keys())
                rows = [dict(row._mapping) for row in cursor.fetchall()]
                value = QueryResult(
                    rows=rows,
                    fields=[QueryField(name=k) for k in keys],
                    row_count=len(rows),
                )
            else:
                value = QueryResult(affected_rows=cursor.rowcount, row_count=0)

            if session_id not in self._explicit:
                await conn.commit()
        except SQLAlchemyError as e:
            if session_id not in self._explicit and conn.in_transaction():
                await conn.rollback()
            if keyword in ("COMMIT", "ROLLBACK"):
                self._explicit.discard(session_id)
            return Result.fail(_error_message(e))

        value.execution_time_ms = round((time.perf_counter() - start) * 1000, 2)
        return Result.ok(value)

    async def get_row_count(
        self, session_id: str, table: str, schema: str | None = None
    ) -> Result[int]:
        estimate = self.dialect.row_estimate_query(table, schema)
        result = await self.query(session_id, estimate.sql, estimate.params)
        if not result.success or result.value is None:
            return Result.fail(result.error or "Row estimate failed")

        rows = result.value.rows
        if not rows:
            return Result.ok(0)
        value = rows[0].get("cnt", next(iter(rows[0].values()), 0))
        # reltuples is -1 for never-analyzed Postgres tables
        return Result.ok(max(0, int(value or 0)))

    async def get_table_structure(
        self, session_id: str, table: str, schema: str | None = None
    ) -> Result[TableStructure]:
        conn = await self._connection(session_id)
        try:
            structure = await conn.run_sync(_read_structure, table, schema)
            if session_id not in self._explicit:
                await conn.commit()
        except SQLAlchemyError as e:
            if session_id not in self._explicit and conn.in_transaction():
                await conn.rollback()
            return Result.fail(_error_message(e))
        return Result.ok(structure)

    async def execute_statements(self, session_id: str, statements: list[str]) -> Result[int]:
        executed = 0
        for statement in statements:
            result = await self.query(session_id, statement, [])
            if not result.success:
                return Result.fail(result.error or f"Statement {executed + 1} failed")
            executed += 1
        return Result.ok(executed)

    async def close(self, session_id: str | None = None) -> None:
        """Close one session's connection, or all of them."""
        ids = [session_id] if session_id is not None else list(self._connections)
        for sid in ids:
            conn = self._connections.pop(sid, None)
            self._explicit.discard(sid)
            if conn is not None:
                await conn.close()
