"""SQL dialect strategies for MySQL and PostgreSQL.

A Dialect is resolved once per session and injected into every builder, so
no other module branches on the database type. Dialects are pure: they only
turn names and values into SQL text.

Usage:
    dialect = get_dialect("postgres")
    dialect.quote_identifier('a"b')   # '"a""b"'
    dialect.placeholder(3)            # '$3'
"""

from __future__ import annotations

import math
import re
from abc import ABC, abstractmethod
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

from tablestage.core.logging import get_logger
from tablestage.core.models.base import DatabaseType
from tablestage.query.models import SqlQuery
from tablestage.staging.models import SqlExpression
from tablestage.structure.models import ColumnChanges, StructureColumn

logger = get_logger(__name__)

# Metadata values interpolated without quotes (charset, collation) must match this.
SAFE_IDENTIFIER = re.compile(r"^[A-Za-z0-9_]+$")


def is_safe_identifier(value: str) -> bool:
    """Check that a value can be interpolated as a bare identifier."""
    return bool(SAFE_IDENTIFIER.fullmatch(value))


def escape_string(value: str) -> str:
    """Render a value as a single-quoted SQL string literal."""
    return "'" + value.replace("'", "''") + "'"


class Dialect(ABC):
    """Identifier quoting, placeholders and DDL syntax of one SQL flavor."""

    db_type: DatabaseType
    quote_char: str
    default_schema: str | None = None
    limits_writes: bool = False
    safe_default_pattern: re.Pattern[str]

    @property
    def name(self) -> str:
        return self.db_type.value

    def quote_identifier(self, name: str) -> str:
        """Quote an identifier, doubling embedded quote characters."""
        q = self.quote_char
        return f"{q}{name.replace(q, q + q)}{q}"

    @abstractmethod
    def placeholder(self, index: int) -> str:
        """Parameter placeholder for the 1-based parameter index."""
        pass

    def is_safe_default_literal(self, value: str) -> bool:
        """Whether a default value may be emitted without quoting."""
        return bool(self.safe_default_pattern.fullmatch(value.strip()))

    def default_literal(self, value: str) -> str:
        """Render a column default, quoting it unless it is a known keyword/literal."""
        if self.is_safe_default_literal(value):
            return value.strip()
        return escape_string(value)

    def qualified_table(self, table: str, schema: str | None = None) -> str:
        """Quoted schema.table, or just the quoted table without a schema."""
        if not table:
            raise ValueError("Table name must not be empty")
        quoted = self.quote_identifier(table)
        if schema:
            return f"{self.quote_identifier(schema)}.{quoted}"
        return quoted

    def like_operator(self, negate: bool = False) -> str:
        return "NOT LIKE" if negate else "LIKE"

    @abstractmethod
    def in_clause(
        self, column_sql: str, values: list[str], start_index: int, negate: bool = False
    ) -> tuple[str, list[Any]]:
        """Build an IN / NOT IN predicate.

        Args:
            column_sql: Already quoted column
            values: Values to match
            start_index: 1-based index of the first placeholder

        Returns:
            (predicate SQL, params)
        """
        pass

    @abstractmethod
    def empty_insert(self, table_sql: str) -> str:
        """INSERT statement for a row where every column takes its default."""
        pass

    @abstractmethod
    def row_estimate_query(self, table: str, schema: str | None = None) -> SqlQuery:
        """Cheap statistics-based row count query, returning a `cnt` column."""
        pass

    def format_literal(self, value: Any) -> str:
        """Render a value as an inline SQL literal.

        For display (query log, staged change preview) only; executed
        statements always bind values as parameters.
        """
        if value is None:
            return "NULL"
        if isinstance(value, SqlExpression):
            return value.value
        if isinstance(value, bool):
            return self._bool_literal(value)
        if isinstance(value, float):
            return repr(value) if math.isfinite(value) else "NULL"
        if isinstance(value, int | Decimal):
            return str(value)
        if isinstance(value, datetime | date | time):
            return escape_string(value.isoformat())
        if isinstance(value, list | tuple):
            return "(" + ", ".join(self.format_literal(v) for v in value) + ")"
        return escape_string(str(value))

    @abstractmethod
    def _bool_literal(self, value: bool) -> str:
        pass

    # --- DDL ---

    @abstractmethod
    def column_definition(self, column: StructureColumn) -> str:
        """Type, nullability, default and other attributes of a column."""
        pass

    @abstractmethod
    def alter_statements(
        self, table: str, schema: str | None, changes: ColumnChanges
    ) -> list[str]:
        """Ordered DDL statements applying the classified column changes."""
        pass

    def _safe_metadata(self, column: StructureColumn, field: str) -> str | None:
        """Return charset/collation only if it is a safe bare identifier."""
        value = getattr(column, field)
        if not value:
            return None
        if not is_safe_identifier(value):
            logger.warning(
                "unsafe_identifier_dropped",
                column=column.name,
                field=field,
                value=value,
            )
            return None
        return value


class MySQLDialect(Dialect):
    """MySQL / MariaDB."""

    db_type = DatabaseType.MYSQL
    quote_char = "`"
    limits_writes = True
    safe_default_pattern = re.compile(
        r"(CURRENT_TIMESTAMP(\(\d*\))?|NOW\(\)|NULL|TRUE|FALSE|-?\d+(\.\d+)?|b'[01]+')",
        re.IGNORECASE,
    )

    def placeholder(self, index: int) -> str:
        return "?"

    def in_clause(
        self, column_sql: str, values: list[str], start_index: int, negate: bool = False
    ) -> tuple[str, list[Any]]:
        placeholders = ", ".join(self.placeholder(start_index + i) for i in range(len(values)))
        op = "NOT IN" if negate else "IN"
        return f"{column_sql} {op} ({placeholders})", list(values)

    def empty_insert(self, table_sql: str) -> str:
        return f"INSERT INTO {table_sql} () VALUES ()"

    def row_estimate_query(self, table: str, schema: str | None = None) -> SqlQuery:
        if schema:
            return SqlQuery(
                sql=(
                    "SELECT TABLE_ROWS AS cnt FROM INFORMATION_SCHEMA.TABLES "
                    "WHERE TABLE_SCHEMA = ? AND TABLE_NAME = ?"
                ),
                params=[schema, table],
            )
        return SqlQuery(
            sql=(
                "SELECT TABLE_ROWS AS cnt FROM INFORMATION_SCHEMA.TABLES "
                "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = ?"
            ),
            params=[table],
        )

    def _bool_literal(self, value: bool) -> str:
        return "1" if value else "0"

    def column_definition(self, column: StructureColumn) -> str:
        parts = [column.type]

        charset = self._safe_metadata(column, "charset")
        if charset:
            parts.append(f"CHARACTER SET {charset}")
        collation = self._safe_metadata(column, "collation")
        if collation:
            parts.append(f"COLLATE {collation}")

        parts.append("NULL" if column.nullable else "NOT NULL")

        if column.is_auto_increment:
            parts.append("AUTO_INCREMENT")
        elif column.default_value is not None and column.default_value != "":
            parts.append(f"DEFAULT {self.default_literal(column.default_value)}")

        if column.comment:
            parts.append(f"COMMENT {escape_string(column.comment)}")

        return " ".join(parts)

    def alter_statements(
        self, table: str, schema: str | None, changes: ColumnChanges
    ) -> list[str]:
        """One ALTER TABLE with comma-joined clauses: drops, modifications, additions."""
        clauses: list[str] = []

        # Key first, before any of its columns are dropped
        if changes.drop_primary_key:
            clauses.append("DROP PRIMARY KEY")

        for col in changes.deleted:
            clauses.append(f"DROP COLUMN {self.quote_identifier(col.original_name or col.name)}")

        for col in changes.modified:
            if not (col.changed_fields() - {"is_primary_key"}):
                continue
            definition = self.column_definition(col)
            if col.is_renamed and col.original_name is not None:
                clauses.append(
                    f"CHANGE COLUMN {self.quote_identifier(col.original_name)} "
                    f"{self.quote_identifier(col.name)} {definition}"
                )
            else:
                clauses.append(f"MODIFY COLUMN {self.quote_identifier(col.name)} {definition}")

        for col in changes.added:
            clauses.append(
                f"ADD COLUMN {self.quote_identifier(col.name)} {self.column_definition(col)}"
            )

        if changes.add_primary_key:
            cols = ", ".join(self.quote_identifier(c) for c in changes.primary_key_after)
            clauses.append(f"ADD PRIMARY KEY ({cols})")

        if not clauses:
            return []
        body = ",\n".join(f"  {clause}" for clause in clauses)
        return [f"ALTER TABLE {self.qualified_table(table, schema)}\n{body};"]


class PostgresDialect(Dialect):
    """PostgreSQL."""

    db_type = DatabaseType.POSTGRES
    quote_char = '"'
    default_schema = "public"
    safe_default_pattern = re.compile(
        r"(CURRENT_TIMESTAMP|CURRENT_DATE|NOW\(\)|NULL|TRUE|FALSE|gen_random_uuid\(\)"
        r"|nextval\('[A-Za-z0-9_.\"]+'(::regclass)?\)|-?\d+(\.\d+)?)",
        re.IGNORECASE,
    )

    def placeholder(self, index: int) -> str:
        return f"${index}"

    def like_operator(self, negate: bool = False) -> str:
        return "NOT ILIKE" if negate else "ILIKE"

    def in_clause(
        self, column_sql: str, values: list[str], start_index: int, negate: bool = False
    ) -> tuple[str, list[Any]]:
        # One array parameter instead of one placeholder per value
        p = self.placeholder(start_index)
        if negate:
            return f"{column_sql} != ALL(CAST({p} AS text[]))", [list(values)]
        return f"{column_sql} = ANY(CAST({p} AS text[]))", [list(values)]

    def empty_insert(self, table_sql: str) -> str:
        return f"INSERT INTO {table_sql} DEFAULT VALUES"

    def row_estimate_query(self, table: str, schema: str | None = None) -> SqlQuery:
        return SqlQuery(
            sql=(
                "SELECT CAST(c.reltuples AS bigint) AS cnt FROM pg_class c "
                "JOIN pg_namespace n ON n.oid = c.relnamespace "
                "WHERE c.relname = $1 AND n.nspname = $2"
            ),
            params=[table, schema or self.default_schema],
        )

    def _bool_literal(self, value: bool) -> str:
        return "true" if value else "false"

    def _collate(self, column: StructureColumn) -> str:
        collation = self._safe_metadata(column, "collation")
        return f" COLLATE {self.quote_identifier(collation)}" if collation else ""

    def column_definition(self, column: StructureColumn) -> str:
        parts = [column.type + self._collate(column)]

        if column.is_auto_increment:
            parts.append("GENERATED BY DEFAULT AS IDENTITY")

        if not column.nullable:
            parts.append("NOT NULL")

        if (
            not column.is_auto_increment
            and column.default_value is not None
            and column.default_value != ""
        ):
            parts.append(f"DEFAULT {self.default_literal(column.default_value)}")

        return " ".join(parts)

    def alter_statements(
        self, table: str, schema: str | None, changes: ColumnChanges
    ) -> list[str]:
        """Renames first, then one multi-clause ALTER TABLE, then column comments.

        Postgres cannot rename inside a multi-clause ALTER, and column comments
        are separate COMMENT ON statements.
        """
        full_table = self.qualified_table(table, schema)
        statements: list[str] = []

        for col in changes.modified:
            if col.is_renamed and col.original_name is not None:
                statements.append(
                    f"ALTER TABLE {full_table} RENAME COLUMN "
                    f"{self.quote_identifier(col.original_name)} TO {self.quote_identifier(col.name)};"
                )

        clauses: list[str] = []

        # Dropping a key column removes the constraint, so drop it by name first
        if changes.drop_primary_key:
            clauses.append(f"DROP CONSTRAINT {self.quote_identifier(f'{table}_pkey')}")

        for col in changes.deleted:
            clauses.append(f"DROP COLUMN {self.quote_identifier(col.original_name or col.name)}")

        for col in changes.added:
            clauses.append(
                f"ADD COLUMN {self.quote_identifier(col.name)} {self.column_definition(col)}"
            )

        for col in changes.modified:
            clauses.extend(self._alter_column_clauses(col))

        if changes.add_primary_key:
            cols = ", ".join(self.quote_identifier(c) for c in changes.primary_key_after)
            clauses.append(f"ADD PRIMARY KEY ({cols})")

        if clauses:
            body = ",\n".join(f"  {clause}" for clause in clauses)
            statements.append(f"ALTER TABLE {full_table}\n{body};")

        statements.extend(self._comment_statements(table, schema, changes))
        return statements

    def _alter_column_clauses(self, col: StructureColumn) -> list[str]:
        changed = col.changed_fields()
        ref = self.quote_identifier(col.name)
        clauses: list[str] = []

        if "type" in changed or "collation" in changed:
            clauses.append(f"ALTER COLUMN {ref} TYPE {col.type}{self._collate(col)}")

        if "nullable" in changed:
            action = "DROP NOT NULL" if col.nullable else "SET NOT NULL"
            clauses.append(f"ALTER COLUMN {ref} {action}")

        if "default_value" in changed:
            if col.default_value is None or col.default_value == "":
                clauses.append(f"ALTER COLUMN {ref} DROP DEFAULT")
            else:
                clauses.append(
                    f"ALTER COLUMN {ref} SET DEFAULT {self.default_literal(col.default_value)}"
                )

        if "is_auto_increment" in changed:
            if col.is_auto_increment:
                clauses.append(f"ALTER COLUMN {ref} ADD GENERATED BY DEFAULT AS IDENTITY")
            else:
                clauses.append(f"ALTER COLUMN {ref} DROP IDENTITY IF EXISTS")

        return clauses

    def _comment_statements(
        self, table: str, schema: str | None, changes: ColumnChanges
    ) -> list[str]:
        # COMMENT ON COLUMN is always schema-qualified
        prefix = (
            f"{self.quote_identifier(schema or self.default_schema or 'public')}."
            f"{self.quote_identifier(table)}"
        )
        statements: list[str] = []
        for col in changes.modified:
            if "comment" in col.changed_fields():
                value = escape_string(col.comment) if col.comment else "NULL"
                statements.append(
                    f"COMMENT ON COLUMN {prefix}.{self.quote_identifier(col.name)} IS {value};"
                )
        for col in changes.added:
            if col.comment:
                statements.append(
                    f"COMMENT ON COLUMN {prefix}.{self.quote_identifier(col.name)} "
                    f"IS {escape_string(col.comment)};"
                )
        return statements


_DIALECTS: dict[DatabaseType, type[Dialect]] = {
    DatabaseType.MYSQL: MySQLDialect,
    DatabaseType.POSTGRES: PostgresDialect,
}


def get_dialect(db_type: DatabaseType | str) -> Dialect:
    """Resolve the dialect strategy for a database type.

    Args:
        db_type: DatabaseType or its value ("mysql", "postgres")

    Raises:
        ValueError: If the database type is not supported
    """
    try:
        key = DatabaseType(db_type)
    except ValueError as e:
        raise ValueError(f"Unsupported database type: {db_type}") from e
    return _DIALECTS[key]()
