"""Readable SQL for the staged-changes panel.

Values are inlined as literals, so the output is for display only and is
never executed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from tablestage.staging.models import ChangeType, StagedChange

if TYPE_CHECKING:
    from tablestage.dialects import Dialect


def _where(primary_key: dict[str, Any], dialect: Dialect) -> str:
    parts = []
    for col, value in primary_key.items():
        quoted = dialect.quote_identifier(col)
        if value is None:
            parts.append(f"{quoted} IS NULL")
        else:
            parts.append(f"{quoted} = {dialect.format_literal(value)}")
    return " AND ".join(parts) or "1 = 0"


def render_change_sql(
    change: StagedChange, dialect: Dialect, auto_increment_columns: list[str] | None = None
) -> str:
    """Render one staged change as a literal SQL statement."""
    table = dialect.qualified_table(change.table, change.schema)
    limit = " LIMIT 1" if dialect.limits_writes else ""

    if change.type == ChangeType.UPDATE:
        sets = ", ".join(
            f"{dialect.quote_identifier(col)} = {dialect.format_literal(cell.new)}"
            for col, cell in (change.changes or {}).items()
        )
        return f"UPDATE {table} SET {sets} WHERE {_where(change.primary_key or {}, dialect)}{limit};"

    if change.type == ChangeType.INSERT:
        skip = set(auto_increment_columns or [])
        entries = [
            (col, value)
            for col, value in (change.new_row or {}).items()
            if not (col in skip and value is None)
        ]
        if not entries:
            return f"{dialect.empty_insert(table)};"
        cols = ", ".join(dialect.quote_identifier(col) for col, _ in entries)
        values = ", ".join(dialect.format_literal(value) for _, value in entries)
        return f"INSERT INTO {table} ({cols}) VALUES ({values});"

    return f"DELETE FROM {table} WHERE {_where(change.primary_key or {}, dialect)}{limit};"


def render_transaction(
    changes: list[StagedChange],
    dialect: Dialect,
    auto_increment_columns: list[str] | None = None,
) -> str:
    """Render changes as the full BEGIN ... COMMIT script, in commit order."""
    lines = ["BEGIN;"]
    for change_type in (ChangeType.UPDATE, ChangeType.INSERT, ChangeType.DELETE):
        lines.extend(
            render_change_sql(c, dialect, auto_increment_columns)
            for c in changes
            if c.type == change_type
        )
    lines.append("COMMIT;")
    return "\n".join(lines)
