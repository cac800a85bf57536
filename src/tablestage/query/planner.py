"""Read query planning.

Builds the paginated SELECT and the matching COUNT(*) for one table view.
The WHERE clause comes entirely from the injected where builder; pagination
is always bound as parameters after the WHERE params.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from tablestage.query.filters import build_where_clause
from tablestage.query.models import SortDirection, SqlQuery, TableFilter, WhereClause

if TYPE_CHECKING:
    from tablestage.dialects import Dialect

WhereBuilder = Callable[[list[TableFilter], "Dialect"], WhereClause]


def build_full_table_name(table: str, schema: str | None, dialect: Dialect) -> str:
    """Quoted schema.table when a schema is given, else the quoted table."""
    return dialect.qualified_table(table, schema)


def _order_by(
    dialect: Dialect,
    sort_column: str | None,
    sort_direction: SortDirection | str | None,
    primary_key_columns: list[str],
) -> str:
    if sort_column:
        direction = SortDirection(sort_direction or SortDirection.ASC)
        return f" ORDER BY {dialect.quote_identifier(sort_column)} {direction.value.upper()}"
    if primary_key_columns:
        cols = ", ".join(f"{dialect.quote_identifier(c)} ASC" for c in primary_key_columns)
        return f" ORDER BY {cols}"
    return ""


def build_data_query(
    table: str,
    schema: str | None,
    dialect: Dialect,
    page: int,
    page_size: int,
    sort_column: str | None = None,
    sort_direction: SortDirection | str | None = None,
    filters: list[TableFilter] | None = None,
    primary_key_columns: list[str] | None = None,
    where_builder: WhereBuilder = build_where_clause,
) -> SqlQuery:
    """Build the SELECT for one page of a table.

    ORDER BY uses the explicit sort column when given, otherwise the primary
    key columns ascending so pagination is deterministic, otherwise nothing.

    Raises:
        ValueError: On an empty table name, page < 1 or page_size < 1
    """
    if page < 1:
        raise ValueError(f"Page must be >= 1, got {page}")
    if page_size < 1:
        raise ValueError(f"Page size must be >= 1, got {page_size}")

    full_table = build_full_table_name(table, schema, dialect)
    where = where_builder(filters or [], dialect)

    sql = f"SELECT * FROM {full_table}"
    if where.where:
        sql += f" {where.where}"
    sql += _order_by(dialect, sort_column, sort_direction, primary_key_columns or [])

    params = list(where.params)
    limit_ph = dialect.placeholder(len(params) + 1)
    offset_ph = dialect.placeholder(len(params) + 2)
    sql += f" LIMIT {limit_ph} OFFSET {offset_ph}"
    params.extend([page_size, (page - 1) * page_size])

    return SqlQuery(sql=sql, params=params)


def build_count_query(
    table: str,
    schema: str | None,
    dialect: Dialect,
    filters: list[TableFilter] | None = None,
    where_builder: WhereBuilder = build_where_clause,
) -> SqlQuery:
    """Build `SELECT COUNT(*) AS count` with the same WHERE as the data query."""
    full_table = build_full_table_name(table, schema, dialect)
    where = where_builder(filters or [], dialect)

    sql = f"SELECT COUNT(*) AS count FROM {full_table}"
    if where.where:
        sql += f" {where.where}"
    return SqlQuery(sql=sql, params=list(where.params))
