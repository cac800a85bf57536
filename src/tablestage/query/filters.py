"""Filter-to-SQL translation.

Turns the enabled filters of the filter bar into a WHERE clause with bound
parameters in the dialect's placeholder style. Filter values are never
interpolated into SQL text; only `raw_sql` filters are appended verbatim,
and only after a keyword check.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from tablestage.core.logging import get_logger
from tablestage.query.models import FilterOperator, TableFilter, WhereClause

if TYPE_CHECKING:
    from tablestage.dialects import Dialect

logger = get_logger(__name__)

_FORBIDDEN_RAW = re.compile(
    r"\b(DROP|TRUNCATE|DELETE|UPDATE|INSERT|ALTER|GRANT|REVOKE|CREATE|EXEC)\b",
    re.IGNORECASE,
)

_COMPARISONS = {
    FilterOperator.EQUALS: "=",
    FilterOperator.NOT_EQUALS: "!=",
    FilterOperator.GREATER_THAN: ">",
    FilterOperator.LESS_THAN: "<",
    FilterOperator.GREATER_OR_EQUAL: ">=",
    FilterOperator.LESS_OR_EQUAL: "<=",
}

# operator -> (negate, LIKE pattern)
_LIKE_PATTERNS = {
    FilterOperator.CONTAINS: (False, "%{}%"),
    FilterOperator.NOT_CONTAINS: (True, "%{}%"),
    FilterOperator.STARTS_WITH: (False, "{}%"),
    FilterOperator.ENDS_WITH: (False, "%{}"),
}


def is_safe_raw_filter(value: str) -> bool:
    """Check that a raw SQL filter is a single non-destructive expression."""
    return ";" not in value and not _FORBIDDEN_RAW.search(value)


def build_where_clause(filters: list[TableFilter], dialect: Dialect) -> WhereClause:
    """Build a WHERE clause from the enabled filters.

    Args:
        filters: Filters in display order; disabled ones are skipped
        dialect: Target SQL dialect

    Returns:
        WhereClause with `where` empty when no filter produced a predicate
    """
    clauses: list[str] = []
    params: list[Any] = []

    for f in filters:
        if not f.enabled:
            continue

        col = dialect.quote_identifier(f.column)
        op = f.operator

        if op in _COMPARISONS:
            clauses.append(f"{col} {_COMPARISONS[op]} {dialect.placeholder(len(params) + 1)}")
            params.append(f.value)

        elif op in _LIKE_PATTERNS:
            negate, pattern = _LIKE_PATTERNS[op]
            like = dialect.like_operator(negate)
            clauses.append(f"{col} {like} {dialect.placeholder(len(params) + 1)}")
            params.append(pattern.format(f.value))

        elif op == FilterOperator.IS_NULL:
            clauses.append(f"{col} IS NULL")

        elif op == FilterOperator.IS_NOT_NULL:
            clauses.append(f"{col} IS NOT NULL")

        elif op in (FilterOperator.IN, FilterOperator.NOT_IN):
            values = [v.strip() for v in f.value.split(",")]
            sql, in_params = dialect.in_clause(
                col, values, len(params) + 1, negate=op == FilterOperator.NOT_IN
            )
            clauses.append(sql)
            params.extend(in_params)

        elif op == FilterOperator.BETWEEN:
            p1 = dialect.placeholder(len(params) + 1)
            p2 = dialect.placeholder(len(params) + 2)
            clauses.append(f"{col} BETWEEN {p1} AND {p2}")
            params.extend([f.value, f.value2 if f.value2 is not None else ""])

        elif op == FilterOperator.RAW_SQL:
            raw = f.value.strip()
            if not raw:
                continue
            if not is_safe_raw_filter(raw):
                logger.warning("raw_filter_rejected", filter_id=f.id, column=f.column)
                continue
            clauses.append(f"({raw})")

    if not clauses:
        return WhereClause()

    return WhereClause(where="WHERE " + " AND ".join(clauses), params=params)
