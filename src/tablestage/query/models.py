"""Pydantic models for reading table pages."""

from __future__ import annotations

import math
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class FilterOperator(str, Enum):
    """Comparison applied by a single grid filter."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_OR_EQUAL = "less_or_equal"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    IN = "in"
    NOT_IN = "not_in"
    BETWEEN = "between"
    RAW_SQL = "raw_sql"


class SortDirection(str, Enum):
    """Sort direction for ORDER BY."""

    ASC = "asc"
    DESC = "desc"


class TableFilter(BaseModel):
    """A single filter row from the filter bar.

    Only enabled filters take part in generated SQL.
    """

    id: str
    enabled: bool = True
    column: str
    operator: FilterOperator = FilterOperator.EQUALS
    value: str = ""
    value2: str | None = Field(None, description="Upper bound for 'between'")


class PaginationState(BaseModel):
    """Pagination shown under the grid.

    total_rows may be a statistics-based estimate; is_estimated_count tells the
    caller whether to offer an exact count.
    """

    page: int = 1
    page_size: int = 200
    total_rows: int = 0
    total_pages: int = 0
    is_estimated_count: bool = False

    @classmethod
    def for_total(
        cls, page: int, page_size: int, total_rows: int, is_estimated_count: bool
    ) -> PaginationState:
        """Build a pagination state, deriving total_pages from total_rows."""
        total_rows = max(0, total_rows)
        return cls(
            page=page,
            page_size=page_size,
            total_rows=total_rows,
            total_pages=max(1, math.ceil(total_rows / page_size)),
            is_estimated_count=is_estimated_count,
        )

    @property
    def offset(self) -> int:
        """Row offset of the first row on the current page."""
        return (self.page - 1) * self.page_size


class QueryField(BaseModel):
    """A result column."""

    name: str
    type: str = ""
    table: str | None = None


class QueryResult(BaseModel):
    """Rows returned by the executor.

    Rows are positional: staged inserts conceptually extend this list, so an
    insert row occupies an index >= len(rows).
    """

    rows: list[dict[str, Any]] = Field(default_factory=list)
    fields: list[QueryField] = Field(default_factory=list)
    row_count: int = 0
    affected_rows: int | None = None
    execution_time_ms: float = 0.0


class SqlQuery(BaseModel):
    """A parameterized statement ready for the executor."""

    sql: str
    params: list[Any] = Field(default_factory=list)


class WhereClause(BaseModel):
    """Output of the filter translation step.

    `where` is either empty or starts with "WHERE ".
    """

    where: str = ""
    params: list[Any] = Field(default_factory=list)
