"""Query module - paginated, filtered and sorted reads of one table.

- models.py   → filters, pagination and query results
- filters.py  → filter-to-WHERE translation
- planner.py  → SELECT / COUNT(*) statement building
- count.py    → estimated vs exact row counts
- runner.py   → cancellation-safe page loading
- history.py  → query log

Only the models are re-exported here; import builders from their modules.
"""

from tablestage.query.models import (
    FilterOperator,
    PaginationState,
    QueryField,
    QueryResult,
    SortDirection,
    SqlQuery,
    TableFilter,
    WhereClause,
)

__all__ = [
    "FilterOperator",
    "PaginationState",
    "QueryField",
    "QueryResult",
    "SortDirection",
    "SqlQuery",
    "TableFilter",
    "WhereClause",
]
