"""Row count estimation.

Unfiltered views first ask for a statistics-based estimate. Small tables get
an exact COUNT(*) right away; large tables keep the estimate until the user
asks for an exact count. Filtered views always count exactly.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from tablestage.core.config import get_settings
from tablestage.core.errors import QueryError
from tablestage.core.logging import get_logger
from tablestage.query.filters import build_where_clause
from tablestage.query.models import TableFilter
from tablestage.query.planner import WhereBuilder, build_count_query

if TYPE_CHECKING:
    from tablestage.dialects import Dialect
    from tablestage.executor.base import QueryExecutor

logger = get_logger(__name__)

Checkpoint = Callable[[], None]


def _noop() -> None:
    pass


@dataclass
class RowCount:
    """Total rows of a view and whether the number is an estimate."""

    total_rows: int
    is_estimated: bool


def _first_number(rows: list[dict[str, Any]]) -> int:
    if not rows:
        return 0
    row = rows[0]
    value = row.get("count", row.get("cnt"))
    if value is None and row:
        value = next(iter(row.values()))
    return int(value or 0)


class CountEstimator:
    """Decides between an estimated and an exact row count.

    Args:
        executor: Executor for the session
        session_id: Database session
        dialect: Session dialect
        threshold: Estimates at or below this trigger an exact count
            (defaults to settings.exact_count_threshold)
        where_builder: Filter translation, shared with the data query
    """

    def __init__(
        self,
        executor: QueryExecutor,
        session_id: str,
        dialect: Dialect,
        threshold: int | None = None,
        where_builder: WhereBuilder = build_where_clause,
    ):
        self.executor = executor
        self.session_id = session_id
        self.dialect = dialect
        self.threshold = (
            threshold if threshold is not None else get_settings().exact_count_threshold
        )
        self.where_builder = where_builder

    async def count(
        self,
        table: str,
        schema: str | None,
        filters: list[TableFilter],
        checkpoint: Checkpoint = _noop,
    ) -> RowCount:
        """Count rows for a view.

        Args:
            checkpoint: Called before each step; raises StaleResultDiscard
                when the calling read has been superseded

        Raises:
            QueryError: If the exact count fails
            StaleResultDiscard: Propagated from checkpoint
        """
        if any(f.enabled for f in filters):
            return RowCount(await self.exact(table, schema, filters, checkpoint), False)

        checkpoint()
        result = await self.executor.get_row_count(self.session_id, table, schema)
        if result.success:
            estimate = result.value or 0
        else:
            # Treated as a small table, so an exact count follows
            logger.warning("row_estimate_failed", table=table, error=result.error)
            estimate = 0

        if estimate <= self.threshold:
            return RowCount(await self.exact(table, schema, filters, checkpoint), False)

        logger.debug("row_count_estimated", table=table, estimate=estimate)
        return RowCount(estimate, True)

    async def exact(
        self,
        table: str,
        schema: str | None,
        filters: list[TableFilter],
        checkpoint: Checkpoint = _noop,
    ) -> int:
        """Run the exact COUNT(*) for a view.

        Raises:
            QueryError: If the count statement fails
        """
        query = build_count_query(table, schema, self.dialect, filters, self.where_builder)
        checkpoint()
        result = await self.executor.query(self.session_id, query.sql, query.params)
        if not result.success or result.value is None:
            raise QueryError(result.error or "Count query failed", sql=query.sql)
        return _first_number(result.value.rows)
