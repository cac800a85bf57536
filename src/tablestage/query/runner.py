"""Cancellation-safe page loading.

Every read gets a monotonically increasing request id and its own
cancellation event. Before each step (query, count) the read checks that it
is still the latest dispatched request and has not been cancelled; a
superseded read stops and applies nothing. Cancellation never interrupts a
statement already sent to the engine, it only prevents its result from
being used.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from tablestage.core.errors import QueryError, StaleResultDiscard
from tablestage.core.logging import get_logger
from tablestage.query.count import CountEstimator
from tablestage.query.filters import build_where_clause
from tablestage.query.models import (
    PaginationState,
    QueryResult,
    SortDirection,
    TableFilter,
)
from tablestage.query.planner import WhereBuilder, build_data_query

if TYPE_CHECKING:
    from tablestage.dialects import Dialect
    from tablestage.executor.base import QueryExecutor

logger = get_logger(__name__)


class PageRequest(BaseModel):
    """Everything that determines the rows of one page."""

    model_config = ConfigDict(frozen=True)

    table: str
    schema_name: str | None = None
    page: int = 1
    page_size: int = 200
    sort_column: str | None = None
    sort_direction: SortDirection | None = None
    filters: list[TableFilter] = Field(default_factory=list)
    primary_key_columns: list[str] = Field(default_factory=list)

    def cache_key(self) -> str:
        """Serialized identity of the request, stable across equal requests."""
        return json.dumps(self.model_dump(mode="json"), sort_keys=True)


@dataclass
class PageLoad:
    """An applied page: rows plus pagination."""

    request_id: int
    request: PageRequest
    result: QueryResult
    pagination: PaginationState


class CancellableQueryRunner:
    """Sequences page reads so only the latest request's result is applied.

    Args:
        executor: Executor for the session
        session_id: Database session
        dialect: Session dialect
        estimator: Row count strategy (a CountEstimator on the same executor
            by default)
        where_builder: Filter translation
    """

    def __init__(
        self,
        executor: QueryExecutor,
        session_id: str,
        dialect: Dialect,
        estimator: CountEstimator | None = None,
        where_builder: WhereBuilder = build_where_clause,
    ):
        self.executor = executor
        self.session_id = session_id
        self.dialect = dialect
        self.where_builder = where_builder
        self.estimator = estimator or CountEstimator(
            executor, session_id, dialect, where_builder=where_builder
        )

        self._counter = 0
        self._latest = 0
        self._signals: dict[int, asyncio.Event] = {}
        self._current: PageLoad | None = None
        self._cache: tuple[str, PageLoad] | None = None

    @property
    def latest_request_id(self) -> int:
        return self._latest

    @property
    def current(self) -> PageLoad | None:
        """The most recently applied page."""
        return self._current

    def cancel(self) -> None:
        """Mark every in-flight read as cancelled."""
        for signal in self._signals.values():
            signal.set()
        self._signals.clear()

    def _dispatch(self) -> tuple[int, asyncio.Event]:
        self.cancel()
        self._counter += 1
        self._latest = self._counter
        signal = asyncio.Event()
        self._signals[self._counter] = signal
        return self._counter, signal

    def _checkpoint(self, request_id: int, signal: asyncio.Event) -> Callable[[], None]:
        def check() -> None:
            if request_id != self._latest or signal.is_set():
                raise StaleResultDiscard(request_id)

        return check

    async def load(self, request: PageRequest, use_cache: bool = False) -> PageLoad | None:
        """Load one page.

        Args:
            request: Page to load
            use_cache: Return the cached page if it was loaded with an
                identical request

        Returns:
            The applied PageLoad, or None if the read was superseded

        Raises:
            QueryError: If the data query or exact count fails and the read
                is still current
        """
        request_id, signal = self._dispatch()
        check = self._checkpoint(request_id, signal)
        key = request.cache_key()

        if use_cache and self._cache is not None and self._cache[0] == key:
            logger.debug("page_cache_hit", table=request.table, page=request.page)
            self._current = replace(self._cache[1], request_id=request_id)
            return self._current

        query = build_data_query(
            request.table,
            request.schema_name,
            self.dialect,
            request.page,
            request.page_size,
            sort_column=request.sort_column,
            sort_direction=request.sort_direction,
            filters=request.filters,
            primary_key_columns=request.primary_key_columns,
            where_builder=self.where_builder,
        )

        try:
            check()
            result = await self.executor.query(self.session_id, query.sql, query.params)
            check()
            if not result.success or result.value is None:
                raise QueryError(result.error or "Query failed", sql=query.sql)

            count = await self.estimator.count(
                request.table, request.schema_name, request.filters, check
            )
            check()
        except StaleResultDiscard:
            logger.debug("stale_result_discarded", request_id=request_id, table=request.table)
            return None
        except QueryError:
            if request_id != self._latest or signal.is_set():
                logger.debug("stale_error_discarded", request_id=request_id, table=request.table)
                return None
            raise

        pagination = PaginationState.for_total(
            request.page, request.page_size, count.total_rows, count.is_estimated
        )
        load = PageLoad(
            request_id=request_id, request=request, result=result.value, pagination=pagination
        )
        self._current = load
        self._cache = (key, load)
        logger.debug(
            "page_loaded",
            request_id=request_id,
            table=request.table,
            page=request.page,
            rows=len(result.value.rows),
            total_rows=pagination.total_rows,
            estimated=pagination.is_estimated_count,
        )
        return load

    async def request_exact_count(self) -> PaginationState | None:
        """Replace the current page's estimated total with an exact count.

        Bound to the request current at call time: if another read is
        dispatched before the count completes, the count is discarded.

        Returns:
            Updated pagination, or None if nothing is loaded or the count
            was superseded
        """
        current = self._current
        if current is None:
            return None

        request_id = current.request_id
        if request_id != self._latest:
            return None
        signal = self._signals.setdefault(request_id, asyncio.Event())
        check = self._checkpoint(request_id, signal)
        request = current.request

        try:
            total = await self.estimator.exact(
                request.table, request.schema_name, request.filters, check
            )
            check()
        except StaleResultDiscard:
            logger.debug("stale_count_discarded", request_id=request_id, table=request.table)
            return None
        except QueryError:
            if request_id != self._latest or signal.is_set():
                return None
            raise

        pagination = PaginationState.for_total(request.page, request.page_size, total, False)
        self._current = replace(current, pagination=pagination)
        if self._cache is not None and self._cache[1].request == request:
            self._cache = (self._cache[0], self._current)
        logger.info("exact_count_loaded", table=request.table, total_rows=total)
        return pagination

    def invalidate_cache(self, table: str | None = None) -> None:
        """Drop the cached page (only if it belongs to `table`, when given)."""
        if self._cache is None:
            return
        if table is None or self._cache[1].request.table == table:
            self._cache = None
