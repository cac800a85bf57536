"""Table editing session - the surface an editing UI talks to.

One session owns the view state (page, sort, filters), the current page of
rows, the change ledger and the read runner for a single table. Row indices
passed in are grid positions: indices below len(rows) address loaded rows,
indices from len(rows) on address staged inserts in staging order.

Usage:
    session = TableEditingSession(executor, "s1", "users", dialect="postgres")
    await session.load()
    session.edit_cell(0, "email", "new@example.com")
    summary = await session.save()
"""

from __future__ import annotations

from typing import Any

from tablestage.core.config import Settings, get_settings
from tablestage.core.errors import QueryError, TransactionError
from tablestage.core.logging import get_logger, log_context
from tablestage.core.models import DatabaseType
from tablestage.dialects import Dialect, get_dialect
from tablestage.executor.base import QueryExecutor
from tablestage.query.count import CountEstimator
from tablestage.query.filters import build_where_clause
from tablestage.query.models import (
    PaginationState,
    QueryResult,
    SortDirection,
    TableFilter,
)
from tablestage.query.planner import WhereBuilder
from tablestage.query.runner import CancellableQueryRunner, PageRequest
from tablestage.staging.compiler import TransactionCompiler
from tablestage.staging.ledger import ChangeLedger
from tablestage.staging.models import ChangeKey, CommitSummary, StagedChange
from tablestage.staging.preview import render_transaction
from tablestage.structure.editor import StructureEditor
from tablestage.structure.models import TableStructure

logger = get_logger(__name__)


class TableEditingSession:
    """Staged editing of one table over one database session.

    Args:
        executor: Executor for the database session
        session_id: Database session id passed to the executor
        table: Table to edit
        schema: Schema of the table, None for the connection default
        dialect: Dialect instance or database type
        settings: Engine settings (defaults to get_settings())
        where_builder: Filter translation
    """

    def __init__(
        self,
        executor: QueryExecutor,
        session_id: str,
        table: str,
        schema: str | None = None,
        dialect: Dialect | DatabaseType | str = DatabaseType.MYSQL,
        settings: Settings | None = None,
        where_builder: WhereBuilder = build_where_clause,
    ):
        self.executor = executor
        self.session_id = session_id
        self.table = table
        self.schema = schema
        self.dialect = dialect if isinstance(dialect, Dialect) else get_dialect(dialect)
        self.settings = settings or get_settings()

        self.ledger = ChangeLedger(self.settings.identity_fallback)
        self.estimator = CountEstimator(
            executor,
            session_id,
            self.dialect,
            threshold=self.settings.exact_count_threshold,
            where_builder=where_builder,
        )
        self.runner = CancellableQueryRunner(
            executor, session_id, self.dialect, self.estimator, where_builder
        )

        self.structure: TableStructure | None = None
        self.result: QueryResult | None = None
        self.pagination = PaginationState(page_size=self.settings.default_page_size)
        self.sort_column: str | None = None
        self.sort_direction: SortDirection | None = None
        self.filters: list[TableFilter] = []
        self._saving = False

    # --- Metadata ---

    @property
    def primary_key_columns(self) -> list[str]:
        return self.structure.primary_key_columns if self.structure else []

    @property
    def auto_increment_columns(self) -> list[str]:
        return self.structure.auto_increment_columns if self.structure else []

    @property
    def rows(self) -> list[dict[str, Any]]:
        return self.result.rows if self.result else []

    @property
    def is_saving(self) -> bool:
        return self._saving

    async def load_structure(self) -> TableStructure:
        """Fetch column metadata (primary key and auto-increment columns).

        Raises:
            QueryError: If the structure cannot be fetched
        """
        result = await self.executor.get_table_structure(self.session_id, self.table, self.schema)
        if not result.success or result.value is None:
            raise QueryError(result.error or f"Could not load structure of {self.table}")
        self.structure = result.value
        return self.structure

    # --- Reading ---

    def _request(self) -> PageRequest:
        return PageRequest(
            table=self.table,
            schema_name=self.schema,
            page=self.pagination.page,
            page_size=self.pagination.page_size,
            sort_column=self.sort_column,
            sort_direction=self.sort_direction,
            filters=list(self.filters),
            primary_key_columns=self.primary_key_columns,
        )

    async def load(self, use_cache: bool = False) -> bool:
        """Load the current page.

        Returns:
            False if the read was superseded by a newer one and nothing was
            applied

        Raises:
            QueryError: If the page or its count cannot be read
        """
        with log_context(session_id=self.session_id, table=self.table):
            if self.structure is None:
                await self.load_structure()

            page = await self.runner.load(self._request(), use_cache=use_cache)
            if page is None:
                return False

            self.result = page.result
            self.pagination = page.pagination
            return True

    async def _change_view(self, **state: Any) -> bool:
        # Row positions change with the view, so positional edits are dropped
        self.ledger.discard_positional(self.table, self.schema)
        for name, value in state.items():
            setattr(self, name, value)
        return await self.load()

    async def go_to_page(self, page: int) -> bool:
        pagination = self.pagination.model_copy(update={"page": max(1, page)})
        return await self._change_view(pagination=pagination)

    async def set_page_size(self, page_size: int) -> bool:
        if page_size < 1:
            raise ValueError(f"Page size must be >= 1, got {page_size}")
        pagination = self.pagination.model_copy(update={"page": 1, "page_size": page_size})
        return await self._change_view(pagination=pagination)

    async def set_sort(
        self, column: str | None, direction: SortDirection | str | None = SortDirection.ASC
    ) -> bool:
        """Sort by a column, or clear the sort with column=None."""
        return await self._change_view(
            sort_column=column,
            sort_direction=SortDirection(direction) if column and direction else None,
        )

    async def apply_filters(self, filters: list[TableFilter]) -> bool:
        pagination = self.pagination.model_copy(update={"page": 1})
        return await self._change_view(filters=list(filters), pagination=pagination)

    async def refresh(self) -> bool:
        """Reload the current page, bypassing the cache; staged changes are kept."""
        self.runner.invalidate_cache(self.table)
        return await self.load()

    async def request_exact_count(self) -> PaginationState | None:
        """Replace an estimated total with an exact COUNT(*)."""
        pagination = await self.runner.request_exact_count()
        if pagination is not None:
            self.pagination = pagination
        return pagination

    # --- Staging ---

    def _insert_for(self, row_index: int) -> StagedChange:
        inserts = self.ledger.inserts(self.table, self.schema)
        position = row_index - len(self.rows)
        if not 0 <= position < len(inserts):
            raise IndexError(f"No row at index {row_index}")
        return inserts[position]

    def _row(self, row_index: int) -> dict[str, Any]:
        if row_index < 0:
            raise IndexError(f"No row at index {row_index}")
        if row_index < len(self.rows):
            return self.rows[row_index]
        return self._insert_for(row_index).new_row or {}

    def edit_cell(self, row_index: int, field: str, value: Any) -> StagedChange | None:
        """Stage a new value for one cell.

        Returns:
            The staged change, or None if the edit reverted the cell or the
            row is staged for deletion
        """
        if row_index >= len(self.rows):
            insert = self._insert_for(row_index)
            return self.ledger.update_insert(insert.id, field, value)  # type: ignore[arg-type]

        row = self._row(row_index)
        return self.ledger.stage_cell_edit(
            self.table,
            self.schema,
            row_index,
            field,
            row.get(field),
            value,
            row,
            self.primary_key_columns,
        )

    def insert_row(self, values: dict[str, Any] | None = None) -> StagedChange:
        """Stage an empty row (every column None unless given in `values`)."""
        if self.result and self.result.fields:
            names = [f.name for f in self.result.fields]
        elif self.structure:
            names = [c.name for c in self.structure.columns]
        else:
            names = []
        new_row: dict[str, Any] = dict.fromkeys(names)
        new_row.update(values or {})
        return self.ledger.stage_insert(self.table, self.schema, new_row)

    def duplicate_row(self, row_index: int) -> StagedChange:
        """Stage a copy of a row with auto-increment columns cleared."""
        source = self._row(row_index)
        new_row = {k: v for k, v in source.items() if not k.startswith("__")}
        for col in self.auto_increment_columns:
            if col in new_row:
                new_row[col] = None
        return self.ledger.stage_insert(self.table, self.schema, new_row)

    def delete_row(self, row_index: int) -> StagedChange | None:
        """Stage a row delete; a staged insert is simply dropped (returns None)."""
        if row_index >= len(self.rows):
            insert = self._insert_for(row_index)
            self.ledger.delete_insert(insert.id)  # type: ignore[arg-type]
            return None
        return self.ledger.stage_delete(
            self.table, self.schema, row_index, self._row(row_index), self.primary_key_columns
        )

    def undo(self, change_id: ChangeKey) -> bool:
        """Remove one staged change."""
        return self.ledger.remove(change_id) is not None

    def discard(self) -> int:
        """Remove every staged change for the table."""
        removed = self.ledger.discard(self.table, self.schema)
        if removed:
            logger.info("changes_discarded", table=self.table, removed=removed)
        return removed

    async def save(self) -> CommitSummary:
        """Commit the staged changes in one transaction and reload the page.

        Raises:
            TransactionError: If a save is already running, or a statement
                failed (rolled back; staged changes are kept)
        """
        if self._saving:
            raise TransactionError("A save is already in progress for this table")

        self._saving = True
        try:
            with log_context(session_id=self.session_id, table=self.table):
                compiler = TransactionCompiler(self.dialect, self.auto_increment_columns)
                summary = await compiler.apply(
                    self.executor,
                    self.session_id,
                    self.ledger,
                    self.table,
                    self.schema,
                    on_committed=self.runner.invalidate_cache,
                )
        finally:
            self._saving = False

        if summary.total:
            await self.load()
        return summary

    # --- Views for highlighting and preview ---

    @property
    def staged_changes(self) -> list[StagedChange]:
        return self.ledger.list_for(self.table, self.schema)

    @property
    def edited_cells(self) -> set[tuple[int, str]]:
        return self.ledger.edited_cells(self.table, self.schema)

    @property
    def deleted_rows(self) -> set[int]:
        return self.ledger.deleted_rows(self.table, self.schema)

    @property
    def inserted_rows(self) -> set[int]:
        """Grid indices of staged inserts (appended after the loaded rows)."""
        base = len(self.rows)
        return {base + i for i in range(len(self.ledger.inserts(self.table, self.schema)))}

    @property
    def display_rows(self) -> list[dict[str, Any]]:
        """Loaded rows followed by staged insert rows."""
        inserts = self.ledger.inserts(self.table, self.schema)
        return self.rows + [dict(c.new_row or {}) for c in inserts]

    def preview_sql(self) -> str:
        """Literal SQL of the pending transaction, for display."""
        return render_transaction(self.staged_changes, self.dialect, self.auto_increment_columns)

    def structure_editor(self) -> StructureEditor:
        return StructureEditor(
            self.executor, self.session_id, self.table, self.schema, self.dialect
        )
