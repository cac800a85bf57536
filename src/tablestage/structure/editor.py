"""Editable column list for one table.

DDL is destructive, so applying always goes through a preview: `preview()`
returns the statements together with a fingerprint of the column state, and
`apply()` only runs a preview whose fingerprint still matches.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from tablestage.core.errors import QueryError, TransactionError, ValidationError
from tablestage.core.logging import get_logger
from tablestage.structure.diff import SchemaDiffCompiler
from tablestage.structure.models import (
    TRACKED_FIELDS,
    ColumnStatus,
    StructureColumn,
    TableStructure,
)

if TYPE_CHECKING:
    from tablestage.dialects import Dialect
    from tablestage.executor.base import QueryExecutor

logger = get_logger(__name__)


@dataclass(frozen=True)
class DDLPreview:
    """Statements to confirm before applying, bound to the column state they came from."""

    statements: tuple[str, ...]
    fingerprint: str

    @property
    def sql(self) -> str:
        return "\n\n".join(self.statements)


class StructureEditor:
    """Column editor state for one table.

    Args:
        executor: Executor for the session
        session_id: Database session
        table: Table being edited
        schema: Schema of the table
        dialect: Session dialect
    """

    def __init__(
        self,
        executor: QueryExecutor,
        session_id: str,
        table: str,
        schema: str | None,
        dialect: Dialect,
    ):
        self.executor = executor
        self.session_id = session_id
        self.table = table
        self.schema = schema
        self.dialect = dialect
        self.compiler = SchemaDiffCompiler(dialect)

        self.structure: TableStructure | None = None
        self.columns: list[StructureColumn] = []
        self._saving = False

    @property
    def is_saving(self) -> bool:
        return self._saving

    async def load(self) -> TableStructure:
        """Fetch the table structure and reset the editable columns.

        Raises:
            QueryError: If the structure cannot be fetched
        """
        result = await self.executor.get_table_structure(self.session_id, self.table, self.schema)
        if not result.success or result.value is None:
            raise QueryError(result.error or f"Could not load structure of {self.table}")

        self.structure = result.value
        self._reset()
        logger.debug("structure_loaded", table=self.table, columns=len(self.columns))
        return self.structure

    def _reset(self) -> None:
        columns = self.structure.columns if self.structure else []
        self.columns = [StructureColumn.from_schema(c, i) for i, c in enumerate(columns)]

    def _find(self, uid: str) -> StructureColumn:
        for column in self.columns:
            if column.uid == uid:
                return column
        raise KeyError(uid)

    # --- Editing ---

    def add_column(self) -> StructureColumn:
        """Append an empty column (varchar(255), nullable)."""
        column = StructureColumn.blank(len(self.columns) + 1)
        self.columns.append(column)
        return column

    def update_column(self, uid: str, /, **fields: Any) -> StructureColumn:
        """Set tracked fields of a column.

        Raises:
            KeyError: Unknown uid
            ValueError: A field that is not editable
        """
        unknown = set(fields) - set(TRACKED_FIELDS)
        if unknown:
            raise ValueError(f"Not editable: {', '.join(sorted(unknown))}")

        column = self._find(uid)
        for name, value in fields.items():
            setattr(column, name, value)
        return column

    def delete_column(self, uid: str) -> None:
        self._find(uid).deleted = True

    def undo_delete(self, uid: str) -> None:
        self._find(uid).deleted = False

    def discard(self) -> None:
        """Drop every edit and go back to the loaded structure."""
        self._reset()

    @property
    def change_count(self) -> int:
        count = 0
        for c in self.columns:
            if c.status == ColumnStatus.EXISTING:
                if c.deleted or c.modified:
                    count += 1
            elif not c.deleted and c.name.strip():
                count += 1
        return count

    @property
    def has_changes(self) -> bool:
        return self.change_count > 0

    # --- Preview gate ---

    def _fingerprint(self) -> str:
        state = [c.model_dump(mode="json") for c in self.columns]
        return hashlib.sha256(json.dumps(state, sort_keys=True).encode()).hexdigest()

    def preview(self) -> DDLPreview:
        """Validate the edits and build the statements to confirm.

        Raises:
            ValidationError: If any column is invalid
        """
        statements = self.compiler.compile(self.table, self.schema, self.columns)
        return DDLPreview(statements=tuple(statements), fingerprint=self._fingerprint())

    async def apply(self, preview: DDLPreview) -> int:
        """Run a confirmed preview, then reload the structure.

        Returns:
            Number of statements executed

        Raises:
            TransactionError: If an apply is already running
            ValidationError: If the columns changed since the preview
            QueryError: If a statement fails (later statements are not run)
        """
        if self._saving:
            raise TransactionError("Structure changes are already being applied")
        if preview.fingerprint != self._fingerprint():
            raise ValidationError(["Columns changed since the preview was generated"])
        if not preview.statements:
            return 0

        self._saving = True
        try:
            result = await self.executor.execute_statements(
                self.session_id, list(preview.statements)
            )
            if not result.success:
                logger.error("structure_apply_failed", table=self.table, error=result.error)
                raise QueryError(result.error or "Failed to apply structure changes")

            logger.info(
                "structure_applied", table=self.table, statements=len(preview.statements)
            )
            await self.load()
        finally:
            self._saving = False

        return len(preview.statements)
