"""In-memory ledger of staged changes for one table-editing session.

The ledger is a passive store owned by its editing session. Cell edits and
row deletes are keyed by position (table, row index[, field]) so restaging
the same cell replaces the previous entry; inserts get random keys and stay
individually addressable. Commits always work on a deep-copied snapshot.
"""

from __future__ import annotations

import copy
from collections.abc import Iterator
from typing import Any

from tablestage.core.config import IdentityFallback, get_settings
from tablestage.core.errors import ValidationError
from tablestage.core.logging import get_logger
from tablestage.staging.models import (
    CellChange,
    CellKey,
    ChangeKey,
    ChangeType,
    InsertKey,
    RowKey,
    StagedChange,
)

logger = get_logger(__name__)


def build_primary_key(
    row: dict[str, Any],
    primary_key_columns: list[str],
    policy: IdentityFallback | None = None,
    table: str | None = None,
) -> dict[str, Any]:
    """Build the identity used in UPDATE/DELETE WHERE clauses.

    With known primary key columns this is {pk column: value}. Without
    one, every non-synthetic column of the row becomes part of the identity,
    which can match several duplicate rows; `policy` decides whether that is
    allowed silently, allowed with a warning, or refused.

    Args:
        row: Row as displayed (synthetic grid keys start with "__")
        primary_key_columns: Known primary key columns, possibly empty
        policy: Fallback policy (defaults to settings.identity_fallback)
        table: Table name, for messages

    Raises:
        ValidationError: If there is no primary key and the policy is refuse
    """
    if primary_key_columns:
        return {col: row.get(col) for col in primary_key_columns}

    policy = policy or get_settings().identity_fallback
    if policy == IdentityFallback.REFUSE:
        raise ValidationError(
            [f"Table {table or ''} has no primary key, rows cannot be identified safely".strip()]
        )

    identity = {k: v for k, v in row.items() if not k.startswith("__")}
    if policy == IdentityFallback.WARN:
        logger.warning("row_identity_fallback", table=table, columns=len(identity))
    return identity


def _is_revert(new_value: Any, original: Any) -> bool:
    if new_value == original:
        return True
    # Editors hand back strings, so "5" reverts 5
    if new_value is not None and original is not None:
        return str(new_value) == str(original)
    return False


class ChangeLedger:
    """Staged changes keyed by typed composite ids, in staging order.

    Args:
        identity_fallback: Policy for rows of tables without a primary key
            (defaults to settings.identity_fallback)
    """

    def __init__(self, identity_fallback: IdentityFallback | None = None):
        self.identity_fallback = identity_fallback or get_settings().identity_fallback
        self._changes: dict[ChangeKey, StagedChange] = {}
        self._originals: dict[CellKey, Any] = {}

    def __len__(self) -> int:
        return len(self._changes)

    def __contains__(self, change_id: object) -> bool:
        return change_id in self._changes

    def __iter__(self) -> Iterator[StagedChange]:
        return iter(list(self._changes.values()))

    # --- Primitive operations ---

    def upsert(self, change: StagedChange) -> None:
        """Replace the change with the same id, or append it."""
        self._changes[change.id] = change

    def remove(self, change_id: ChangeKey) -> StagedChange | None:
        """Remove a change (and any captured original value for it)."""
        if isinstance(change_id, CellKey):
            self._originals.pop(change_id, None)
        return self._changes.pop(change_id, None)

    def get(self, change_id: ChangeKey) -> StagedChange | None:
        return self._changes.get(change_id)

    def list_for(self, table: str, schema: str | None = None) -> list[StagedChange]:
        """Changes for one table, in staging order."""
        return [c for c in self._changes.values() if c.belongs_to(table, schema)]

    def snapshot(self, table: str, schema: str | None = None) -> list[StagedChange]:
        """Deep copy of the table's changes, safe to compile while edits continue."""
        return copy.deepcopy(self.list_for(table, schema))

    def discard(self, table: str, schema: str | None = None) -> int:
        """Remove every change for a table.

        Returns:
            Number of changes removed
        """
        removed = 0
        for change in self.list_for(table, schema):
            self.remove(change.id)
            removed += 1
        self._forget_originals(table)
        return removed

    def discard_positional(self, table: str, schema: str | None = None) -> int:
        """Remove cell edits and row deletes for a table, keeping inserts.

        Called whenever the page, sort, filters or page size change: row
        indices then point at different rows.

        Returns:
            Number of changes removed
        """
        removed = 0
        for change in self.list_for(table, schema):
            if change.type != ChangeType.INSERT:
                self.remove(change.id)
                removed += 1
        self._forget_originals(table)
        if removed:
            logger.debug("positional_changes_discarded", table=table, removed=removed)
        return removed

    def settle(self, committed: StagedChange) -> bool:
        """Clear a committed change, keeping any edit staged after the snapshot.

        A cell edited again while its commit ran stays staged, with its old
        value moved to what was just committed.

        Returns:
            True if the change was removed
        """
        current = self._changes.get(committed.id)
        if current is None:
            return False
        if current == committed:
            self.remove(committed.id)
            return True

        if current.type != ChangeType.UPDATE or not isinstance(current.id, CellKey):
            # The committed row exists now, so a second insert would duplicate it
            logger.warning("edit_after_commit_dropped", table=current.table, type=current.type)
            self.remove(committed.id)
            return True

        committed_value = committed.new_value
        if _is_revert(current.new_value, committed_value):
            self.remove(current.id)
            return True

        self._originals[current.id] = committed_value
        current.old_value = committed_value
        current.changes = {
            field: CellChange(old=committed_value, new=cell.new)
            for field, cell in (current.changes or {}).items()
        }
        if current.primary_key and current.column in current.primary_key:
            current.primary_key = {**current.primary_key, current.column: committed_value}
        return False

    def _forget_originals(self, table: str) -> None:
        for key in [k for k in self._originals if k.table == table]:
            del self._originals[key]

    # --- Cell edits ---

    def stage_cell_edit(
        self,
        table: str,
        schema: str | None,
        row_index: int,
        field: str,
        old_value: Any,
        new_value: Any,
        row: dict[str, Any],
        primary_key_columns: list[str],
    ) -> StagedChange | None:
        """Stage an edit of one cell of an existing row.

        The value shown before the first edit of a cell is remembered; an
        edit back to that value removes the staged change.

        Returns:
            The staged change, or None if the edit was a revert or the row is
            staged for deletion
        """
        key = CellKey(table=table, row_index=row_index, field=field)

        if RowKey(table=table, row_index=row_index) in self._changes:
            logger.debug("edit_on_deleted_row_ignored", table=table, row_index=row_index)
            return None

        if key not in self._originals:
            self._originals[key] = old_value
        original = self._originals[key]

        if _is_revert(new_value, original):
            self._changes.pop(key, None)
            del self._originals[key]
            return None

        change = StagedChange(
            id=key,
            type=ChangeType.UPDATE,
            table=table,
            schema=schema,
            primary_key=build_primary_key(row, primary_key_columns, self.identity_fallback, table),
            changes={field: CellChange(old=original, new=new_value)},
            row_data=dict(row),
            column=field,
            old_value=original,
            new_value=new_value,
        )
        self.upsert(change)
        return change

    # --- Inserts ---

    def stage_insert(
        self, table: str, schema: str | None, new_row: dict[str, Any]
    ) -> StagedChange:
        """Stage a new row with a fresh random id."""
        change = StagedChange(
            id=InsertKey.new(),
            type=ChangeType.INSERT,
            table=table,
            schema=schema,
            new_row=dict(new_row),
        )
        self.upsert(change)
        return change

    def update_insert(self, change_id: InsertKey, field: str, value: Any) -> StagedChange:
        """Set one column of a staged insert.

        Raises:
            KeyError: If no insert is staged under the id
        """
        change = self._changes.get(change_id)
        if change is None or change.type != ChangeType.INSERT:
            raise KeyError(change_id)
        change.new_row = {**(change.new_row or {}), field: value}
        return change

    def delete_insert(self, change_id: InsertKey) -> bool:
        """Drop a staged insert. The row never existed, so no delete is staged."""
        return self.remove(change_id) is not None

    def inserts(self, table: str, schema: str | None = None) -> list[StagedChange]:
        """Staged inserts in staging order; insert i is shown at row len(rows) + i."""
        return [c for c in self.list_for(table, schema) if c.type == ChangeType.INSERT]

    # --- Deletes ---

    def stage_delete(
        self,
        table: str,
        schema: str | None,
        row_index: int,
        row: dict[str, Any],
        primary_key_columns: list[str],
    ) -> StagedChange:
        """Stage a delete of an existing row.

        Pending cell edits of the row are dropped. Deleting an already
        deleted row returns the existing change unchanged.
        """
        key = RowKey(table=table, row_index=row_index)
        existing = self._changes.get(key)
        if existing is not None:
            return existing

        primary_key = build_primary_key(row, primary_key_columns, self.identity_fallback, table)

        for cell in [
            k
            for k in self._changes
            if isinstance(k, CellKey) and k.table == table and k.row_index == row_index
        ]:
            self.remove(cell)

        change = StagedChange(
            id=key,
            type=ChangeType.DELETE,
            table=table,
            schema=schema,
            primary_key=primary_key,
            row_data=dict(row),
        )
        self.upsert(change)
        return change

    # --- Highlighting ---

    def edited_cells(self, table: str, schema: str | None = None) -> set[tuple[int, str]]:
        """(row index, field) of every staged cell edit."""
        return {
            (c.id.row_index, c.id.field)
            for c in self.list_for(table, schema)
            if isinstance(c.id, CellKey)
        }

    def deleted_rows(self, table: str, schema: str | None = None) -> set[int]:
        return {
            c.id.row_index for c in self.list_for(table, schema) if isinstance(c.id, RowKey)
        }
