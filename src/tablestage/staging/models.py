"""Staged change models.

A staged change is an uncommitted edit, insert or delete recorded in memory
before being compiled into SQL. Every change is addressed by a typed
composite key that is used directly as a dict key:

- CellKey(table, row_index, field)  → update of one cell
- RowKey(table, row_index)          → delete of one row
- InsertKey(uid)                    → insert of a new row

Cell and row keys are positional: they stay valid only while the grid shows
the same page, sort and filters.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ChangeType(str, Enum):
    """Kind of staged change."""

    UPDATE = "update"
    INSERT = "insert"
    DELETE = "delete"


class SqlExpression(str, Enum):
    """Whitelisted raw SQL expressions a cell may be set to.

    Compilers emit these verbatim instead of binding them as parameters.
    """

    NOW = "NOW()"
    DEFAULT = "DEFAULT"


@dataclass(frozen=True)
class CellKey:
    """Identity of a cell edit."""

    table: str
    row_index: int
    field: str


@dataclass(frozen=True)
class RowKey:
    """Identity of a row delete."""

    table: str
    row_index: int


@dataclass(frozen=True)
class InsertKey:
    """Identity of a staged insert."""

    uid: str

    @classmethod
    def new(cls) -> InsertKey:
        """Create a key with a fresh random uid."""
        return cls(uid=uuid.uuid4().hex)


ChangeKey = CellKey | RowKey | InsertKey


@dataclass
class CellChange:
    """Before/after value of one column."""

    old: Any
    new: Any


@dataclass
class StagedChange:
    """An uncommitted change to one table.

    Attributes:
        id: Typed composite key, see module docstring
        type: update, insert or delete
        table: Table name
        schema: Schema name, None for the connection default
        primary_key: Column → value identity used to build WHERE clauses
        changes: Column → before/after values (updates)
        new_row: Column → value for the inserted row (inserts)
        row_data: The row as displayed when the change was staged
        column: Edited column (updates)
        old_value: Original value of the edited column (updates)
        new_value: New value of the edited column (updates)
    """

    id: ChangeKey
    type: ChangeType
    table: str
    schema: str | None = None
    primary_key: dict[str, Any] | None = None
    changes: dict[str, CellChange] | None = None
    new_row: dict[str, Any] | None = None
    row_data: dict[str, Any] | None = None
    column: str | None = None
    old_value: Any = None
    new_value: Any = None

    def belongs_to(self, table: str, schema: str | None) -> bool:
        """Check whether the change targets the given table."""
        return self.table == table and (self.schema or None) == (schema or None)


@dataclass
class CommitSummary:
    """Outcome of a committed transaction."""

    updates: int = 0
    inserts: int = 0
    deletes: int = 0
    statements: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        """Number of staged changes that were written."""
        return self.updates + self.inserts + self.deletes
