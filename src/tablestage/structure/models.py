"""Pydantic models for table structure (columns, indexes, foreign keys)."""

from __future__ import annotations

import uuid
from enum import Enum

from pydantic import BaseModel, Field

# Fields compared to decide whether an existing column was modified.
TRACKED_FIELDS: tuple[str, ...] = (
    "name",
    "type",
    "nullable",
    "default_value",
    "is_primary_key",
    "is_auto_increment",
    "comment",
    "charset",
    "collation",
)


class SchemaColumn(BaseModel):
    """Authoritative column metadata, fetched once per table load."""

    name: str
    type: str
    nullable: bool = True
    default_value: str | None = None
    is_primary_key: bool = False
    is_auto_increment: bool = False
    comment: str = ""
    charset: str | None = None
    collation: str | None = None
    ordinal_position: int = 0
    column_key: str = ""  # 'PRI', 'UNI' or ''
    is_generated: bool = False
    generation_expression: str | None = None


class ColumnStatus(str, Enum):
    """Whether a structure column exists on the server yet."""

    EXISTING = "existing"
    ADDED = "added"


class StructureColumn(SchemaColumn):
    """An editable column in the structure editor.

    `original` holds the server-side snapshot and is None only for added
    columns. Whether a column is modified is always recomputed from
    `original`, never stored.
    """

    uid: str = Field(default_factory=lambda: uuid.uuid4().hex)
    status: ColumnStatus = ColumnStatus.EXISTING
    deleted: bool = False
    original_name: str | None = None
    original: SchemaColumn | None = None

    @classmethod
    def from_schema(cls, column: SchemaColumn, index: int = 0) -> StructureColumn:
        """Create an editable column from server metadata."""
        data = column.model_dump()
        if not data["ordinal_position"]:
            data["ordinal_position"] = index + 1
        if not data["column_key"] and column.is_primary_key:
            data["column_key"] = "PRI"
        snapshot = SchemaColumn(**data)
        return cls(
            **data,
            status=ColumnStatus.EXISTING,
            original_name=column.name,
            original=snapshot,
        )

    @classmethod
    def blank(cls, position: int) -> StructureColumn:
        """Create an empty column for the 'add column' action."""
        return cls(
            name="",
            type="varchar(255)",
            nullable=True,
            ordinal_position=position,
            status=ColumnStatus.ADDED,
        )

    @property
    def is_added(self) -> bool:
        return self.status == ColumnStatus.ADDED

    @property
    def is_renamed(self) -> bool:
        return self.original_name is not None and self.name != self.original_name

    @property
    def modified(self) -> bool:
        """Whether any tracked field differs from the server snapshot."""
        if self.is_added:
            return True
        if self.original is None:
            return False
        return bool(self.changed_fields())

    def changed_fields(self) -> set[str]:
        """Names of tracked fields that differ from the server snapshot."""
        if self.original is None:
            return set(TRACKED_FIELDS)
        return {
            name
            for name in TRACKED_FIELDS
            if getattr(self, name) != getattr(self.original, name)
        }


class ColumnChanges(BaseModel):
    """Classified column edits for one table, ready for DDL generation.

    Attributes:
        deleted: Existing columns marked for deletion
        modified: Existing, kept columns whose tracked fields changed
        added: New, kept columns with a non-empty name
        primary_key_after: Primary key column names after the change
        drop_primary_key: Whether the current primary key must be dropped
        add_primary_key: Whether a new primary key must be added
    """

    deleted: list[StructureColumn] = Field(default_factory=list)
    modified: list[StructureColumn] = Field(default_factory=list)
    added: list[StructureColumn] = Field(default_factory=list)
    primary_key_after: list[str] = Field(default_factory=list)
    drop_primary_key: bool = False
    add_primary_key: bool = False

    @property
    def is_empty(self) -> bool:
        return not (
            self.deleted
            or self.modified
            or self.added
            or self.drop_primary_key
            or self.add_primary_key
        )


class SchemaIndex(BaseModel):
    """An index on the table."""

    name: str | None = None
    columns: list[str] = Field(default_factory=list)
    is_unique: bool = False
    is_primary: bool = False
    type: str = ""


class SchemaForeignKey(BaseModel):
    """A foreign key constraint."""

    name: str | None = None
    columns: list[str] = Field(default_factory=list)
    referenced_table: str
    referenced_schema: str | None = None
    referenced_columns: list[str] = Field(default_factory=list)
    on_update: str = "NO ACTION"
    on_delete: str = "NO ACTION"


class TableStructure(BaseModel):
    """Columns, indexes and foreign keys of one table."""

    columns: list[SchemaColumn] = Field(default_factory=list)
    indexes: list[SchemaIndex] = Field(default_factory=list)
    foreign_keys: list[SchemaForeignKey] = Field(default_factory=list)

    @property
    def primary_key_columns(self) -> list[str]:
        return [c.name for c in self.columns if c.is_primary_key]

    @property
    def auto_increment_columns(self) -> list[str]:
        return [c.name for c in self.columns if c.is_auto_increment]
