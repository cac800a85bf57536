"""Column edits → ALTER TABLE statements.

Columns are classified against their server snapshot, validated, and
handed to the dialect, which owns the statement syntax. Nothing here
executes SQL; the editor runs the statements after a preview.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING

from tablestage.core.errors import ValidationError
from tablestage.core.logging import get_logger
from tablestage.structure.models import ColumnChanges, ColumnStatus, StructureColumn

if TYPE_CHECKING:
    from tablestage.dialects import Dialect

logger = get_logger(__name__)

# Column types are interpolated verbatim, so statement breakers are rejected
_FORBIDDEN_TYPE_TOKENS = (";", "--", "/*")


def classify_columns(columns: list[StructureColumn]) -> ColumnChanges:
    """Split editor columns into deleted / modified / added and work out PK changes.

    - deleted: existing columns marked deleted
    - modified: existing, kept columns with any tracked field changed
    - added: added, kept columns with a non-empty name
    """
    existing = [c for c in columns if c.status == ColumnStatus.EXISTING]

    deleted = [c for c in existing if c.deleted]
    modified = [c for c in existing if not c.deleted and c.modified]
    added = [c for c in columns if c.is_added and not c.deleted and c.name.strip()]

    pk_before = [c for c in existing if c.original is not None and c.original.is_primary_key]
    pk_after = [c for c in existing if not c.deleted and c.is_primary_key] + [
        c for c in added if c.is_primary_key
    ]

    pk_changed = {c.uid for c in pk_before} != {c.uid for c in pk_after}

    return ColumnChanges(
        deleted=deleted,
        modified=modified,
        added=added,
        primary_key_after=[c.name for c in pk_after],
        # Dropping every PK column removes the key along with them
        drop_primary_key=pk_changed and any(not c.deleted for c in pk_before),
        add_primary_key=pk_changed and bool(pk_after),
    )


def validate_columns(columns: list[StructureColumn]) -> list[str]:
    """Return every problem that blocks DDL generation (empty if valid)."""
    problems: list[str] = []
    active = [c for c in columns if not c.deleted]
    touched = [c for c in active if c.is_added or c.modified]

    empty = [c for c in touched if not c.name.strip()]
    if empty:
        problems.append(f"{len(empty)} column(s) have empty names")

    counts = Counter(c.name.strip().lower() for c in active if c.name.strip())
    dupes = sorted(name for name, n in counts.items() if n > 1)
    if dupes:
        problems.append(f"Duplicate column name(s): {', '.join(dupes)}")

    for c in touched:
        if not c.type.strip():
            problems.append(f"Column {c.name or '(unnamed)'} has no type")
        elif any(token in c.type for token in _FORBIDDEN_TYPE_TOKENS):
            problems.append(f"Column {c.name or '(unnamed)'} has an invalid type: {c.type}")

    return problems


class SchemaDiffCompiler:
    """Compiles edited columns into dialect-specific DDL."""

    def __init__(self, dialect: Dialect):
        self.dialect = dialect

    def compile(
        self, table: str, schema: str | None, columns: list[StructureColumn]
    ) -> list[str]:
        """Build the ordered DDL statements for the column edits.

        Returns:
            Complete statements, empty when nothing changed

        Raises:
            ValidationError: If any column is invalid; nothing is generated
        """
        problems = validate_columns(columns)
        if problems:
            logger.info("structure_validation_failed", table=table, problems=problems)
            raise ValidationError(problems)

        changes = classify_columns(columns)
        if changes.is_empty:
            return []

        statements = self.dialect.alter_statements(table, schema, changes)
        logger.debug(
            "ddl_compiled",
            table=table,
            dialect=self.dialect.name,
            deleted=len(changes.deleted),
            modified=len(changes.modified),
            added=len(changes.added),
            statements=len(statements),
        )
        return statements
