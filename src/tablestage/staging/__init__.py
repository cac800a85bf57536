"""Staging module - uncommitted grid edits and their transactional commit.

- models.py   → staged changes and their composite keys
- ledger.py   → the per-session change ledger
- compiler.py → DML compilation and BEGIN/COMMIT/ROLLBACK driving
- preview.py  → literal SQL for display
"""

from tablestage.staging.models import (
    CellChange,
    CellKey,
    ChangeKey,
    ChangeType,
    CommitSummary,
    InsertKey,
    RowKey,
    SqlExpression,
    StagedChange,
)

__all__ = [
    "CellChange",
    "CellKey",
    "ChangeKey",
    "ChangeType",
    "CommitSummary",
    "InsertKey",
    "RowKey",
    "SqlExpression",
    "StagedChange",
]
