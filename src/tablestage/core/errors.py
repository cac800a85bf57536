"""Error taxonomy.

- QueryError: a remote statement failed; the message is surfaced verbatim.
- ValidationError: column edits are invalid; raised before any DDL is shown or run.
- TransactionError: a statement inside BEGIN/COMMIT failed and was rolled back.
- StaleResultDiscard: internal signal that a superseded read must not be applied.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tablestage.staging.models import StagedChange


class TableStageError(Exception):
    """Base class for all tablestage errors."""

    pass


class QueryError(TableStageError):
    """A statement failed on the remote engine."""

    def __init__(self, message: str, sql: str | None = None):
        self.message = message
        self.sql = sql
        super().__init__(message)


class ValidationError(TableStageError):
    """Edited structure failed validation; nothing was sent to the database."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__(". ".join(problems))


class TransactionError(TableStageError):
    """A write transaction failed and was rolled back.

    Attributes:
        change: The staged change whose statement failed (None for BEGIN/COMMIT)
        statement: The SQL text that failed
        cause: The error message reported by the engine
    """

    def __init__(
        self,
        cause: str,
        change: StagedChange | None = None,
        statement: str | None = None,
    ):
        self.cause = cause
        self.change = change
        self.statement = statement
        super().__init__(_describe(cause, change, statement))


class StaleResultDiscard(TableStageError):
    """A read was superseded or cancelled; its result must be dropped."""

    def __init__(self, request_id: int):
        self.request_id = request_id
        super().__init__(f"Request {request_id} is stale")


def _describe(cause: str, change: StagedChange | None, statement: str | None) -> str:
    if change is None:
        label = statement or "transaction"
        return f"{label} failed: {cause}"
    target = change.table if change.column is None else f"{change.table}.{change.column}"
    return f"{change.type.value} on {target} failed: {cause}"
