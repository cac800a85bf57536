"""Query log: display formatting and a bounded in-memory history."""

from __future__ import annotations

import re
import time
import uuid
from typing import Any

from pydantic import BaseModel, Field

from tablestage.core.config import get_settings

_PLACEHOLDER = re.compile(r"\?|\$\d+")


def _display_value(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int | float):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


def format_query_for_log(sql: str, params: list[Any] | None = None) -> str:
    """Inline bound parameters into a statement for display.

    Handles both `?` (positional, consumed in order) and `$N` placeholders.
    The output is for humans only and is never executed.
    """
    if not params:
        return sql

    position = 0

    def substitute(match: re.Match[str]) -> str:
        nonlocal position
        token = match.group(0)
        if token == "?":
            index = position
            position += 1
        else:
            index = int(token[1:]) - 1
        if 0 <= index < len(params):
            return _display_value(params[index])
        return token

    return _PLACEHOLDER.sub(substitute, sql)


class QueryHistoryEntry(BaseModel):
    """One executed statement in the query log."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    query: str
    database: str = ""
    executed_at: float = Field(default_factory=time.time)
    execution_time_ms: float = 0.0
    row_count: int | None = None
    error: str | None = None
    is_favorite: bool = False


class QueryHistory:
    """Newest-first query log, bounded to `limit` entries.

    Args:
        limit: Maximum entries kept (defaults to settings.history_limit)
    """

    def __init__(self, limit: int | None = None):
        self.limit = limit if limit is not None else get_settings().history_limit
        self._entries: list[QueryHistoryEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> list[QueryHistoryEntry]:
        return list(self._entries)

    def add(self, entry: QueryHistoryEntry) -> None:
        self._entries.insert(0, entry)
        del self._entries[self.limit :]

    def record(
        self,
        sql: str,
        params: list[Any] | None = None,
        execution_time_ms: float = 0.0,
        row_count: int | None = None,
        error: str | None = None,
        database: str = "",
    ) -> QueryHistoryEntry:
        """Format a statement for display and add it to the log."""
        entry = QueryHistoryEntry(
            query=format_query_for_log(sql, params),
            database=database,
            execution_time_ms=execution_time_ms,
            row_count=row_count,
            error=error,
        )
        self.add(entry)
        return entry

    def clear(self) -> None:
        """Remove every entry except favorites."""
        self._entries = [e for e in self._entries if e.is_favorite]

    def toggle_favorite(self, entry_id: str) -> bool:
        """Flip the favorite flag of an entry.

        Returns:
            The new flag value, False if no entry has that id
        """
        for entry in self._entries:
            if entry.id == entry_id:
                entry.is_favorite = not entry.is_favorite
                return entry.is_favorite
        return False

    def favorites(self) -> list[QueryHistoryEntry]:
        return [e for e in self._entries if e.is_favorite]
