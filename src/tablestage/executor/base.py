"""Abstract base class for query executors.

An executor runs SQL against one remote database session. The engine never
opens connections itself; everything goes through this interface.
"""

from abc import ABC, abstractmethod
from typing import Any

from tablestage.core.models import Result
from tablestage.query.models import QueryResult
from tablestage.structure.models import TableStructure


class QueryExecutor(ABC):
    """Abstract base for database executors.

    Expected failures (a statement rejected by the engine, a lost connection)
    are returned as failed Results, never raised. Timeouts and retries belong
    to the implementation.
    """

    @abstractmethod
    async def query(
        self, session_id: str, sql: str, params: list[Any] | None = None
    ) -> Result[QueryResult]:
        """Run one statement.

        Args:
            session_id: Database session to run on
            sql: Statement in the session dialect's placeholder style
            params: Bound parameters

        Returns:
            Result containing the rows (empty for DML) or an error message
        """
        pass

    @abstractmethod
    async def get_row_count(
        self, session_id: str, table: str, schema: str | None = None
    ) -> Result[int]:
        """Get a cheap, statistics-based row count estimate.

        Returns:
            Result containing the estimated number of rows
        """
        pass

    @abstractmethod
    async def get_table_structure(
        self, session_id: str, table: str, schema: str | None = None
    ) -> Result[TableStructure]:
        """Fetch columns, indexes and foreign keys of a table."""
        pass

    @abstractmethod
    async def execute_statements(self, session_id: str, statements: list[str]) -> Result[int]:
        """Run statements one at a time, stopping at the first failure.

        Returns:
            Result containing the number of statements executed, or the
            error of the first failing statement
        """
        pass
