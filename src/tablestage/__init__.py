"""tablestage - staged-edit transaction engine for MySQL/PostgreSQL table views.

Plans paginated reads, stages grid edits in memory and compiles them into
transactional DML, and turns column edits into dialect-specific DDL.
"""

__version__ = "0.1.0"

from tablestage.core.models.base import DatabaseType, Result
from tablestage.dialects import Dialect, MySQLDialect, PostgresDialect, get_dialect
from tablestage.session import TableEditingSession

__all__ = [
    "DatabaseType",
    "Dialect",
    "MySQLDialect",
    "PostgresDialect",
    "Result",
    "TableEditingSession",
    "get_dialect",
    "__version__",
]
