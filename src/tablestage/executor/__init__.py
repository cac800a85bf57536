"""Executors - the boundary to the remote database.

- base.py       → QueryExecutor interface
- recording.py  → logging and query history decorator
- sqlalchemy.py → implementation over an SQLAlchemy AsyncEngine
"""

from tablestage.executor.base import QueryExecutor
from tablestage.executor.recording import RecordingExecutor
from tablestage.executor.sqlalchemy import SQLAlchemyQueryExecutor

__all__ = [
    "QueryExecutor",
    "RecordingExecutor",
    "SQLAlchemyQueryExecutor",
]
