"""Core models: ONLY truly shared base types.

Domain models live in their respective packages:
- query/models.py     → filters, pagination, query results
- staging/models.py   → staged changes and their composite keys
- structure/models.py → schema and editable structure columns
"""

from tablestage.core.models.base import DatabaseType, Result

__all__ = [
    "DatabaseType",
    "Result",
]
