"""Core module - configuration, logging, errors and shared models."""

from tablestage.core.config import Settings, get_settings
from tablestage.core.errors import (
    QueryError,
    StaleResultDiscard,
    TableStageError,
    TransactionError,
    ValidationError,
)
from tablestage.core.models.base import DatabaseType, Result

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Errors
    "QueryError",
    "StaleResultDiscard",
    "TableStageError",
    "TransactionError",
    "ValidationError",
    # Models
    "DatabaseType",
    "Result",
]
