"""Archive layout and durable-storage key definitions."""

from .archive_schema import (
    ARCHIVE_COLUMNS,
    COUNTER_COLUMNS,
    ERROR_TYPES,
    INDEX_KEY,
    aggregate_key,
    destination_key,
)

__all__ = [
    "ARCHIVE_COLUMNS",
    "COUNTER_COLUMNS",
    "ERROR_TYPES",
    "INDEX_KEY",
    "aggregate_key",
    "destination_key",
]
