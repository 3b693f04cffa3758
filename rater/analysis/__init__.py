"""Daily aggregation and grading of archived coverage samples."""

from .grade import grade
from .aggregate import (
    aggregate_directory,
    aggregate_feed,
    build_index,
    load_rows,
    publish_aggregates,
)

__all__ = [
    "grade",
    "aggregate_directory",
    "aggregate_feed",
    "build_index",
    "load_rows",
    "publish_aggregates",
]
