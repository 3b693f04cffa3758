"""
Archive Schema Definitions for Feed Coverage Samples
"""

from datetime import date
from typing import List

from rater.models import CoverageRecord

ERROR_TYPES = ("fetch_error", "parse_error")

# Column order of every per-feed daily CSV
ARCHIVE_COLUMNS: List[str] = (
    ["timestamp", "feed_id", "feed_name"]
    + CoverageRecord.field_names()
    + ["error_type", "error_message"]
)

COUNTER_COLUMNS: List[str] = [c for c in CoverageRecord.field_names() if c != "total_entities"]

INDEX_KEY = "aggregates/feeds.json"


def destination_key(feed_id: str, day: date, gzip: bool = False) -> str:
    """Durable-storage key for one feed's archive of one day.

    Format: Year=<yyyy>/Month=<mm>/Day=<dd>/<feed_id>.csv[.gz]
    """
    ext = "csv.gz" if gzip else "csv"
    return f"Year={day:%Y}/Month={day:%m}/Day={day:%d}/{feed_id}.{ext}"


def aggregate_key(feed_id: str) -> str:
    return f"aggregates/feeds/{feed_id}.json"
