"""Transform functions for decoding GTFS-RT payloads and extracting coverage."""

from .parse_feed import parse_feed
from .feed_stats import extract_coverage

__all__ = [
    "parse_feed",
    "extract_coverage",
]
