"""
GTFS-RT Rater

Samples public GTFS-RT feeds on a fixed cadence, archives per-feed coverage
counts as daily CSV files, and hands finished days off to durable storage.
"""

__version__ = "1.0.0"
