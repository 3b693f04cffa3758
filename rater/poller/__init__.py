"""Feed fetching, bounded per-round dispatch and round scheduling."""

from .fetcher import FeedFetcher
from .dispatcher import BoundedDispatcher
from .scheduler import RoundSummary, SamplingScheduler, SchedulerState

__all__ = [
    "FeedFetcher",
    "BoundedDispatcher",
    "RoundSummary",
    "SamplingScheduler",
    "SchedulerState",
]
