"""
Bounded Dispatcher

Runs one sampling round: every feed is sampled exactly once with at most
`concurrency` fetches in flight.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Sequence

from rater.models import FeedDescriptor, FetchError, SampleOutcome, utc_now

logger = logging.getLogger(__name__)

SampleFn = Callable[[FeedDescriptor], SampleOutcome]


class BoundedDispatcher:
    """Fans a feed set out over a fixed-size worker pool.

    Args:
        sample: Callable producing one outcome for one feed (FeedFetcher.sample)
        concurrency: Maximum number of in-flight samples
    """

    def __init__(self, sample: SampleFn, concurrency: int = 5):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._sample = sample
        self.concurrency = concurrency

    def dispatch(self, feeds: Sequence[FeedDescriptor]) -> List[SampleOutcome]:
        """Sample every feed and return once all outcomes are in.

        Outcome order is completion order. A worker that raises still yields a
        FetchError outcome so no feed goes missing from the round.
        """
        if not feeds:
            return []

        outcomes: List[SampleOutcome] = []
        workers = min(self.concurrency, len(feeds))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch") as pool:
            futures = {pool.submit(self._sample, feed): feed for feed in feeds}
            for future in as_completed(futures):
                feed = futures[future]
                try:
                    outcomes.append(future.result())
                except Exception as e:
                    logger.error(f"Unexpected error sampling {feed.feed_id}: {e}", exc_info=True)
                    outcomes.append(
                        FetchError(utc_now(), feed.feed_id, feed.display_name, message=str(e))
                    )
        return outcomes
