import threading
import time

import pytest

from conftest import make_descriptor
from rater.models import FetchError, Success, CoverageRecord, utc_now
from rater.poller import BoundedDispatcher


class ConcurrencyProbe:
    """Sample function that records the peak number of concurrent calls."""

    def __init__(self, delay=0.02):
        self.delay = delay
        self.in_flight = 0
        self.peak = 0
        self._lock = threading.Lock()

    def __call__(self, feed):
        with self._lock:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        time.sleep(self.delay)
        with self._lock:
            self.in_flight -= 1
        return Success(utc_now(), feed.feed_id, feed.display_name, stats=CoverageRecord())


def test_concurrency_ceiling_respected():
    feeds = [make_descriptor(f"mdb-{i}") for i in range(25)]
    probe = ConcurrencyProbe()

    outcomes = BoundedDispatcher(probe, concurrency=5).dispatch(feeds)

    assert len(outcomes) == 25
    assert probe.peak <= 5
    assert probe.peak > 1


def test_one_outcome_per_feed():
    feeds = [make_descriptor(f"mdb-{i}") for i in range(12)]

    outcomes = BoundedDispatcher(ConcurrencyProbe(delay=0), concurrency=3).dispatch(feeds)

    assert sorted(o.feed_id for o in outcomes) == sorted(f.feed_id for f in feeds)


def test_failing_feed_does_not_abort_round():
    feeds = [make_descriptor(f"mdb-{i}") for i in range(6)]
    probe = ConcurrencyProbe(delay=0)

    def sample(feed):
        if feed.feed_id == "mdb-3":
            raise RuntimeError("boom")
        return probe(feed)

    outcomes = BoundedDispatcher(sample, concurrency=2).dispatch(feeds)

    assert len(outcomes) == 6
    failed = [o for o in outcomes if o.feed_id == "mdb-3"]
    assert len(failed) == 1
    assert isinstance(failed[0], FetchError)
    assert "boom" in failed[0].message


def test_empty_feed_set():
    assert BoundedDispatcher(ConcurrencyProbe(), concurrency=5).dispatch([]) == []


def test_concurrency_must_be_positive():
    with pytest.raises(ValueError):
        BoundedDispatcher(ConcurrencyProbe(), concurrency=0)
