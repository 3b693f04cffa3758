"""
Sampling Scheduler

Drives sampling rounds at a fixed cadence: rotate -> dispatch -> archive.
Round k+1 starts `interval` after round k started, or immediately if round
k overran. Cancellation is honoured only between rounds.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from rater.archive import ArchiveWriter, RotationPipeline
from rater.exceptions import ArchiveWriteError
from rater.models import FeedDescriptor, SampleOutcome
from rater.poller.dispatcher import BoundedDispatcher

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class RoundSummary:
    number: int
    successes: int = 0
    fetch_errors: int = 0
    parse_errors: int = 0
    write_errors: int = 0
    finalized: int = 0
    outcomes: List[SampleOutcome] = field(default_factory=list, repr=False)

    @property
    def rows_written(self) -> int:
        return self.successes + self.fetch_errors + self.parse_errors - self.write_errors


class SamplingScheduler:
    """Runs sampling rounds over an immutable feed snapshot.

    Args:
        feeds: Eligible feeds for the whole run
        dispatcher: Bounded dispatcher sampling one round
        writer: Archive writer receiving one row per outcome
        rotation: Rotation pipeline run at the start of every round
        interval: Seconds between round starts
        sample_count: Number of rounds; 0 runs until cancel()
        monotonic: Clock used for round pacing
    """

    def __init__(
        self,
        feeds: Sequence[FeedDescriptor],
        dispatcher: BoundedDispatcher,
        writer: ArchiveWriter,
        rotation: Optional[RotationPipeline] = None,
        interval: float = 60.0,
        sample_count: int = 1,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        if sample_count < 0:
            raise ValueError(f"sample_count must be >= 0, got {sample_count}")
        self.feeds = tuple(feeds)
        self.dispatcher = dispatcher
        self.writer = writer
        self.rotation = rotation
        self.interval = interval
        self.sample_count = sample_count
        self._monotonic = monotonic
        self._cancelled = threading.Event()
        self.state = SchedulerState.IDLE
        self.rounds_completed = 0

    def cancel(self) -> None:
        """Request a stop; the round in flight finishes first."""
        self._cancelled.set()

    def _more_rounds(self) -> bool:
        return self.sample_count == 0 or self.rounds_completed < self.sample_count

    def run_round(self, number: int) -> RoundSummary:
        """Run one round: rotation check, dispatch, then one append per outcome."""
        summary = RoundSummary(number)

        if self.rotation is not None:
            try:
                summary.finalized = len(self.rotation.rotate())
            except Exception as e:
                logger.error(f"Rotation check failed: {e}", exc_info=True)

        outcomes = self.dispatcher.dispatch(self.feeds)
        summary.outcomes = outcomes

        for outcome in outcomes:
            if outcome.error_type == "fetch_error":
                summary.fetch_errors += 1
            elif outcome.error_type == "parse_error":
                summary.parse_errors += 1
            else:
                summary.successes += 1

            try:
                self.writer.append(outcome)
            except ArchiveWriteError as e:
                summary.write_errors += 1
                logger.error(f"Failed to write sample for {outcome.feed_id}: {e}")
            except Exception as e:
                summary.write_errors += 1
                logger.error(f"Unexpected error writing sample for {outcome.feed_id}: {e}", exc_info=True)

        return summary

    def run(self) -> SchedulerState:
        """Run rounds until the sample count is reached or cancel() is called."""
        if self.state != SchedulerState.IDLE:
            raise RuntimeError(f"Scheduler already {self.state.value}")
        self.state = SchedulerState.RUNNING

        if self.sample_count == 0:
            logger.info(f"Sampling {len(self.feeds)} feeds every {self.interval}s until cancelled")
        else:
            logger.info(
                f"Collecting {self.sample_count} sample(s) of {len(self.feeds)} feeds every {self.interval}s"
            )

        while self._more_rounds() and not self._cancelled.is_set():
            started = self._monotonic()
            number = self.rounds_completed + 1
            label = "(unbounded)" if self.sample_count == 0 else f"of {self.sample_count}"
            logger.info(f"=== Sample {number} {label} ===")

            try:
                summary = self.run_round(number)
                logger.info(
                    f"Round {number}: {summary.successes} ok, {summary.fetch_errors} fetch errors, "
                    f"{summary.parse_errors} parse errors, {summary.write_errors} write errors"
                )
            except Exception as e:
                logger.error(f"Round {number} failed: {e}", exc_info=True)
            self.rounds_completed = number

            if not self._more_rounds():
                break
            sleep_time = max(0.0, self.interval - (self._monotonic() - started))
            if sleep_time > 0:
                logger.info(f"Waiting {sleep_time:.1f}s until next sample...")
            # wait() returns early on cancel()
            self._cancelled.wait(sleep_time)

        self.state = SchedulerState.CANCELLED if self._more_rounds() else SchedulerState.COMPLETED
        logger.info(f"Sampler {self.state.value} after {self.rounds_completed} rounds")
        return self.state
