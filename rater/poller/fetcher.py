"""
GTFS-RT Feed Fetcher

Fetches one feed's protobuf payload over HTTP (or from a local file),
decodes it, extracts coverage counts, and classifies the result as a
Success, FetchError or ParseError outcome.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Optional

import requests

from rater.config import Config
from rater.exceptions import FeedDecodeError, TransportError
from rater.models import (
    AuthKind,
    FeedDescriptor,
    FetchError,
    ParseError,
    SampleOutcome,
    Success,
    utc_now,
)
from rater.transforms import extract_coverage, parse_feed

logger = logging.getLogger(__name__)

CHUNK_SIZE = 16 * 1024


def is_remote(endpoint: str) -> bool:
    return endpoint.startswith(("http://", "https://"))


def read_local(endpoint: str) -> bytes:
    """Read a payload from a path or file:// URI."""
    path = endpoint[len("file://"):] if endpoint.startswith("file://") else endpoint
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise TransportError(f"Failed to read {path}: {e}") from e


class FeedFetcher:
    """Produces exactly one SampleOutcome per call to sample(); never raises.

    Sessions are kept per thread so one fetcher can serve a worker pool.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        api_keys: Optional[Dict[str, str]] = None,
        clock: Callable = utc_now,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.config = config or Config()
        self.api_keys = api_keys or {}
        self._clock = clock
        self._sleep = sleep
        self._monotonic = monotonic
        self._local = threading.local()

    @property
    def _session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
        return session

    def _auth_kwargs(self, feed: FeedDescriptor) -> dict:
        key = self.api_keys.get(feed.feed_id)
        if key is None or not feed.requires_auth:
            return {}
        if feed.auth.kind == AuthKind.URL_PARAM:
            return {"params": {feed.auth.param_name: key}}
        if feed.auth.kind == AuthKind.HEADER:
            return {"headers": {feed.auth.param_name: key}}
        return {}

    def _read_body(self, response: requests.Response, deadline: float) -> bytes:
        """Read a streamed body, giving up once the whole-request deadline passes."""
        chunks = []
        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
            chunks.append(chunk)
            if self._monotonic() > deadline:
                break
        if self._monotonic() > deadline:
            raise TransportError(
                f"request exceeded {self.config.request_timeout_seconds}s "
                f"({sum(len(c) for c in chunks)} bytes received)"
            )
        return b"".join(chunks)

    def fetch_bytes(self, feed: FeedDescriptor) -> bytes:
        """Fetch the raw feed payload.

        request_timeout_seconds bounds each whole attempt, not only single
        socket reads. Up to config.max_retries attempts with exponential
        backoff; the default of one attempt leaves retrying to the next round.

        Raises:
            TransportError: On network, HTTP status, timeout or read failure
        """
        endpoint = feed.endpoint or ""
        if not is_remote(endpoint):
            return read_local(endpoint)

        timeout = (self.config.connect_timeout_seconds, self.config.request_timeout_seconds)
        last_error: Optional[Exception] = None
        for attempt in range(self.config.max_retries):
            deadline = self._monotonic() + self.config.request_timeout_seconds
            try:
                response = self._session.get(
                    endpoint, timeout=timeout, stream=True, **self._auth_kwargs(feed)
                )
                try:
                    response.raise_for_status()
                    return self._read_body(response, deadline)
                finally:
                    response.close()
            except (requests.exceptions.RequestException, TransportError) as e:
                last_error = e
                logger.debug(f"Fetch of {feed.feed_id} failed (attempt {attempt + 1}): {e}")
                if attempt < self.config.max_retries - 1:
                    self._sleep(self.config.retry_backoff_seconds * (2 ** attempt))
        if isinstance(last_error, TransportError):
            raise last_error
        raise TransportError(str(last_error)) from last_error

    def sample(self, feed: FeedDescriptor) -> SampleOutcome:
        """Fetch, decode and summarise one feed."""
        try:
            data = self.fetch_bytes(feed)
        except TransportError as e:
            logger.warning(f"✗ Failed to fetch feed {feed.feed_id}: {e}")
            return FetchError(self._clock(), feed.feed_id, feed.display_name, message=str(e))

        try:
            message = parse_feed(data)
        except FeedDecodeError as e:
            logger.warning(f"✗ Failed to parse feed {feed.feed_id}: {e}")
            return ParseError(self._clock(), feed.feed_id, feed.display_name, message=str(e))

        stats = extract_coverage(message)
        logger.info(f"✓ {feed.feed_id} - {feed.display_name} ({stats.total_entities} entities)")
        return Success(self._clock(), feed.feed_id, feed.display_name, stats=stats)
