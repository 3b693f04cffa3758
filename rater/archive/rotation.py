"""
Day-boundary rotation and upload of archive files.

Each round calls rotate() before dispatching fetches: files dated before
the current UTC day are finalized synchronously, then every finalized file
is uploaded on a background pool. A failed upload leaves the file
finalized so the next round retries it. Once every upload of a batch has
finished, the feed index is rebuilt from the newest day's aggregates.
"""

import gzip
import io
import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from rater.analysis.aggregate import aggregate_feed, build_index, load_rows
from rater.archive.uploader import Uploader
from rater.archive.writer import ArchiveFile, ArchiveKey, ArchiveWriter, FileState, utc_date
from rater.exceptions import ArchiveWriteError, UploadError
from rater.models import utc_now
from rater.schemas import INDEX_KEY, aggregate_key, destination_key

logger = logging.getLogger(__name__)


class RotationPipeline:
    """Finalizes past-day archives and hands them to durable storage.

    Args:
        writer: Archive writer owning the file states
        uploader: Durable-storage uploader; None keeps finalized files local
        gzip: Compress archives before upload
        upload_workers: Size of the background upload pool
        aggregate_on_upload: Publish the day's aggregate after each upload
            and refresh the feed index after each batch
        delete_after_upload: Remove the local CSV once uploaded
        clock: Returns the current UTC datetime
    """

    def __init__(
        self,
        writer: ArchiveWriter,
        uploader: Optional[Uploader] = None,
        gzip: bool = False,
        upload_workers: int = 4,
        aggregate_on_upload: bool = True,
        delete_after_upload: bool = False,
        clock: Callable = utc_now,
    ):
        self.writer = writer
        self.uploader = uploader
        self.gzip = gzip
        self.aggregate_on_upload = aggregate_on_upload
        self.delete_after_upload = delete_after_upload
        self._clock = clock
        self._executor: Optional[ThreadPoolExecutor] = None
        if uploader is not None:
            self._executor = ThreadPoolExecutor(max_workers=upload_workers, thread_name_prefix="upload")
        # only uploads still running; finished futures remove themselves
        self._in_flight: Dict[ArchiveKey, Future] = {}
        # day -> feed_id -> aggregate, newest day only once an index is published
        self._day_aggregates: Dict[date, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def rotate(self, today: Optional[date] = None) -> List[ArchiveFile]:
        """Finalize files from earlier days and schedule pending uploads.

        Returns:
            The files finalized by this call
        """
        today = today or utc_date(self._clock())
        finalized = self.writer.finalize_before(today)

        if self.uploader is None:
            if finalized:
                logger.info(f"Finalized {len(finalized)} files; upload disabled")
            return finalized

        pending = self.writer.pending_uploads()
        if pending:
            logger.info(f"=== Uploading {len(pending)} finalized files ===")
        batch = [f for f in (self._submit(archive) for archive in pending) if f is not None]
        if batch and self.aggregate_on_upload:
            self._on_batch_done(batch)
        return finalized

    def _submit(self, archive: ArchiveFile) -> Optional[Future]:
        with self._lock:
            running = self._in_flight.get(archive.key)
            if running is not None and not running.done():
                return None
            future = self._executor.submit(self.upload, archive)
            self._in_flight[archive.key] = future
        future.add_done_callback(lambda f, key=archive.key: self._upload_done(key, f))
        return future

    def _upload_done(self, key: ArchiveKey, future: Future) -> None:
        with self._lock:
            if self._in_flight.get(key) is future:
                del self._in_flight[key]

    def _on_batch_done(self, batch: List[Future]) -> None:
        remaining: Set[Future] = set(batch)

        def _done(future: Future) -> None:
            with self._lock:
                remaining.discard(future)
                last = not remaining
            if last:
                self.publish_index()

        for future in batch:
            future.add_done_callback(_done)

    def _payload(self, raw: bytes) -> Tuple[bytes, str]:
        if self.gzip:
            return gzip.compress(raw), "application/gzip"
        return raw, "text/csv"

    def upload(self, archive: ArchiveFile) -> bool:
        """Upload one finalized file.

        Compression starts from the raw CSV on every attempt. Calling this
        for a file that is already uploaded does nothing.

        Returns:
            True if this call transferred the file
        """
        if self.uploader is None or archive.state == FileState.UPLOADED:
            return False
        if archive.state != FileState.FINALIZED:
            logger.warning(f"Refusing to upload {archive.path}: still {archive.state.value}")
            return False

        key = destination_key(archive.feed_id, archive.day, gzip=self.gzip)
        try:
            raw = archive.path.read_bytes()
            body, content_type = self._payload(raw)
            self.uploader.upload(body, key, content_type=content_type)
        except (OSError, UploadError) as e:
            logger.error(f"Failed to upload {archive.path}, will retry next round: {e}")
            return False

        try:
            if not self.writer.mark_uploaded(archive, key, delete_local=self.delete_after_upload):
                return False
        except ArchiveWriteError as e:
            logger.error(f"Uploaded {archive.path} but could not record it: {e}")
            return False
        logger.info(f"✓ Uploaded {archive.path} -> {self.uploader.describe(key)}")

        if self.aggregate_on_upload:
            self._publish_aggregate(archive, raw)
        return True

    def _publish_aggregate(self, archive: ArchiveFile, raw: bytes) -> None:
        try:
            rows = load_rows([io.BytesIO(raw)])
            if rows.empty:
                return
            aggregate = aggregate_feed(archive.feed_id, rows)
            self.uploader.upload(
                json.dumps(aggregate).encode("utf-8"),
                aggregate_key(archive.feed_id),
                content_type="application/json",
            )
            logger.info(
                f"Aggregated {archive.feed_id} for {archive.day}: "
                f"grade {aggregate['overall']['grade']} ({aggregate['overall']['score']:.2f})"
            )
        except (ValueError, KeyError, UploadError) as e:
            logger.error(f"Failed to aggregate {archive.feed_id} for {archive.day}: {e}")
            return

        with self._lock:
            self._day_aggregates.setdefault(archive.day, {})[archive.feed_id] = aggregate

    def publish_index(self) -> bool:
        """Upload the feed index built from the newest day's aggregates.

        Older days are dropped once the index moves past them.

        Returns:
            True if an index was uploaded
        """
        with self._lock:
            if not self._day_aggregates:
                return False
            day = max(self._day_aggregates)
            self._day_aggregates = {day: self._day_aggregates[day]}
            aggregates = [a for _, a in sorted(self._day_aggregates[day].items())]

        try:
            body = json.dumps(build_index(aggregates)).encode("utf-8")
            self.uploader.upload(body, INDEX_KEY, content_type="application/json")
        except UploadError as e:
            logger.error(f"Failed to publish feed index for {day}: {e}")
            return False
        logger.info(f"Published feed index for {day} ({len(aggregates)} feeds)")
        return True

    def drain(self, timeout: Optional[float] = None) -> None:
        """Block until every scheduled upload has finished."""
        with self._lock:
            futures = list(self._in_flight.values())
        if futures:
            wait(futures, timeout=timeout)

    def close(self) -> None:
        self.drain()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
