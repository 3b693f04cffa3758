"""
Per-feed, per-day CSV archive.

Layout: <output_dir>/agency_id=<feed_id>/date=<yyyy-mm-dd>.csv

Every (feed_id, date) key has its own lock; appends and state transitions
for a key only happen while holding it, so a late append can never
interleave with the key being finalized.
"""

import csv
import logging
import re
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from rater.exceptions import ArchiveWriteError
from rater.models import SampleOutcome
from rater.schemas import ARCHIVE_COLUMNS

logger = logging.getLogger(__name__)

ArchiveKey = Tuple[str, date]

UPLOADED_SUFFIX = ".uploaded"
_AGENCY_DIR = re.compile(r"^agency_id=(?P<feed_id>.+)$")
_DATE_FILE = re.compile(r"^date=(?P<day>\d{4}-\d{2}-\d{2})\.csv$")


class FileState(str, Enum):
    OPEN = "open"
    FINALIZED = "finalized"
    UPLOADED = "uploaded"


@dataclass
class ArchiveFile:
    feed_id: str
    day: date
    path: Path
    state: FileState = FileState.OPEN
    rows: int = 0

    @property
    def key(self) -> ArchiveKey:
        return (self.feed_id, self.day)

    @property
    def marker_path(self) -> Path:
        return self.path.with_name(self.path.name + UPLOADED_SUFFIX)


def utc_date(timestamp: datetime) -> date:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc).date()


def append_row(path: Union[str, Path], outcome: SampleOutcome) -> None:
    """Append one outcome row to a CSV, writing the header if the file is new.

    Raises:
        ArchiveWriteError: If the file cannot be created or written
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        is_new = not path.exists() or path.stat().st_size == 0
        with open(path, "a", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=ARCHIVE_COLUMNS)
            if is_new:
                writer.writeheader()
            writer.writerow(outcome.to_row())
    except (OSError, ValueError, csv.Error) as e:
        raise ArchiveWriteError(f"Failed to append to {path}: {e}") from e


class ArchiveWriter:
    """Owns the lifecycle of every archive file: Open -> Finalized -> Uploaded.

    Only Open and Finalized files are kept in memory. An uploaded file is
    dropped from tracking and its `.uploaded` marker stands in for it.
    """

    def __init__(self, output_dir: Union[str, Path]):
        self.output_dir = Path(output_dir)
        self._files: Dict[ArchiveKey, ArchiveFile] = {}
        self._locks: Dict[ArchiveKey, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def path_for(self, feed_id: str, day: date) -> Path:
        return self.output_dir / f"agency_id={feed_id}" / f"date={day:%Y-%m-%d}.csv"

    def lock_for(self, key: ArchiveKey) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _register(self, key: ArchiveKey, state: FileState = FileState.OPEN) -> ArchiveFile:
        with self._registry_lock:
            archive = self._files.get(key)
            if archive is None:
                archive = ArchiveFile(key[0], key[1], self.path_for(*key), state)
                self._files[key] = archive
            return archive

    def get(self, feed_id: str, day: date) -> Optional[ArchiveFile]:
        with self._registry_lock:
            return self._files.get((feed_id, day))

    def files(self) -> List[ArchiveFile]:
        with self._registry_lock:
            return list(self._files.values())

    def append(self, outcome: SampleOutcome) -> ArchiveFile:
        """Append one row for the outcome to its (feed_id, UTC date) file.

        Raises:
            ArchiveWriteError: If the target file is no longer open or the
                write fails
        """
        key = (outcome.feed_id, utc_date(outcome.timestamp))
        with self.lock_for(key):
            archive = self.get(*key)
            if archive is None:
                path = self.path_for(*key)
                # uploaded files are no longer tracked; the marker still guards them
                if path.with_name(path.name + UPLOADED_SUFFIX).exists():
                    raise ArchiveWriteError(f"{path} is uploaded, dropping sample for {outcome.feed_id}")
                archive = self._register(key)
            if archive.state != FileState.OPEN:
                raise ArchiveWriteError(
                    f"{archive.path} is {archive.state.value}, dropping sample for {outcome.feed_id}"
                )
            append_row(archive.path, outcome)
            archive.rows += 1
        return archive

    def finalize_before(self, day: date) -> List[ArchiveFile]:
        """Finalize every open file dated strictly before `day`."""
        candidates = [a.key for a in self.files() if a.state == FileState.OPEN and a.day < day]
        finalized = []
        for key in candidates:
            with self.lock_for(key):
                archive = self.get(*key)
                if archive is None or archive.state != FileState.OPEN:
                    continue
                archive.state = FileState.FINALIZED
                finalized.append(archive)
                logger.info(f"Finalized {archive.path} ({archive.rows} rows this run)")
        return finalized

    def pending_uploads(self) -> List[ArchiveFile]:
        return [a for a in self.files() if a.state == FileState.FINALIZED]

    def mark_uploaded(self, archive: ArchiveFile, destination_key: str, delete_local: bool = False) -> bool:
        """Record a successful upload. Returns False if it was already recorded."""
        with self.lock_for(archive.key):
            if archive.state == FileState.UPLOADED:
                return False
            if archive.state != FileState.FINALIZED:
                raise ArchiveWriteError(f"{archive.path} is {archive.state.value}, not finalized")
            try:
                archive.marker_path.write_text(destination_key + "\n", encoding="utf-8")
                if delete_local and archive.path.exists():
                    archive.path.unlink()
            except OSError as e:
                raise ArchiveWriteError(f"Failed to record upload of {archive.path}: {e}") from e
            archive.state = FileState.UPLOADED
            self._forget(archive.key)
            return True

    def _forget(self, key: ArchiveKey) -> None:
        with self._registry_lock:
            self._files.pop(key, None)
            self._locks.pop(key, None)

    def recover(self) -> List[ArchiveFile]:
        """Pick up archive files left on disk by a previous run.

        Files with an upload marker are reported as Uploaded but not tracked;
        everything else is Open and will be finalized by the next rotation
        once its date is past.
        """
        if not self.output_dir.is_dir():
            return []

        recovered = []
        for agency_dir in sorted(self.output_dir.iterdir()):
            match = _AGENCY_DIR.match(agency_dir.name)
            if not agency_dir.is_dir() or match is None:
                continue
            feed_id = match.group("feed_id")
            days = set()
            for entry in agency_dir.iterdir():
                name = entry.name
                if name.endswith(UPLOADED_SUFFIX):
                    name = name[: -len(UPLOADED_SUFFIX)]
                day_match = _DATE_FILE.match(name)
                if day_match:
                    days.add(date.fromisoformat(day_match.group("day")))

            for day in sorted(days):
                archive = ArchiveFile(feed_id, day, self.path_for(feed_id, day), FileState.UPLOADED)
                if archive.marker_path.exists():
                    recovered.append(archive)
                else:
                    recovered.append(self._register((feed_id, day)))

        if recovered:
            logger.info(f"Recovered {len(recovered)} archive files from {self.output_dir}")
        return recovered
