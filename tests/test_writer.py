import csv
import threading
from datetime import date, datetime, timedelta, timezone

import pytest

from rater.archive import ArchiveWriter, FileState
from rater.exceptions import ArchiveWriteError
from rater.models import CoverageRecord, FetchError, ParseError, SampleOutcome, Success
from rater.schemas import ARCHIVE_COLUMNS, COUNTER_COLUMNS

DAY = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


def success(feed_id="mdb-1", when=DAY, vehicles=3):
    stats = CoverageRecord(total_entities=vehicles, vehicles=vehicles, with_bearing=vehicles)
    return Success(when, feed_id, "Agency", stats=stats)


def read_rows(path):
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.DictReader(f))


def test_first_append_creates_file_with_header(tmp_path):
    writer = ArchiveWriter(tmp_path)

    archive = writer.append(success())

    assert archive.path == tmp_path / "agency_id=mdb-1" / "date=2026-03-14.csv"
    with open(archive.path, newline="", encoding="utf-8") as f:
        header = next(csv.reader(f))
    assert header == ARCHIVE_COLUMNS
    assert archive.state == FileState.OPEN


def test_row_count_matches_rounds(tmp_path):
    writer = ArchiveWriter(tmp_path)

    for i in range(5):
        writer.append(success(when=DAY + timedelta(minutes=i)))
    archive = writer.append(FetchError(DAY + timedelta(minutes=5), "mdb-1", "Agency", message="timeout"))

    rows = read_rows(archive.path)
    assert len(rows) == 6
    assert archive.rows == 6


def test_success_row_has_counters_and_empty_error(tmp_path):
    writer = ArchiveWriter(tmp_path)

    archive = writer.append(success(vehicles=7))

    row = read_rows(archive.path)[0]
    assert row["feed_id"] == "mdb-1"
    assert row["feed_name"] == "Agency"
    assert row["total_entities"] == "7"
    assert row["vehicles"] == "7"
    assert row["with_bearing"] == "7"
    assert row["error_type"] == ""
    assert row["error_message"] == ""


@pytest.mark.parametrize("outcome_cls,error_type", [(FetchError, "fetch_error"), (ParseError, "parse_error")])
def test_error_rows_zero_every_counter(tmp_path, outcome_cls, error_type):
    writer = ArchiveWriter(tmp_path)

    archive = writer.append(outcome_cls(DAY, "mdb-1", "Agency", message="bad things"))

    row = read_rows(archive.path)[0]
    assert row["total_entities"] == "0"
    for column in COUNTER_COLUMNS:
        assert row[column] == "0"
    assert row["error_type"] == error_type
    assert row["error_message"] == "bad things"


def test_error_row_without_message_still_has_one(tmp_path):
    writer = ArchiveWriter(tmp_path)

    archive = writer.append(FetchError(DAY, "mdb-1", "Agency"))

    row = read_rows(archive.path)[0]
    assert row["error_type"] == "fetch_error"
    assert row["error_message"]


def test_files_split_by_feed_and_utc_day(tmp_path):
    writer = ArchiveWriter(tmp_path)

    writer.append(success("a", DAY))
    writer.append(success("b", DAY))
    writer.append(success("a", DAY + timedelta(days=1)))

    keys = sorted(a.key for a in writer.files())
    assert keys == [("a", date(2026, 3, 14)), ("a", date(2026, 3, 15)), ("b", date(2026, 3, 14))]


def test_finalize_only_earlier_days_and_only_once(tmp_path):
    writer = ArchiveWriter(tmp_path)
    writer.append(success("a", DAY))
    writer.append(success("a", DAY + timedelta(days=1)))

    first = writer.finalize_before(date(2026, 3, 15))
    second = writer.finalize_before(date(2026, 3, 15))

    assert [a.key for a in first] == [("a", date(2026, 3, 14))]
    assert second == []
    assert writer.get("a", date(2026, 3, 15)).state == FileState.OPEN


def test_append_after_finalize_is_rejected(tmp_path):
    writer = ArchiveWriter(tmp_path)
    archive = writer.append(success("a", DAY))
    writer.finalize_before(date(2026, 3, 15))

    with pytest.raises(ArchiveWriteError):
        writer.append(success("a", DAY + timedelta(hours=1)))
    assert len(read_rows(archive.path)) == 1


def test_unwritable_output_dir_raises_write_error(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    writer = ArchiveWriter(blocker)

    with pytest.raises(ArchiveWriteError):
        writer.append(success())


def test_non_ascii_names_are_written_as_utf8(tmp_path):
    writer = ArchiveWriter(tmp_path)

    archive = writer.append(FetchError(DAY, "sp-1", "São Paulo", message="conexão recusada"))

    row = read_rows(archive.path)[0]
    assert row["feed_name"] == "São Paulo"
    assert row["error_message"] == "conexão recusada"


class BadRowOutcome(Success):
    def to_row(self):
        row = super().to_row()
        row["unexpected"] = 1
        return row


def test_unwritable_row_raises_write_error(tmp_path):
    writer = ArchiveWriter(tmp_path)

    with pytest.raises(ArchiveWriteError):
        writer.append(BadRowOutcome(DAY, "mdb-1", "Agency"))


def test_concurrent_appends_do_not_interleave(tmp_path):
    writer = ArchiveWriter(tmp_path)

    def worker(n):
        for i in range(20):
            writer.append(FetchError(DAY, "mdb-1", "Agency", message=f"worker {n} sample {i}"))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    rows = read_rows(writer.get("mdb-1", DAY.date()).path)
    assert len(rows) == 160
    assert all(row["error_type"] == "fetch_error" for row in rows)


def test_mark_uploaded_is_idempotent(tmp_path):
    writer = ArchiveWriter(tmp_path)
    archive = writer.append(success())
    writer.finalize_before(date(2026, 3, 15))

    assert writer.mark_uploaded(archive, "Year=2026/Month=03/Day=14/mdb-1.csv") is True
    assert writer.mark_uploaded(archive, "Year=2026/Month=03/Day=14/mdb-1.csv") is False
    assert archive.state == FileState.UPLOADED
    assert archive.marker_path.exists()
    assert writer.get("mdb-1", DAY.date()) is None


def test_append_to_uploaded_day_is_rejected(tmp_path):
    writer = ArchiveWriter(tmp_path)
    archive = writer.append(success())
    writer.finalize_before(date(2026, 3, 15))
    writer.mark_uploaded(archive, "key")

    with pytest.raises(ArchiveWriteError):
        writer.append(success(when=DAY + timedelta(minutes=5)))
    assert len(read_rows(archive.path)) == 1
    assert writer.files() == []


def test_recover_restores_states(tmp_path):
    first = ArchiveWriter(tmp_path)
    uploaded = first.append(success("a", DAY - timedelta(days=2)))
    first.append(success("a", DAY - timedelta(days=1)))
    first.append(success("b", DAY))
    first.finalize_before(DAY.date() - timedelta(days=1))
    first.mark_uploaded(uploaded, "key")

    second = ArchiveWriter(tmp_path)
    recovered = second.recover()

    states = {a.key: a.state for a in recovered}
    assert states == {
        ("a", date(2026, 3, 12)): FileState.UPLOADED,
        ("a", date(2026, 3, 13)): FileState.OPEN,
        ("b", date(2026, 3, 14)): FileState.OPEN,
    }
    # a recovered open file keeps its header and gains rows
    second.append(success("b", DAY + timedelta(minutes=1)))
    assert len(read_rows(second.get("b", DAY.date()).path)) == 2


def test_recover_missing_directory(tmp_path):
    assert ArchiveWriter(tmp_path / "nope").recover() == []


def test_sample_outcome_base_is_abstract():
    with pytest.raises(TypeError):
        SampleOutcome(DAY, "mdb-1", "Agency")
