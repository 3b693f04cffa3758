"""
Daily Feed Aggregation

Turns a feed's archived samples into a graded summary: average support and
spread for each optional vehicle field, uptime, and a weighted overall score.
"""

import json
import logging
import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from rater.analysis.grade import grade
from rater.schemas import ARCHIVE_COLUMNS, INDEX_KEY, aggregate_key

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
ALGORITHM_VERSION = 1

# Aggregate field name -> archive counter column
FIELD_COLUMNS = {
    "bearing": "with_bearing",
    "speed": "with_speed",
    "occupancy": "with_occupancy",
    "stop_sequence": "with_current_stop_sequence",
    "multi_carriage": "with_multi_carriage_details",
    "odometer": "with_odometer",
    "stop_id": "with_stop_id",
    "current_status": "with_current_status",
    "timestamp": "with_timestamp",
    "congestion_level": "with_congestion_level",
    "occupancy_percentage": "with_occupancy_percentage",
}

WEIGHTS = {
    "bearing": 1.0,
    "speed": 1.0,
    "occupancy": 2.0,
    "stop_sequence": 2.0,
    "multi_carriage": 1.0,
    "odometer": 1.0,
    "stop_id": 1.0,
    "current_status": 1.0,
    "timestamp": 1.0,
    "congestion_level": 1.0,
    "occupancy_percentage": 1.0,
    "uptime": 3.0,
}

_DATE_FILE = re.compile(r"^date=(?P<day>\d{4}-\d{2}-\d{2})\.csv(\.gz)?$")


def load_rows(paths: Iterable[Union[str, Path]]) -> pd.DataFrame:
    """Read archive CSVs (plain or gzipped) into one frame sorted by timestamp."""
    frames = [pd.read_csv(p, compression="infer", keep_default_na=False) for p in paths]
    frames = [f for f in frames if not f.empty]
    if not frames:
        return pd.DataFrame(columns=ARCHIVE_COLUMNS)

    rows = pd.concat(frames, ignore_index=True)
    rows["timestamp"] = pd.to_datetime(rows["timestamp"], utc=True, format="ISO8601")
    return rows.sort_values("timestamp").reset_index(drop=True)


def aggregate_feed(feed_id: str, rows: pd.DataFrame, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Aggregate one feed's samples.

    Only samples that reported at least one vehicle contribute to field
    support; uptime is the share of samples that did.

    `uptime_percent` is therefore a per-sample ratio (active samples / all
    samples), not active minutes over `window_minutes`. The two agree for
    evenly spaced samples, but a run with gaps is not penalised for the
    minutes it did not sample.

    Args:
        feed_id: Feed identifier
        rows: Archive rows as returned by load_rows
        now: Timestamp recorded as last_updated

    Returns:
        JSON-serialisable aggregate document
    """
    now = now or datetime.now(timezone.utc)
    sample_count = len(rows)

    window_minutes = 0
    if sample_count >= 2:
        span = rows["timestamp"].iloc[-1] - rows["timestamp"].iloc[0]
        window_minutes = int(span.total_seconds() // 60)

    vehicles = rows["vehicles"].astype(int) if sample_count else pd.Series(dtype=int)
    active = rows[vehicles > 0]
    uptime = len(active) / sample_count if sample_count else 0.0
    avg_vehicles = float(active["vehicles"].astype(int).mean()) if len(active) else 0.0

    fields: Dict[str, Dict[str, Any]] = {}
    weighted_total = 0.0
    weight_sum = 0.0

    if len(active):
        denominators = active["vehicles"].astype(float).to_numpy()
        for name, column in FIELD_COLUMNS.items():
            support = active[column].astype(float).to_numpy() / denominators
            avg = float(np.mean(support))
            weight = WEIGHTS.get(name, 1.0)
            weighted_total += avg * weight
            weight_sum += weight
            fields[name] = {
                "avg_support": avg,
                "stddev": float(np.std(support)),
                "grade": grade(avg),
            }

    weighted_total += uptime * WEIGHTS["uptime"]
    weight_sum += WEIGHTS["uptime"]
    score = weighted_total / weight_sum if weight_sum else 0.0

    return {
        "schema_version": SCHEMA_VERSION,
        "algorithm_version": ALGORITHM_VERSION,
        "feed_id": feed_id,
        "last_updated": now.isoformat(),
        "window_minutes": window_minutes,
        "samples": sample_count,
        "entity_stats": {
            "avg_vehicles": avg_vehicles,
            "uptime_percent": uptime,
        },
        "fields": fields,
        "overall": {
            "score": score,
            "grade": grade(score),
        },
    }


def build_index(aggregates: Iterable[Dict[str, Any]], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Summary listing of every aggregated feed."""
    now = now or datetime.now(timezone.utc)
    return {
        "generated_at": now.isoformat(),
        "feeds": [
            {
                "feed_id": a["feed_id"],
                "overall_grade": a["overall"]["grade"],
                "overall_score": a["overall"]["score"],
                "uptime_percent": a["entity_stats"]["uptime_percent"],
            }
            for a in aggregates
        ],
    }


def _feed_files(agency_dir: Path, day: Optional[date]) -> List[Path]:
    files = []
    for entry in sorted(agency_dir.iterdir()):
        match = _DATE_FILE.match(entry.name)
        if not match:
            continue
        if day is None or match.group("day") == day.isoformat():
            files.append(entry)
    return files


def aggregate_directory(output_dir: Union[str, Path], day: Optional[date] = None) -> List[Dict[str, Any]]:
    """Aggregate every feed under an archive directory, optionally for one day."""
    output_dir = Path(output_dir)
    aggregates = []
    for agency_dir in sorted(output_dir.glob("agency_id=*")):
        if not agency_dir.is_dir():
            continue
        feed_id = agency_dir.name[len("agency_id="):]
        rows = load_rows(_feed_files(agency_dir, day))
        if rows.empty:
            continue
        aggregates.append(aggregate_feed(feed_id, rows))
    logger.info(f"Aggregated {len(aggregates)} feeds from {output_dir}")
    return aggregates


def publish_aggregates(uploader, aggregates: List[Dict[str, Any]], with_index: bool = True) -> None:
    """Upload per-feed aggregate documents and, optionally, the feed index."""
    for aggregate in aggregates:
        body = json.dumps(aggregate).encode("utf-8")
        uploader.upload(body, aggregate_key(aggregate["feed_id"]), content_type="application/json")
    if with_index:
        body = json.dumps(build_index(aggregates)).encode("utf-8")
        uploader.upload(body, INDEX_KEY, content_type="application/json")
