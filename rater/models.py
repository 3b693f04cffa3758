"""
Domain types shared across the sampling pipeline.

FeedDescriptor comes from the catalog, CoverageRecord from the stats
extractor, and exactly one SampleOutcome is produced per (feed, round).
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Optional


class LifecycleStatus(str, Enum):
    ACTIVE = "active"
    DEPRECATED = "deprecated"
    INACTIVE = "inactive"
    DEVELOPMENT = "development"
    FUTURE = "future"

    @classmethod
    def parse(cls, value: Optional[str]) -> "LifecycleStatus":
        """Map a catalog status string; missing or unknown values count as active."""
        if not value:
            return cls.ACTIVE
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.ACTIVE


class AuthKind(str, Enum):
    NONE = "none"
    URL_PARAM = "url_param"
    HEADER = "header"


@dataclass(frozen=True)
class FeedAuth:
    """How a feed expects its API key: not at all, as a query param, or as a header."""

    kind: AuthKind = AuthKind.NONE
    param_name: Optional[str] = None

    @classmethod
    def from_catalog(cls, authentication_type: int, param_name: Optional[str]) -> "FeedAuth":
        # MobilityDatabase authentication_type: 0 none, 1 query param, 2 header
        if authentication_type == 1:
            return cls(AuthKind.URL_PARAM, param_name or "api_key")
        if authentication_type == 2:
            return cls(AuthKind.HEADER, param_name or "Authorization")
        return cls()

    @property
    def requires_auth(self) -> bool:
        return self.kind != AuthKind.NONE


@dataclass(frozen=True)
class FeedDescriptor:
    feed_id: str
    display_name: str
    endpoint: Optional[str]
    lifecycle_status: LifecycleStatus = LifecycleStatus.ACTIVE
    auth: FeedAuth = field(default_factory=FeedAuth)

    @property
    def requires_auth(self) -> bool:
        return self.auth.requires_auth


@dataclass(frozen=True)
class CoverageRecord:
    """Counts of entity types and optional vehicle fields in one feed snapshot.

    Each ``with_*`` counter is the number of vehicle entities that set the
    field, so every counter is bounded by ``total_entities``.
    """

    total_entities: int = 0

    # entity types
    vehicles: int = 0
    trip_updates: int = 0
    alerts: int = 0
    shapes: int = 0
    stops: int = 0
    trip_modifications: int = 0

    # vehicle fields
    with_trip: int = 0
    with_trip_id: int = 0
    with_route_id: int = 0
    with_direction_id: int = 0
    with_vehicle_descriptor: int = 0
    with_vehicle_id: int = 0
    with_vehicle_label: int = 0
    with_license_plate: int = 0
    with_wheelchair_accessible: int = 0
    with_position: int = 0
    with_bearing: int = 0
    with_speed: int = 0
    with_odometer: int = 0
    with_current_stop_sequence: int = 0
    with_stop_id: int = 0
    with_current_status: int = 0
    with_timestamp: int = 0
    with_congestion_level: int = 0
    with_occupancy: int = 0
    with_occupancy_percentage: int = 0
    with_multi_carriage_details: int = 0

    @classmethod
    def field_names(cls):
        return [f.name for f in fields(cls)]

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


EMPTY_COVERAGE = CoverageRecord()


@dataclass(frozen=True)
class SampleOutcome(ABC):
    timestamp: datetime
    feed_id: str
    feed_name: str

    error_type: ClassVar[str] = ""

    @property
    def is_error(self) -> bool:
        return bool(self.error_type)

    @abstractmethod
    def to_row(self) -> Dict[str, Any]:
        """One archive row keyed by ARCHIVE_COLUMNS."""


@dataclass(frozen=True)
class Success(SampleOutcome):
    stats: CoverageRecord = EMPTY_COVERAGE

    def to_row(self) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "feed_id": self.feed_id,
            "feed_name": self.feed_name,
        }
        row.update(self.stats.as_dict())
        row["error_type"] = ""
        row["error_message"] = ""
        return row


@dataclass(frozen=True)
class _ErrorOutcome(SampleOutcome):
    message: str = ""

    def to_row(self) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "feed_id": self.feed_id,
            "feed_name": self.feed_name,
        }
        row.update(EMPTY_COVERAGE.as_dict())
        row["error_type"] = self.error_type
        # An error row always carries some message.
        row["error_message"] = self.message or self.error_type
        return row


@dataclass(frozen=True)
class FetchError(_ErrorOutcome):
    error_type: ClassVar[str] = "fetch_error"


@dataclass(frozen=True)
class ParseError(_ErrorOutcome):
    error_type: ClassVar[str] = "parse_error"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
