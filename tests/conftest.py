import threading
from datetime import datetime, timedelta, timezone

import pytest
from google.transit import gtfs_realtime_pb2

from rater.exceptions import UploadError
from rater.models import FeedAuth, AuthKind, FeedDescriptor, LifecycleStatus


class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self.now

    def advance(self, **kwargs) -> None:
        with self._lock:
            self.now = self.now + timedelta(**kwargs)

    def set(self, when: datetime) -> None:
        with self._lock:
            self.now = when


class FakeUploader:
    """Records uploads; fails the first `failures` calls."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.uploads = []
        self._lock = threading.Lock()

    def upload(self, data, key, content_type="text/csv"):
        with self._lock:
            if self.failures > 0:
                self.failures -= 1
                raise UploadError(f"simulated failure for {key}")
            self.uploads.append((key, data, content_type))

    def describe(self, key):
        return f"fake://{key}"

    def keys(self):
        return [key for key, _, _ in self.uploads]


def make_feed_message():
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.header.gtfs_realtime_version = "2.0"
    feed.header.timestamp = 1234567890
    return feed


def add_vehicle(feed, entity_id="v1", bearing=None, speed=None, trip_id=None, route_id=None):
    entity = feed.entity.add()
    entity.id = entity_id
    vehicle = entity.vehicle
    vehicle.position.latitude = 42.0
    vehicle.position.longitude = -71.0
    if bearing is not None:
        vehicle.position.bearing = bearing
    if speed is not None:
        vehicle.position.speed = speed
    if trip_id is not None:
        vehicle.trip.trip_id = trip_id
    if route_id is not None:
        vehicle.trip.route_id = route_id
    vehicle.timestamp = 1234567890
    return entity


def vehicle_feed_bytes(count=2) -> bytes:
    feed = make_feed_message()
    for i in range(count):
        add_vehicle(feed, entity_id=f"v{i}", bearing=90.0, trip_id=f"trip-{i}")
    return feed.SerializeToString()


def make_descriptor(feed_id="mdb-1", endpoint="https://example.com/vp.pb", **kwargs) -> FeedDescriptor:
    return FeedDescriptor(
        feed_id=feed_id,
        display_name=kwargs.pop("display_name", f"Agency {feed_id}"),
        endpoint=endpoint,
        **kwargs,
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 14, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def descriptor():
    return make_descriptor()


@pytest.fixture
def auth_descriptor():
    return make_descriptor(
        "mdb-auth",
        auth=FeedAuth(AuthKind.URL_PARAM, "api_key"),
        lifecycle_status=LifecycleStatus.ACTIVE,
    )
