from dataclasses import fields

import pytest
from google.transit import gtfs_realtime_pb2

from conftest import add_vehicle, make_feed_message
from rater.models import CoverageRecord
from rater.transforms import extract_coverage

requires_wheelchair = pytest.mark.skipif(
    "wheelchair_accessible" not in gtfs_realtime_pb2.VehicleDescriptor.DESCRIPTOR.fields_by_name,
    reason="bindings predate VehicleDescriptor.wheelchair_accessible",
)


def test_empty_feed():
    stats = extract_coverage(make_feed_message())

    assert stats.total_entities == 0
    assert stats.vehicles == 0
    assert stats == CoverageRecord()


def test_vehicle_position_fields():
    feed = make_feed_message()
    add_vehicle(feed, bearing=180.0, speed=10.5)

    stats = extract_coverage(feed)

    assert stats.total_entities == 1
    assert stats.vehicles == 1
    assert stats.with_position == 1
    assert stats.with_bearing == 1
    assert stats.with_speed == 1
    assert stats.with_odometer == 0
    assert stats.with_timestamp == 1


def test_trip_fields():
    feed = make_feed_message()
    entity = add_vehicle(feed, trip_id="trip-1", route_id="route-1")
    entity.vehicle.trip.direction_id = 1

    stats = extract_coverage(feed)

    assert stats.with_trip == 1
    assert stats.with_trip_id == 1
    assert stats.with_route_id == 1
    assert stats.with_direction_id == 1


@requires_wheelchair
def test_vehicle_descriptor_fields():
    feed = make_feed_message()
    descriptor = add_vehicle(feed).vehicle.vehicle
    descriptor.id = "bus-42"
    descriptor.label = "42"
    descriptor.license_plate = "ABC123"
    descriptor.wheelchair_accessible = 1

    stats = extract_coverage(feed)

    assert stats.with_vehicle_descriptor == 1
    assert stats.with_vehicle_id == 1
    assert stats.with_vehicle_label == 1
    assert stats.with_license_plate == 1
    assert stats.with_wheelchair_accessible == 1


@requires_wheelchair
def test_wheelchair_no_value_not_counted():
    feed = make_feed_message()
    add_vehicle(feed).vehicle.vehicle.wheelchair_accessible = 0

    stats = extract_coverage(feed)

    assert stats.with_vehicle_descriptor == 1
    assert stats.with_wheelchair_accessible == 0


def test_vehicle_optional_fields():
    feed = make_feed_message()
    vehicle = add_vehicle(feed).vehicle
    vehicle.current_stop_sequence = 5
    vehicle.stop_id = "stop-1"
    vehicle.current_status = 1
    vehicle.congestion_level = 1
    vehicle.occupancy_status = 1

    stats = extract_coverage(feed)

    assert stats.with_current_stop_sequence == 1
    assert stats.with_stop_id == 1
    assert stats.with_current_status == 1
    assert stats.with_congestion_level == 1
    assert stats.with_occupancy == 1
    assert stats.with_odometer == 0


def test_non_vehicle_entity_types():
    feed = make_feed_message()
    trip_update = feed.entity.add()
    trip_update.id = "tu1"
    trip_update.trip_update.trip.trip_id = "trip-1"
    alert = feed.entity.add()
    alert.id = "a1"
    alert.alert.SetInParent()

    stats = extract_coverage(feed)

    assert stats.total_entities == 2
    assert stats.trip_updates == 1
    assert stats.alerts == 1
    assert stats.vehicles == 0
    assert stats.with_position == 0


def test_entity_without_known_type_only_counts_in_total():
    feed = make_feed_message()
    bare = feed.entity.add()
    bare.id = "bare"
    add_vehicle(feed)

    stats = extract_coverage(feed)

    assert stats.total_entities == 2
    assert stats.vehicles == 1
    assert stats.trip_updates == 0
    assert stats.alerts == 0


def test_counters_bounded_by_total_entities():
    feed = make_feed_message()
    for i in range(5):
        add_vehicle(feed, entity_id=f"v{i}", bearing=1.0, speed=2.0, trip_id="t", route_id="r")
    alert = feed.entity.add()
    alert.id = "a"
    alert.alert.SetInParent()

    stats = extract_coverage(feed)

    for f in fields(stats):
        value = getattr(stats, f.name)
        assert isinstance(value, int)
        assert 0 <= value <= stats.total_entities
