"""
Extract Coverage Counts from GTFS-RT Feeds

Counts entity types and, for vehicle positions, how many entities set each
optional field. Percentages are left to the aggregation step.
"""

from collections import Counter

from google.protobuf.message import Message

from rater.models import CoverageRecord

# (counter, field on TripDescriptor)
TRIP_FIELDS = (
    ("with_trip_id", "trip_id"),
    ("with_route_id", "route_id"),
    ("with_direction_id", "direction_id"),
)

# (counter, field on VehicleDescriptor)
VEHICLE_DESCRIPTOR_FIELDS = (
    ("with_vehicle_id", "id"),
    ("with_vehicle_label", "label"),
    ("with_license_plate", "license_plate"),
)

# (counter, field on Position)
POSITION_FIELDS = (
    ("with_bearing", "bearing"),
    ("with_speed", "speed"),
    ("with_odometer", "odometer"),
)

# (counter, field on VehiclePosition)
VEHICLE_FIELDS = (
    ("with_current_stop_sequence", "current_stop_sequence"),
    ("with_stop_id", "stop_id"),
    ("with_current_status", "current_status"),
    ("with_timestamp", "timestamp"),
    ("with_congestion_level", "congestion_level"),
    ("with_occupancy", "occupancy_status"),
    ("with_occupancy_percentage", "occupancy_percentage"),
)

# (counter, field on FeedEntity)
ENTITY_TYPES = (
    ("vehicles", "vehicle"),
    ("trip_updates", "trip_update"),
    ("alerts", "alert"),
    ("shapes", "shape"),
    ("stops", "stop"),
    ("trip_modifications", "trip_modifications"),
)


def has_field(message: Message, name: str) -> bool:
    """HasField that tolerates fields missing from older generated bindings."""
    if name not in message.DESCRIPTOR.fields_by_name:
        return False
    return message.HasField(name)


def _count_vehicle(vehicle, counts: Counter) -> None:
    if has_field(vehicle, "trip"):
        counts["with_trip"] += 1
        for counter, name in TRIP_FIELDS:
            if has_field(vehicle.trip, name):
                counts[counter] += 1

    if has_field(vehicle, "vehicle"):
        descriptor = vehicle.vehicle
        counts["with_vehicle_descriptor"] += 1
        for counter, name in VEHICLE_DESCRIPTOR_FIELDS:
            if has_field(descriptor, name):
                counts[counter] += 1
        # 0 is NO_VALUE, so only an explicit non-default value counts
        if has_field(descriptor, "wheelchair_accessible") and descriptor.wheelchair_accessible != 0:
            counts["with_wheelchair_accessible"] += 1

    if has_field(vehicle, "position"):
        counts["with_position"] += 1
        for counter, name in POSITION_FIELDS:
            if has_field(vehicle.position, name):
                counts[counter] += 1

    for counter, name in VEHICLE_FIELDS:
        if has_field(vehicle, name):
            counts[counter] += 1

    if "multi_carriage_details" in vehicle.DESCRIPTOR.fields_by_name and len(vehicle.multi_carriage_details):
        counts["with_multi_carriage_details"] += 1


def extract_coverage(feed) -> CoverageRecord:
    """Build a CoverageRecord from a decoded FeedMessage.

    Entities of a type not listed in ENTITY_TYPES only add to total_entities.

    Args:
        feed: Decoded gtfs_realtime_pb2.FeedMessage

    Returns:
        Immutable coverage counts for the snapshot
    """
    counts: Counter = Counter()

    for entity in feed.entity:
        for counter, name in ENTITY_TYPES:
            if has_field(entity, name):
                counts[counter] += 1

        if has_field(entity, "vehicle"):
            _count_vehicle(entity.vehicle, counts)

    return CoverageRecord(total_entities=len(feed.entity), **counts)
