"""
Decode GTFS-RT FeedMessage Protobufs
"""

from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

from rater.exceptions import FeedDecodeError


def parse_feed(data: bytes) -> gtfs_realtime_pb2.FeedMessage:
    """Decode raw bytes into a FeedMessage.

    Args:
        data: Protobuf-encoded GTFS-RT payload

    Returns:
        The decoded FeedMessage

    Raises:
        FeedDecodeError: If the bytes are not a valid FeedMessage
    """
    feed = gtfs_realtime_pb2.FeedMessage()
    try:
        feed.ParseFromString(data)
    except DecodeError as e:
        raise FeedDecodeError(f"invalid FeedMessage ({len(data)} bytes): {e}") from e
    return feed
