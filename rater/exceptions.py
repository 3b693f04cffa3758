"""Error taxonomy for the sampling pipeline."""


class RaterError(Exception):
    """Base class for all rater errors."""


class ConfigError(RaterError):
    """Invalid run configuration."""


class CatalogError(RaterError):
    """The feed list could not be obtained."""


class TransportError(RaterError):
    """Network, timeout or local read failure while fetching a feed."""


class FeedDecodeError(RaterError):
    """Bytes were retrieved but are not a valid GTFS-RT FeedMessage."""


class ArchiveWriteError(RaterError):
    """A row could not be appended to the local archive."""


class UploadError(RaterError):
    """An archive file could not be written to durable storage."""
