"""
Durable-storage uploaders.

`gs://bucket[/prefix]` destinations go to Google Cloud Storage; anything
else is treated as a local directory (useful for mounted volumes and tests).
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import requests
from google.api_core import exceptions as gcp_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import storage

from rater.exceptions import ConfigError, UploadError

logger = logging.getLogger(__name__)


class Uploader(ABC):
    """Writes a blob of bytes under a destination key."""

    @abstractmethod
    def upload(self, data: bytes, key: str, content_type: str = "text/csv") -> None:
        """Store `data` under `key`; raises UploadError on failure."""

    def describe(self, key: str) -> str:
        return key


class GCSUploader(Uploader):
    """Uploads to a Google Cloud Storage bucket, optionally under a prefix."""

    def __init__(self, bucket: str, prefix: str = "", client: Optional[storage.Client] = None):
        self.bucket_name = bucket
        self.prefix = prefix.strip("/")
        self._client = client

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client()
        return self._client

    def _full_key(self, key: str) -> str:
        return f"{self.prefix}/{key}" if self.prefix else key

    def upload(self, data: bytes, key: str, content_type: str = "text/csv") -> None:
        try:
            blob = self.client.bucket(self.bucket_name).blob(self._full_key(key))
            blob.upload_from_string(data, content_type=content_type, timeout=60)
        except (
            gcp_exceptions.GoogleAPIError,
            auth_exceptions.GoogleAuthError,
            requests.exceptions.RequestException,
        ) as e:
            raise UploadError(f"Upload to {self.describe(key)} failed: {e}") from e

    def describe(self, key: str) -> str:
        return f"gs://{self.bucket_name}/{self._full_key(key)}"


class LocalDirectoryUploader(Uploader):
    """Copies blobs into a directory tree mirroring the destination keys."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def upload(self, data: bytes, key: str, content_type: str = "text/csv") -> None:
        target = self.root / key
        tmp = target.with_name(target.name + ".part")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            tmp.replace(target)
        except OSError as e:
            raise UploadError(f"Upload to {target} failed: {e}") from e

    def describe(self, key: str) -> str:
        return str(self.root / key)


def build_uploader(destination: Optional[str]) -> Optional[Uploader]:
    """Build an uploader for a destination string, or None when upload is disabled."""
    if not destination:
        return None
    if destination.startswith("gs://"):
        bucket, _, prefix = destination[len("gs://"):].partition("/")
        if not bucket:
            raise ConfigError(f"No bucket in destination {destination!r}")
        logger.info(f"Upload enabled: bucket={bucket}, prefix={prefix or '-'}")
        return GCSUploader(bucket, prefix)
    logger.info(f"Upload enabled: directory={destination}")
    return LocalDirectoryUploader(destination)
