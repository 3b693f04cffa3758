"""
Feed Catalog Clients

Lists GTFS-RT vehicle position feeds from the MobilityDatabase API (or a
local JSON file) and filters them down to the set a run can sample.
"""

import json
import logging
import os
from typing import Dict, Iterable, List, Optional

import requests

from rater.exceptions import CatalogError, ConfigError
from rater.models import FeedAuth, FeedDescriptor, LifecycleStatus

logger = logging.getLogger(__name__)

CATALOG_TIMEOUT = (10, 30)  # (connect, read) seconds


def feed_from_catalog_item(item: Dict) -> Optional[FeedDescriptor]:
    """Map one MobilityDatabase feed object to a FeedDescriptor."""
    feed_id = item.get("id")
    if not feed_id:
        return None
    source_info = item.get("source_info") or {}
    return FeedDescriptor(
        feed_id=str(feed_id),
        display_name=item.get("provider") or "",
        endpoint=source_info.get("producer_url") or None,
        lifecycle_status=LifecycleStatus.parse(item.get("status")),
        auth=FeedAuth.from_catalog(
            int(source_info.get("authentication_type") or 0),
            source_info.get("api_key_parameter_name"),
        ),
    )


class MobilityDataCatalog:
    """Client for the MobilityDatabase GTFS-RT feed catalog."""

    def __init__(self, refresh_token: str, base_url: str = "https://api.mobilitydatabase.org"):
        if not refresh_token:
            raise ConfigError("MOBILITYDATA_REFRESH_TOKEN must be set")
        self.base_url = base_url.rstrip("/")
        self._refresh_token = refresh_token
        self._access_token: Optional[str] = None
        self._session = requests.Session()

    def _exchange_token(self) -> str:
        """Exchange the long-lived refresh token for an access token."""
        try:
            response = self._session.post(
                f"{self.base_url}/v1/tokens",
                json={"refresh_token": self._refresh_token},
                timeout=CATALOG_TIMEOUT,
            )
            response.raise_for_status()
            return response.json()["access_token"]
        except requests.exceptions.RequestException as e:
            raise CatalogError(f"Token exchange failed: {e}") from e
        except (KeyError, ValueError) as e:
            raise CatalogError(f"Failed to parse token response: {e}") from e

    def list_feeds(self) -> List[FeedDescriptor]:
        """Return every vehicle position feed in the catalog."""
        if self._access_token is None:
            self._access_token = self._exchange_token()

        try:
            response = self._session.get(
                f"{self.base_url}/v1/gtfs_rt_feeds",
                params={"limit": 999, "offset": 0, "entity_types": "vp"},
                headers={"Authorization": f"Bearer {self._access_token}"},
                timeout=CATALOG_TIMEOUT,
            )
            response.raise_for_status()
            items = response.json()
        except requests.exceptions.RequestException as e:
            raise CatalogError(f"Catalog request failed: {e}") from e
        except ValueError as e:
            raise CatalogError(f"Failed to parse catalog response: {e}") from e

        if not isinstance(items, list):
            raise CatalogError(f"Unexpected catalog payload: {type(items).__name__}")

        feeds = [f for f in (feed_from_catalog_item(item) for item in items) if f is not None]
        logger.info(f"Catalog returned {len(feeds)} feeds")
        return feeds


class JsonFileCatalog:
    """Reads feeds from a JSON file holding a list of catalog-shaped objects."""

    def __init__(self, path: str):
        self.path = path

    def list_feeds(self) -> List[FeedDescriptor]:
        try:
            with open(self.path, encoding="utf-8") as f:
                items = json.load(f)
        except (OSError, ValueError) as e:
            raise CatalogError(f"Failed to read feeds file {self.path}: {e}") from e
        if not isinstance(items, list):
            raise CatalogError(f"{self.path} must contain a JSON list of feeds")
        return [f for f in (feed_from_catalog_item(item) for item in items) if f is not None]


def load_key_config(path: str) -> Dict[str, str]:
    """Load a feed_id -> environment variable name mapping.

    Example file:
        {"mdb-123": "MDB_123_API_KEY"}
    """
    try:
        with open(path, encoding="utf-8") as f:
            entries = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigError(f"Failed to read key config {path}: {e}") from e
    if not isinstance(entries, dict):
        raise ConfigError(f"{path} must contain a JSON object")
    return {str(k): str(v) for k, v in entries.items()}


def resolve_keys(key_config: Dict[str, str]) -> Dict[str, str]:
    """Resolve API keys from the environment; unresolved feeds are left out."""
    resolved = {}
    for feed_id, env_name in key_config.items():
        key = os.getenv(env_name)
        if key:
            logger.info(f"Resolved key for {feed_id} from ${env_name}")
            resolved[feed_id] = key
        else:
            logger.error(f"No value in ${env_name} for feed {feed_id}")
    return resolved


def eligible_feeds(
    feeds: Iterable[FeedDescriptor],
    api_keys: Optional[Dict[str, str]] = None,
) -> List[FeedDescriptor]:
    """Filter the catalog down to feeds a run will sample.

    A feed is eligible when it has an endpoint, is not deprecated, and either
    needs no authentication or has a resolved API key.
    """
    api_keys = api_keys or {}
    return [
        feed
        for feed in feeds
        if feed.endpoint
        and feed.lifecycle_status != LifecycleStatus.DEPRECATED
        and (not feed.requires_auth or feed.feed_id in api_keys)
    ]
