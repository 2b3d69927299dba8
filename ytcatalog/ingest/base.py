"""Source-agnostic item interface and shared errors."""

from collections.abc import Iterator
from typing import Protocol

from ytcatalog.models import ItemSummary, VideoDetails


class SourceError(Exception):
    """Raised when an item source call fails."""


class NotFoundError(SourceError):
    """The channel or video does not exist upstream."""


class RateLimitedError(SourceError):
    """Upstream is throttling requests (HTTP 429 or quota exhaustion)."""


class TransientError(SourceError):
    """Network or server hiccup; retrying later may succeed."""


class ItemSource(Protocol):
    """Protocol that all item sources must implement."""

    def list_recent_item_ids(self, channel_id: str) -> Iterator[str]:
        """Lazily yield video ids for a channel, newest first."""
        ...

    def fetch_item_metadata(self, video_id: str) -> ItemSummary:
        """Fetch ranking metadata for one video."""
        ...

    def fetch_item_details(self, video_id: str) -> VideoDetails:
        """Fetch the enrichment payload for one video."""
        ...
