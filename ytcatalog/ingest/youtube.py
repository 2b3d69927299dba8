"""
YouTube Data API item source with error classification and timeout management.
"""

import re
from collections.abc import Iterator
from datetime import UTC, datetime
from time import perf_counter
from typing import Any

import httpx
from dateutil.parser import ParserError
from dateutil.parser import parse as parse_date

from ytcatalog.logging_config import get_logger
from ytcatalog.models import ItemSummary, VideoDetails
from ytcatalog.storage.cache import TTLCache

from .base import NotFoundError, RateLimitedError, SourceError, TransientError

logger = get_logger("youtube")

API_BASE_URL = "https://www.googleapis.com/youtube/v3"

DEFAULT_HEADERS = {
    "User-Agent": "ytcatalog/1.0",
    "Accept": "application/json",
}

RATE_LIMIT_REASONS = ("quotaexceeded", "ratelimitexceeded", "userratelimitexceeded")

THUMBNAIL_PREFERENCE = ("maxres", "standard", "high", "medium", "default")

UPLOADS_PLAYLIST_TTL_SECONDS = 60 * 60 * 24

# Uploads at or under this length are treated as shorts
SHORTS_MAX_SECONDS = 60

METADATA_PARTS = "snippet,statistics,contentDetails,liveStreamingDetails"

ISO_DURATION_RE = re.compile(r"P(?:(\d+)D)?T?(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")


class YouTubeDataSource:
    """Item source backed by the YouTube Data API v3."""

    def __init__(
        self,
        api_key: str,
        timeout: float = 15.0,
        client: httpx.Client | None = None,
        page_size: int = 50,
    ):
        if not api_key:
            raise ValueError("A YouTube API key is required")
        self.api_key = api_key
        self.timeout = timeout
        self.page_size = page_size
        self._client = client or httpx.Client(
            base_url=API_BASE_URL,
            timeout=timeout,
            headers=DEFAULT_HEADERS,
            follow_redirects=True,
        )
        self._uploads_playlists: TTLCache[str] = TTLCache(
            "uploads-playlist", UPLOADS_PLAYLIST_TTL_SECONDS
        )

    def close(self) -> None:
        self._client.close()

    def list_recent_item_ids(self, channel_id: str) -> Iterator[str]:
        """Yield upload ids newest first, one API page at a time."""
        playlist_id = self._uploads_playlist(channel_id)
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {
                "part": "contentDetails",
                "playlistId": playlist_id,
                "maxResults": self.page_size,
            }
            if page_token:
                params["pageToken"] = page_token

            payload = self._get("playlistItems", params)
            for item in payload.get("items", []):
                video_id = (item.get("contentDetails") or {}).get("videoId")
                if video_id:
                    yield video_id

            page_token = payload.get("nextPageToken")
            if not page_token:
                return

    def fetch_item_metadata(self, video_id: str) -> ItemSummary:
        """Fetch snippet, statistics and length for one video."""
        video = self._get_video(video_id, part=METADATA_PARTS)
        snippet = video.get("snippet") or {}
        statistics = video.get("statistics") or {}
        duration = iso8601_duration_to_seconds((video.get("contentDetails") or {}).get("duration"))
        is_stream = "liveStreamingDetails" in video or snippet.get("liveBroadcastContent") in (
            "live",
            "upcoming",
        )

        published_at = _parse_published_at(snippet.get("publishedAt"))
        if published_at is None:
            raise SourceError(f"Video {video_id} has no usable publish date")

        return ItemSummary(
            video_id=video_id,
            title=snippet.get("title", "Untitled"),
            channel_id=snippet.get("channelId", ""),
            channel_title=snippet.get("channelTitle", ""),
            views=int(statistics.get("viewCount") or 0),
            published_at=published_at,
            thumbnail_url=_best_thumbnail_url(snippet.get("thumbnails") or {}),
            duration_seconds=duration,
            # Live broadcasts report P0D, so a zero length is never a short
            is_short=not is_stream and bool(duration) and duration <= SHORTS_MAX_SECONDS,
            is_stream=is_stream,
        )

    def fetch_item_details(self, video_id: str) -> VideoDetails:
        """Fetch publish date and description for enrichment."""
        snippet = self._get_video(video_id, part="snippet").get("snippet") or {}
        published_at = _parse_published_at(snippet.get("publishedAt"))
        return VideoDetails(
            publish_date=published_at.date().isoformat() if published_at else None,
            description=snippet.get("description") or None,
        )

    def _uploads_playlist(self, channel_id: str) -> str:
        """Resolve a channel id or @handle to its uploads playlist."""
        cached = self._uploads_playlists.get(channel_id)
        if cached is not None:
            return cached

        params: dict[str, Any] = {"part": "contentDetails"}
        if channel_id.startswith("@"):
            params["forHandle"] = channel_id
        else:
            params["id"] = channel_id

        items = self._get("channels", params).get("items", [])
        if not items:
            raise NotFoundError(f"Channel not found: {channel_id}")

        playlist = ((items[0].get("contentDetails") or {}).get("relatedPlaylists") or {}).get(
            "uploads"
        )
        if not playlist:
            raise NotFoundError(f"Channel {channel_id} has no uploads playlist")

        if channel_id.startswith("@"):
            logger.info(f"Resolved channel handle {channel_id} to {items[0].get('id')}")
        self._uploads_playlists.set(channel_id, playlist)
        return playlist

    def _get_video(self, video_id: str, part: str) -> dict[str, Any]:
        items = self._get("videos", {"part": part, "id": video_id}).get("items", [])
        if not items:
            raise NotFoundError(f"Video not found: {video_id}")
        return items[0]

    def _get(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        """Issue one API call and classify failures."""
        started = perf_counter()
        try:
            response = self._client.get(endpoint, params={**params, "key": self.api_key})
        except httpx.TimeoutException as e:
            raise TransientError(f"Request timed out after {self.timeout}s: {e}") from e
        except httpx.HTTPError as e:
            raise TransientError(str(e)) from e

        elapsed_ms = (perf_counter() - started) * 1000
        logger.debug(f"GET {endpoint} -> {response.status_code} in {elapsed_ms:.0f} ms")

        if response.status_code < 400:
            return response.json()
        raise classify_http_error(response)


def classify_http_error(response: httpx.Response) -> SourceError:
    """Map an error response onto the source error taxonomy."""
    status = response.status_code
    message = f"HTTP {status} for {response.request.url.copy_remove_param('key')}"
    lowered = response.text.lower()

    if status == 429:
        return RateLimitedError(f"{message} (Too Many Requests)")
    if status == 403 and any(reason in lowered for reason in RATE_LIMIT_REASONS):
        return RateLimitedError(f"{message} (quota exceeded)")
    if status == 404:
        return NotFoundError(message)
    return TransientError(message)


def _parse_published_at(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        published = parse_date(value)
    except (ValueError, ParserError):
        return None
    if published.tzinfo is None:
        published = published.replace(tzinfo=UTC)
    return published


def _best_thumbnail_url(thumbnails: dict[str, Any]) -> str:
    for key in THUMBNAIL_PREFERENCE:
        thumbnail = thumbnails.get(key)
        if thumbnail and thumbnail.get("url"):
            return thumbnail["url"]
    return "about:blank"


def iso8601_duration_to_seconds(duration: str | None) -> int | None:
    """Parse an API duration such as ``PT1H2M3S``. None when absent or malformed."""
    if not duration:
        return None
    match = ISO_DURATION_RE.fullmatch(duration)
    if not match:
        return None
    days, hours, minutes, seconds = (int(group or 0) for group in match.groups())
    return days * 86400 + hours * 3600 + minutes * 60 + seconds
