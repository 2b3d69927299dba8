"""
Collections, the channels in them, and the uploads stored for each channel.

Channel uploads are read through the cutoff aggregator, so a sync costs the
same bounded metadata walk as a query. Re-syncing a channel merges the fresh
uploads into what is stored: enrichment data survives, and videos older than
the fetched window are kept.
"""

from __future__ import annotations

import math
import re
import threading
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import NamedTuple

from dateutil.parser import ParserError
from dateutil.parser import parse as parse_date

from ytcatalog.config import Settings
from ytcatalog.ingest.base import ItemSource
from ytcatalog.logging_config import get_logger
from ytcatalog.models import (
    CatalogSnapshot,
    ChannelQuery,
    Collection,
    ItemSummary,
    StoredChannel,
    StoredVideo,
)
from ytcatalog.storage.cache import TTLCache
from ytcatalog.storage.store import CatalogStore

from .aggregator import DEFAULT_MAX_IN_FLIGHT, DEFAULT_VIDEO_TTL_SECONDS, CutoffAggregator
from .enrichment import CollectionNotFoundError

logger = get_logger("library")

DEFAULT_MAX_AGE_DAYS = 30
MIN_VIDEO_LIMIT = 500

# Extra days fetched past a channel's oldest stored video on re-sync
RESYNC_MARGIN_DAYS = 7

# Individual channel failures logged in full during a bulk sync
MAX_LOGGED_SYNC_FAILURES = 3

CHANNEL_ID_RE = re.compile(r"UC[\w-]{22}")
RELATIVE_AGE_RE = re.compile(r"(\d+)\s*(second|minute|hour|day|week|month|year)s?")
DAYS_PER_UNIT = {
    "second": 0,
    "minute": 0,
    "hour": 0,
    "day": 1,
    "week": 7,
    "month": 30,
    "year": 365,
}


class ChannelNotFoundError(LookupError):
    """The requested channel is not part of the collection."""


class ChannelExistsError(ValueError):
    """The channel is already part of the collection."""


class ChannelUploads(NamedTuple):
    """Uploads read for one channel, newest first."""

    title: str | None
    videos: list[StoredVideo]


class SyncPlan(NamedTuple):
    """One channel scheduled for a re-sync."""

    collection_id: str
    collection_name: str
    channel_id: str
    handle: str
    video_count: int
    oldest_days: int
    max_age_days: int


class ChannelSyncResult(NamedTuple):
    """Outcome of re-syncing one channel."""

    plan: SyncPlan
    fetched: int = 0
    total: int = 0
    added: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def normalize_channel_ref(value: str) -> str:
    """Channel ids pass through; anything else is treated as a handle."""
    ref = value.strip()
    if not ref:
        raise ValueError("Channel handle is required")
    if ref.startswith("@") or CHANNEL_ID_RE.fullmatch(ref):
        return ref
    return f"@{ref}"


def video_limit_for(max_age_days: int) -> int:
    """Roughly a hundred uploads per month of lookback, never below the floor."""
    return max(MIN_VIDEO_LIMIT, math.ceil(max_age_days / 30) * 100)


def format_duration(seconds: int | None) -> str | None:
    if seconds is None:
        return None
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def to_stored_video(item: ItemSummary) -> StoredVideo:
    return StoredVideo(
        video_id=item.video_id,
        title=item.title or None,
        view_count=str(item.views),
        published_time=item.published_at.isoformat(),
        duration=format_duration(item.duration_seconds),
        is_short=item.is_short,
        is_stream=item.is_stream,
    )


def estimate_age_days(video: StoredVideo, now: datetime) -> int | None:
    """
    Age of a stored video in whole days, or None when it cannot be told.

    The enriched publish date wins. Otherwise ``published_time`` is read as a
    timestamp, or as relative text such as "3 weeks ago" from older stores.
    """
    for value in (video.publish_date, video.published_time):
        if not value:
            continue
        try:
            published = parse_date(value)
        except (ValueError, ParserError, OverflowError):
            match = RELATIVE_AGE_RE.search(value.lower())
            if match:
                return int(match.group(1)) * DAYS_PER_UNIT[match.group(2)]
            continue
        if published.tzinfo is None:
            published = published.replace(tzinfo=UTC)
        return max(0, math.ceil((now - published).total_seconds() / 86400))
    return None


def resync_window_days(channel: StoredChannel, now: datetime) -> tuple[int, int]:
    """(oldest stored age, lookback needed to cover it) for a re-sync."""
    ages = [age for age in (estimate_age_days(v, now) for v in channel.videos) if age is not None]
    oldest = max(ages, default=0)
    return oldest, max(DEFAULT_MAX_AGE_DAYS, oldest + RESYNC_MARGIN_DAYS)


def merge_videos(existing: list[StoredVideo], fresh: list[StoredVideo]) -> list[StoredVideo]:
    """
    Fresh uploads first, then stored ones the fetch did not reach.

    Fresh entries carry current metadata; enrichment fields are copied over
    from the stored entry with the same id.
    """
    enrichment = {
        video.video_id: (video.publish_date, video.description)
        for video in existing
        if video.is_enriched
    }
    merged: list[StoredVideo] = []
    seen: set[str] = set()
    for video in fresh:
        if video.video_id in seen:
            continue
        seen.add(video.video_id)
        if video.video_id in enrichment:
            publish_date, description = enrichment[video.video_id]
            video = video.model_copy(
                update={"publish_date": publish_date, "description": description}
            )
        merged.append(video)
    for video in existing:
        if video.video_id not in seen:
            seen.add(video.video_id)
            merged.append(video)
    return merged


def _find_channel(collection: Collection, channel_ref: str) -> StoredChannel:
    wanted = channel_ref.strip().lower()
    for channel in collection.channels:
        if channel.id.lower() == wanted or (channel.handle and channel.handle.lower() == wanted):
            return channel
    raise ChannelNotFoundError(f"Channel not found in {collection.id}: {channel_ref}")


class CollectionLibrary:
    """Create and edit collections, and keep their stored uploads current."""

    def __init__(
        self,
        store: CatalogStore,
        source: ItemSource | None = None,
        *,
        max_age_days: int = DEFAULT_MAX_AGE_DAYS,
        metadata_concurrency: int = DEFAULT_MAX_IN_FLIGHT,
        video_ttl_seconds: float = DEFAULT_VIDEO_TTL_SECONDS,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.store = store
        self.max_age_days = max_age_days
        self._clock = clock
        # Only channel reads need a source; collection edits work without one
        self.aggregator: CutoffAggregator | None = None
        if source is not None:
            self.aggregator = CutoffAggregator(
                source,
                TTLCache("video", video_ttl_seconds),
                max_in_flight=metadata_concurrency,
                video_ttl_seconds=video_ttl_seconds,
            )
        # Serialises load-modify-save cycles made through this library
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls, settings: Settings, store: CatalogStore, source: ItemSource | None = None
    ) -> CollectionLibrary:
        return cls(
            store,
            source,
            max_age_days=settings.default_days,
            metadata_concurrency=settings.metadata_concurrency,
            video_ttl_seconds=settings.video_cache_ttl_hours * 3600,
        )

    def list_collections(self) -> list[Collection]:
        return self.store.load().collections

    def get_collection(self, collection_id: str) -> Collection:
        """
        Raises:
            CollectionNotFoundError: if the collection is not in the store
        """
        return self._require_collection(self.store.load(), collection_id)

    def create_collection(self, name: str) -> Collection:
        name = name.strip()
        if not name:
            raise ValueError("Name is required")
        with self._lock:
            snapshot = self.store.load()
            collection = Collection(id=str(uuid.uuid4()), name=name)
            snapshot.collections.append(collection)
            self.store.save(snapshot)
        logger.info(f"Created collection {collection.name} ({collection.id})")
        return collection

    def rename_collection(self, collection_id: str, name: str) -> Collection:
        name = name.strip()
        if not name:
            raise ValueError("Name is required")
        with self._lock:
            snapshot = self.store.load()
            collection = self._require_collection(snapshot, collection_id)
            collection.name = name
            self.store.save(snapshot)
        return collection

    def delete_collection(self, collection_id: str) -> None:
        with self._lock:
            snapshot = self.store.load()
            collection = self._require_collection(snapshot, collection_id)
            snapshot.collections.remove(collection)
            self.store.save(snapshot)
        logger.info(f"Deleted collection {collection.name} ({collection_id})")

    def add_channel(
        self, collection_id: str, channel_ref: str, max_age_days: int | None = None
    ) -> StoredChannel:
        """
        Add a channel to a collection and store its recent uploads.

        Raises:
            CollectionNotFoundError: if the collection is not in the store
            ChannelExistsError: if the collection already tracks the channel
            SourceError: if the channel's uploads cannot be listed
        """
        handle = normalize_channel_ref(channel_ref)
        with self._lock:
            snapshot = self.store.load()
            collection = self._require_collection(snapshot, collection_id)
            if any(channel.handle.lower() == handle.lower() for channel in collection.channels):
                raise ChannelExistsError(f"Channel already exists in this collection: {handle}")

            logger.info(f"Fetching uploads for channel {handle}")
            uploads = self.fetch_uploads(handle, max_age_days or self.max_age_days)
            now = self._clock()
            channel = StoredChannel(
                id=str(uuid.uuid4()),
                handle=handle,
                title=uploads.title,
                added_at=now,
                last_updated=now,
                videos=uploads.videos,
            )
            collection.channels.append(channel)
            self.store.save(snapshot)

        shorts = sum(video.is_short for video in channel.videos)
        logger.info(
            f"Added {handle} to {collection.name}: {len(channel.videos)} videos ({shorts} shorts)"
        )
        return channel

    def remove_channel(self, collection_id: str, channel_ref: str) -> StoredChannel:
        with self._lock:
            snapshot = self.store.load()
            collection = self._require_collection(snapshot, collection_id)
            channel = _find_channel(collection, channel_ref)
            collection.channels.remove(channel)
            self.store.save(snapshot)
        return channel

    def fetch_uploads(self, channel_ref: str, max_age_days: int) -> ChannelUploads:
        """Uploads inside the lookback window, newest first."""
        if self.aggregator is None:
            raise RuntimeError("Reading channel uploads needs an item source")
        query = ChannelQuery(
            channel_id=channel_ref,
            top=video_limit_for(max_age_days),
            days=max_age_days,
            now=self._clock(),
        )
        result = self.aggregator.collect(query)
        items = sorted(result.items, key=lambda item: item.published_at, reverse=True)
        title = next((item.channel_title for item in items if item.channel_title), None)
        return ChannelUploads(title, [to_stored_video(item) for item in items])

    def plan_sync(self, collection_id: str | None = None) -> list[SyncPlan]:
        """
        Channels a sync would visit, with the lookback each one needs.

        Raises:
            CollectionNotFoundError: if ``collection_id`` is given and unknown
        """
        return self._plan(self.store.load(), collection_id)

    def sync(
        self,
        collection_id: str | None = None,
        on_result: Callable[[ChannelSyncResult], None] | None = None,
    ) -> list[ChannelSyncResult]:
        """
        Re-read every channel (or one collection's channels) and merge uploads.

        A failing channel is recorded in its result and never stops the sync.
        The store is saved once, after the last channel.

        Raises:
            CollectionNotFoundError: if ``collection_id`` is given and unknown
        """
        with self._lock:
            snapshot = self.store.load()
            plans = self._plan(snapshot, collection_id)
            logger.info(f"Syncing {len(plans)} channels")

            results: list[ChannelSyncResult] = []
            failures = 0
            for plan in plans:
                collection = snapshot.find_collection(plan.collection_id)
                channel = _find_channel(collection, plan.channel_id)
                try:
                    result = self._sync_channel(channel, plan)
                except Exception as e:
                    failures += 1
                    if failures <= MAX_LOGGED_SYNC_FAILURES:
                        logger.warning(f"Failed to sync {plan.handle}: {e}")
                    result = ChannelSyncResult(plan, error=str(e) or type(e).__name__)
                results.append(result)
                if on_result is not None:
                    on_result(result)

            if plans:
                self.store.save(snapshot)

        synced = sum(result.ok for result in results)
        logger.info(f"Sync finished: {synced} channels synced, {failures} failed")
        return results

    def _sync_channel(self, channel: StoredChannel, plan: SyncPlan) -> ChannelSyncResult:
        uploads = self.fetch_uploads(channel.handle or channel.id, plan.max_age_days)
        merged = merge_videos(channel.videos, uploads.videos)
        added = len(merged) - len(channel.videos)
        channel.videos = merged
        channel.title = uploads.title or channel.title
        channel.last_updated = self._clock()
        logger.debug(
            f"{plan.handle}: {len(uploads.videos)} fetched, {len(merged)} stored ({added:+d})"
        )
        return ChannelSyncResult(
            plan, fetched=len(uploads.videos), total=len(merged), added=added
        )

    def _plan(self, snapshot: CatalogSnapshot, collection_id: str | None) -> list[SyncPlan]:
        if collection_id is not None:
            collections = [self._require_collection(snapshot, collection_id)]
        else:
            collections = snapshot.collections

        now = self._clock()
        plans = []
        for collection in collections:
            for channel in collection.channels:
                oldest, max_age_days = resync_window_days(channel, now)
                plans.append(
                    SyncPlan(
                        collection_id=collection.id,
                        collection_name=collection.name,
                        channel_id=channel.id,
                        handle=channel.handle or channel.id,
                        video_count=len(channel.videos),
                        oldest_days=oldest,
                        max_age_days=max_age_days,
                    )
                )
        return plans

    @staticmethod
    def _require_collection(snapshot: CatalogSnapshot, collection_id: str) -> Collection:
        collection = snapshot.find_collection(collection_id)
        if collection is None:
            raise CollectionNotFoundError(f"Collection not found: {collection_id}")
        return collection
