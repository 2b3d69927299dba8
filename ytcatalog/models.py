"""
Core data models for the catalog engine.

Using Pydantic for validation and serialization.
"""

from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ItemSummary(BaseModel):
    """Metadata for a single video, as produced by an item source."""

    model_config = ConfigDict(frozen=True)

    video_id: str = Field(..., description="Video identifier")
    title: str = Field(default="", description="Video title")
    channel_id: str = Field(..., description="Owning channel identifier")
    channel_title: str = Field(default="", description="Owning channel title")
    views: int = Field(default=0, ge=0, description="View count used for ranking")
    published_at: datetime = Field(..., description="Publish timestamp (UTC)")
    thumbnail_url: str = Field(default="about:blank", description="Best available thumbnail")
    duration_seconds: int | None = Field(default=None, ge=0, description="Length, if known")
    is_short: bool = Field(default=False, description="Vertical short-form upload")
    is_stream: bool = Field(default=False, description="Live or past live broadcast")

    @field_validator("published_at")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        """Treat naive timestamps as UTC."""
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class VideoDetails(BaseModel):
    """Enrichment payload written back onto a stored video."""

    publish_date: str | None = None
    description: str | None = None


class ChannelQuery(BaseModel):
    """Top-N query against a single channel."""

    model_config = ConfigDict(frozen=True)

    channel_id: str = Field(..., min_length=1)
    top: int = Field(..., ge=1, description="Number of videos to keep")
    days: int = Field(..., ge=1, description="Lookback window in days")
    now: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def cutoff(self) -> datetime:
        """Publish-date threshold below which videos are excluded."""
        return self.now - timedelta(days=self.days)

    @property
    def cache_key(self) -> str:
        """Every parameter that changes the ranked result is part of the key."""
        return (
            f"channel:{self.channel_id}:cutoff:{self.cutoff:%Y%m%d}"
            f":top:{self.top}:days:{self.days}"
        )


class CatalogQueryRequest(BaseModel):
    """Multi-channel query as accepted by the query entry point."""

    channel_ids: list[str] = Field(..., min_length=1)
    top: int = Field(default=10, ge=1)
    days: int = Field(default=30, ge=1)

    @field_validator("channel_ids")
    @classmethod
    def strip_channel_ids(cls, value: list[str]) -> list[str]:
        cleaned = [channel_id.strip() for channel_id in value if channel_id.strip()]
        if not cleaned:
            raise ValueError("At least one channel id is required")
        return cleaned

    def channel_queries(self, now: datetime | None = None) -> list[ChannelQuery]:
        """One query per distinct channel, in request order."""
        now = now or datetime.now(UTC)
        queries: list[ChannelQuery] = []
        seen: set[str] = set()
        for channel_id in self.channel_ids:
            if channel_id in seen:
                continue
            seen.add(channel_id)
            queries.append(
                ChannelQuery(channel_id=channel_id, top=self.top, days=self.days, now=now)
            )
        return queries


class PerChannelStatus(BaseModel):
    """Outcome of one channel within a multi-channel query."""

    channel_id: str
    success: bool
    message: str | None = None
    item_count: int = 0


class AggregateResult(BaseModel):
    """Globally ranked result of a multi-channel query."""

    videos: list[ItemSummary] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    partial: bool = False
    per_channel_status: list[PerChannelStatus] = Field(default_factory=list)


class JobStatus(str, Enum):
    """Lifecycle of an enrichment job."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    HALTED = "halted"


class EnrichmentJob(BaseModel):
    """Progress of a background enrichment pass over one collection."""

    collection_id: str
    status: JobStatus = JobStatus.RUNNING
    total: int = 0
    enriched: int = 0
    failed: int = 0
    skipped: int = 0
    rate_limited: bool = False
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    error: str | None = None

    @property
    def is_running(self) -> bool:
        return self.status == JobStatus.RUNNING


class StartEnrichmentResult(BaseModel):
    """Response of a start-enrichment request."""

    started: bool
    message: str | None = None
    job: EnrichmentJob


class EnrichmentStatus(BaseModel):
    """Job progress merged with collection-level statistics."""

    status: JobStatus = JobStatus.IDLE
    total: int = 0
    enriched: int = 0
    skipped: int = 0
    failed: int = 0
    rate_limited: bool = False
    all_enriched: bool = False
    total_videos: int = 0
    enriched_videos: int = 0
    shorts_count: int = 0


class StoredVideo(BaseModel):
    """A video as persisted inside a collection."""

    video_id: str
    title: str | None = None
    view_count: str | None = None
    published_time: str | None = None
    duration: str | None = None
    is_short: bool = False
    is_stream: bool = False

    # Populated by enrichment
    publish_date: str | None = None
    description: str | None = None

    @property
    def is_enriched(self) -> bool:
        return bool(self.publish_date or self.description)


class StoredChannel(BaseModel):
    """A channel tracked inside a collection."""

    id: str
    handle: str = ""
    title: str | None = None
    added_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_updated: datetime | None = None
    videos: list[StoredVideo] = Field(default_factory=list)


class Collection(BaseModel):
    """Named group of channels."""

    id: str
    name: str
    channels: list[StoredChannel] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def video_count(self) -> int:
        return sum(len(channel.videos) for channel in self.channels)


class CatalogSnapshot(BaseModel):
    """Everything the persistence layer loads and saves."""

    collections: list[Collection] = Field(default_factory=list)

    # Legacy layout, migrated into a default collection on load
    channels: list[StoredChannel] | None = None

    def find_collection(self, collection_id: str) -> Collection | None:
        for collection in self.collections:
            if collection.id == collection_id:
                return collection
        return None


class WorkItemRef(NamedTuple):
    """Locator for a stored video inside a loaded snapshot."""

    collection_id: str
    channel_index: int
    video_index: int
    video_id: str
