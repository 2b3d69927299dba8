"""
Multi-channel query orchestration.

Each channel is walked by the ``CutoffAggregator`` on its own thread, with a
separate outer limit on how many channels run at once. A failing channel is
reported in its ``PerChannelStatus`` and never fails the whole query.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import UTC, datetime

from ytcatalog.config import Settings
from ytcatalog.ingest.base import ItemSource
from ytcatalog.logging_config import get_logger
from ytcatalog.models import (
    AggregateResult,
    CatalogQueryRequest,
    ChannelQuery,
    ItemSummary,
    PerChannelStatus,
)
from ytcatalog.storage.cache import TTLCache

from .aggregator import DEFAULT_VIDEO_TTL_SECONDS, CutoffAggregator, QueryCancelled, rank_items

logger = get_logger("orchestrator")

DEFAULT_CHANNEL_CONCURRENCY = 4
DEFAULT_QUERY_TTL_SECONDS = 60 * 5

# How often the orchestrator re-checks cancellation and deadlines
WAIT_POLL_SECONDS = 0.05

CANCELED_MESSAGE = "Canceled"
TIMED_OUT_MESSAGE = "Timed out"


class CatalogService:
    """Query entry point: top videos across several channels."""

    def __init__(
        self,
        source: ItemSource,
        *,
        metadata_concurrency: int = 6,
        channel_concurrency: int = DEFAULT_CHANNEL_CONCURRENCY,
        video_ttl_seconds: float = DEFAULT_VIDEO_TTL_SECONDS,
        query_ttl_seconds: float = DEFAULT_QUERY_TTL_SECONDS,
        default_timeout: float | None = None,
        video_cache: TTLCache[ItemSummary] | None = None,
        query_cache: TTLCache[list[ItemSummary]] | None = None,
    ):
        if channel_concurrency < 1:
            raise ValueError("channel_concurrency must be >= 1")
        self.source = source
        self.channel_concurrency = channel_concurrency
        self.query_ttl_seconds = query_ttl_seconds
        self.default_timeout = default_timeout
        self.video_cache: TTLCache[ItemSummary] = video_cache or TTLCache(
            "video", video_ttl_seconds
        )
        self.query_cache: TTLCache[list[ItemSummary]] = query_cache or TTLCache(
            "channel-query", query_ttl_seconds
        )
        self.aggregator = CutoffAggregator(
            source,
            self.video_cache,
            max_in_flight=metadata_concurrency,
            video_ttl_seconds=video_ttl_seconds,
        )

    @classmethod
    def from_settings(cls, settings: Settings, source: ItemSource) -> CatalogService:
        """Build a service with concurrency and TTLs taken from settings."""
        return cls(
            source,
            metadata_concurrency=settings.metadata_concurrency,
            channel_concurrency=settings.channel_concurrency,
            video_ttl_seconds=settings.video_cache_ttl_hours * 3600,
            query_ttl_seconds=settings.query_cache_ttl_minutes * 60,
            default_timeout=settings.query_timeout_seconds,
        )

    def top_for_channel(
        self,
        query: ChannelQuery,
        cancel_event: threading.Event | None = None,
    ) -> list[ItemSummary]:
        """Ranked videos for one channel, served from the query cache when fresh."""
        cached = self.query_cache.get(query.cache_key)
        if cached is not None:
            logger.debug(f"Query cache hit for {query.cache_key}")
            return cached

        result = self.aggregator.collect(query, cancel_event=cancel_event)
        self.query_cache.set(query.cache_key, result.items, self.query_ttl_seconds)
        return result.items

    def query(
        self,
        request: CatalogQueryRequest,
        cancel_event: threading.Event | None = None,
        timeout: float | None = None,
    ) -> AggregateResult:
        """
        Run every channel in the request and merge the results.

        Args:
            request: Channels plus global top-N and lookback window
            cancel_event: Set by the caller to abandon unfinished channels
            timeout: Overall deadline in seconds (defaults to the service setting)

        Returns:
            AggregateResult, ``partial`` when any channel failed or was abandoned
        """
        timeout = timeout if timeout is not None else self.default_timeout
        queries = request.channel_queries()
        logger.info(
            f"Querying {len(queries)} channels (top {request.top}, last {request.days} days)"
        )

        statuses: dict[str, PerChannelStatus] = {}
        per_channel_items: dict[str, list[ItemSummary]] = {}
        walk_cancel = threading.Event()
        deadline = time.monotonic() + timeout if timeout is not None else None
        abandon_reason: str | None = None

        executor = ThreadPoolExecutor(
            max_workers=min(self.channel_concurrency, len(queries)),
            thread_name_prefix="channel",
        )
        try:
            future_to_query: dict[Future, ChannelQuery] = {
                executor.submit(self.top_for_channel, query, walk_cancel): query
                for query in queries
            }
            pending = set(future_to_query)

            while pending:
                done, pending = wait(pending, timeout=WAIT_POLL_SECONDS, return_when=FIRST_COMPLETED)
                for future in done:
                    self._record(future, future_to_query[future], statuses, per_channel_items)

                if not pending:
                    break
                if cancel_event is not None and cancel_event.is_set():
                    abandon_reason = CANCELED_MESSAGE
                elif deadline is not None and time.monotonic() >= deadline:
                    abandon_reason = TIMED_OUT_MESSAGE
                if abandon_reason:
                    walk_cancel.set()
                    break

            if abandon_reason:
                for future in pending:
                    query = future_to_query[future]
                    if future.done() and not future.cancelled():
                        self._record(future, query, statuses, per_channel_items)
                        continue
                    future.cancel()
                    logger.warning(f"Abandoning channel {query.channel_id}: {abandon_reason}")
                    statuses[query.channel_id] = PerChannelStatus(
                        channel_id=query.channel_id, success=False, message=abandon_reason
                    )
        finally:
            # Abandoned walks see walk_cancel and wind down on their own
            executor.shutdown(wait=False, cancel_futures=True)

        merged: dict[str, ItemSummary] = {}
        for items in per_channel_items.values():
            for item in items:
                merged.setdefault(item.video_id, item)

        ordered_statuses = [statuses[query.channel_id] for query in queries]
        result = AggregateResult(
            videos=rank_items(merged.values(), request.top),
            generated_at=datetime.now(UTC),
            partial=any(not status.success for status in ordered_statuses),
            per_channel_status=ordered_statuses,
        )
        failed = sum(1 for status in ordered_statuses if not status.success)
        logger.info(
            f"Query finished: {len(result.videos)} videos, "
            f"{len(ordered_statuses) - failed}/{len(ordered_statuses)} channels ok"
        )
        return result

    def _record(
        self,
        future: Future,
        query: ChannelQuery,
        statuses: dict[str, PerChannelStatus],
        per_channel_items: dict[str, list[ItemSummary]],
    ) -> None:
        """Turn a finished channel future into a status entry."""
        channel_id = query.channel_id
        try:
            items = future.result()
        except QueryCancelled:
            statuses[channel_id] = PerChannelStatus(
                channel_id=channel_id, success=False, message=CANCELED_MESSAGE
            )
            return
        except Exception as e:
            logger.warning(f"Channel {channel_id} failed: {e}")
            statuses[channel_id] = PerChannelStatus(
                channel_id=channel_id,
                success=False,
                message=str(e) or type(e).__name__,
            )
            return

        per_channel_items[channel_id] = items
        statuses[channel_id] = PerChannelStatus(
            channel_id=channel_id, success=True, item_count=len(items)
        )
