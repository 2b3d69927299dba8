"""
Per-channel top-N walk with a publish-date cutoff.

Video ids arrive newest first. Metadata fetches run concurrently through a
``BoundedPool`` and complete in any order, so a past-cutoff result only stops
new submissions: everything already in flight is still awaited and collected.
Worst case, up to ``max_in_flight`` fetches land past the cutoff (the first
one that reveals it plus whatever was in flight alongside it).
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from concurrent.futures import Future
from datetime import datetime
from time import perf_counter
from typing import NamedTuple

from ytcatalog.ingest.base import ItemSource
from ytcatalog.logging_config import get_logger
from ytcatalog.models import ChannelQuery, ItemSummary
from ytcatalog.storage.cache import TTLCache, make_video_key

from .pool import BoundedPool

logger = get_logger("aggregator")

DEFAULT_MAX_IN_FLIGHT = 6
DEFAULT_VIDEO_TTL_SECONDS = 60 * 60 * 6


class QueryCancelled(Exception):
    """Cancellation was observed before the channel walk finished."""


class FetchOutcome(NamedTuple):
    """Result of resolving one video id."""

    video_id: str
    item: ItemSummary | None
    past_cutoff: bool = False
    from_cache: bool = False
    error: str | None = None


class AggregationResult(NamedTuple):
    """Ranked videos for one channel plus walk diagnostics."""

    channel_id: str
    items: list[ItemSummary]
    submitted: int
    cache_hits: int
    failures: int
    hit_cutoff: bool
    duration_ms: float


def rank_items(items: Iterable[ItemSummary], top: int) -> list[ItemSummary]:
    """Sort by views descending and keep the first ``top``.

    Ties fall back to newest first, then video id, so identical inputs always
    rank identically regardless of fetch completion order.
    """
    ordered = sorted(
        items,
        key=lambda item: (-item.views, -item.published_at.timestamp(), item.video_id),
    )
    return ordered[:top]


class CutoffAggregator:
    """Fetches just enough metadata to rank a channel's recent videos."""

    def __init__(
        self,
        source: ItemSource,
        video_cache: TTLCache[ItemSummary],
        max_in_flight: int = DEFAULT_MAX_IN_FLIGHT,
        video_ttl_seconds: float = DEFAULT_VIDEO_TTL_SECONDS,
    ):
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        self.source = source
        self.video_cache = video_cache
        self.max_in_flight = max_in_flight
        self.video_ttl_seconds = video_ttl_seconds

    def collect(
        self,
        query: ChannelQuery,
        cancel_event: threading.Event | None = None,
    ) -> AggregationResult:
        """
        Walk a channel's uploads and return its top videos inside the window.

        Args:
            query: Channel, top-N and lookback window
            cancel_event: Set by the caller to stop issuing new fetches

        Returns:
            AggregationResult with at most ``query.top`` ranked items

        Raises:
            QueryCancelled: if ``cancel_event`` was set before the walk finished
            SourceError: if the channel's upload list cannot be read
        """
        started = perf_counter()
        cutoff = query.cutoff
        collected: list[ItemSummary] = []
        cache_hits = 0
        failures = 0
        hit_cutoff = False

        def absorb(futures: list[Future]) -> bool:
            nonlocal cache_hits, failures
            crossed = False
            for future in futures:
                outcome: FetchOutcome = future.result()
                cache_hits += outcome.from_cache
                if outcome.error is not None:
                    failures += 1
                elif outcome.past_cutoff:
                    crossed = True
                elif outcome.item is not None:
                    collected.append(outcome.item)
            return crossed

        video_ids = iter(self.source.list_recent_item_ids(query.channel_id))
        try:
            with BoundedPool(self.max_in_flight, name=f"meta-{query.channel_id}") as pool:
                for video_id in video_ids:
                    if not video_id:
                        continue
                    if not pool.reserve(cancel_event):
                        raise QueryCancelled(query.channel_id)

                    # Evaluate completions only after a slot is held, so a
                    # result that freed the slot is seen before we submit.
                    if absorb(pool.drain_completed()):
                        pool.release()
                        hit_cutoff = True
                        logger.debug(
                            f"{query.channel_id}: hit date cutoff after queueing "
                            f"{pool.submitted} videos"
                        )
                        break

                    pool.submit(self._resolve, video_id, cutoff)

                if cancel_event is not None and cancel_event.is_set():
                    raise QueryCancelled(query.channel_id)

                # Never cancel in-flight work; late results newer than the
                # cutoff are still valid, late past-cutoff ones add nothing.
                hit_cutoff = absorb(pool.drain_all()) or hit_cutoff
                submitted = pool.submitted
        finally:
            close = getattr(video_ids, "close", None)
            if close is not None:
                close()

        items = rank_items(collected, query.top)
        duration_ms = (perf_counter() - started) * 1000
        logger.info(
            f"Fetched {len(collected)} videos within {query.days} days for channel "
            f"{query.channel_id} in {duration_ms:.0f} ms "
            f"({submitted} submitted, {cache_hits} cached, {failures} failed)"
        )
        return AggregationResult(
            channel_id=query.channel_id,
            items=items,
            submitted=submitted,
            cache_hits=cache_hits,
            failures=failures,
            hit_cutoff=hit_cutoff,
            duration_ms=duration_ms,
        )

    def _resolve(self, video_id: str, cutoff: datetime) -> FetchOutcome:
        """Cache first, then the source; classify against the cutoff."""
        cache_key = make_video_key(video_id)
        cached = self.video_cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Using cached metadata for video {video_id}")
            if cached.published_at < cutoff:
                return FetchOutcome(video_id, None, past_cutoff=True, from_cache=True)
            return FetchOutcome(video_id, cached, from_cache=True)

        try:
            item = self.source.fetch_item_metadata(video_id)
        except Exception as e:
            logger.warning(f"Failed to fetch metadata for video {video_id}: {e}")
            return FetchOutcome(video_id, None, error=str(e))

        self.video_cache.set(cache_key, item, self.video_ttl_seconds)
        if item.published_at < cutoff:
            logger.debug(f"Video {video_id} is before cutoff {cutoff:%Y-%m-%d}")
            return FetchOutcome(video_id, None, past_cutoff=True)
        return FetchOutcome(video_id, item)
