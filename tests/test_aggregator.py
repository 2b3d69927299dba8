"""Tests for the per-channel cutoff aggregator."""

import threading
import time
from datetime import UTC, datetime, timedelta

import pytest

from ytcatalog.engine.aggregator import CutoffAggregator, QueryCancelled, rank_items
from ytcatalog.ingest.base import NotFoundError, TransientError
from ytcatalog.models import ChannelQuery, ItemSummary, VideoDetails
from ytcatalog.storage.cache import TTLCache, make_video_key

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


def make_item(index: int, views: int | None = None, channel_id: str = "UC1") -> ItemSummary:
    """Video ``index`` days (plus an hour) old; views differ so ranking is strict."""
    return ItemSummary(
        video_id=f"{channel_id}-v{index}",
        title=f"Video {index}",
        channel_id=channel_id,
        views=views if views is not None else (index * 37) % 101 + index,
        published_at=NOW - timedelta(days=index, hours=1),
    )


class FakeSource:
    """Newest-first channel listing with a thread-safe fetch counter."""

    def __init__(
        self,
        items,
        delay: float = 0.0,
        failing: set[str] | None = None,
        delays: dict[str, float] | None = None,
    ):
        self.items = {item.video_id: item for item in items}
        self.order = [item.video_id for item in items]
        self.delay = delay
        self.delays = delays or {}
        self.failing = failing or set()
        self.fetched: list[str] = []
        self.closed = False
        self._lock = threading.Lock()

    @property
    def fetch_count(self) -> int:
        with self._lock:
            return len(self.fetched)

    def list_recent_item_ids(self, channel_id):
        try:
            yield from self.order
        finally:
            self.closed = True

    def fetch_item_metadata(self, video_id):
        with self._lock:
            self.fetched.append(video_id)
        delay = self.delays.get(video_id, self.delay)
        if delay:
            time.sleep(delay)
        if video_id in self.failing:
            raise TransientError(f"boom {video_id}")
        return self.items[video_id]

    def fetch_item_details(self, video_id):
        return VideoDetails()


@pytest.fixture
def cache():
    return TTLCache("video", default_ttl_seconds=3600)


def query(top: int = 50, days: int = 7) -> ChannelQuery:
    return ChannelQuery(channel_id="UC1", top=top, days=days, now=NOW)


class TestRankItems:
    def test_sorted_by_views_and_truncated(self):
        items = [make_item(0, views=5), make_item(1, views=50), make_item(2, views=20)]

        ranked = rank_items(items, top=2)

        assert [item.views for item in ranked] == [50, 20]

    def test_ties_prefer_newer(self):
        older = make_item(3, views=10)
        newer = make_item(1, views=10)

        assert rank_items([older, newer], top=2) == [newer, older]


class TestCutoffAggregator:
    def test_collects_exactly_the_window(self, cache):
        source = FakeSource([make_item(i) for i in range(30)])
        aggregator = CutoffAggregator(source, cache, max_in_flight=3)

        result = aggregator.collect(query(days=7))

        # Videos 0..6 are inside a 7 day window, video 7 is not
        assert sorted(item.video_id for item in result.items) == sorted(
            f"UC1-v{i}" for i in range(7)
        )
        assert result.hit_cutoff

    @pytest.mark.parametrize("limit", [1, 3, 6])
    def test_fetches_bounded_past_the_cutoff(self, cache, limit):
        source = FakeSource([make_item(i) for i in range(40)], delay=0.002)
        aggregator = CutoffAggregator(source, cache, max_in_flight=limit)

        aggregator.collect(query(days=7))

        # 7 in-window videos, plus at most one past-cutoff fetch per slot
        assert 8 <= source.fetch_count <= 7 + limit

    def test_slow_recent_item_survives_fast_stop(self, cache):
        def aged(index: int, age: timedelta) -> ItemSummary:
            return ItemSummary(
                video_id=f"v{index}",
                channel_id="UC1",
                views=100 - index,
                published_at=NOW - age,
            )

        items = [aged(0, timedelta(hours=1)), aged(1, timedelta(hours=2))]
        items += [aged(i, timedelta(days=10 + i)) for i in range(2, 12)]
        # v0 is still in flight when the past-cutoff v2 completes
        source = FakeSource(items, delays={"v0": 0.2})
        aggregator = CutoffAggregator(source, cache, max_in_flight=4)

        result = aggregator.collect(query(days=7))

        assert {item.video_id for item in result.items} == {"v0", "v1"}
        assert result.hit_cutoff
        assert source.fetch_count <= 2 + 4

    def test_ranked_and_truncated_to_top(self, cache):
        items = [make_item(i) for i in range(10)]
        source = FakeSource(items)
        aggregator = CutoffAggregator(source, cache, max_in_flight=4)

        result = aggregator.collect(query(top=3, days=7))

        expected = sorted(items[:7], key=lambda item: -item.views)[:3]
        assert result.items == expected

    def test_failed_fetch_is_skipped(self, cache):
        source = FakeSource([make_item(i) for i in range(10)], failing={"UC1-v2"})
        aggregator = CutoffAggregator(source, cache, max_in_flight=2)

        result = aggregator.collect(query(days=7))

        assert "UC1-v2" not in {item.video_id for item in result.items}
        assert len(result.items) == 6
        assert result.failures == 1

    def test_every_fetch_failing_yields_empty(self, cache):
        items = [make_item(i) for i in range(5)]
        source = FakeSource(items, failing={item.video_id for item in items})
        aggregator = CutoffAggregator(source, cache, max_in_flight=2)

        result = aggregator.collect(query(days=7))

        assert result.items == []
        assert result.failures == 5
        assert not result.hit_cutoff

    def test_fetched_items_are_cached(self, cache):
        source = FakeSource([make_item(i) for i in range(10)])
        aggregator = CutoffAggregator(source, cache, max_in_flight=2)

        aggregator.collect(query(days=7))

        assert cache.get(make_video_key("UC1-v0")) == make_item(0)

    def test_cached_items_are_not_refetched(self, cache):
        items = [make_item(i) for i in range(20)]
        for item in items:
            cache.set(make_video_key(item.video_id), item)
        source = FakeSource(items)
        aggregator = CutoffAggregator(source, cache, max_in_flight=3)

        result = aggregator.collect(query(days=7))

        assert source.fetch_count == 0
        assert len(result.items) == 7
        assert result.hit_cutoff
        assert result.cache_hits >= 8

    def test_listing_closed_after_early_stop(self, cache):
        source = FakeSource([make_item(i) for i in range(50)])
        aggregator = CutoffAggregator(source, cache, max_in_flight=2)

        aggregator.collect(query(days=3))

        assert source.closed

    def test_empty_channel(self, cache):
        aggregator = CutoffAggregator(FakeSource([]), cache)

        result = aggregator.collect(query())

        assert result.items == []
        assert result.submitted == 0
        assert not result.hit_cutoff

    def test_listing_error_propagates(self, cache):
        class MissingChannel(FakeSource):
            def list_recent_item_ids(self, channel_id):
                raise NotFoundError(f"Channel not found: {channel_id}")
                yield  # pragma: no cover

        aggregator = CutoffAggregator(MissingChannel([]), cache)

        with pytest.raises(NotFoundError):
            aggregator.collect(query())

    def test_preset_cancel_raises(self, cache):
        source = FakeSource([make_item(i) for i in range(10)])
        aggregator = CutoffAggregator(source, cache)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(QueryCancelled):
            aggregator.collect(query(), cancel_event=cancel)

        assert source.fetch_count == 0
        assert source.closed

    def test_rejects_zero_in_flight(self, cache):
        with pytest.raises(ValueError):
            CutoffAggregator(FakeSource([]), cache, max_in_flight=0)
