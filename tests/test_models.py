"""Tests for query and store models."""

from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from ytcatalog.models import (
    CatalogQueryRequest,
    CatalogSnapshot,
    ChannelQuery,
    Collection,
    EnrichmentJob,
    ItemSummary,
    JobStatus,
    StoredChannel,
    StoredVideo,
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


class TestChannelQuery:
    def test_cutoff_is_now_minus_days(self):
        query = ChannelQuery(channel_id="UC1", top=5, days=7, now=NOW)

        assert query.cutoff == NOW - timedelta(days=7)

    def test_cache_key_includes_every_parameter(self):
        query = ChannelQuery(channel_id="UC1", top=5, days=7, now=NOW)

        assert query.cache_key == "channel:UC1:cutoff:20240608:top:5:days:7"

    def test_cache_key_changes_with_top(self):
        a = ChannelQuery(channel_id="UC1", top=5, days=7, now=NOW)
        b = ChannelQuery(channel_id="UC1", top=6, days=7, now=NOW)

        assert a.cache_key != b.cache_key

    def test_cache_key_stable_within_a_day(self):
        a = ChannelQuery(channel_id="UC1", top=5, days=7, now=NOW)
        b = ChannelQuery(channel_id="UC1", top=5, days=7, now=NOW + timedelta(hours=3))

        assert a.cache_key == b.cache_key

    @pytest.mark.parametrize("field", ["top", "days"])
    def test_rejects_non_positive(self, field):
        values = {"channel_id": "UC1", "top": 5, "days": 7, field: 0}

        with pytest.raises(ValidationError):
            ChannelQuery(**values)


class TestCatalogQueryRequest:
    def test_defaults(self):
        request = CatalogQueryRequest(channel_ids=["UC1"])

        assert request.top == 10
        assert request.days == 30

    def test_channel_queries_dedupe_in_order(self):
        request = CatalogQueryRequest(channel_ids=["UC2", " UC1 ", "UC2", ""], top=3, days=1)

        queries = request.channel_queries(now=NOW)

        assert [query.channel_id for query in queries] == ["UC2", "UC1"]
        assert all(query.now == NOW and query.top == 3 for query in queries)

    def test_requires_a_channel(self):
        with pytest.raises(ValidationError):
            CatalogQueryRequest(channel_ids=["  "])


class TestItemSummary:
    def test_naive_timestamp_treated_as_utc(self):
        item = ItemSummary(
            video_id="v1", channel_id="UC1", published_at=datetime(2024, 1, 1, 8, 0)
        )

        assert item.published_at.tzinfo is not None
        assert item.published_at.hour == 8

    def test_offset_timestamp_normalised(self):
        eastern = timezone(timedelta(hours=-5))
        item = ItemSummary(
            video_id="v1",
            channel_id="UC1",
            published_at=datetime(2024, 1, 1, 8, 0, tzinfo=eastern),
        )

        assert item.published_at == datetime(2024, 1, 1, 13, 0, tzinfo=UTC)

    def test_thumbnail_placeholder(self):
        item = ItemSummary(video_id="v1", channel_id="UC1", published_at=NOW)

        assert item.thumbnail_url == "about:blank"


class TestStoreModels:
    def test_is_enriched(self):
        assert not StoredVideo(video_id="v1").is_enriched
        assert StoredVideo(video_id="v1", publish_date="2024-01-01").is_enriched
        assert StoredVideo(video_id="v1", description="hello").is_enriched

    def test_find_collection(self):
        collection = Collection(
            id="c1",
            name="Main",
            channels=[StoredChannel(id="UC1", videos=[StoredVideo(video_id="v1")])],
        )
        snapshot = CatalogSnapshot(collections=[collection])

        assert snapshot.find_collection("c1") is collection
        assert snapshot.find_collection("missing") is None
        assert collection.video_count == 1

    def test_job_is_running(self):
        assert EnrichmentJob(collection_id="c1").is_running
        assert not EnrichmentJob(collection_id="c1", status=JobStatus.HALTED).is_running
