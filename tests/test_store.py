"""Tests for catalog persistence."""

import json

import pytest

from ytcatalog.models import CatalogSnapshot, Collection, StoredChannel, StoredVideo
from ytcatalog.storage.store import (
    InMemoryCatalogStore,
    JsonCatalogStore,
    migrate_legacy_snapshot,
)


def sample_snapshot() -> CatalogSnapshot:
    channel = StoredChannel(
        id="UC1",
        handle="@science",
        videos=[StoredVideo(video_id="v1", title="First", view_count="1.2K views")],
    )
    return CatalogSnapshot(collections=[Collection(id="c1", name="Main", channels=[channel])])


class TestJsonCatalogStore:
    @pytest.fixture
    def store(self, tmp_path):
        return JsonCatalogStore(tmp_path / "data" / "catalog.json")

    def test_missing_file_is_empty(self, store):
        assert store.load().collections == []

    def test_save_then_load(self, store):
        store.save(sample_snapshot())

        loaded = store.load()

        collection = loaded.find_collection("c1")
        assert collection.name == "Main"
        assert collection.channels[0].handle == "@science"
        assert collection.channels[0].videos[0].title == "First"

    def test_save_omits_unset_fields(self, store):
        store.save(sample_snapshot())

        raw = json.loads(store.path.read_text())

        assert "channels" not in raw
        assert "description" not in raw["collections"][0]["channels"][0]["videos"][0]

    def test_save_leaves_no_temp_files(self, store):
        store.save(sample_snapshot())
        store.save(sample_snapshot())

        assert [path.name for path in store.path.parent.iterdir()] == ["catalog.json"]

    def test_corrupt_file_is_empty(self, store):
        store.path.write_text("{not json")

        assert store.load().collections == []

    def test_invalid_shape_is_empty(self, store):
        store.path.write_text(json.dumps({"collections": [{"name": "no id"}]}))

        assert store.load().collections == []

    def test_legacy_channels_migrated_and_saved(self, store):
        store.path.write_text(
            json.dumps({"channels": [{"id": "UC1", "videos": [{"video_id": "v1"}]}]})
        )

        loaded = store.load()

        assert len(loaded.collections) == 1
        assert loaded.collections[0].name == "Default"
        assert loaded.collections[0].channels[0].id == "UC1"
        assert loaded.channels is None

        raw = json.loads(store.path.read_text())
        assert "channels" not in raw
        assert raw["collections"][0]["name"] == "Default"


class TestMigrateLegacySnapshot:
    def test_no_legacy_data(self):
        assert not migrate_legacy_snapshot(sample_snapshot())

    def test_existing_collections_win(self):
        snapshot = sample_snapshot()
        snapshot.channels = [StoredChannel(id="UC_OLD")]

        assert migrate_legacy_snapshot(snapshot)
        assert [collection.id for collection in snapshot.collections] == ["c1"]
        assert snapshot.channels is None


class TestInMemoryCatalogStore:
    def test_counts_saves(self):
        store = InMemoryCatalogStore(sample_snapshot())

        store.save(store.load())
        store.save(store.load())

        assert store.save_count == 2
        assert store.load().find_collection("c1") is not None
