"""Tests for the command line interface."""

from datetime import UTC, datetime, timedelta

import pytest
from typer.testing import CliRunner

from ytcatalog import __version__, cli, config
from ytcatalog.cli import app
from ytcatalog.models import CatalogSnapshot, Collection, ItemSummary, StoredChannel, StoredVideo
from ytcatalog.storage.store import JsonCatalogStore

runner = CliRunner()


class ChannelSource:
    """One channel with a regular upload and a short."""

    def __init__(self):
        now = datetime.now(UTC)
        self.items = {
            "v1": ItemSummary(
                video_id="v1",
                channel_id="UC1",
                channel_title="Science",
                views=10,
                published_at=now - timedelta(days=1),
                duration_seconds=300,
            ),
            "v2": ItemSummary(
                video_id="v2",
                channel_id="UC1",
                channel_title="Science",
                views=20,
                published_at=now - timedelta(days=2),
                duration_seconds=30,
                is_short=True,
            ),
        }
        self.closed = False

    def list_recent_item_ids(self, channel_id):
        return iter(self.items)

    def fetch_item_metadata(self, video_id):
        return self.items[video_id]

    def fetch_item_details(self, video_id):
        raise NotImplementedError

    def close(self):
        self.closed = True


@pytest.fixture
def settings(tmp_path, monkeypatch):
    monkeypatch.setenv("CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("YOUTUBE_API_KEY", raising=False)
    monkeypatch.setattr(config, "_settings", None)
    monkeypatch.chdir(tmp_path)
    return config.get_settings()


def test_version() -> None:
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_query_without_channels(settings) -> None:
    result = runner.invoke(app, ["query"])

    assert result.exit_code == 1
    assert "No channels given" in result.output


def test_query_without_api_key(settings) -> None:
    result = runner.invoke(app, ["query", "UC1"])

    assert result.exit_code == 1
    assert "YOUTUBE_API_KEY" in result.output


def test_collections_lists_store(settings) -> None:
    JsonCatalogStore(settings.store_path).save(
        CatalogSnapshot(
            collections=[
                Collection(
                    id="c1",
                    name="Main",
                    channels=[StoredChannel(id="UC1", videos=[StoredVideo(video_id="v1")])],
                )
            ]
        )
    )

    result = runner.invoke(app, ["collections"])

    assert result.exit_code == 0
    assert "Main" in result.output


def test_status_unknown_collection(settings) -> None:
    result = runner.invoke(app, ["status", "missing"])

    assert result.exit_code == 1
    assert "Collection not found" in result.output


def test_status_json(settings) -> None:
    JsonCatalogStore(settings.store_path).save(
        CatalogSnapshot(
            collections=[
                Collection(
                    id="c1",
                    name="Main",
                    channels=[
                        StoredChannel(
                            id="UC1",
                            videos=[
                                StoredVideo(video_id="v1", description="done"),
                                StoredVideo(video_id="v2"),
                                StoredVideo(video_id="v3", is_short=True),
                            ],
                        )
                    ],
                )
            ]
        )
    )

    result = runner.invoke(app, ["status", "c1", "--json"])

    assert result.exit_code == 0
    assert '"total_videos": 2' in result.output
    assert '"enriched_videos": 1' in result.output
    assert '"status": "idle"' in result.output


def saved_collections(settings) -> list[Collection]:
    return JsonCatalogStore(settings.store_path).load().collections


def test_create_collection(settings) -> None:
    result = runner.invoke(app, ["create-collection", "Space"])

    assert result.exit_code == 0
    assert "Created" in result.output
    assert [c.name for c in saved_collections(settings)] == ["Space"]


def test_create_collection_rejects_blank_name(settings) -> None:
    result = runner.invoke(app, ["create-collection", "  "])

    assert result.exit_code == 1
    assert "Name is required" in result.output


def test_rename_and_delete_collection(settings) -> None:
    runner.invoke(app, ["create-collection", "Space"])
    collection_id = saved_collections(settings)[0].id

    renamed = runner.invoke(app, ["rename-collection", collection_id, "Rockets"])
    deleted = runner.invoke(app, ["delete-collection", collection_id, "--yes"])

    assert renamed.exit_code == 0
    assert "Rockets" in renamed.output
    assert deleted.exit_code == 0
    assert saved_collections(settings) == []


def test_add_channel_without_api_key(settings) -> None:
    runner.invoke(app, ["create-collection", "Space"])
    collection_id = saved_collections(settings)[0].id

    result = runner.invoke(app, ["add-channel", collection_id, "@science"])

    assert result.exit_code == 1
    assert "YOUTUBE_API_KEY" in result.output


def test_add_channel_stores_uploads(settings, monkeypatch) -> None:
    source = ChannelSource()
    monkeypatch.setattr(cli, "_build_source", lambda _settings: source)
    runner.invoke(app, ["create-collection", "Space"])
    collection_id = saved_collections(settings)[0].id

    result = runner.invoke(app, ["add-channel", collection_id, "science"])

    assert result.exit_code == 0
    assert "1 videos, 1 shorts" in result.output
    assert source.closed
    channel = saved_collections(settings)[0].channels[0]
    assert channel.handle == "@science"
    assert [(v.video_id, v.is_short) for v in channel.videos] == [("v1", False), ("v2", True)]

    listing = runner.invoke(app, ["channels", collection_id])
    assert listing.exit_code == 0
    assert "@science" in listing.output


def test_add_channel_to_unknown_collection(settings, monkeypatch) -> None:
    monkeypatch.setattr(cli, "_build_source", lambda _settings: ChannelSource())

    result = runner.invoke(app, ["add-channel", "missing", "@science"])

    assert result.exit_code == 1
    assert "Collection not found" in result.output


def test_remove_channel(settings) -> None:
    JsonCatalogStore(settings.store_path).save(
        CatalogSnapshot(
            collections=[
                Collection(
                    id="c1", name="Main", channels=[StoredChannel(id="ch1", handle="@science")]
                )
            ]
        )
    )

    result = runner.invoke(app, ["remove-channel", "c1", "@science"])
    missing = runner.invoke(app, ["remove-channel", "c1", "@science"])

    assert result.exit_code == 0
    assert saved_collections(settings)[0].channels == []
    assert missing.exit_code == 1
    assert "Channel not found" in missing.output


def test_refresh_dry_run(settings) -> None:
    JsonCatalogStore(settings.store_path).save(
        CatalogSnapshot(
            collections=[
                Collection(
                    id="c1",
                    name="Main",
                    channels=[StoredChannel(id="ch1", handle="@science", videos=[])],
                )
            ]
        )
    )

    result = runner.invoke(app, ["refresh", "--dry-run"])

    assert result.exit_code == 0
    assert "@science" in result.output
    assert "30d" in result.output


def test_refresh_syncs_stored_channels(settings, monkeypatch) -> None:
    source = ChannelSource()
    monkeypatch.setattr(cli, "_build_source", lambda _settings: source)
    JsonCatalogStore(settings.store_path).save(
        CatalogSnapshot(
            collections=[
                Collection(
                    id="c1",
                    name="Main",
                    channels=[
                        StoredChannel(
                            id="ch1",
                            handle="@science",
                            videos=[StoredVideo(video_id="v1", description="kept")],
                        )
                    ],
                )
            ]
        )
    )

    result = runner.invoke(app, ["refresh", "--collection", "c1"])

    assert result.exit_code == 0
    assert "Refreshed:" in result.output
    videos = saved_collections(settings)[0].channels[0].videos
    assert [video.video_id for video in videos] == ["v1", "v2"]
    assert videos[0].description == "kept"
    assert source.closed


def test_refresh_unknown_collection(settings) -> None:
    result = runner.invoke(app, ["refresh", "--collection", "missing", "--dry-run"])

    assert result.exit_code == 1
    assert "Collection not found" in result.output
