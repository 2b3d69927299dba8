"""Tests for settings and channels.yaml loading."""

import pytest

from ytcatalog import config
from ytcatalog.config import ChannelConfig, Settings


@pytest.fixture
def isolated_dirs(tmp_path, monkeypatch):
    monkeypatch.setenv("CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    return tmp_path


def test_settings_defaults(isolated_dirs, monkeypatch) -> None:
    """Defaults should match the documented engine defaults."""
    for name in (
        "METADATA_CONCURRENCY",
        "CHANNEL_CONCURRENCY",
        "VIDEO_CACHE_TTL_HOURS",
        "QUERY_CACHE_TTL_MINUTES",
        "ENRICH_CONCURRENCY",
        "ENRICH_DELAY_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.metadata_concurrency == 6
    assert settings.channel_concurrency == 4
    assert settings.video_cache_ttl_hours == 6
    assert settings.query_cache_ttl_minutes == 5
    assert settings.enrich_concurrency == 10
    assert settings.enrich_delay_seconds == 1.5
    assert settings.query_timeout_seconds is None


def test_settings_reads_environment(isolated_dirs, monkeypatch) -> None:
    monkeypatch.setenv("YOUTUBE_API_KEY", "yt-key")
    monkeypatch.setenv("METADATA_CONCURRENCY", "3")
    monkeypatch.setenv("QUERY_TIMEOUT_SECONDS", "12.5")

    settings = Settings(_env_file=None)

    assert settings.youtube_api_key == "yt-key"
    assert settings.metadata_concurrency == 3
    assert settings.query_timeout_seconds == 12.5


def test_settings_creates_directories(isolated_dirs) -> None:
    settings = Settings(_env_file=None)

    assert settings.config_dir.is_dir()
    assert settings.data_dir.is_dir()
    assert settings.store_path == settings.data_dir / "catalog.json"
    assert settings.channels_path == settings.config_dir / "channels.yaml"


def test_settings_rejects_zero_concurrency(isolated_dirs, monkeypatch) -> None:
    monkeypatch.setenv("CHANNEL_CONCURRENCY", "0")

    with pytest.raises(ValueError):
        Settings(_env_file=None)


def test_get_settings_singleton(isolated_dirs, monkeypatch) -> None:
    monkeypatch.setenv("YOUTUBE_API_KEY", "singleton-key")
    monkeypatch.setattr(config, "_settings", None)

    first = config.get_settings()
    second = config.get_settings()

    assert first is second
    assert first.youtube_api_key == "singleton-key"


class TestChannelConfig:
    def _write(self, tmp_path, text: str):
        path = tmp_path / "channels.yaml"
        path.write_text(text)
        return path

    def test_missing_file_is_empty(self, tmp_path):
        channel_config = ChannelConfig(tmp_path / "missing.yaml")

        assert channel_config.channels == {}
        assert channel_config.get_channel_ids() == []

    def test_loads_entries_and_shorthand(self, tmp_path):
        path = self._write(
            tmp_path,
            "channels:\n"
            "  Science:\n"
            "    id: UC123\n"
            "    refresh: true\n"
            "  Music: '@somehandle'\n",
        )

        channel_config = ChannelConfig(path)

        assert channel_config.get_channel_ids() == ["UC123", "@somehandle"]
        assert channel_config.get_refresh_ids() == ["UC123"]

    def test_strips_ids(self, tmp_path):
        path = self._write(tmp_path, "channels:\n  A:\n    id: '  UC1  '\n")

        assert ChannelConfig(path).get_channel_ids() == ["UC1"]

    def test_duplicate_ids_rejected(self, tmp_path):
        path = self._write(tmp_path, "channels:\n  A: UC1\n  B: UC1\n")

        with pytest.raises(ValueError, match="Duplicate channel id UC1: A, B"):
            ChannelConfig(path)

    def test_all_problems_reported_together(self, tmp_path):
        path = self._write(
            tmp_path,
            "channels:\n"
            "  Empty:\n"
            "    id: ''\n"
            "  Listy:\n"
            "    - not a mapping\n",
        )

        with pytest.raises(ValueError) as excinfo:
            ChannelConfig(path)

        message = str(excinfo.value)
        assert "Empty: id" in message
        assert "Listy: channel configuration must be a mapping" in message

    def test_top_level_must_be_mapping(self, tmp_path):
        path = self._write(tmp_path, "- UC1\n- UC2\n")

        with pytest.raises(ValueError, match="top-level structure"):
            ChannelConfig(path)

    def test_null_channels_is_empty(self, tmp_path):
        path = self._write(tmp_path, "channels:\n")

        assert ChannelConfig(path).channels == {}
