"""Configuration management using Pydantic Settings."""

from pathlib import Path
from typing import Self

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# XDG config directory for user configuration
XDG_CONFIG_PATH = Path.home() / ".config" / "ytcatalog"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=[
            XDG_CONFIG_PATH / "config.env",  # User config (lower priority)
            ".env",  # Project .env (higher priority)
        ],
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Upstream
    youtube_api_key: str | None = Field(default=None, description="YouTube Data API key")
    request_timeout_seconds: float = Field(default=15.0, gt=0, description="HTTP timeout")

    # Queries
    metadata_concurrency: int = Field(
        default=6, ge=1, le=32, description="Metadata fetches in flight per channel"
    )
    channel_concurrency: int = Field(
        default=4, ge=1, le=32, description="Channels processed concurrently"
    )
    video_cache_ttl_hours: float = Field(default=6.0, gt=0, description="Video metadata TTL")
    query_cache_ttl_minutes: float = Field(default=5.0, gt=0, description="Channel result TTL")
    query_timeout_seconds: float | None = Field(
        default=None, gt=0, description="Overall deadline for a multi-channel query"
    )
    default_top: int = Field(default=10, ge=1, description="Default number of videos")
    default_days: int = Field(default=30, ge=1, description="Default lookback window")

    # Enrichment
    enrich_concurrency: int = Field(default=10, ge=1, le=64, description="Enrichment workers")
    enrich_delay_seconds: float = Field(
        default=1.5, ge=0, description="Per-worker pause between requests"
    )
    enrich_save_interval_seconds: float = Field(
        default=5.0, ge=0, description="Minimum time between checkpoints"
    )

    # Background refresh
    refresh_interval_seconds: int = Field(default=300, ge=1, description="Refresh cadence")
    refresh_top: int = Field(default=10, ge=1)
    refresh_days: int = Field(default=30, ge=1)

    # Paths
    config_dir: Path = Field(default=Path("config"), description="Config directory")
    data_dir: Path = Field(default=Path("data"), description="Data directory")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    @property
    def store_path(self) -> Path:
        """Location of the JSON catalog store."""
        return self.data_dir / "catalog.json"

    @property
    def channels_path(self) -> Path:
        return self.config_dir / "channels.yaml"

    @model_validator(mode="after")
    def ensure_directories(self) -> Self:
        """Create necessary directories if they don't exist."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        return self


class ChannelEntry(BaseModel):
    """Validated channel entry from channels.yaml."""

    id: str = Field(..., min_length=1, description="Channel id or @handle")
    refresh: bool = Field(default=False, description="Keep warm in the background")
    notes: str | None = Field(default=None)

    model_config = {"extra": "allow"}


class ChannelConfig:
    """Configuration for tracked channels."""

    def __init__(self, config_path: Path):
        self.config_path = config_path
        self._channels: dict[str, dict] = {}
        self._load()

    def _load(self) -> None:
        """Load channels from YAML file."""
        if not self.config_path.exists():
            self._channels = {}
            return

        with open(self.config_path) as file_handle:
            data = yaml.safe_load(file_handle) or {}

        if not isinstance(data, dict):
            raise ValueError("Invalid channels.yaml: top-level structure must be a mapping")

        raw_channels = data.get("channels", {})
        if raw_channels is None:
            self._channels = {}
            return
        if not isinstance(raw_channels, dict):
            raise ValueError("Invalid channels.yaml: 'channels' must be a mapping")

        validated: dict[str, dict] = {}
        validation_errors: list[str] = []
        id_to_names: dict[str, list[str]] = {}

        for raw_name, raw_channel in raw_channels.items():
            name = str(raw_name).strip()
            if not name:
                validation_errors.append("Channel name cannot be empty")
                continue
            if isinstance(raw_channel, str):
                raw_channel = {"id": raw_channel}
            if not isinstance(raw_channel, dict):
                validation_errors.append(f"{name}: channel configuration must be a mapping")
                continue

            try:
                parsed = ChannelEntry.model_validate(raw_channel)
            except ValidationError as exc:
                details = "; ".join(
                    f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
                    for err in exc.errors()
                )
                validation_errors.append(f"{name}: {details}")
                continue

            entry = parsed.model_dump(mode="python")
            entry["id"] = parsed.id.strip()
            validated[name] = entry
            id_to_names.setdefault(entry["id"], []).append(name)

        validation_errors.extend(
            f"Duplicate channel id {channel_id}: {', '.join(names)}"
            for channel_id, names in id_to_names.items()
            if len(names) > 1
        )

        if validation_errors:
            rendered = "\n  - ".join(validation_errors)
            raise ValueError(f"Invalid channels.yaml entries:\n  - {rendered}")

        self._channels = validated

    @property
    def channels(self) -> dict[str, dict]:
        """Get all configured channels."""
        return self._channels

    def get_channel_ids(self) -> list[str]:
        """Get list of all channel ids."""
        return [channel["id"] for channel in self._channels.values()]

    def get_refresh_ids(self) -> list[str]:
        """Channels flagged for background refresh."""
        return [channel["id"] for channel in self._channels.values() if channel.get("refresh")]


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get application settings (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
