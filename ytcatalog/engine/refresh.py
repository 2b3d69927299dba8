"""Keeps the channel query cache warm for frequently requested channels."""

from __future__ import annotations

import threading

from ytcatalog.config import ChannelConfig, Settings
from ytcatalog.logging_config import get_logger
from ytcatalog.models import ChannelQuery

from .aggregator import QueryCancelled
from .orchestrator import CatalogService

logger = get_logger("refresh")


class BackgroundRefresher:
    """Periodically re-walks configured channels whose cached result expired."""

    def __init__(
        self,
        service: CatalogService,
        channel_ids: list[str],
        *,
        top: int = 10,
        days: int = 30,
        interval_seconds: float = 300,
    ):
        self.service = service
        self.channel_ids = channel_ids
        self.top = top
        self.days = days
        self.interval_seconds = max(1.0, interval_seconds)
        self.stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @classmethod
    def from_settings(
        cls, settings: Settings, service: CatalogService, channel_config: ChannelConfig
    ) -> BackgroundRefresher:
        """Refresh the channels marked ``refresh: true`` in channels.yaml."""
        return cls(
            service,
            channel_config.get_refresh_ids(),
            top=settings.refresh_top,
            days=settings.refresh_days,
            interval_seconds=settings.refresh_interval_seconds,
        )

    def refresh_once(self) -> dict[str, bool]:
        """Warm every channel once. Returns channel id -> refreshed."""
        refreshed: dict[str, bool] = {}
        for channel_id in self.channel_ids:
            if self.stop_event.is_set():
                break
            query = ChannelQuery(channel_id=channel_id, top=self.top, days=self.days)
            if self.service.query_cache.get(query.cache_key) is not None:
                refreshed[channel_id] = False
                continue
            try:
                self.service.top_for_channel(query, cancel_event=self.stop_event)
                refreshed[channel_id] = True
            except QueryCancelled:
                break
            except Exception as e:
                logger.error(f"Error refreshing channel {channel_id}: {e}")
                refreshed[channel_id] = False
        return refreshed

    def run_forever(self) -> None:
        """Refresh on an interval until ``stop`` is called."""
        logger.info(
            f"Refreshing {len(self.channel_ids)} channels every {self.interval_seconds:.0f}s"
        )
        while not self.stop_event.is_set():
            refreshed = self.refresh_once()
            count = sum(refreshed.values())
            if count:
                logger.info(f"Refreshed {count} channels")
            self.stop_event.wait(self.interval_seconds)

    def start(self) -> threading.Thread:
        """Run the refresh loop on a daemon thread."""
        if self._thread is None or not self._thread.is_alive():
            self.stop_event.clear()
            self._thread = threading.Thread(
                target=self.run_forever, name="cache-refresh", daemon=True
            )
            self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = None) -> None:
        self.stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
