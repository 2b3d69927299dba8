"""
Background enrichment of stored videos.

One job per collection at a time. Workers claim videos from a shared cursor,
fetch their details with a per-worker pause between requests, and write the
result back into the loaded snapshot. A rate-limit response from upstream
raises a shared flag that every worker checks before claiming more work.
Progress is saved at most once per checkpoint interval and once at the end.

All jobs of one manager edit a single shared snapshot under one lock, so a
checkpoint from any job carries the progress of every running job.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime

from ytcatalog.config import Settings
from ytcatalog.ingest.base import ItemSource, RateLimitedError
from ytcatalog.logging_config import get_logger
from ytcatalog.models import (
    CatalogSnapshot,
    Collection,
    EnrichmentJob,
    EnrichmentStatus,
    JobStatus,
    StartEnrichmentResult,
    VideoDetails,
    WorkItemRef,
)
from ytcatalog.storage.store import CatalogStore

from .pool import SharedCursor, run_workers

logger = get_logger("enrichment")

DEFAULT_CONCURRENCY = 10
DEFAULT_DELAY_SECONDS = 1.5
DEFAULT_SAVE_INTERVAL_SECONDS = 5.0

# Individual failures logged before going quiet
MAX_LOGGED_FAILURES = 5


class CollectionNotFoundError(LookupError):
    """The requested collection does not exist in the store."""


class CollectionScan:
    """Upfront classification of a collection's videos."""

    def __init__(self, collection: Collection):
        self.work: list[WorkItemRef] = []
        self.already_enriched = 0
        self.excluded = 0
        for channel_index, channel in enumerate(collection.channels):
            for video_index, video in enumerate(channel.videos):
                if video.is_short:
                    self.excluded += 1
                elif video.is_enriched:
                    self.already_enriched += 1
                else:
                    self.work.append(
                        WorkItemRef(collection.id, channel_index, video_index, video.video_id)
                    )

    @property
    def skipped(self) -> int:
        return self.already_enriched + self.excluded


def collection_stats(collection: Collection) -> dict[str, int | bool]:
    """Counts used by the status view."""
    total_videos = 0
    enriched_videos = 0
    shorts_count = 0
    for channel in collection.channels:
        for video in channel.videos:
            if video.is_short:
                shorts_count += 1
                continue
            total_videos += 1
            if video.is_enriched:
                enriched_videos += 1
    return {
        "total_videos": total_videos,
        "enriched_videos": enriched_videos,
        "shorts_count": shorts_count,
        "all_enriched": total_videos > 0 and enriched_videos == total_videos,
    }


class EnrichmentManager:
    """Registry and driver for per-collection enrichment jobs."""

    def __init__(
        self,
        store: CatalogStore,
        source: ItemSource,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        delay_seconds: float = DEFAULT_DELAY_SECONDS,
        save_interval_seconds: float = DEFAULT_SAVE_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.store = store
        self.source = source
        self.concurrency = concurrency
        self.delay_seconds = delay_seconds
        self.save_interval_seconds = save_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._jobs: dict[str, EnrichmentJob] = {}
        self._threads: dict[str, threading.Thread] = {}
        self._lock = threading.Lock()
        # Guards _snapshot and every store.save made by this manager
        self._store_lock = threading.Lock()
        self._snapshot: CatalogSnapshot | None = None

    @classmethod
    def from_settings(
        cls, settings: Settings, store: CatalogStore, source: ItemSource
    ) -> EnrichmentManager:
        return cls(
            store,
            source,
            concurrency=settings.enrich_concurrency,
            delay_seconds=settings.enrich_delay_seconds,
            save_interval_seconds=settings.enrich_save_interval_seconds,
        )

    def get_job(self, collection_id: str) -> EnrichmentJob | None:
        """Current or most recent job for a collection."""
        with self._lock:
            return self._jobs.get(collection_id)

    def start(self, collection_id: str) -> StartEnrichmentResult:
        """
        Start enriching a collection in the background.

        Raises:
            CollectionNotFoundError: if the collection is not in the store
        """
        # Lock order: _store_lock, then _lock
        with self._store_lock:
            snapshot = self._shared_snapshot()
            collection = snapshot.find_collection(collection_id)
            if collection is None:
                raise CollectionNotFoundError(f"Collection not found: {collection_id}")

            with self._lock:
                existing = self._jobs.get(collection_id)
                if existing is not None and existing.is_running:
                    return StartEnrichmentResult(
                        started=False,
                        message="Enrichment already in progress",
                        job=existing,
                    )

                scan = CollectionScan(collection)
                job = EnrichmentJob(
                    collection_id=collection_id,
                    status=JobStatus.RUNNING,
                    total=len(scan.work),
                    skipped=scan.skipped,
                )
                self._jobs[collection_id] = job

                thread = threading.Thread(
                    target=self._run,
                    args=(snapshot, job, scan.work),
                    name=f"enrich-{collection_id}",
                    daemon=True,
                )
                self._threads[collection_id] = thread
                thread.start()

        return StartEnrichmentResult(started=True, job=job)

    def _shared_snapshot(self) -> CatalogSnapshot:
        """
        Snapshot every job of this manager edits. Caller holds _store_lock.

        Reloaded from the store only while no job is running, so a running
        job's unsaved edits are never replaced by an older copy.
        """
        with self._lock:
            busy = any(job.is_running for job in self._jobs.values())
        if self._snapshot is None or not busy:
            self._snapshot = self.store.load()
        return self._snapshot

    def wait(self, collection_id: str, timeout: float | None = None) -> EnrichmentJob | None:
        """Block until the collection's job thread finishes."""
        with self._lock:
            thread = self._threads.get(collection_id)
        if thread is not None:
            thread.join(timeout)
        return self.get_job(collection_id)

    def get_status(self, collection_id: str) -> EnrichmentStatus:
        """
        Job progress merged with collection statistics.

        Raises:
            CollectionNotFoundError: if the collection is not in the store
        """
        collection = self.store.load().find_collection(collection_id)
        if collection is None:
            raise CollectionNotFoundError(f"Collection not found: {collection_id}")

        stats = collection_stats(collection)
        with self._lock:
            job = self._jobs.get(collection_id)
            if job is None:
                return EnrichmentStatus(
                    status=JobStatus.IDLE,
                    total=stats["total_videos"],
                    enriched=stats["enriched_videos"],
                    skipped=stats["shorts_count"],
                    **stats,
                )
            return EnrichmentStatus(
                status=job.status,
                total=job.total,
                enriched=job.enriched,
                skipped=job.skipped,
                failed=job.failed,
                rate_limited=job.rate_limited,
                **stats,
            )

    def _run(self, snapshot: CatalogSnapshot, job: EnrichmentJob, work: list[WorkItemRef]) -> None:
        """Drive one job to a terminal state."""
        run = _EnrichmentRun(self, snapshot, job, work)
        error: str | None = None
        try:
            run.execute()
        except Exception as e:
            logger.exception(f"Enrichment error for collection {job.collection_id}")
            error = str(e) or type(e).__name__

        try:
            run.checkpoint(force=True)
        except Exception as e:
            logger.exception(f"Final save failed for collection {job.collection_id}")
            error = error or f"Final save failed: {e}"

        with self._lock:
            job.error = error
            job.completed_at = datetime.now(UTC)
            if job.rate_limited or error:
                job.status = JobStatus.HALTED
            else:
                job.status = JobStatus.COMPLETED

        suffix = " (stopped due to rate limit)" if job.rate_limited else ""
        logger.info(
            f"Enrichment {job.status.value} for {job.collection_id}: "
            f"{job.enriched} enriched, {job.failed} failed{suffix}"
        )


class _EnrichmentRun:
    """Shared state for the workers of a single job."""

    def __init__(
        self,
        manager: EnrichmentManager,
        snapshot: CatalogSnapshot,
        job: EnrichmentJob,
        work: list[WorkItemRef],
    ):
        self.manager = manager
        self.snapshot = snapshot
        self.job = job
        self.work = work
        self.cursor: SharedCursor[WorkItemRef] = SharedCursor(work)
        self.rate_limited = self.cursor.stop_event
        self._counter_lock = manager._lock
        self._store_lock = manager._store_lock
        self._last_save = manager._clock()

    def execute(self) -> None:
        total = len(self.work)
        if total == 0:
            logger.info(f"Nothing to enrich in collection {self.job.collection_id}")
            return

        worker_count = min(self.manager.concurrency, total)
        logger.info(
            f"Starting enrichment for collection {self.job.collection_id}: {total} videos, "
            f"{worker_count} workers, {self.manager.delay_seconds}s delay"
        )
        run_workers(self.worker, worker_count, name=f"enrich-{self.job.collection_id}")

    def worker(self, index: int) -> None:
        manager = self.manager
        # Stagger startup so workers do not fire in lockstep
        if index > 0 and manager.delay_seconds > 0:
            manager._sleep(manager.delay_seconds / manager.concurrency * index)

        while True:
            ref = self.cursor.claim()
            if ref is None:
                return

            if not self.process(ref):
                return

            self.checkpoint()
            if self.rate_limited.is_set():
                return
            if manager.delay_seconds > 0:
                manager._sleep(manager.delay_seconds)

    def process(self, ref: WorkItemRef) -> bool:
        """Enrich one video. Returns False once rate limiting is detected."""
        try:
            details = self.manager.source.fetch_item_details(ref.video_id)
        except RateLimitedError as e:
            with self._counter_lock:
                first = not self.job.rate_limited
                self.job.rate_limited = True
            self.rate_limited.set()
            if first:
                logger.warning(f"Rate limited ({e}) - stopping all workers")
            return False
        except Exception as e:
            self.record_failure(ref, str(e))
            return True

        # Nothing to write: the video would stay pending forever
        if details.publish_date is None and details.description is None:
            self.record_failure(ref, "no publish date or description returned")
            return True

        self.apply(ref, details)
        with self._counter_lock:
            self.job.enriched += 1
            enriched, total, failed = self.job.enriched, self.job.total, self.job.failed
        if enriched % 10 == 0 or enriched == total:
            logger.info(f"Progress: {enriched}/{total} videos enriched ({failed} failed)")
        return True

    def record_failure(self, ref: WorkItemRef, reason: str) -> None:
        with self._counter_lock:
            self.job.failed += 1
            failed = self.job.failed
        if failed <= MAX_LOGGED_FAILURES:
            logger.warning(f"Failed to enrich video {ref.video_id}: {reason}")
        elif failed == MAX_LOGGED_FAILURES + 1:
            logger.warning("(suppressing further failure messages)")

    def apply(self, ref: WorkItemRef, details: VideoDetails) -> None:
        """Write details onto the stored video the ref points at."""
        with self._store_lock:
            collection = self.snapshot.find_collection(ref.collection_id)
            if collection is None:
                return
            video = collection.channels[ref.channel_index].videos[ref.video_index]
            if video.video_id != ref.video_id:
                logger.warning(f"Stored video moved, skipping write for {ref.video_id}")
                return
            video.publish_date = details.publish_date
            video.description = details.description

    def checkpoint(self, force: bool = False) -> None:
        """Save the snapshot if the interval elapsed (or unconditionally)."""
        with self._store_lock:
            now = self.manager._clock()
            if not force and now - self._last_save < self.manager.save_interval_seconds:
                return
            self._last_save = now
            try:
                self.manager.store.save(self.snapshot)
            except Exception as e:
                if force:
                    raise
                logger.warning(f"Checkpoint save failed, will retry next interval: {e}")
                return
        logger.debug(f"Checkpoint saved for collection {self.job.collection_id}")
