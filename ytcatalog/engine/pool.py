"""
Bounded concurrency primitives shared by the query and enrichment paths.

Two shapes of bounded work live here:

- ``BoundedPool``: a caller-driven pool. The caller reserves a slot, decides
  whether it still wants to submit, then submits. In-flight futures are kept
  in submission order so completed ones can be drained while the caller keeps
  feeding work from an ordered source.
- ``run_workers`` + ``SharedCursor``: a fixed set of worker loops that each
  claim the next item from a shared monotonic cursor until it is exhausted or
  a shared stop flag is raised.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed, wait
from typing import Any, Generic, TypeVar

from ytcatalog.logging_config import get_logger

logger = get_logger("pool")

T = TypeVar("T")

# How often a blocked reservation re-checks the cancellation event
CANCEL_POLL_SECONDS = 0.05


class BoundedPool:
    """Runs at most ``max_in_flight`` callables at once on worker threads."""

    def __init__(self, max_in_flight: int, name: str = "pool"):
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        self.max_in_flight = max_in_flight
        self.name = name
        self._executor = ThreadPoolExecutor(
            max_workers=max_in_flight, thread_name_prefix=name
        )
        self._slots = threading.BoundedSemaphore(max_in_flight)
        self._in_flight: list[Future] = []
        self.submitted = 0

    def __enter__(self) -> BoundedPool:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        # Never block on in-flight work when unwinding from an error or cancel
        self.shutdown(wait=exc_type is None)

    @property
    def in_flight(self) -> int:
        """Submitted futures that have not been drained yet."""
        return len(self._in_flight)

    def reserve(self, cancel_event: threading.Event | None = None) -> bool:
        """Block until a slot is free. Returns False if cancelled first."""
        while True:
            if cancel_event is not None and cancel_event.is_set():
                return False
            if self._slots.acquire(timeout=CANCEL_POLL_SECONDS):
                if cancel_event is not None and cancel_event.is_set():
                    self._slots.release()
                    return False
                return True

    def release(self) -> None:
        """Give back a reserved slot that will not be used."""
        self._slots.release()

    def submit(self, fn: Callable[..., T], *args: Any) -> Future[T]:
        """Run ``fn`` in a slot previously obtained with ``reserve``."""
        try:
            future = self._executor.submit(fn, *args)
        except Exception:
            self._slots.release()
            raise
        future.add_done_callback(lambda _: self._slots.release())
        self._in_flight.append(future)
        self.submitted += 1
        return future

    def drain_completed(self) -> list[Future]:
        """Remove and return finished futures, in submission order."""
        done: list[Future] = []
        pending: list[Future] = []
        for future in self._in_flight:
            (done if future.done() else pending).append(future)
        self._in_flight = pending
        return done

    def drain_all(self) -> list[Future]:
        """Wait for every in-flight future and return all of them, in submission order."""
        pending = self._in_flight
        self._in_flight = []
        wait(pending)
        return pending

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=not wait)


class SharedCursor(Generic[T]):
    """Monotonic claim cursor: every item is handed out exactly once, in order."""

    def __init__(self, items: Sequence[T], stop_event: threading.Event | None = None):
        self._items = items
        self._next = 0
        self._lock = threading.Lock()
        self.stop_event = stop_event or threading.Event()

    def claim(self) -> T | None:
        """Return the next unclaimed item, or None when exhausted or stopped."""
        with self._lock:
            if self.stop_event.is_set() or self._next >= len(self._items):
                return None
            item = self._items[self._next]
            self._next += 1
            return item

    @property
    def claimed(self) -> int:
        with self._lock:
            return self._next

    @property
    def remaining(self) -> int:
        with self._lock:
            return len(self._items) - self._next


def run_workers(worker: Callable[[int], None], count: int, name: str = "worker") -> None:
    """
    Run ``count`` worker loops concurrently and wait for all of them.

    Each worker receives its index. If any worker raises, the remaining
    workers still run to completion and the first error is re-raised.
    """
    if count < 1:
        return

    first_error: BaseException | None = None
    with ThreadPoolExecutor(max_workers=count, thread_name_prefix=name) as executor:
        futures = {executor.submit(worker, index): index for index in range(count)}
        for future in as_completed(futures):
            try:
                future.result()
            except Exception as e:
                logger.error(f"{name} {futures[future]} crashed: {e}")
                if first_error is None:
                    first_error = e

    if first_error is not None:
        raise first_error
