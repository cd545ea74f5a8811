"""Thread-safe, append-only URL frontier with quiescence tracking."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from enum import Enum
import threading
import time
from typing import Iterable

from .types import WorkItem


class EnqueueStatus(str, Enum):
    """Result status for frontier enqueue attempts."""

    ENQUEUED = "enqueued"
    SKIPPED_RESUMED = "skipped_resumed"
    SKIPPED_INVALID_URL = "skipped_invalid_url"
    SKIPPED_SEEN = "skipped_seen"
    SKIPPED_CLOSED = "skipped_closed"


@dataclass(frozen=True, slots=True)
class EnqueueResult:
    """Outcome of one enqueue attempt."""

    status: EnqueueStatus
    url: str | None = None
    item: WorkItem | None = None

    @property
    def accepted(self) -> bool:
        return self.status == EnqueueStatus.ENQUEUED


class Frontier:
    """Frontier queue used by producer/consumer crawl workers.

    - Every accepted URL gets the next position index; positions never change.
    - Work is dispatched in insertion order (seeds first, then discovery order).
    - Repeated URLs are accepted unless `dedupe` is set.
    - `join` returns once every dispatched item is marked done, or on `close`.
    """

    def __init__(self, *, dedupe: bool = False) -> None:
        self.dedupe = dedupe

        self._cond = threading.Condition()
        self._urls: list[str] = []
        self._pending: deque[WorkItem] = deque()
        self._seen_urls: set[str] = set()
        self._unfinished = 0
        self._closed = False

        self._enqueued_count = 0
        self._dequeued_count = 0
        self._skipped_resumed_count = 0
        self._skipped_seen_count = 0
        self._skipped_invalid_count = 0

    def seed(self, seeds: Iterable[str], *, skip: int = 0) -> list[EnqueueResult]:
        """Append seed URLs, dispatching only positions `>= skip`.

        `skip` is the number of frontier positions already processed by an
        earlier run of the same crawl.
        """

        if skip < 0:
            raise ValueError("skip must be >= 0")
        with self._cond:
            return [self._append_locked(url, referrer=None, skip=skip) for url in seeds]

    def push(self, url: str, *, referrer: str | None = None) -> EnqueueResult:
        """Append one discovered URL and dispatch it."""

        with self._cond:
            return self._append_locked(url, referrer=referrer, skip=0)

    def push_many(self, urls: Iterable[str], *, referrer: str | None = None) -> list[EnqueueResult]:
        """Append discovered URLs, preserving input order."""

        with self._cond:
            return [self._append_locked(url, referrer=referrer, skip=0) for url in urls]

    def _append_locked(self, url: str, *, referrer: str | None, skip: int) -> EnqueueResult:
        candidate = (url or "").strip()
        if not candidate:
            self._skipped_invalid_count += 1
            return EnqueueResult(EnqueueStatus.SKIPPED_INVALID_URL)

        if self._closed:
            return EnqueueResult(EnqueueStatus.SKIPPED_CLOSED, url=candidate)

        if self.dedupe:
            if candidate in self._seen_urls:
                self._skipped_seen_count += 1
                return EnqueueResult(EnqueueStatus.SKIPPED_SEEN, url=candidate)
            self._seen_urls.add(candidate)

        item = WorkItem(url=candidate, index=len(self._urls), referrer=referrer)
        self._urls.append(candidate)

        if item.index < skip:
            self._skipped_resumed_count += 1
            return EnqueueResult(EnqueueStatus.SKIPPED_RESUMED, url=candidate, item=item)

        self._pending.append(item)
        self._unfinished += 1
        self._enqueued_count += 1
        self._cond.notify()
        return EnqueueResult(EnqueueStatus.ENQUEUED, url=candidate, item=item)

    def pop(self, *, block: bool = True, timeout: float | None = None) -> WorkItem | None:
        """Pop the oldest pending item for a worker thread.

        Returns `None` when nothing is available in time or the frontier is closed.
        """

        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while not self._pending and not self._closed:
                if not block:
                    return None
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(remaining)

            if self._closed:
                return None

            self._dequeued_count += 1
            return self._pending.popleft()

    def task_done(self) -> None:
        """Mark one popped item as finished."""

        with self._cond:
            if self._unfinished <= 0:
                raise ValueError("task_done() called too many times")
            self._unfinished -= 1
            if self._unfinished == 0:
                self._cond.notify_all()

    def join(self, timeout: float | None = None) -> bool:
        """Block until the frontier is quiescent or closed.

        Returns True when quiescent (nothing pending, no item in flight).
        """

        with self._cond:
            self._cond.wait_for(lambda: self._unfinished == 0 or self._closed, timeout)
            return self._unfinished == 0

    def close(self) -> None:
        """Stop dispatching: pending items are abandoned and waiters wake up."""

        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def urls(self) -> list[str]:
        """Return snapshot of all frontier URLs in position order."""

        with self._cond:
            return list(self._urls)

    def qsize(self) -> int:
        with self._cond:
            return len(self._pending)

    def empty(self) -> bool:
        return self.qsize() == 0

    def __len__(self) -> int:
        with self._cond:
            return len(self._urls)

    def snapshot(self) -> dict[str, int | bool]:
        """Return frontier counters for logs/stats reporting."""

        with self._cond:
            return {
                "closed": self._closed,
                "size": len(self._urls),
                "queue_size": len(self._pending),
                "in_flight": self._unfinished - len(self._pending),
                "enqueued": self._enqueued_count,
                "dequeued": self._dequeued_count,
                "skipped_resumed": self._skipped_resumed_count,
                "skipped_seen": self._skipped_seen_count,
                "skipped_invalid": self._skipped_invalid_count,
            }


__all__ = [
    "EnqueueResult",
    "EnqueueStatus",
    "Frontier",
]
