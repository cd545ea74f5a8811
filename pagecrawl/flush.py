"""Flush policy that moves buffered page records into the checkpoint store.

Ordering per flush:

1. snapshot the buffer (records keep arriving while we write),
2. write the snapshot under the next `PAGES-` key,
3. drain exactly the snapshotted prefix,
4. advance counters and persist `STATE`.

`STATE` is never written for a batch that was not stored first.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Callable, NoReturn

from .buffer import ResultBuffer
from .config import CrawlConfig
from .constants import (
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_STATE_WRITE_RETRIES,
    DEFAULT_STORE_PAGES_INTERVAL,
    EXIT_STORAGE_CAPACITY,
)
from .errors import FatalCrawlError, StorageCapacityError, StorageError
from .stats import StatsCollector
from .store import CheckpointStore
from .types import CrawlState


logger = logging.getLogger(__name__)

CapacityHandler = Callable[[StorageCapacityError], None]


def terminate_process(exc: StorageCapacityError) -> NoReturn:
    """Stop the whole process right away; buffered pages can never fit one record."""

    logger.critical("FATAL ERROR: %s", exc)
    logging.shutdown()
    os._exit(EXIT_STORAGE_CAPACITY)


class FlushController:
    """Decide when to flush the result buffer and perform the checkpoint write.

    At most one flush runs at a time. A non-forced trigger that finds a flush in
    progress is dropped, not queued; a forced flush waits for it.
    """

    def __init__(
        self,
        store: CheckpointStore,
        buffer: ResultBuffer,
        *,
        threshold: int = DEFAULT_STORE_PAGES_INTERVAL,
        state: CrawlState | None = None,
        state_write_retries: int = DEFAULT_STATE_WRITE_RETRIES,
        retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        stats: StatsCollector | None = None,
        on_capacity_exceeded: CapacityHandler | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if threshold <= 0:
            raise ValueError("threshold must be > 0")
        if state_write_retries < 0:
            raise ValueError("state_write_retries must be >= 0")

        self.store = store
        self.buffer = buffer
        self.threshold = threshold
        self.state_write_retries = state_write_retries
        self.retry_backoff_seconds = max(0.0, retry_backoff_seconds)
        self.stats = stats or StatsCollector()

        self._on_capacity_exceeded = on_capacity_exceeded or terminate_process
        self._sleep = sleep
        self._flush_lock = threading.Lock()
        self._state = state if state is not None else store.load_state()

    @classmethod
    def from_config(
        cls,
        config: CrawlConfig,
        store: CheckpointStore,
        buffer: ResultBuffer,
        **kwargs,
    ) -> "FlushController":
        return cls(
            store,
            buffer,
            threshold=config.store_pages_interval,
            state_write_retries=config.state_write_retries,
            retry_backoff_seconds=config.retry_backoff_seconds,
            **kwargs,
        )

    @property
    def state(self) -> CrawlState:
        """Counters as of the last successful batch write."""

        return self._state

    @property
    def flushing(self) -> bool:
        return self._flush_lock.locked()

    def on_record_appended(self) -> bool:
        """Flush trigger called by workers after each appended record."""

        return self.flush(force=False)

    def flush(self, force: bool = False) -> bool:
        """Write buffered records as one batch when the policy allows it.

        Returns True when a batch was written. Raises `FatalCrawlError` when
        durable progress can no longer be guaranteed.
        """

        buffered = len(self.buffer)
        if buffered == 0:
            return False
        if not force and buffered < self.threshold:
            return False

        if not self._flush_lock.acquire(blocking=force):
            logger.debug("Flush already in progress; skipping trigger (%d buffered)", buffered)
            self.stats.record_flush_skipped()
            return False

        try:
            return self._flush_locked(force)
        finally:
            self._flush_lock.release()

    def _flush_locked(self, force: bool) -> bool:
        pages = self.buffer.snapshot()
        # A forced flush may have waited behind one that drained everything.
        if not pages:
            return False

        key = self._state.next_batch_key
        logger.info(
            "Storing %d pages to %s (total pages crawled: %d)",
            len(pages),
            key,
            self._state.processed_count + len(pages),
        )

        try:
            size = self.store.write_batch(key, pages)
        except StorageCapacityError as exc:
            self.stats.record_flush_failed(exc)
            self._on_capacity_exceeded(exc)
            raise FatalCrawlError(f"Batch {key} exceeds store capacity: {exc}") from exc
        except StorageError as exc:
            self.stats.record_flush_failed(exc)
            if force:
                raise FatalCrawlError(f"Final flush to {key} failed: {exc}") from exc
            logger.warning("Cannot store pages to %s (will retry on next flush): %s", key, exc)
            return False

        self.buffer.drain(len(pages))
        # The batch key is taken now even if STATE cannot be written below.
        self._state = self._state.advanced(len(pages))
        self._persist_state(self._state)

        self.stats.record_flush_written(len(pages), size)
        logger.debug("Stored %s (%d bytes); state=%s", key, size, self._state.to_json())
        return True

    def _persist_state(self, state: CrawlState) -> None:
        attempts = self.state_write_retries + 1
        last_error: StorageError | None = None

        for attempt in range(1, attempts + 1):
            try:
                self.store.save_state(state)
                return
            except StorageError as exc:
                last_error = exc
                logger.warning(
                    "Cannot store crawl state (attempt %d/%d): %s",
                    attempt,
                    attempts,
                    exc,
                )

            if attempt < attempts and self.retry_backoff_seconds > 0:
                self._sleep(self.retry_backoff_seconds * attempt)

        raise FatalCrawlError(
            f"Batch stored but crawl state {state.to_json()} could not be saved: {last_error}"
        ) from last_error


__all__ = [
    "CapacityHandler",
    "FlushController",
    "terminate_process",
]
