"""Thread-safe crawl statistics aggregation utilities."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
import threading
from typing import Any, Mapping

from .types import CrawlStats, PageRecord


class StatsCollector:
    """Collect and summarize crawler runtime statistics.

    The collector is thread-safe and intended for use across concurrent
    crawl workers and the flush controller.
    """

    def __init__(self, base: CrawlStats | None = None) -> None:
        self._lock = threading.Lock()
        self._core = base or CrawlStats()

        self._page_error_type_counts: dict[str, int] = defaultdict(int)
        self._flush_error_type_counts: dict[str, int] = defaultdict(int)
        self._attachment_bytes_total = 0
        self._stored_bytes_total = 0
        self._largest_batch = 0
        self._frontier_snapshot: dict[str, int | bool] = {}

    def record_page(self, record: PageRecord, *, links: int = 0) -> None:
        """Record one finished page (ok or failed) and its discovered links."""

        with self._lock:
            if record.failed:
                self._core.pages_failed += 1
                err_type = (record.error_info or "").split(":", maxsplit=1)[0].strip() or "Unknown"
                self._page_error_type_counts[err_type] += 1
            else:
                self._core.pages_ok += 1

            if record.payload is not None and record.payload.attachment is not None:
                self._core.attachments_downloaded += 1
                self._attachment_bytes_total += len(record.payload.attachment)

            self._core.links_discovered += max(0, links)

    def record_frontier_snapshot(self, snapshot: Mapping[str, int | bool]) -> None:
        """Attach latest frontier snapshot for diagnostics."""

        with self._lock:
            self._frontier_snapshot = dict(snapshot)

    def record_flush_written(self, records: int, size_bytes: int = 0) -> None:
        """Record one batch successfully written to the checkpoint store."""

        with self._lock:
            self._core.flushes_written += 1
            self._core.records_stored += records
            self._stored_bytes_total += max(0, size_bytes)
            self._largest_batch = max(self._largest_batch, records)

    def record_flush_skipped(self) -> None:
        """Record a flush trigger dropped because another flush was running."""

        with self._lock:
            self._core.flushes_skipped += 1

    def record_flush_failed(self, exc: BaseException) -> None:
        with self._lock:
            self._core.flushes_failed += 1
            self._flush_error_type_counts[exc.__class__.__name__] += 1

    def finish(self) -> None:
        """Mark crawl as finished."""

        with self._lock:
            self._core.finish()

    def core(self) -> CrawlStats:
        """Return a copy of the core `CrawlStats` record."""

        with self._lock:
            return CrawlStats(
                pages_ok=self._core.pages_ok,
                pages_failed=self._core.pages_failed,
                attachments_downloaded=self._core.attachments_downloaded,
                links_discovered=self._core.links_discovered,
                flushes_written=self._core.flushes_written,
                flushes_skipped=self._core.flushes_skipped,
                flushes_failed=self._core.flushes_failed,
                records_stored=self._core.records_stored,
                started_at=self._core.started_at,
                finished_at=self._core.finished_at,
            )

    def to_json(self) -> dict[str, Any]:
        """Return a JSON-serializable summary payload."""

        with self._lock:
            core = self._core.to_json()

            start = _parse_iso_utc(self._core.started_at)
            end = _parse_iso_utc(self._core.finished_at) if self._core.finished_at else datetime.now(
                timezone.utc
            )
            duration_seconds = max(0.0, (end - start).total_seconds())
            pages_total = self._core.pages_ok + self._core.pages_failed

            return {
                **core,
                "duration_seconds": duration_seconds,
                "throughput": {
                    "pages_per_second": (
                        pages_total / duration_seconds if duration_seconds > 0 else 0.0
                    ),
                },
                "pages": {
                    "error_type_counts": dict(self._page_error_type_counts),
                    "attachment_bytes_total": self._attachment_bytes_total,
                },
                "storage": {
                    "stored_bytes_total": self._stored_bytes_total,
                    "largest_batch": self._largest_batch,
                    "error_type_counts": dict(self._flush_error_type_counts),
                },
                "frontier": dict(self._frontier_snapshot),
            }


def _parse_iso_utc(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


__all__ = ["StatsCollector"]
