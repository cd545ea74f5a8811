"""Core type definitions for the crawl scheduler and checkpoint pipeline.

This module is intentionally dependency-light so other crawler modules can import
shared records without introducing cycles.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime, timezone
from hashlib import sha256
from typing import Any, Mapping

from .constants import BATCH_KEY_PREFIX, BATCH_KEY_WIDTH


JSONPrimitive = str | int | float | bool | None
JSONValue = JSONPrimitive | list["JSONValue"] | dict[str, "JSONValue"]
JSONDict = dict[str, JSONValue]


def utc_now_iso() -> str:
    """Return an RFC3339-like UTC timestamp string with millisecond precision."""

    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def batch_key(batch_number: int) -> str:
    """Return the store key of the 1-based `batch_number`-th page batch."""

    if batch_number <= 0:
        raise ValueError("batch_number must be > 0")
    return f"{BATCH_KEY_PREFIX}{batch_number:0{BATCH_KEY_WIDTH}d}"


def describe_exception(exc: BaseException) -> str:
    """Render an exception as the `errorInfo` string stored on failed pages."""

    message = str(exc).strip()
    if not message:
        return exc.__class__.__name__
    return f"{exc.__class__.__name__}: {message}"


@dataclass(frozen=True, slots=True)
class WorkItem:
    """A frontier URL together with its position in the frontier."""

    url: str
    index: int
    referrer: str | None = None
    discovered_at: str = field(default_factory=utc_now_iso)


@dataclass(frozen=True, slots=True)
class CachePolicy:
    """Browser disk-cache options passed to the page fetcher."""

    avoid_cache: bool = False
    cache_dir: str | None = None
    cache_size_megabytes: int | None = None


@dataclass(frozen=True, slots=True)
class PayloadRef:
    """What the extractor found on a page: a title and an attachment link."""

    title: str | None
    attachment_url: str


@dataclass(frozen=True, slots=True)
class PageFetchResult:
    """Rendered page outcome returned by a page fetcher."""

    loaded_url: str
    links: list[str] = field(default_factory=list)
    payload_ref: PayloadRef | None = None
    loading_finished_at: str = field(default_factory=utc_now_iso)


@dataclass(frozen=True, slots=True)
class Payload:
    """Materialized page payload: extracted title plus downloaded attachment."""

    title: str | None
    attachment_url: str
    attachment: bytes | None = None

    @property
    def attachment_length(self) -> int | None:
        return None if self.attachment is None else len(self.attachment)

    @property
    def attachment_sha256(self) -> str | None:
        return None if self.attachment is None else sha256(self.attachment).hexdigest()

    def to_json(self) -> JSONDict:
        return {
            "title": self.title,
            "attachmentUrl": self.attachment_url,
            "attachment": (
                None
                if self.attachment is None
                else base64.b64encode(self.attachment).decode("ascii")
            ),
            "attachmentLength": self.attachment_length,
            "attachmentSha256": self.attachment_sha256,
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "Payload":
        encoded = payload.get("attachment")
        return cls(
            title=payload.get("title"),
            attachment_url=str(payload.get("attachmentUrl") or ""),
            attachment=None if encoded is None else base64.b64decode(encoded),
        )


@dataclass(slots=True)
class PageRecord:
    """Terminal outcome of processing one work item.

    A record with `error_info` set is still a valid, storable outcome.
    """

    url: str
    loading_started_at: str = field(default_factory=utc_now_iso)
    user_agent: str | None = None
    proxy_url: str | None = None
    loaded_url: str | None = None
    loading_finished_at: str | None = None
    payload: Payload | None = None
    error_info: str | None = None

    @property
    def failed(self) -> bool:
        return self.error_info is not None

    def to_json(self) -> JSONDict:
        row: JSONDict = {
            "url": self.url,
            "loadedUrl": self.loaded_url,
            "loadingStartedAt": self.loading_started_at,
            "loadingFinishedAt": self.loading_finished_at,
            "payload": None if self.payload is None else self.payload.to_json(),
            "proxyUrl": self.proxy_url,
            "userAgent": self.user_agent,
        }
        if self.error_info is not None:
            row["errorInfo"] = self.error_info
        return row

    @classmethod
    def from_json(cls, row: Mapping[str, Any]) -> "PageRecord":
        payload = row.get("payload")
        return cls(
            url=str(row["url"]),
            loading_started_at=str(row.get("loadingStartedAt") or ""),
            user_agent=row.get("userAgent"),
            proxy_url=row.get("proxyUrl"),
            loaded_url=row.get("loadedUrl"),
            loading_finished_at=row.get("loadingFinishedAt"),
            payload=None if payload is None else Payload.from_json(payload),
            error_info=row.get("errorInfo"),
        )


@dataclass(frozen=True, slots=True)
class CrawlState:
    """Durable crawl progress stored under the `STATE` key."""

    processed_count: int = 0
    batch_count: int = 0

    def __post_init__(self) -> None:
        if self.processed_count < 0 or self.batch_count < 0:
            raise ValueError("CrawlState counters must be >= 0")

    @property
    def next_batch_key(self) -> str:
        return batch_key(self.batch_count + 1)

    def advanced(self, stored_records: int) -> "CrawlState":
        """Return the state after one more batch of `stored_records` is written."""

        if stored_records <= 0:
            raise ValueError("stored_records must be > 0")
        return CrawlState(
            processed_count=self.processed_count + stored_records,
            batch_count=self.batch_count + 1,
        )

    def to_json(self) -> JSONDict:
        return {
            "processedCount": self.processed_count,
            "batchCount": self.batch_count,
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any] | None) -> "CrawlState":
        if not payload:
            return cls()
        # Older state records used `pageCount`/`storeCount`.
        processed = payload.get("processedCount", payload.get("pageCount", 0))
        batches = payload.get("batchCount", payload.get("storeCount", 0))
        return cls(processed_count=int(processed), batch_count=int(batches))


@dataclass(slots=True)
class CrawlStats:
    """Simple mutable counters used for crawl summary reporting."""

    pages_ok: int = 0
    pages_failed: int = 0
    attachments_downloaded: int = 0
    links_discovered: int = 0

    flushes_written: int = 0
    flushes_skipped: int = 0
    flushes_failed: int = 0
    records_stored: int = 0

    started_at: str = field(default_factory=utc_now_iso)
    finished_at: str | None = None

    def finish(self) -> None:
        self.finished_at = utc_now_iso()

    def to_json(self) -> JSONDict:
        return {
            "pages_ok": self.pages_ok,
            "pages_failed": self.pages_failed,
            "attachments_downloaded": self.attachments_downloaded,
            "links_discovered": self.links_discovered,
            "flushes_written": self.flushes_written,
            "flushes_skipped": self.flushes_skipped,
            "flushes_failed": self.flushes_failed,
            "records_stored": self.records_stored,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


__all__ = [
    "CachePolicy",
    "CrawlState",
    "CrawlStats",
    "JSONDict",
    "JSONPrimitive",
    "JSONValue",
    "PageFetchResult",
    "PageRecord",
    "Payload",
    "PayloadRef",
    "WorkItem",
    "batch_key",
    "describe_exception",
    "utc_now_iso",
]
