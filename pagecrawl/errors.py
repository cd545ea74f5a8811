"""Exception hierarchy for crawl, fetch, and checkpoint failures."""

from __future__ import annotations


class CrawlError(Exception):
    """Base class for all crawler errors."""


class PageFetchError(CrawlError):
    """A page could not be loaded or its DOM could not be read."""


class StorageError(CrawlError):
    """A checkpoint store read or write failed.

    Treated as transient: a later flush may succeed.
    """


class StorageCapacityError(StorageError):
    """A record exceeds the checkpoint store's size limit.

    Retrying cannot help because the buffer only grows.
    """

    def __init__(self, key: str, size: int, limit: int | None) -> None:
        self.key = key
        self.size = size
        self.limit = limit
        super().__init__(f"Record '{key}' is {size} bytes, store limit is {limit} bytes")


class FatalCrawlError(CrawlError):
    """The crawl must stop because durable progress can no longer be trusted."""


__all__ = [
    "CrawlError",
    "FatalCrawlError",
    "PageFetchError",
    "StorageCapacityError",
    "StorageError",
]
