"""Shared fakes for crawl scheduler and checkpoint tests."""

from __future__ import annotations

import json
import threading
from typing import Any

import pytest

from pagecrawl import (
    CheckpointStore,
    MemoryKeyValueStore,
    PageFetchResult,
    PageRecord,
)


class FakePageFetcher:
    """Serve canned `PageFetchResult`s (or raise canned exceptions) per URL."""

    def __init__(self, pages: dict[str, PageFetchResult | Exception] | None = None) -> None:
        self.pages = pages or {}
        self.calls: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    @property
    def urls(self) -> list[str]:
        with self._lock:
            return [call["url"] for call in self.calls]

    def fetch(self, url, *, proxy_url=None, user_agent=None, cache_policy=None):
        with self._lock:
            self.calls.append(
                {
                    "url": url,
                    "proxy_url": proxy_url,
                    "user_agent": user_agent,
                    "cache_policy": cache_policy,
                }
            )
        outcome = self.pages.get(url)
        if outcome is None:
            return PageFetchResult(loaded_url=url)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeAttachmentFetcher:
    def __init__(self, bodies: dict[str, bytes | Exception] | None = None) -> None:
        self.bodies = bodies or {}
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def fetch(self, url, *, user_agent=None, proxy_url=None, timeout=None):
        with self._lock:
            self.calls.append(url)
        outcome = self.bodies.get(url, b"attachment:" + url.encode("utf-8"))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self) -> None:
        pass


class ScriptedStore(MemoryKeyValueStore):
    """Memory store that can fail chosen writes and keeps a write history."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.history: list[tuple[str, Any]] = []
        self._failures: list[tuple[str, Exception]] = []
        self._script_lock = threading.Lock()

    def fail_next(self, key_prefix: str, exc: Exception, times: int = 1) -> None:
        with self._script_lock:
            self._failures.extend((key_prefix, exc) for _ in range(times))

    def batch_keys(self) -> list[str]:
        return [key for key in self.keys() if key.startswith("PAGES-")]

    def _write_bytes(self, key: str, data: bytes) -> None:
        with self._script_lock:
            for idx, (prefix, exc) in enumerate(self._failures):
                if key.startswith(prefix):
                    del self._failures[idx]
                    raise exc
            self.history.append((key, json.loads(data.decode("utf-8"))))
        super()._write_bytes(key, data)


def make_record(url: str, **kwargs: Any) -> PageRecord:
    kwargs.setdefault("loaded_url", url)
    return PageRecord(url=url, **kwargs)


@pytest.fixture
def kv() -> ScriptedStore:
    return ScriptedStore()


@pytest.fixture
def checkpoint(kv: ScriptedStore) -> CheckpointStore:
    return CheckpointStore(kv)
