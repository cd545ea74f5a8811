"""Key-value checkpoint storage for page batches and crawl state.

`CheckpointStore` owns the key layout (`STATE`, `PAGES-000000001`, ...). Other
modules should use this API instead of building keys manually.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Any, Iterator, Sequence
from urllib.parse import quote

import requests

from .constants import APIFY_API_BASE_URL, INPUT_KEY, STATE_KEY
from .errors import StorageCapacityError, StorageError
from .types import CrawlState, JSONValue, PageRecord, batch_key


logger = logging.getLogger(__name__)

VALID_KEY_RE = re.compile(r"^[a-zA-Z0-9!\-_.'()]{1,256}$")


def _check_key(key: str) -> str:
    if not VALID_KEY_RE.match(key):
        raise ValueError(f"Invalid store key: {key!r}")
    return key


class KeyValueStore:
    """Base class for JSON key-value backends.

    Subclasses implement `_read_bytes` / `_write_bytes`. Values are serialized
    here so every backend enforces the same record size limit.
    """

    def __init__(self, *, max_record_bytes: int | None = None) -> None:
        self.max_record_bytes = max_record_bytes

    def get_value(self, key: str) -> Any:
        """Return the decoded value for `key`, or None when absent."""

        raw = self._read_bytes(_check_key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StorageError(f"Record '{key}' is not valid JSON: {exc}") from exc

    def set_value(self, key: str, value: JSONValue) -> int:
        """Persist `value` under `key` and return the encoded record size."""

        data = self.encode(_check_key(key), value)
        self._write_bytes(key, data)
        return len(data)

    def encode(self, key: str, value: JSONValue) -> bytes:
        data = json.dumps(value, ensure_ascii=False).encode("utf-8")
        if self.max_record_bytes is not None and len(data) > self.max_record_bytes:
            raise StorageCapacityError(key, len(data), self.max_record_bytes)
        return data

    def _read_bytes(self, key: str) -> bytes | None:
        raise NotImplementedError

    def _write_bytes(self, key: str, data: bytes) -> None:
        raise NotImplementedError


class MemoryKeyValueStore(KeyValueStore):
    """In-process store, for tests and dry runs."""

    def __init__(self, *, max_record_bytes: int | None = None) -> None:
        super().__init__(max_record_bytes=max_record_bytes)
        self._lock = threading.Lock()
        self._records: dict[str, bytes] = {}

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._records)

    def _read_bytes(self, key: str) -> bytes | None:
        with self._lock:
            return self._records.get(key)

    def _write_bytes(self, key: str, data: bytes) -> None:
        with self._lock:
            self._records[key] = data


class FileKeyValueStore(KeyValueStore):
    """Persist each key as `<root>/<key>.json`, written atomically."""

    def __init__(self, root: str | Path, *, max_record_bytes: int | None = None) -> None:
        super().__init__(max_record_bytes=max_record_bytes)
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return self.root / f"{_check_key(key)}.json"

    def keys(self) -> list[str]:
        return sorted(path.stem for path in self.root.glob("*.json"))

    def _read_bytes(self, key: str) -> bytes | None:
        path = self.path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Cannot read '{path}': {exc}") from exc

    def _write_bytes(self, key: str, data: bytes) -> None:
        path = self.path_for(key)
        try:
            self._atomic_write_bytes(path, data)
        except OSError as exc:
            raise StorageError(f"Cannot write '{path}': {exc}") from exc

    @staticmethod
    def _atomic_write_bytes(path: Path, data: bytes) -> None:
        tmp_fd, tmp_path = tempfile.mkstemp(
            dir=str(path.parent),
            prefix=path.name + ".",
            suffix=".tmp",
        )
        try:
            with os.fdopen(tmp_fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            raise


class ApifyKeyValueStore(KeyValueStore):
    """Apify key-value store accessed over its HTTP API."""

    def __init__(
        self,
        store_id: str,
        *,
        token: str | None = None,
        base_url: str = APIFY_API_BASE_URL,
        timeout_seconds: float = 60.0,
        max_record_bytes: int | None = None,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(max_record_bytes=max_record_bytes)
        if not store_id:
            raise ValueError("store_id is required")
        self.store_id = store_id
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    def record_url(self, key: str) -> str:
        return (
            f"{self.base_url}/key-value-stores/{quote(self.store_id, safe='')}"
            f"/records/{quote(key, safe='')}"
        )

    def _read_bytes(self, key: str) -> bytes | None:
        url = self.record_url(key)
        try:
            response = self._session.get(url, timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            raise StorageError(f"GET {key} failed: {exc.__class__.__name__}: {exc}") from exc

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise StorageError(f"GET {key} failed with HTTP {response.status_code}")
        return response.content

    def _write_bytes(self, key: str, data: bytes) -> None:
        url = self.record_url(key)
        try:
            response = self._session.put(
                url,
                data=data,
                headers={"Content-Type": "application/json; charset=utf-8"},
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise StorageError(f"PUT {key} failed: {exc.__class__.__name__}: {exc}") from exc

        if response.status_code == 413:
            raise StorageCapacityError(key, len(data), self.max_record_bytes)
        if response.status_code >= 400:
            raise StorageError(f"PUT {key} failed with HTTP {response.status_code}")


class CheckpointStore:
    """Crawl-specific view of a key-value store: page batches plus `STATE`."""

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    def load_state(self) -> CrawlState:
        """Return the persisted crawl state, or zero counters when absent."""

        payload = self.kv.get_value(STATE_KEY)
        if payload is not None and not isinstance(payload, dict):
            raise StorageError(f"'{STATE_KEY}' record must be an object, got {type(payload)!r}")
        state = CrawlState.from_json(payload)
        logger.debug("Loaded crawl state: %s", state.to_json())
        return state

    def save_state(self, state: CrawlState) -> None:
        self.kv.set_value(STATE_KEY, state.to_json())

    def write_batch(self, key: str, records: Sequence[PageRecord]) -> int:
        """Write one batch of page records and return its encoded size."""

        return self.kv.set_value(key, [record.to_json() for record in records])

    def read_batch(self, key: str) -> list[PageRecord] | None:
        rows = self.kv.get_value(key)
        if rows is None:
            return None
        if not isinstance(rows, list):
            raise StorageError(f"Batch '{key}' must be a list, got {type(rows)!r}")
        return [PageRecord.from_json(row) for row in rows]

    def iter_batches(self, state: CrawlState | None = None) -> Iterator[tuple[str, list[PageRecord]]]:
        """Yield `(key, records)` for every batch counted by `state`."""

        resolved = state or self.load_state()
        for number in range(1, resolved.batch_count + 1):
            key = batch_key(number)
            records = self.read_batch(key)
            if records is None:
                raise StorageError(f"Batch '{key}' is missing from the store")
            yield key, records

    def read_input(self) -> dict[str, Any] | None:
        """Return the `INPUT` record, when the store carries one."""

        payload = self.kv.get_value(INPUT_KEY)
        if payload is None:
            return None
        if not isinstance(payload, dict):
            raise StorageError(f"'{INPUT_KEY}' record must be an object")
        return payload


__all__ = [
    "ApifyKeyValueStore",
    "CheckpointStore",
    "FileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
]
