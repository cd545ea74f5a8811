"""Thread-safe buffer of finished page records awaiting a checkpoint flush."""

from __future__ import annotations

import threading

from .types import PageRecord


class ResultBuffer:
    """Ordered, append-only buffer shared by crawl workers and the flush controller.

    Only two mutations are allowed: `append` at the tail, and `drain` of a prefix
    previously returned by `snapshot`. Records appended while a snapshot is being
    written stay behind the drained prefix.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[PageRecord] = []
        self._appended_total = 0

    def append(self, record: PageRecord) -> int:
        """Append one record and return the buffer size after the append."""

        with self._lock:
            self._records.append(record)
            self._appended_total += 1
            return len(self._records)

    def snapshot(self) -> tuple[PageRecord, ...]:
        """Return a copy of the currently buffered records without removing them."""

        with self._lock:
            return tuple(self._records)

    def drain(self, count: int) -> None:
        """Remove exactly the first `count` records (a previously snapshotted prefix)."""

        if count < 0:
            raise ValueError("count must be >= 0")
        with self._lock:
            if count > len(self._records):
                raise ValueError(
                    f"Cannot drain {count} records from a buffer of {len(self._records)}"
                )
            del self._records[:count]

    @property
    def appended_total(self) -> int:
        """Number of records ever appended (drained or not)."""

        with self._lock:
            return self._appended_total

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __bool__(self) -> bool:
        return len(self) > 0


__all__ = ["ResultBuffer"]
