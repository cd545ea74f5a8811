from __future__ import annotations

import threading

import pytest

from pagecrawl import (
    CheckpointStore,
    CrawlState,
    FatalCrawlError,
    FlushController,
    ResultBuffer,
    StatsCollector,
    StorageCapacityError,
    StorageError,
)

from conftest import ScriptedStore, make_record


def _controller(checkpoint, buffer, **kwargs) -> FlushController:
    kwargs.setdefault("threshold", 2)
    kwargs.setdefault("retry_backoff_seconds", 0)
    kwargs.setdefault("on_capacity_exceeded", lambda exc: None)
    return FlushController(checkpoint, buffer, **kwargs)


def _fill(buffer: ResultBuffer, count: int, start: int = 0) -> None:
    for idx in range(start, start + count):
        buffer.append(make_record(f"http://site/{idx}"))


def test_empty_buffer_is_a_noop_even_when_forced(kv, checkpoint):
    controller = _controller(checkpoint, ResultBuffer())

    assert controller.flush(force=True) is False
    assert kv.history == []


def test_flush_below_threshold_is_skipped(kv, checkpoint):
    buffer = ResultBuffer()
    controller = _controller(checkpoint, buffer, threshold=3)
    _fill(buffer, 2)

    assert controller.on_record_appended() is False
    assert kv.history == []

    _fill(buffer, 1, start=2)
    assert controller.on_record_appended() is True
    assert kv.batch_keys() == ["PAGES-000000001"]
    assert len(buffer) == 0


@pytest.mark.parametrize("threshold", [1, 2, 3, 5])
@pytest.mark.parametrize("appended", [0, 1, 4, 7, 10])
def test_batches_written_only_when_threshold_reached(threshold, appended):
    kv = ScriptedStore()
    buffer = ResultBuffer()
    controller = _controller(CheckpointStore(kv), buffer, threshold=threshold)

    for idx in range(appended):
        buffer.append(make_record(f"http://site/{idx}"))
        controller.on_record_appended()

    batches = [value for key, value in kv.history if key.startswith("PAGES-")]
    assert len(batches) == appended // threshold
    assert all(len(batch) == threshold for batch in batches)
    assert len(buffer) == appended % threshold


def test_forced_flush_bypasses_threshold(kv, checkpoint):
    buffer = ResultBuffer()
    controller = _controller(checkpoint, buffer, threshold=10)
    _fill(buffer, 3)

    assert controller.flush(force=True) is True
    assert controller.state == CrawlState(processed_count=3, batch_count=1)
    assert len(kv.get_value("PAGES-000000001")) == 3


def test_counters_match_written_batches(kv, checkpoint):
    buffer = ResultBuffer()
    controller = _controller(checkpoint, buffer, threshold=2)

    seen_states = []
    for idx in range(9):
        buffer.append(make_record(f"http://site/{idx}"))
        controller.on_record_appended()
        seen_states.append(controller.state)
    controller.flush(force=True)
    seen_states.append(controller.state)

    batches = [kv.get_value(key) for key in kv.batch_keys()]
    state = checkpoint.load_state()
    assert state == controller.state
    assert state.batch_count == len(batches) == 5
    assert state.processed_count == sum(len(batch) for batch in batches) == 9

    processed = [s.processed_count for s in seen_states]
    batch_counts = [s.batch_count for s in seen_states]
    assert processed == sorted(processed)
    assert batch_counts == sorted(batch_counts)

    stored_urls = [row["url"] for batch in batches for row in batch]
    assert stored_urls == [f"http://site/{idx}" for idx in range(9)]


def test_state_is_written_after_its_batch(kv, checkpoint):
    buffer = ResultBuffer()
    controller = _controller(checkpoint, buffer, threshold=1)
    _fill(buffer, 1)
    controller.on_record_appended()

    assert [key for key, _ in kv.history] == ["PAGES-000000001", "STATE"]
    assert kv.history[1][1] == {"processedCount": 1, "batchCount": 1}


def test_resumed_state_continues_batch_numbering(kv, checkpoint):
    checkpoint.save_state(CrawlState(processed_count=20, batch_count=2))
    buffer = ResultBuffer()
    controller = _controller(checkpoint, buffer, threshold=1)
    _fill(buffer, 1)

    controller.on_record_appended()

    assert "PAGES-000000003" in kv.batch_keys()
    assert checkpoint.load_state() == CrawlState(processed_count=21, batch_count=3)


def test_transient_error_is_swallowed_and_retried_with_larger_buffer(kv, checkpoint):
    buffer = ResultBuffer()
    stats = StatsCollector()
    controller = _controller(checkpoint, buffer, threshold=2, stats=stats)
    kv.fail_next("PAGES-", StorageError("network blip"))
    _fill(buffer, 2)

    assert controller.on_record_appended() is False
    assert len(buffer) == 2
    assert controller.state == CrawlState()
    assert kv.get_value("STATE") is None

    _fill(buffer, 1, start=2)
    assert controller.on_record_appended() is True
    assert len(kv.get_value("PAGES-000000001")) == 3
    assert controller.state == CrawlState(processed_count=3, batch_count=1)
    assert stats.core().flushes_failed == 1


def test_storage_error_in_forced_flush_is_fatal(kv, checkpoint):
    buffer = ResultBuffer()
    controller = _controller(checkpoint, buffer)
    kv.fail_next("PAGES-", StorageError("store down"))
    _fill(buffer, 1)

    with pytest.raises(FatalCrawlError) as excinfo:
        controller.flush(force=True)

    assert isinstance(excinfo.value.__cause__, StorageError)
    assert len(buffer) == 1
    assert controller.state == CrawlState()


@pytest.mark.parametrize("force", [False, True])
def test_capacity_error_invokes_handler_and_is_fatal(force):
    kv = ScriptedStore(max_record_bytes=64)
    checkpoint = CheckpointStore(kv)
    buffer = ResultBuffer()
    handled = []
    controller = _controller(
        checkpoint,
        buffer,
        threshold=1,
        on_capacity_exceeded=handled.append,
    )
    buffer.append(make_record("http://site/" + "x" * 200))

    with pytest.raises(FatalCrawlError) as excinfo:
        controller.flush(force=force)

    assert len(handled) == 1
    assert isinstance(handled[0], StorageCapacityError)
    assert excinfo.value.__cause__ is handled[0]
    assert kv.keys() == []


def test_state_write_is_retried_alone_with_linear_backoff(kv, checkpoint):
    buffer = ResultBuffer()
    sleeps: list[float] = []
    controller = _controller(
        checkpoint,
        buffer,
        threshold=1,
        state_write_retries=3,
        retry_backoff_seconds=1.5,
        sleep=sleeps.append,
    )
    kv.fail_next("STATE", StorageError("flaky"), times=2)
    _fill(buffer, 1)

    assert controller.on_record_appended() is True

    assert sleeps == [1.5, 3.0]
    assert [key for key, _ in kv.history] == ["PAGES-000000001", "STATE"]
    assert checkpoint.load_state() == CrawlState(processed_count=1, batch_count=1)


def test_state_write_failure_after_batch_is_fatal_and_keeps_key_taken(kv, checkpoint):
    buffer = ResultBuffer()
    controller = _controller(checkpoint, buffer, threshold=1, state_write_retries=1)
    kv.fail_next("STATE", StorageError("down"), times=2)
    _fill(buffer, 1)

    with pytest.raises(FatalCrawlError):
        controller.on_record_appended()

    assert kv.batch_keys() == ["PAGES-000000001"]
    assert kv.get_value("STATE") is None
    assert len(buffer) == 0
    assert controller.state == CrawlState(processed_count=1, batch_count=1)

    # A later flush must not overwrite the stored batch.
    _fill(buffer, 1, start=1)
    controller.flush(force=True)
    assert kv.batch_keys() == ["PAGES-000000001", "PAGES-000000002"]
    assert checkpoint.load_state() == CrawlState(processed_count=2, batch_count=2)


class BlockingStore(ScriptedStore):
    """Block batch writes until released; track concurrent writers."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()
        self.active = 0
        self.max_active = 0
        self._active_lock = threading.Lock()

    def _write_bytes(self, key: str, data: bytes) -> None:
        with self._active_lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if key.startswith("PAGES-"):
                self.entered.set()
                assert self.release.wait(timeout=5)
            super()._write_bytes(key, data)
        finally:
            with self._active_lock:
                self.active -= 1


def test_overlapping_trigger_is_skipped_and_late_records_survive():
    kv = BlockingStore()
    buffer = ResultBuffer()
    stats = StatsCollector()
    controller = _controller(CheckpointStore(kv), buffer, threshold=2, stats=stats)
    _fill(buffer, 2)

    flusher = threading.Thread(target=controller.on_record_appended)
    flusher.start()
    assert kv.entered.wait(timeout=5)

    _fill(buffer, 2, start=2)
    assert controller.flushing is True
    assert controller.on_record_appended() is False
    assert stats.core().flushes_skipped == 1

    kv.release.set()
    flusher.join(timeout=5)

    assert [row["url"] for row in kv.get_value("PAGES-000000001")] == [
        "http://site/0",
        "http://site/1",
    ]
    assert [record.url for record in buffer.snapshot()] == ["http://site/2", "http://site/3"]
    assert kv.batch_keys() == ["PAGES-000000001"]
    assert controller.state == CrawlState(processed_count=2, batch_count=1)
    assert kv.max_active == 1


def test_forced_flush_waits_for_running_flush():
    kv = BlockingStore()
    buffer = ResultBuffer()
    controller = _controller(CheckpointStore(kv), buffer, threshold=2)
    _fill(buffer, 2)

    first = threading.Thread(target=controller.on_record_appended)
    first.start()
    assert kv.entered.wait(timeout=5)
    _fill(buffer, 1, start=2)

    results: list[bool] = []
    forced = threading.Thread(target=lambda: results.append(controller.flush(force=True)))
    forced.start()
    forced.join(timeout=0.2)
    assert forced.is_alive()

    kv.release.set()
    first.join(timeout=5)
    forced.join(timeout=5)

    assert results == [True]
    assert kv.batch_keys() == ["PAGES-000000001", "PAGES-000000002"]
    assert [row["url"] for row in kv.get_value("PAGES-000000002")] == ["http://site/2"]
    assert controller.state == CrawlState(processed_count=3, batch_count=2)
    assert kv.max_active == 1
    assert len(buffer) == 0


def test_concurrent_triggers_never_lose_or_duplicate_records():
    kv = ScriptedStore()
    buffer = ResultBuffer()
    controller = _controller(CheckpointStore(kv), buffer, threshold=3)

    def worker(worker_id: int) -> None:
        for idx in range(50):
            buffer.append(make_record(f"http://site/{worker_id}/{idx}"))
            controller.on_record_appended()

    threads = [threading.Thread(target=worker, args=(worker_id,)) for worker_id in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    controller.flush(force=True)

    batches = [kv.get_value(key) for key in kv.batch_keys()]
    urls = [row["url"] for batch in batches for row in batch]
    assert len(urls) == 300
    assert len(set(urls)) == 300
    assert controller.state.processed_count == 300
    assert controller.state.batch_count == len(batches)
