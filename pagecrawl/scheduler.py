"""Crawl scheduling: worker pool over the frontier, feeding the checkpoint flush."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import threading
from typing import Any

from .buffer import ResultBuffer
from .config import CrawlConfig
from .errors import FatalCrawlError
from .fetcher import AttachmentFetcher, BrowserPageFetcher, PageFetcher
from .flush import FlushController
from .frontier import EnqueueStatus, Frontier
from .proxies import SessionSelector
from .stats import StatsCollector
from .store import CheckpointStore
from .types import CrawlState, JSONDict, PageRecord, Payload, WorkItem, describe_exception


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CrawlOutcome:
    """Summary of a finished crawl run."""

    state: CrawlState
    frontier_size: int
    pages_ok: int
    pages_failed: int
    skipped_on_resume: int
    stats: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> JSONDict:
        return {
            "state": self.state.to_json(),
            "frontier_size": self.frontier_size,
            "pages_ok": self.pages_ok,
            "pages_failed": self.pages_failed,
            "skipped_on_resume": self.skipped_on_resume,
            "stats": self.stats,
        }


class CrawlScheduler:
    """Dispatch frontier URLs to `config.concurrency` worker threads.

    Each worker turns one work item into exactly one `PageRecord`, appends it to
    the shared result buffer, feeds discovered links back into the frontier,
    and triggers the flush policy. The run ends at frontier quiescence with a
    forced flush, or early when the flush controller reports a fatal error.
    """

    def __init__(
        self,
        config: CrawlConfig,
        *,
        store: CheckpointStore,
        page_fetcher: PageFetcher | None = None,
        attachment_fetcher: AttachmentFetcher | None = None,
        sessions: SessionSelector | None = None,
        buffer: ResultBuffer | None = None,
        flush_controller: FlushController | None = None,
        stats: StatsCollector | None = None,
    ) -> None:
        self.config = config
        self.store = store

        self.stats = stats or StatsCollector()
        self.buffer = buffer or ResultBuffer()
        self.flush_controller = flush_controller or FlushController.from_config(
            config,
            store,
            self.buffer,
            stats=self.stats,
        )
        self.page_fetcher = page_fetcher or BrowserPageFetcher.from_config(config)
        self.attachment_fetcher = attachment_fetcher or AttachmentFetcher(
            default_timeout_seconds=config.page_timeout_seconds
        )
        self.sessions = sessions or SessionSelector(config.proxy_urls, config.user_agents)

        self._owns_attachment_fetcher = attachment_fetcher is None

        self.frontier: Frontier | None = None
        self._fatal_lock = threading.Lock()
        self._fatal: FatalCrawlError | None = None

    def run(self) -> CrawlOutcome:
        """Crawl until the frontier is exhausted, then force a final flush.

        Raises `FatalCrawlError` when durable progress could not be recorded.
        """

        state = self.flush_controller.state
        frontier = Frontier(dedupe=self.config.dedupe_urls)
        self.frontier = frontier

        if state.processed_count > 0:
            logger.info("Skipping first %d pages that were already crawled", state.processed_count)
        seed_results = frontier.seed(self.config.seeds, skip=state.processed_count)
        skipped_on_resume = sum(
            1 for result in seed_results if result.status == EnqueueStatus.SKIPPED_RESUMED
        )

        try:
            if not frontier.empty():
                self._run_workers(frontier)
        finally:
            frontier.close()
            self.stats.record_frontier_snapshot(frontier.snapshot())
            if self._owns_attachment_fetcher:
                self.attachment_fetcher.close()

        if self._fatal is not None:
            self.stats.finish()
            raise self._fatal

        self.flush_controller.flush(force=True)
        self.stats.finish()

        core = self.stats.core()
        outcome = CrawlOutcome(
            state=self.flush_controller.state,
            frontier_size=len(frontier),
            pages_ok=core.pages_ok,
            pages_failed=core.pages_failed,
            skipped_on_resume=skipped_on_resume,
            stats=self.stats.to_json(),
        )
        logger.info(
            "Crawl finished: %d pages stored in %d batches, frontier size %d",
            outcome.state.processed_count,
            outcome.state.batch_count,
            outcome.frontier_size,
        )
        return outcome

    def _run_workers(self, frontier: Frontier) -> None:
        workers = [
            threading.Thread(
                target=self._frontier_worker,
                args=(frontier,),
                name=f"crawler-worker-{idx}",
                daemon=True,
            )
            for idx in range(self.config.concurrency)
        ]

        for worker in workers:
            worker.start()

        frontier.join()
        frontier.close()

        for worker in workers:
            worker.join()

    def _frontier_worker(self, frontier: Frontier) -> None:
        while True:
            item = frontier.pop(block=True, timeout=0.5)
            if item is None:
                if frontier.closed:
                    return
                continue

            try:
                record, links = self.process_item(item)
                self.buffer.append(record)
                if links:
                    frontier.push_many(links, referrer=record.loaded_url or item.url)
                self.stats.record_page(record, links=len(links))
                logger.info("Finished page: %s", item.url)

                # After an abort, buffered records are left for the next run.
                if not frontier.closed:
                    self.flush_controller.on_record_appended()
            except FatalCrawlError as exc:
                self._abort(frontier, exc)
            except Exception:
                logger.exception("Unhandled exception from worker for %s", item.url)
            finally:
                frontier.task_done()

    def process_item(self, item: WorkItem) -> tuple[PageRecord, list[str]]:
        """Visit one URL and return its record plus discovered links.

        Never raises for page-level problems: failures become `error_info`.
        Links found before an attachment failure are still returned.
        """

        choice = self.sessions.choose()
        record = PageRecord(
            url=item.url,
            user_agent=choice.user_agent,
            proxy_url=choice.redacted_proxy_url,
        )
        links: list[str] = []

        logger.info(
            "Loading page: %s%s",
            item.url,
            f" (proxyUrl: {record.proxy_url})" if record.proxy_url else "",
        )

        try:
            result = self.page_fetcher.fetch(
                item.url,
                proxy_url=choice.proxy_url,
                user_agent=choice.user_agent,
                cache_policy=self.config.cache_policy,
            )
            record.loaded_url = result.loaded_url
            record.loading_finished_at = result.loading_finished_at
            links = list(result.links)

            ref = result.payload_ref
            if ref is not None:
                body = self.attachment_fetcher.fetch(
                    ref.attachment_url,
                    user_agent=choice.user_agent,
                    proxy_url=choice.proxy_url,
                    timeout=self.config.page_timeout_seconds,
                )
                record.payload = Payload(
                    title=ref.title,
                    attachment_url=ref.attachment_url,
                    attachment=body,
                )
        except Exception as exc:
            logger.warning("Loading of web page failed (%s): %s", item.url, exc)
            record.error_info = describe_exception(exc)

        return record, links

    def _abort(self, frontier: Frontier, exc: FatalCrawlError) -> None:
        with self._fatal_lock:
            if self._fatal is None:
                self._fatal = exc
                logger.error("Aborting crawl: %s", exc)
        frontier.close()


__all__ = [
    "CrawlOutcome",
    "CrawlScheduler",
]
