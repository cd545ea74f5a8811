"""Crawler package: config, shared types, and checkpointed crawl components."""

from .buffer import ResultBuffer
from .config import (
    CrawlConfig,
    apply_input_aliases,
    load_config,
    read_config_payload,
    save_config,
)
from .errors import (
    CrawlError,
    FatalCrawlError,
    PageFetchError,
    StorageCapacityError,
    StorageError,
)
from .extract import PageExtractor, SelectorExtractor, SelectorExtractorConfig
from .fetcher import AttachmentFetcher, BrowserPageFetcher, PageFetcher
from .flush import FlushController, terminate_process
from .frontier import EnqueueResult, EnqueueStatus, Frontier
from .proxies import SessionChoice, SessionSelector, complete_proxy_url
from .scheduler import CrawlOutcome, CrawlScheduler
from .stats import StatsCollector
from .store import (
    ApifyKeyValueStore,
    CheckpointStore,
    FileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
)
from .types import (
    CachePolicy,
    CrawlState,
    CrawlStats,
    PageFetchResult,
    PageRecord,
    Payload,
    PayloadRef,
    WorkItem,
    batch_key,
    describe_exception,
    utc_now_iso,
)
from .url import extract_links_from_html, normalize_host, normalize_url, redact_url, resolve_url

__all__ = [
    "ApifyKeyValueStore",
    "AttachmentFetcher",
    "BrowserPageFetcher",
    "CachePolicy",
    "CheckpointStore",
    "CrawlConfig",
    "CrawlError",
    "CrawlOutcome",
    "CrawlScheduler",
    "CrawlState",
    "CrawlStats",
    "EnqueueResult",
    "EnqueueStatus",
    "FatalCrawlError",
    "FileKeyValueStore",
    "FlushController",
    "Frontier",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "PageExtractor",
    "PageFetchError",
    "PageFetchResult",
    "PageFetcher",
    "PageRecord",
    "Payload",
    "PayloadRef",
    "ResultBuffer",
    "SelectorExtractor",
    "SelectorExtractorConfig",
    "SessionChoice",
    "SessionSelector",
    "StatsCollector",
    "StorageCapacityError",
    "StorageError",
    "WorkItem",
    "apply_input_aliases",
    "batch_key",
    "complete_proxy_url",
    "describe_exception",
    "extract_links_from_html",
    "load_config",
    "normalize_host",
    "normalize_url",
    "read_config_payload",
    "redact_url",
    "resolve_url",
    "save_config",
    "terminate_process",
    "utc_now_iso",
]
