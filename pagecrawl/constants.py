"""Shared defaults for crawl configuration and checkpoint storage."""

from __future__ import annotations


DEFAULT_CONCURRENCY = 1
DEFAULT_STORE_PAGES_INTERVAL = 10
DEFAULT_PAGE_TIMEOUT_SECONDS = 30.0
DEFAULT_SLEEP_SECONDS = 0.0
DEFAULT_AVOID_CACHE = False
DEFAULT_CACHE_DIR = "/tmp/chrome-cache/"
DEFAULT_DEDUPE_URLS = False
DEFAULT_HEADLESS = True
DEFAULT_STATE_WRITE_RETRIES = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 1.0

# Apify key-value store rejects records above ~9 MB.
DEFAULT_MAX_RECORD_BYTES = 9 * 1024 * 1024

STATE_KEY = "STATE"
INPUT_KEY = "INPUT"
BATCH_KEY_PREFIX = "PAGES-"
BATCH_KEY_WIDTH = 9

RANDOM_SESSION_PLACEHOLDER = "<randomSessionId>"
RANDOM_SESSION_UPPER_BOUND = 999_999_999

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_INVALID_CONFIG = 2
EXIT_STORAGE_CAPACITY = 3
EXIT_INTERRUPTED = 130

JSON_INDENT = 2
SUPPORTED_CONFIG_SUFFIXES = (".json", ".yaml", ".yml")

APIFY_API_BASE_URL = "https://api.apify.com/v2"
