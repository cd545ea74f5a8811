"""Page fetching with selenium and attachment downloads with requests."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Protocol
from urllib.parse import urlsplit

import requests
from selenium import webdriver
from selenium.common.exceptions import WebDriverException
from selenium.webdriver.chrome.options import Options as ChromeOptions
from selenium.webdriver.firefox.options import Options as FirefoxOptions

from .config import CrawlConfig
from .errors import PageFetchError
from .extract import PageExtractor, SelectorExtractor, SelectorExtractorConfig
from .types import CachePolicy, PageFetchResult, describe_exception, utc_now_iso


logger = logging.getLogger(__name__)

DriverFactory = Callable[..., Any]


class PageFetcher(Protocol):
    """Load one page and return its resolved URL, links, and payload reference."""

    def fetch(
        self,
        url: str,
        *,
        proxy_url: str | None = None,
        user_agent: str | None = None,
        cache_policy: CachePolicy | None = None,
    ) -> PageFetchResult:
        ...


def proxy_server_address(proxy_url: str | None) -> str | None:
    """Return `scheme://host:port` for browser proxy flags (credentials dropped)."""

    if not proxy_url:
        return None
    parsed = urlsplit(proxy_url)
    if not parsed.hostname:
        raise ValueError(f"Invalid proxy URL: {proxy_url!r}")
    address = parsed.hostname
    if parsed.port is not None:
        address = f"{address}:{parsed.port}"
    return f"{parsed.scheme or 'http'}://{address}"


def build_chrome_options(
    *,
    headless: bool,
    proxy_url: str | None,
    user_agent: str | None,
    cache_policy: CachePolicy | None,
) -> ChromeOptions:
    options = ChromeOptions()
    if headless:
        options.add_argument("--headless=new")
    options.add_argument("--disable-gpu")
    options.add_argument("--no-sandbox")
    options.add_argument("--disable-dev-shm-usage")
    if user_agent:
        options.add_argument(f"--user-agent={user_agent}")

    proxy_server = proxy_server_address(proxy_url)
    if proxy_server:
        options.add_argument(f"--proxy-server={proxy_server}")

    if cache_policy is not None and not cache_policy.avoid_cache and cache_policy.cache_dir:
        options.add_argument(f"--disk-cache-dir={cache_policy.cache_dir}")
        if cache_policy.cache_size_megabytes:
            options.add_argument(
                f"--disk-cache-size={cache_policy.cache_size_megabytes * 1024 * 1024}"
            )
    return options


def build_firefox_options(
    *,
    headless: bool,
    proxy_url: str | None,
    user_agent: str | None,
    cache_policy: CachePolicy | None,
) -> FirefoxOptions:
    options = FirefoxOptions()
    if headless:
        options.add_argument("-headless")
    if user_agent:
        options.set_preference("general.useragent.override", user_agent)

    proxy_server = proxy_server_address(proxy_url)
    if proxy_server:
        parsed = urlsplit(proxy_server)
        options.set_preference("network.proxy.type", 1)
        for scheme in ("http", "ssl"):
            options.set_preference(f"network.proxy.{scheme}", parsed.hostname)
            options.set_preference(f"network.proxy.{scheme}_port", parsed.port or 80)

    if cache_policy is not None:
        if cache_policy.avoid_cache:
            options.set_preference("browser.cache.disk.enable", False)
        elif cache_policy.cache_dir:
            options.set_preference("browser.cache.disk.parent_directory", cache_policy.cache_dir)
            if cache_policy.cache_size_megabytes:
                # Firefox expects kilobytes.
                options.set_preference(
                    "browser.cache.disk.capacity",
                    cache_policy.cache_size_megabytes * 1024,
                )
    return options


def create_browser_driver(
    *,
    headless: bool = True,
    proxy_url: str | None = None,
    user_agent: str | None = None,
    cache_policy: CachePolicy | None = None,
):
    """Start a Chrome driver, falling back to Firefox."""

    errors: list[str] = []
    option_kwargs = {
        "headless": headless,
        "proxy_url": proxy_url,
        "user_agent": user_agent,
        "cache_policy": cache_policy,
    }

    # Try Chrome first.
    try:
        return webdriver.Chrome(options=build_chrome_options(**option_kwargs))
    except WebDriverException as exc:
        errors.append(f"Chrome: {exc}")

    # Fallback to Firefox.
    try:
        return webdriver.Firefox(options=build_firefox_options(**option_kwargs))
    except WebDriverException as exc:
        errors.append(f"Firefox: {exc}")

    raise PageFetchError("; ".join(errors) or "No usable Selenium driver found")


class BrowserPageFetcher:
    """Fetch pages with a real browser, one fresh driver per page.

    A driver is bound to a single proxy and user agent, so drivers are not
    shared between work items; concurrent workers each run their own browser.
    """

    def __init__(
        self,
        *,
        extractor: PageExtractor | None = None,
        timeout_seconds: float = 30.0,
        sleep_seconds: float = 0.0,
        headless: bool = True,
        driver_factory: DriverFactory | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.extractor = extractor or SelectorExtractor()
        self.timeout_seconds = timeout_seconds
        self.sleep_seconds = sleep_seconds
        self.headless = headless
        self._driver_factory = driver_factory or create_browser_driver
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: CrawlConfig, **kwargs: Any) -> "BrowserPageFetcher":
        kwargs.setdefault(
            "extractor",
            SelectorExtractor(SelectorExtractorConfig.from_crawl_config(config)),
        )
        return cls(
            timeout_seconds=config.page_timeout_seconds,
            sleep_seconds=config.sleep_seconds,
            headless=config.headless,
            **kwargs,
        )

    def fetch(
        self,
        url: str,
        *,
        proxy_url: str | None = None,
        user_agent: str | None = None,
        cache_policy: CachePolicy | None = None,
    ) -> PageFetchResult:
        try:
            driver = self._driver_factory(
                headless=self.headless,
                proxy_url=proxy_url,
                user_agent=user_agent,
                cache_policy=cache_policy,
            )
        except PageFetchError:
            raise
        except (WebDriverException, ValueError) as exc:
            raise PageFetchError(f"Failed to start browser: {describe_exception(exc)}") from exc

        try:
            driver.set_page_load_timeout(self.timeout_seconds)
            driver.get(url)
            loading_finished_at = utc_now_iso()

            # Optional settling time for pages that render content after load.
            if self.sleep_seconds > 0:
                self._sleep(self.sleep_seconds)

            loaded_url = driver.current_url or url
            document = driver.page_source or ""
        except WebDriverException as exc:
            raise PageFetchError(describe_exception(exc)) from exc
        finally:
            self._quit(driver)

        return PageFetchResult(
            loaded_url=loaded_url,
            links=self.extractor.extract_links(document, loaded_url),
            payload_ref=self.extractor.extract_payload(document, loaded_url),
            loading_finished_at=loading_finished_at,
        )

    @staticmethod
    def _quit(driver) -> None:
        try:
            driver.quit()
        except WebDriverException as exc:
            logger.debug("Ignoring browser shutdown error: %s", exc)


class AttachmentFetcher:
    """Download attachment bytes with `requests` (thread-local sessions)."""

    def __init__(self, *, default_timeout_seconds: float = 30.0) -> None:
        self.default_timeout_seconds = default_timeout_seconds
        self._thread_local = threading.local()
        self._sessions: list[requests.Session] = []
        self._sessions_lock = threading.Lock()

    def fetch(
        self,
        url: str,
        *,
        user_agent: str | None = None,
        proxy_url: str | None = None,
        timeout: float | None = None,
    ) -> bytes:
        """Return the response body; raises `requests.RequestException` on failure."""

        headers = {"User-Agent": user_agent} if user_agent else None
        proxies = {"http": proxy_url, "https": proxy_url} if proxy_url else None

        response = self._thread_local_session().get(
            url,
            headers=headers,
            proxies=proxies,
            timeout=timeout or self.default_timeout_seconds,
            allow_redirects=True,
        )
        response.raise_for_status()
        return response.content if response.content is not None else b""

    def close(self) -> None:
        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()

    def __enter__(self) -> "AttachmentFetcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _thread_local_session(self) -> requests.Session:
        session = getattr(self._thread_local, "session", None)
        if session is None:
            session = requests.Session()
            self._thread_local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session


__all__ = [
    "AttachmentFetcher",
    "BrowserPageFetcher",
    "PageFetcher",
    "build_chrome_options",
    "build_firefox_options",
    "create_browser_driver",
    "proxy_server_address",
]
