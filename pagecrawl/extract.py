"""Link and payload extraction against a rendered page's HTML."""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Iterable, Protocol

from bs4 import BeautifulSoup

from .config import CrawlConfig
from .types import PayloadRef
from .url import extract_links_from_html, resolve_url


class PageExtractor(Protocol):
    """Extraction capability used by page fetchers.

    `document` is the rendered page source. Implementations must not fetch
    anything themselves.
    """

    def extract_links(self, document: str, base_url: str) -> list[str]:
        ...

    def extract_payload(self, document: str, base_url: str) -> PayloadRef | None:
        ...


@dataclass(slots=True)
class SelectorExtractorConfig:
    """CSS-selector driven extraction settings."""

    allowed_domains: list[str] = field(default_factory=list)
    link_regex: re.Pattern[str] | None = None
    title_selector: str | None = None
    attachment_selector: str | None = None
    include_nofollow_links: bool = False
    unique_links: bool = False

    @classmethod
    def from_crawl_config(cls, config: CrawlConfig) -> "SelectorExtractorConfig":
        return cls(
            allowed_domains=list(config.allowed_domains),
            link_regex=config.link_regex,
            title_selector=config.title_selector,
            attachment_selector=config.attachment_selector,
            unique_links=config.dedupe_urls,
        )


class SelectorExtractor:
    """Extract in-scope links and an optional titled attachment link.

    A payload exists only when `attachment_selector` matches an element with a
    usable `href` (or `src`). The title is the text of `title_selector`.
    """

    def __init__(self, config: SelectorExtractorConfig | None = None) -> None:
        self.config = config or SelectorExtractorConfig()

    def extract_links(self, document: str, base_url: str) -> list[str]:
        allowed: Iterable[str] | None = self.config.allowed_domains or None
        return extract_links_from_html(
            document,
            base_url=base_url,
            allowed_domains=allowed,
            link_regex=self.config.link_regex,
            include_nofollow=self.config.include_nofollow_links,
            normalize=True,
            unique=self.config.unique_links,
        )

    def extract_payload(self, document: str, base_url: str) -> PayloadRef | None:
        if not self.config.attachment_selector:
            return None

        soup = BeautifulSoup(document, "lxml")
        element = soup.select_one(self.config.attachment_selector)
        if element is None:
            return None

        href = element.get("href") or element.get("src")
        attachment_url = resolve_url(base_url, href, normalize=False)
        if not attachment_url:
            return None

        return PayloadRef(title=self._extract_title(soup), attachment_url=attachment_url)

    def _extract_title(self, soup: BeautifulSoup) -> str | None:
        if self.config.title_selector:
            node = soup.select_one(self.config.title_selector)
            if node is not None:
                text = node.get_text(" ", strip=True)
                return text or None
            return None

        if soup.title and soup.title.string:
            return soup.title.string.strip() or None
        return None


__all__ = [
    "PageExtractor",
    "SelectorExtractor",
    "SelectorExtractorConfig",
]
