"""URL helpers for link discovery: canonical form, scope checks, redaction."""

from __future__ import annotations

import re
from typing import Iterable
from urllib.parse import urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup


HTTP_SCHEMES = frozenset({"http", "https"})
DEFAULT_PORTS = {"http": 80, "https": 443}
REDACTED_PASSWORD = "<redacted>"


def normalize_host(url_or_domain: str | None) -> str:
    """Lowercased host of a URL or bare domain, without `www.` or stray dots."""

    raw = (url_or_domain or "").strip()
    if not raw:
        return ""
    host = urlsplit(raw if "://" in raw else f"//{raw}").hostname or ""
    host = host.lower().strip(".")
    if host.startswith("www."):
        host = host[len("www."):]
    return host


def _port(parts) -> int | None:
    try:
        return parts.port
    except ValueError:
        return None


def redact_url(url: str | None) -> str | None:
    """Replace the password of a URL (proxy credentials) with a marker."""

    if not url:
        return url
    parts = urlsplit(url)
    if parts.password is None:
        return url

    netloc = f"{parts.username or ''}:{REDACTED_PASSWORD}@{parts.hostname or ''}"
    port = _port(parts)
    if port is not None:
        netloc = f"{netloc}:{port}"
    return urlunsplit(parts._replace(netloc=netloc))


def normalize_url(url: str | None) -> str | None:
    """Canonical form of an absolute http(s) URL, or None when it is not one.

    Scheme and host are lowercased, default ports and the fragment are dropped,
    and an empty path becomes `/`. Path and query are kept as written.
    """

    parts = urlsplit((url or "").strip())
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if scheme not in HTTP_SCHEMES or not host:
        return None

    netloc = host
    if parts.username:
        userinfo = parts.username
        if parts.password:
            userinfo = f"{userinfo}:{parts.password}"
        netloc = f"{userinfo}@{netloc}"
    port = _port(parts)
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f"{netloc}:{port}"

    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, ""))


def resolve_url(base_url: str, href: str | None, *, normalize: bool = True) -> str | None:
    """Absolute http(s) URL for an `href` found on `base_url`, or None."""

    candidate = (href or "").strip()
    if not candidate or candidate.startswith("#"):
        return None

    absolute = urljoin(base_url, candidate)
    if normalize:
        return normalize_url(absolute)
    parts = urlsplit(absolute)
    if parts.scheme.lower() not in HTTP_SCHEMES or not parts.hostname:
        return None
    return absolute


def host_in_domains(host: str, allowed_domains: Iterable[str]) -> bool:
    """True when `host` equals or is a subdomain of an allowed domain."""

    host = normalize_host(host)
    if not host:
        return False
    for domain in allowed_domains:
        domain = normalize_host(domain)
        if domain and (host == domain or host.endswith("." + domain)):
            return True
    return False


def is_url_in_scope(
    url: str,
    *,
    allowed_domains: Iterable[str] | None = None,
    link_regex: re.Pattern[str] | None = None,
) -> bool:
    """Check the domain allow-list (when given) and the link pattern (when set)."""

    if allowed_domains is not None and not host_in_domains(url, allowed_domains):
        return False
    return link_regex is None or link_regex.search(url) is not None


def extract_links_from_html(
    html: str | bytes,
    *,
    base_url: str,
    allowed_domains: Iterable[str] | None = None,
    link_regex: re.Pattern[str] | None = None,
    include_nofollow: bool = False,
    normalize: bool = True,
    unique: bool = False,
) -> list[str]:
    """In-scope links of `a`/`area` elements, in document order.

    Repeated links are kept unless `unique` is set.
    """

    domains = None if allowed_domains is None else list(allowed_domains)
    soup = BeautifulSoup(html, "lxml")

    links: list[str] = []
    seen: set[str] = set()
    for element in soup.select("a[href], area[href]"):
        rel = {value.lower() for value in element.get("rel") or []}
        if "nofollow" in rel and not include_nofollow:
            continue

        url = resolve_url(base_url, element.get("href"), normalize=normalize)
        if url is None:
            continue
        if not is_url_in_scope(url, allowed_domains=domains, link_regex=link_regex):
            continue

        if unique:
            if url in seen:
                continue
            seen.add(url)
        links.append(url)

    return links


__all__ = [
    "HTTP_SCHEMES",
    "REDACTED_PASSWORD",
    "extract_links_from_html",
    "host_in_domains",
    "is_url_in_scope",
    "normalize_host",
    "normalize_url",
    "redact_url",
    "resolve_url",
]
