"""Typed crawler configuration with JSON/YAML load/save helpers."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml  # type: ignore

from .constants import (
    DEFAULT_AVOID_CACHE,
    DEFAULT_CACHE_DIR,
    DEFAULT_CONCURRENCY,
    DEFAULT_DEDUPE_URLS,
    DEFAULT_HEADLESS,
    DEFAULT_MAX_RECORD_BYTES,
    DEFAULT_PAGE_TIMEOUT_SECONDS,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_SLEEP_SECONDS,
    DEFAULT_STATE_WRITE_RETRIES,
    DEFAULT_STORE_PAGES_INTERVAL,
    JSON_INDENT,
    SUPPORTED_CONFIG_SUFFIXES,
)
from .types import CachePolicy, JSONDict, JSONValue
from .url import normalize_host


# Keys accepted from the actor-style INPUT record.
INPUT_KEY_ALIASES: dict[str, str] = {
    "urls": "seeds",
    "startUrls": "seeds",
    "proxyUrls": "proxy_urls",
    "userAgents": "user_agents",
    "avoidCache": "avoid_cache",
    "cacheSizeMegabytes": "cache_size_megabytes",
    "sleepSecs": "sleep_seconds",
    "storePagesInterval": "store_pages_interval",
    "pageTimeoutSecs": "page_timeout_seconds",
}


def _as_float(value: Any, key: str) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid float for '{key}': {value!r}") from exc


def _as_int(value: Any, key: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid int for '{key}': {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid int for '{key}': {value!r}") from exc


def _int_or(data: Mapping[str, Any], key: str, default: int) -> int:
    # Input records may carry explicit nulls for unset numbers.
    value = _as_int(data.get(key), key)
    return default if value is None else value


def _float_or(data: Mapping[str, Any], key: str, default: float) -> float:
    value = _as_float(data.get(key), key)
    return default if value is None else value


def _bool_or(data: Mapping[str, Any], key: str, default: bool) -> bool:
    value = data.get(key)
    return default if value is None else _as_bool(value, key)


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ValueError(f"Invalid bool for '{key}': {value!r}")


def _as_str_list(value: Any, key: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"Invalid list for '{key}': {value!r}")
    return [str(item) for item in value if item is not None and str(item).strip()]


def _seed_url(value: Any) -> str:
    # startUrls entries may be `{"url": ...}` objects.
    if isinstance(value, Mapping):
        return str(value.get("url", ""))
    return str(value)


def apply_input_aliases(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Rename camelCase input keys to config field names.

    Snake-case keys win when both spellings are present.
    """

    resolved: dict[str, Any] = {}
    for key, value in payload.items():
        target = INPUT_KEY_ALIASES.get(key)
        if target is None:
            resolved[key] = value
        elif target not in payload:
            resolved.setdefault(target, value)
    return resolved


@dataclass(slots=True)
class CrawlConfig:
    """Top-level crawler configuration used by scheduler/fetchers/flush."""

    seeds: list[str]

    concurrency: int = DEFAULT_CONCURRENCY
    store_pages_interval: int = DEFAULT_STORE_PAGES_INTERVAL
    page_timeout_seconds: float = DEFAULT_PAGE_TIMEOUT_SECONDS
    sleep_seconds: float = DEFAULT_SLEEP_SECONDS

    proxy_urls: list[str] = field(default_factory=list)
    user_agents: list[str] = field(default_factory=list)

    avoid_cache: bool = DEFAULT_AVOID_CACHE
    cache_dir: str = DEFAULT_CACHE_DIR
    cache_size_megabytes: int | None = None
    headless: bool = DEFAULT_HEADLESS

    allowed_domains: list[str] = field(default_factory=list)
    link_pattern: str | None = None
    title_selector: str | None = None
    attachment_selector: str | None = None
    dedupe_urls: bool = DEFAULT_DEDUPE_URLS

    state_write_retries: int = DEFAULT_STATE_WRITE_RETRIES
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS
    max_record_bytes: int | None = DEFAULT_MAX_RECORD_BYTES

    metadata: dict[str, JSONValue] = field(default_factory=dict)

    _link_regex: re.Pattern[str] | None = field(init=False, repr=False, default=None)

    def __post_init__(self) -> None:
        self.seeds = [seed.strip() for seed in self.seeds if seed and seed.strip()]
        if not self.seeds:
            raise ValueError("CrawlConfig requires at least one seed URL")

        if self.concurrency <= 0:
            raise ValueError("concurrency must be > 0")
        if self.store_pages_interval <= 0:
            raise ValueError("store_pages_interval must be > 0")
        if self.page_timeout_seconds <= 0:
            raise ValueError("page_timeout_seconds must be > 0")
        if self.sleep_seconds < 0:
            raise ValueError("sleep_seconds must be >= 0")
        if self.cache_size_megabytes is not None and self.cache_size_megabytes <= 0:
            raise ValueError("cache_size_megabytes must be > 0 when set")
        if self.state_write_retries < 0:
            raise ValueError("state_write_retries must be >= 0")
        if self.retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds must be >= 0")
        if self.max_record_bytes is not None and self.max_record_bytes <= 0:
            raise ValueError("max_record_bytes must be > 0 when set")

        if not self.allowed_domains:
            self.allowed_domains = list(self.seeds)
        # Dedup while keeping the first occurrence order.
        domains = [normalize_host(domain) for domain in self.allowed_domains]
        self.allowed_domains = list(dict.fromkeys(domain for domain in domains if domain))

        if self.link_pattern:
            try:
                self._link_regex = re.compile(self.link_pattern)
            except re.error as exc:
                raise ValueError(f"Invalid link_pattern: {exc}") from exc

    @property
    def link_regex(self) -> re.Pattern[str] | None:
        return self._link_regex

    @property
    def cache_policy(self) -> CachePolicy:
        """Return the browser cache options for page fetches."""

        return CachePolicy(
            avoid_cache=self.avoid_cache,
            cache_dir=None if self.avoid_cache else self.cache_dir,
            cache_size_megabytes=None if self.avoid_cache else self.cache_size_megabytes,
        )

    def to_dict(self) -> JSONDict:
        """Serialize config for manifests and reproducibility."""

        return {
            "seeds": self.seeds,
            "concurrency": self.concurrency,
            "store_pages_interval": self.store_pages_interval,
            "page_timeout_seconds": self.page_timeout_seconds,
            "sleep_seconds": self.sleep_seconds,
            "proxy_urls": self.proxy_urls,
            "user_agents": self.user_agents,
            "avoid_cache": self.avoid_cache,
            "cache_dir": self.cache_dir,
            "cache_size_megabytes": self.cache_size_megabytes,
            "headless": self.headless,
            "allowed_domains": self.allowed_domains,
            "link_pattern": self.link_pattern,
            "title_selector": self.title_selector,
            "attachment_selector": self.attachment_selector,
            "dedupe_urls": self.dedupe_urls,
            "state_write_retries": self.state_write_retries,
            "retry_backoff_seconds": self.retry_backoff_seconds,
            "max_record_bytes": self.max_record_bytes,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CrawlConfig":
        """Build config from a parsed dictionary (snake_case or input aliases)."""

        data = apply_input_aliases(payload)
        if "seeds" not in data:
            raise ValueError("Config missing required key: 'seeds'")

        raw_seeds = data["seeds"]
        if isinstance(raw_seeds, (str, Mapping)):
            raw_seeds = [raw_seeds]

        return cls(
            seeds=[_seed_url(seed) for seed in list(raw_seeds or [])],
            concurrency=_int_or(data, "concurrency", DEFAULT_CONCURRENCY),
            store_pages_interval=_int_or(
                data, "store_pages_interval", DEFAULT_STORE_PAGES_INTERVAL
            ),
            page_timeout_seconds=_float_or(
                data, "page_timeout_seconds", DEFAULT_PAGE_TIMEOUT_SECONDS
            ),
            sleep_seconds=_float_or(data, "sleep_seconds", DEFAULT_SLEEP_SECONDS),
            proxy_urls=_as_str_list(data.get("proxy_urls"), "proxy_urls"),
            user_agents=_as_str_list(data.get("user_agents"), "user_agents"),
            avoid_cache=_bool_or(data, "avoid_cache", DEFAULT_AVOID_CACHE),
            cache_dir=str(data.get("cache_dir") or DEFAULT_CACHE_DIR),
            cache_size_megabytes=_as_int(
                data.get("cache_size_megabytes"),
                "cache_size_megabytes",
            ),
            headless=_bool_or(data, "headless", DEFAULT_HEADLESS),
            allowed_domains=_as_str_list(data.get("allowed_domains"), "allowed_domains"),
            link_pattern=(
                None if data.get("link_pattern") is None else str(data.get("link_pattern"))
            ),
            title_selector=(
                None if data.get("title_selector") is None else str(data.get("title_selector"))
            ),
            attachment_selector=(
                None
                if data.get("attachment_selector") is None
                else str(data.get("attachment_selector"))
            ),
            dedupe_urls=_bool_or(data, "dedupe_urls", DEFAULT_DEDUPE_URLS),
            state_write_retries=_int_or(
                data, "state_write_retries", DEFAULT_STATE_WRITE_RETRIES
            ),
            retry_backoff_seconds=_float_or(
                data, "retry_backoff_seconds", DEFAULT_RETRY_BACKOFF_SECONDS
            ),
            max_record_bytes=_as_int(
                data.get("max_record_bytes", DEFAULT_MAX_RECORD_BYTES),
                "max_record_bytes",
            ),
            metadata=dict(data.get("metadata") or {}),
        )


def _load_yaml(path: Path) -> dict[str, Any]:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML config at {path} must be a mapping at top level")
    return data


def read_config_payload(path: str | Path) -> dict[str, Any]:
    """Read the raw JSON/YAML mapping behind a config file."""

    config_path = Path(path)
    suffix = config_path.suffix.lower()
    if suffix not in SUPPORTED_CONFIG_SUFFIXES:
        raise ValueError(
            f"Unsupported config suffix '{suffix}'. Supported: {SUPPORTED_CONFIG_SUFFIXES}"
        )

    if suffix == ".json":
        payload = json.loads(config_path.read_text(encoding="utf-8"))
    else:
        payload = _load_yaml(config_path)

    if not isinstance(payload, dict):
        raise ValueError(f"Config at {config_path} must be a mapping")

    return payload


def load_config(path: str | Path) -> CrawlConfig:
    """Load CrawlConfig from JSON/YAML path."""

    return CrawlConfig.from_dict(read_config_payload(path))


def save_config(config: CrawlConfig, path: str | Path) -> None:
    """Save CrawlConfig as JSON or YAML based on file extension."""

    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    suffix = out_path.suffix.lower()
    payload = config.to_dict()

    if suffix == ".json":
        out_path.write_text(
            json.dumps(payload, indent=JSON_INDENT, sort_keys=True) + "\n",
            encoding="utf-8",
        )
        return

    if suffix in {".yaml", ".yml"}:
        out_path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
        return

    raise ValueError(
        f"Unsupported config suffix '{suffix}'. Supported: {SUPPORTED_CONFIG_SUFFIXES}"
    )


__all__ = [
    "CrawlConfig",
    "INPUT_KEY_ALIASES",
    "apply_input_aliases",
    "load_config",
    "read_config_payload",
    "save_config",
]
