"""Per-page proxy and user agent selection."""

from __future__ import annotations

from dataclasses import dataclass
import random
import threading
from typing import Sequence, TypeVar

from .constants import RANDOM_SESSION_PLACEHOLDER, RANDOM_SESSION_UPPER_BOUND
from .url import redact_url


T = TypeVar("T")


def random_element(items: Sequence[T] | None, rng: random.Random | None = None) -> T | None:
    """Return a random element, or None for an empty/missing sequence."""

    if not items:
        return None
    return (rng or random).choice(items)


def complete_proxy_url(pattern: str | None, rng: random.Random | None = None) -> str | None:
    """Fill every `<randomSessionId>` placeholder with a fresh random session id."""

    if not pattern:
        return pattern
    session_id = (rng or random).randrange(RANDOM_SESSION_UPPER_BOUND)
    return pattern.replace(RANDOM_SESSION_PLACEHOLDER, str(session_id))


@dataclass(frozen=True, slots=True)
class SessionChoice:
    """Proxy and user agent picked for one page visit."""

    proxy_url: str | None
    user_agent: str | None

    @property
    def redacted_proxy_url(self) -> str | None:
        return redact_url(self.proxy_url)


class SessionSelector:
    """Pick a random proxy pattern and user agent for each work item."""

    def __init__(
        self,
        proxy_urls: Sequence[str] = (),
        user_agents: Sequence[str] = (),
        *,
        rng: random.Random | None = None,
    ) -> None:
        self.proxy_urls = list(proxy_urls)
        self.user_agents = list(user_agents)
        self._rng = rng or random.Random()
        self._lock = threading.Lock()

    def choose(self) -> SessionChoice:
        with self._lock:
            pattern = random_element(self.proxy_urls, self._rng)
            return SessionChoice(
                proxy_url=complete_proxy_url(pattern, self._rng),
                user_agent=random_element(self.user_agents, self._rng),
            )


__all__ = [
    "SessionChoice",
    "SessionSelector",
    "complete_proxy_url",
    "random_element",
]
