from __future__ import annotations

"""Per-crawl state: URI normalization, dedup cache and static path blacklist."""

import re
from dataclasses import dataclass, field
from typing import Iterable, Set
from urllib.parse import urldefrag, urljoin, urlsplit

# Path prefixes known to serve non-content resources on the RM server.
DEFAULT_BLACKLIST: tuple[str, ...] = (
    "/rm/calmFilter/",
    "/rm/requirementFactory",
    "/rm/delivery-sessions",
    "/rm/reqif_oslc/",
    "/rm/type-import-sessions",
    "/rm/views?oslc.query",
    "/rm/accessControl/",
    "/rm/web",
    "/rm/pickers/",
    "/rm/folders/null",
    "/jts/users/photo/",
)


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}".lower()


class BlacklistFilter:
    """Reject URIs whose path (and query) starts with a blacklisted prefix."""

    def __init__(self, prefixes: Iterable[str] = DEFAULT_BLACKLIST) -> None:
        self.prefixes = tuple(dict.fromkeys(prefixes))
        if self.prefixes:
            self._pattern: re.Pattern[str] | None = re.compile(
                "^(?:" + "|".join(re.escape(p) for p in self.prefixes) + ")"
            )
        else:
            self._pattern = None

    def matches(self, url: str) -> bool:
        if self._pattern is None:
            return False
        parts = urlsplit(url)
        target = parts.path + (f"?{parts.query}" if parts.query else "")
        return bool(self._pattern.match(target))


@dataclass
class CrawlContext:
    """Mutable state scoped to one crawl invocation."""

    origin: str
    blacklist: BlacklistFilter = field(default_factory=BlacklistFilter)
    visited: Set[str] = field(default_factory=set)
    warned_origins: Set[str] = field(default_factory=set)
    fetched: int = 0
    skipped: int = 0
    failed: int = 0
    retried: int = 0

    def __post_init__(self) -> None:
        self.origin = origin_of(self.origin)

    def normalize(self, uri: str) -> str:
        """Resolve ``uri`` against the crawl origin and strip any fragment.

        Raises ``ValueError`` for URIs that cannot be parsed.
        """

        if not isinstance(uri, str) or not uri.strip():
            raise ValueError(f"invalid URI: {uri!r}")
        resolved = urljoin(self.origin + "/", uri.strip())
        parts = urlsplit(resolved)
        if not parts.scheme or not parts.netloc:
            raise ValueError(f"invalid URI: {uri!r}")
        # force port validation; raises ValueError for malformed ports
        parts.port
        return urldefrag(resolved).url

    def claim(self, url: str) -> bool:
        """Mark ``url`` visited; return ``False`` if it was already claimed."""

        if url in self.visited:
            return False
        self.visited.add(url)
        return True

    def is_foreign(self, url: str) -> bool:
        return origin_of(url) != self.origin

    def first_warning_for(self, url: str) -> bool:
        """Return ``True`` the first time a foreign origin is seen."""

        origin = origin_of(url)
        if origin in self.warned_origins:
            return False
        self.warned_origins.add(origin)
        return True

    def stats(self) -> dict[str, int]:
        return {
            "visited": len(self.visited),
            "fetched": self.fetched,
            "skipped": self.skipped,
            "failed": self.failed,
            "retried": self.retried,
        }


__all__ = ["DEFAULT_BLACKLIST", "BlacklistFilter", "CrawlContext", "origin_of"]
