from __future__ import annotations

"""Error taxonomy shared by the crawler, lineage, delta and sync layers."""

from typing import Mapping


class SkipError(Exception):
    """Raised by a fetch when the response is benign non-RDF content."""


class HttpError(Exception):
    """Raised by a fetch for a non-2xx response from the source server."""

    def __init__(
        self,
        url: str,
        status: int,
        headers: Mapping[str, str] | None = None,
        body: str = "",
    ) -> None:
        self.url = url
        self.status = int(status)
        self.headers = dict(headers or {})
        self.body = body
        content_type = self.headers.get("content-type", "")
        super().__init__(f"{self.status} response from '{url}'; Content-Type: {content_type}")


class NetworkError(Exception):
    """Transient transport failure (reset, broken pipe, timeout, DNS)."""

    def __init__(self, code: str, url: str = "") -> None:
        self.code = code
        self.url = url
        super().__init__(f"{code} on '{url}'" if url else code)


class LineageError(Exception):
    """Baseline records do not form a single valid forward history."""


class MultipleRootsError(LineageError):
    def __init__(self, first: str, second: str) -> None:
        self.uris = (first, second)
        super().__init__(f"Multiple root baselines: <{first}> and <{second}>")


class ChronologyError(LineageError):
    def __init__(self, child: str, child_created: object, parent: str, parent_created: object) -> None:
        self.child = child
        self.parent = parent
        super().__init__(
            f"Baseline <{child}> has a creation date {child_created} that does not follow "
            f"its parent <{parent}> of {parent_created}"
        )


class BranchingError(LineageError):
    def __init__(self, parent: str, children: list[str]) -> None:
        self.parent = parent
        self.children = list(children)
        super().__init__(
            f"Branching baselines are not supported; baseline <{parent}> has multiple "
            f"children: {', '.join(self.children)}"
        )


class DataFormatError(ValueError):
    """Malformed serialized state or values that cannot be compared."""


class ConfigError(RuntimeError):
    """Required configuration (server URL, credentials) is missing or invalid."""


class TargetError(RuntimeError):
    """The target modeling server rejected a request."""

    def __init__(self, message: str, *, status: int | None = None, body: str = "") -> None:
        self.status = status
        self.body = body
        super().__init__(message)


__all__ = [
    "SkipError",
    "HttpError",
    "NetworkError",
    "LineageError",
    "MultipleRootsError",
    "ChronologyError",
    "BranchingError",
    "DataFormatError",
    "ConfigError",
    "TargetError",
]
