from __future__ import annotations

"""Triple streams and fetched subgraphs exchanged between crawler and sinks."""

from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Iterable, List, Set, Tuple

from rdflib.term import Node

Triple = Tuple[Node, Node, Node]


class TripleStream:
    """Async iterator over the triples of one fetched resource.

    ``close`` is invoked exactly once by :meth:`aclose`, which releases the
    underlying transport. Streams are used with ``contextlib.aclosing``.
    """

    def __init__(self, triples: Iterable[Triple], *, close: Callable[[], None] | None = None) -> None:
        self._iter = iter(triples)
        self._close = close
        self.closed = False

    def __aiter__(self) -> AsyncIterator[Triple]:
        return self

    async def __anext__(self) -> Triple:
        if self.closed:
            raise StopAsyncIteration
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration from None

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._close is not None:
            self._close()


@dataclass
class Subgraph:
    """Triples fetched from one resource plus the links discovered in them."""

    uri: str
    triples: List[Triple] = field(default_factory=list)
    links: Set[str] = field(default_factory=set)
    mandatory: Set[str] = field(default_factory=set)

    def __len__(self) -> int:
        return len(self.triples)


__all__ = ["Triple", "TripleStream", "Subgraph"]
