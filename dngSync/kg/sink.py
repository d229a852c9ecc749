from __future__ import annotations

"""Output sinks receiving crawled subgraphs."""

from typing import List, Protocol, TextIO

from rdflib import Graph

from .triples import Subgraph


class GraphSink(Protocol):
    def write(self, subgraph: Subgraph) -> None:
        ...


class MemorySink:
    """Keep every written subgraph in order; the write log backs the tests."""

    def __init__(self) -> None:
        self.writes: List[Subgraph] = []

    def write(self, subgraph: Subgraph) -> None:
        self.writes.append(subgraph)

    @property
    def uris(self) -> List[str]:
        return [sg.uri for sg in self.writes]


class NTriplesSink:
    """Append subgraphs to a text stream as N-Triples.

    Each subgraph is rendered and written in one synchronous call, so
    concurrent crawl branches on the same event loop never interleave lines.
    """

    def __init__(self, out: TextIO) -> None:
        self._out = out
        self.count = 0
        self.triples = 0

    def write(self, subgraph: Subgraph) -> None:
        graph = Graph()
        for triple in subgraph.triples:
            graph.add(triple)
        text = graph.serialize(format="nt")
        self._out.write(text)
        self.count += 1
        self.triples += len(graph)


__all__ = ["GraphSink", "MemorySink", "NTriplesSink"]
