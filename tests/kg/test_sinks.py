from __future__ import annotations

import asyncio
import io

from rdflib import BNode, Graph, Literal, URIRef
from rdflib.namespace import DCTERMS

from dngSync.kg.sink import MemorySink, NTriplesSink
from dngSync.kg.triples import Subgraph, TripleStream

A = URIRef("https://dng.example/rm/resources/A")


def test_ntriples_sink_output_parses_back() -> None:
    out = io.StringIO()
    sink = NTriplesSink(out)
    blank = BNode()
    sink.write(Subgraph(str(A), [(A, DCTERMS.description, Literal("line one\nline two")), (A, DCTERMS.subject, blank)]))
    sink.write(Subgraph(str(A) + "2", [(URIRef(str(A) + "2"), DCTERMS.title, Literal("x"))]))

    graph = Graph()
    graph.parse(data=out.getvalue(), format="nt")
    assert len(graph) == 3
    assert sink.count == 2 and sink.triples == 3
    assert graph.value(A, DCTERMS.description) == Literal("line one\nline two")


def test_memory_sink_keeps_write_order() -> None:
    sink = MemorySink()
    sink.write(Subgraph("u1"))
    sink.write(Subgraph("u2"))
    assert sink.uris == ["u1", "u2"]
    assert not sink.writes[0]


def test_triple_stream_closes_once() -> None:
    closed: list[int] = []
    stream = TripleStream([(A, DCTERMS.title, Literal("t"))], close=lambda: closed.append(1))

    async def drain() -> list:
        items = [t async for t in stream]
        await stream.aclose()
        await stream.aclose()
        return items

    assert len(asyncio.run(drain())) == 1
    assert closed == [1]
