"""Translate a crawled requirements graph into target element records."""

from __future__ import annotations

from hashlib import sha256
from typing import Dict, Iterator, List

from rdflib import Graph, Literal, URIRef
from rdflib.namespace import RDF

from dngSync.kg.namespaces import DCT, OSLC_RM, server_prefixes

Record = Dict[str, object]

_SKIP_PREDICATES = {DCT.title, DCT.description}


def element_id(uri: str) -> str:
    """Deterministic element id for a source URI."""

    return "dng_" + sha256(str(uri).encode("utf-8")).hexdigest()[:32]


class ElementTranslator:
    """Map ``oslc_rm:Requirement`` resources onto ``Class`` elements.

    The project root element carries the project id itself; it is rebuilt
    on every translation and excluded from diffs.
    """

    def __init__(self, project_id: str, project_name: str, origin: str) -> None:
        self.project_id = project_id
        self.project_name = " ".join(project_name.split())
        self._prefixes = sorted(server_prefixes(origin).items(), key=lambda kv: -len(kv[1]))

    def qname(self, uri: str) -> str:
        for prefix, namespace in self._prefixes:
            if uri.startswith(namespace) and len(uri) > len(namespace):
                return f"{prefix}:{uri[len(namespace):]}"
        return uri

    def root(self) -> Record:
        return {
            "id": self.project_id,
            "type": "Package",
            "name": self.project_name,
            "ownerId": None,
            "documentation": "",
        }

    def translate(self, graph: Graph) -> Iterator[Record]:
        yield self.root()
        requirements = sorted(
            {s for s in graph.subjects(RDF.type, OSLC_RM.Requirement) if isinstance(s, URIRef)}
        )
        known = {str(uri) for uri in requirements}
        for uri in requirements:
            yield self._requirement(graph, uri, known)

    def _requirement(self, graph: Graph, uri: URIRef, known: set[str]) -> Record:
        by_predicate: Dict[str, List[str]] = {}
        for predicate, obj in graph.predicate_objects(uri):
            if predicate in _SKIP_PREDICATES:
                continue
            value = self._value(obj, known)
            if value is None:
                continue
            by_predicate.setdefault(str(predicate), []).append(value)
        properties = [
            {
                "id": element_id(f"{uri}|{predicate}"),
                "name": self.qname(predicate),
                "values": sorted(set(values)),
            }
            for predicate, values in sorted(by_predicate.items())
        ]
        return {
            "id": element_id(str(uri)),
            "type": "Class",
            "name": self._literal(graph, uri, DCT.title),
            "documentation": self._literal(graph, uri, DCT.description),
            "ownerId": self.project_id,
            "uri": str(uri),
            "properties": properties,
        }

    def _value(self, obj: object, known: set[str]) -> str | None:
        if isinstance(obj, URIRef):
            text = str(obj)
            return element_id(text) if text in known else text
        if isinstance(obj, Literal):
            return str(obj)
        # blank-node structures have no stable identity across baselines
        return None

    @staticmethod
    def _literal(graph: Graph, uri: URIRef, predicate: URIRef) -> str:
        values = sorted(str(v) for v in graph.objects(uri, predicate) if isinstance(v, Literal))
        return values[0] if values else ""


__all__ = ["ElementTranslator", "element_id"]
