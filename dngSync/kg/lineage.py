"""Baseline and stream records, and reconstruction of the baseline lineage."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from rdflib import Graph, URIRef

from dngSync.core.errors import (
    BranchingError,
    ChronologyError,
    DataFormatError,
    MultipleRootsError,
)
from dngSync.kg.namespaces import DCT, OSLC_CONFIG
from dngSync.utils.log_json import JsonLogger

_logger = JsonLogger("lineage")


def parse_timestamp(value: datetime | str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""

    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip())
        except ValueError:
            raise DataFormatError(f"Invalid timestamp: {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class StreamRecord:
    id: str
    uri: str
    title: str
    created: datetime
    creator: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created"] = self.created.isoformat()
        return data


@dataclass(frozen=True)
class BaselineRecord:
    id: str
    uri: str
    title: str
    created: datetime
    creator: Optional[str]
    previous: Optional[str]
    stream_uri: Optional[str]
    overrides: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created"] = self.created.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BaselineRecord":
        try:
            return cls(
                id=str(data["id"]),
                uri=str(data["uri"]),
                title=str(data.get("title") or ""),
                created=parse_timestamp(data["created"]),
                creator=data.get("creator"),
                previous=data.get("previous"),
                stream_uri=data.get("stream_uri"),
                overrides=data.get("overrides"),
                description=data.get("description"),
            )
        except KeyError as exc:
            raise DataFormatError(f"Baseline record missing field {exc}") from None


def _first(graph: Graph, subject: URIRef, predicate: URIRef) -> Optional[str]:
    for value in sorted(graph.objects(subject, predicate)):
        return str(value)
    return None


def baseline_from_graph(graph: Graph, uri: str) -> BaselineRecord:
    subject = URIRef(uri)
    created = _first(graph, subject, DCT.created)
    if created is None:
        raise DataFormatError(f"Baseline <{uri}> has no dct:created")
    return BaselineRecord(
        id=_first(graph, subject, DCT.identifier) or uri.rsplit("/", 1)[-1],
        uri=uri,
        title=_first(graph, subject, DCT.title) or "",
        created=parse_timestamp(created),
        creator=_first(graph, subject, DCT.creator),
        previous=_first(graph, subject, OSLC_CONFIG.previousBaseline),
        stream_uri=_first(graph, subject, OSLC_CONFIG.baselineOfStream),
        overrides=_first(graph, subject, OSLC_CONFIG.overrides),
        description=_first(graph, subject, DCT.description),
    )


def stream_from_graph(graph: Graph, uri: str) -> StreamRecord:
    subject = URIRef(uri)
    created = _first(graph, subject, DCT.created)
    if created is None:
        raise DataFormatError(f"Stream <{uri}> has no dct:created")
    return StreamRecord(
        id=_first(graph, subject, DCT.identifier) or uri.rsplit("/", 1)[-1],
        uri=uri,
        title=_first(graph, subject, DCT.title) or "",
        created=parse_timestamp(created),
        creator=_first(graph, subject, DCT.creator),
    )


def reconstruct_lineage(
    baselines: Mapping[str, BaselineRecord],
    streams: Mapping[str, StreamRecord] | None = None,
    *,
    logger: JsonLogger | None = None,
) -> Dict[str, List[str]]:
    """Order baseline URIs from the unique root forward in time.

    Returns ``{stream_uri: [baseline_uri, ...]}``. Raises
    :class:`MultipleRootsError`, :class:`ChronologyError` or
    :class:`BranchingError` when the records do not form one linear history.
    With no root at all the baselines are returned in creation order under
    the stream of the earliest baseline, and a warning is logged.
    """

    log = logger or _logger
    if not baselines:
        return {}

    root: Optional[BaselineRecord] = None
    for baseline in baselines.values():
        if baseline.previous:
            continue
        if root is not None:
            raise MultipleRootsError(root.uri, baseline.uri)
        root = baseline

    if root is None:
        ordered = sorted(baselines.values(), key=lambda b: (b.created, b.uri))
        stream_uri = ordered[0].stream_uri or ""
        log.warning(
            "lineage.no_root",
            reason="no baseline without a previous baseline; falling back to creation order",
            baselines=len(ordered),
            streams=sorted(streams or {}),
        )
        return {stream_uri: [b.uri for b in ordered]}

    stream_uri = root.stream_uri
    history: List[str] = []
    current = root
    while True:
        history.append(current.uri)
        children = [
            b
            for b in baselines.values()
            if b.previous == current.uri and b.stream_uri == stream_uri
        ]
        for child in children:
            if not child.created > current.created:
                raise ChronologyError(child.uri, child.created.isoformat(), current.uri, current.created.isoformat())
        if not children:
            break
        if len(children) > 1:
            raise BranchingError(current.uri, [c.id for c in children])
        current = children[0]

    log.info("lineage.reconstructed", stream=stream_uri, baselines=len(history), total=len(baselines))
    return {stream_uri or "": history}


__all__ = [
    "BaselineRecord",
    "StreamRecord",
    "baseline_from_graph",
    "stream_from_graph",
    "parse_timestamp",
    "reconstruct_lineage",
]
