"""Minimal add/delete sets between two element snapshots."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional

from dngSync.core.errors import DataFormatError
from dngSync.transforms.canonical import canonical_json

Record = Dict[str, Any]


@dataclass
class Delta:
    """Payload for the target system: ``added`` upserts, ``deleted`` ids."""

    added: List[Record] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.added or self.deleted)

    def summary(self) -> Dict[str, int]:
        return {"added": len(self.added), "deleted": len(self.deleted)}


def _record_id(record: Any) -> str:
    if not isinstance(record, Mapping):
        raise DataFormatError(f"Element record is not an object: {record!r}"[:300])
    element_id = record.get("id")
    if element_id is None or element_id == "":
        raise DataFormatError(f"Element record has no id: {record!r}"[:300])
    return str(element_id)


def compute_delta(
    old: Mapping[str, Record],
    new: Mapping[str, Record],
    *,
    exclude: Iterable[str] = (),
) -> Delta:
    """Diff two fully materialized snapshots keyed by element id.

    Ids in ``exclude`` (the regenerated project root) are ignored on both
    sides. Changed records are staged as additions, since the target treats
    additions as upserts. Neither input mapping is modified.
    """

    skip = set(exclude)
    remaining: Dict[str, Record] = {k: v for k, v in new.items() if k not in skip}
    delta = Delta()
    for element_id, old_record in old.items():
        if element_id in skip:
            continue
        if element_id in remaining:
            new_record = remaining.pop(element_id)
            if canonical_json(old_record) != canonical_json(new_record):
                delta.added.append(new_record)
        else:
            delta.deleted.append(element_id)
    delta.added.extend(remaining.values())
    return delta


class StreamingDelta:
    """Diff an incrementally consumed snapshot against a resident one.

    The old snapshot is held in memory and consumed as records of the new
    snapshot arrive through :meth:`feed`; :meth:`finish` stages every old id
    that was never matched as a deletion.
    """

    def __init__(self, old: MutableMapping[str, Record], *, exclude: Iterable[str] = ()) -> None:
        self._skip = set(exclude)
        self._old = old
        for element_id in self._skip:
            self._old.pop(element_id, None)
        self._seen: set[str] = set()
        self._delta = Delta()
        self._finished = False

    def feed(self, record: Record) -> None:
        if self._finished:
            raise RuntimeError("streaming delta already finished")
        element_id = _record_id(record)
        if element_id in self._skip:
            return
        if element_id in self._seen:
            raise DataFormatError(f"Duplicate element id in snapshot: {element_id}")
        self._seen.add(element_id)
        old_record = self._old.pop(element_id, None)
        if old_record is None or canonical_json(old_record) != canonical_json(record):
            self._delta.added.append(record)

    def finish(self) -> Delta:
        if not self._finished:
            self._delta.deleted.extend(self._old.keys())
            self._old.clear()
            self._finished = True
        return self._delta


def stream_delta(
    old: MutableMapping[str, Record],
    records: Iterable[Record],
    *,
    exclude: Iterable[str] = (),
) -> Delta:
    """Convenience wrapper feeding every record of ``records``."""

    engine = StreamingDelta(old, exclude=exclude)
    for record in records:
        engine.feed(record)
    return engine.finish()


def index_records(records: Iterable[Record], *, source: Optional[str] = None) -> Dict[str, Record]:
    """Materialize a snapshot map from records, rejecting duplicate ids."""

    out: Dict[str, Record] = {}
    for record in records:
        element_id = _record_id(record)
        if element_id in out:
            where = f" in {source}" if source else ""
            raise DataFormatError(f"Duplicate element id {element_id}{where}")
        out[element_id] = record
    return out


__all__ = ["Delta", "Record", "compute_delta", "StreamingDelta", "stream_delta", "index_records"]
