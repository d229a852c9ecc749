"""Durable per-baseline snapshot cache used to resume interrupted syncs."""

from __future__ import annotations

import json
import os
import re
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, TextIO

from dngSync.core.errors import DataFormatError
from dngSync.kg.delta import Record, index_records
from dngSync.kg.lineage import BaselineRecord
from dngSync.utils.log_json import JsonLogger

_logger = JsonLogger("snapshot-store")
_SAFE_ID_RE = re.compile(r"[^A-Za-z0-9._-]")


def _safe(baseline_id: str) -> str:
    cleaned = _SAFE_ID_RE.sub("-", str(baseline_id)).strip(".")
    if not cleaned:
        raise ValueError(f"unusable baseline id: {baseline_id!r}")
    return cleaned


@contextmanager
def atomic_text(path: Path) -> Iterator[TextIO]:
    """Write ``path`` through a temp file renamed into place on success."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as fh:
            yield fh
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


class SnapshotStore:
    """Snapshots keyed by baseline id under ``root``.

    Presence of ``mms-full.<id>.jsonl`` means the baseline was already
    crawled and translated.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def snapshot_path(self, baseline_id: str) -> Path:
        return self.root / "baselines" / f"mms-full.{_safe(baseline_id)}.jsonl"

    def export_path(self, baseline_id: str) -> Path:
        return self.root / "baselines" / f"{_safe(baseline_id)}.nt"

    @property
    def baselines_path(self) -> Path:
        return self.root / "baselines.json"

    def has(self, baseline_id: str) -> bool:
        return self.snapshot_path(baseline_id).is_file()

    def write(self, baseline_id: str, records: Iterable[Record]) -> Path:
        path = self.snapshot_path(baseline_id)
        count = 0
        with atomic_text(path) as fh:
            for record in records:
                fh.write(json.dumps(record, ensure_ascii=False, sort_keys=True))
                fh.write("\n")
                count += 1
        _logger.info("snapshot.written", baseline=baseline_id, records=count, path=path.name)
        return path

    def iter_records(self, baseline_id: str) -> Iterator[Record]:
        path = self.snapshot_path(baseline_id)
        if not path.is_file():
            raise FileNotFoundError(path)
        yield from read_records(path)

    def load(self, baseline_id: str) -> Dict[str, Record]:
        path = self.snapshot_path(baseline_id)
        return index_records(self.iter_records(baseline_id), source=str(path))

    def save_baselines(self, histories: Mapping[str, List[str]], baselines: Mapping[str, BaselineRecord]) -> Path:
        payload = {
            "histories": {k: list(v) for k, v in histories.items()},
            "map": {uri: b.to_dict() for uri, b in baselines.items()},
        }
        with atomic_text(self.baselines_path) as fh:
            json.dump(payload, fh, indent=2, sort_keys=True)
        return self.baselines_path

    def load_baselines(self) -> tuple[Dict[str, List[str]], Dict[str, BaselineRecord]]:
        path = self.baselines_path
        try:
            data: Dict[str, Any] = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise DataFormatError(f"Invalid JSON while loading {path}: {exc}") from None
        histories = {k: list(v) for k, v in data.get("histories", {}).items()}
        baselines = {uri: BaselineRecord.from_dict(rec) for uri, rec in data.get("map", {}).items()}
        return histories, baselines


def read_records(path: Path) -> Iterator[Record]:
    """Stream element records from a JSON Lines snapshot file."""

    with Path(path).open("r", encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                raise DataFormatError(f"Invalid JSON while loading {path} line {lineno}: {exc.msg}") from None
            if not isinstance(record, dict):
                raise DataFormatError(f"Expected an element object in {path} line {lineno}")
            yield record


__all__ = ["SnapshotStore", "atomic_text", "read_records"]
