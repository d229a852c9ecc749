from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from rdflib import Literal, URIRef
from rdflib.namespace import RDF

from api_clients.mms_client import baseline_ref_id
from dngSync.core.errors import BranchingError
from dngSync.core.project import BaselineHistory
from dngSync.kg.delta import Delta
from dngSync.kg.lineage import BaselineRecord
from dngSync.kg.namespaces import DCT, OSLC_RM
from dngSync.kg.triples import Subgraph
from dngSync.monitor.snapshot_store import SnapshotStore
from dngSync.sync.orchestrator import SyncOrchestrator
from dngSync.transforms.elements import ElementTranslator, element_id

SERVER = "https://dng.example"
STREAM = f"{SERVER}/rm/cm/stream/S1"
T0 = datetime(2021, 1, 1, tzinfo=timezone.utc)


def U(name: str) -> str:
    return f"{SERVER}/rm/resources/{name}"


def make_baseline(name: str, index: int, previous: Optional[str]) -> BaselineRecord:
    return BaselineRecord(
        id=name,
        uri=f"{SERVER}/rm/cm/baseline/{name}",
        title=f"Baseline {name}",
        created=T0 + timedelta(days=index),
        creator=None,
        previous=previous,
        stream_uri=STREAM,
    )


B1 = make_baseline("B1", 0, None)
B2 = make_baseline("B2", 1, B1.uri)
B3 = make_baseline("B3", 2, B2.uri)

CONTENTS: Dict[str, Dict[str, str]] = {
    B1.uri: {"R1": "Brakes", "R2": "Wheels"},
    B2.uri: {"R1": "Brakes", "R2": "Wheels and tyres"},
    B3.uri: {"R1": "Brakes", "R3": "Lights"},
    STREAM: {"R1": "Brakes", "R3": "Lights", "R4": "Horn"},
}


class FakeSource:
    def __init__(self, history: Optional[BaselineHistory], error: Exception | None = None) -> None:
        self.history = history
        self.error = error
        self.exports: List[str] = []

    async def fetch_baselines(self) -> Optional[BaselineHistory]:
        if self.error is not None:
            raise self.error
        return self.history

    async def export(self, sink, context: str | None = None) -> Dict[str, int]:
        self.exports.append(context)
        for name, title in sorted(CONTENTS[context].items()):
            uri = URIRef(U(name))
            sink.write(Subgraph(str(uri), [(uri, RDF.type, OSLC_RM.Requirement), (uri, DCT.title, Literal(title))]))
        return {"fetched": len(CONTENTS[context])}


class FakeTarget:
    project_id = "PROJ"

    def __init__(self, refs: Optional[Dict[str, dict]] = None) -> None:
        self.state: Dict[str, dict] = {}
        self._refs = dict(refs or {})
        self.created: List[bool] = []
        self.uploads: List[int] = []
        self.deltas: List[Dict[str, int]] = []
        self.tags: List[str] = []

    def create(self, reset: bool = False) -> bool:
        self.created.append(reset)
        return not self.created[:-1]

    def refs(self) -> Dict[str, dict]:
        return dict(self._refs)

    def upload_elements(self, records, ref: str = "master") -> int:
        count = 0
        for record in records:
            self.state[record["id"]] = record
            count += 1
        self.uploads.append(count)
        return count

    def apply_deltas(self, delta: Delta, ref: str = "master") -> Dict[str, int]:
        for element_id_ in delta.deleted:
            self.state.pop(element_id_, None)
        for record in delta.added:
            self.state[record["id"]] = record
        self.deltas.append(delta.summary())
        return delta.summary()

    def tag_head_as_baseline(self, baseline: BaselineRecord, ref: str = "master") -> str:
        tag = baseline_ref_id(baseline.id)
        self.tags.append(baseline.id)
        self._refs[tag] = {"id": tag, "type": "Tag"}
        return tag

    def load(self, ref: str = "master") -> Dict[str, dict]:
        return dict(self.state)


def history() -> BaselineHistory:
    return BaselineHistory(
        histories={STREAM: [B1.uri, B2.uri, B3.uri]},
        baselines={b.uri: b for b in (B1, B2, B3)},
    )


def orchestrator(source, target, root: Path, **kwargs) -> SyncOrchestrator:
    translator = ElementTranslator("PROJ", "Brake System", SERVER)
    return SyncOrchestrator(source, target, SnapshotStore(root), translator, **kwargs)


def names(target: FakeTarget) -> List[str]:
    return sorted(record["name"] for record in target.state.values())


def test_baselines_are_replayed_in_order_then_head(tmp_path: Path) -> None:
    source, target = FakeSource(history()), FakeTarget()

    report = asyncio.run(orchestrator(source, target, tmp_path).run(run_id="r1"))

    assert report.created is True
    assert report.applied == [B1.uri, B2.uri, B3.uri]
    assert target.uploads == [2]
    assert target.deltas[:2] == [{"added": 1, "deleted": 0}, {"added": 1, "deleted": 1}]
    assert target.tags == ["B1", "B2", "B3"]
    assert report.head == {"added": 1, "deleted": 0}
    assert names(target) == ["Brakes", "Horn", "Lights"]
    assert "PROJ" not in target.state
    assert source.exports == [B1.uri, B2.uri, B3.uri, STREAM]


def test_tagged_baselines_are_skipped_on_resume(tmp_path: Path) -> None:
    refs = {baseline_ref_id("B1"): {}, baseline_ref_id("B2"): {}}
    source, target = FakeSource(history()), FakeTarget(refs)

    report = asyncio.run(orchestrator(source, target, tmp_path, head_sync=False).run())

    assert report.skipped == [B1.uri, B2.uri]
    assert report.applied == [B3.uri]
    assert target.uploads == []
    assert target.deltas == [{"added": 1, "deleted": 1}]
    assert target.state[element_id(U("R3"))]["name"] == "Lights"
    assert report.head is None


def test_stored_snapshots_are_not_crawled_again(tmp_path: Path) -> None:
    asyncio.run(orchestrator(FakeSource(history()), FakeTarget(), tmp_path, head_sync=False).run())

    source, target = FakeSource(history()), FakeTarget()
    report = asyncio.run(orchestrator(source, target, tmp_path, head_sync=False).run())

    assert report.applied == [B1.uri, B2.uri, B3.uri]
    assert source.exports == []
    assert names(target) == ["Brakes", "Lights"]


class CountingStore(SnapshotStore):
    def __init__(self, root: Path) -> None:
        super().__init__(root)
        self.loads: List[str] = []
        self.streams: List[str] = []

    def load(self, baseline_id: str):
        self.loads.append(baseline_id)
        return super().load(baseline_id)

    def iter_records(self, baseline_id: str):
        self.streams.append(baseline_id)
        return super().iter_records(baseline_id)


def test_child_snapshots_are_streamed_from_the_store(tmp_path: Path) -> None:
    store = CountingStore(tmp_path)
    translator = ElementTranslator("PROJ", "Brake System", SERVER)
    target = FakeTarget()
    sync = SyncOrchestrator(FakeSource(history()), target, store, translator, head_sync=False)

    asyncio.run(sync.run())

    # Only the first baseline is materialized; later ones are diffed as they are read.
    assert store.loads == ["B1"]
    assert store.streams == ["B1", "B2", "B3"]
    assert target.deltas == [{"added": 1, "deleted": 0}, {"added": 1, "deleted": 1}]
    assert names(target) == ["Brakes", "Lights"]


def test_run_record_lists_each_step(tmp_path: Path) -> None:
    refs = {baseline_ref_id("B1"): {}}
    asyncio.run(orchestrator(FakeSource(history()), FakeTarget(refs), tmp_path).run(run_id="r2"))

    data = json.loads((tmp_path / "runs" / "r2.json").read_text(encoding="utf-8"))
    assert data["status"] == "ok"
    steps = {step["name"]: step for step in data["steps"]}
    assert list(steps) == ["target.create", "lineage", "baseline.B1", "baseline.B2", "baseline.B3", "head"]
    assert steps["baseline.B1"]["status"] == "skipped"
    assert steps["baseline.B2"]["details"]["mode"] == "delta"
    assert steps["lineage"]["details"]["baselines"] == 3
    saved = json.loads((tmp_path / "baselines.json").read_text(encoding="utf-8"))
    assert saved["histories"] == {STREAM: [B1.uri, B2.uri, B3.uri]}


def test_lineage_failure_marks_the_run_failed(tmp_path: Path) -> None:
    source = FakeSource(None, error=BranchingError(B1.uri, ["B2", "B3"]))
    target = FakeTarget()

    with pytest.raises(BranchingError):
        asyncio.run(orchestrator(source, target, tmp_path).run(run_id="r3"))

    data = json.loads((tmp_path / "runs" / "r3.json").read_text(encoding="utf-8"))
    assert data["status"] == "failed"
    assert target.tags == []


def test_project_without_baselines_only_creates_target(tmp_path: Path) -> None:
    source, target = FakeSource(None), FakeTarget()

    report = asyncio.run(orchestrator(source, target, tmp_path).run())

    assert report.applied == [] and report.head is None
    assert target.created == [False]
    assert source.exports == []
