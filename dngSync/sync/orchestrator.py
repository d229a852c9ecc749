from __future__ import annotations

"""Sequential baseline-by-baseline synchronization into the target server."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from rdflib import Graph

from api_clients.mms_client import baseline_ref_id
from dngSync.core.project import BaselineHistory
from dngSync.kg.delta import Delta, Record, StreamingDelta, stream_delta
from dngSync.kg.lineage import BaselineRecord
from dngSync.kg.sink import GraphSink, NTriplesSink
from dngSync.monitor.run_logger import RunRecord, log_step, run_logger
from dngSync.monitor.snapshot_store import SnapshotStore, atomic_text
from dngSync.transforms.elements import ElementTranslator
from dngSync.utils.log_json import JsonLogger

_logger = JsonLogger("sync")


class Source(Protocol):
    async def fetch_baselines(self) -> Optional[BaselineHistory]:
        ...

    async def export(self, sink: GraphSink, context: str | None = None) -> Dict[str, int]:
        ...


class Target(Protocol):
    project_id: str

    def create(self, reset: bool = False) -> bool:
        ...

    def refs(self) -> Dict[str, Dict[str, object]]:
        ...

    def apply_deltas(self, delta: Delta, ref: str = "master") -> Dict[str, int]:
        ...

    def upload_elements(self, records, ref: str = "master") -> int:
        ...

    def tag_head_as_baseline(self, baseline: BaselineRecord, ref: str = "master") -> str:
        ...

    def load(self, ref: str = "master") -> Dict[str, Record]:
        ...


@dataclass
class SyncReport:
    run_id: str = ""
    created: bool = False
    applied: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    head: Optional[Dict[str, int]] = None


class SyncOrchestrator:
    """Replay the source lineage onto the target ref, one baseline at a time.

    Each baseline is diffed against the baseline immediately before it in the
    lineage and the head is tagged before moving on; baselines whose tag
    already exists on the target are skipped.
    """

    def __init__(
        self,
        source: Source,
        target: Target,
        store: SnapshotStore,
        translator: ElementTranslator,
        *,
        ref: str = "master",
        head_sync: bool = True,
        runs_dir: Path | None = None,
        logger: JsonLogger | None = None,
    ) -> None:
        self.source = source
        self.target = target
        self.store = store
        self.translator = translator
        self.ref = ref
        self.head_sync = head_sync
        self.runs_dir = runs_dir or store.root / "runs"
        self._log = logger or _logger
        self._cached: tuple[str, Dict[str, Record]] | None = None

    @property
    def root_id(self) -> str:
        return self.translator.project_id

    async def _crawl_to_records(self, path: Path, context: str) -> List[Record]:
        with atomic_text(path) as fh:
            stats = await self.source.export(NTriplesSink(fh), context=context)
        graph = Graph()
        graph.parse(str(path), format="nt")
        self._log.info("sync.crawled", context=context, triples=len(graph), **stats)
        return list(self.translator.translate(graph))

    async def _ensure_stored(self, baseline: BaselineRecord) -> None:
        if self.store.has(baseline.id):
            self._log.info("sync.snapshot.cached", baseline=baseline.id)
            return
        records = await self._crawl_to_records(self.store.export_path(baseline.id), baseline.uri)
        self.store.write(baseline.id, records)

    async def snapshot(self, baseline: BaselineRecord) -> Dict[str, Record]:
        """Return the baseline's snapshot, crawling and translating it if not cached."""

        if self._cached is not None and self._cached[0] == baseline.uri:
            return self._cached[1]
        await self._ensure_stored(baseline)
        return self.store.load(baseline.id)

    def _diff_from_store(
        self, parent_snapshot: Dict[str, Record], baseline: BaselineRecord
    ) -> tuple[Delta, Dict[str, Record]]:
        """Stream the stored snapshot of ``baseline`` against its parent.

        Returns the delta and the baseline's snapshot map, which becomes the
        parent of the next step.
        """

        engine = StreamingDelta(dict(parent_snapshot), exclude=(self.root_id,))
        current: Dict[str, Record] = {}
        for record in self.store.iter_records(baseline.id):
            engine.feed(record)
            current[str(record["id"])] = record
        return engine.finish(), current

    async def apply_baseline(
        self,
        baseline: BaselineRecord,
        parent: BaselineRecord | None,
        step: Dict[str, object],
    ) -> None:
        if parent is None:
            current = await self.snapshot(baseline)
            count = self.target.upload_elements(
                (record for key, record in current.items() if key != self.root_id), self.ref
            )
            step.update({"mode": "full", "added": count, "deleted": 0})
        else:
            parent_snapshot = await self.snapshot(parent)
            await self._ensure_stored(baseline)
            delta, current = self._diff_from_store(parent_snapshot, baseline)
            self.target.apply_deltas(delta, self.ref)
            step.update({"mode": "delta", **delta.summary()})
        self.target.tag_head_as_baseline(baseline, self.ref)
        self._cached = (baseline.uri, current)
        self._log.info(
            "sync.baseline.applied",
            baseline=baseline.id,
            uri=baseline.uri,
            mode=step["mode"],
            added=step["added"],
            deleted=step["deleted"],
        )

    async def sync_head(self, stream_uri: str, run: RunRecord) -> Dict[str, int]:
        with log_step(run, "head", stream=stream_uri) as step:
            live = await self._crawl_to_records(self.store.root / "head.nt", stream_uri)
            remote = self.target.load(self.ref)
            delta = stream_delta(remote, live, exclude=(self.root_id,))
            self.target.apply_deltas(delta, self.ref)
            step.update(delta.summary())
        self._log.info("sync.head.applied", stream=stream_uri, **delta.summary())
        return delta.summary()

    async def run(self, *, reset: bool = False, run_id: str | None = None) -> SyncReport:
        report = SyncReport()
        with run_logger(self.runs_dir, self.translator.project_name, run_id=run_id) as run:
            report.run_id = run.run_id
            with log_step(run, "target.create", reset=reset) as step:
                report.created = self.target.create(reset)
                step["created"] = report.created

            with log_step(run, "lineage") as step:
                history = await self.source.fetch_baselines()
                if history is not None:
                    self.store.save_baselines(history.histories, history.baselines)
                    step["baselines"] = len(history.baselines)

            if history is None:
                self._log.warning("sync.no_baselines", project=self.translator.project_name)
                return report

            refs = self.target.refs()
            ordered = history.ordered()
            for index, baseline in enumerate(ordered):
                parent = ordered[index - 1] if index else None
                with log_step(run, f"baseline.{baseline.id}", uri=baseline.uri) as step:
                    if baseline_ref_id(baseline.id) in refs:
                        step["status"] = "skipped"
                        report.skipped.append(baseline.uri)
                        self._log.info("sync.baseline.skipped", baseline=baseline.id, uri=baseline.uri)
                        continue
                    await self.apply_baseline(baseline, parent, step)
                    report.applied.append(baseline.uri)

            if self.head_sync and history.stream_uri:
                report.head = await self.sync_head(history.stream_uri, run)

        self._log.info(
            "sync.done",
            run_id=report.run_id,
            applied=len(report.applied),
            skipped=len(report.skipped),
        )
        return report


__all__ = ["SyncOrchestrator", "SyncReport", "Source", "Target"]
