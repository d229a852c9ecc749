"""Per-run record of sync steps written to ``runs/<run_id>.json``."""

from __future__ import annotations

import json
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional


def _iso(ts: Optional[float]) -> Optional[str]:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(ts)) if ts else None


@dataclass
class StepRecord:
    name: str
    status: str
    duration: float
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RunRecord:
    run_id: str
    project: str
    started: float
    finished: Optional[float] = None
    status: str = "running"
    error: Optional[str] = None
    steps: List[StepRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "run_id": self.run_id,
            "project": self.project,
            "started": _iso(self.started),
            "finished": _iso(self.finished),
            "status": self.status,
            "error": self.error,
            "steps": [
                {
                    "name": step.name,
                    "status": step.status,
                    "duration": round(step.duration, 4),
                    "details": step.details,
                }
                for step in self.steps
            ],
        }


@contextmanager
def run_logger(runs_dir: Path, project: str, *, run_id: str | None = None) -> Iterator[RunRecord]:
    record = RunRecord(run_id=run_id or uuid.uuid4().hex, project=project, started=time.time())
    try:
        yield record
        record.status = "ok"
    except Exception as exc:
        record.status = "failed"
        record.error = f"{type(exc).__name__}: {exc}"
        raise
    finally:
        record.finished = time.time()
        path = Path(runs_dir) / f"{record.run_id}.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(record.to_dict(), indent=2, default=str), encoding="utf-8")


@contextmanager
def log_step(run: RunRecord, name: str, **details: Any) -> Iterator[Dict[str, Any]]:
    """Time one step; the yielded dict collects details such as delta counts.

    Setting ``details["status"]`` overrides the recorded status (e.g. ``skipped``).
    """

    start = time.time()
    step_details: Dict[str, Any] = dict(details)
    status = "ok"
    try:
        yield step_details
    except Exception:
        status = "failed"
        raise
    finally:
        run.steps.append(
            StepRecord(
                name=name,
                status=str(step_details.pop("status", status)) if status == "ok" else status,
                duration=time.time() - start,
                details=step_details,
            )
        )


__all__ = ["RunRecord", "StepRecord", "run_logger", "log_step"]
