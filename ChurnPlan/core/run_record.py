from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from .utils import write_json

TargetStatus = Literal["pending", "succeeded", "failed", "skipped", "cancelled"]
RunOutcome = Literal["success", "partial_failure", "failure"]


@dataclass
class TargetReport:
    name: str
    stale: bool = False
    status: TargetStatus = "pending"
    duration: float = 0.0
    error: Optional[str] = None
    upstream_failure: Optional[str] = None

    def to_json_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RunRecord:
    """What happened to each target during one build."""

    started_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    finished_at: Optional[str] = None
    cancelled: bool = False
    targets: Dict[str, TargetReport] = field(default_factory=dict)
    # ExecutionFailure per failed target, kept out of the JSON view.
    failures_by_name: Dict[str, BaseException] = field(default_factory=dict, repr=False)

    def report(self, name: str) -> TargetReport:
        rep = self.targets.get(name)
        if rep is None:
            rep = TargetReport(name=name)
            self.targets[name] = rep
        return rep

    def finish(self) -> None:
        self.finished_at = datetime.now(timezone.utc).isoformat()

    # ------------------------------------------------------------------ views
    def reports(self) -> List[TargetReport]:
        return list(self.targets.values())

    def names_with_status(self, status: TargetStatus) -> List[str]:
        return [r.name for r in self.targets.values() if r.status == status]

    @property
    def executed(self) -> List[str]:
        """Targets whose executor actually ran (successfully or not)."""
        return [r.name for r in self.targets.values() if r.stale and r.status in ("succeeded", "failed") and r.upstream_failure is None]

    @property
    def stale(self) -> List[str]:
        return [r.name for r in self.targets.values() if r.stale]

    @property
    def succeeded(self) -> List[str]:
        return self.names_with_status("succeeded")

    @property
    def skipped(self) -> List[str]:
        return self.names_with_status("skipped")

    @property
    def failed(self) -> List[str]:
        return self.names_with_status("failed")

    def failures(self) -> Dict[str, str]:
        return {r.name: str(r.error) for r in self.targets.values() if r.status == "failed"}

    @property
    def outcome(self) -> RunOutcome:
        failed = self.failed
        unfinished = self.names_with_status("cancelled")
        if not failed:
            return "partial_failure" if (unfinished or self.cancelled) else "success"
        others = [r for r in self.targets.values() if r.status in ("succeeded", "skipped")]
        return "partial_failure" if others else "failure"

    @property
    def total_duration(self) -> float:
        return float(sum(r.duration for r in self.targets.values()))

    def to_json_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "cancelled": self.cancelled,
            "outcome": self.outcome,
            "targets": [r.to_json_dict() for r in self.targets.values()],
        }

    def write_json(self, path: Path) -> None:
        write_json(Path(path), self.to_json_dict())

    @classmethod
    def read_json(cls, path: Path) -> "RunRecord":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        record = cls(
            started_at=str(data.get("started_at") or ""),
            finished_at=data.get("finished_at"),
            cancelled=bool(data.get("cancelled", False)),
        )
        for item in data.get("targets") or []:
            rep = TargetReport(
                name=str(item["name"]),
                stale=bool(item.get("stale", False)),
                status=item.get("status", "pending"),
                duration=float(item.get("duration", 0.0)),
                error=item.get("error"),
                upstream_failure=item.get("upstream_failure"),
            )
            record.targets[rep.name] = rep
        return record
