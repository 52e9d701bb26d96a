from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class PlanConfig:
    """Build-level settings shared by the scheduler and the CLI."""

    # Persistent fingerprints + cached results
    cache_dir: str = ".plan_cache"

    # Concurrency: 1 runs targets in dependency order on the calling thread.
    workers: int = 1

    # Partial-failure tolerance: keep building independent branches after a failure.
    keep_going: bool = True

    # Logging / artifacts
    log_dir: Optional[str] = "logs"
    run_record_path: Optional[str] = None

    def to_json_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def resolved_cache_dir(self) -> Path:
        return Path(self.cache_dir)

    def resolved_workers(self) -> int:
        return max(1, int(self.workers))
