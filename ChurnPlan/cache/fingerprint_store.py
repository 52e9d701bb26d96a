from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .fingerprints import FileFingerprint
from .store import DirectoryBackend, KeyValueBackend, MemoryBackend

_FINGERPRINTS = "fingerprints"
_RESULTS = "results"
_ABSENT = object()


@dataclass(frozen=True)
class Fingerprint:
    code_id: str
    input_ids: tuple
    result_digest: Optional[str] = None
    # Last known mtime/hash per declared file, for the mtime-first shortcut.
    files: Dict[str, FileFingerprint] = field(default_factory=dict)

    def to_json_dict(self) -> Dict[str, Any]:
        return {
            "code_id": self.code_id,
            "input_ids": list(self.input_ids),
            "result_digest": self.result_digest,
            "files": {k: v.to_json_dict() for k, v in self.files.items()},
        }

    @classmethod
    def from_json_dict(cls, data: Dict[str, Any]) -> "Fingerprint":
        files: Dict[str, FileFingerprint] = {}
        for k, v in (data.get("files") or {}).items():
            try:
                files[k] = FileFingerprint.from_json_dict(v)
            except (KeyError, TypeError, ValueError):
                continue
        return cls(
            code_id=str(data.get("code_id") or ""),
            input_ids=tuple(sorted(str(x) for x in (data.get("input_ids") or []))),
            result_digest=data.get("result_digest"),
            files=files,
        )


class FingerprintStore:
    """Fingerprint history and cached results for each target.

    Backed by a `KeyValueBackend`; every method that touches the backend may
    raise `StoreUnavailable`.
    """

    def __init__(self, backend: Optional[KeyValueBackend] = None):
        self.backend = backend if backend is not None else MemoryBackend()

    @classmethod
    def at(cls, cache_dir: Union[str, Path]) -> "FingerprintStore":
        return cls(DirectoryBackend(Path(cache_dir)))

    # ------------------------------------------------------------------ lifecycle
    def open(self) -> None:
        self.backend.open()

    def flush(self) -> None:
        self.backend.flush()

    # ------------------------------------------------------------------ fingerprints
    def record_fingerprint(
        self,
        name: str,
        code_id: str,
        input_ids: Iterable[str],
        *,
        result_digest: Optional[str] = None,
        files: Optional[Dict[str, FileFingerprint]] = None,
    ) -> Fingerprint:
        fp = Fingerprint(
            code_id=str(code_id),
            input_ids=tuple(sorted(str(x) for x in input_ids)),
            result_digest=result_digest,
            files=dict(files or {}),
        )
        self.backend.put(_FINGERPRINTS, name, fp.to_json_dict())
        return fp

    def get_fingerprint(self, name: str) -> Optional[Fingerprint]:
        data = self.backend.get(_FINGERPRINTS, name)
        if not isinstance(data, dict):
            return None
        return Fingerprint.from_json_dict(data)

    def is_stale(self, name: str, code_id: str, input_ids: Iterable[str]) -> bool:
        prev = self.get_fingerprint(name)
        if prev is None:
            return True
        if prev.code_id != code_id:
            return True
        return set(prev.input_ids) != {str(x) for x in input_ids}

    # ------------------------------------------------------------------ results
    def save_result(self, name: str, value: Any) -> None:
        self.backend.put(_RESULTS, name, value)

    def has_result(self, name: str) -> bool:
        return self.backend.contains(_RESULTS, name)

    def load_result(self, name: str) -> Any:
        value = self.backend.get(_RESULTS, name, _ABSENT)
        if value is _ABSENT:
            raise KeyError(f"No readable cached result for target '{name}'")
        return value

    # ------------------------------------------------------------------ maintenance
    def forget(self, name: str) -> None:
        self.backend.delete(_FINGERPRINTS, name)
        self.backend.delete(_RESULTS, name)

    def names(self) -> List[str]:
        return self.backend.keys(_FINGERPRINTS)
