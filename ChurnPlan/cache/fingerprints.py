from __future__ import annotations

import hashlib
import io
import json
import pickle
import stat
from dataclasses import asdict, dataclass
from functools import partial
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import numpy as np

MISSING = "missing"
_READ_BLOCK = 1 << 20


@dataclass(frozen=True)
class FileFingerprint:
    """Content hash of a declared file, plus the stat data that lets us trust it."""

    path: str
    mtime_ns: int
    size: int
    sha256: str

    def to_json_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_json_dict(cls, data: Dict[str, Any]) -> "FileFingerprint":
        return cls(
            path=str(data["path"]),
            mtime_ns=int(data["mtime_ns"]),
            # Entries without a size never match the shortcut and get rehashed.
            size=int(data.get("size", -1)),
            sha256=str(data["sha256"]),
        )

    def matches_stat(self, st) -> bool:
        return self.mtime_ns == st.st_mtime_ns and self.size == st.st_size


def _digest_bytes(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for block in iter(partial(f.read, _READ_BLOCK), b""):
            h.update(block)
    return h.hexdigest()


def file_identity(path: Path, previous: Optional[FileFingerprint] = None) -> Tuple[str, Optional[FileFingerprint]]:
    """Return (content identity, fresh fingerprint) for one declared file.

    Stat first: when mtime and size match the previous fingerprint the stored
    hash is reused; otherwise the file is hashed. A touched file with the same
    bytes keeps its identity but gets a fingerprint with the new mtime.
    Missing files (and anything that is not a regular file) map to `MISSING`
    and no fingerprint.
    """

    path = Path(path)
    try:
        st = path.stat()
    except OSError:
        return MISSING, None
    if not stat.S_ISREG(st.st_mode):
        return MISSING, None
    if previous is not None and previous.matches_stat(st):
        return previous.sha256, previous
    try:
        digest = _digest_bytes(path)
    except OSError:
        return MISSING, None
    return digest, FileFingerprint(path=str(path), mtime_ns=int(st.st_mtime_ns), size=int(st.st_size), sha256=digest)


def _update_value_hash(h: "hashlib._Hash", value: Any) -> None:
    if isinstance(value, np.ndarray):
        h.update(b"ndarray")
        h.update(str(value.dtype).encode("utf-8"))
        h.update(repr(value.shape).encode("utf-8"))
        h.update(np.ascontiguousarray(value).tobytes())
        return
    if isinstance(value, dict):
        h.update(b"dict")
        for k in sorted(value, key=str):
            h.update(repr(k).encode("utf-8"))
            _update_value_hash(h, value[k])
        return
    if isinstance(value, (list, tuple)):
        h.update(type(value).__name__.encode("utf-8"))
        for item in value:
            _update_value_hash(h, item)
        return
    if value is None or isinstance(value, (str, int, float, bool)):
        h.update(json.dumps(value).encode("utf-8"))
        return
    if isinstance(value, (bytes, bytearray)):
        h.update(b"bytes")
        h.update(bytes(value))
        return
    buf = io.BytesIO()
    try:
        pickle.dump(value, buf, protocol=pickle.HIGHEST_PROTOCOL)
    except (pickle.PicklingError, TypeError, AttributeError):
        h.update(repr(value).encode("utf-8"))
        return
    h.update(buf.getvalue())


def value_digest(value: Any) -> str:
    """Content identity of a target result.

    numpy arrays hash by dtype, shape and raw bytes; containers hash
    structurally with sorted dict keys; other objects hash their pickle.
    """

    h = hashlib.sha256()
    _update_value_hash(h, value)
    return h.hexdigest()
