from __future__ import annotations

import json
import os
import pickle
from abc import ABC, abstractmethod
from contextlib import suppress
from hashlib import sha256
from pathlib import Path
from typing import Any, Dict, List, Tuple

from ..core.errors import StoreUnavailable, UnstorableResult

# Namespaces whose values are JSON documents; everything else is pickled.
JSON_NAMESPACES = frozenset({"fingerprints"})

# Errors pickle/json raise for values they cannot encode.
_ENCODE_ERRORS = (pickle.PicklingError, TypeError, AttributeError, ValueError, RecursionError)
# Errors they raise for bytes that are not a valid entry.
_DECODE_ERRORS = (pickle.UnpicklingError, ValueError, EOFError, AttributeError, ImportError, IndexError, TypeError)


class KeyValueBackend(ABC):
    """Get/put/delete persistence keyed by (namespace, key).

    `get` returns `default` both for absent keys and for entries that exist
    but cannot be read back; a stored `None` is a real value.
    """

    @abstractmethod
    def get(self, namespace: str, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    def put(self, namespace: str, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def delete(self, namespace: str, key: str) -> None:
        ...

    @abstractmethod
    def keys(self, namespace: str) -> List[str]:
        ...

    def contains(self, namespace: str, key: str) -> bool:
        return key in self.keys(namespace)

    def open(self) -> None:
        pass

    def flush(self) -> None:
        pass


class MemoryBackend(KeyValueBackend):
    def __init__(self) -> None:
        self._data: Dict[Tuple[str, str], Any] = {}

    def get(self, namespace: str, key: str, default: Any = None) -> Any:
        return self._data.get((namespace, key), default)

    def put(self, namespace: str, key: str, value: Any) -> None:
        self._data[(namespace, key)] = value

    def delete(self, namespace: str, key: str) -> None:
        self._data.pop((namespace, key), None)

    def keys(self, namespace: str) -> List[str]:
        return sorted(k for ns, k in self._data if ns == namespace)

    def contains(self, namespace: str, key: str) -> bool:
        return (namespace, key) in self._data


def _file_stem(key: str) -> str:
    # Target names may hold characters that are not file-system safe.
    safe = "".join(c if (c.isalnum() or c in "-_.") else "_" for c in key)
    return f"{safe[:64]}-{sha256(key.encode('utf-8')).hexdigest()[:12]}"


_ABSENT = object()


class DirectoryBackend(KeyValueBackend):
    """One file per entry under `<root>/<namespace>/`.

    Each write goes to a temporary file and is renamed into place, so
    concurrent writers of distinct keys never see partial entries. A
    corrupt entry reads as absent.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def _ns_dir(self, namespace: str) -> Path:
        return self.root / namespace

    def _path(self, namespace: str, key: str) -> Path:
        suffix = ".json" if namespace in JSON_NAMESPACES else ".pkl"
        return self._ns_dir(namespace) / f"{_file_stem(key)}{suffix}"

    def open(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreUnavailable(f"Cannot create cache directory {self.root}: {exc}") from exc

    def _read_entry(self, path: Path) -> Any:
        """The stored `{"key", "value"}` dict, or `_ABSENT` when missing or unreadable."""
        if not path.exists():
            return _ABSENT
        try:
            if path.suffix == ".json":
                entry = json.loads(path.read_text(encoding="utf-8"))
            else:
                with path.open("rb") as f:
                    entry = pickle.load(f)
        except OSError as exc:
            raise StoreUnavailable(f"Cannot read {path}: {exc}") from exc
        except _DECODE_ERRORS:
            return _ABSENT
        if not isinstance(entry, dict) or "key" not in entry:
            return _ABSENT
        return entry

    def get(self, namespace: str, key: str, default: Any = None) -> Any:
        entry = self._read_entry(self._path(namespace, key))
        if entry is _ABSENT or entry.get("key") != key:
            return default
        return entry.get("value")

    def put(self, namespace: str, key: str, value: Any) -> None:
        path = self._path(namespace, key)
        tmp = path.with_name(path.name + f".tmp{os.getpid()}")
        entry = {"key": key, "value": value}
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if namespace in JSON_NAMESPACES:
                tmp.write_text(json.dumps(entry, indent=2, sort_keys=True) + "\n", encoding="utf-8")
            else:
                with tmp.open("wb") as f:
                    pickle.dump(entry, f, protocol=pickle.HIGHEST_PROTOCOL)
            os.replace(tmp, path)
        except OSError as exc:
            raise StoreUnavailable(f"Cannot write {path}: {exc}") from exc
        except _ENCODE_ERRORS as exc:
            raise UnstorableResult(f"Cannot serialize value for '{key}' ({namespace}): {exc}") from exc
        finally:
            if tmp.exists():
                with suppress(OSError):
                    tmp.unlink()

    def contains(self, namespace: str, key: str) -> bool:
        return self.get(namespace, key, _ABSENT) is not _ABSENT

    def delete(self, namespace: str, key: str) -> None:
        path = self._path(namespace, key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StoreUnavailable(f"Cannot delete {path}: {exc}") from exc

    def keys(self, namespace: str) -> List[str]:
        d = self._ns_dir(namespace)
        if not d.exists():
            return []
        out: List[str] = []
        try:
            for p in sorted(d.iterdir()):
                if p.suffix not in (".json", ".pkl"):
                    continue
                entry = self._read_entry(p)
                if entry is not _ABSENT:
                    out.append(str(entry["key"]))
        except OSError as exc:
            raise StoreUnavailable(f"Cannot list {d}: {exc}") from exc
        return sorted(out)
