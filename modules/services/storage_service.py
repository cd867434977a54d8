"""Key/value storage backing the persisted history snapshots."""

from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class StorageQuotaExceeded(OSError):
    """Raised when a value does not fit in the configured quota."""


def _check_key(key: str) -> None:
    if not _KEY_PATTERN.match(key or ""):
        raise ValueError(f"Invalid storage key: {key!r}")


class KeyValueStorage:
    """Minimal string key/value store interface."""

    def __init__(self, quota_bytes: Optional[int] = None) -> None:
        self.quota_bytes = quota_bytes

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> List[str]:
        raise NotImplementedError

    def _check_quota(self, key: str, value: str) -> None:
        if self.quota_bytes is None:
            return
        size = len(value.encode("utf-8"))
        if size > self.quota_bytes:
            raise StorageQuotaExceeded(
                f"Value for '{key}' is {size} bytes, quota is {self.quota_bytes} bytes"
            )


class MemoryStorage(KeyValueStorage):
    """In-process storage, mostly for tests and ephemeral sessions."""

    def __init__(self, quota_bytes: Optional[int] = None) -> None:
        super().__init__(quota_bytes)
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        _check_key(key)
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        _check_key(key)
        self._check_quota(key, value)
        self._data[key] = value

    def remove(self, key: str) -> None:
        _check_key(key)
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return sorted(self._data)


class JsonFileStorage(KeyValueStorage):
    """Store each key as ``<root_dir>/<key>.json``."""

    suffix = ".json"

    def __init__(self, root_dir: Path, quota_bytes: Optional[int] = None) -> None:
        super().__init__(quota_bytes)
        self.root_dir = Path(root_dir)

    def _path(self, key: str) -> Path:
        _check_key(key)
        return self.root_dir / f"{key}{self.suffix}"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        self._check_quota(key, value)
        self.root_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.root_dir, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fp:
                fp.write(value)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def keys(self) -> List[str]:
        if not self.root_dir.exists():
            return []
        return sorted(path.stem for path in self.root_dir.glob(f"*{self.suffix}"))
