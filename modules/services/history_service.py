"""Bounded, persisted history of generated and scanned QR codes."""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

from modules.errors import PersistenceCorrupt, PersistenceUnavailable
from modules.services.storage_service import KeyValueStorage

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 20
SCHEMA_VERSION = 2

# Legacy records (schema 1) came from two UI variants that named the artifact differently.
ARTIFACT_FIELD = "qrCode"
LEGACY_ARTIFACT_FIELD = "qrCodeUrl"


class HistoryKind(str, Enum):
    """Which producer created a history entry."""

    GENERATED = "generated"
    SCANNED = "scanned"


STORAGE_KEYS: Dict[HistoryKind, str] = {
    HistoryKind.GENERATED: "qrGenerationHistory",
    HistoryKind.SCANNED: "qrScanHistory",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """One successful encode or decode."""

    id: str
    kind: HistoryKind
    content: str
    artifact: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)

    @classmethod
    def create(
        cls,
        kind: HistoryKind,
        content: str,
        artifact: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> "HistoryEntry":
        """Build a new entry with a fresh id."""
        return cls(
            id=_new_id(),
            kind=HistoryKind(kind),
            content=content,
            artifact=artifact,
            timestamp=timestamp or _utcnow(),
        )

    def to_record(self) -> Dict[str, Any]:
        """Return the persisted representation."""
        return {
            "schema": SCHEMA_VERSION,
            "id": self.id,
            "type": self.kind.value,
            "content": self.content,
            ARTIFACT_FIELD: self.artifact,
            "timestamp": self.timestamp.isoformat(),
        }


def _parse_timestamp(value: Any) -> datetime:
    if not isinstance(value, str) or not value.strip():
        raise PersistenceCorrupt(f"Invalid timestamp: {value!r}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise PersistenceCorrupt(f"Invalid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _migrate_record(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Bring a schema 1 record up to the current layout."""
    record = dict(raw)
    if ARTIFACT_FIELD not in record and LEGACY_ARTIFACT_FIELD in record:
        record[ARTIFACT_FIELD] = record[LEGACY_ARTIFACT_FIELD]
    record.pop(LEGACY_ARTIFACT_FIELD, None)
    record["schema"] = SCHEMA_VERSION
    return record


def record_to_entry(raw: Any, default_kind: HistoryKind) -> HistoryEntry:
    """Normalize one persisted record into a :class:`HistoryEntry`."""
    if not isinstance(raw, dict):
        raise PersistenceCorrupt(f"Record is not an object: {raw!r}")

    schema = raw.get("schema", 1)
    if schema == 1:
        raw = _migrate_record(raw)
    elif schema != SCHEMA_VERSION:
        raise PersistenceCorrupt(f"Unsupported record schema: {schema!r}")

    entry_id = raw.get("id")
    content = raw.get("content")
    if not isinstance(entry_id, str) or not entry_id:
        raise PersistenceCorrupt(f"Record has no id: {raw!r}")
    if not isinstance(content, str):
        raise PersistenceCorrupt(f"Record {entry_id} has no content")

    try:
        kind = HistoryKind(raw.get("type") or default_kind)
    except ValueError as exc:
        raise PersistenceCorrupt(f"Record {entry_id} has unknown type {raw.get('type')!r}") from exc
    if kind != default_kind:
        raise PersistenceCorrupt(f"Record {entry_id} is {kind.value}, expected {HistoryKind(default_kind).value}")

    artifact = raw.get(ARTIFACT_FIELD)
    if artifact is not None and not isinstance(artifact, str):
        raise PersistenceCorrupt(f"Record {entry_id} has a non-string artifact")

    return HistoryEntry(
        id=entry_id,
        kind=kind,
        content=content,
        artifact=artifact or None,
        timestamp=_parse_timestamp(raw.get("timestamp")),
    )


def parse_snapshot(payload: str, default_kind: HistoryKind) -> List[HistoryEntry]:
    """Deserialize a full snapshot, raising :class:`PersistenceCorrupt` on any defect."""
    try:
        data = json.loads(payload)
    except (TypeError, ValueError, RecursionError) as exc:
        raise PersistenceCorrupt(f"Snapshot is not valid JSON: {exc}") from exc
    if not isinstance(data, list):
        raise PersistenceCorrupt("Snapshot is not a list")

    entries = [record_to_entry(item, default_kind) for item in data]
    seen: set[str] = set()
    for entry in entries:
        if entry.id in seen:
            raise PersistenceCorrupt(f"Duplicate entry id {entry.id}")
        seen.add(entry.id)
    return entries


def serialize_snapshot(entries: List[HistoryEntry]) -> str:
    return json.dumps([entry.to_record() for entry in entries], ensure_ascii=False)


class HistoryStore:
    """Newest-first ledger of entries of a single kind, capped at ``capacity``.

    Every mutation rewrites the whole snapshot under ``key``. Operations are
    serialized with a lock since UI callbacks may run on several threads.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        key: str,
        kind: HistoryKind,
        capacity: int = DEFAULT_CAPACITY,
    ) -> None:
        if capacity < 1:
            raise ValueError("History capacity must be at least 1")
        self.storage = storage
        self.key = key
        self.kind = HistoryKind(kind)
        self.capacity = capacity
        self._entries: List[HistoryEntry] = []
        self._lock = threading.Lock()

    @property
    def entries(self) -> List[HistoryEntry]:
        """Return a copy of the in-memory sequence, newest first."""
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(self.entries)

    def load(self) -> List[HistoryEntry]:
        """Reload from storage. Corrupt or unreadable snapshots yield an empty history."""
        with self._lock:
            entries: List[HistoryEntry] = []
            try:
                payload = self.storage.get(self.key)
                if payload is not None:
                    entries = parse_snapshot(payload, self.kind)
            except OSError as exc:
                logger.warning("History '%s' could not be read: %s", self.key, exc)
                entries = []
            except (PersistenceCorrupt, UnicodeDecodeError) as exc:
                logger.warning("Ignoring corrupt history '%s': %s", self.key, exc)
                entries = []

            self._entries = entries[: self.capacity]
            return list(self._entries)

    def append(self, entry: HistoryEntry) -> List[HistoryEntry]:
        """Insert ``entry`` at the front, evict past capacity and persist.

        Raises :class:`PersistenceUnavailable` if the write is rejected; the
        in-memory history already contains ``entry`` at that point.
        """
        if entry.kind != self.kind:
            raise ValueError(f"Cannot store a {entry.kind.value} entry in the {self.kind.value} history")
        with self._lock:
            if any(existing.id == entry.id for existing in self._entries):
                raise ValueError(f"Duplicate history entry id: {entry.id}")
            self._entries = [entry, *self._entries][: self.capacity]
            snapshot = list(self._entries)
            self._write(serialize_snapshot(snapshot))
            return snapshot

    def clear(self) -> None:
        """Drop all entries and delete the persisted key."""
        with self._lock:
            self._entries = []
            try:
                self.storage.remove(self.key)
            except OSError as exc:
                logger.error("History '%s' could not be removed: %s", self.key, exc)
                raise PersistenceUnavailable(f"无法清除历史记录：{exc}") from exc

    def filter(self, query: str) -> List[HistoryEntry]:
        """Case-insensitive substring search over entry content."""
        needle = (query or "").lower()
        return self.filter_by(lambda content: needle in content.lower())

    def filter_by(self, predicate: Callable[[str], bool]) -> List[HistoryEntry]:
        return [entry for entry in self.entries if predicate(entry.content)]

    def _write(self, payload: str) -> None:
        try:
            self.storage.set(self.key, payload)
        except OSError as exc:
            logger.error("History '%s' could not be saved: %s", self.key, exc)
            raise PersistenceUnavailable(f"无法保存历史记录：{exc}") from exc


class HistoryService:
    """Own the generation and scan histories as two independent stores."""

    def __init__(self, storage: KeyValueStorage, capacity: int = DEFAULT_CAPACITY) -> None:
        self.storage = storage
        self._stores: Dict[HistoryKind, HistoryStore] = {
            kind: HistoryStore(storage, STORAGE_KEYS[kind], kind, capacity=capacity)
            for kind in HistoryKind
        }

    def store(self, kind: HistoryKind) -> HistoryStore:
        return self._stores[HistoryKind(kind)]

    def load_all(self) -> Dict[HistoryKind, List[HistoryEntry]]:
        """Load both histories from storage."""
        return {kind: store.load() for kind, store in self._stores.items()}

    def record_generated(self, content: str, artifact: Optional[str]) -> HistoryEntry:
        entry = HistoryEntry.create(HistoryKind.GENERATED, content, artifact)
        self.store(HistoryKind.GENERATED).append(entry)
        return entry

    def record_scanned(self, content: str, artifact: Optional[str] = None) -> HistoryEntry:
        entry = HistoryEntry.create(HistoryKind.SCANNED, content, artifact)
        self.store(HistoryKind.SCANNED).append(entry)
        return entry
