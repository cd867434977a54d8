"""HistoryStore / HistoryService unit tests."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta, timezone

import pytest

from modules.errors import PersistenceUnavailable
from modules.services.history_service import (
    STORAGE_KEYS,
    HistoryEntry,
    HistoryKind,
    HistoryService,
    HistoryStore,
    serialize_snapshot,
)
from modules.services.storage_service import JsonFileStorage, MemoryStorage

KEY = STORAGE_KEYS[HistoryKind.GENERATED]


class FailingStorage(MemoryStorage):
    """Storage whose writes and deletes are rejected, like a full browser quota."""

    def set(self, key: str, value: str) -> None:
        raise OSError("quota exceeded")

    def remove(self, key: str) -> None:
        raise OSError("storage locked")


def make_store(storage=None, capacity: int = 20) -> HistoryStore:
    return HistoryStore(storage or MemoryStorage(), KEY, HistoryKind.GENERATED, capacity=capacity)


def make_entry(content: str, artifact: str | None = "data:image/png;base64,AAAA", **kwargs) -> HistoryEntry:
    return HistoryEntry.create(HistoryKind.GENERATED, content, artifact, **kwargs)


def test_append_keeps_newest_first_and_caps_at_capacity():
    store = make_store()
    for index in range(21):
        store.append(make_entry(f"item-{index}"))

    contents = [entry.content for entry in store.entries]
    assert len(contents) == 20
    assert contents == [f"item-{index}" for index in range(20, 0, -1)]
    assert "item-0" not in contents


def test_append_never_exceeds_capacity_and_head_is_latest():
    store = make_store(capacity=5)
    for index in range(30):
        entry = make_entry(f"v{index}")
        store.append(entry)
        assert len(store) <= 5
        assert store.entries[0] is entry


def test_append_preserves_relative_order_of_existing_entries():
    store = make_store(capacity=4)
    for content in ("a", "b", "c"):
        store.append(make_entry(content))
    before = [entry.id for entry in store.entries]

    store.append(make_entry("d"))
    store.append(make_entry("e"))

    after = [entry.id for entry in store.entries]
    assert after[2:] == before[: len(after) - 2]


def test_eviction_is_capacity_based_not_content_based():
    store = make_store(capacity=3)
    for _ in range(3):
        store.append(make_entry("same"))

    assert [entry.content for entry in store.entries] == ["same", "same", "same"]
    assert len({entry.id for entry in store.entries}) == 3


def test_append_persists_full_snapshot():
    storage = MemoryStorage()
    store = make_store(storage)
    store.append(make_entry("first"))
    store.append(make_entry("second"))

    records = json.loads(storage.get(KEY))
    assert [record["content"] for record in records] == ["second", "first"]
    assert all(record["type"] == "generated" for record in records)
    assert all("qrCode" in record for record in records)


def test_append_rejects_duplicate_id():
    store = make_store()
    entry = make_entry("once")
    store.append(entry)

    with pytest.raises(ValueError):
        store.append(entry)
    assert len(store) == 1


def test_append_rejects_other_kind():
    store = make_store()
    scanned = HistoryEntry.create(HistoryKind.SCANNED, "scan")

    with pytest.raises(ValueError):
        store.append(scanned)


def test_created_ids_are_unique():
    ids = {make_entry("x").id for _ in range(500)}
    assert len(ids) == 500


def test_load_round_trip_reproduces_entries():
    storage = MemoryStorage()
    base = datetime(2024, 5, 1, 12, 30, 15, tzinfo=timezone.utc)
    original = [
        make_entry(f"entry-{index}", timestamp=base - timedelta(minutes=index))
        for index in range(20)
    ]
    storage.set(KEY, serialize_snapshot(original))

    loaded = make_store(storage).load()

    assert loaded == original
    assert [entry.timestamp for entry in loaded] == [entry.timestamp for entry in original]


def test_load_round_trip_through_files(tmp_path):
    storage = JsonFileStorage(tmp_path)
    writer = make_store(storage)
    for content in ("one", "two", "three"):
        writer.append(make_entry(content))

    reader = make_store(JsonFileStorage(tmp_path))
    assert reader.load() == writer.entries


def test_load_without_snapshot_returns_empty():
    assert make_store().load() == []


def test_load_corrupt_snapshot_fails_open_and_keeps_data(caplog):
    storage = MemoryStorage()
    storage.set(KEY, "{not json")
    store = make_store(storage)

    with caplog.at_level(logging.WARNING):
        entries = store.load()

    assert entries == []
    assert storage.get(KEY) == "{not json"
    assert "corrupt" in caplog.text


@pytest.mark.parametrize(
    "payload",
    [
        json.dumps({"id": "1"}),
        json.dumps([{"id": "1", "content": "x", "timestamp": "yesterday"}]),
        json.dumps([{"content": "x", "timestamp": "2024-01-01T00:00:00Z"}]),
        json.dumps([{"id": "1", "content": "x", "type": "scanned", "timestamp": "2024-01-01T00:00:00Z"}]),
        json.dumps(
            [
                {"id": "1", "content": "a", "timestamp": "2024-01-01T00:00:00Z"},
                {"id": "1", "content": "b", "timestamp": "2024-01-01T00:00:00Z"},
            ]
        ),
    ],
)
def test_load_rejects_malformed_records(payload):
    storage = MemoryStorage()
    storage.set(KEY, payload)

    assert make_store(storage).load() == []
    assert storage.get(KEY) == payload


def test_load_snapshot_with_invalid_utf8_fails_open(tmp_path):
    path = tmp_path / f"{KEY}.json"
    path.write_bytes(b"\xff\xfe[garbage")

    assert make_store(JsonFileStorage(tmp_path)).load() == []
    assert path.read_bytes() == b"\xff\xfe[garbage"


def test_load_deeply_nested_snapshot_fails_open():
    storage = MemoryStorage()
    storage.set(KEY, "[" * 100000)

    assert make_store(storage).load() == []
    assert storage.get(KEY) == "[" * 100000


def test_build_services_starts_with_corrupt_snapshot(tmp_path):
    from config.settings import AppConfig
    from modules.ui.layout import build_services

    (tmp_path / f"{KEY}.json").write_bytes(b"\xff\xfe[garbage")

    _, _, history, _ = build_services(AppConfig(data_dir=tmp_path))

    assert history.store(HistoryKind.GENERATED).entries == []


def test_len_waits_for_store_lock():
    store = make_store(capacity=3)
    for content in ("a", "b", "c", "d"):
        store.append(make_entry(content))
    sizes = []

    with store._lock:
        reader = threading.Thread(target=lambda: sizes.append(len(store)))
        reader.start()
        reader.join(timeout=0.2)
        assert reader.is_alive()
        assert sizes == []

    reader.join(timeout=5)
    assert sizes == [3]


def test_load_normalizes_legacy_artifact_field():
    storage = MemoryStorage()
    storage.set(
        KEY,
        json.dumps(
            [
                {
                    "id": "1700000000000",
                    "content": "https://www.example.com",
                    "qrCodeUrl": "data:image/png;base64,BBBB",
                    "timestamp": "2023-11-14T22:13:20.000Z",
                },
                {
                    "id": "1699999999999",
                    "content": "hello",
                    "qrCode": "data:image/png;base64,CCCC",
                    "timestamp": "2023-11-14T22:13:19.999Z",
                },
            ]
        ),
    )

    entries = make_store(storage).load()

    assert [entry.artifact for entry in entries] == [
        "data:image/png;base64,BBBB",
        "data:image/png;base64,CCCC",
    ]
    assert all(entry.kind is HistoryKind.GENERATED for entry in entries)
    assert entries[0].timestamp == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


def test_absent_artifact_survives_round_trip():
    storage = MemoryStorage()
    writer = make_store(storage)
    writer.append(make_entry("no image", artifact=None))
    writer.append(make_entry("empty image", artifact=""))

    loaded = make_store(storage).load()

    assert [entry.artifact for entry in loaded] == [None, None]


def test_load_truncates_oversized_snapshot():
    storage = MemoryStorage()
    entries = [make_entry(f"e{index}") for index in range(25)]
    storage.set(KEY, serialize_snapshot(entries))

    loaded = make_store(storage).load()

    assert loaded == entries[:20]


def test_clear_removes_key_and_is_idempotent():
    storage = MemoryStorage()
    store = make_store(storage)
    store.append(make_entry("a"))

    store.clear()
    assert store.entries == []
    assert storage.get(KEY) is None
    assert KEY not in storage.keys()

    store.clear()
    assert store.entries == []
    assert store.load() == []


def test_filter_is_case_insensitive_and_keeps_order():
    store = make_store()
    for content in ("zzz", "ABCx", "abc"):
        store.append(make_entry(content))

    result = store.filter("bc")

    assert [entry.content for entry in result] == ["abc", "ABCx"]
    assert len(store) == 3


def test_filter_empty_query_returns_everything():
    store = make_store()
    for content in ("a", "b"):
        store.append(make_entry(content))

    assert [entry.content for entry in store.filter("")] == ["b", "a"]


def test_filter_by_custom_predicate():
    store = make_store()
    for content in ("https://a.example", "plain text"):
        store.append(make_entry(content))

    result = store.filter_by(lambda content: content.startswith("https://"))

    assert [entry.content for entry in result] == ["https://a.example"]


def test_append_failure_keeps_memory_state():
    store = make_store(FailingStorage())
    entry = make_entry("kept")

    with pytest.raises(PersistenceUnavailable):
        store.append(entry)

    assert store.entries == [entry]


def test_quota_exceeded_is_reported_as_persistence_unavailable():
    store = make_store(MemoryStorage(quota_bytes=16))

    with pytest.raises(PersistenceUnavailable):
        store.append(make_entry("too big for the quota"))
    assert len(store) == 1


def test_clear_failure_still_empties_memory():
    store = make_store(FailingStorage())
    with pytest.raises(PersistenceUnavailable):
        store.append(make_entry("x"))

    with pytest.raises(PersistenceUnavailable):
        store.clear()
    assert store.entries == []


def test_service_keeps_independent_stores():
    storage = MemoryStorage()
    service = HistoryService(storage, capacity=2)
    for index in range(3):
        service.record_generated(f"g{index}", "data:image/png;base64,AAAA")
    service.record_scanned("s0")

    generated = service.store(HistoryKind.GENERATED).entries
    scanned = service.store(HistoryKind.SCANNED).entries
    assert [entry.content for entry in generated] == ["g2", "g1"]
    assert [entry.content for entry in scanned] == ["s0"]
    assert sorted(storage.keys()) == sorted(STORAGE_KEYS.values())

    service.store(HistoryKind.GENERATED).clear()
    reloaded = HistoryService(storage, capacity=2).load_all()
    assert reloaded[HistoryKind.GENERATED] == []
    assert [entry.content for entry in reloaded[HistoryKind.SCANNED]] == ["s0"]
