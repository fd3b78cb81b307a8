import logging
import sqlite3
from contextlib import closing
from pathlib import Path

import pytest

from topicfilter.domain.errors import CacheStoreError
from topicfilter.infrastructure.cache.stores import DiskCacheStore, MemoryCacheStore
from topicfilter.infrastructure.cache.ttl_cache import TtlCache

RECORDS = [
    {"key": "python教程", "decision": True, "timestamp": 1700000000.0},
    {"key": "红烧肉做法", "decision": False, "timestamp": 1700000001.5},
]


def test_disk_store_round_trip_across_instances(tmp_path: Path):
    store = DiskCacheStore(tmp_path / "cache", "classification_cache-abc")
    assert store.load() == []
    store.save(RECORDS)
    store.close()

    reopened = DiskCacheStore(tmp_path / "cache", "classification_cache-abc")
    assert reopened.load() == RECORDS
    reopened.close()


def test_disk_store_records_are_independent_per_name(tmp_path: Path):
    first = DiskCacheStore(tmp_path, "topics-a")
    second = DiskCacheStore(tmp_path, "topics-b")
    first.save(RECORDS)

    assert second.load() == []

    first.clear()
    assert first.load() == []
    first.close()
    second.close()


def test_disk_store_clear_everything(tmp_path: Path):
    first = DiskCacheStore(tmp_path, "topics-a")
    second = DiskCacheStore(tmp_path, "topics-b")
    first.save(RECORDS)
    second.save(RECORDS[:1])

    first.clear(everything=True)

    assert first.load() == []
    assert second.load() == []
    first.close()
    second.close()


def test_disk_store_feeds_cache_hydration(tmp_path: Path):
    store = DiskCacheStore(tmp_path, "topics")
    cache = TtlCache(ttl_seconds=60, clock=lambda: 1700000010.0)
    cache.put("python教程", True)
    store.save([entry.to_dict() for entry in cache.drain()])

    restored = TtlCache(ttl_seconds=60, clock=lambda: 1700000020.0)
    restored.hydrate(store.load())
    store.close()

    assert restored.get("python教程") is True


def test_memory_store_copies_records():
    store = MemoryCacheStore()
    records = [dict(r) for r in RECORDS]
    store.save(records)
    records[0]["decision"] = False

    loaded = store.load()
    assert loaded == RECORDS
    loaded.clear()
    assert store.load() == RECORDS
    assert store.save_count == 1


def test_disk_store_with_garbage_database_loads_nothing(tmp_path: Path, caplog):
    (tmp_path / "cache.db").write_bytes(b"this is not a sqlite database" * 64)
    store = DiskCacheStore(tmp_path, "topics")

    with caplog.at_level(logging.WARNING):
        assert store.load() == []
    assert "unreadable" in caplog.text

    with pytest.raises(CacheStoreError):
        store.save(RECORDS)
    with pytest.raises(CacheStoreError):
        store.clear(everything=True)
    store.close()


def test_disk_store_with_undecodable_snapshot_loads_nothing(tmp_path: Path):
    store = DiskCacheStore(tmp_path, "topics")
    store.save(RECORDS)
    store.close()

    with closing(sqlite3.connect(str(tmp_path / "cache.db"))) as connection:
        connection.execute("UPDATE Cache SET value = ?", (b"\x80\x04garbage",))
        connection.commit()

    reopened = DiskCacheStore(tmp_path, "topics")
    assert reopened.load() == []
    reopened.save(RECORDS)
    assert reopened.load() == RECORDS
    reopened.close()
