"""Tests for the file-backed response cache."""

from __future__ import annotations

import hashlib
import json

from ContractArchive.Acquisition.cache_store import CacheEntry, FileCacheStore, cache_key

URL = "https://repo-a.example/contracts/exact_match/1/0xabc/metadata.json"
NOW_MS = 1_704_067_200_000


def _entry(timestamp: int = NOW_MS) -> CacheEntry:
    return CacheEntry(
        url=URL,
        timestamp=timestamp,
        headers={"etag": '"v1"', "content-type": "application/json"},
        data={"compiler": {"version": "0.8.19"}},
    )


def test_cache_key_is_sha256_of_url():
    assert cache_key(URL) == hashlib.sha256(URL.encode()).hexdigest()


def test_round_trip(tmp_path):
    store = FileCacheStore(tmp_path, clock_ms=lambda: NOW_MS)
    key = cache_key(URL)

    store.put(key, _entry())
    loaded = store.get(key)

    assert loaded is not None
    assert loaded.etag == '"v1"'
    assert loaded.data == {"compiler": {"version": "0.8.19"}}


def test_on_disk_format(tmp_path):
    store = FileCacheStore(tmp_path, clock_ms=lambda: NOW_MS)
    key = cache_key(URL)

    store.put(key, _entry())

    document = json.loads((tmp_path / f"{key}.json").read_text())
    assert document["url"] == URL
    assert document["timestamp"] == NOW_MS
    assert document["headers"] == {
        "etag": '"v1"',
        "last-modified": None,
        "content-type": "application/json",
        "content-length": None,
    }
    assert list(tmp_path.glob("*.tmp")) == []


def test_expired_entry_reads_as_absent(tmp_path):
    day_ms = 24 * 3600 * 1000
    store = FileCacheStore(tmp_path, clock_ms=lambda: NOW_MS + day_ms + 1)
    key = cache_key(URL)
    store.put(key, _entry())

    assert store.get(key) is None


def test_entry_within_window_is_returned(tmp_path):
    store = FileCacheStore(tmp_path, clock_ms=lambda: NOW_MS + 3600 * 1000)
    key = cache_key(URL)
    store.put(key, _entry())

    assert store.get(key) is not None


def test_torn_entry_is_a_miss(tmp_path):
    store = FileCacheStore(tmp_path, clock_ms=lambda: NOW_MS)
    key = cache_key(URL)
    (tmp_path / f"{key}.json").write_text('{"url": "x", "timest')

    assert store.get(key) is None


def test_missing_entry(tmp_path):
    store = FileCacheStore(tmp_path / "nope")
    assert store.get(cache_key(URL)) is None
