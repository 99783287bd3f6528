"""Tests for the snapshot cache and its backends."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest
from fakes import make_artist, make_release, make_track

from harmony_engine.cache import (
    CacheBackend,
    MemoryCacheBackend,
    SnapshotCache,
    SqliteCacheBackend,
    decode_snapshot,
    encode_snapshot,
    make_fingerprint,
)
from harmony_engine.config import CacheBackendType, CacheConfig


class ManualClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class BrokenBackend(CacheBackend):
    """Backend whose storage is unavailable."""

    async def get(self, key: str) -> bytes | None:
        raise OSError("disk unavailable")

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        raise OSError("disk unavailable")

    async def delete(self, key: str) -> None:
        raise OSError("disk unavailable")

    async def clear(self) -> None:
        raise OSError("disk unavailable")

    async def purge_expired(self) -> int:
        raise OSError("disk unavailable")


# Fingerprints


def test_fingerprint_normalizes_query_text():
    a = make_fingerprint("query", "  OK   Computer ", ["musicbrainz"], limit=25)
    b = make_fingerprint("query", "ok computer", ["musicbrainz"], limit=25)
    assert a == b


def test_fingerprint_keeps_query_punctuation():
    assert make_fingerprint("query", "C++", ["musicbrainz"], limit=5) != make_fingerprint(
        "query", "C", ["musicbrainz"], limit=5
    )
    assert make_fingerprint("query", "!!!", ["musicbrainz"]) != make_fingerprint("query", "???", ["musicbrainz"])
    assert make_fingerprint("query", "AC/DC  Live", ["musicbrainz"]) == make_fingerprint(
        "query", "ac/dc live", ["musicbrainz"]
    )


def test_fingerprint_includes_extra_params():
    a = make_fingerprint("query", "ok computer", ["musicbrainz"], limit=10)
    b = make_fingerprint("query", "ok computer", ["musicbrainz"], limit=25)
    assert a != b


def test_fingerprint_isrc_case_insensitive():
    assert make_fingerprint("isrc", "gb-aye-97-00378", ["spotify"]) == make_fingerprint(
        "isrc", "GBAYE9700378", ["spotify"]
    )


def test_fingerprint_url_kinds_differ():
    url = "https://open.spotify.com/artist/4Z8W4fKeB5YxbusRsdQVPb"
    assert make_fingerprint("url", url, ["spotify"]) != make_fingerprint("url:artist", url, ["spotify"])
    assert make_fingerprint("url", f" {url} ", ["spotify"]) == make_fingerprint("url", url, ["spotify"])


# Encoding


def test_snapshot_roundtrip_keeps_entity_type():
    release = make_release("musicbrainz", "mb1", "OK Computer", gtin="00602445790920", tracks=2)
    fetched_at = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)

    snapshot = decode_snapshot("k", encode_snapshot(release, fetched_at, 3600))

    assert snapshot.key == "k"
    assert snapshot.value == release
    assert snapshot.fetched_at == fetched_at
    assert snapshot.expires_at == datetime(2026, 1, 2, 4, 4, 5, tzinfo=UTC)


def test_snapshot_list_roundtrip():
    tracks = [make_track("spotify", "t1", "Airbag"), make_track("spotify", "t2", "Paranoid Android")]
    now = datetime.now(UTC)

    snapshot = decode_snapshot("k", encode_snapshot(tracks, now, 60))

    assert snapshot.value == tracks


def test_empty_list_requires_kind():
    now = datetime.now(UTC)
    with pytest.raises(ValueError):
        encode_snapshot([], now, 60)

    snapshot = decode_snapshot("k", encode_snapshot([], now, 60, kind="artist"))
    assert snapshot.value == []


def test_decode_rejects_unknown_entity():
    with pytest.raises(ValueError):
        decode_snapshot("k", b'{"entity": "playlist", "payload": {}}')


def test_encode_rejects_non_entities():
    with pytest.raises(TypeError):
        encode_snapshot([object()], datetime.now(UTC), 60)  # type: ignore[list-item]


# Memory backend


def test_memory_backend_expires_entries():
    clock = ManualClock()
    backend = MemoryCacheBackend(clock=clock)

    async def run():
        await backend.set("a", b"1", ttl_seconds=10)
        fresh = await backend.get("a")
        clock.now += 10
        stale = await backend.get("a")
        return fresh, stale

    assert asyncio.run(run()) == (b"1", None)
    assert len(backend) == 0


def test_memory_backend_evicts_least_recently_used():
    backend = MemoryCacheBackend(max_entries=2)

    async def run():
        await backend.set("a", b"1", 60)
        await backend.set("b", b"2", 60)
        await backend.get("a")
        await backend.set("c", b"3", 60)
        return [await backend.get(k) for k in ("a", "b", "c")]

    assert asyncio.run(run()) == [b"1", None, b"3"]


def test_memory_backend_purge_expired():
    clock = ManualClock()
    backend = MemoryCacheBackend(clock=clock)

    async def run():
        await backend.set("short", b"1", 5)
        await backend.set("long", b"2", 500)
        clock.now += 60
        return await backend.purge_expired()

    assert asyncio.run(run()) == 1
    assert len(backend) == 1


def test_memory_backend_rejects_zero_capacity():
    with pytest.raises(ValueError):
        MemoryCacheBackend(max_entries=0)


# SQLite backend


def test_sqlite_backend_roundtrip(tmp_path):
    backend = SqliteCacheBackend(tmp_path / "cache")

    async def run():
        await backend.set("a", b"payload", 60)
        await backend.set("a", b"replaced", 60)
        value = await backend.get("a")
        await backend.delete("a")
        return value, await backend.get("a")

    assert asyncio.run(run()) == (b"replaced", None)
    assert backend.db_path.exists()


def test_sqlite_backend_purge_and_clear(tmp_path):
    backend = SqliteCacheBackend(tmp_path)
    backend._set_sync("expired", b"old", -10)
    backend._set_sync("fresh", b"new", 3600)

    async def run():
        expired = await backend.get("expired")
        removed = await backend.purge_expired()
        fresh = await backend.get("fresh")
        await backend.clear()
        return expired, removed, fresh, await backend.get("fresh")

    assert asyncio.run(run()) == (None, 1, b"new", None)


def test_sqlite_backend_persists_across_instances(tmp_path):
    async def write():
        await SqliteCacheBackend(tmp_path).set("a", b"kept", 60)

    async def read():
        return await SqliteCacheBackend(tmp_path).get("a")

    asyncio.run(write())
    assert asyncio.run(read()) == b"kept"


# SnapshotCache


def test_snapshot_cache_set_get(snapshot_cache):
    artist = make_artist("musicbrainz", "mb1", "Radiohead")

    async def run():
        await snapshot_cache.set("k", artist, ttl_seconds=60)
        return await snapshot_cache.get("k")

    snapshot = asyncio.run(run())
    assert snapshot is not None
    assert snapshot.value == artist
    assert snapshot.ttl_seconds == 60


def test_snapshot_cache_default_ttl():
    cache = SnapshotCache(MemoryCacheBackend(), default_ttl_seconds=123)

    async def run():
        await cache.set("k", make_artist("a", "1"))
        return await cache.get("k")

    snapshot = asyncio.run(run())
    assert snapshot is not None and snapshot.ttl_seconds == 123


def test_snapshot_cache_skips_non_positive_ttl():
    backend = MemoryCacheBackend()
    cache = SnapshotCache(backend)

    async def run():
        await cache.set("k", make_artist("a", "1"), ttl_seconds=0)

    asyncio.run(run())
    assert len(backend) == 0


def test_snapshot_cache_discards_undecodable_entries(caplog):
    backend = MemoryCacheBackend()
    cache = SnapshotCache(backend)

    async def run():
        await backend.set("k", b"{not json", 60)
        return await cache.get("k")

    assert asyncio.run(run()) is None
    assert "Discarding undecodable cache entry" in caplog.text


@pytest.mark.parametrize("data", [b"null", b"[]", b"\"release\"", b"42"])
def test_snapshot_cache_discards_non_object_entries(data, caplog):
    backend = MemoryCacheBackend()
    cache = SnapshotCache(backend)

    async def run():
        await backend.set("k", data, 60)
        return await cache.get("k")

    assert asyncio.run(run()) is None
    assert "Discarding undecodable cache entry" in caplog.text


def test_decode_rejects_non_object_document():
    with pytest.raises(ValueError):
        decode_snapshot("k", b"[]")


def test_snapshot_cache_survives_backend_failures(caplog):
    cache = SnapshotCache(BrokenBackend())

    async def run():
        await cache.set("k", make_artist("a", "1"), ttl_seconds=60)
        await cache.invalidate("k")
        await cache.clear()
        return await cache.get("k"), await cache.purge_expired()

    assert asyncio.run(run()) == (None, 0)
    assert "Cache write failed" in caplog.text
    assert "Cache read failed" in caplog.text


def test_disabled_snapshot_cache():
    cache = SnapshotCache(None)

    async def run():
        await cache.set("k", make_artist("a", "1"), ttl_seconds=60)
        return await cache.get("k"), await cache.purge_expired()

    assert not cache.enabled
    assert asyncio.run(run()) == (None, 0)


def test_invalidate_removes_entry(snapshot_cache):
    async def run():
        await snapshot_cache.set("k", make_artist("a", "1"), ttl_seconds=60)
        await snapshot_cache.invalidate("k")
        return await snapshot_cache.get("k")

    assert asyncio.run(run()) is None


@pytest.mark.parametrize(
    ("backend", "expected"),
    [
        (CacheBackendType.MEMORY, MemoryCacheBackend),
        (CacheBackendType.SQLITE, SqliteCacheBackend),
        (CacheBackendType.NONE, type(None)),
    ],
)
def test_from_config(tmp_path, backend, expected):
    config = CacheConfig(backend=backend, directory=tmp_path / "snapshots", ttl_seconds=42, max_entries=7)

    cache = SnapshotCache.from_config(config)

    assert isinstance(cache.backend, expected)
    assert cache.default_ttl_seconds == 42
    if backend == CacheBackendType.MEMORY:
        assert cache.backend.max_entries == 7
    assert (tmp_path / "snapshots").exists() == (backend == CacheBackendType.SQLITE)
