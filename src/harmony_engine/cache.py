"""
Snapshot cache for harmonized lookup results.

Keys are fingerprints of the lookup request (kind, normalized value, sorted
provider set). Values are JSON documents holding the entity (or list of
entities for searches) with fetch time and TTL. The cache never fails a
lookup: backend errors and undecodable entries are logged and read as misses.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import sqlite3
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel

from harmony_engine.config import CacheBackendType, CacheConfig
from harmony_engine.models import (
    HarmonizedArtist,
    HarmonizedEntity,
    HarmonizedRelease,
    HarmonizedTrack,
    utc_now,
)
from harmony_engine.validation import normalize_gtin, normalize_isrc

log = logging.getLogger(__name__)

LookupKind = Literal["gtin", "isrc", "url", "url:artist", "query", "query:tracks", "query:artists"]

ENTITY_TYPES: dict[str, type[BaseModel]] = {
    "release": HarmonizedRelease,
    "track": HarmonizedTrack,
    "artist": HarmonizedArtist,
}

SNAPSHOT_PREFIX = "snapshot:"


def normalize_lookup_value(kind: str, value: str) -> str:
    if kind == "gtin":
        return normalize_gtin(value)
    if kind == "isrc":
        return normalize_isrc(value)
    if kind.startswith("query"):
        # Punctuation is kept: providers receive the query as typed
        return " ".join(value.split()).casefold()
    return value.strip()


def make_fingerprint(
    kind: LookupKind | str,
    value: str,
    providers: Iterable[str],
    **params: Any,
) -> str:
    """
    Cache key for a lookup request.

    Args:
        kind: Lookup kind (gtin, isrc, url, url:artist, query, query:tracks, query:artists)
        value: Identifier, URL or query text; normalized here
        providers: Provider names queried (order and duplicates are irrelevant)
        **params: Extra request parameters that change the result (e.g. search limit)

    Returns:
        ``snapshot:`` followed by the SHA-256 hex digest of the canonical request
    """
    canonical = {
        "kind": kind,
        "value": normalize_lookup_value(kind, value),
        "providers": sorted(set(providers)),
        **params,
    }
    json_bytes = json.dumps(canonical, sort_keys=True, ensure_ascii=True, separators=(",", ":")).encode(
        "utf-8"
    )
    return SNAPSHOT_PREFIX + hashlib.sha256(json_bytes).hexdigest()


def entity_kind(entity: BaseModel) -> str:
    for kind, model in ENTITY_TYPES.items():
        if isinstance(entity, model):
            return kind
    raise TypeError(f"Not a harmonized entity: {type(entity).__name__}")


@dataclass(frozen=True)
class Snapshot:
    """A cached lookup result."""

    key: str
    value: HarmonizedEntity | list[HarmonizedEntity]
    fetched_at: datetime
    ttl_seconds: int

    @property
    def expires_at(self) -> datetime:
        return self.fetched_at + timedelta(seconds=self.ttl_seconds)


def encode_snapshot(
    value: HarmonizedEntity | Sequence[HarmonizedEntity],
    fetched_at: datetime,
    ttl_seconds: int,
    kind: str | None = None,
) -> bytes:
    """
    Serialize a lookup result into a JSON document.

    ``kind`` is required for an empty list, where it cannot be inferred.
    """
    many = not isinstance(value, BaseModel)
    items = list(value) if many else [value]
    if kind is None:
        if not items:
            raise ValueError("kind is required to encode an empty result list")
        kind = entity_kind(items[0])
    payload = [item.model_dump(mode="json") for item in items]
    document = {
        "entity": kind,
        "many": many,
        "payload": payload if many else payload[0],
        "fetched_at": fetched_at.isoformat(),
        "ttl_seconds": ttl_seconds,
    }
    return json.dumps(document, separators=(",", ":")).encode("utf-8")


def decode_snapshot(key: str, data: bytes) -> Snapshot:
    """
    Parse a JSON document written by ``encode_snapshot``.

    Raises:
        ValueError: On malformed JSON, unknown entity kind or invalid payload
            (pydantic's ValidationError is a ValueError)
    """
    document = json.loads(data)
    if not isinstance(document, dict):
        raise ValueError(f"Cached snapshot is not a JSON object: {type(document).__name__}")
    model = ENTITY_TYPES.get(document.get("entity"))
    if model is None:
        raise ValueError(f"Unknown cached entity kind: {document.get('entity')!r}")
    payload = document["payload"]
    value: Any
    if document.get("many"):
        value = [model.model_validate(item) for item in payload]
    else:
        value = model.model_validate(payload)
    return Snapshot(
        key=key,
        value=value,
        fetched_at=datetime.fromisoformat(document["fetched_at"]),
        ttl_seconds=int(document["ttl_seconds"]),
    )


class CacheBackend(ABC):
    """Byte store with per-entry expiry."""

    @abstractmethod
    async def get(self, key: str) -> bytes | None: ...

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def clear(self) -> None: ...

    @abstractmethod
    async def purge_expired(self) -> int:
        """Remove expired entries and return how many were removed."""

    async def aclose(self) -> None:
        return None


class MemoryCacheBackend(CacheBackend):
    """In-process cache with TTL and least-recently-used eviction."""

    def __init__(self, max_entries: int = 10000, clock: Callable[[], float] = time.time):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, bytes]] = OrderedDict()

    async def get(self, key: str) -> bytes | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        self._entries[key] = (self._clock() + ttl_seconds, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            log.debug(f"Evicted cache entry {evicted}")

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()

    async def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class SqliteCacheBackend(CacheBackend):
    """
    File-backed cache with an SQLite index tracking expiry.

    Each call opens its own connection and runs in a worker thread, so the
    event loop never blocks on disk I/O.
    """

    def __init__(self, cache_dir: Path):
        self.cache_dir = cache_dir
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.db_path = self.cache_dir / "snapshots.sqlite"
        self._init_db()

    def _init_db(self) -> None:
        """Initialize SQLite database schema."""
        conn = sqlite3.connect(self.db_path)
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS snapshots (
                key TEXT PRIMARY KEY,
                value BLOB NOT NULL,
                cached_at REAL NOT NULL,
                expires_at REAL NOT NULL
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_expires_at ON snapshots(expires_at)")
        conn.commit()
        conn.close()

    def _get_sync(self, key: str) -> bytes | None:
        conn = sqlite3.connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT value FROM snapshots WHERE key = ? AND expires_at > ?",
                (key, time.time()),
            ).fetchone()
        finally:
            conn.close()
        return bytes(row[0]) if row else None

    def _set_sync(self, key: str, value: bytes, ttl_seconds: int) -> None:
        cached_at = time.time()
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute(
                """
                INSERT OR REPLACE INTO snapshots (key, value, cached_at, expires_at)
                VALUES (?, ?, ?, ?)
                """,
                (key, value, cached_at, cached_at + ttl_seconds),
            )
            conn.commit()
        finally:
            conn.close()

    def _execute_sync(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.execute(sql, params)
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    async def get(self, key: str) -> bytes | None:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        await asyncio.to_thread(self._set_sync, key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._execute_sync, "DELETE FROM snapshots WHERE key = ?", (key,))

    async def clear(self) -> None:
        await asyncio.to_thread(self._execute_sync, "DELETE FROM snapshots")

    async def purge_expired(self) -> int:
        return await asyncio.to_thread(
            self._execute_sync, "DELETE FROM snapshots WHERE expires_at <= ?", (time.time(),)
        )


class SnapshotCache:
    """
    Lookup-result cache over a ``CacheBackend``.

    A cache built without a backend is disabled: every read misses and every
    write is dropped.
    """

    def __init__(self, backend: CacheBackend | None, default_ttl_seconds: int = 86400):
        self.backend = backend
        self.default_ttl_seconds = default_ttl_seconds

    @classmethod
    def from_config(cls, config: CacheConfig) -> SnapshotCache:
        """Build the cache selected by the ``[cache]`` section."""
        backend: CacheBackend | None
        if config.backend == CacheBackendType.SQLITE:
            backend = SqliteCacheBackend(config.directory)
        elif config.backend == CacheBackendType.MEMORY:
            backend = MemoryCacheBackend(max_entries=config.max_entries)
        else:
            backend = None
        log.debug(f"Snapshot cache backend: {config.backend}")
        return cls(backend, default_ttl_seconds=config.ttl_seconds)

    @property
    def enabled(self) -> bool:
        return self.backend is not None

    async def get(self, key: str) -> Snapshot | None:
        if self.backend is None:
            return None
        try:
            data = await self.backend.get(key)
        except Exception as e:
            log.warning(f"Cache read failed for {key}: {e}")
            return None
        if data is None:
            return None
        try:
            return decode_snapshot(key, data)
        except Exception as e:
            log.warning(f"Discarding undecodable cache entry {key}: {e}")
            return None

    async def set(
        self,
        key: str,
        value: HarmonizedEntity | Sequence[HarmonizedEntity],
        ttl_seconds: int | None = None,
        kind: str | None = None,
    ) -> None:
        """Store a lookup result. Failures are logged and ignored."""
        if self.backend is None:
            return
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            return
        try:
            data = encode_snapshot(value, utc_now(), ttl, kind=kind)
            await self.backend.set(key, data, ttl)
        except Exception as e:
            log.warning(f"Cache write failed for {key}: {e}")

    async def invalidate(self, key: str) -> None:
        if self.backend is None:
            return
        try:
            await self.backend.delete(key)
        except Exception as e:
            log.warning(f"Cache invalidate failed for {key}: {e}")

    async def clear(self) -> None:
        if self.backend is None:
            return
        try:
            await self.backend.clear()
        except Exception as e:
            log.warning(f"Cache clear failed: {e}")

    async def purge_expired(self) -> int:
        if self.backend is None:
            return 0
        try:
            return await self.backend.purge_expired()
        except Exception as e:
            log.warning(f"Cache purge failed: {e}")
            return 0

    async def aclose(self) -> None:
        if self.backend is not None:
            await self.backend.aclose()


## Tests


def test_fingerprint_ignores_provider_order_and_separators():
    a = make_fingerprint("gtin", "602-445-790920", ["spotify", "musicbrainz"])
    b = make_fingerprint("gtin", "00602445790920", ["musicbrainz", "spotify"])
    assert a == b
    assert a.startswith("snapshot:")
    assert len(a) == len("snapshot:") + 64


def test_fingerprint_distinguishes_kind_and_providers():
    base = make_fingerprint("gtin", "00602445790920", ["musicbrainz"])
    assert make_fingerprint("gtin", "00602445790920", ["musicbrainz", "tidal"]) != base
    assert make_fingerprint("query", "00602445790920", ["musicbrainz"]) != base
