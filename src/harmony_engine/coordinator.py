"""
Lookup coordinator.

Runs one lookup through its states:

    CACHE_CHECK -> DONE                                   (hit)
    CACHE_CHECK -> FANOUT -> MERGE -> CACHE_WRITE -> DONE (miss)
    FANOUT -> FAILED                                      (no usable candidate)

Fan-out queries the selected providers concurrently under a semaphore and
waits for every outcome before merging. Candidates are merged in registry
priority order, never completion order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal, TypeVar

from harmony_engine.cache import SnapshotCache, make_fingerprint
from harmony_engine.errors import (
    AggregateFailure,
    NotFoundError,
    ProviderNotFoundError,
    ValidationError,
)
from harmony_engine.merger import ArtistMerger, EntityMerger, ReleaseMerger, TrackMerger
from harmony_engine.models import (
    HarmonizedArtist,
    HarmonizedEntity,
    HarmonizedRelease,
    HarmonizedTrack,
    stamp_snapshot,
)
from harmony_engine.providers import BaseProvider
from harmony_engine.registry import ProviderRegistry
from harmony_engine.validation import (
    is_valid_gtin,
    is_valid_isrc,
    normalize_gtin,
    normalize_isrc,
)

T = TypeVar("T")
E = TypeVar("E", HarmonizedRelease, HarmonizedTrack, HarmonizedArtist)

log = logging.getLogger(__name__)


class LookupState(StrEnum):
    CACHE_CHECK = "cache_check"
    FANOUT = "fanout"
    MERGE = "merge"
    CACHE_WRITE = "cache_write"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class LookupRequest:
    """A release lookup by barcode or provider URL."""

    kind: Literal["gtin", "url"]
    value: str
    providers: Sequence[str] | None = None
    bypass_cache: bool = False


@dataclass
class FanoutOutcome:
    """Per-provider results of one fan-out, in registry priority order."""

    results: list[tuple[BaseProvider, Any]]
    failures: dict[str, BaseException]
    queried: int

    @property
    def all_failed(self) -> bool:
        return self.queried > 0 and len(self.failures) == self.queried


class LookupCoordinator:
    """
    Cache-first lookup orchestration over a provider registry.

    ``registry`` may be replaced at any time; each lookup reads it once at
    start and uses that snapshot throughout.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        cache: SnapshotCache,
        max_concurrency: int = 8,
        single_flight: bool = True,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.registry = registry
        self.cache = cache
        self.max_concurrency = max_concurrency
        self.single_flight = single_flight
        self.release_merger = ReleaseMerger()
        self.track_merger = TrackMerger()
        self.artist_merger = ArtistMerger()
        self._inflight: dict[str, asyncio.Future[Any]] = {}

    # Entity lookups

    async def lookup_release(self, request: LookupRequest) -> HarmonizedRelease:
        """
        Resolve a release by GTIN or provider URL.

        Raises:
            ValidationError: Malformed GTIN, unsupported URL or kind
            ProviderNotFoundError: No enabled provider matches the selection
            NotFoundError: No provider returned the release
            AggregateFailure: Every queried provider failed
        """
        registry = self.registry
        if request.kind == "gtin":
            gtin = self._validate_gtin(request.value)
            providers = self._select(registry, request.providers)
            label = f"gtin:{gtin}"
            key = make_fingerprint("gtin", gtin, [p.name for p in providers])
            return await self._cached(
                registry,
                key,
                label,
                request.bypass_cache,
                "release",
                lambda: self._lookup_one(
                    providers, lambda p: p.lookup_by_gtin(gtin), self.release_merger, label
                ),
            )

        if request.kind == "url":
            url = request.value.strip()
            providers = self._select(registry, request.providers)
            owner = self._url_owner(registry, providers, url)
            label = f"url:{url}"
            key = make_fingerprint("url", url, [p.name for p in providers])
            return await self._cached(
                registry,
                key,
                label,
                request.bypass_cache,
                "release",
                lambda: self._lookup_release_url(providers, owner, url, label),
            )

        raise ValidationError(f"Unsupported lookup kind: {request.kind}", field="kind")

    async def lookup_track(
        self,
        isrc: str,
        providers: Sequence[str] | None = None,
        bypass_cache: bool = False,
    ) -> HarmonizedTrack:
        if not is_valid_isrc(isrc):
            raise ValidationError(f"Invalid ISRC: {isrc!r}", field="isrc")
        code = normalize_isrc(isrc)
        registry = self.registry
        selected = self._select(registry, providers)
        label = f"isrc:{code}"
        key = make_fingerprint("isrc", code, [p.name for p in selected])
        return await self._cached(
            registry,
            key,
            label,
            bypass_cache,
            "track",
            lambda: self._lookup_one(
                selected, lambda p: p.lookup_by_isrc(code), self.track_merger, label
            ),
        )

    async def lookup_artist(
        self,
        url: str,
        providers: Sequence[str] | None = None,
        bypass_cache: bool = False,
    ) -> HarmonizedArtist:
        """Resolve an artist from a provider artist URL."""
        url = url.strip()
        registry = self.registry
        selected = self._select(registry, providers)
        owner = self._url_owner(registry, selected, url)
        label = f"artist-url:{url}"
        key = make_fingerprint("url:artist", url, [p.name for p in selected])
        return await self._cached(
            registry,
            key,
            label,
            bypass_cache,
            "artist",
            lambda: self._lookup_one(
                [owner], lambda p: p.lookup_artist_by_url(url), self.artist_merger, label
            ),
        )

    # Searches

    async def search_releases(
        self,
        query: str,
        providers: Sequence[str] | None = None,
        limit: int = 25,
    ) -> list[HarmonizedRelease]:
        """Search releases; results sharing a barcode are merged into one entry."""
        return await self._search(
            "query",
            query,
            providers,
            limit,
            "release",
            lambda p: p.search(query, limit),
            self.release_merger,
            lambda r: normalize_gtin(r.gtin) if r.gtin and is_valid_gtin(r.gtin) else None,
        )

    async def search_tracks(
        self,
        query: str,
        providers: Sequence[str] | None = None,
        limit: int = 25,
    ) -> list[HarmonizedTrack]:
        """Search tracks; results sharing an ISRC are merged into one entry."""
        return await self._search(
            "query:tracks",
            query,
            providers,
            limit,
            "track",
            lambda p: p.search_tracks(query, limit),
            self.track_merger,
            lambda t: normalize_isrc(t.isrc) if t.isrc and is_valid_isrc(t.isrc) else None,
        )

    async def search_artists(
        self,
        query: str,
        providers: Sequence[str] | None = None,
        limit: int = 25,
    ) -> list[HarmonizedArtist]:
        return await self._search(
            "query:artists",
            query,
            providers,
            limit,
            "artist",
            lambda p: p.search_artists(query, limit),
            self.artist_merger,
            lambda a: None,
        )

    # Internals

    @staticmethod
    def _validate_gtin(code: str) -> str:
        if not is_valid_gtin(code):
            raise ValidationError(f"Invalid GTIN: {code!r}", field="gtin")
        return normalize_gtin(code)

    @staticmethod
    def _select(registry: ProviderRegistry, names: Sequence[str] | None) -> list[BaseProvider]:
        """Enabled providers in priority order, filtered to ``names`` when given."""
        enabled = registry.get_enabled()
        if not names:
            selected = enabled
        else:
            wanted = set(names)
            available = {p.name for p in enabled}
            for name in names:
                if name not in available:
                    log.warning(f"Ignoring unknown or disabled provider {name!r}")
            selected = [p for p in enabled if p.name in wanted]

        if not selected:
            raise ProviderNotFoundError(", ".join(names) if names else "no enabled providers")
        return selected

    @staticmethod
    def _url_owner(
        registry: ProviderRegistry, providers: Sequence[BaseProvider], url: str
    ) -> BaseProvider:
        owner = registry.find_by_url(url)
        if owner is not None and owner in providers:
            return owner
        raise ValidationError(f"No enabled provider can handle URL: {url}", field="url")

    @staticmethod
    def _transition(label: str, state: LookupState) -> None:
        log.debug(f"[{label}] -> {state}")

    async def _cached(
        self,
        registry: ProviderRegistry,
        key: str,
        label: str,
        bypass_cache: bool,
        kind: str,
        compute: Callable[[], Awaitable[T]],
    ) -> T:
        """Serve from cache, or compute, write back and return."""
        self._transition(label, LookupState.CACHE_CHECK)
        if not bypass_cache:
            snapshot = await self.cache.get(key)
            if snapshot is not None:
                log.debug(f"[{label}] cache hit {key}")
                self._transition(label, LookupState.DONE)
                return snapshot.value

        async def compute_and_store() -> T:
            value = await compute()
            if bypass_cache:
                self._transition(label, LookupState.DONE)
                return value
            self._transition(label, LookupState.CACHE_WRITE)
            value = self._stamp(value, key)
            await self.cache.set(key, value, ttl_seconds=self._ttl_for(registry, value), kind=kind)
            self._transition(label, LookupState.DONE)
            return value

        if bypass_cache or not self.single_flight:
            return await compute_and_store()
        return await self._join_or_start(key, label, compute_and_store)

    async def _join_or_start(self, key: str, label: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Share one in-flight computation between concurrent lookups of the same key."""
        future = self._inflight.get(key)
        if future is None:
            future = asyncio.ensure_future(fn())
            self._inflight[key] = future
            future.add_done_callback(lambda done: self._settle(key, label, done))
        else:
            log.debug(f"[{label}] joining in-flight lookup {key}")
        # Shielded so one cancelled caller does not cancel the others
        return await asyncio.shield(future)

    def _settle(self, key: str, label: str, future: asyncio.Future[Any]) -> None:
        self._inflight.pop(key, None)
        # Retrieve the outcome even when every waiter has gone away
        if not future.cancelled() and (error := future.exception()) is not None:
            log.debug(f"[{label}] shared lookup {key} failed: {type(error).__name__}: {error}")

    def _stamp(self, value: T, key: str) -> T:
        if isinstance(value, list):
            return [stamp_snapshot(item, key) for item in value]
        return stamp_snapshot(value, key)

    def _ttl_for(
        self, registry: ProviderRegistry, value: HarmonizedEntity | list[HarmonizedEntity]
    ) -> int:
        """Shortest TTL among the providers that contributed, else the cache default."""
        items = value if isinstance(value, list) else [value]
        names = {source.provider for item in items for source in item.sources}
        ttls = [
            provider.cache_ttl_seconds
            for name in names
            if (provider := registry.get(name)) is not None
        ]
        return min(ttls) if ttls else self.cache.default_ttl_seconds

    async def _fanout(
        self,
        providers: Sequence[BaseProvider],
        call: Callable[[BaseProvider], Awaitable[T]],
        label: str,
    ) -> FanoutOutcome:
        self._transition(label, LookupState.FANOUT)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(provider: BaseProvider) -> T:
            async with semaphore:
                return await call(provider)

        outcomes = await asyncio.gather(*(run(p) for p in providers), return_exceptions=True)

        results: list[tuple[BaseProvider, Any]] = []
        failures: dict[str, BaseException] = {}
        for provider, outcome in zip(providers, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                log.warning(f"[{label}] {provider.name} failed: {type(outcome).__name__}: {outcome}")
                failures[provider.name] = outcome
            elif outcome is None:
                log.debug(f"[{label}] {provider.name}: not found")
            else:
                results.append((provider, outcome))
        return FanoutOutcome(results=results, failures=failures, queried=len(providers))

    def _fail(self, label: str, outcome: FanoutOutcome, what: str) -> NotFoundError | AggregateFailure:
        self._transition(label, LookupState.FAILED)
        if outcome.all_failed:
            return AggregateFailure(f"All providers failed for {what}", outcome.failures)
        return NotFoundError(f"No provider found {what}", outcome.failures)

    async def _lookup_one(
        self,
        providers: Sequence[BaseProvider],
        call: Callable[[BaseProvider], Awaitable[E | None]],
        merger: EntityMerger[E],
        label: str,
    ) -> E:
        outcome = await self._fanout(providers, call, label)
        if not outcome.results:
            raise self._fail(label, outcome, label)
        self._transition(label, LookupState.MERGE)
        return merger.merge([entity for _, entity in outcome.results])

    async def _lookup_release_url(
        self,
        providers: Sequence[BaseProvider],
        owner: BaseProvider,
        url: str,
        label: str,
    ) -> HarmonizedRelease:
        """Resolve the URL with its owner, then enrich by barcode from the other providers."""
        outcome = await self._fanout([owner], lambda p: p.lookup_by_url(url), label)
        if not outcome.results:
            raise self._fail(label, outcome, label)
        release: HarmonizedRelease = outcome.results[0][1]

        candidates: dict[str, HarmonizedRelease] = {owner.name: release}
        others = [p for p in providers if p is not owner]
        if others and release.gtin and is_valid_gtin(release.gtin):
            gtin = normalize_gtin(release.gtin)
            log.debug(f"[{label}] enriching via gtin {gtin} from {[p.name for p in others]}")
            enrichment = await self._fanout(others, lambda p: p.lookup_by_gtin(gtin), label)
            for provider, entity in enrichment.results:
                candidates[provider.name] = entity

        self._transition(label, LookupState.MERGE)
        ordered = [candidates[p.name] for p in providers if p.name in candidates]
        return self.release_merger.merge(ordered)

    async def _search(
        self,
        kind: str,
        query: str,
        providers: Sequence[str] | None,
        limit: int,
        entity: str,
        call: Callable[[BaseProvider], Awaitable[list[E]]],
        merger: EntityMerger[E],
        group_key: Callable[[E], str | None],
    ) -> list[E]:
        if not query or not query.strip():
            raise ValidationError("Search query must not be empty", field="query")
        if limit < 1:
            raise ValidationError(f"Search limit must be >= 1, got {limit}", field="limit")

        registry = self.registry
        selected = self._select(registry, providers)
        label = f"{kind}:{query.strip()}"
        key = make_fingerprint(kind, query, [p.name for p in selected], limit=limit)

        async def compute() -> list[E]:
            outcome = await self._fanout(selected, call, label)
            if outcome.all_failed:
                self._transition(label, LookupState.FAILED)
                raise AggregateFailure(f"All providers failed for {label}", outcome.failures)

            self._transition(label, LookupState.MERGE)
            groups: list[list[E]] = []
            slots: dict[str, list[E]] = {}
            for _, items in outcome.results:
                for item in items:
                    group_id = group_key(item)
                    if group_id is not None and group_id in slots:
                        slots[group_id].append(item)
                        continue
                    group = [item]
                    groups.append(group)
                    if group_id is not None:
                        slots[group_id] = group
            merged = [group[0] if len(group) == 1 else merger.merge(group) for group in groups]
            return merged[:limit]

        return await self._cached(registry, key, label, False, entity, compute)
