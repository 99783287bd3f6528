"""
Harmonization engine.

Public entry point tying together the provider registry, the snapshot cache
and the lookup coordinator. One engine serves many concurrent lookups; a
configuration reload swaps the registry without interrupting lookups already
in flight.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from types import TracebackType

import httpx

from harmony_engine.cache import SnapshotCache
from harmony_engine.config import Config
from harmony_engine.coordinator import LookupCoordinator, LookupRequest
from harmony_engine.models import (
    HarmonizedArtist,
    HarmonizedRelease,
    HarmonizedTrack,
    ProviderInfo,
)
from harmony_engine.providers import BaseProvider
from harmony_engine.registry import ProviderRegistry

log = logging.getLogger(__name__)


class HarmonizationEngine:
    """
    Look up releases, tracks and artists across providers and merge the results.

    Example:
        async with HarmonizationEngine(Config.load()) as engine:
            release = await engine.lookup_by_gtin("0602445790920")
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        registry: ProviderRegistry | None = None,
        cache: SnapshotCache | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Args:
            config: Configuration; defaults are used when omitted
            registry: Prebuilt registry; built from ``config`` when omitted
            cache: Prebuilt snapshot cache; built from ``config.cache`` when omitted
            client: HTTP client shared by providers built from ``config``
        """
        self.config = config or Config()
        self._client = client
        if registry is None:
            registry = ProviderRegistry.from_config(self.config, client=client)
        if cache is None:
            cache = SnapshotCache.from_config(self.config.cache)
        self.cache = cache
        self.coordinator = LookupCoordinator(
            registry,
            cache,
            max_concurrency=self.config.lookup.max_concurrency,
            single_flight=self.config.lookup.single_flight,
        )
        log.debug(f"Engine ready with providers: {[p.name for p in registry.get_enabled()]}")

    @property
    def registry(self) -> ProviderRegistry:
        return self.coordinator.registry

    async def lookup_by_gtin(
        self,
        gtin: str,
        providers: Sequence[str] | None = None,
        bypass_cache: bool = False,
    ) -> HarmonizedRelease:
        """
        Find a release by barcode (GTIN-8/12/13/14).

        Args:
            gtin: Barcode, separators allowed
            providers: Provider names to query; all enabled providers when omitted
            bypass_cache: Skip both the cache read and the cache write

        Raises:
            ValidationError: Malformed barcode
            ProviderNotFoundError: No enabled provider matches ``providers``
            NotFoundError: No provider has the release
            AggregateFailure: Every provider failed
        """
        request = LookupRequest(kind="gtin", value=gtin, providers=providers, bypass_cache=bypass_cache)
        return await self.coordinator.lookup_release(request)

    async def lookup_by_isrc(
        self,
        isrc: str,
        providers: Sequence[str] | None = None,
        bypass_cache: bool = False,
    ) -> HarmonizedTrack:
        """Find a recording by ISRC. Raises as ``lookup_by_gtin``."""
        return await self.coordinator.lookup_track(isrc, providers, bypass_cache)

    async def lookup_by_url(
        self,
        url: str,
        providers: Sequence[str] | None = None,
        bypass_cache: bool = False,
    ) -> HarmonizedRelease:
        """
        Resolve a provider release URL.

        The owning provider resolves the URL; when the release has a barcode
        the other selected providers are queried by it and merged in.
        """
        request = LookupRequest(kind="url", value=url, providers=providers, bypass_cache=bypass_cache)
        return await self.coordinator.lookup_release(request)

    async def lookup_artist_by_url(
        self,
        url: str,
        providers: Sequence[str] | None = None,
        bypass_cache: bool = False,
    ) -> HarmonizedArtist:
        return await self.coordinator.lookup_artist(url, providers, bypass_cache)

    async def search(
        self,
        query: str,
        providers: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[HarmonizedRelease]:
        """
        Search releases by free text.

        Args:
            query: Search text
            providers: Provider names to query; all enabled providers when omitted
            limit: Maximum results per provider and overall; defaults to
                ``lookup.default_search_limit``
        """
        return await self.coordinator.search_releases(query, providers, self._limit(limit))

    async def search_tracks(
        self,
        query: str,
        providers: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[HarmonizedTrack]:
        return await self.coordinator.search_tracks(query, providers, self._limit(limit))

    async def search_artists(
        self,
        query: str,
        providers: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[HarmonizedArtist]:
        return await self.coordinator.search_artists(query, providers, self._limit(limit))

    def get_provider(self, name: str) -> BaseProvider | None:
        return self.registry.get(name)

    def get_enabled_providers(self) -> list[ProviderInfo]:
        """Descriptors of the enabled providers, highest priority first."""
        return [p.info() for p in self.registry.get_enabled()]

    def reload(self, config: Config) -> ProviderRegistry:
        """
        Swap in providers built from a new configuration.

        Lookups already running keep the registry they started with. The
        snapshot cache and fan-out settings are kept.

        Returns:
            The previous registry; the caller closes it once in-flight
            lookups have finished
        """
        new_registry = ProviderRegistry.from_config(config, client=self._client)
        previous = self.coordinator.registry
        self.coordinator.registry = new_registry
        self.config = config
        log.info(f"Reloaded providers: {[p.name for p in new_registry.get_enabled()]}")
        return previous

    async def aclose(self) -> None:
        await self.registry.aclose()
        await self.cache.aclose()

    async def __aenter__(self) -> HarmonizationEngine:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def _limit(self, limit: int | None) -> int:
        return self.config.lookup.default_search_limit if limit is None else limit
