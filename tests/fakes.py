"""In-memory providers and entity builders shared by the tests."""

from __future__ import annotations

import asyncio
import json
import re
from collections import Counter
from collections.abc import Callable
from typing import Any

import httpx

from harmony_engine.config import ProviderConfig, RateLimitConfig
from harmony_engine.models import (
    HarmonizedArtist,
    HarmonizedArtistCredit,
    HarmonizedRelease,
    HarmonizedTrack,
    ProviderSource,
    ReleaseMedium,
)
from harmony_engine.providers import BaseProvider
from harmony_engine.retry import RetryPolicy

NO_RETRY = RetryPolicy(retries=0, min_timeout_ms=0, max_timeout_ms=0)


def fast_config(config_class: type[ProviderConfig] = ProviderConfig, **overrides: Any) -> Any:
    """Provider config with an ample rate limit and no retries, unless overridden."""
    values: dict[str, Any] = {
        "rate_limit": RateLimitConfig(requests=1000, window_ms=1000),
        "retry": NO_RETRY,
    }
    values.update(overrides)
    return config_class(**values)


async def no_sleep(seconds: float) -> None:
    return None


def source(provider: str, entity_id: str) -> ProviderSource:
    return ProviderSource(provider=provider, id=entity_id)


def make_track(
    provider: str,
    entity_id: str,
    title: str = "Track",
    isrc: str | None = None,
    position: int = 1,
    confidence: float = 1.0,
    **fields: Any,
) -> HarmonizedTrack:
    return HarmonizedTrack(
        title=title,
        isrc=isrc,
        position=position,
        external_ids={provider: entity_id},
        sources=(source(provider, entity_id),),
        confidence=confidence,
        **fields,
    )


def make_release(
    provider: str,
    entity_id: str,
    title: str = "Album",
    gtin: str | None = None,
    confidence: float = 1.0,
    tracks: int = 0,
    **fields: Any,
) -> HarmonizedRelease:
    media = ()
    if tracks:
        media = (
            ReleaseMedium(
                position=1,
                tracks=tuple(
                    make_track(provider, f"{entity_id}-t{i}", f"Track {i}", position=i, confidence=confidence)
                    for i in range(1, tracks + 1)
                ),
            ),
        )
    fields.setdefault("artists", (HarmonizedArtistCredit(name="Artist"),))
    return HarmonizedRelease(
        title=title,
        gtin=gtin,
        media=media,
        external_ids={provider: entity_id},
        sources=(source(provider, entity_id),),
        confidence=confidence,
        **fields,
    )


def make_artist(
    provider: str,
    entity_id: str,
    name: str = "Artist",
    confidence: float = 1.0,
    **fields: Any,
) -> HarmonizedArtist:
    return HarmonizedArtist(
        name=name,
        external_ids={provider: entity_id},
        sources=(source(provider, entity_id),),
        confidence=confidence,
        **fields,
    )


class FakeProvider(BaseProvider):
    """
    Provider answering from dictionaries instead of HTTP.

    ``errors`` maps an operation name (``gtin``, ``isrc``, ``release``,
    ``artist``, ``search``, ``search_tracks``, ``search_artists``) to the
    exception to raise. ``gate``, when set, is awaited before answering.
    """

    name = "fake"
    display_name = "Fake"
    base_url = "https://fake.invalid"
    url_host_pattern = re.compile(r"fake\.invalid")

    def __init__(self, config: ProviderConfig | None = None, **kwargs: Any):
        super().__init__(config or fast_config(), **kwargs)
        self.by_gtin: dict[str, HarmonizedRelease] = {}
        self.by_isrc: dict[str, HarmonizedTrack] = {}
        self.releases: dict[str, HarmonizedRelease] = {}
        self.artists: dict[str, HarmonizedArtist] = {}
        self.release_results: list[HarmonizedRelease] = []
        self.track_results: list[HarmonizedTrack] = []
        self.artist_results: list[HarmonizedArtist] = []
        self.errors: dict[str, Exception] = {}
        self.gate: asyncio.Event | None = None
        self.calls: Counter[str] = Counter()

    async def _answer(self, operation: str, value: Any) -> Any:
        self.calls[operation] += 1
        if self.gate is not None:
            await self.gate.wait()
        if operation in self.errors:
            raise self.errors[operation]
        return value

    async def _lookup_by_gtin(self, gtin: str) -> HarmonizedRelease | None:
        return await self._answer("gtin", self.by_gtin.get(gtin))

    async def _lookup_by_isrc(self, isrc: str) -> HarmonizedTrack | None:
        return await self._answer("isrc", self.by_isrc.get(isrc))

    async def _lookup_release_by_id(self, release_id: str) -> HarmonizedRelease | None:
        return await self._answer("release", self.releases.get(release_id))

    async def _lookup_artist_by_id(self, artist_id: str) -> HarmonizedArtist | None:
        return await self._answer("artist", self.artists.get(artist_id))

    async def _search_releases(self, query: str, limit: int) -> list[HarmonizedRelease]:
        return await self._answer("search", self.release_results[:limit])

    async def _search_tracks(self, query: str, limit: int) -> list[HarmonizedTrack]:
        return await self._answer("search_tracks", self.track_results[:limit])

    async def _search_artists(self, query: str, limit: int) -> list[HarmonizedArtist]:
        return await self._answer("search_artists", self.artist_results[:limit])


def fake_provider(
    name: str,
    priority: int = 0,
    confidence: float = 1.0,
    enabled: bool = True,
    cache_ttl_seconds: int = 86400,
) -> FakeProvider:
    """
    FakeProvider subclass instance with its own identity.

    It handles URLs like ``https://<name>.invalid/release/<id>`` and
    ``https://<name>.invalid/artist/<id>``.
    """
    host = re.escape(f"{name}.invalid")
    provider_class = type(
        f"Fake{name.title()}Provider",
        (FakeProvider,),
        {
            "name": name,
            "display_name": name.title(),
            "confidence": confidence,
            "url_host_pattern": re.compile(host),
            "url_patterns": {
                "release": re.compile(rf"{host}/release/(\w+)"),
                "artist": re.compile(rf"{host}/artist/(\w+)"),
            },
        },
    )
    config = fast_config(
        priority=priority,
        enabled=enabled,
        cache={"ttl_seconds": cache_ttl_seconds},
    )
    return provider_class(config, sleep=no_sleep)


# HTTP fakes

Handler = Callable[[httpx.Request], httpx.Response]


def json_response(data: Any, status_code: int = 200, headers: dict[str, str] | None = None) -> httpx.Response:
    return httpx.Response(
        status_code,
        content=json.dumps(data).encode(),
        headers={"Content-Type": "application/json", **(headers or {})},
    )


class Router:
    """
    ``httpx.MockTransport`` handler dispatching on request path.

    Routes are matched by the longest registered path that the request path
    ends with; unmatched requests answer 404. Every request is recorded.
    """

    def __init__(self) -> None:
        self.routes: dict[str, Handler] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, response: Handler | Any) -> None:
        """Route ``path`` to a handler, or to a JSON body answered with 200."""
        if callable(response):
            self.routes[path] = response
        else:
            self.routes[path] = lambda request: json_response(response)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for path in sorted(self.routes, key=len, reverse=True):
            if request.url.path.endswith(path):
                return self.routes[path](request)
        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]
