"""Tests for the public engine facade."""

from __future__ import annotations

import asyncio

import httpx
from fakes import fake_provider, make_artist, make_release, make_track

from harmony_engine import HarmonizationEngine
from harmony_engine.config import Config
from harmony_engine.registry import ProviderRegistry

GTIN = "00602445790920"


def engine_with(*providers, config: Config | None = None) -> HarmonizationEngine:
    return HarmonizationEngine(config, registry=ProviderRegistry(providers))


def test_default_engine_uses_configured_providers():
    async def run():
        async with HarmonizationEngine() as engine:
            return [p.name for p in engine.get_enabled_providers()], engine.cache.enabled

    names, cache_enabled = asyncio.run(run())
    # Spotify and Tidal need credentials
    assert names == ["musicbrainz"]
    assert cache_enabled


def test_enabled_providers_by_priority():
    async def run():
        async with HarmonizationEngine(
            Config.model_validate(
                {
                    "providers": {
                        "spotify": {"client_id": "id", "client_secret": "secret", "priority": 200},
                        "tidal": {"client_id": "id", "client_secret": "secret", "enabled": False},
                    }
                }
            )
        ) as engine:
            return engine.get_enabled_providers(), engine.get_provider("tidal")

    infos, tidal = asyncio.run(run())
    assert [i.name for i in infos] == ["spotify", "musicbrainz"]
    assert tidal is not None and not tidal.enabled


def test_lookups_delegate_to_coordinator():
    async def run():
        provider = fake_provider("shop")
        provider.by_gtin[GTIN] = make_release("shop", "r1", gtin=GTIN)
        provider.releases["r1"] = make_release("shop", "r1", gtin=GTIN)
        provider.by_isrc["GBAYE9700378"] = make_track("shop", "t1", isrc="GBAYE9700378")
        provider.artists["a1"] = make_artist("shop", "a1", "Radiohead")
        async with engine_with(provider) as engine:
            return (
                await engine.lookup_by_gtin("602445790920"),
                await engine.lookup_by_url("https://shop.invalid/release/r1"),
                await engine.lookup_by_isrc("GBAYE9700378"),
                await engine.lookup_artist_by_url("https://shop.invalid/artist/a1"),
            )

    by_gtin, by_url, track, artist = asyncio.run(run())
    assert by_gtin.external_ids == by_url.external_ids == {"shop": "r1"}
    assert track.isrc == "GBAYE9700378"
    assert artist.name == "Radiohead"


def test_search_uses_configured_default_limit():
    config = Config.model_validate({"lookup": {"default_search_limit": 2}})

    async def run():
        provider = fake_provider("shop")
        provider.release_results = [make_release("shop", f"r{i}") for i in range(5)]
        provider.track_results = [make_track("shop", f"t{i}") for i in range(5)]
        provider.artist_results = [make_artist("shop", f"a{i}") for i in range(5)]
        async with engine_with(provider, config=config) as engine:
            return (
                await engine.search("album"),
                await engine.search("album", limit=4),
                await engine.search_tracks("track"),
                await engine.search_artists("artist"),
            )

    default, explicit, tracks, artists = asyncio.run(run())
    assert len(default) == 2
    assert len(explicit) == 4
    assert len(tracks) == len(artists) == 2


def test_cache_disabled_by_config():
    config = Config.model_validate({"cache": {"backend": "none"}})

    async def run():
        provider = fake_provider("shop")
        provider.by_gtin[GTIN] = make_release("shop", "r1", gtin=GTIN)
        async with engine_with(provider, config=config) as engine:
            await engine.lookup_by_gtin(GTIN)
            await engine.lookup_by_gtin(GTIN)
            return provider, engine.cache.enabled

    provider, cache_enabled = asyncio.run(run())
    assert not cache_enabled
    assert provider.calls["gtin"] == 2


def test_reload_swaps_registry_and_keeps_cache():
    async def run():
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        engine = HarmonizationEngine(Config(), client=client)
        cache = engine.cache
        previous = engine.reload(
            Config.model_validate({"providers": {"spotify": {"client_id": "id", "client_secret": "secret"}}})
        )
        names = [p.name for p in engine.registry.get_enabled()]
        spotify = engine.get_provider("spotify")
        await previous.aclose()
        await engine.aclose()
        await client.aclose()
        return previous, names, spotify, engine, cache

    previous, names, spotify, engine, cache = asyncio.run(run())
    assert "spotify" not in previous
    assert names == ["musicbrainz", "spotify"]
    assert spotify is not None and spotify.config.client_id == "id"
    assert engine.cache is cache
    assert engine.config.providers.spotify.has_credentials()


def test_aclose_closes_owned_clients():
    async def run():
        provider = fake_provider("shop")
        async with engine_with(provider):
            pass
        return provider._client.is_closed

    assert asyncio.run(run())
