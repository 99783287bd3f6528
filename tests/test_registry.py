"""Tests for the provider registry."""

from __future__ import annotations

import asyncio

import httpx
from fakes import fake_provider

from harmony_engine.config import Config
from harmony_engine.providers import MusicBrainzProvider, SpotifyProvider, TidalProvider
from harmony_engine.registry import ProviderRegistry


def test_from_config_skips_providers_without_credentials(caplog):
    config = Config.model_validate({"providers": {"tidal": {"client_id": "id", "client_secret": "secret"}}})

    registry = ProviderRegistry.from_config(config)

    assert "musicbrainz" in registry
    assert "tidal" in registry
    assert "spotify" not in registry
    assert isinstance(registry.get("tidal"), TidalProvider)
    assert "Skipping provider spotify" in caplog.text


def test_from_config_registers_disabled_providers_quietly(caplog):
    config = Config.model_validate(
        {
            "providers": {
                "spotify": {"enabled": False},
                "tidal": {"enabled": False, "client_id": "id", "client_secret": "secret"},
            }
        }
    )

    registry = ProviderRegistry.from_config(config)

    # Disabled without credentials: skipped without a warning
    assert "spotify" not in registry
    assert "Skipping provider" not in caplog.text
    # Disabled with credentials: listed but never queried
    assert "tidal" in registry
    assert [p.name for p in registry.get_enabled()] == ["musicbrainz"]


def test_from_config_shares_client():
    config = Config.model_validate(
        {"providers": {"spotify": {"client_id": "id", "client_secret": "secret"}}}
    )

    async def run():
        client = httpx.AsyncClient()
        registry = ProviderRegistry.from_config(config, client=client)
        clients = {id(p._client) for p in registry.get_all()}
        await registry.aclose()
        # Shared client is owned by the caller, not the providers
        assert not client.is_closed
        await client.aclose()
        return clients, id(client)

    clients, client_id = asyncio.run(run())
    assert clients == {client_id}


def test_enabled_providers_ordered_by_priority():
    registry = ProviderRegistry(
        [
            fake_provider("low", priority=10),
            fake_provider("high", priority=90),
            fake_provider("off", priority=100, enabled=False),
            fake_provider("tie", priority=10),
        ]
    )

    assert [p.name for p in registry.get_enabled()] == ["high", "low", "tie"]
    assert [p.name for p in registry.get_all()] == ["low", "high", "off", "tie"]
    assert [i.name for i in registry.info()] == ["off", "high", "low", "tie"]
    assert len(registry) == 4


def test_register_replaces_same_name():
    registry = ProviderRegistry([fake_provider("a", priority=1)])
    replacement = fake_provider("a", priority=2)

    registry.register(replacement)

    assert len(registry) == 1
    assert registry.get("a") is replacement


def test_get_unknown_provider():
    assert ProviderRegistry().get("nope") is None


def test_defaults_follow_configured_names():
    registry = ProviderRegistry(
        [fake_provider("a", priority=1), fake_provider("b", priority=2), fake_provider("c", priority=3)],
        default_providers=["a", "b", "missing"],
    )

    assert [p.name for p in registry.get_defaults()] == ["b", "a"]


def test_defaults_skip_disabled():
    registry = ProviderRegistry(
        [fake_provider("a", enabled=False), fake_provider("b")],
        default_providers=["a", "b"],
    )

    assert [p.name for p in registry.get_defaults()] == ["b"]


def test_find_by_url():
    registry = ProviderRegistry(
        [
            MusicBrainzProvider(),
            SpotifyProvider(),
            fake_provider("shop", enabled=False),
        ]
    )

    provider = registry.find_by_url("https://open.spotify.com/album/6dVIqQ8qmQ5GBnJ9shOYGE")
    assert provider is not None and provider.name == "spotify"
    assert registry.find_by_url("https://www.discogs.com/release/1") is None
    # Disabled providers never claim URLs
    assert registry.find_by_url("https://shop.invalid/release/1") is None
