"""
Metadata providers.

Each provider adapts one external catalog to the harmonized entity models.
"""

from __future__ import annotations

__all__ = [
    "PROVIDER_CLASSES",
    "BaseProvider",
    "ClientCredentialsProvider",
    "MusicBrainzProvider",
    "ParsedUrl",
    "SpotifyProvider",
    "TidalProvider",
]

from harmony_engine.providers.base import BaseProvider, ClientCredentialsProvider, ParsedUrl
from harmony_engine.providers.musicbrainz import MusicBrainzProvider
from harmony_engine.providers.spotify import SpotifyProvider
from harmony_engine.providers.tidal import TidalProvider

# Keyed by the section name under [providers] in the config file
PROVIDER_CLASSES: dict[str, type[BaseProvider]] = {
    MusicBrainzProvider.name: MusicBrainzProvider,
    SpotifyProvider.name: SpotifyProvider,
    TidalProvider.name: TidalProvider,
}
