"""
Spotify Web API provider.

Album, track and artist metadata by ID, barcode (``upc:``) and ISRC
(``isrc:``) search, using the client credentials flow.
"""

from __future__ import annotations

import re
from typing import Any, ClassVar

from harmony_engine.config import SpotifyConfig
from harmony_engine.models import (
    Artwork,
    HarmonizedArtist,
    HarmonizedArtistCredit,
    HarmonizedRelease,
    HarmonizedTrack,
    PartialDate,
    ReleaseLabel,
    ReleaseMedium,
    ReleaseType,
)
from harmony_engine.providers.base import ClientCredentialsProvider, UrlType
from harmony_engine.validation import canonical_gtin, gtin_variants, normalize_string

# Spotify caps search pages at 50 items
MAX_SEARCH_LIMIT = 50

ALBUM_TYPES = {
    "album": ReleaseType.ALBUM,
    "single": ReleaseType.SINGLE,
    "compilation": ReleaseType.COMPILATION,
}


def _spotify_pattern(kind: str) -> re.Pattern[str]:
    return re.compile(rf"(?:open\.spotify\.com/(?:intl-[\w-]+/)?{kind}/|spotify:{kind}:)([A-Za-z0-9]+)")


class SpotifyProvider(ClientCredentialsProvider):
    """
    Spotify Web API provider.

    Uses client credentials flow for authentication. Results are restricted
    to ``market`` when one is configured.
    """

    name = "spotify"
    display_name = "Spotify"
    base_url = "https://api.spotify.com/v1"
    token_url = "https://accounts.spotify.com/api/token"
    confidence = 0.9
    config_class = SpotifyConfig

    url_host_pattern = re.compile(r"open\.spotify\.com|^spotify:")
    url_patterns: ClassVar[dict[UrlType, re.Pattern[str]]] = {
        "release": _spotify_pattern("album"),
        "track": _spotify_pattern("track"),
        "artist": _spotify_pattern("artist"),
    }

    config: SpotifyConfig

    async def _request(self, endpoint: str, params: dict[str, str] | None = None) -> Any | None:
        """Make authenticated request to Spotify API."""
        params = dict(params or {})
        if self.config.market:
            params.setdefault("market", self.config.market)
        return await self._get_json(endpoint, params)

    async def _search(self, query: str, kind: str, limit: int) -> list[dict[str, Any]]:
        data = await self._request(
            "search", {"q": query, "type": kind, "limit": str(min(limit, MAX_SEARCH_LIMIT))}
        )
        return ((data or {}).get(f"{kind}s") or {}).get("items") or []

    async def _lookup_by_gtin(self, gtin: str) -> HarmonizedRelease | None:
        # Spotify indexes the printed barcode; try the shortest form first
        for code in reversed(gtin_variants(gtin)):
            items = await self._search(f"upc:{code}", "album", 1)
            if items:
                return await self._lookup_release_by_id(items[0]["id"])
        return None

    async def _lookup_release_by_id(self, release_id: str) -> HarmonizedRelease | None:
        data = await self._request(f"albums/{release_id}")
        if not data:
            return None

        tracks = list((data.get("tracks") or {}).get("items") or [])
        next_url = (data.get("tracks") or {}).get("next")
        while next_url:
            page = await self._get_json(next_url)
            if not page:
                break
            tracks.extend(page.get("items") or [])
            next_url = page.get("next")

        return self.transform_album(data, tracks)

    async def _lookup_by_isrc(self, isrc: str) -> HarmonizedTrack | None:
        items = await self._search(f"isrc:{isrc}", "track", 1)
        if not items:
            return None
        return self.transform_track(items[0])

    async def _lookup_artist_by_id(self, artist_id: str) -> HarmonizedArtist | None:
        data = await self._request(f"artists/{artist_id}")
        if not data:
            return None
        return self.transform_artist(data)

    async def _search_releases(self, query: str, limit: int) -> list[HarmonizedRelease]:
        # Search results carry simplified albums: no tracks, no barcode
        return [self.transform_album(item, []) for item in await self._search(query, "album", limit)]

    async def _search_tracks(self, query: str, limit: int) -> list[HarmonizedTrack]:
        return [self.transform_track(item) for item in await self._search(query, "track", limit)]

    async def _search_artists(self, query: str, limit: int) -> list[HarmonizedArtist]:
        return [self.transform_artist(item) for item in await self._search(query, "artist", limit)]

    # Transforms

    def transform_album(self, raw: dict[str, Any], tracks: list[dict[str, Any]]) -> HarmonizedRelease:
        album_id = raw["id"]
        external = raw.get("external_ids") or {}

        discs: dict[int, list[HarmonizedTrack]] = {}
        for item in tracks:
            track = self.transform_track(item)
            discs.setdefault(track.disc_number or 1, []).append(track)
        media = tuple(
            ReleaseMedium(
                format="Digital Media",
                position=disc,
                tracks=tuple(sorted(discs[disc], key=lambda t: t.position)),
            )
            for disc in sorted(discs)
        )

        artwork = tuple(
            Artwork(
                url=image["url"],
                width=image.get("width"),
                height=image.get("height"),
                provider=self.name,
            )
            for image in raw.get("images") or []
            if image.get("url")
        )
        label = raw.get("label")
        markets = tuple(raw.get("available_markets") or ())

        return HarmonizedRelease(
            gtin=canonical_gtin(external.get("upc") or external.get("ean")),
            title=raw["name"],
            title_normalized=normalize_string(raw["name"]),
            artists=self.transform_artist_credits(raw.get("artists")),
            release_date=PartialDate.parse(raw.get("release_date")),
            release_type=ALBUM_TYPES.get(raw.get("album_type") or "", ReleaseType.OTHER),
            labels=(ReleaseLabel(name=label),) if label else None,
            available_countries=markets or None,
            media=media,
            artwork=artwork or None,
            genres=tuple(raw.get("genres") or ()) or None,
            external_ids={self.name: album_id},
            sources=(self.create_source(album_id, f"https://open.spotify.com/album/{album_id}"),),
            confidence=self.confidence,
        )

    def transform_track(self, raw: dict[str, Any]) -> HarmonizedTrack:
        track_id = raw["id"]
        isrc = (raw.get("external_ids") or {}).get("isrc")
        return HarmonizedTrack(
            isrc=isrc.upper() if isrc else None,
            title=raw.get("name") or "",
            title_normalized=normalize_string(raw.get("name") or ""),
            position=raw.get("track_number") or 1,
            disc_number=raw.get("disc_number") or None,
            duration_ms=raw.get("duration_ms") or None,
            artists=self.transform_artist_credits(raw.get("artists")),
            explicit=raw.get("explicit"),
            external_ids={self.name: track_id},
            sources=(self.create_source(track_id, f"https://open.spotify.com/track/{track_id}"),),
            confidence=self.confidence,
        )

    def transform_artist(self, raw: dict[str, Any]) -> HarmonizedArtist:
        artist_id = raw["id"]
        return HarmonizedArtist(
            name=raw["name"],
            name_normalized=normalize_string(raw["name"]),
            genres=tuple(raw.get("genres") or ()) or None,
            external_ids={self.name: artist_id},
            sources=(self.create_source(artist_id, f"https://open.spotify.com/artist/{artist_id}"),),
            confidence=self.confidence,
        )

    def transform_artist_credits(
        self, artists: list[dict[str, Any]] | None
    ) -> tuple[HarmonizedArtistCredit, ...]:
        return tuple(
            HarmonizedArtistCredit(
                name=artist.get("name") or "",
                external_ids={self.name: artist["id"]} if artist.get("id") else {},
            )
            for artist in artists or []
        )
