"""
Tidal provider (Tidal v2 API, JSON:API documents).

Albums by barcode or ID, tracks by ISRC, artists and search, authenticated
with client credentials. User-authenticated calls take the user's own OAuth
token instead of the app token.
"""

from __future__ import annotations

import re
from typing import Any, ClassVar
from urllib.parse import quote

from harmony_engine.config import TidalConfig
from harmony_engine.errors import ProviderError
from harmony_engine.models import (
    Artwork,
    HarmonizedArtist,
    HarmonizedArtistCredit,
    HarmonizedRelease,
    HarmonizedTrack,
    HarmonizedUserProfile,
    PartialDate,
    ReleaseMedium,
    ReleaseType,
)
from harmony_engine.providers.base import ClientCredentialsProvider, UrlType
from harmony_engine.validation import canonical_gtin, normalize_string

JSON_API = "application/vnd.api+json"

ALBUM_TYPES = {
    "ALBUM": ReleaseType.ALBUM,
    "SINGLE": ReleaseType.SINGLE,
    "EP": ReleaseType.EP,
    "COMPILATION": ReleaseType.COMPILATION,
}

Resource = dict[str, Any]


def _tidal_pattern(kind: str) -> re.Pattern[str]:
    return re.compile(rf"(?:{kind}[/:]|/{kind}/)(\d+)")


def _related_ids(resource: Resource, relationship: str) -> list[str]:
    data = ((resource.get("relationships") or {}).get(relationship) or {}).get("data")
    if isinstance(data, list):
        return [ref["id"] for ref in data]
    if isinstance(data, dict):
        return [data["id"]]
    return []


class TidalProvider(ClientCredentialsProvider):
    """
    Tidal metadata provider.

    Every request carries the configured ``countryCode``; content availability
    differs per country.
    """

    name = "tidal"
    display_name = "Tidal"
    base_url = "https://openapi.tidal.com/v2"
    token_url = "https://auth.tidal.com/v1/oauth2/token"
    confidence = 0.85
    supports_user_auth = True
    config_class = TidalConfig

    url_host_pattern = re.compile(r"tidal\.com|^tidal:")
    url_patterns: ClassVar[dict[UrlType, re.Pattern[str]]] = {
        "release": _tidal_pattern("album"),
        "track": _tidal_pattern("track"),
        "artist": _tidal_pattern("artist"),
    }

    config: TidalConfig

    def default_headers(self) -> dict[str, str]:
        return {"Accept": JSON_API}

    async def _request(
        self,
        endpoint: str,
        params: dict[str, str] | None = None,
        user_token: str | None = None,
    ) -> Any | None:
        """
        GET a JSON:API document.

        With ``user_token`` the request is made on behalf of that user instead
        of with the app's client credentials token.
        """
        params = {"countryCode": self.config.country_code, **(params or {})}
        if user_token is None:
            return await self._get_json(endpoint, params)

        response = await self._send(
            "GET",
            f"{self.base_url}/{endpoint.lstrip('/')}",
            params=params,
            headers={"Accept": JSON_API, "Authorization": f"Bearer {user_token}"},
        )
        return self._decode(response)

    async def _lookup_by_gtin(self, gtin: str) -> HarmonizedRelease | None:
        data = await self._request("albums/byBarcodeId", {"barcodeId": gtin})
        if not (data or {}).get("data"):
            # Tidal stores UPCs without the GTIN-14 padding
            stripped = gtin.lstrip("0")
            if not stripped or stripped == gtin:
                return None
            data = await self._request("albums/byBarcodeId", {"barcodeId": stripped})
            if not (data or {}).get("data"):
                return None
        return await self._lookup_release_by_id(data["data"][0]["id"])

    async def _lookup_release_by_id(self, release_id: str) -> HarmonizedRelease | None:
        album = await self._request(f"albums/{release_id}", {"include": "artists"})
        if not (album or {}).get("data"):
            return None
        items = await self._request(
            f"albums/{release_id}/items", {"include": "artists", "limit": "100"}
        )
        items = items or {}
        return self.transform_album(
            album["data"],
            album.get("included") or [],
            tracks=[r for r in items.get("data") or [] if r.get("type") == "tracks"],
            track_included=items.get("included") or [],
        )

    async def _lookup_by_isrc(self, isrc: str) -> HarmonizedTrack | None:
        data = await self._request("tracks/byIsrc", {"isrc": isrc, "include": "artists", "limit": "1"})
        if not (data or {}).get("data"):
            return None
        return self.transform_track(data["data"][0], data.get("included") or [])

    async def _lookup_artist_by_id(self, artist_id: str) -> HarmonizedArtist | None:
        data = await self._request(f"artists/{artist_id}")
        if not (data or {}).get("data"):
            return None
        return self.transform_artist(data["data"])

    async def _search_included(self, query: str, kind: str, limit: int) -> tuple[list[Resource], list[Resource]]:
        """Run a search and return (matching resources, all included resources)."""
        data = await self._request(
            f"searchResults/{quote(query, safe='')}", {"include": kind, "limit": str(limit)}
        )
        included = (data or {}).get("included") or []
        return [r for r in included if r.get("type") == kind][:limit], included

    async def _search_releases(self, query: str, limit: int) -> list[HarmonizedRelease]:
        albums, included = await self._search_included(query, "albums", limit)
        return [self.transform_album(album, included) for album in albums]

    async def _search_tracks(self, query: str, limit: int) -> list[HarmonizedTrack]:
        tracks, included = await self._search_included(query, "tracks", limit)
        return [self.transform_track(track, included) for track in tracks]

    async def _search_artists(self, query: str, limit: int) -> list[HarmonizedArtist]:
        artists, _ = await self._search_included(query, "artists", limit)
        return [self.transform_artist(artist) for artist in artists]

    async def _get_current_user(self, access_token: str) -> HarmonizedUserProfile:
        data = await self._request("users/me", user_token=access_token)
        if not (data or {}).get("data"):
            raise ProviderError("Failed to fetch Tidal user profile", self.name)
        return self.transform_user(data["data"])

    # Transforms

    def _artist_credits(
        self, resource: Resource, included: list[Resource]
    ) -> tuple[HarmonizedArtistCredit, ...]:
        artists = {r["id"]: r for r in included if r.get("type") == "artists"}
        return tuple(
            HarmonizedArtistCredit(
                name=artists[artist_id]["attributes"]["name"],
                external_ids={self.name: artist_id},
            )
            for artist_id in _related_ids(resource, "artists")
            if artist_id in artists
        )

    def transform_album(
        self,
        raw: Resource,
        included: list[Resource],
        tracks: list[Resource] | None = None,
        track_included: list[Resource] | None = None,
    ) -> HarmonizedRelease:
        album_id = raw["id"]
        attrs = raw.get("attributes") or {}

        volumes: dict[int, list[HarmonizedTrack]] = {}
        for item in tracks or []:
            track = self.transform_track(item, track_included or [])
            volumes.setdefault(track.disc_number or 1, []).append(track)
        media = tuple(
            ReleaseMedium(
                position=volume,
                tracks=tuple(sorted(volumes[volume], key=lambda t: t.position)),
            )
            for volume in sorted(volumes)
        )
        if not media:
            media = tuple(
                ReleaseMedium(position=i) for i in range(1, (attrs.get("numberOfVolumes") or 1) + 1)
            )

        artwork = tuple(
            Artwork(
                url=image["url"],
                width=image.get("width"),
                height=image.get("height"),
                provider=self.name,
            )
            for image in attrs.get("imageCover") or []
            if image.get("url")
        )
        album_type = attrs.get("type")

        return HarmonizedRelease(
            gtin=canonical_gtin(attrs.get("barcodeId")),
            title=attrs["title"],
            title_normalized=normalize_string(attrs["title"]),
            artists=self._artist_credits(raw, included),
            release_date=PartialDate.parse(attrs.get("releaseDate")),
            release_type=(
                ALBUM_TYPES.get(album_type.upper(), ReleaseType.OTHER)
                if album_type
                else ReleaseType.ALBUM
            ),
            media=media,
            artwork=artwork or None,
            tags=tuple((attrs.get("mediaMetadata") or {}).get("tags") or ()) or None,
            external_ids={self.name: album_id},
            sources=(self.create_source(album_id, f"https://tidal.com/browse/album/{album_id}"),),
            confidence=self.confidence,
        )

    def transform_track(self, raw: Resource, included: list[Resource]) -> HarmonizedTrack:
        track_id = raw["id"]
        attrs = raw.get("attributes") or {}
        duration = attrs.get("duration")
        isrc = attrs.get("isrc")
        return HarmonizedTrack(
            isrc=isrc.upper() if isrc else None,
            title=attrs.get("title") or "",
            title_normalized=normalize_string(attrs.get("title") or ""),
            disambiguation=attrs.get("version") or None,
            position=attrs.get("trackNumber") or 1,
            disc_number=attrs.get("volumeNumber") or None,
            # Tidal reports seconds
            duration_ms=int(duration * 1000) if isinstance(duration, int | float) and duration > 0 else None,
            artists=self._artist_credits(raw, included),
            explicit=attrs.get("explicit"),
            external_ids={self.name: track_id},
            sources=(self.create_source(track_id, f"https://tidal.com/browse/track/{track_id}"),),
            confidence=self.confidence,
        )

    def transform_artist(self, raw: Resource) -> HarmonizedArtist:
        artist_id = raw["id"]
        name = (raw.get("attributes") or {})["name"]
        return HarmonizedArtist(
            name=name,
            name_normalized=normalize_string(name),
            external_ids={self.name: artist_id},
            sources=(self.create_source(artist_id, f"https://tidal.com/browse/artist/{artist_id}"),),
            confidence=self.confidence,
        )

    def transform_user(self, raw: Resource) -> HarmonizedUserProfile:
        attrs = raw.get("attributes") or {}
        full_name = " ".join(p for p in (attrs.get("firstName"), attrs.get("lastName")) if p)
        return HarmonizedUserProfile(
            id=raw["id"],
            provider=self.name,
            username=attrs.get("username"),
            display_name=full_name or attrs.get("username"),
            email=attrs.get("email"),
            country=attrs.get("country"),
            provider_data=attrs,
        )
