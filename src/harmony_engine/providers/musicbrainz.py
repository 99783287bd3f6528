"""
MusicBrainz provider.

Release, recording and artist lookups against the MusicBrainz web service
(JSON format). MusicBrainz is the reference catalog, so its entities carry
full confidence.
"""

from __future__ import annotations

import re
from typing import Any, ClassVar

from harmony_engine.config import MusicBrainzConfig
from harmony_engine.models import (
    ArtistType,
    HarmonizedArtist,
    HarmonizedArtistCredit,
    HarmonizedRelease,
    HarmonizedTrack,
    PartialDate,
    ReleaseLabel,
    ReleaseMedium,
    ReleaseStatus,
    ReleaseType,
)
from harmony_engine.providers.base import BaseProvider, UrlType
from harmony_engine.validation import canonical_gtin, gtin_variants, normalize_string

RELEASE_INCLUDES = "artist-credits+labels+recordings+release-groups+genres"

_MBID = r"([a-f0-9-]{36})"

RELEASE_TYPES = {
    "Album": ReleaseType.ALBUM,
    "Single": ReleaseType.SINGLE,
    "EP": ReleaseType.EP,
    "Compilation": ReleaseType.COMPILATION,
    "Soundtrack": ReleaseType.SOUNDTRACK,
    "Live": ReleaseType.LIVE,
    "Remix": ReleaseType.REMIX,
}


def _positive(value: Any) -> int | None:
    return value if isinstance(value, int) and value > 0 else None


class MusicBrainzProvider(BaseProvider):
    """MusicBrainz web service v2 provider."""

    name = "musicbrainz"
    display_name = "MusicBrainz"
    base_url = "https://musicbrainz.org/ws/2"
    confidence = 1.0
    config_class = MusicBrainzConfig

    url_host_pattern = re.compile(r"musicbrainz\.org")
    url_patterns: ClassVar[dict[UrlType, re.Pattern[str]]] = {
        "release": re.compile(rf"musicbrainz\.org/release/{_MBID}"),
        "artist": re.compile(rf"musicbrainz\.org/artist/{_MBID}"),
        "track": re.compile(rf"musicbrainz\.org/recording/{_MBID}"),
    }

    config: MusicBrainzConfig

    @property
    def user_agent(self) -> str:
        agent = f"{self.config.app_name}/{self.config.app_version}"
        if self.config.contact:
            agent += f" ( {self.config.contact} )"
        return agent

    def default_headers(self) -> dict[str, str]:
        return {"Accept": "application/json", "User-Agent": self.user_agent}

    async def _request(self, endpoint: str, params: dict[str, str] | None = None) -> Any | None:
        """Rate-limited GET with ``fmt=json`` forced."""
        return await self._get_json(endpoint, {**(params or {}), "fmt": "json"})

    async def _lookup_by_gtin(self, gtin: str) -> HarmonizedRelease | None:
        query = " OR ".join(f"barcode:{code}" for code in gtin_variants(gtin))
        data = await self._request("release", {"query": query, "limit": "1"})
        releases = (data or {}).get("releases") or []
        if not releases:
            return None
        return await self._lookup_release_by_id(releases[0]["id"])

    async def _lookup_release_by_id(self, release_id: str) -> HarmonizedRelease | None:
        data = await self._request(f"release/{release_id}", {"inc": RELEASE_INCLUDES})
        if not data:
            return None
        return self.transform_release(data)

    async def _lookup_by_isrc(self, isrc: str) -> HarmonizedTrack | None:
        data = await self._request(f"isrc/{isrc}", {"inc": "artist-credits"})
        recordings = (data or {}).get("recordings") or []
        if not recordings:
            return None
        track = self.transform_recording(recordings[0], position=1)
        # The isrc endpoint does not echo the code on each recording
        return track if track.isrc else track.model_copy(update={"isrc": isrc})

    async def _lookup_artist_by_id(self, artist_id: str) -> HarmonizedArtist | None:
        data = await self._request(f"artist/{artist_id}", {"inc": "aliases+genres"})
        if not data:
            return None
        return self.transform_artist(data)

    async def _search_releases(self, query: str, limit: int) -> list[HarmonizedRelease]:
        data = await self._request("release", {"query": query, "limit": str(limit)})
        return [self.transform_release(r) for r in (data or {}).get("releases") or []]

    async def _search_tracks(self, query: str, limit: int) -> list[HarmonizedTrack]:
        data = await self._request("recording", {"query": query, "limit": str(limit)})
        return [
            self.transform_recording(r, position=i)
            for i, r in enumerate((data or {}).get("recordings") or [], start=1)
        ]

    async def _search_artists(self, query: str, limit: int) -> list[HarmonizedArtist]:
        data = await self._request("artist", {"query": query, "limit": str(limit)})
        return [self.transform_artist(a) for a in (data or {}).get("artists") or []]

    # Transforms

    def transform_release(self, raw: dict[str, Any]) -> HarmonizedRelease:
        mbid = raw["id"]
        media = tuple(
            ReleaseMedium(
                format=medium.get("format"),
                position=_positive(medium.get("position")) or i,
                tracks=tuple(
                    self.transform_recording(
                        track.get("recording") or track,
                        position=_positive(track.get("position")) or ti,
                        disc_number=_positive(medium.get("position")) or i,
                        fallback_length=track.get("length"),
                    )
                    for ti, track in enumerate(medium.get("tracks") or [], start=1)
                ),
            )
            for i, medium in enumerate(raw.get("media") or [], start=1)
        )
        labels = tuple(
            ReleaseLabel(name=info["label"]["name"], catalog_number=info.get("catalog-number"))
            for info in raw.get("label-info") or []
            if (info.get("label") or {}).get("name")
        )
        genres = tuple(g["name"] for g in raw.get("genres") or [] if g.get("name"))

        return HarmonizedRelease(
            gtin=canonical_gtin(raw.get("barcode")),
            title=raw["title"],
            title_normalized=normalize_string(raw["title"]),
            disambiguation=raw.get("disambiguation") or None,
            artists=self.transform_artist_credits(raw.get("artist-credit")),
            release_date=PartialDate.parse(raw.get("date")),
            release_type=RELEASE_TYPES.get(
                (raw.get("release-group") or {}).get("primary-type") or "", ReleaseType.OTHER
            ),
            status=self._map_status(raw.get("status")),
            labels=labels or None,
            release_country=raw.get("country") or None,
            media=media,
            genres=genres or None,
            external_ids={self.name: mbid},
            sources=(self.create_source(mbid, f"https://musicbrainz.org/release/{mbid}"),),
            confidence=self.confidence,
        )

    def transform_recording(
        self,
        raw: dict[str, Any],
        position: int,
        disc_number: int | None = None,
        fallback_length: Any = None,
    ) -> HarmonizedTrack:
        mbid = raw["id"]
        isrcs = raw.get("isrcs") or []
        return HarmonizedTrack(
            isrc=isrcs[0] if isrcs else None,
            title=raw.get("title") or "",
            title_normalized=normalize_string(raw.get("title") or ""),
            disambiguation=raw.get("disambiguation") or None,
            position=position,
            disc_number=disc_number,
            duration_ms=_positive(raw.get("length")) or _positive(fallback_length),
            artists=self.transform_artist_credits(raw.get("artist-credit")),
            explicit=None,
            external_ids={self.name: mbid},
            sources=(self.create_source(mbid, f"https://musicbrainz.org/recording/{mbid}"),),
            confidence=self.confidence,
        )

    def transform_artist(self, raw: dict[str, Any]) -> HarmonizedArtist:
        mbid = raw["id"]
        life_span = raw.get("life-span") or {}
        aliases = tuple(a["name"] for a in raw.get("aliases") or [] if a.get("name"))
        genres = tuple(g["name"] for g in raw.get("genres") or [] if g.get("name"))
        return HarmonizedArtist(
            name=raw["name"],
            name_normalized=normalize_string(raw["name"]),
            sort_name=raw.get("sort-name"),
            disambiguation=raw.get("disambiguation") or None,
            type=self._map_artist_type(raw.get("type")),
            country=raw.get("country"),
            begin_date=PartialDate.parse(life_span.get("begin")),
            end_date=PartialDate.parse(life_span.get("end")),
            aliases=aliases or None,
            genres=genres or None,
            external_ids={self.name: mbid},
            sources=(self.create_source(mbid, f"https://musicbrainz.org/artist/{mbid}"),),
            confidence=self.confidence,
        )

    def transform_artist_credits(
        self, credits: list[dict[str, Any]] | None
    ) -> tuple[HarmonizedArtistCredit, ...]:
        result = []
        for credit in credits or []:
            artist = credit.get("artist") or {}
            name = artist.get("name") or credit.get("name") or ""
            credited = credit.get("name")
            result.append(
                HarmonizedArtistCredit(
                    name=name,
                    credited_name=credited if credited and credited != name else None,
                    join_phrase=credit.get("joinphrase"),
                    external_ids={self.name: artist["id"]} if artist.get("id") else {},
                )
            )
        return tuple(result)

    @staticmethod
    def _map_status(status: str | None) -> ReleaseStatus | None:
        try:
            return ReleaseStatus(status.lower()) if status else None
        except ValueError:
            return None

    @staticmethod
    def _map_artist_type(artist_type: str | None) -> ArtistType | None:
        if not artist_type:
            return None
        try:
            return ArtistType(artist_type.lower())
        except ValueError:
            return ArtistType.OTHER
