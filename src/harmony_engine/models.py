"""
Harmonized entity models.

Every entity is an immutable (frozen) pydantic model. Providers build
single-source instances, mergers combine them into new instances; nothing
mutates an entity after construction. Sequence fields are tuples.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Timezone-aware current time used for ``fetched_at``/``merged_at``."""
    return datetime.now(UTC)


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class ReleaseType(StrEnum):
    ALBUM = "album"
    SINGLE = "single"
    EP = "ep"
    COMPILATION = "compilation"
    SOUNDTRACK = "soundtrack"
    LIVE = "live"
    REMIX = "remix"
    OTHER = "other"


class ReleaseStatus(StrEnum):
    OFFICIAL = "official"
    PROMOTIONAL = "promotional"
    BOOTLEG = "bootleg"
    PSEUDO_RELEASE = "pseudo-release"


class ArtworkType(StrEnum):
    FRONT = "front"
    BACK = "back"
    MEDIUM = "medium"
    BOOKLET = "booklet"
    OTHER = "other"


class ArtistType(StrEnum):
    PERSON = "person"
    GROUP = "group"
    ORCHESTRA = "orchestra"
    CHOIR = "choir"
    CHARACTER = "character"
    OTHER = "other"


class ProviderSource(FrozenModel):
    """Provenance of one provider response."""

    provider: str
    id: str
    url: str | None = None
    fetched_at: datetime = Field(default_factory=utc_now)
    snapshot_id: str | None = None


class PartialDate(FrozenModel):
    """Date where year, month and day are independently optional."""

    year: int | None = None
    month: int | None = Field(default=None, ge=1, le=12)
    day: int | None = Field(default=None, ge=1, le=31)

    @classmethod
    def parse(cls, value: str | None) -> PartialDate | None:
        """
        Parse ``YYYY``, ``YYYY-MM`` or ``YYYY-MM-DD``.

        Unknown or zero parts are left unset. Returns None when nothing usable
        is present.
        """
        if not value:
            return None
        parts = [int(p) if p.isdigit() else None for p in re.split(r"[-/]", value.strip())[:3]]
        parts += [None] * (3 - len(parts))
        year, month, day = parts
        month = month if month and 1 <= month <= 12 else None
        day = day if day and month and 1 <= day <= 31 else None
        if year is None and month is None:
            return None
        return cls(year=year, month=month, day=day)

    def __str__(self) -> str:
        if self.year is None:
            return ""
        rendered = f"{self.year:04d}"
        if self.month:
            rendered += f"-{self.month:02d}"
            if self.day:
                rendered += f"-{self.day:02d}"
        return rendered


class HarmonizedArtistCredit(FrozenModel):
    """Display-level artist attribution, rendered in order with join phrases."""

    name: str
    credited_name: str | None = None
    join_phrase: str | None = None
    roles: tuple[str, ...] | None = None
    external_ids: dict[str, str] = Field(default_factory=dict)


class TrackCredit(FrozenModel):
    name: str
    role: str


class HarmonizedTrack(FrozenModel):
    isrc: str | None = None
    title: str
    title_normalized: str | None = None
    disambiguation: str | None = None
    position: int = Field(gt=0)
    disc_number: int | None = Field(default=None, gt=0)
    duration_ms: int | None = Field(default=None, gt=0)
    artists: tuple[HarmonizedArtistCredit, ...] = ()
    credits: tuple[TrackCredit, ...] | None = None
    explicit: bool | None = None
    external_ids: dict[str, str] = Field(default_factory=dict)
    sources: tuple[ProviderSource, ...] = Field(min_length=1)
    merged_at: datetime = Field(default_factory=utc_now)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class ReleaseLabel(FrozenModel):
    name: str
    catalog_number: str | None = None


class ReleaseMedium(FrozenModel):
    format: str | None = None
    position: int = Field(gt=0)
    tracks: tuple[HarmonizedTrack, ...] = ()


class Artwork(FrozenModel):
    url: str
    type: ArtworkType = ArtworkType.FRONT
    width: int | None = None
    height: int | None = None
    provider: str


class LanguageInfo(FrozenModel):
    language: str | None = None
    script: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class HarmonizedRelease(FrozenModel):
    gtin: str | None = None
    title: str
    title_normalized: str | None = None
    disambiguation: str | None = None
    artists: tuple[HarmonizedArtistCredit, ...] = ()
    release_date: PartialDate | None = None
    release_type: ReleaseType = ReleaseType.OTHER
    status: ReleaseStatus | None = None
    labels: tuple[ReleaseLabel, ...] | None = None
    release_country: str | None = None
    available_countries: tuple[str, ...] | None = None
    media: tuple[ReleaseMedium, ...] = ()
    artwork: tuple[Artwork, ...] | None = None
    genres: tuple[str, ...] | None = None
    tags: tuple[str, ...] | None = None
    language: LanguageInfo | None = None
    external_ids: dict[str, str] = Field(default_factory=dict)
    sources: tuple[ProviderSource, ...] = Field(min_length=1)
    merged_at: datetime = Field(default_factory=utc_now)
    confidence: float = Field(ge=0.0, le=1.0)

    @property
    def track_count(self) -> int:
        return sum(len(medium.tracks) for medium in self.media)

    @property
    def artist_credit(self) -> str:
        """Render the artist credits as one display string."""
        return render_artist_credit(self.artists)


class HarmonizedArtist(FrozenModel):
    name: str
    name_normalized: str | None = None
    sort_name: str | None = None
    disambiguation: str | None = None
    type: ArtistType | None = None
    country: str | None = None
    begin_date: PartialDate | None = None
    end_date: PartialDate | None = None
    aliases: tuple[str, ...] | None = None
    genres: tuple[str, ...] | None = None
    external_ids: dict[str, str] = Field(default_factory=dict)
    sources: tuple[ProviderSource, ...] = Field(min_length=1)
    merged_at: datetime = Field(default_factory=utc_now)
    confidence: float = Field(ge=0.0, le=1.0)


class HarmonizedUserProfile(FrozenModel):
    """Profile of the account behind a user OAuth token."""

    id: str
    provider: str
    username: str | None = None
    display_name: str | None = None
    email: str | None = None
    country: str | None = None
    fetched_at: datetime = Field(default_factory=utc_now)
    provider_data: dict[str, Any] = Field(default_factory=dict)


class ProviderInfo(FrozenModel):
    """Public description of a configured provider."""

    name: str
    display_name: str
    priority: int
    enabled: bool
    supports_user_auth: bool


HarmonizedEntity = HarmonizedRelease | HarmonizedTrack | HarmonizedArtist


def render_artist_credit(credits: tuple[HarmonizedArtistCredit, ...]) -> str:
    """
    Join credits the way they are displayed, e.g. ``"A feat. B & C"``.

    Credits without a join phrase (except the last) are separated by ``", "``.
    """
    rendered = ""
    for i, credit in enumerate(credits):
        rendered += credit.credited_name or credit.name
        if credit.join_phrase is not None:
            rendered += credit.join_phrase
        elif i < len(credits) - 1:
            rendered += ", "
    return rendered.strip()


def stamp_snapshot(entity: HarmonizedEntity, snapshot_id: str) -> HarmonizedEntity:
    """Return a copy whose sources reference the cache snapshot they were stored under."""
    sources = tuple(s.model_copy(update={"snapshot_id": snapshot_id}) for s in entity.sources)
    return entity.model_copy(update={"sources": sources})
