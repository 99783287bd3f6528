"""
Entity mergers.

Combine single-provider candidates of the same entity into one harmonized
record. The candidate with the highest confidence (first on ties) is the
base: its scalar fields, media and track lists win. Provider ids, sources
and string-list fields are unioned across all candidates.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any, ClassVar, Generic, TypeVar

from harmony_engine.errors import MergeError
from harmony_engine.models import (
    Artwork,
    HarmonizedArtist,
    HarmonizedRelease,
    HarmonizedTrack,
    utc_now,
)
from harmony_engine.validation import normalize_string

E = TypeVar("E", HarmonizedRelease, HarmonizedTrack, HarmonizedArtist)

log = logging.getLogger(__name__)


def select_base(candidates: Sequence[E]) -> E:
    """Highest confidence candidate; ``max`` keeps the first of equal maxima."""
    return max(candidates, key=lambda c: c.confidence)


def merge_external_ids(candidates: Sequence[E], base: E) -> dict[str, str]:
    """
    Union of provider-id maps.

    On conflicting ids under the same key the base candidate wins, otherwise
    the first candidate to provide the key.
    """
    merged: dict[str, str] = {}
    for candidate in candidates:
        for key, value in candidate.external_ids.items():
            merged.setdefault(key, value)
    merged.update(base.external_ids)
    return merged


def union_strings(lists: Iterable[Sequence[str] | None]) -> tuple[str, ...] | None:
    """
    Case- and diacritic-insensitive union keeping the first spelling seen.

    Returns None when no candidate had the field at all.
    """
    seen: set[str] = set()
    result: list[str] = []
    present = False
    for values in lists:
        if values is None:
            continue
        present = True
        for value in values:
            key = normalize_string(value)
            if key in seen:
                continue
            seen.add(key)
            result.append(value)
    return tuple(result) if present else None


def union_artwork(lists: Iterable[Sequence[Artwork] | None]) -> tuple[Artwork, ...] | None:
    seen: set[str] = set()
    result: list[Artwork] = []
    present = False
    for artwork in lists:
        if artwork is None:
            continue
        present = True
        for image in artwork:
            if image.url not in seen:
                seen.add(image.url)
                result.append(image)
    return tuple(result) if present else None


class EntityMerger(Generic[E]):
    """Merge algorithm shared by all entity kinds."""

    kind: ClassVar[str] = "entity"
    string_list_fields: ClassVar[tuple[str, ...]] = ()

    def merge(self, candidates: Sequence[E]) -> E:
        """
        Merge candidates of one entity into a new instance.

        Args:
            candidates: Single-source (or previously merged) entities, in
                registry priority order

        Returns:
            New entity with a fresh ``merged_at``

        Raises:
            MergeError: If ``candidates`` is empty
        """
        if not candidates:
            raise MergeError(f"Cannot merge an empty list of {self.kind} candidates")

        if len(candidates) == 1:
            return candidates[0].model_copy(update={"merged_at": utc_now()})

        base = select_base(candidates)
        update: dict[str, Any] = {
            "external_ids": merge_external_ids(candidates, base),
            "sources": tuple(source for c in candidates for source in c.sources),
            "confidence": base.confidence,
            "merged_at": utc_now(),
        }
        for field in self.string_list_fields:
            update[field] = union_strings(getattr(c, field) for c in candidates)
        update.update(self._merge_extra(candidates, base))

        log.debug(
            f"Merged {len(candidates)} {self.kind} candidates, base from "
            f"{base.sources[0].provider} (confidence {base.confidence})"
        )
        return base.model_copy(update=update)

    def _merge_extra(self, candidates: Sequence[E], base: E) -> dict[str, Any]:
        return {}


class ReleaseMerger(EntityMerger[HarmonizedRelease]):
    kind = "release"
    string_list_fields = ("genres", "tags", "available_countries")

    def _merge_extra(
        self, candidates: Sequence[HarmonizedRelease], base: HarmonizedRelease
    ) -> dict[str, Any]:
        return {"artwork": union_artwork(c.artwork for c in candidates)}


class TrackMerger(EntityMerger[HarmonizedTrack]):
    kind = "track"


class ArtistMerger(EntityMerger[HarmonizedArtist]):
    kind = "artist"
    string_list_fields = ("aliases", "genres")


## Tests


def test_union_strings_keeps_first_spelling():
    assert union_strings([("rock", "indie"), ("Rock", "alternative")]) == (
        "rock",
        "indie",
        "alternative",
    )
    assert union_strings([("Björk",), ("bjork", "BJORK")]) == ("Björk",)
    assert union_strings([None, None]) is None
    assert union_strings([None, ()]) == ()
