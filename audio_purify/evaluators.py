from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from . import heuristics
from .config import PipelineConfig
from .models import ArtistInfo, CreditsLevel, LookupResult, TrackRecord

MIN_VALID_YEAR = 1900
MAX_VALID_YEAR = 2100
HD_COVER_RESOLUTION = 1000
NORMAL_COVER_RESOLUTION = 600


class CoverArtTier(str, Enum):
    NONE = "NONE"
    LOW = "LOW"
    NORMAL = "NORMAL"
    HD = "HD"


@dataclass(frozen=True, slots=True)
class ScoringInput:
    """Flattened boolean/tier view of a record used by both scorers."""

    has_valid_title: bool = False
    has_artist: bool = False
    has_album: bool = False
    has_unknown_album: bool = False
    has_album_from_lookup: bool = False
    has_genre: bool = False
    has_specific_genre: bool = False
    has_generic_genre: bool = False
    has_valid_year: bool = False
    has_lookup_link: bool = False
    has_lyrics: bool = False
    credits: CreditsLevel = CreditsLevel.NONE
    cover_art_resolution: int = 0
    music_confidence: float = 1.0
    has_metadata_junk: bool = False
    has_spotify_id: bool = False
    has_youtube_url: bool = False
    has_apple_music_id: bool = False
    has_soundcloud_id: bool = False

    @property
    def cover_art_tier(self) -> CoverArtTier:
        return cover_art_tier(self.cover_art_resolution)

    @property
    def has_full_credits(self) -> bool:
        return self.credits is CreditsLevel.FULL

    @property
    def has_partial_credits(self) -> bool:
        return self.credits is CreditsLevel.PARTIAL


def cover_art_tier(resolution: Optional[int]) -> CoverArtTier:
    if not resolution or resolution <= 0:
        return CoverArtTier.NONE
    if resolution >= HD_COVER_RESOLUTION:
        return CoverArtTier.HD
    if resolution >= NORMAL_COVER_RESOLUTION:
        return CoverArtTier.NORMAL
    return CoverArtTier.LOW


def is_valid_year(year: Optional[int]) -> bool:
    if year is None:
        return False
    return MIN_VALID_YEAR <= year <= MAX_VALID_YEAR


def _present(value: Optional[str]) -> bool:
    return bool(value and value.strip())


def is_valid_title(title: Optional[str], config: Optional[PipelineConfig] = None) -> bool:
    config = config or PipelineConfig()
    if not _present(title):
        return False
    length = len(title.strip())
    return max(config.min_title_length, 1) <= length <= config.max_title_length


def has_specific_genre(genre: Optional[str]) -> bool:
    return _present(genre) and not heuristics.is_generic_genre(genre)


def has_generic_genre(genre: Optional[str]) -> bool:
    return _present(genre) and heuristics.is_generic_genre(genre)


def build_scoring_input(
    record: TrackRecord,
    lookup: Optional[LookupResult] = None,
    config: Optional[PipelineConfig] = None,
) -> ScoringInput:
    """Derive evaluator outputs from a record and, when present, a lookup payload.

    Lookup data only fills gaps: a field present locally keeps its local value.
    Missing data never raises, it simply evaluates to False / zero.
    """
    config = config or PipelineConfig()
    album = record.album if _present(record.album) else (lookup.album if lookup else None)
    genre = record.genre if _present(record.genre) else (lookup.genre if lookup else None)
    year = record.year if is_valid_year(record.year) else (lookup.year if lookup else None)
    external_ids = record.external_ids.merged(lookup.external_ids if lookup else None)
    cover = max(record.cover_art_resolution or 0, lookup.cover_art_resolution if lookup else 0)
    credits = record.credits
    if lookup and _credits_rank(lookup.credits) > _credits_rank(credits):
        credits = lookup.credits
    has_album = _present(album) or record.album_id is not None
    album_from_lookup = record.album_from_lookup or bool(lookup and _present(lookup.album))
    return ScoringInput(
        has_valid_title=is_valid_title(record.title, config),
        has_artist=_present(record.artist) or record.artist_id is not None,
        has_album=has_album,
        has_unknown_album=heuristics.is_unknown_album(album),
        has_album_from_lookup=album_from_lookup,
        has_genre=_present(genre) or record.genre_id is not None,
        has_specific_genre=has_specific_genre(genre),
        has_generic_genre=has_generic_genre(genre),
        has_valid_year=is_valid_year(year),
        has_lookup_link=record.has_lookup_link or lookup is not None,
        has_lyrics=record.lyrics_available or bool(lookup and lookup.lyrics_available),
        credits=credits,
        cover_art_resolution=cover,
        music_confidence=heuristics.music_content_confidence(record.title, record.artist),
        has_metadata_junk=heuristics.has_metadata_junk(record.title, record.artist, record.album),
        has_spotify_id=_present(external_ids.spotify_id),
        has_youtube_url=_present(external_ids.youtube_url),
        has_apple_music_id=_present(external_ids.apple_music_id),
        has_soundcloud_id=_present(external_ids.soundcloud_id),
    )


def build_artist_info(record: TrackRecord, lookup: Optional[LookupResult] = None) -> Optional[ArtistInfo]:
    if lookup and lookup.artist_info:
        info = lookup.artist_info
        return ArtistInfo(
            verified=info.verified or record.artist_verified,
            has_image=info.has_image or record.artist_has_image,
            lookup_id=info.lookup_id,
        )
    if record.artist_verified or record.artist_has_image:
        return ArtistInfo(verified=record.artist_verified, has_image=record.artist_has_image)
    return None


def _credits_rank(level: CreditsLevel) -> int:
    match level:
        case CreditsLevel.NONE:
            return 0
        case CreditsLevel.PARTIAL:
            return 1
        case CreditsLevel.FULL:
            return 2
