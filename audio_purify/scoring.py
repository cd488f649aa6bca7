"""Confidence scoring for track metadata.

The full scorer combines cross-validation against the lookup service,
field completeness, artist quality and external links into a 0-100 score.
Status derivation is a separate step so thresholds can change per processing
mode without touching the scoring math.

Score bands::

    90-100  EXCELLENT
    80-89   GOOD
    70-79   FAIR
    60-69   POOR
    0-59    BAD
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .config import PipelineConfig
from .evaluators import CoverArtTier, ScoringInput
from .models import ArtistInfo, CreditsLevel, MetadataStatus, ValidationResult

BASE_SCORE = 50
MIN_SCORE = 0
MAX_SCORE = 100


class Weights:
    # A: validation against the lookup service
    TITLE_VERIFIED = 15
    TITLE_PARTIAL = 10
    ARTIST_VERIFIED = 15
    ARTIST_PARTIAL = 10
    ALBUM_VERIFIED = 10
    ALBUM_LOCAL = 5

    # B: completeness
    GENRE_SPECIFIC = 5
    GENRE_GENERIC = 3
    YEAR_VALID = 5
    COVER_ART_HD = 8
    COVER_ART_NORMAL = 5
    COVER_ART_LOW = 2
    LYRICS_AVAILABLE = 7
    CREDITS_FULL = 5
    CREDITS_PARTIAL = 3

    # C: artist quality
    ARTIST_LOOKUP_VERIFIED = 8
    ARTIST_HAS_IMAGE = 7

    # D: external links
    HAS_SPOTIFY_ID = 3
    HAS_YOUTUBE_URL = 3
    HAS_APPLE_MUSIC_ID = 2
    HAS_SOUNDCLOUD_ID = 2

    # E: penalties
    PENALTY_TITLE_LOW_SIMILARITY = -15
    PENALTY_ARTIST_LOW_SIMILARITY = -15
    PENALTY_ALBUM_UNKNOWN = -10
    PENALTY_GENRE_GENERIC = -5
    PENALTY_UNRESOLVED_CONFLICTS = -5
    PENALTY_METADATA_JUNK = -3
    PENALTY_DUBIOUS_CONTENT = -2


VERIFIED_SIMILARITY = 0.8
PARTIAL_SIMILARITY = 0.6
TITLE_PENALTY_SIMILARITY = 0.5
ARTIST_PENALTY_SIMILARITY = 0.4
DUBIOUS_MUSIC_CONFIDENCE = 0.7


class QualityTier(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"
    BAD = "BAD"

    def is_acceptable(self) -> bool:
        return self in (QualityTier.EXCELLENT, QualityTier.GOOD, QualityTier.FAIR)


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    title: int = 0
    artist: int = 0
    album: int = 0
    genre: int = 0
    year: int = 0
    cover_art: int = 0
    lyrics: int = 0
    credits: int = 0
    artist_verified: int = 0
    artist_image: int = 0
    external_links: int = 0
    penalties: int = 0

    @property
    def api_validation(self) -> int:
        return self.title + self.artist + self.album

    @property
    def completeness(self) -> int:
        return self.genre + self.year + self.cover_art + self.lyrics + self.credits

    @property
    def artist_quality(self) -> int:
        return self.artist_verified + self.artist_image

    @property
    def total_positive(self) -> int:
        return self.api_validation + self.completeness + self.artist_quality + self.external_links

    @property
    def raw_score(self) -> int:
        return BASE_SCORE + self.total_positive + self.penalties

    def describe(self) -> str:
        lines = [
            f"API validation: {self.api_validation} (title {self.title}, artist {self.artist}, album {self.album})",
            (
                f"Completeness: {self.completeness} (genre {self.genre}, year {self.year}, "
                f"cover {self.cover_art}, lyrics {self.lyrics}, credits {self.credits})"
            ),
            f"Artist quality: {self.artist_quality} (verified {self.artist_verified}, image {self.artist_image})",
            f"External links: {self.external_links}",
            f"Penalties: {self.penalties}",
            f"Total: {self.total_positive + self.penalties} (+ base {BASE_SCORE})",
        ]
        return "\n".join(lines)


@dataclass(frozen=True, slots=True)
class ConfidenceResult:
    score: int
    quality: QualityTier
    breakdown: ScoreBreakdown
    recommended_status: MetadataStatus
    verified_threshold: int = 80
    partial_threshold: int = 60

    def is_verified(self) -> bool:
        return self.score >= self.verified_threshold

    def is_partially_verified(self) -> bool:
        return self.score >= self.partial_threshold

    def needs_enrichment(self) -> bool:
        return self.score < self.partial_threshold


def clamp_score(raw: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, raw))


def quality_tier(score: int) -> QualityTier:
    if score >= 90:
        return QualityTier.EXCELLENT
    if score >= 80:
        return QualityTier.GOOD
    if score >= 70:
        return QualityTier.FAIR
    if score >= 60:
        return QualityTier.POOR
    return QualityTier.BAD


def _similarity_points(
    similarity: Optional[float],
    has_lookup_link: bool,
    verified: int,
    partial: int,
    verified_similarity: float = VERIFIED_SIMILARITY,
) -> int:
    if similarity is not None:
        if similarity >= verified_similarity:
            return verified
        if similarity >= PARTIAL_SIMILARITY:
            return partial
        return 0
    if has_lookup_link:
        return partial
    return 0


def _cover_points(tier: CoverArtTier) -> int:
    match tier:
        case CoverArtTier.HD:
            return Weights.COVER_ART_HD
        case CoverArtTier.NORMAL:
            return Weights.COVER_ART_NORMAL
        case CoverArtTier.LOW:
            return Weights.COVER_ART_LOW
        case CoverArtTier.NONE:
            return 0


def _credits_points(level: CreditsLevel) -> int:
    match level:
        case CreditsLevel.FULL:
            return Weights.CREDITS_FULL
        case CreditsLevel.PARTIAL:
            return Weights.CREDITS_PARTIAL
        case CreditsLevel.NONE:
            return 0


def compute_breakdown(
    data: ScoringInput,
    validation: Optional[ValidationResult] = None,
    artist: Optional[ArtistInfo] = None,
    config: Optional[PipelineConfig] = None,
) -> ScoreBreakdown:
    config = config or PipelineConfig()
    title_similarity = validation.title_similarity if validation else None
    artist_similarity = validation.artist_similarity if validation else None

    album = 0
    if data.has_album_from_lookup:
        album = Weights.ALBUM_VERIFIED
    elif data.has_album:
        album = Weights.ALBUM_LOCAL

    genre = 0
    if data.has_specific_genre:
        genre = Weights.GENRE_SPECIFIC
    elif data.has_genre:
        genre = Weights.GENRE_GENERIC

    links = 0
    if data.has_spotify_id:
        links += Weights.HAS_SPOTIFY_ID
    if data.has_youtube_url:
        links += Weights.HAS_YOUTUBE_URL
    if data.has_apple_music_id:
        links += Weights.HAS_APPLE_MUSIC_ID
    if data.has_soundcloud_id:
        links += Weights.HAS_SOUNDCLOUD_ID

    penalties = 0
    if title_similarity is not None and title_similarity < TITLE_PENALTY_SIMILARITY:
        penalties += Weights.PENALTY_TITLE_LOW_SIMILARITY
    if artist_similarity is not None and artist_similarity < ARTIST_PENALTY_SIMILARITY:
        penalties += Weights.PENALTY_ARTIST_LOW_SIMILARITY
    if data.has_unknown_album:
        penalties += Weights.PENALTY_ALBUM_UNKNOWN
    if data.has_generic_genre:
        penalties += Weights.PENALTY_GENRE_GENERIC
    if validation and validation.has_unresolved_conflicts:
        penalties += Weights.PENALTY_UNRESOLVED_CONFLICTS
    if data.has_metadata_junk:
        penalties += Weights.PENALTY_METADATA_JUNK
    if data.music_confidence < DUBIOUS_MUSIC_CONFIDENCE:
        penalties += Weights.PENALTY_DUBIOUS_CONTENT

    return ScoreBreakdown(
        title=_similarity_points(
            title_similarity,
            data.has_lookup_link,
            Weights.TITLE_VERIFIED,
            Weights.TITLE_PARTIAL,
            config.verified_title_similarity,
        ),
        artist=_similarity_points(
            artist_similarity,
            data.has_lookup_link,
            Weights.ARTIST_VERIFIED,
            Weights.ARTIST_PARTIAL,
            config.verified_artist_similarity,
        ),
        album=album,
        genre=genre,
        year=Weights.YEAR_VALID if data.has_valid_year else 0,
        cover_art=_cover_points(data.cover_art_tier),
        lyrics=Weights.LYRICS_AVAILABLE if data.has_lyrics else 0,
        credits=_credits_points(data.credits),
        artist_verified=Weights.ARTIST_LOOKUP_VERIFIED if artist and artist.verified else 0,
        artist_image=Weights.ARTIST_HAS_IMAGE if artist and artist.has_image else 0,
        external_links=links,
        penalties=penalties,
    )


def recommend_status(score: int, has_lookup_link: bool, config: Optional[PipelineConfig] = None) -> MetadataStatus:
    config = config or PipelineConfig()
    if score >= config.verified_threshold:
        return MetadataStatus.VERIFIED
    if score >= config.partial_threshold:
        return MetadataStatus.PARTIAL_VERIFIED
    if has_lookup_link:
        return MetadataStatus.ENRICHED
    return MetadataStatus.CLEANED_LOCAL


def score_confidence(
    data: ScoringInput,
    validation: Optional[ValidationResult] = None,
    artist: Optional[ArtistInfo] = None,
    config: Optional[PipelineConfig] = None,
) -> ConfidenceResult:
    """Score a record from its evaluator outputs and optional validation/artist data."""
    config = config or PipelineConfig()
    breakdown = compute_breakdown(data, validation, artist, config)
    score = clamp_score(breakdown.raw_score)
    return ConfidenceResult(
        score=score,
        quality=quality_tier(score),
        breakdown=breakdown,
        recommended_status=recommend_status(score, data.has_lookup_link, config),
        verified_threshold=config.verified_threshold,
        partial_threshold=config.partial_threshold,
    )


def local_score(data: ScoringInput) -> int:
    """Cheap additive score for bulk scans that run before any lookup exists."""
    score = BASE_SCORE
    if data.has_valid_title:
        score += 5
    if data.has_artist:
        score += 5
    if data.has_album:
        score += 3
    if data.has_genre:
        score += 3
    if data.has_valid_year:
        score += 2
    if data.cover_art_resolution > 0:
        score += 2
    if data.has_unknown_album:
        score -= 5
    if data.music_confidence < DUBIOUS_MUSIC_CONFIDENCE:
        score -= 3
    return clamp_score(score)
