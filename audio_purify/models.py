from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


class MetadataStatus(str, Enum):
    DIRTY = "DIRTY"
    CLEANED_LOCAL = "CLEANED_LOCAL"
    ENRICHED = "ENRICHED"
    PARTIAL_VERIFIED = "PARTIAL_VERIFIED"
    VERIFIED = "VERIFIED"
    API_NOT_FOUND = "API_NOT_FOUND"
    FAILED = "FAILED"

    def describe(self) -> str:
        match self:
            case MetadataStatus.DIRTY:
                return "unprocessed"
            case MetadataStatus.CLEANED_LOCAL:
                return "cleaned locally"
            case MetadataStatus.ENRICHED:
                return "enriched"
            case MetadataStatus.PARTIAL_VERIFIED:
                return "partially verified"
            case MetadataStatus.VERIFIED:
                return "verified"
            case MetadataStatus.API_NOT_FOUND:
                return "not found in lookup service"
            case MetadataStatus.FAILED:
                return "enrichment failed"


class CreditsLevel(str, Enum):
    NONE = "NONE"
    PARTIAL = "PARTIAL"
    FULL = "FULL"


@dataclass(frozen=True, slots=True)
class ExternalIds:
    spotify_id: Optional[str] = None
    youtube_url: Optional[str] = None
    apple_music_id: Optional[str] = None
    soundcloud_id: Optional[str] = None

    def merged(self, other: Optional["ExternalIds"]) -> "ExternalIds":
        if other is None:
            return self
        return ExternalIds(
            spotify_id=self.spotify_id or other.spotify_id,
            youtube_url=self.youtube_url or other.youtube_url,
            apple_music_id=self.apple_music_id or other.apple_music_id,
            soundcloud_id=self.soundcloud_id or other.soundcloud_id,
        )


@dataclass(frozen=True, slots=True)
class TrackRecord:
    """Snapshot of a track's metadata as stored by the persistence layer.

    Records are never mutated in place; :func:`dataclasses.replace` produces
    the proposed update which is written back as a single upsert.
    """

    id: int
    title: str
    artist: Optional[str] = None
    album: Optional[str] = None
    genre: Optional[str] = None
    year: Optional[int] = None
    artist_id: Optional[int] = None
    album_id: Optional[int] = None
    genre_id: Optional[int] = None
    lookup_id: Optional[str] = None
    lookup_url: Optional[str] = None
    album_from_lookup: bool = False
    external_ids: ExternalIds = field(default_factory=ExternalIds)
    lyrics_available: bool = False
    credits: CreditsLevel = CreditsLevel.NONE
    cover_art_resolution: int = 0
    artist_verified: bool = False
    artist_has_image: bool = False
    metadata_status: MetadataStatus = MetadataStatus.DIRTY
    confidence_score: int = 0
    enrichment_attempts: int = 0
    last_enrichment_attempt_at: Optional[datetime] = None
    path: Optional[Path] = None

    @property
    def has_lookup_link(self) -> bool:
        return bool(self.lookup_id and self.lookup_id.strip())

    def updated(self, **changes: Any) -> "TrackRecord":
        return replace(self, **changes)

    def to_record(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "genre": self.genre,
            "year": self.year,
            "lookup_id": self.lookup_id,
            "lookup_url": self.lookup_url,
            "album_from_lookup": self.album_from_lookup,
            "external_ids": {
                "spotify_id": self.external_ids.spotify_id,
                "youtube_url": self.external_ids.youtube_url,
                "apple_music_id": self.external_ids.apple_music_id,
                "soundcloud_id": self.external_ids.soundcloud_id,
            },
            "lyrics_available": self.lyrics_available,
            "credits": self.credits.value,
            "cover_art_resolution": self.cover_art_resolution,
            "artist_verified": self.artist_verified,
            "artist_has_image": self.artist_has_image,
            "metadata_status": self.metadata_status.value,
            "confidence_score": self.confidence_score,
            "enrichment_attempts": self.enrichment_attempts,
            "last_enrichment_attempt_at": (
                self.last_enrichment_attempt_at.isoformat()
                if self.last_enrichment_attempt_at
                else None
            ),
            "path": str(self.path) if self.path else None,
        }


@dataclass(frozen=True, slots=True)
class ArtistInfo:
    verified: bool = False
    has_image: bool = False
    lookup_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class LookupResult:
    """Payload returned by the lookup service for a matched track."""

    lookup_id: str
    title: str
    artist: Optional[str] = None
    album: Optional[str] = None
    genre: Optional[str] = None
    year: Optional[int] = None
    url: Optional[str] = None
    cover_art_resolution: int = 0
    lyrics_available: bool = False
    credits: CreditsLevel = CreditsLevel.NONE
    external_ids: ExternalIds = field(default_factory=ExternalIds)
    artist_info: Optional[ArtistInfo] = None
    score: float = 1.0


@dataclass(frozen=True, slots=True)
class ValidationResult:
    title_similarity: Optional[float] = None
    artist_similarity: Optional[float] = None
    album_similarity: Optional[float] = None
    has_unresolved_conflicts: bool = False
    warnings: List[str] = field(default_factory=list)


class EnrichmentError(Exception):
    """Base class for errors raised while talking to the lookup service."""


class TransientLookupError(EnrichmentError):
    """Timeouts, network failures, 5xx and upstream rate limiting (HTTP 429)."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class FatalLookupError(EnrichmentError):
    """Invalid or revoked credentials; no further lookups until reconfigured."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status
