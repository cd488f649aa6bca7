from __future__ import annotations

import logging
from typing import List, Optional

from .config import PipelineConfig
from .match_utils import hybrid_similarity
from .models import LookupResult, TrackRecord, ValidationResult

logger = logging.getLogger(__name__)


def _similarity(local: Optional[str], remote: Optional[str], config: PipelineConfig) -> Optional[float]:
    if not local or not remote:
        return None
    return hybrid_similarity(local, remote, config.similarity_weights)


def build_validation_result(
    record: TrackRecord,
    lookup: LookupResult,
    config: Optional[PipelineConfig] = None,
) -> ValidationResult:
    """Compare a record's local fields with a lookup response.

    A similarity is only reported when both sides carry a value. Title or
    artist similarity under the configured minimum is an unresolved conflict.
    """
    config = config or PipelineConfig()
    title_similarity = _similarity(record.title, lookup.title, config)
    artist_similarity = _similarity(record.artist, lookup.artist, config)
    album_similarity = _similarity(record.album, lookup.album, config)

    warnings: List[str] = []
    if title_similarity is not None and title_similarity < config.min_title_similarity:
        warnings.append(f"title mismatch: {record.title!r} vs {lookup.title!r} ({title_similarity:.2f})")
    if artist_similarity is not None and artist_similarity < config.min_artist_similarity:
        warnings.append(f"artist mismatch: {record.artist!r} vs {lookup.artist!r} ({artist_similarity:.2f})")
    if warnings:
        logger.debug("Validation conflicts for record %s: %s", record.id, "; ".join(warnings))

    return ValidationResult(
        title_similarity=title_similarity,
        artist_similarity=artist_similarity,
        album_similarity=album_similarity,
        has_unresolved_conflicts=bool(warnings),
        warnings=warnings,
    )
