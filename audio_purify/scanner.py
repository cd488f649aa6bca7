from __future__ import annotations

import fnmatch
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from mutagen import File as MutagenFile
from mutagen.flac import FLAC

from .config import LibrarySettings, PipelineConfig
from .evaluators import build_scoring_input
from .models import MetadataStatus, TrackRecord
from .scoring import local_score
from .store import RecordStore

logger = logging.getLogger(__name__)

# Embedded art whose dimensions mutagen cannot report still counts as low-res art.
UNKNOWN_COVER_RESOLUTION = 1

_YEAR = re.compile(r"(\d{4})")


@dataclass(slots=True)
class FileTags:
    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    genre: Optional[str] = None
    year: Optional[int] = None
    cover_art_resolution: int = 0


@dataclass(slots=True)
class ScanReport:
    scanned: int = 0
    cleaned: int = 0


class LibraryScanner:
    """Walks the configured library roots and yields audio files."""

    def __init__(self, settings: LibrarySettings) -> None:
        self.settings = settings
        self._exts = {ext.lower() for ext in self.settings.include_extensions}

    def iter_files(self) -> Iterator[Path]:
        for root in self.settings.roots:
            if not root.exists():
                logger.warning("Library root %s does not exist", root)
                continue
            for file_path in sorted(root.rglob("*")):
                if file_path.is_file() and self._should_include(file_path):
                    yield file_path

    def _should_include(self, path: Path) -> bool:
        if path.suffix.lower() not in self._exts:
            return False
        rel = str(path)
        for pattern in self.settings.exclude_patterns:
            if fnmatch.fnmatch(rel, pattern):
                return False
        return True


def _first_tag(audio, keys) -> Optional[str]:
    for key in keys:
        values = audio.tags.get(key)
        if values:
            if isinstance(values, list):
                return str(values[0]).strip() or None
            return str(values).strip() or None
    return None


def _parse_year(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    match = _YEAR.search(value)
    return int(match.group(1)) if match else None


def _cover_resolution(path: Path) -> int:
    try:
        if path.suffix.lower() == ".flac":
            pictures = FLAC(path).pictures
            if pictures:
                return max(min(pic.width, pic.height) for pic in pictures) or UNKNOWN_COVER_RESOLUTION
            return 0
        audio = MutagenFile(path)
    except Exception as exc:  # pragma: no cover - tag parsing failures
        logger.debug("Failed to read artwork from %s: %s", path, exc)
        return 0
    if audio is None or not audio.tags:
        return 0
    keys = list(audio.tags.keys())
    if any(str(key).startswith("APIC") or key == "covr" or key == "metadata_block_picture" for key in keys):
        return UNKNOWN_COVER_RESOLUTION
    return 0


def read_file_tags(path: Path) -> Optional[FileTags]:
    try:
        audio = MutagenFile(path, easy=True)
    except Exception as exc:  # pragma: no cover - tag parsing failures
        logger.debug("Failed to read tags from %s: %s", path, exc)
        return None
    if audio is None:
        return None
    if not audio.tags:
        return FileTags(title=path.stem)
    return FileTags(
        title=_first_tag(audio, ["title"]) or path.stem,
        artist=_first_tag(audio, ["artist", "albumartist"]),
        album=_first_tag(audio, ["album"]),
        genre=_first_tag(audio, ["genre"]),
        year=_parse_year(_first_tag(audio, ["date", "originaldate", "year"])),
        cover_art_resolution=_cover_resolution(path),
    )


class LibraryImporter:
    """Reads tags from audio files into DIRTY records."""

    def __init__(self, store: RecordStore, scanner: LibraryScanner) -> None:
        self.store = store
        self.scanner = scanner

    def import_file(self, path: Path) -> Optional[TrackRecord]:
        tags = read_file_tags(path)
        if tags is None or not tags.title:
            logger.info("Skipping unreadable file %s", path)
            return None
        return self.store.add_track(
            tags.title,
            tags.artist,
            tags.album,
            genre=tags.genre,
            year=tags.year,
            cover_art_resolution=tags.cover_art_resolution,
            path=path,
        )

    def run(self) -> int:
        imported = 0
        for path in self.scanner.iter_files():
            if self.import_file(path) is not None:
                imported += 1
        logger.info("Imported %s files", imported)
        return imported


class LocalScanner:
    """Local-only scoring pass over records that have never been cleaned."""

    def __init__(self, store: RecordStore, config: Optional[PipelineConfig] = None) -> None:
        self.store = store
        self.config = config or PipelineConfig()

    def score_record(self, record: TrackRecord) -> TrackRecord:
        score = local_score(build_scoring_input(record, config=self.config))
        return record.updated(
            metadata_status=MetadataStatus.CLEANED_LOCAL,
            confidence_score=score,
        )

    def run(self) -> ScanReport:
        report = ScanReport()
        for record in self.store.iter_records([MetadataStatus.DIRTY]):
            report.scanned += 1
            scored = self.score_record(record)
            # rows enriched since they were listed are left alone
            if self.store.update_score(
                record.id,
                metadata_status=scored.metadata_status,
                confidence_score=scored.confidence_score,
                expected_status=MetadataStatus.DIRTY,
            ):
                report.cleaned += 1
            else:
                logger.debug("Record %s changed during the scan, skipping", record.id)
        logger.info("Local scan: %s scanned, %s cleaned", report.scanned, report.cleaned)
        return report
