from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .models import CreditsLevel, ExternalIds, MetadataStatus, TrackRecord

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id",
    "title",
    "artist",
    "album",
    "genre",
    "year",
    "artist_id",
    "album_id",
    "genre_id",
    "lookup_id",
    "lookup_url",
    "album_from_lookup",
    "spotify_id",
    "youtube_url",
    "apple_music_id",
    "soundcloud_id",
    "lyrics_available",
    "credits",
    "cover_art_resolution",
    "artist_verified",
    "artist_has_image",
    "metadata_status",
    "confidence_score",
    "enrichment_attempts",
    "last_enrichment_attempt_at",
    "path",
)


class RecordStore:
    """SQLite-backed track records.

    Every read returns a fresh snapshot and every write is a single upsert, so
    callers never observe a half-applied update.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        if str(path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS tracks (
                id INTEGER PRIMARY KEY,
                title TEXT NOT NULL,
                artist TEXT,
                album TEXT,
                genre TEXT,
                year INTEGER,
                artist_id INTEGER,
                album_id INTEGER,
                genre_id INTEGER,
                lookup_id TEXT,
                lookup_url TEXT,
                album_from_lookup INTEGER NOT NULL DEFAULT 0,
                spotify_id TEXT,
                youtube_url TEXT,
                apple_music_id TEXT,
                soundcloud_id TEXT,
                lyrics_available INTEGER NOT NULL DEFAULT 0,
                credits TEXT NOT NULL DEFAULT 'NONE',
                cover_art_resolution INTEGER NOT NULL DEFAULT 0,
                artist_verified INTEGER NOT NULL DEFAULT 0,
                artist_has_image INTEGER NOT NULL DEFAULT 0,
                metadata_status TEXT NOT NULL DEFAULT 'DIRTY',
                confidence_score INTEGER NOT NULL DEFAULT 0,
                enrichment_attempts INTEGER NOT NULL DEFAULT 0,
                last_enrichment_attempt_at TEXT,
                path TEXT UNIQUE
            )
            """
        )
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_tracks_status_score ON tracks(metadata_status, confidence_score)"
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS snapshots (
                id INTEGER PRIMARY KEY,
                record_id INTEGER NOT NULL,
                taken_at TEXT NOT NULL,
                payload TEXT NOT NULL
            )
            """
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_snapshots_record ON snapshots(record_id, taken_at)")
        self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def read_record(self, record_id: int) -> Optional[TrackRecord]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM tracks WHERE id=?",
                (record_id,),
            ).fetchone()
        if not row:
            return None
        return self._from_row(row)

    def write_record(self, record: TrackRecord) -> None:
        values = self._to_row(record)
        assignments = ", ".join(f"{col}=excluded.{col}" for col in _COLUMNS[1:])
        with self._lock:
            self._conn.execute(
                f"""
                INSERT INTO tracks({', '.join(_COLUMNS)})
                VALUES({', '.join('?' for _ in _COLUMNS)})
                ON CONFLICT(id) DO UPDATE SET {assignments}
                """,
                values,
            )
            self._conn.commit()

    def update_score(
        self,
        record_id: int,
        *,
        metadata_status: MetadataStatus,
        confidence_score: int,
        expected_status: MetadataStatus,
    ) -> bool:
        """Set status and score only while the row still has ``expected_status``."""
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE tracks SET metadata_status=?, confidence_score=? WHERE id=? AND metadata_status=?",
                (metadata_status.value, confidence_score, record_id, expected_status.value),
            )
            self._conn.commit()
        return cursor.rowcount > 0

    def add_track(
        self,
        title: str,
        artist: Optional[str] = None,
        album: Optional[str] = None,
        *,
        genre: Optional[str] = None,
        year: Optional[int] = None,
        cover_art_resolution: int = 0,
        path: Optional[Path] = None,
    ) -> TrackRecord:
        """Insert a new DIRTY record, or refresh the tags of a known path."""
        path_value = str(path) if path else None
        with self._lock:
            if path_value:
                existing = self._conn.execute("SELECT id FROM tracks WHERE path=?", (path_value,)).fetchone()
            else:
                existing = None
            if existing:
                record_id = int(existing[0])
                self._conn.execute(
                    """
                    UPDATE tracks
                    SET title=?, artist=?, album=?, genre=?, year=?, cover_art_resolution=?
                    WHERE id=?
                    """,
                    (title, artist, album, genre, year, cover_art_resolution, record_id),
                )
            else:
                cursor = self._conn.execute(
                    """
                    INSERT INTO tracks(title, artist, album, genre, year, cover_art_resolution, path)
                    VALUES(?, ?, ?, ?, ?, ?, ?)
                    """,
                    (title, artist, album, genre, year, cover_art_resolution, path_value),
                )
                record_id = int(cursor.lastrowid)
            self._conn.commit()
        record = self.read_record(record_id)
        assert record is not None
        return record

    def iter_records(self, statuses: Optional[List[MetadataStatus]] = None) -> Iterator[TrackRecord]:
        query = f"SELECT {', '.join(_COLUMNS)} FROM tracks"
        params: tuple = ()
        if statuses:
            query += f" WHERE metadata_status IN ({', '.join('?' for _ in statuses)})"
            params = tuple(status.value for status in statuses)
        query += " ORDER BY id"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        for row in rows:
            yield self._from_row(row)

    def records_needing_enrichment(self, limit: int, max_attempts: int) -> List[TrackRecord]:
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT {', '.join(_COLUMNS)} FROM tracks
                WHERE metadata_status != ? AND enrichment_attempts < ?
                ORDER BY confidence_score ASC, id ASC
                LIMIT ?
                """,
                (MetadataStatus.VERIFIED.value, max_attempts, limit),
            ).fetchall()
        return [self._from_row(row) for row in rows]

    def status_counts(self) -> dict[str, int]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT metadata_status, COUNT(*) FROM tracks GROUP BY metadata_status"
            ).fetchall()
        return {status: int(count) for status, count in rows}

    def average_score(self) -> float:
        with self._lock:
            row = self._conn.execute("SELECT AVG(confidence_score) FROM tracks").fetchone()
        return float(row[0]) if row and row[0] is not None else 0.0

    def save_snapshot(self, record: TrackRecord, taken_at: datetime) -> None:
        payload = json.dumps(record.to_record(), sort_keys=True)
        with self._lock:
            self._conn.execute(
                "INSERT INTO snapshots(record_id, taken_at, payload) VALUES(?, ?, ?)",
                (record.id, taken_at.isoformat(), payload),
            )
            self._conn.commit()

    def list_snapshots(self, record_id: int) -> List[Tuple[datetime, Dict[str, Any]]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT taken_at, payload FROM snapshots WHERE record_id=? ORDER BY taken_at, id",
                (record_id,),
            ).fetchall()
        return [(datetime.fromisoformat(taken_at), json.loads(payload)) for taken_at, payload in rows]

    def prune_snapshots(self, older_than: datetime) -> int:
        with self._lock:
            cursor = self._conn.execute("DELETE FROM snapshots WHERE taken_at < ?", (older_than.isoformat(),))
            self._conn.commit()
        if cursor.rowcount:
            logger.info("Pruned %s record snapshots older than %s", cursor.rowcount, older_than.isoformat())
        return cursor.rowcount

    @staticmethod
    def _to_row(record: TrackRecord) -> tuple:
        ids = record.external_ids
        return (
            record.id,
            record.title,
            record.artist,
            record.album,
            record.genre,
            record.year,
            record.artist_id,
            record.album_id,
            record.genre_id,
            record.lookup_id,
            record.lookup_url,
            int(record.album_from_lookup),
            ids.spotify_id,
            ids.youtube_url,
            ids.apple_music_id,
            ids.soundcloud_id,
            int(record.lyrics_available),
            record.credits.value,
            record.cover_art_resolution,
            int(record.artist_verified),
            int(record.artist_has_image),
            record.metadata_status.value,
            record.confidence_score,
            record.enrichment_attempts,
            record.last_enrichment_attempt_at.isoformat() if record.last_enrichment_attempt_at else None,
            str(record.path) if record.path else None,
        )

    @staticmethod
    def _from_row(row: tuple) -> TrackRecord:
        data = dict(zip(_COLUMNS, row))
        last_attempt = data["last_enrichment_attempt_at"]
        return TrackRecord(
            id=int(data["id"]),
            title=data["title"],
            artist=data["artist"],
            album=data["album"],
            genre=data["genre"],
            year=data["year"],
            artist_id=data["artist_id"],
            album_id=data["album_id"],
            genre_id=data["genre_id"],
            lookup_id=data["lookup_id"],
            lookup_url=data["lookup_url"],
            album_from_lookup=bool(data["album_from_lookup"]),
            external_ids=ExternalIds(
                spotify_id=data["spotify_id"],
                youtube_url=data["youtube_url"],
                apple_music_id=data["apple_music_id"],
                soundcloud_id=data["soundcloud_id"],
            ),
            lyrics_available=bool(data["lyrics_available"]),
            credits=CreditsLevel(data["credits"]),
            cover_art_resolution=int(data["cover_art_resolution"] or 0),
            artist_verified=bool(data["artist_verified"]),
            artist_has_image=bool(data["artist_has_image"]),
            metadata_status=MetadataStatus(data["metadata_status"]),
            confidence_score=int(data["confidence_score"] or 0),
            enrichment_attempts=int(data["enrichment_attempts"] or 0),
            last_enrichment_attempt_at=datetime.fromisoformat(last_attempt) if last_attempt else None,
            path=Path(data["path"]) if data["path"] else None,
        )
