from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, runtime_checkable

from .models import LookupResult, TrackRecord


class LookupService(Protocol):
    """Blocking lookup client.

    Returns ``None`` when nothing matches. Raises ``TransientLookupError`` for
    timeouts, network failures, 5xx and 429, ``FatalLookupError`` for 401/403.
    Clients that make more than one HTTP request per lookup expose the upper
    bound as ``requests_per_lookup``; the rate limiter reserves that many slots.
    """

    def lookup(self, title: str, artist: Optional[str]) -> Optional[LookupResult]: ...


class RecordRepository(Protocol):
    def read_record(self, record_id: int) -> Optional[TrackRecord]: ...

    def write_record(self, record: TrackRecord) -> None: ...

    def records_needing_enrichment(self, limit: int, max_attempts: int) -> List[TrackRecord]: ...


@runtime_checkable
class SnapshotStore(Protocol):
    """Optional repository capability: keep the pre-enrichment copy of a record."""

    def save_snapshot(self, record: TrackRecord, taken_at: datetime) -> None: ...

    def prune_snapshots(self, older_than: datetime) -> int: ...
