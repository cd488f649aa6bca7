from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Callable, List, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Idle:
    pass


@dataclass(frozen=True, slots=True)
class Enriching:
    title: str
    record_id: Optional[int] = None


@dataclass(frozen=True, slots=True)
class Success:
    title: str
    new_score: int
    record_id: Optional[int] = None


@dataclass(frozen=True, slots=True)
class Skipped:
    reason: str
    record_id: Optional[int] = None


@dataclass(frozen=True, slots=True)
class Failed:
    title: str
    error: str
    record_id: Optional[int] = None


EnrichmentEvent = Union[Idle, Enriching, Success, Skipped, Failed]
Listener = Callable[[EnrichmentEvent], None]


class EnrichmentEvents:
    """Observable enrichment status.

    Listeners are called synchronously from whichever thread publishes. A
    failing listener is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._listeners: List[Listener] = []
        self._state: EnrichmentEvent = Idle()
        self._lock = Lock()

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(callback)

        def _unsubscribe() -> None:
            self.unsubscribe(callback)

        return _unsubscribe

    def unsubscribe(self, callback: Listener) -> None:
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    @property
    def state(self) -> EnrichmentEvent:
        with self._lock:
            return self._state

    @property
    def is_enriching(self) -> bool:
        return isinstance(self.state, Enriching)

    def publish(self, event: EnrichmentEvent) -> None:
        with self._lock:
            self._state = event
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:  # pragma: no cover - logged and ignored
                logger.exception("Enrichment listener failed for %s", event)


@dataclass(slots=True)
class SessionStats:
    enriched: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.enriched + self.skipped + self.failed


class StatsTracker:
    """Thread-safe counters for one playback session."""

    def __init__(self) -> None:
        self._stats = SessionStats()
        self._lock = Lock()

    def note_enriched(self) -> None:
        with self._lock:
            self._stats.enriched += 1

    def note_skipped(self) -> None:
        with self._lock:
            self._stats.skipped += 1

    def note_failed(self) -> None:
        with self._lock:
            self._stats.failed += 1

    def snapshot(self) -> SessionStats:
        with self._lock:
            return SessionStats(
                enriched=self._stats.enriched,
                skipped=self._stats.skipped,
                failed=self._stats.failed,
            )

    def reset(self) -> None:
        with self._lock:
            self._stats = SessionStats()


@dataclass(slots=True)
class BatchReport:
    enriched: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0
    elapsed_seconds: float = 0.0

    def as_dict(self) -> dict:
        return {
            "enriched": self.enriched,
            "failed": self.failed,
            "skipped": self.skipped,
            "total": self.total,
            "time": round(self.elapsed_seconds, 3),
        }
