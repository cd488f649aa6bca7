from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import Future
from threading import Lock
from typing import Callable, Dict, Optional

from .events import Idle, Skipped
from .models import FatalLookupError, TrackRecord
from .orchestrator import EnrichmentOrchestrator, EnrichmentOutcome, EnrichmentSource
from .rate_limit import CancelToken

logger = logging.getLogger(__name__)


class PlaybackEnrichmentTrigger:
    """Entry point for the playback engine.

    ``on_track_started`` may be called from any thread and never blocks: the
    attempt is scheduled onto the orchestrator's event loop. A new dispatch
    supersedes the previous one by cancelling its token; the superseded lookup
    still runs to completion but its result is discarded.
    """

    def __init__(
        self,
        orchestrator: EnrichmentOrchestrator,
        loop: asyncio.AbstractEventLoop,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.orchestrator = orchestrator
        self.loop = loop
        self._clock = clock
        self._lock = Lock()
        self._last_dispatch_at: Optional[float] = None
        self._last_dispatch_by_record: Dict[int, float] = {}
        self._token: Optional[CancelToken] = None
        self._future: Optional[Future] = None

    def on_track_started(self, record: TrackRecord) -> Optional[Future]:
        config = self.orchestrator.config
        if not (config.enable_auto_enrichment and config.enrich_on_play):
            logger.debug("On-play enrichment disabled, ignoring %s", record.title)
            return None
        now = self._clock()
        with self._lock:
            last_same = self._last_dispatch_by_record.get(record.id)
            if last_same is not None and now - last_same < config.same_record_cooldown_seconds:
                return self._rate_limited(record)
            if (
                self._last_dispatch_at is not None
                and now - self._last_dispatch_at < config.interactive_cooldown_seconds
            ):
                return self._rate_limited(record)
            return self._dispatch_locked(record, now)

    def force_enrich(self, record: TrackRecord) -> Future:
        """Dispatch regardless of the on-play cooldowns."""
        with self._lock:
            return self._dispatch_locked(record, self._clock())

    def cancel(self) -> None:
        with self._lock:
            if self._token is not None:
                self._token.cancel()
            self._token = None
            self._future = None
        self.orchestrator.events.publish(Idle())

    @property
    def is_enriching(self) -> bool:
        with self._lock:
            return (
                self._future is not None
                and not self._future.done()
                and self._token is not None
                and not self._token.cancelled
            )

    def _rate_limited(self, record: TrackRecord) -> None:
        logger.debug("On-play cooldown active, skipping %s", record.title)
        self.orchestrator.stats.note_skipped()
        self.orchestrator.events.publish(Skipped("rate limited", record_id=record.id))
        return None

    def _dispatch_locked(self, record: TrackRecord, now: float) -> Future:
        if self._token is not None:
            self._token.cancel()
        token = CancelToken()
        self._token = token
        self._last_dispatch_at = now
        self._last_dispatch_by_record[record.id] = now
        future = asyncio.run_coroutine_threadsafe(self._attempt(record.id, token), self.loop)
        self._future = future
        return future

    async def _attempt(self, record_id: int, token: CancelToken) -> Optional[EnrichmentOutcome]:
        try:
            return await self.orchestrator.enrich(
                record_id,
                source=EnrichmentSource.INTERACTIVE,
                token=token,
            )
        except FatalLookupError as exc:
            logger.error("On-play enrichment stopped: %s", exc)
            return None
