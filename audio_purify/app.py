from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .config import PipelineConfig, Settings
from .events import BatchReport, EnrichmentEvents, StatsTracker
from .orchestrator import EnrichmentOrchestrator
from .playback import PlaybackEnrichmentTrigger
from .protocols import LookupService
from .providers.musicbrainz import MusicBrainzLookup
from .scanner import LibraryImporter, LibraryScanner, LocalScanner
from .store import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class PurifierApp:
    settings: Settings
    config: PipelineConfig
    store: RecordStore
    scanner: LibraryScanner
    lookup: LookupService
    events: EnrichmentEvents
    stats: StatsTracker
    _orchestrator: EnrichmentOrchestrator | None = None

    @classmethod
    def create(cls, settings: Settings, *, lookup: Optional[LookupService] = None) -> "PurifierApp":
        config = settings.pipeline.build()
        store = RecordStore(settings.store.path)
        return cls(
            settings=settings,
            config=config,
            store=store,
            scanner=LibraryScanner(settings.library),
            lookup=lookup or MusicBrainzLookup(settings.providers),
            events=EnrichmentEvents(),
            stats=StatsTracker(),
        )

    def get_orchestrator(self) -> EnrichmentOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = EnrichmentOrchestrator(
                self.store,
                self.lookup,
                self.config,
                events=self.events,
                stats=self.stats,
            )
        return self._orchestrator

    def get_trigger(self, loop: asyncio.AbstractEventLoop) -> PlaybackEnrichmentTrigger:
        return PlaybackEnrichmentTrigger(self.get_orchestrator(), loop)

    def get_importer(self) -> LibraryImporter:
        return LibraryImporter(self.store, self.scanner)

    def get_local_scanner(self) -> LocalScanner:
        return LocalScanner(self.store, self.config)

    def apply_mode(self, mode: str) -> None:
        """Switch processing mode in place.

        The orchestrator, and with it the rate limiter, backoff state and record
        leases, is kept; triggers and the background loop see the new config.
        """
        self.config = PipelineConfig.for_mode(mode, **self.settings.pipeline.overrides)
        if self._orchestrator is not None:
            self._orchestrator.reconfigure(self.config)
        logger.info("Processing mode set to %s", self.config.mode.value)

    async def run_background(self, *, iterations: Optional[int] = None) -> list[BatchReport]:
        """Run enrichment batches every ``background_interval_hours``."""
        orchestrator = self.get_orchestrator()
        reports: list[BatchReport] = []
        while iterations is None or len(reports) < iterations:
            if not self.config.enrich_in_background or not self.config.enable_auto_enrichment:
                logger.info("Background enrichment disabled in %s mode", self.config.mode.value)
                break
            reports.append(await orchestrator.run_batch())
            if iterations is not None and len(reports) >= iterations:
                break
            await asyncio.sleep(self.config.background_interval_hours * 3600)
        return reports

    def close(self) -> None:
        self.store.close()
