"""Enrichment orchestration.

Per record the orchestrator walks NOT_ELIGIBLE -> ELIGIBLE -> IN_FLIGHT and
ends in one of SUCCEEDED, RATE_LIMITED, NOT_FOUND, FAILED or CANCELLED.

Throttling happens at three levels:

* a per-record lease, so one record never has two lookups in flight;
* a shared sliding-window limiter bounding lookups per minute;
* an in-memory exponential backoff per record after transient failures.

Fatal lookup errors (bad credentials) halt the orchestrator until
:meth:`EnrichmentOrchestrator.reset_halt` is called.
"""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import Executor
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, List, Optional

from . import heuristics
from .config import PipelineConfig
from .evaluators import build_artist_info, build_scoring_input, is_valid_year
from .events import BatchReport, EnrichmentEvents, Enriching, Failed, Skipped, StatsTracker, Success
from .models import (
    CreditsLevel,
    FatalLookupError,
    LookupResult,
    MetadataStatus,
    TrackRecord,
    TransientLookupError,
)
from .protocols import LookupService, RecordRepository, SnapshotStore
from .rate_limit import BackoffTracker, CancelToken, RateLimiter, RecordLeases
from .scoring import score_confidence
from .validation import build_validation_result

logger = logging.getLogger(__name__)


class EnrichmentSource(str, Enum):
    INTERACTIVE = "INTERACTIVE"
    BACKGROUND = "BACKGROUND"


class EnrichmentState(str, Enum):
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    ELIGIBLE = "ELIGIBLE"
    IN_FLIGHT = "IN_FLIGHT"
    SUCCEEDED = "SUCCEEDED"
    RATE_LIMITED = "RATE_LIMITED"
    NOT_FOUND = "NOT_FOUND"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True, slots=True)
class Eligibility:
    state: EnrichmentState
    reason: Optional[str] = None

    @property
    def eligible(self) -> bool:
        return self.state is EnrichmentState.ELIGIBLE


@dataclass(frozen=True, slots=True)
class EnrichmentOutcome:
    record_id: int
    state: EnrichmentState
    record: Optional[TrackRecord] = None
    reason: Optional[str] = None

    @property
    def score(self) -> Optional[int]:
        return self.record.confidence_score if self.record else None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _not_eligible(reason: str) -> Eligibility:
    return Eligibility(EnrichmentState.NOT_ELIGIBLE, reason)


def check_eligibility(
    record: TrackRecord,
    config: PipelineConfig,
    now: datetime,
    *,
    source: EnrichmentSource,
    backoff_until: Optional[datetime] = None,
) -> Eligibility:
    """Decide from an immutable snapshot whether a lookup may start now."""
    if not config.enable_auto_enrichment:
        return _not_eligible("enrichment disabled")
    if source is EnrichmentSource.INTERACTIVE and not config.enrich_on_play:
        return _not_eligible("on-play enrichment disabled")
    if source is EnrichmentSource.BACKGROUND and not config.enrich_in_background:
        return _not_eligible("background enrichment disabled")
    if record.enrichment_attempts >= config.max_enrichment_attempts:
        return _not_eligible("attempt budget exhausted")

    now = _as_utc(now)
    match record.metadata_status:
        case MetadataStatus.VERIFIED:
            return _not_eligible("already verified")
        case MetadataStatus.API_NOT_FOUND | MetadataStatus.FAILED:
            last = record.last_enrichment_attempt_at
            if last is not None and now - _as_utc(last) < timedelta(days=config.retry_not_found_days):
                return _not_eligible("retry cooldown active")
        case (
            MetadataStatus.DIRTY
            | MetadataStatus.CLEANED_LOCAL
            | MetadataStatus.ENRICHED
            | MetadataStatus.PARTIAL_VERIFIED
        ):
            pass

    if heuristics.music_content_confidence(record.title, record.artist) < config.min_music_confidence:
        return _not_eligible("not music content")
    if backoff_until is not None and now < _as_utc(backoff_until):
        return _not_eligible("backing off after transient failure")
    return Eligibility(EnrichmentState.ELIGIBLE)


def _local_or(local: Optional[str], remote: Optional[str]) -> Optional[str]:
    return local if local and local.strip() else remote or local


def merge_lookup(record: TrackRecord, lookup: LookupResult) -> TrackRecord:
    """Fold lookup data into a record; locally present values win.

    Presence and validity follow :func:`build_scoring_input`, so the stored
    record always carries the values its score was computed from.
    """
    artist_info = lookup.artist_info
    year = record.year
    if not is_valid_year(year) and lookup.year is not None:
        year = lookup.year
    return record.updated(
        lookup_id=lookup.lookup_id,
        lookup_url=lookup.url or record.lookup_url,
        album=_local_or(record.album, lookup.album),
        album_from_lookup=record.album_from_lookup or bool(lookup.album),
        genre=_local_or(record.genre, lookup.genre),
        year=year,
        external_ids=record.external_ids.merged(lookup.external_ids),
        lyrics_available=record.lyrics_available or lookup.lyrics_available,
        credits=lookup.credits if record.credits is CreditsLevel.NONE else record.credits,
        cover_art_resolution=max(record.cover_art_resolution, lookup.cover_art_resolution),
        artist_verified=record.artist_verified or bool(artist_info and artist_info.verified),
        artist_has_image=record.artist_has_image or bool(artist_info and artist_info.has_image),
    )


class EnrichmentOrchestrator:
    def __init__(
        self,
        repository: RecordRepository,
        lookup_service: LookupService,
        config: Optional[PipelineConfig] = None,
        *,
        events: Optional[EnrichmentEvents] = None,
        stats: Optional[StatsTracker] = None,
        limiter: Optional[RateLimiter] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utc_now,
        executor: Optional[Executor] = None,
    ) -> None:
        self.repository = repository
        self.lookup_service = lookup_service
        self.config = config or PipelineConfig()
        self.events = events or EnrichmentEvents()
        self.stats = stats or StatsTracker()
        self.limiter = limiter or RateLimiter(self.config.rate_limit_per_minute, clock=clock)
        self.backoff = BackoffTracker(
            self.config.backoff_base_seconds,
            self.config.backoff_max_seconds,
            clock=clock,
        )
        self.leases = RecordLeases()
        self._clock = clock
        self._now = now
        self._executor = executor
        self._halted: Optional[str] = None

    @property
    def halted(self) -> bool:
        return self._halted is not None

    def reconfigure(self, config: PipelineConfig) -> None:
        """Swap in a new config; limiter, backoff and leases carry over."""
        self.config = config
        self.limiter.resize(config.rate_limit_per_minute)
        self.backoff.configure(config.backoff_base_seconds, config.backoff_max_seconds)
        logger.info("Enrichment reconfigured for %s mode", config.mode.value)

    @property
    def request_slots(self) -> int:
        """Limiter admissions reserved per lookup: the upper bound of HTTP requests it can make."""
        slots = max(1, int(getattr(self.lookup_service, "requests_per_lookup", 1)))
        if slots > self.limiter.max_requests:
            logger.warning(
                "A lookup may make %s requests but only %s are allowed per window",
                slots,
                self.limiter.max_requests,
            )
        return slots

    def reset_halt(self, config: Optional[PipelineConfig] = None) -> None:
        if config is not None:
            self.reconfigure(config)
        if self._halted:
            logger.info("Enrichment resumed after halt: %s", self._halted)
        self._halted = None

    def _backoff_deadline(self, record_id: int, now: datetime) -> Optional[datetime]:
        remaining = self.backoff.remaining(record_id)
        if remaining <= 0:
            return None
        return now + timedelta(seconds=remaining)

    def _skip(
        self,
        record_id: int,
        state: EnrichmentState,
        reason: str,
        record: Optional[TrackRecord] = None,
    ) -> EnrichmentOutcome:
        logger.debug("Skipping record %s: %s", record_id, reason)
        self.stats.note_skipped()
        self.events.publish(Skipped(reason, record_id=record_id))
        return EnrichmentOutcome(record_id, state, record, reason)

    async def enrich(
        self,
        record_id: int,
        *,
        source: EnrichmentSource = EnrichmentSource.INTERACTIVE,
        token: Optional[CancelToken] = None,
    ) -> EnrichmentOutcome:
        if self._halted:
            raise FatalLookupError(f"Enrichment halted: {self._halted}")

        record = self.repository.read_record(record_id)
        if record is None:
            return self._skip(record_id, EnrichmentState.NOT_ELIGIBLE, "record not found")

        now = self._now()
        eligibility = check_eligibility(
            record,
            self.config,
            now,
            source=source,
            backoff_until=self._backoff_deadline(record_id, now),
        )
        if not eligibility.eligible:
            return self._skip(record_id, eligibility.state, eligibility.reason or "not eligible", record)

        if not self.leases.try_acquire(record_id):
            return self._skip(record_id, EnrichmentState.NOT_ELIGIBLE, "already enriching", record)
        try:
            return await self._run(record, token)
        finally:
            self.leases.release(record_id)

    async def _run(self, record: TrackRecord, token: Optional[CancelToken]) -> EnrichmentOutcome:
        self.events.publish(Enriching(record.title, record_id=record.id))
        if not await self.limiter.try_acquire(self.config.rate_limit_wait_seconds, self.request_slots):
            return self._skip(record.id, EnrichmentState.RATE_LIMITED, "rate limited", record)

        try:
            result = await self._lookup(record)
        except TransientLookupError as exc:
            if token and token.cancelled:
                return EnrichmentOutcome(record.id, EnrichmentState.CANCELLED, record, "cancelled")
            return self._on_transient(record, exc)
        except FatalLookupError as exc:
            self._halted = str(exc)
            logger.error("Lookup service rejected credentials, halting enrichment: %s", exc)
            self.stats.note_failed()
            self.events.publish(Failed(record.title, str(exc), record_id=record.id))
            raise

        if token and token.cancelled:
            logger.debug("Discarding lookup result for superseded record %s", record.id)
            return EnrichmentOutcome(record.id, EnrichmentState.CANCELLED, record, "cancelled")

        self.backoff.reset(record.id)
        current = self.repository.read_record(record.id) or record
        if result is None:
            return self._on_not_found(current)
        return self._on_success(current, result)

    async def _lookup(self, record: TrackRecord) -> Optional[LookupResult]:
        loop = asyncio.get_running_loop()
        call = loop.run_in_executor(self._executor, self.lookup_service.lookup, record.title, record.artist)
        try:
            return await asyncio.wait_for(call, timeout=self.config.lookup_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise TransientLookupError(
                f"lookup timed out after {self.config.lookup_timeout_seconds:.0f}s"
            ) from exc

    def _on_success(self, record: TrackRecord, result: LookupResult) -> EnrichmentOutcome:
        merged = merge_lookup(record, result)
        if self.config.enable_quality_scoring:
            validation = build_validation_result(record, result, self.config)
            confidence = score_confidence(
                build_scoring_input(merged, result, self.config),
                validation,
                build_artist_info(merged, result),
                self.config,
            )
            status, score = confidence.recommended_status, confidence.score
        else:
            status, score = MetadataStatus.ENRICHED, record.confidence_score
        now = self._now()
        if self.config.enable_snapshots and isinstance(self.repository, SnapshotStore):
            self.repository.save_snapshot(record, now)
        updated = merged.updated(
            metadata_status=status,
            confidence_score=score,
            enrichment_attempts=record.enrichment_attempts + 1,
            last_enrichment_attempt_at=now,
        )
        self.repository.write_record(updated)
        logger.info(
            "Enriched record %s (%s): score %s -> %s, %s",
            record.id,
            record.title,
            record.confidence_score,
            score,
            status.value,
        )
        self.stats.note_enriched()
        self.events.publish(Success(record.title, score, record_id=record.id))
        return EnrichmentOutcome(record.id, EnrichmentState.SUCCEEDED, updated)

    def _on_not_found(self, record: TrackRecord) -> EnrichmentOutcome:
        updated = record.updated(
            metadata_status=MetadataStatus.API_NOT_FOUND,
            enrichment_attempts=record.enrichment_attempts + 1,
            last_enrichment_attempt_at=self._now(),
        )
        self.repository.write_record(updated)
        logger.info("No lookup match for record %s (%s)", record.id, record.title)
        return self._skip(record.id, EnrichmentState.NOT_FOUND, "not found", updated)

    def _on_transient(self, record: TrackRecord, exc: TransientLookupError) -> EnrichmentOutcome:
        delay = self.backoff.record_failure(record.id)
        failures = self.backoff.failures(record.id)
        if failures < self.config.transient_failure_budget:
            logger.warning(
                "Transient lookup failure for record %s (%s), retry in %.0fs: %s",
                record.id,
                record.title,
                delay,
                exc,
            )
            return self._skip(record.id, EnrichmentState.RATE_LIMITED, f"transient error: {exc}", record)

        self.backoff.reset(record.id)
        current = self.repository.read_record(record.id) or record
        updated = current.updated(
            metadata_status=MetadataStatus.FAILED,
            enrichment_attempts=current.enrichment_attempts + 1,
            last_enrichment_attempt_at=self._now(),
        )
        self.repository.write_record(updated)
        logger.warning("Giving up on record %s after %s transient failures: %s", record.id, failures, exc)
        self.stats.note_failed()
        self.events.publish(Failed(record.title, str(exc), record_id=record.id))
        return EnrichmentOutcome(record.id, EnrichmentState.FAILED, updated, str(exc))

    async def run_batch(self, limit: Optional[int] = None) -> BatchReport:
        """Enrich the lowest-scoring records with a small worker pool."""
        if self._halted:
            raise FatalLookupError(f"Enrichment halted: {self._halted}")
        started = time.monotonic()
        if self.config.enable_snapshots and isinstance(self.repository, SnapshotStore):
            self.repository.prune_snapshots(self._now() - timedelta(days=self.config.snapshot_retention_days))
        batch_size = limit or self.config.background_batch_size
        records = self.repository.records_needing_enrichment(batch_size, self.config.max_enrichment_attempts)
        report = BatchReport(total=len(records))
        if not records:
            return report

        queue: asyncio.Queue[int] = asyncio.Queue()
        for record in records:
            queue.put_nowait(record.id)
        outcomes: List[EnrichmentOutcome] = []
        fatal: List[FatalLookupError] = []

        async def worker(worker_id: int) -> None:
            while True:
                record_id = await queue.get()
                try:
                    if fatal:
                        continue
                    outcomes.append(await self.enrich(record_id, source=EnrichmentSource.BACKGROUND))
                except FatalLookupError as exc:
                    fatal.append(exc)
                except Exception:  # pragma: no cover - logged and ignored
                    logger.exception("Worker %s failed to enrich record %s", worker_id, record_id)
                    report.failed += 1
                finally:
                    queue.task_done()

        concurrency = min(self.config.worker_concurrency, len(records))
        workers = [asyncio.create_task(worker(i)) for i in range(concurrency)]
        try:
            await queue.join()
        finally:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        for outcome in outcomes:
            match outcome.state:
                case EnrichmentState.SUCCEEDED:
                    report.enriched += 1
                case EnrichmentState.FAILED:
                    report.failed += 1
                case _:
                    report.skipped += 1
        report.elapsed_seconds = time.monotonic() - started
        logger.info(
            "Batch finished: %s enriched, %s skipped, %s failed of %s in %.1fs",
            report.enriched,
            report.skipped,
            report.failed,
            report.total,
            report.elapsed_seconds,
        )
        if fatal:
            raise fatal[0]
        return report
