import asyncio
import threading
import unittest
from typing import List, Optional

from audio_purify.config import PipelineConfig
from audio_purify.events import Idle, Skipped
from audio_purify.models import LookupResult, MetadataStatus, TrackRecord
from audio_purify.orchestrator import EnrichmentOrchestrator, EnrichmentState
from audio_purify.playback import PlaybackEnrichmentTrigger


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class _Repository:
    def __init__(self, *records: TrackRecord) -> None:
        self.records = {r.id: r for r in records}
        self.writes: List[TrackRecord] = []

    def read_record(self, record_id: int) -> Optional[TrackRecord]:
        return self.records.get(record_id)

    def write_record(self, record: TrackRecord) -> None:
        self.writes.append(record)
        self.records[record.id] = record

    def records_needing_enrichment(self, limit: int, max_attempts: int) -> List[TrackRecord]:
        return []


class _GatedLookup:
    def __init__(self) -> None:
        self.calls: List[str] = []
        self.gate = threading.Event()
        self.gate.set()

    def lookup(self, title: str, artist: Optional[str]) -> Optional[LookupResult]:
        self.calls.append(title)
        self.gate.wait(timeout=2.0)
        return LookupResult(lookup_id=f"mb-{title}", title=title, artist=artist)


def _track(record_id: int, title: str) -> TrackRecord:
    return TrackRecord(id=record_id, title=title, artist="Artist", metadata_status=MetadataStatus.CLEANED_LOCAL)


class TestPlaybackEnrichmentTrigger(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.clock = _Clock()
        self.repo = _Repository(_track(1, "Halo"), _track(2, "Run"), _track(3, "Crazy"))
        self.lookup = _GatedLookup()
        self.config = PipelineConfig(rate_limit_per_minute=60)
        self.orchestrator = EnrichmentOrchestrator(self.repo, self.lookup, self.config)
        self.events: list = []
        self.orchestrator.events.subscribe(self.events.append)
        self.trigger = PlaybackEnrichmentTrigger(self.orchestrator, asyncio.get_running_loop(), clock=self.clock)

    async def test_same_record_twice_within_two_seconds_dispatches_once(self) -> None:
        first = self.trigger.on_track_started(self.repo.records[1])
        self.clock.now = 1.5
        second = self.trigger.on_track_started(self.repo.records[1])

        self.assertIsNotNone(first)
        self.assertIsNone(second)
        self.assertIn(Skipped("rate limited", record_id=1), self.events)
        outcome = await asyncio.wrap_future(first)
        self.assertIs(outcome.state, EnrichmentState.SUCCEEDED)
        self.assertEqual(self.lookup.calls, ["Halo"])
        self.assertEqual(self.orchestrator.stats.snapshot().skipped, 1)

    async def test_interactive_cooldown_applies_across_records(self) -> None:
        first = self.trigger.on_track_started(self.repo.records[1])
        self.clock.now = 4.9
        self.assertIsNone(self.trigger.on_track_started(self.repo.records[2]))
        self.clock.now = 5.0
        second = self.trigger.on_track_started(self.repo.records[2])
        self.assertIsNotNone(second)
        await asyncio.wrap_future(first)
        await asyncio.wrap_future(second)
        self.assertEqual(sorted(self.lookup.calls), ["Halo", "Run"])

    async def test_same_record_cooldown_outlasts_interactive_cooldown(self) -> None:
        first = self.trigger.on_track_started(self.repo.records[1])
        await asyncio.wrap_future(first)
        self.clock.now = 30.0
        self.assertIsNone(self.trigger.on_track_started(self.repo.records[1]))
        self.clock.now = 61.0
        again = self.trigger.on_track_started(self.repo.records[1])
        self.assertIsNotNone(again)
        await asyncio.wrap_future(again)

    async def test_force_bypasses_cooldowns(self) -> None:
        first = self.trigger.on_track_started(self.repo.records[1])
        await asyncio.wrap_future(first)
        forced = self.trigger.force_enrich(self.repo.records[2])
        outcome = await asyncio.wrap_future(forced)
        self.assertIs(outcome.state, EnrichmentState.SUCCEEDED)

    async def test_new_dispatch_supersedes_previous_attempt(self) -> None:
        self.lookup.gate.clear()
        first = self.trigger.on_track_started(self.repo.records[1])
        await asyncio.sleep(0.05)
        self.assertTrue(self.trigger.is_enriching)
        second = self.trigger.force_enrich(self.repo.records[2])
        self.lookup.gate.set()

        first_outcome = await asyncio.wrap_future(first)
        second_outcome = await asyncio.wrap_future(second)

        self.assertIs(first_outcome.state, EnrichmentState.CANCELLED)
        self.assertIs(second_outcome.state, EnrichmentState.SUCCEEDED)
        self.assertEqual([r.id for r in self.repo.writes], [2])
        self.assertEqual(self.lookup.calls, ["Halo", "Run"])

    async def test_cancel_emits_idle(self) -> None:
        self.lookup.gate.clear()
        future = self.trigger.on_track_started(self.repo.records[3])
        await asyncio.sleep(0.05)
        self.trigger.cancel()
        self.assertFalse(self.trigger.is_enriching)
        self.assertIsInstance(self.orchestrator.events.state, Idle)
        self.lookup.gate.set()
        outcome = await asyncio.wrap_future(future)
        self.assertIs(outcome.state, EnrichmentState.CANCELLED)
        self.assertEqual(self.repo.writes, [])

    async def test_disabled_on_play_is_ignored(self) -> None:
        orchestrator = EnrichmentOrchestrator(self.repo, self.lookup, PipelineConfig(enrich_on_play=False))
        trigger = PlaybackEnrichmentTrigger(orchestrator, asyncio.get_running_loop(), clock=self.clock)
        self.assertIsNone(trigger.on_track_started(self.repo.records[1]))
        self.assertEqual(self.lookup.calls, [])

    async def test_calls_from_other_threads_do_not_block(self) -> None:
        loop = asyncio.get_running_loop()
        future = await loop.run_in_executor(None, self.trigger.on_track_started, self.repo.records[1])
        outcome = await asyncio.wrap_future(future)
        self.assertIs(outcome.state, EnrichmentState.SUCCEEDED)


if __name__ == "__main__":
    unittest.main()
