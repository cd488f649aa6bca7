import unittest
from datetime import datetime, timedelta, timezone

from audio_purify.config import PipelineConfig, ProcessingMode
from audio_purify.models import MetadataStatus, TrackRecord
from audio_purify.orchestrator import EnrichmentSource, EnrichmentState, check_eligibility

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _check(record: TrackRecord, config: PipelineConfig | None = None, **kwargs):
    return check_eligibility(
        record,
        config or PipelineConfig(),
        kwargs.pop("now", NOW),
        source=kwargs.pop("source", EnrichmentSource.INTERACTIVE),
        **kwargs,
    )


class TestEligibility(unittest.TestCase):
    def test_fresh_record_is_eligible(self) -> None:
        result = _check(TrackRecord(id=1, title="Halo"))
        self.assertTrue(result.eligible)
        self.assertIs(result.state, EnrichmentState.ELIGIBLE)

    def test_attempt_budget_always_wins(self) -> None:
        config = PipelineConfig()
        for status in MetadataStatus:
            record = TrackRecord(
                id=1,
                title="Halo",
                metadata_status=status,
                enrichment_attempts=config.max_enrichment_attempts,
            )
            result = _check(record, config, source=EnrichmentSource.BACKGROUND)
            self.assertIs(result.state, EnrichmentState.NOT_ELIGIBLE, status)

    def test_verified_is_terminal(self) -> None:
        record = TrackRecord(id=1, title="Halo", metadata_status=MetadataStatus.VERIFIED)
        self.assertEqual(_check(record).reason, "already verified")

    def test_not_found_cooldown(self) -> None:
        config = PipelineConfig()
        record = TrackRecord(
            id=1,
            title="Halo",
            metadata_status=MetadataStatus.API_NOT_FOUND,
            enrichment_attempts=1,
            last_enrichment_attempt_at=NOW,
        )
        self.assertFalse(_check(record, config).eligible)
        later = NOW + timedelta(days=config.retry_not_found_days + 1)
        self.assertTrue(_check(record, config, now=later).eligible)

    def test_failed_records_share_the_cooldown(self) -> None:
        record = TrackRecord(
            id=1,
            title="Halo",
            metadata_status=MetadataStatus.FAILED,
            last_enrichment_attempt_at=NOW - timedelta(days=1),
        )
        self.assertFalse(_check(record).eligible)

    def test_missing_timestamp_is_eligible(self) -> None:
        record = TrackRecord(id=1, title="Halo", metadata_status=MetadataStatus.API_NOT_FOUND)
        self.assertTrue(_check(record).eligible)

    def test_naive_timestamps_are_treated_as_utc(self) -> None:
        record = TrackRecord(
            id=1,
            title="Halo",
            metadata_status=MetadataStatus.API_NOT_FOUND,
            last_enrichment_attempt_at=datetime(2024, 4, 1, 12, 0),
        )
        self.assertTrue(_check(record).eligible)

    def test_source_flags(self) -> None:
        record = TrackRecord(id=1, title="Halo")
        no_play = PipelineConfig(enrich_on_play=False)
        self.assertFalse(_check(record, no_play).eligible)
        self.assertTrue(_check(record, no_play, source=EnrichmentSource.BACKGROUND).eligible)
        fast = PipelineConfig.for_mode(ProcessingMode.FAST_LOCAL_ONLY)
        self.assertFalse(_check(record, fast, source=EnrichmentSource.BACKGROUND).eligible)

    def test_non_music_content_is_not_looked_up(self) -> None:
        record = TrackRecord(id=1, title="Official Trailer", artist="Studio")
        result = _check(record)
        self.assertFalse(result.eligible)
        self.assertEqual(result.reason, "not music content")
        self.assertTrue(_check(record, PipelineConfig(min_music_confidence=0.5)).eligible)

    def test_backoff_window(self) -> None:
        record = TrackRecord(id=1, title="Halo")
        blocked = _check(record, backoff_until=NOW + timedelta(seconds=4))
        self.assertFalse(blocked.eligible)
        self.assertIn("backing off", blocked.reason)
        self.assertTrue(_check(record, backoff_until=NOW).eligible)


if __name__ == "__main__":
    unittest.main()
