import unittest

from audio_purify.config import PipelineConfig
from audio_purify.evaluators import (
    CoverArtTier,
    build_artist_info,
    build_scoring_input,
    cover_art_tier,
    has_generic_genre,
    has_specific_genre,
    is_valid_title,
    is_valid_year,
)
from audio_purify.models import ArtistInfo, CreditsLevel, ExternalIds, LookupResult, TrackRecord


class TestFieldEvaluators(unittest.TestCase):
    def test_cover_art_tiers(self) -> None:
        self.assertIs(cover_art_tier(None), CoverArtTier.NONE)
        self.assertIs(cover_art_tier(0), CoverArtTier.NONE)
        self.assertIs(cover_art_tier(1), CoverArtTier.LOW)
        self.assertIs(cover_art_tier(599), CoverArtTier.LOW)
        self.assertIs(cover_art_tier(600), CoverArtTier.NORMAL)
        self.assertIs(cover_art_tier(999), CoverArtTier.NORMAL)
        self.assertIs(cover_art_tier(1000), CoverArtTier.HD)

    def test_year_bounds(self) -> None:
        self.assertFalse(is_valid_year(None))
        self.assertFalse(is_valid_year(1899))
        self.assertTrue(is_valid_year(1900))
        self.assertTrue(is_valid_year(2100))
        self.assertFalse(is_valid_year(2101))

    def test_genre_classification(self) -> None:
        self.assertTrue(has_specific_genre("Shoegaze"))
        self.assertFalse(has_generic_genre("Shoegaze"))
        self.assertTrue(has_generic_genre("Unknown"))
        self.assertTrue(has_generic_genre(" music "))
        self.assertFalse(has_specific_genre(None))
        self.assertFalse(has_generic_genre(None))

    def test_title_length_follows_config(self) -> None:
        config = PipelineConfig(min_title_length=3, max_title_length=10)
        self.assertFalse(is_valid_title("ab", config))
        self.assertTrue(is_valid_title("abc", config))
        self.assertFalse(is_valid_title("a" * 11, config))
        self.assertFalse(is_valid_title("   ", config))


class TestBuildScoringInput(unittest.TestCase):
    def test_bare_record_maps_to_false_everywhere(self) -> None:
        data = build_scoring_input(TrackRecord(id=1, title=""))
        self.assertFalse(data.has_valid_title)
        self.assertFalse(data.has_artist)
        self.assertFalse(data.has_album)
        self.assertFalse(data.has_genre)
        self.assertFalse(data.has_valid_year)
        self.assertFalse(data.has_lookup_link)
        self.assertIs(data.credits, CreditsLevel.NONE)
        self.assertIs(data.cover_art_tier, CoverArtTier.NONE)

    def test_lookup_fills_gaps_only(self) -> None:
        record = TrackRecord(id=1, title="Halo", artist="Beyonce", genre="R&B", cover_art_resolution=300)
        lookup = LookupResult(
            lookup_id="mbid",
            title="Halo",
            artist="Beyoncé",
            album="I Am... Sasha Fierce",
            genre="Pop",
            year=2008,
            cover_art_resolution=1200,
            lyrics_available=True,
            credits=CreditsLevel.PARTIAL,
            external_ids=ExternalIds(spotify_id="sp1"),
        )
        data = build_scoring_input(record, lookup)
        self.assertTrue(data.has_album)
        self.assertTrue(data.has_album_from_lookup)
        self.assertTrue(data.has_specific_genre)
        self.assertTrue(data.has_valid_year)
        self.assertTrue(data.has_lookup_link)
        self.assertTrue(data.has_lyrics)
        self.assertTrue(data.has_spotify_id)
        self.assertFalse(data.has_youtube_url)
        self.assertIs(data.credits, CreditsLevel.PARTIAL)
        self.assertIs(data.cover_art_tier, CoverArtTier.HD)

    def test_unknown_album_and_junk_are_flagged(self) -> None:
        record = TrackRecord(id=1, title="Track 01 www.freemp3.com", artist="Someone", album="Unknown Album")
        data = build_scoring_input(record)
        self.assertTrue(data.has_album)
        self.assertTrue(data.has_unknown_album)
        self.assertTrue(data.has_metadata_junk)

    def test_non_music_content_lowers_confidence(self) -> None:
        data = build_scoring_input(TrackRecord(id=1, title="Official Trailer", artist="Studio"))
        self.assertEqual(data.music_confidence, 0.5)

    def test_artist_info_prefers_lookup(self) -> None:
        record = TrackRecord(id=1, title="x", artist_has_image=True)
        lookup = LookupResult(lookup_id="m", title="x", artist_info=ArtistInfo(verified=True))
        info = build_artist_info(record, lookup)
        self.assertTrue(info.verified)
        self.assertTrue(info.has_image)
        self.assertIsNone(build_artist_info(TrackRecord(id=2, title="y")))


if __name__ == "__main__":
    unittest.main()
