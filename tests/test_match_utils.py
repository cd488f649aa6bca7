import unittest

from audio_purify.config import SimilarityWeights
from audio_purify.match_utils import (
    hybrid_similarity,
    jaccard_similarity,
    levenshtein_similarity,
    normalize_match_text,
    phonetic_similarity,
)


class TestNormalizeMatchText(unittest.TestCase):
    def test_folds_accents_and_punctuation(self) -> None:
        self.assertEqual(normalize_match_text("Beyoncé - Halo!"), "beyonce halo")

    def test_empty_stays_empty(self) -> None:
        self.assertEqual(normalize_match_text("  ...  "), "")

    def test_keeps_non_latin_letters(self) -> None:
        self.assertEqual(normalize_match_text("Кино - Группа крови!"), "кино группа крови")
        self.assertEqual(normalize_match_text("紅蓮華 (TV Size)"), "紅蓮華 tv size")

    def test_non_latin_marks_are_not_folded(self) -> None:
        self.assertNotEqual(normalize_match_text("ガ"), normalize_match_text("カ"))
        self.assertNotEqual(normalize_match_text("й"), normalize_match_text("и"))


class TestSimilarityMetrics(unittest.TestCase):
    def test_levenshtein_is_normalized_by_longest_string(self) -> None:
        self.assertAlmostEqual(levenshtein_similarity("kitten", "sitting"), 1 - 3 / 7)

    def test_jaccard_uses_token_sets(self) -> None:
        self.assertAlmostEqual(jaccard_similarity("a b c", "b c d"), 0.5)
        self.assertAlmostEqual(jaccard_similarity("love love song", "song love"), 1.0)

    def test_phonetic_matches_spelling_variants(self) -> None:
        self.assertAlmostEqual(phonetic_similarity("Smith", "Smyth"), 1.0)

    def test_missing_input_scores_zero(self) -> None:
        for fn in (levenshtein_similarity, jaccard_similarity, phonetic_similarity, hybrid_similarity):
            self.assertEqual(fn(None, "abc"), 0.0)
            self.assertEqual(fn("abc", ""), 0.0)


class TestHybridSimilarity(unittest.TestCase):
    def test_identity_is_one_for_any_valid_weights(self) -> None:
        triples = [(0.5, 0.3, 0.2), (1.0, 0.0, 0.0), (0.0, 0.0, 1.0), (0.334, 0.333, 0.333), (0.2, 0.8, 0.0)]
        for lev, jac, phon in triples:
            weights = SimilarityWeights(levenshtein=lev, jaccard=jac, phonetic=phon)
            for text in ("Bohemian Rhapsody", "x", "Blink-182", "Ünïcödé Söng", "東京事変", "Кино", "أغنية"):
                self.assertEqual(hybrid_similarity(text, text, weights), 1.0)

    def test_close_titles_beat_unrelated_titles(self) -> None:
        close = hybrid_similarity("Bohemian Rhapsody", "Bohemian Rapsody")
        far = hybrid_similarity("Bohemian Rhapsody", "Stairway to Heaven")
        self.assertGreater(close, 0.55)
        self.assertLess(far, 0.4)
        self.assertGreater(close, far)

    def test_result_stays_in_unit_interval(self) -> None:
        for a, b in [("a", "b"), ("The Beatles", "Beatles, The"), ("123", "321")]:
            value = hybrid_similarity(a, b)
            self.assertGreaterEqual(value, 0.0)
            self.assertLessEqual(value, 1.0)


if __name__ == "__main__":
    unittest.main()
