from __future__ import annotations

import unicodedata
from typing import Optional

import jellyfish
from rapidfuzz.distance import Levenshtein

from .config import SimilarityWeights

# Accents are only folded on Latin letters; in other scripts marks such as
# dakuten or the breve of "й" tell letters apart.
_LATIN_END = "\u0250"


def _fold_latin_accents(value: str) -> str:
    kept: list[str] = []
    base = ""
    for ch in unicodedata.normalize("NFKD", value):
        if unicodedata.combining(ch):
            if base and base < _LATIN_END:
                continue
        else:
            base = ch
        kept.append(ch)
    return "".join(kept)


def normalize_match_text(value: str) -> str:
    """Casefold and strip Latin accents; letters and digits of any script are kept."""
    cleaned = _fold_latin_accents(value)
    cleaned = unicodedata.normalize("NFKC", cleaned).casefold()
    # letters, digits and the marks attached to them; everything else separates words
    cleaned = "".join(ch if unicodedata.category(ch)[0] in "LNM" else " " for ch in cleaned)
    return " ".join(cleaned.split())


def _tokens(value: str) -> set[str]:
    return set(value.split())


def levenshtein_similarity(a: Optional[str], b: Optional[str]) -> float:
    norm_a = normalize_match_text(a or "").replace(" ", "")
    norm_b = normalize_match_text(b or "").replace(" ", "")
    if not norm_a or not norm_b:
        return 0.0
    return Levenshtein.normalized_similarity(norm_a, norm_b)


def jaccard_similarity(a: Optional[str], b: Optional[str]) -> float:
    tokens_a = _tokens(normalize_match_text(a or ""))
    tokens_b = _tokens(normalize_match_text(b or ""))
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def _phonetic_codes(value: str) -> set[str]:
    codes = set()
    for token in _tokens(normalize_match_text(value)):
        # metaphone only understands latin letters; digits and other scripts compare verbatim
        code = jellyfish.metaphone(token) if token.isascii() and token.isalpha() else token
        if code:
            codes.add(code)
    return codes


def phonetic_similarity(a: Optional[str], b: Optional[str]) -> float:
    codes_a = _phonetic_codes(a or "")
    codes_b = _phonetic_codes(b or "")
    if not codes_a or not codes_b:
        return 0.0
    return len(codes_a & codes_b) / len(codes_a | codes_b)


def hybrid_similarity(
    a: Optional[str],
    b: Optional[str],
    weights: Optional[SimilarityWeights] = None,
) -> float:
    """Weighted blend of edit distance, token overlap and phonetic agreement."""
    weights = weights or SimilarityWeights()
    if not a or not b:
        return 0.0
    if normalize_match_text(a) == normalize_match_text(b) and normalize_match_text(a):
        return 1.0
    score = (
        weights.levenshtein * levenshtein_similarity(a, b)
        + weights.jaccard * jaccard_similarity(a, b)
        + weights.phonetic * phonetic_similarity(a, b)
    )
    return max(0.0, min(1.0, score))
