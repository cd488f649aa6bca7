from __future__ import annotations

import re
from typing import Optional, Tuple

GENERIC_GENRES = frozenset(
    {
        "",
        "music",
        "other",
        "others",
        "unknown",
        "misc",
        "miscellaneous",
        "various",
        "genre",
        "none",
    }
)

UNKNOWN_ALBUMS = frozenset(
    {
        "unknown",
        "unknown album",
        "<unknown>",
        "untitled",
        "no album",
        "none",
        "album",
        "download",
        "downloads",
    }
)

NON_MUSIC_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\btrailer\b",
        r"\binterview\b",
        r"behind the scenes",
        r"making of",
        r"\bdocumentary\b",
        r"\blecture\b",
        r"\bspeech\b",
        r"\bpodcast\b",
        r"\bepisode\b",
        r"\bchapter\b",
        r"\bpart \d",
        r"\b\d+ minutes\b",
    )
]

JUNK_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"https?://",
        r"\bwww\.",
        r"\.(com|net|org|ru|info)\b",
        r"downloaded (from|via|with)",
        r"\bfree download\b",
        r"\bripped by\b",
        r"\bmp3\s*(skull|juices|clan)\b",
        r"\bpromo only\b",
        r"\b(320|128|192|256)\s*kbps\b",
    )
]

_NOISE_SUFFIX = re.compile(
    r"(?i)\s*[-|]?\s*\b(official\s*(music)?\s*(video|audio|clip)|visualizer|lyrics?|letra|"
    r"hd|hq|subtitulado|sub\s?espa[nñ]ol|traducci[oó]n)\b"
)
_BRACKETED = re.compile(r"[\(\[\{][^)\]\}]{0,80}[\)\]\}]")
_FEATURING = re.compile(r"(?i)\s+(ft\.?|feat\.?|featuring)\s+.+$")
_ARTIST_NOISE = re.compile(
    r"(?i)\s*[-|]?\s*\b(topic|official|vevo|channel|records?|productions?|entertainment)\b"
)
_TRAILING_SYMBOLS = re.compile(r"[\-|·•~_]+$")
_LEADING_SYMBOLS = re.compile(r"^\s*[-|]+\s*")
_SPACES = re.compile(r"\s{2,}")

_TITLE_LIKE_ARTIST = re.compile(
    r"(?i)[(\[{].{2,50}?[)\]}]|\b(remix|lyrics?|official|video|audio|live|acoustic|cover)\b"
)
_ARTIST_LIKE_TITLE = re.compile(r"(?i)^(dj|mc|lil|the)\s+\S+|\b(band|crew|orchestra|ensemble|trio|quartet)\b")


def is_generic_genre(genre: Optional[str]) -> bool:
    if genre is None:
        return False
    return genre.strip().lower() in GENERIC_GENRES


def is_unknown_album(album: Optional[str]) -> bool:
    if album is None:
        return False
    return album.strip().lower() in UNKNOWN_ALBUMS


def has_metadata_junk(*values: Optional[str]) -> bool:
    for value in values:
        if not value:
            continue
        if any(pattern.search(value) for pattern in JUNK_PATTERNS):
            return True
    return False


def is_music_content(title: Optional[str], artist: Optional[str] = None) -> bool:
    text = f"{title or ''} {artist or ''}"
    return not any(pattern.search(text) for pattern in NON_MUSIC_PATTERNS)


def music_content_confidence(title: Optional[str], artist: Optional[str] = None) -> float:
    return 1.0 if is_music_content(title, artist) else 0.5


def clean_search_title(title: str) -> str:
    cleaned = _NOISE_SUFFIX.sub("", title)
    cleaned = _BRACKETED.sub("", cleaned)
    cleaned = _FEATURING.sub("", cleaned)
    cleaned = _TRAILING_SYMBOLS.sub("", cleaned)
    cleaned = cleaned.replace("–", "-").replace("—", "-")
    cleaned = _LEADING_SYMBOLS.sub("", cleaned)
    return _SPACES.sub(" ", cleaned).strip()


def clean_search_artist(artist: Optional[str]) -> Optional[str]:
    if not artist:
        return None
    cleaned = _ARTIST_NOISE.sub("", artist)
    cleaned = _TRAILING_SYMBOLS.sub("", cleaned)
    cleaned = _LEADING_SYMBOLS.sub("", cleaned)
    cleaned = _SPACES.sub(" ", cleaned).strip()
    return cleaned or None


def fix_swapped_artist_title(title: str, artist: Optional[str]) -> Tuple[str, Optional[str]]:
    """Swap title and artist when the artist field reads like a song title and vice versa."""
    if not artist:
        return title, artist
    if _TITLE_LIKE_ARTIST.search(artist) and _ARTIST_LIKE_TITLE.search(title):
        return artist, title
    return title, artist


def prepare_search_terms(title: str, artist: Optional[str]) -> Tuple[str, Optional[str]]:
    """Return cleaned (title, artist) for a lookup query; an empty title means skip."""
    if not is_music_content(title, artist):
        return "", artist
    title, artist = fix_swapped_artist_title(title, artist)
    return clean_search_title(title), clean_search_artist(artist)
