from __future__ import annotations

import logging
import socket
import time
import urllib.error
from typing import Any, Callable, Dict, List, Optional

import musicbrainzngs

from ..config import ProviderSettings
from ..heuristics import prepare_search_terms
from ..models import (
    ArtistInfo,
    CreditsLevel,
    ExternalIds,
    FatalLookupError,
    LookupResult,
    TransientLookupError,
)

logger = logging.getLogger(__name__)

RECORDING_URL = "https://musicbrainz.org/recording/{}"
FATAL_STATUSES = frozenset({401, 403})
TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})


def _status_of(exc: Exception) -> Optional[int]:
    cause = getattr(exc, "cause", None)
    code = getattr(cause, "code", None)
    if code is None:
        code = getattr(exc, "code", None)
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def _first_artist(entity: dict) -> Optional[str]:
    phrase = entity.get("artist-credit-phrase")
    if phrase:
        return phrase
    names: List[str] = []
    for credit in entity.get("artist-credit", []):
        if isinstance(credit, dict):
            if "name" in credit:
                names.append(credit["name"])
            elif isinstance(credit.get("artist"), dict) and credit["artist"].get("name"):
                names.append(credit["artist"]["name"])
    return ", ".join(names) if names else None


def _first_artist_id(entity: dict) -> Optional[str]:
    for credit in entity.get("artist-credit", []):
        if isinstance(credit, dict) and isinstance(credit.get("artist"), dict):
            return credit["artist"].get("id")
    return None


def _parse_year(value: Optional[str]) -> Optional[int]:
    if not value or len(value) < 4 or not value[:4].isdigit():
        return None
    return int(value[:4])


def _top_tag(entity: dict) -> Optional[str]:
    tags = entity.get("tag-list", [])
    if not tags:
        return None
    best = max(tags, key=lambda tag: int(tag.get("count", 0) or 0))
    name = best.get("name")
    return name.title() if name else None


def _external_ids(relations: List[dict]) -> ExternalIds:
    found: Dict[str, str] = {}
    for rel in relations:
        target = rel.get("target") or ""
        if "open.spotify.com" in target:
            found.setdefault("spotify_id", target.rstrip("/").rsplit("/", 1)[-1])
        elif "youtube.com" in target or "youtu.be" in target:
            found.setdefault("youtube_url", target)
        elif "music.apple.com" in target or "itunes.apple.com" in target:
            found.setdefault("apple_music_id", target.rstrip("/").rsplit("/", 1)[-1])
        elif "soundcloud.com" in target:
            found.setdefault("soundcloud_id", target.rstrip("/").split("soundcloud.com/", 1)[-1])
    return ExternalIds(**found)


def _credits_level(recording: dict) -> CreditsLevel:
    artist_rels = recording.get("artist-relation-list", [])
    work_rels = recording.get("work-relation-list", [])
    if artist_rels and work_rels:
        return CreditsLevel.FULL
    if artist_rels or work_rels:
        return CreditsLevel.PARTIAL
    return CreditsLevel.NONE


class MusicBrainzLookup:
    """Recording search against MusicBrainz.

    A match needs an ``ext:score`` of at least ``min_score``; anything below is
    reported as not found. HTTP 401/403 raise :class:`FatalLookupError`,
    network failures, 429 and 5xx raise :class:`TransientLookupError`.

    A lookup is a search plus a detail fetch, each retried up to
    ``network_retries`` times; :attr:`requests_per_lookup` is that upper bound
    and is what the orchestrator reserves from its rate limiter.
    """

    REQUESTS_PER_ATTEMPT = 2

    def __init__(self, settings: ProviderSettings, *, min_score: int = 80, limit: int = 5) -> None:
        self.settings = settings
        self.min_score = min_score
        self.limit = limit
        musicbrainzngs.set_useragent(
            "audio-purify",
            "0.1",
            contact=settings.musicbrainz_useragent,
        )
        if settings.musicbrainz_hostname:
            musicbrainzngs.set_hostname(settings.musicbrainz_hostname)

    @property
    def requests_per_lookup(self) -> int:
        retries = max(0, int(self.settings.network_retries or 0))
        return self.REQUESTS_PER_ATTEMPT * (1 + retries)

    def lookup(self, title: str, artist: Optional[str]) -> Optional[LookupResult]:
        search_title, search_artist = prepare_search_terms(title, artist)
        if not search_title:
            logger.debug("Nothing to search for %r / %r", title, artist)
            return None
        query: Dict[str, Any] = {"recording": search_title, "limit": self.limit}
        if search_artist:
            query["artist"] = search_artist

        response = self._call(lambda: musicbrainzngs.search_recordings(**query), label="recording search")
        if response is None:
            return None
        candidates = response.get("recording-list", [])
        best = self._best_candidate(candidates)
        if best is None:
            logger.debug("No MusicBrainz match above %s for %r", self.min_score, search_title)
            return None

        details = self._call(
            lambda: musicbrainzngs.get_recording_by_id(
                best["id"],
                includes=["artists", "releases", "tags", "url-rels", "artist-rels", "work-rels"],
            ),
            label="recording details",
        )
        recording = dict(best)
        if details:
            recording.update(details.get("recording", {}))
        return self._to_result(recording, best)

    def _best_candidate(self, candidates: List[dict]) -> Optional[dict]:
        scored = [(self._score(candidate), candidate) for candidate in candidates if candidate.get("id")]
        scored = [(score, candidate) for score, candidate in scored if score >= self.min_score]
        if not scored:
            return None
        return max(scored, key=lambda item: item[0])[1]

    @staticmethod
    def _score(candidate: dict) -> int:
        raw = candidate.get("ext:score", candidate.get("ext-score", 0))
        try:
            return int(raw)
        except (TypeError, ValueError):
            return 0

    def _to_result(self, recording: dict, candidate: dict) -> LookupResult:
        releases = recording.get("release-list", [])
        release = releases[0] if releases else {}
        artist_id = _first_artist_id(recording)
        return LookupResult(
            lookup_id=recording["id"],
            title=recording.get("title") or candidate.get("title", ""),
            artist=_first_artist(recording),
            album=release.get("title"),
            genre=_top_tag(recording),
            year=_parse_year(release.get("date")),
            url=RECORDING_URL.format(recording["id"]),
            credits=_credits_level(recording),
            external_ids=_external_ids(recording.get("url-relation-list", [])),
            artist_info=ArtistInfo(verified=artist_id is not None, lookup_id=artist_id) if artist_id else None,
            score=self._score(candidate) / 100.0,
        )

    def _call(self, fn: Callable[[], dict], *, label: str) -> Optional[dict]:
        try:
            return self._run_with_retries(fn)
        except musicbrainzngs.ResponseError as exc:
            status = _status_of(exc)
            if status in FATAL_STATUSES:
                raise FatalLookupError(f"MusicBrainz {label} rejected: {exc}", status=status) from exc
            if status in TRANSIENT_STATUSES:
                raise TransientLookupError(f"MusicBrainz {label} failed: {exc}", status=status) from exc
            logger.debug("MusicBrainz %s returned %s: %s", label, status, exc)
            return None
        except Exception as exc:
            auth_error = getattr(musicbrainzngs, "AuthenticationError", None)
            if auth_error and isinstance(exc, auth_error):
                raise FatalLookupError(f"MusicBrainz {label} rejected: {exc}", status=401) from exc
            if self._is_transient_network_error(exc):
                raise TransientLookupError(f"MusicBrainz {label} failed: {exc}", status=_status_of(exc)) from exc
            raise

    def _run_with_retries(self, fn: Callable[[], dict]) -> dict:
        retries = int(self.settings.network_retries or 0)
        backoff = float(self.settings.network_retry_backoff_seconds or 0.0)
        attempts = max(1, 1 + retries)
        for attempt in range(1, attempts + 1):
            try:
                return fn()
            except Exception as exc:
                if attempt >= attempts or not self._is_transient_network_error(exc):
                    raise
                sleep_for = max(0.0, backoff) * (2 ** (attempt - 1))
                if sleep_for:
                    time.sleep(sleep_for)
        raise AssertionError("unreachable")  # pragma: no cover

    @staticmethod
    def _is_transient_network_error(exc: Exception) -> bool:
        if isinstance(exc, (socket.gaierror, urllib.error.URLError, TimeoutError, ConnectionError)):
            return True
        return isinstance(exc, musicbrainzngs.NetworkError)
