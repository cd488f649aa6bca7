"""Lookup service adapters."""

from .musicbrainz import MusicBrainzLookup

__all__ = ["MusicBrainzLookup"]
