from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator


class ConfigError(Exception):
    """Raised when a settings file cannot be loaded or fails validation."""


class ProcessingMode(str, Enum):
    FAST_LOCAL_ONLY = "FAST_LOCAL_ONLY"
    BALANCED = "BALANCED"
    FULL_ENRICHMENT = "FULL_ENRICHMENT"
    CONSERVATIVE = "CONSERVATIVE"


class SimilarityWeights(BaseModel):
    model_config = ConfigDict(frozen=True)

    levenshtein: float = 0.50
    jaccard: float = 0.30
    phonetic: float = 0.20

    @model_validator(mode="after")
    def _check_sum(self) -> "SimilarityWeights":
        for value in (self.levenshtein, self.jaccard, self.phonetic):
            if value < 0:
                raise ValueError("similarity weights must be non-negative")
        total = self.levenshtein + self.jaccard + self.phonetic
        if not 0.99 <= total <= 1.01:
            raise ValueError(f"similarity weights must sum to 1.0 (got {total:.3f})")
        return self


class PipelineConfig(BaseModel):
    """Every knob of the purification pipeline.

    Instances are frozen once validated. Switching processing mode builds a new
    instance with :meth:`for_mode`; nothing mutates a live config.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    mode: ProcessingMode = ProcessingMode.BALANCED

    # pre-processing
    min_title_length: int = Field(1, ge=0)
    max_title_length: int = Field(200, ge=1)
    min_music_confidence: float = Field(0.6, ge=0.0, le=1.0)

    # similarity
    min_title_similarity: float = Field(0.4, ge=0.0, le=1.0)
    min_artist_similarity: float = Field(0.3, ge=0.0, le=1.0)
    verified_title_similarity: float = Field(0.8, ge=0.0, le=1.0)
    verified_artist_similarity: float = Field(0.8, ge=0.0, le=1.0)
    similarity_weights: SimilarityWeights = SimilarityWeights()

    # lookup service
    rate_limit_per_minute: int = Field(10, ge=1)
    lookup_timeout_seconds: float = Field(10.0, gt=0)
    backoff_base_seconds: float = Field(1.0, ge=0)
    backoff_max_seconds: float = Field(60.0, ge=0)
    transient_failure_budget: int = Field(5, ge=1)
    rate_limit_wait_seconds: float = Field(30.0, ge=0)

    # enrichment
    enable_auto_enrichment: bool = True
    enrich_on_play: bool = True
    enrich_in_background: bool = True
    background_batch_size: int = Field(50, ge=1)
    background_interval_hours: int = Field(6, ge=1)
    max_enrichment_attempts: int = Field(3, ge=0)
    retry_not_found_days: int = Field(7, ge=0)
    worker_concurrency: int = Field(2, ge=1)

    # on-play trigger
    same_record_cooldown_seconds: float = Field(60.0, ge=0)
    interactive_cooldown_seconds: float = Field(5.0, ge=0)

    # scoring
    verified_threshold: int = Field(80, ge=0, le=100)
    partial_threshold: int = Field(60, ge=0, le=100)
    enable_quality_scoring: bool = True

    # persistence
    enable_snapshots: bool = True
    snapshot_retention_days: int = Field(7, ge=0)

    @model_validator(mode="after")
    def _check_thresholds(self) -> "PipelineConfig":
        if self.partial_threshold > self.verified_threshold:
            raise ValueError("partial_threshold cannot exceed verified_threshold")
        if self.min_title_length > self.max_title_length:
            raise ValueError("min_title_length cannot exceed max_title_length")
        if self.backoff_base_seconds > self.backoff_max_seconds:
            raise ValueError("backoff_base_seconds cannot exceed backoff_max_seconds")
        return self

    @classmethod
    def for_mode(cls, mode: ProcessingMode | str, **overrides: Any) -> "PipelineConfig":
        mode = ProcessingMode(mode)
        values: Dict[str, Any] = {"mode": mode}
        values.update(MODE_PRESETS[mode])
        values.update(overrides)
        return cls(**values)

    def with_mode(self, mode: ProcessingMode | str) -> "PipelineConfig":
        return PipelineConfig.for_mode(mode)

    @classmethod
    def reset_to_defaults(cls) -> "PipelineConfig":
        return cls()

    @property
    def enrichment_enabled(self) -> bool:
        return self.enable_auto_enrichment and (self.enrich_on_play or self.enrich_in_background)


# Each preset lists every field its mode governs so that applying a mode
# always overwrites the whole group.
MODE_PRESETS: Dict[ProcessingMode, Dict[str, Any]] = {
    ProcessingMode.FAST_LOCAL_ONLY: {
        "enable_auto_enrichment": False,
        "enrich_on_play": False,
        "enrich_in_background": False,
        "verified_threshold": 60,
    },
    ProcessingMode.BALANCED: {
        "enable_auto_enrichment": True,
        "enrich_on_play": True,
        "enrich_in_background": True,
        "background_batch_size": 50,
        "rate_limit_per_minute": 10,
    },
    ProcessingMode.FULL_ENRICHMENT: {
        "enable_auto_enrichment": True,
        "enrich_on_play": True,
        "enrich_in_background": True,
        "background_batch_size": 100,
        "rate_limit_per_minute": 15,
    },
    ProcessingMode.CONSERVATIVE: {
        "min_title_similarity": 0.7,
        "min_artist_similarity": 0.6,
        "verified_threshold": 90,
        "enable_snapshots": True,
        "max_enrichment_attempts": 5,
    },
}


class PipelineSettings(BaseModel):
    mode: ProcessingMode = ProcessingMode.BALANCED
    overrides: Dict[str, Any] = Field(default_factory=dict)

    def build(self) -> PipelineConfig:
        return PipelineConfig.for_mode(self.mode, **self.overrides)


class ProviderSettings(BaseModel):
    musicbrainz_useragent: str = "audio-purify/0.1 (unknown@example.com)"
    musicbrainz_hostname: Optional[str] = None
    network_retries: int = 0
    network_retry_backoff_seconds: float = 0.5


class StoreSettings(BaseModel):
    path: Path = Path("./cache/records.sqlite3")

    @field_validator("path", mode="before")
    @classmethod
    def _expand_path(cls, value: str | Path) -> Path:
        return Path(value).expanduser().resolve()


class LibrarySettings(BaseModel):
    roots: List[Path] = Field(default_factory=list)
    include_extensions: List[str] = Field(default_factory=lambda: [".mp3", ".flac", ".m4a", ".ogg"])
    exclude_patterns: List[str] = Field(default_factory=list)

    @field_validator("roots", mode="before")
    @classmethod
    def _expand_roots(cls, values: List[str]) -> List[Path]:
        return [Path(v).expanduser().resolve() for v in values or []]


class Settings(BaseModel):
    pipeline: PipelineSettings = PipelineSettings()
    providers: ProviderSettings = ProviderSettings()
    store: StoreSettings = StoreSettings()
    library: LibrarySettings = LibrarySettings()

    @classmethod
    def load(cls, path: Path) -> "Settings":
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
        try:
            settings = cls.model_validate(raw)
            settings.pipeline.build()
        except ValidationError as exc:
            raise ConfigError(f"Invalid settings in {path}:\n{exc}") from exc
        return settings


def find_config(explicit_path: Optional[Path]) -> Path:
    if explicit_path:
        return explicit_path
    cwd = Path.cwd()
    for candidate in (cwd / "config.yaml", cwd / "config.yml"):
        if candidate.exists():
            return candidate
    raise FileNotFoundError("Could not find config.yaml - pass --config explicitly.")
