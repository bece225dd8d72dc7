"""
Configuration management.

Loads settings from environment variables and .env file.
Prefix: STRATA_ (nested fields use "__", e.g. STRATA_ENGINE__CONTEXT__MAX_SIZE)
"""

from datetime import timedelta
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ContextConfig(BaseModel):
    """Working-set limits for the context index."""

    max_size: int = Field(default=100, gt=0, description="Max observations kept")
    retention: timedelta = Field(
        default=timedelta(hours=1),
        description="Never-accessed observations older than this are consolidated away",
    )
    similarity_threshold: float = Field(default=0.2, ge=0.0, le=1.0)
    consolidation_batch_size: int = Field(default=500, gt=0)


class ConceptConfig(BaseModel):
    """Concept graph limits and clustering knobs."""

    max_concepts: int = Field(default=10_000, gt=0)
    similarity_threshold: float = Field(default=0.6, ge=0.0)
    cluster_size: int = Field(default=50, gt=1, description="Graph size that triggers clustering")
    max_clusters: int = Field(default=100, gt=0)
    min_frequency: int = Field(default=2, ge=1)
    stale_after: timedelta = Field(default=timedelta(days=7))
    consolidation_batch_size: int = Field(default=500, gt=0)


class TemporalConfig(BaseModel):
    """Event log limits, compaction and pattern detection."""

    max_events: int = Field(default=50_000, gt=0)
    time_window: timedelta = Field(
        default=timedelta(days=30),
        description="Events older than this are compacted",
    )
    compression_ratio: float = Field(default=0.1, gt=0.0, le=1.0)
    relationship_window: timedelta = Field(default=timedelta(hours=1))
    pattern_window: int = Field(default=20, ge=4, description="Recent events scanned for patterns")
    pattern_retention: timedelta = Field(default=timedelta(days=30))
    max_patterns: int = Field(default=1000, gt=0)
    consolidation_batch_size: int = Field(default=500, gt=0, description="Events compressed per locked step")


class EngineConfig(BaseModel):
    """Orchestrator settings plus one block per index."""

    context: ContextConfig = Field(default_factory=ContextConfig)
    concepts: ConceptConfig = Field(default_factory=ConceptConfig)
    temporal: TemporalConfig = Field(default_factory=TemporalConfig)

    cache_enabled: bool = True
    cache_size: int = Field(default=1000, gt=0)
    cache_ttl: timedelta = Field(default=timedelta(minutes=5))

    consolidation_threshold: float = Field(
        default=0.8, gt=0.0, le=1.0, description="Utilization that schedules consolidation"
    )
    max_concurrent_requests: int = Field(default=8, gt=0)

    consolidation_interval: timedelta = Field(default=timedelta(minutes=30))
    snapshot_interval: timedelta = Field(default=timedelta(hours=1))
    cache_sweep_interval: timedelta = Field(default=timedelta(minutes=5))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="STRATA_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    # Storage
    data_dir: Path = Field(default=Path("data"), description="Data storage directory")
    db_name: str = Field(default="strata.db", description="SQLite snapshot database name")
    snapshot_name: str = Field(default="main", description="Snapshot key for engine state")
    snapshot_backups: int = Field(default=5, ge=1, description="Snapshots kept per name")

    engine: EngineConfig = Field(default_factory=EngineConfig)

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name


def get_settings() -> Settings:
    """Build settings from the environment."""
    return Settings()
