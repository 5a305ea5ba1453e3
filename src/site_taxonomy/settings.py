from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TaxonomySettings(BaseSettings):
    """Unified configuration for the taxonomy core.

    Environment variables are prefixed with SITE_TAXONOMY_.
    """

    model_config = SettingsConfigDict(env_prefix="SITE_TAXONOMY_", extra="ignore")

    # --- Core ---
    log_level: str = Field(default="INFO", description="Python logging level")

    # --- Hierarchy ---
    deep_hierarchy_warning: int = Field(default=10, description="Warn above this many levels")
    unbalanced_children: int = Field(default=20, description="Children count that marks a node unbalanced")

    # --- Similarity ---
    similar_min_score: float = 0.3
    duplicate_threshold: float = 0.85
    cluster_threshold: float = 0.5
    cluster_min_size: int = 3
    blocking_window: int = Field(default=10, ge=1, description="Neighbours compared per blocking key in large blocks")

    # --- Pipeline ---
    batch_size: int = Field(default=100, ge=1)
    workers: int = Field(default=5, ge=1, description="Jobs processed concurrently")
    concurrency: int = Field(default=5, ge=1, description="Items in flight per batch")
    stage_timeout: float = Field(default=30.0, gt=0, description="Seconds per stage")
    retry_attempts: int = Field(default=3, ge=1, description="Attempts for transient item failures")
    retry_delay: float = Field(default=1.0, ge=0)


settings = TaxonomySettings()
