"""Configuration for the attribution engine and its storage backends."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field, field_validator

from peanut.attribution.schema import AttributionModel


class AttributionConfig(BaseModel):
    """Tunable attribution settings."""

    half_life_days: float = Field(default=7.0, gt=0)
    lookback_days: int | None = None  # None: no lower bound on touches
    default_model: AttributionModel = AttributionModel.LAST_TOUCH
    report_cache_ttl: int = Field(default=900, ge=0)  # seconds
    retention_days: int = Field(default=90, ge=1)
    pending_batch_size: int = Field(default=50, ge=1)

    @field_validator("lookback_days")
    @classmethod
    def _check_lookback(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("lookback_days must be at least 1 when set")
        return value

    @classmethod
    def from_env(cls) -> AttributionConfig:
        """Load configuration from environment variables."""
        lookback = os.getenv("PEANUT_LOOKBACK_DAYS")
        return cls(
            half_life_days=float(os.getenv("PEANUT_TIME_DECAY_HALF_LIFE", "7")),
            lookback_days=int(lookback) if lookback else None,
            default_model=AttributionModel.parse(os.getenv("PEANUT_DEFAULT_MODEL", "last_touch")),
            report_cache_ttl=int(os.getenv("PEANUT_REPORT_CACHE_TTL", "900")),
            retention_days=int(os.getenv("PEANUT_ATTRIBUTION_RETENTION_DAYS", "90")),
            pending_batch_size=int(os.getenv("PEANUT_PENDING_BATCH_SIZE", "50")),
        )


class BigQueryStorageConfig(BaseModel):
    """Configuration for BigQuery-backed attribution storage."""

    project_id: str | None = None
    dataset: str = "peanut"
    location: str = "US"

    @classmethod
    def from_env(cls) -> BigQueryStorageConfig:
        """Load configuration from environment variables."""
        return cls(
            project_id=os.getenv("PEANUT_GCP_PROJECT_ID") or os.getenv("GCP_PROJECT_ID"),
            dataset=os.getenv("PEANUT_BQ_DATASET", "peanut"),
            location=os.getenv("PEANUT_BQ_LOCATION", "US"),
        )
