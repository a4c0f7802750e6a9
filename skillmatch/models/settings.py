"""
Engine Settings for matching and trend scoring
"""
import os
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, model_validator

from skillmatch.models.models import EntityType, PersistenceMode
from skillmatch.utils.exceptions import ConfigurationError

WEIGHT_TOLERANCE = 0.01


class MatchWeights(BaseModel):
    """Weights of the composite match score"""
    model_config = ConfigDict(frozen=True)

    skill_weight: float = Field(default=0.5, ge=0.0, le=1.0, description="Weight for skill coverage")
    experience_weight: float = Field(default=0.2, ge=0.0, le=1.0, description="Weight for experience")
    location_weight: float = Field(default=0.2, ge=0.0, le=1.0, description="Weight for proximity")
    recency_weight: float = Field(default=0.1, ge=0.0, le=1.0, description="Weight for profile freshness")

    @model_validator(mode="after")
    def validate_total_weights(self):
        total = self.skill_weight + self.experience_weight + self.location_weight + self.recency_weight
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError('Match weights must sum to 1.0')
        return self


class TrendWeights(BaseModel):
    """Weights of the trend score"""
    model_config = ConfigDict(frozen=True)

    booking_weight: float = Field(default=0.30, ge=0.0, le=1.0)
    growth_weight: float = Field(default=0.25, ge=0.0, le=1.0)
    view_weight: float = Field(default=0.20, ge=0.0, le=1.0)
    rating_weight: float = Field(default=0.15, ge=0.0, le=1.0)
    satisfaction_weight: float = Field(default=0.10, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def validate_total_weights(self):
        total = (
            self.booking_weight + self.growth_weight + self.view_weight
            + self.rating_weight + self.satisfaction_weight
        )
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError('Trend weights must sum to 1.0')
        return self


def _default_persistence_modes() -> Dict[EntityType, PersistenceMode]:
    return {
        EntityType.SERVICE: PersistenceMode.UPSERT,
        EntityType.PROVIDER: PersistenceMode.APPEND,
        EntityType.SEEKER: PersistenceMode.APPEND,
    }


class EngineSettings(BaseModel):
    """Complete engine configuration, passed explicitly to every service"""
    model_config = ConfigDict(frozen=True)

    # Matching
    match_score_threshold: float = Field(default=30.0, ge=0.0, le=100.0, description="Results below this composite score are dropped")
    max_radius_km: Optional[float] = Field(default=None, gt=0.0, description="Distance at which location score reaches 0; None means unrestricted")
    default_scoring_radius_km: float = Field(default=50.0, gt=0.0, description="Scoring radius used when max_radius_km is unrestricted")
    missing_location_policy: str = Field(default="neutral", pattern="^(neutral|renormalize)$")
    neutral_location_score: float = Field(default=50.0, ge=0.0, le=100.0)
    recency_window_days: float = Field(default=90.0, gt=0.0, description="Profile freshness decays linearly to 0 over this window")
    match_weights: MatchWeights = Field(default_factory=MatchWeights)
    max_match_limit: int = Field(default=100, ge=1)

    # Trends
    trend_weights: TrendWeights = Field(default_factory=TrendWeights)
    trend_run_interval_hours: float = Field(default=6.0, gt=0.0)
    batch_concurrency_limit: int = Field(default=8, ge=1, le=256)
    persistence_modes: Dict[EntityType, PersistenceMode] = Field(default_factory=_default_persistence_modes)

    # Caching and monitoring
    cache_results: bool = Field(default=True)
    cache_ttl_seconds: float = Field(default=300.0, gt=0.0)
    cache_max_entries: int = Field(default=1024, ge=1)
    slow_operation_threshold_ms: float = Field(default=1000.0, gt=0.0)

    @property
    def scoring_radius_km(self) -> float:
        return self.max_radius_km if self.max_radius_km is not None else self.default_scoring_radius_km

    def persistence_mode_for(self, entity_type: EntityType) -> PersistenceMode:
        return self.persistence_modes.get(entity_type, PersistenceMode.APPEND)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "EngineSettings":
        """Build settings from SKILLMATCH_* environment variables (and .env)."""
        load_dotenv(dotenv_path=env_file)

        scalar_keys = {
            "match_score_threshold": "SKILLMATCH_MATCH_SCORE_THRESHOLD",
            "max_radius_km": "SKILLMATCH_MAX_RADIUS_KM",
            "default_scoring_radius_km": "SKILLMATCH_DEFAULT_SCORING_RADIUS_KM",
            "missing_location_policy": "SKILLMATCH_MISSING_LOCATION_POLICY",
            "recency_window_days": "SKILLMATCH_RECENCY_WINDOW_DAYS",
            "max_match_limit": "SKILLMATCH_MAX_MATCH_LIMIT",
            "trend_run_interval_hours": "SKILLMATCH_TREND_RUN_INTERVAL_HOURS",
            "batch_concurrency_limit": "SKILLMATCH_BATCH_CONCURRENCY_LIMIT",
            "cache_results": "SKILLMATCH_CACHE_RESULTS",
            "cache_ttl_seconds": "SKILLMATCH_CACHE_TTL_SECONDS",
            "cache_max_entries": "SKILLMATCH_CACHE_MAX_ENTRIES",
        }
        values = {}
        for field_name, env_key in scalar_keys.items():
            raw = os.getenv(env_key)
            if raw is None or raw.strip() == "":
                continue
            values[field_name] = raw.strip()

        match_weights = _weights_from_env("SKILLMATCH_MATCH_WEIGHTS", MatchWeights)
        if match_weights is not None:
            values["match_weights"] = match_weights
        trend_weights = _weights_from_env("SKILLMATCH_TREND_WEIGHTS", TrendWeights)
        if trend_weights is not None:
            values["trend_weights"] = trend_weights

        try:
            return cls(**values)
        except PydanticValidationError as e:
            first = e.errors()[0]
            key = ".".join(str(part) for part in first.get("loc", ()))
            raise ConfigurationError(
                f"Invalid engine settings: {first.get('msg')}",
                config_key=key or None,
                config_value=first.get("input"),
                cause=e
            ) from e


def _weights_from_env(env_key: str, model):
    """Parse 'name=value,name=value' weight lists, e.g. skill_weight=0.6,..."""
    raw = os.getenv(env_key)
    if not raw:
        return None
    pairs = {}
    for chunk in raw.split(","):
        if not chunk.strip():
            continue
        if "=" not in chunk:
            raise ConfigurationError(f"Malformed weight entry '{chunk}'", config_key=env_key, config_value=raw)
        name, value = chunk.split("=", 1)
        pairs[name.strip()] = value.strip()
    try:
        return model(**pairs)
    except PydanticValidationError as e:
        raise ConfigurationError(
            f"Invalid weights in {env_key}: {e.errors()[0].get('msg')}",
            config_key=env_key, config_value=raw, cause=e
        ) from e
