from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from skillmatch.utils.exceptions import BatchPartialFailure


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class EntityType(str, Enum):
    """Kinds of entities the trend aggregator scores"""
    SERVICE = "SERVICE"
    PROVIDER = "PROVIDER"
    SEEKER = "SEEKER"


class PersistenceMode(str, Enum):
    """How a trend record is written"""
    APPEND = "append"   # historical row per run
    UPSERT = "upsert"   # single current row per entity


class SkillProfile(BaseModel):
    id: str
    skills: Dict[str, Any] = Field(default_factory=dict)
    experience_years: int = Field(default=0, ge=0)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("updated_at")
    @classmethod
    def _updated_at_utc(cls, v):
        return as_utc(v)

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class Requirement(BaseModel):
    """A job posting or service demand"""
    id: str
    required_skills: Dict[str, Any] = Field(default_factory=dict)
    experience_years: int = Field(default=0, ge=0)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_remote: bool = False

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class MatchPool(BaseModel):
    """Candidate profiles and requirements, already filtered by the caller"""
    profiles: Dict[str, SkillProfile] = Field(default_factory=dict)
    requirements: Dict[str, Requirement] = Field(default_factory=dict)

    @classmethod
    def from_records(cls, profiles: List[SkillProfile] = (), requirements: List[Requirement] = ()):
        return cls(
            profiles={p.id: p for p in profiles},
            requirements={r.id: r for r in requirements},
        )


class MatchFilters(BaseModel):
    min_score: Optional[float] = Field(default=None, ge=0.0, le=100.0, description="Per-call score floor, overrides the configured threshold when higher")
    radius_km: Optional[float] = Field(default=None, gt=0.0, description="Exclude pairs farther apart than this")
    require_coordinates: bool = Field(default=False, description="With radius_km, also exclude pairs without a distance")
    exclude_ids: List[str] = Field(default_factory=list, description="Targets to leave out, e.g. jobs already applied to")


class MatchResult(BaseModel):
    source_id: str
    target_id: str
    composite_score: float = Field(ge=0.0, le=100.0)
    skill_score: float = Field(ge=0.0, le=100.0)
    experience_score: float = Field(ge=0.0, le=100.0)
    location_score: float = Field(ge=0.0, le=100.0)
    location_included: bool = Field(default=True, description="False when the location term was left out of the composite")
    recency_score: float = Field(ge=0.0, le=100.0)
    matched_skills: List[str] = Field(default_factory=list)
    missing_skills: List[str] = Field(default_factory=list)
    distance_km: Optional[float] = None
    profile_updated_at: Optional[datetime] = None
    computed_at: datetime = Field(default_factory=utcnow)


class SkillSearchResult(BaseModel):
    profile: SkillProfile
    skill_score: float = Field(ge=0.0, le=100.0)
    matched_skills: List[str] = Field(default_factory=list)
    missing_skills: List[str] = Field(default_factory=list)
    distance_km: Optional[float] = None

    @property
    def profile_id(self) -> str:
        return self.profile.id


class EntityActivity(BaseModel):
    """Booking/view/rating feed for one entity, materialized by the caller"""
    entity_id: str
    entity_type: EntityType
    booking_times: List[datetime] = Field(default_factory=list)
    booking_count: Optional[int] = Field(default=None, ge=0, description="Lifetime bookings; defaults to len(booking_times)")
    view_count: int = Field(default=0, ge=0)
    prior_view_count: Optional[int] = Field(default=None, ge=0, description="Views in the prior window, enables window-based view growth")
    rating: Optional[float] = Field(default=None, ge=0.0, le=5.0)
    satisfaction: Optional[float] = Field(default=None, ge=0.0, le=5.0)

    @field_validator("booking_times")
    @classmethod
    def _booking_times_utc(cls, v):
        return [as_utc(t) for t in v]

    @property
    def total_bookings(self) -> int:
        if self.booking_count is None:
            return len(self.booking_times)
        return self.booking_count


class TrendRecord(BaseModel):
    entity_id: str
    entity_type: EntityType
    trend_score: float
    booking_growth: float
    view_growth: float
    rating: Optional[float] = None
    satisfaction: Optional[float] = None
    booking_count: int = 0
    view_count: int = 0
    calculated_at: datetime = Field(default_factory=utcnow)


class EntityError(BaseModel):
    entity_id: str
    entity_type: Optional[EntityType] = None
    phase: str
    reason: str


class BatchSummary(BaseModel):
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False
    errors: List[EntityError] = Field(default_factory=list)
    records: List[TrendRecord] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def raise_for_failures(self) -> "BatchSummary":
        if self.failed:
            raise BatchPartialFailure(self)
        return self
