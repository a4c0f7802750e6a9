"""
Composite match scoring between a skill profile and a requirement.

All component scores live on a 0-100 scale:

- skill: mean over required skills of min(proficiency / required, 1) * 100
- experience: min(years / required_years, 1) * 100
- location: linear decay from 100 at 0 km to 0 at the scoring radius
- recency: linear decay from 100 for a fresh profile to 0 at the recency window

The composite is the weighted sum of the components, rounded to 2 decimals.
Scoring is direction-free: the same profile/requirement pair always yields the
same numbers, whichever side initiated the match.
"""
import math
from datetime import datetime
from typing import Dict, List, Mapping, NamedTuple, Optional, Tuple

from skillmatch.models.models import MatchResult, Requirement, SkillProfile, as_utc, utcnow
from skillmatch.models.settings import EngineSettings, MatchWeights
from skillmatch.services.geo import distance_between
from skillmatch.services.normalizer import normalize_skills
from skillmatch.utils.exceptions import ComputationError

FULL_SCORE = 100.0


class SkillScore(NamedTuple):
    score: float
    matched: List[str]
    missing: List[str]


def _clamp(value: float, low: float = 0.0, high: float = FULL_SCORE) -> float:
    return max(low, min(high, value))


def skill_score(source_skills: Mapping[str, int], required_skills: Mapping[str, int]) -> SkillScore:
    """Both maps must already be normalized."""
    if not required_skills:
        return SkillScore(FULL_SCORE, [], [])

    total = 0.0
    matched, missing = [], []
    for name in sorted(required_skills):
        required = required_skills[name]
        have = source_skills.get(name)
        if have is None:
            missing.append(name)
            continue
        matched.append(name)
        total += min(have / required, 1.0) * FULL_SCORE
    return SkillScore(total / len(required_skills), matched, missing)


def experience_score(source_years: float, required_years: float) -> float:
    if not required_years or required_years <= 0:
        return FULL_SCORE
    return min(max(source_years, 0) / required_years, 1.0) * FULL_SCORE


def location_score(distance_km: float, radius_km: float) -> float:
    if radius_km <= 0:
        raise ComputationError("Scoring radius must be positive", phase="location")
    return _clamp(FULL_SCORE - distance_km / radius_km * FULL_SCORE)


def recency_score(updated_at: Optional[datetime], now: datetime, window_days: float) -> float:
    if updated_at is None:
        return 0.0
    age_days = (as_utc(now) - as_utc(updated_at)).total_seconds() / 86400.0
    if age_days <= 0:
        return FULL_SCORE
    return _clamp(FULL_SCORE * (1.0 - age_days / window_days))


def composite_score(
    components: Dict[str, float],
    weights: MatchWeights,
    include_location: bool = True,
) -> float:
    """Weighted sum of components. Without location the other weights are rescaled to sum to 1."""
    weighted = [
        (components["skill"], weights.skill_weight),
        (components["experience"], weights.experience_weight),
        (components["recency"], weights.recency_weight),
    ]
    if include_location:
        weighted.append((components["location"], weights.location_weight))

    total_weight = sum(w for _, w in weighted)
    if total_weight <= 0:
        raise ComputationError("No weight left to score with", phase="composite")
    score = sum(value * w for value, w in weighted) / total_weight
    return score


def _check_finite(values: Dict[str, float], pair_id: str) -> None:
    for name, value in values.items():
        if value is None or not math.isfinite(value):
            raise ComputationError(
                f"Non-finite {name} score ({value})", entity_id=pair_id, phase="score"
            )


def score_pair(
    profile: SkillProfile,
    requirement: Requirement,
    settings: EngineSettings,
    now: Optional[datetime] = None,
    source_id: Optional[str] = None,
    target_id: Optional[str] = None,
) -> MatchResult:
    """Score one profile against one requirement. Does not apply the score floor."""
    now = now or utcnow()
    pair_id = f"{requirement.id}:{profile.id}"

    source_skills = normalize_skills(profile.skills).skills
    required_skills = normalize_skills(requirement.required_skills).skills
    skills = skill_score(source_skills, required_skills)

    distance = distance_between(profile, requirement)
    include_location = True
    if requirement.is_remote:
        location = FULL_SCORE
    elif distance is not None:
        location = location_score(distance, settings.scoring_radius_km)
    elif settings.missing_location_policy == "renormalize":
        # left out of the composite; reported as 0 with location_included=False
        location = 0.0
        include_location = False
    else:
        location = settings.neutral_location_score

    components = {
        "skill": skills.score,
        "experience": experience_score(profile.experience_years, requirement.experience_years),
        "location": location,
        "recency": recency_score(profile.updated_at, now, settings.recency_window_days),
    }
    _check_finite(components, pair_id)
    composite = composite_score(components, settings.match_weights, include_location)
    _check_finite({"composite": composite}, pair_id)

    return MatchResult(
        source_id=source_id or requirement.id,
        target_id=target_id or profile.id,
        composite_score=round(_clamp(composite), 2),
        skill_score=round(_clamp(components["skill"]), 2),
        experience_score=round(_clamp(components["experience"]), 2),
        location_score=round(_clamp(components["location"]), 2),
        recency_score=round(_clamp(components["recency"]), 2),
        matched_skills=skills.matched,
        missing_skills=skills.missing,
        distance_km=round(distance, 3) if distance is not None else None,
        location_included=include_location,
        profile_updated_at=profile.updated_at,
        computed_at=now,
    )


def skill_only_score(
    source_skills: Mapping[str, int], required_skills: Mapping[str, int]
) -> Tuple[float, List[str], List[str]]:
    """Skill component alone, used for open talent search."""
    result = skill_score(source_skills, required_skills)
    return round(_clamp(result.score), 2), result.matched, result.missing
