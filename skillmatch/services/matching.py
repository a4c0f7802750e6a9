"""
Bidirectional matcher.

Ranks candidate profiles for a requirement (job or service demand), and
requirements for a candidate, over a pool the caller has already fetched and
filtered. Nothing here does I/O or keeps state between calls, so one Matcher
can serve any number of concurrent request workers.
"""
from datetime import datetime
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from skillmatch.models.models import (
    MatchFilters,
    MatchPool,
    MatchResult,
    SkillProfile,
    SkillSearchResult,
    utcnow,
)
from skillmatch.models.settings import EngineSettings
from skillmatch.services.geo import distances_km, validate_coordinates
from skillmatch.services.normalizer import normalize_skills
from skillmatch.services.ranking import rank_matches, rank_search_results, validate_limit, validate_page
from skillmatch.services.scoring import score_pair, skill_only_score
from skillmatch.utils.exceptions import NotFoundError, ValidationError
from skillmatch.utils.logging_config import PerformanceMonitor, get_logger

logger = get_logger(__name__)


class Matcher:
    """Match profiles and requirements in both directions"""

    def __init__(self, settings: Optional[EngineSettings] = None):
        self.settings = settings or EngineSettings()

    # ------------------------------------------------------------------
    # Requirement -> candidates
    # ------------------------------------------------------------------

    def match_entity_to_candidates(
        self,
        pool: MatchPool,
        entity_id: str,
        limit: int = 10,
        filters: Optional[MatchFilters] = None,
        now: Optional[datetime] = None,
        page: int = 1,
    ) -> List[MatchResult]:
        """Best candidate profiles for one requirement, above the score floor."""
        validate_limit(limit, self.settings.max_match_limit)
        validate_page(page)
        filters = filters or MatchFilters()
        requirement = pool.requirements.get(entity_id)
        if requirement is None:
            raise NotFoundError(f"Requirement {entity_id} not found", entity_id=entity_id, entity_kind="requirement")

        now = now or utcnow()
        with PerformanceMonitor(
            f"match_entity_to_candidates({entity_id})", logger, self.settings.slow_operation_threshold_ms
        ):
            scored = [
                score_pair(profile, requirement, self.settings, now=now,
                           source_id=requirement.id, target_id=profile.id)
                for profile_id, profile in sorted(pool.profiles.items())
                if profile_id not in filters.exclude_ids
            ]
            ranked = rank_matches(
                self._within_radius(scored, filters), self._threshold(filters), limit, page
            )

        logger.debug(f"Requirement {entity_id}: {len(ranked)} of {len(scored)} candidates above threshold")
        return ranked

    # ------------------------------------------------------------------
    # Candidate -> requirements
    # ------------------------------------------------------------------

    def match_candidate_to_entities(
        self,
        pool: MatchPool,
        candidate_id: str,
        limit: int = 10,
        filters: Optional[MatchFilters] = None,
        now: Optional[datetime] = None,
        page: int = 1,
    ) -> List[MatchResult]:
        """Best requirements for one candidate. Scores equal those of the other direction."""
        validate_limit(limit, self.settings.max_match_limit)
        validate_page(page)
        filters = filters or MatchFilters()
        profile = pool.profiles.get(candidate_id)
        if profile is None:
            raise NotFoundError(f"Candidate {candidate_id} not found", entity_id=candidate_id, entity_kind="candidate")

        now = now or utcnow()
        with PerformanceMonitor(
            f"match_candidate_to_entities({candidate_id})", logger, self.settings.slow_operation_threshold_ms
        ):
            scored = [
                score_pair(profile, requirement, self.settings, now=now,
                           source_id=profile.id, target_id=requirement.id)
                for requirement_id, requirement in sorted(pool.requirements.items())
                if requirement_id not in filters.exclude_ids
            ]
            ranked = rank_matches(
                self._within_radius(scored, filters), self._threshold(filters), limit, page
            )

        logger.debug(f"Candidate {candidate_id}: {len(ranked)} of {len(scored)} requirements above threshold")
        return ranked

    def recommend_for_candidate(
        self,
        pool: MatchPool,
        candidate_id: str,
        min_score: float = 50.0,
        limit: int = 10,
        applied_ids: Iterable[str] = (),
        now: Optional[datetime] = None,
    ) -> List[MatchResult]:
        """Job recommendations: stricter floor, without postings already applied to."""
        filters = MatchFilters(min_score=min_score, exclude_ids=sorted(set(applied_ids)))
        return self.match_candidate_to_entities(pool, candidate_id, limit=limit, filters=filters, now=now)

    # ------------------------------------------------------------------
    # Open talent search
    # ------------------------------------------------------------------

    def search_by_skills(
        self,
        pool: MatchPool,
        required_skills: Union[Mapping[str, int], Iterable[str]],
        location: Optional[Tuple[float, float]] = None,
        radius_km: Optional[float] = None,
        limit: int = 10,
        page: int = 1,
    ) -> List[SkillSearchResult]:
        """Profiles ranked by skill score alone. Profiles matching none of the skills are left out."""
        validate_limit(limit, self.settings.max_match_limit)
        validate_page(page)
        required = normalize_skills(self._as_skill_map(required_skills)).skills
        if not required:
            raise ValidationError("At least one skill is required", field="required_skills", value=required_skills)
        if radius_km is not None:
            if isinstance(radius_km, bool) or not isinstance(radius_km, (int, float)) or radius_km <= 0:
                raise ValidationError("radius_km must be a positive number", field="radius_km", value=radius_km)
            if location is None:
                raise ValidationError("radius_km needs a location", field="location")
        if location is not None:
            if isinstance(location, (str, bytes)) or not isinstance(location, Sequence) or len(location) != 2:
                raise ValidationError("location must be a (latitude, longitude) pair", field="location", value=location)
            validate_coordinates(location[0], location[1], "location")

        profiles = [profile for _, profile in sorted(pool.profiles.items())]
        distances = self._distances_from(location, profiles)

        hits = []
        for profile, distance in zip(profiles, distances):
            if radius_km is not None and (distance is None or distance > radius_km):
                continue
            score, matched, missing = skill_only_score(normalize_skills(profile.skills).skills, required)
            if not matched:
                continue
            hits.append(SkillSearchResult(
                profile=profile,
                skill_score=score,
                matched_skills=matched,
                missing_skills=missing,
                distance_km=round(distance, 3) if distance is not None else None,
            ))

        logger.debug(f"Skill search over {len(profiles)} profiles found {len(hits)} hits")
        return rank_search_results(hits, limit, page)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _threshold(self, filters: MatchFilters) -> float:
        if filters.min_score is None:
            return self.settings.match_score_threshold
        return max(self.settings.match_score_threshold, filters.min_score)

    @staticmethod
    def _within_radius(results: List[MatchResult], filters: MatchFilters) -> List[MatchResult]:
        if filters.radius_km is None:
            return results
        kept = []
        for result in results:
            if result.distance_km is None:
                if not filters.require_coordinates:
                    kept.append(result)
            elif result.distance_km <= filters.radius_km:
                kept.append(result)
        return kept

    @staticmethod
    def _as_skill_map(required_skills) -> Mapping:
        if isinstance(required_skills, Mapping):
            return required_skills
        if isinstance(required_skills, str):
            required_skills = required_skills.split(",")
        return {name: 1 for name in required_skills if isinstance(name, str) and name.strip()}

    @staticmethod
    def _distances_from(location, profiles: List[SkillProfile]) -> List[Optional[float]]:
        if location is None:
            return [None] * len(profiles)
        located = [i for i, p in enumerate(profiles) if p.has_coordinates]
        computed = distances_km(location, [(profiles[i].latitude, profiles[i].longitude) for i in located])
        distances: List[Optional[float]] = [None] * len(profiles)
        for i, distance in zip(located, computed):
            distances[i] = float(distance)
        return distances
