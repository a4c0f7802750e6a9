"""
Deterministic ordering, thresholds and pagination for matcher and trend output.

Match order: composite desc, skill desc, distance asc (unknown distance last),
profile freshness desc, then target id so that equal rows never swap places
between pages.
"""
from typing import Iterable, List, Optional, Sequence, TypeVar

from skillmatch.models.models import EntityType, MatchResult, SkillSearchResult, TrendRecord
from skillmatch.utils.exceptions import ValidationError

T = TypeVar("T")


def validate_limit(limit, max_limit: int, field: str = "limit") -> int:
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ValidationError(f"{field} must be an integer", field=field, value=limit)
    if limit <= 0 or limit > max_limit:
        raise ValidationError(f"{field} must be between 1 and {max_limit}", field=field, value=limit)
    return limit


def validate_page(page) -> int:
    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        raise ValidationError("page must be a positive integer", field="page", value=page)
    return page


def _timestamp(value) -> float:
    return value.timestamp() if value is not None else float("-inf")


def match_sort_key(result: MatchResult):
    return (
        -result.composite_score,
        -result.skill_score,
        result.distance_km is None,
        result.distance_km if result.distance_km is not None else 0.0,
        -_timestamp(result.profile_updated_at),
        result.target_id,
    )


def search_sort_key(result: SkillSearchResult):
    return (
        -result.skill_score,
        result.distance_km is None,
        result.distance_km if result.distance_km is not None else 0.0,
        -_timestamp(result.profile.updated_at),
        result.profile.id,
    )


def trend_sort_key(record: TrendRecord):
    return (-record.trend_score, -_timestamp(record.calculated_at), record.entity_id)


def paginate(items: Sequence[T], limit: int, page: int = 1) -> List[T]:
    start = (page - 1) * limit
    return list(items[start:start + limit])


def rank_matches(
    results: Iterable[MatchResult],
    threshold: float,
    limit: int,
    page: int = 1,
) -> List[MatchResult]:
    """Drop results under the floor, order them and cut the requested page."""
    kept = [r for r in results if r.composite_score >= threshold]
    kept.sort(key=match_sort_key)
    return paginate(kept, limit, page)


def rank_search_results(results: Iterable[SkillSearchResult], limit: int, page: int = 1) -> List[SkillSearchResult]:
    ordered = sorted(results, key=search_sort_key)
    return paginate(ordered, limit, page)


def rank_trends(
    records: Iterable[TrendRecord],
    limit: int,
    entity_type: Optional[EntityType] = None,
    max_limit: int = 100,
) -> List[TrendRecord]:
    """Top trending records, optionally for one entity type."""
    validate_limit(limit, max_limit)
    selected = [r for r in records if entity_type is None or r.entity_type == entity_type]
    selected.sort(key=trend_sort_key)
    return selected[:limit]
