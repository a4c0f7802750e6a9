"""
Trend scoring for services, providers and seekers.

A run loads the activity feed for each entity type, scores every entity on a
bounded pool of workers and writes one record per entity. Services keep a
single current snapshot (upsert); providers and seekers get a new historical
row per run (append). A feed that cannot be read aborts the run before any
write; a single entity that fails to score or persist is logged, reported in
the summary and skipped.
"""
import asyncio
import math
import time
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from skillmatch.models.models import (
    BatchSummary,
    EntityActivity,
    EntityError,
    EntityType,
    PersistenceMode,
    TrendRecord,
    as_utc,
    utcnow,
)
from skillmatch.models.settings import EngineSettings, TrendWeights
from skillmatch.utils.exceptions import ComputationError, ExceptionContext, FeedUnavailableError, SkillMatchError
from skillmatch.utils.logging_config import PerformanceMonitor, get_logger

logger = get_logger(__name__)

RECENT_WINDOW = timedelta(days=7)
LOOKBACK_WINDOW = timedelta(days=30)
GROWTH_FLOOR = -50.0
GROWTH_CEILING = 100.0


class TrendFeed(Protocol):
    async def load_activity(self, entity_type: EntityType) -> List[EntityActivity]:
        ...


class TrendStore(Protocol):
    async def append(self, record: TrendRecord) -> None:
        ...

    async def upsert_current(self, record: TrendRecord) -> None:
        ...


class StaticTrendFeed:
    """Feed over activity the caller has already materialized."""

    def __init__(self, activities: Iterable[EntityActivity] = ()):
        self._by_type: Dict[EntityType, List[EntityActivity]] = {}
        for activity in activities:
            self._by_type.setdefault(activity.entity_type, []).append(activity)

    async def load_activity(self, entity_type: EntityType) -> List[EntityActivity]:
        return list(self._by_type.get(entity_type, []))


# ----------------------------------------------------------------------
# Growth and score formulas
# ----------------------------------------------------------------------

def count_booking_windows(booking_times: Iterable[datetime], now: datetime) -> Tuple[int, int]:
    """Bookings in [now-7d, now) and in [now-30d, now-7d)."""
    now = as_utc(now)
    recent_start = now - RECENT_WINDOW
    prior_start = now - LOOKBACK_WINDOW
    recent = prior = 0
    for booked_at in booking_times:
        booked_at = as_utc(booked_at)
        if recent_start <= booked_at < now:
            recent += 1
        elif prior_start <= booked_at < recent_start:
            prior += 1
    return recent, prior


def percent_growth(current: int, prior: int) -> float:
    """Percent change from prior to current. From zero, any activity counts as +100%."""
    if prior == 0:
        return 100.0 if current > 0 else 0.0
    return (current - prior) / prior * 100.0


def view_growth(activity: EntityActivity) -> float:
    if activity.prior_view_count is not None:
        return percent_growth(activity.view_count, activity.prior_view_count)
    # magnitude proxy when no view history is available
    if activity.view_count <= 0:
        return 0.0
    return min(activity.view_count / 100.0, 100.0)


def trend_score(
    booking_count: int,
    booking_growth: float,
    view_count: int,
    rating: Optional[float],
    satisfaction: Optional[float],
    weights: TrendWeights,
) -> float:
    booking_score = min(booking_count / 10.0, 100.0)
    growth_score = min(max(booking_growth, GROWTH_FLOOR), GROWTH_CEILING)
    view_score = min(view_count / 100.0, 100.0)
    rating_score = ((rating or 0.0) / 5.0) * 100.0
    satisfaction_score = ((satisfaction or rating or 0.0) / 5.0) * 100.0

    return (
        booking_score * weights.booking_weight
        + growth_score * weights.growth_weight
        + view_score * weights.view_weight
        + rating_score * weights.rating_weight
        + satisfaction_score * weights.satisfaction_weight
    )


def compute_trend(activity: EntityActivity, now: datetime, weights: TrendWeights) -> TrendRecord:
    """Score one entity. Raises ComputationError on any failure."""
    # bad values inside a feed row are a scoring failure, not a caller error
    with ExceptionContext("trend score", wrap_input_errors=False, entity_id=activity.entity_id, phase="score"):
        recent, prior = count_booking_windows(activity.booking_times, now)
        bookings_growth = percent_growth(recent, prior)
        views_growth = view_growth(activity)
        score = trend_score(
            activity.total_bookings, bookings_growth, activity.view_count,
            activity.rating, activity.satisfaction, weights,
        )

    for name, value in (("trend", score), ("booking growth", bookings_growth), ("view growth", views_growth)):
        if not math.isfinite(value):
            raise ComputationError(f"Non-finite {name} ({value})", entity_id=activity.entity_id, phase="score")

    return TrendRecord(
        entity_id=activity.entity_id,
        entity_type=activity.entity_type,
        trend_score=round(score, 2),
        booking_growth=round(bookings_growth, 2),
        view_growth=round(views_growth, 2),
        rating=activity.rating,
        satisfaction=activity.satisfaction if activity.satisfaction is not None else activity.rating,
        booking_count=activity.total_bookings,
        view_count=activity.view_count,
        calculated_at=as_utc(now),
    )


def merge_activities(
    entity_id: str, entity_type: EntityType, activities: Sequence[EntityActivity]
) -> EntityActivity:
    """Roll several activities (e.g. a provider's services) into one."""
    def mean(values):
        values = [v for v in values if v is not None]
        return sum(values) / len(values) if values else None

    prior_views = [a.prior_view_count for a in activities]
    return EntityActivity(
        entity_id=entity_id,
        entity_type=entity_type,
        booking_times=[t for a in activities for t in a.booking_times],
        booking_count=sum(a.total_bookings for a in activities),
        view_count=sum(a.view_count for a in activities),
        prior_view_count=sum(prior_views) if activities and None not in prior_views else None,
        rating=mean(a.rating for a in activities),
        satisfaction=mean(a.satisfaction for a in activities),
    )


# ----------------------------------------------------------------------
# Batch run
# ----------------------------------------------------------------------

class TrendAggregator:
    """Periodic batch computing trend records for every entity in the feed"""

    def __init__(self, feed: TrendFeed, store: TrendStore, settings: Optional[EngineSettings] = None):
        self.feed = feed
        self.store = store
        self.settings = settings or EngineSettings()

    async def run(
        self,
        entity_types: Optional[Sequence[EntityType]] = None,
        now: Optional[datetime] = None,
        cancel_event: Optional[asyncio.Event] = None,
        deadline: Optional[float] = None,
        raise_on_partial: bool = False,
    ) -> BatchSummary:
        """
        Score and persist every entity of the given types.

        Args:
            entity_types: Types to process (default: all, services first)
            now: Reference time for the booking windows (default: current time)
            cancel_event: Checked before each entity; once set, remaining entities are skipped
            deadline: time.monotonic() value after which remaining entities are skipped
            raise_on_partial: Raise BatchPartialFailure instead of returning a failed summary

        Raises:
            FeedUnavailableError: the activity feed could not be read
        """
        entity_types = list(entity_types or (EntityType.SERVICE, EntityType.PROVIDER, EntityType.SEEKER))
        now = as_utc(now or utcnow())
        summary = BatchSummary(started_at=utcnow())

        logger.info(f"Starting trend calculation for {', '.join(t.value for t in entity_types)}")
        activities = await self._load(entity_types)

        semaphore = asyncio.Semaphore(self.settings.batch_concurrency_limit)
        # one writer per record key, for this run only
        write_locks: Dict[Tuple[EntityType, str], asyncio.Lock] = {}

        def stop_requested() -> bool:
            if cancel_event is not None and cancel_event.is_set():
                return True
            return deadline is not None and time.monotonic() >= deadline

        async def process(activity: EntityActivity) -> None:
            async with semaphore:
                if stop_requested():
                    summary.skipped += 1
                    summary.cancelled = True
                    return
                record = await self._process_entity(activity, now, summary, write_locks)
                if record is not None:
                    summary.records.append(record)

        with PerformanceMonitor("trend calculation", logger, self.settings.slow_operation_threshold_ms):
            await asyncio.gather(*(process(activity) for activity in activities))

        summary.finished_at = utcnow()
        logger.info(
            f"Calculated trend scores: {summary.succeeded} succeeded, {summary.failed} failed, "
            f"{summary.skipped} skipped"
        )
        if raise_on_partial:
            summary.raise_for_failures()
        return summary

    async def _load(self, entity_types: Sequence[EntityType]) -> List[EntityActivity]:
        activities: List[EntityActivity] = []
        for entity_type in entity_types:
            try:
                loaded = await self.feed.load_activity(entity_type)
            except Exception as e:
                logger.error(f"Trend feed unavailable for {entity_type.value}: {e}")
                raise FeedUnavailableError(
                    f"Could not load {entity_type.value} activity: {e}", source=entity_type.value, cause=e
                ) from e
            if loaded is None:
                raise FeedUnavailableError(f"Feed returned no data for {entity_type.value}", source=entity_type.value)
            activities.extend(loaded)
        return activities

    async def _process_entity(
        self, activity: EntityActivity, now: datetime, summary: BatchSummary,
        write_locks: Dict[Tuple[EntityType, str], asyncio.Lock],
    ) -> Optional[TrendRecord]:
        phase = "score"
        try:
            record = compute_trend(activity, now, self.settings.trend_weights)
            phase = "persist"
            await self._write(record, write_locks)
        except SkillMatchError as e:
            self._record_failure(summary, activity, e.details.get("phase", phase), e.message)
            return None
        except Exception as e:
            self._record_failure(summary, activity, phase, str(e) or e.__class__.__name__)
            return None
        summary.succeeded += 1
        return record

    async def _write(self, record: TrendRecord, write_locks: Dict[Tuple[EntityType, str], asyncio.Lock]) -> None:
        key = (record.entity_type, record.entity_id)
        lock = write_locks.setdefault(key, asyncio.Lock())
        async with lock:
            if self.settings.persistence_mode_for(record.entity_type) == PersistenceMode.UPSERT:
                await self.store.upsert_current(record)
            else:
                await self.store.append(record)

    @staticmethod
    def _record_failure(summary: BatchSummary, activity: EntityActivity, phase: str, reason: str) -> None:
        summary.failed += 1
        summary.errors.append(EntityError(
            entity_id=activity.entity_id,
            entity_type=activity.entity_type,
            phase=phase,
            reason=reason,
        ))
        logger.error(
            f"Trend scoring failed for {activity.entity_type.value} {activity.entity_id} during {phase}: {reason}",
            extra={"entity_id": activity.entity_id, "phase": phase},
        )
