"""
Tests for trend scoring and the batch aggregator.
"""
import asyncio
import time
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from skillmatch.models.models import EntityActivity, EntityType, PersistenceMode
from skillmatch.models.settings import EngineSettings, TrendWeights
from skillmatch.services import trending
from skillmatch.services.db import InMemoryTrendStore
from skillmatch.services.trending import (
    StaticTrendFeed,
    TrendAggregator,
    compute_trend,
    count_booking_windows,
    merge_activities,
    percent_growth,
    trend_score,
    view_growth,
)
from skillmatch.utils.exceptions import (
    BatchPartialFailure,
    ComputationError,
    FeedUnavailableError,
    PersistenceError,
    ValidationError,
)


class TestBookingWindows:
    """Recent [now-7d, now) and prior [now-30d, now-7d) windows"""

    def test_window_edges(self, now):
        times = [
            now,                          # not yet in the recent window
            now - timedelta(seconds=1),   # recent
            now - timedelta(days=7),      # recent, inclusive start
            now - timedelta(days=7, seconds=1),  # prior
            now - timedelta(days=30),     # prior, inclusive start
            now - timedelta(days=31),     # outside both
        ]
        assert count_booking_windows(times, now) == (2, 2)

    def test_empty(self, now):
        assert count_booking_windows([], now) == (0, 0)


class TestGrowth:
    """Percent growth between windows"""

    def test_growth_from_nothing(self):
        assert percent_growth(3, 0) == 100.0

    def test_no_activity(self):
        assert percent_growth(0, 0) == 0.0

    def test_decline(self):
        assert percent_growth(1, 4) == -75.0

    def test_increase(self):
        assert percent_growth(6, 4) == 50.0

    def test_view_proxy_without_history(self):
        activity = EntityActivity(entity_id="s", entity_type=EntityType.SERVICE, view_count=1500)
        assert view_growth(activity) == 15.0

    def test_view_growth_with_history(self):
        activity = EntityActivity(
            entity_id="s", entity_type=EntityType.SERVICE, view_count=150, prior_view_count=100
        )
        assert view_growth(activity) == 50.0


class TestTrendScore:
    """Weighted trend score"""

    def test_reference_example(self):
        score = trend_score(50, 100.0, 1000, 4.0, None, TrendWeights())
        assert score == pytest.approx(48.5)

    def test_growth_is_clamped(self):
        weights = TrendWeights()
        assert trend_score(0, 900.0, 0, None, None, weights) == pytest.approx(25.0)
        assert trend_score(0, -100.0, 0, None, None, weights) == pytest.approx(-12.5)

    def test_booking_and_view_scores_cap(self):
        weights = TrendWeights()
        capped = trend_score(10_000, 0.0, 100_000, None, None, weights)
        assert capped == pytest.approx(100 * 0.30 + 100 * 0.20)

    def test_satisfaction_used_when_present(self):
        weights = TrendWeights()
        with_satisfaction = trend_score(0, 0.0, 0, 4.0, 2.0, weights)
        assert with_satisfaction == pytest.approx(80 * 0.15 + 40 * 0.10)


class TestComputeTrend:
    """Single-entity trend record"""

    def test_plumbing_record(self, activities, now):
        record = compute_trend(activities[0], now, TrendWeights())
        assert record.entity_id == "service-plumbing"
        assert record.booking_growth == 50.0
        assert record.view_growth == 9.0
        assert record.trend_score == pytest.approx(37.0)
        assert record.booking_count == 40
        assert record.calculated_at == now

    def test_satisfaction_falls_back_to_rating(self, activities, now):
        record = compute_trend(activities[1], now, TrendWeights())
        assert record.satisfaction == 3.0
        assert record.trend_score == pytest.approx(40.16)

    def test_booking_count_defaults_to_times(self, activities, now):
        record = compute_trend(activities[3], now, TrendWeights())
        assert record.booking_count == 1
        assert record.booking_growth == 100.0

    def test_unexpected_value_error_is_a_computation_error(self, activities, now):
        with patch("skillmatch.services.trending.trend_score", side_effect=ValueError("bad weight")):
            with pytest.raises(ComputationError) as exc_info:
                compute_trend(activities[0], now, TrendWeights())

        assert not isinstance(exc_info.value, ValidationError)
        assert exc_info.value.entity_id == "service-plumbing"
        assert exc_info.value.phase == "score"

    def test_same_input_same_record(self, activities, now):
        first = compute_trend(activities[2], now, TrendWeights())
        second = compute_trend(activities[2], now, TrendWeights())
        assert first == second


class TestMergeActivities:
    """Rolling several activities into one entity"""

    def test_sums_and_means(self, activities):
        merged = merge_activities("provider-acme", EntityType.PROVIDER, activities[:2])
        assert merged.booking_count == 42
        assert merged.view_count == 950
        assert len(merged.booking_times) == 7
        assert merged.rating == pytest.approx(3.75)
        assert merged.satisfaction == 4.0
        assert merged.prior_view_count is None

    def test_empty(self):
        merged = merge_activities("p", EntityType.PROVIDER, [])
        assert merged.booking_count == 0
        assert merged.rating is None


class FailingStore(InMemoryTrendStore):
    """In-memory store that refuses writes for selected entities"""

    def __init__(self, failing_ids, error=None):
        super().__init__()
        self.failing_ids = set(failing_ids)
        self.error = error or PersistenceError("write rejected", operation="replace_one")

    async def upsert_current(self, record):
        if record.entity_id in self.failing_ids:
            raise self.error
        await super().upsert_current(record)

    async def append(self, record):
        if record.entity_id in self.failing_ids:
            raise self.error
        await super().append(record)


class TestTrendAggregator:
    """Batch runs over the activity feed"""

    @pytest.mark.asyncio
    async def test_run_persists_by_entity_type(self, activities, now):
        store = InMemoryTrendStore()
        aggregator = TrendAggregator(StaticTrendFeed(activities), store, EngineSettings())

        summary = await aggregator.run(now=now)

        assert summary.ok
        assert summary.succeeded == 4
        assert summary.finished_at is not None
        assert set(store.current) == {
            (EntityType.SERVICE, "service-plumbing"),
            (EntityType.SERVICE, "service-tutoring"),
        }
        assert {r.entity_id for r in store.history} == {"provider-acme", "seeker-ram"}

    @pytest.mark.asyncio
    async def test_second_run_upserts_services_and_appends_history(self, activities, now):
        store = InMemoryTrendStore()
        aggregator = TrendAggregator(StaticTrendFeed(activities), store)

        await aggregator.run(now=now)
        await aggregator.run(now=now + timedelta(hours=6))

        assert len(store.current) == 2
        assert len(store.history) == 4
        latest = await store.latest(EntityType.SERVICE)
        assert all(r.calculated_at == now + timedelta(hours=6) for r in latest)

    @pytest.mark.asyncio
    async def test_persistence_modes_are_configurable(self, activities, now):
        settings = EngineSettings(persistence_modes={EntityType.SERVICE: PersistenceMode.APPEND})
        store = InMemoryTrendStore()

        await TrendAggregator(StaticTrendFeed(activities), store, settings).run(now=now)

        assert store.current == {}
        assert len(store.history) == 4

    @pytest.mark.asyncio
    async def test_selected_entity_types(self, activities, now):
        store = InMemoryTrendStore()
        summary = await TrendAggregator(StaticTrendFeed(activities), store).run(
            entity_types=[EntityType.PROVIDER], now=now
        )
        assert summary.succeeded == 1
        assert [r.entity_id for r in summary.records] == ["provider-acme"]

    @pytest.mark.asyncio
    async def test_persist_failure_is_isolated(self, activities, now):
        store = FailingStore(["service-tutoring"])
        summary = await TrendAggregator(StaticTrendFeed(activities), store).run(now=now)

        assert summary.succeeded == 3
        assert summary.failed == 1
        error = summary.errors[0]
        assert error.entity_id == "service-tutoring"
        assert error.phase == "persist"
        assert (EntityType.SERVICE, "service-plumbing") in store.current

    @pytest.mark.asyncio
    async def test_unexpected_store_error_is_isolated(self, activities, now):
        store = FailingStore(["seeker-ram"], error=RuntimeError("socket closed"))
        summary = await TrendAggregator(StaticTrendFeed(activities), store).run(now=now)

        assert summary.failed == 1
        assert summary.errors[0].phase == "persist"
        assert summary.errors[0].reason == "socket closed"

    @pytest.mark.asyncio
    async def test_score_failure_is_isolated(self, activities, now):
        real_compute = trending.compute_trend

        def compute(activity, at, weights):
            if activity.entity_id == "provider-acme":
                raise ComputationError("bad data", entity_id=activity.entity_id, phase="score")
            return real_compute(activity, at, weights)

        store = InMemoryTrendStore()
        with patch("skillmatch.services.trending.compute_trend", side_effect=compute):
            summary = await TrendAggregator(StaticTrendFeed(activities), store).run(now=now)

        assert summary.succeeded == 3
        assert summary.errors[0].entity_id == "provider-acme"
        assert summary.errors[0].phase == "score"
        assert store.history[0].entity_id == "seeker-ram"

    @pytest.mark.asyncio
    async def test_raise_on_partial(self, activities, now):
        store = FailingStore(["service-plumbing"])
        aggregator = TrendAggregator(StaticTrendFeed(activities), store)

        with pytest.raises(BatchPartialFailure) as exc_info:
            await aggregator.run(now=now, raise_on_partial=True)

        assert exc_info.value.summary.failed == 1
        assert exc_info.value.details["succeeded"] == 3

    @pytest.mark.asyncio
    async def test_feed_failure_is_fatal(self, now):
        feed = AsyncMock()
        feed.load_activity.side_effect = ConnectionError("feed down")
        store = InMemoryTrendStore()

        with pytest.raises(FeedUnavailableError) as exc_info:
            await TrendAggregator(feed, store).run(now=now)

        assert exc_info.value.details["source"] == EntityType.SERVICE.value
        assert store.history == [] and store.current == {}

    @pytest.mark.asyncio
    async def test_feed_failure_on_later_type_writes_nothing(self, activities, now):
        async def load(entity_type):
            if entity_type == EntityType.SEEKER:
                raise TimeoutError("seeker feed timed out")
            return [a for a in activities if a.entity_type == entity_type]

        feed = AsyncMock()
        feed.load_activity.side_effect = load
        store = InMemoryTrendStore()

        with pytest.raises(FeedUnavailableError):
            await TrendAggregator(feed, store).run(now=now)
        assert store.current == {}

    @pytest.mark.asyncio
    async def test_feed_returning_none(self, now):
        feed = AsyncMock()
        feed.load_activity.return_value = None

        with pytest.raises(FeedUnavailableError):
            await TrendAggregator(feed, InMemoryTrendStore()).run(now=now)

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, activities, now):
        cancel = asyncio.Event()
        cancel.set()
        store = InMemoryTrendStore()

        summary = await TrendAggregator(StaticTrendFeed(activities), store).run(now=now, cancel_event=cancel)

        assert summary.cancelled
        assert summary.skipped == 4
        assert summary.succeeded == 0
        assert store.history == [] and store.current == {}

    @pytest.mark.asyncio
    async def test_cancel_mid_run(self, activities, now):
        cancel = asyncio.Event()

        class CancellingStore(InMemoryTrendStore):
            async def upsert_current(self, record):
                await super().upsert_current(record)
                cancel.set()

        store = CancellingStore()
        settings = EngineSettings(batch_concurrency_limit=1)
        summary = await TrendAggregator(StaticTrendFeed(activities), store, settings).run(
            now=now, cancel_event=cancel
        )

        assert summary.succeeded == 1
        assert summary.skipped == 3
        assert summary.cancelled
        assert len(store.current) == 1

    @pytest.mark.asyncio
    async def test_deadline_passed(self, activities, now):
        summary = await TrendAggregator(StaticTrendFeed(activities), InMemoryTrendStore()).run(
            now=now, deadline=time.monotonic() - 1
        )
        assert summary.skipped == 4
        assert summary.cancelled

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, now):
        activities = [
            EntityActivity(entity_id=f"seeker-{i}", entity_type=EntityType.SEEKER, view_count=i)
            for i in range(12)
        ]

        class SlowStore(InMemoryTrendStore):
            def __init__(self):
                super().__init__()
                self.active = 0
                self.peak = 0

            async def append(self, record):
                self.active += 1
                self.peak = max(self.peak, self.active)
                await asyncio.sleep(0.01)
                self.active -= 1
                await super().append(record)

        store = SlowStore()
        settings = EngineSettings(batch_concurrency_limit=3)
        summary = await TrendAggregator(StaticTrendFeed(activities), store, settings).run(now=now)

        assert summary.succeeded == 12
        assert 1 < store.peak <= 3

    @pytest.mark.asyncio
    async def test_same_key_is_never_written_concurrently(self, now):
        activities = [
            EntityActivity(entity_id="service-dup", entity_type=EntityType.SERVICE, view_count=v)
            for v in (10, 20, 30)
        ] + [EntityActivity(entity_id="service-other", entity_type=EntityType.SERVICE)]

        class KeyTrackingStore(InMemoryTrendStore):
            def __init__(self):
                super().__init__()
                self.active = {}
                self.peak = {}

            async def upsert_current(self, record):
                key = (record.entity_type, record.entity_id)
                self.active[key] = self.active.get(key, 0) + 1
                self.peak[key] = max(self.peak.get(key, 0), self.active[key])
                await asyncio.sleep(0.01)
                self.active[key] -= 1
                await super().upsert_current(record)

        store = KeyTrackingStore()
        settings = EngineSettings(batch_concurrency_limit=4)
        summary = await TrendAggregator(StaticTrendFeed(activities), store, settings).run(now=now)

        assert summary.succeeded == 4
        assert store.peak[(EntityType.SERVICE, "service-dup")] == 1
        assert len(store.current) == 2

    @pytest.mark.asyncio
    async def test_repeated_runs_keep_no_per_entity_state(self, now):
        store = InMemoryTrendStore()
        aggregator = TrendAggregator(StaticTrendFeed(), store)
        attributes = set(vars(aggregator))

        for run in range(3):
            aggregator.feed = StaticTrendFeed(
                EntityActivity(entity_id=f"seeker-{run}-{i}", entity_type=EntityType.SEEKER)
                for i in range(20)
            )
            await aggregator.run(now=now)

        assert set(vars(aggregator)) == attributes
        assert len(store.history) == 60
