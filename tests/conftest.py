"""
Pytest configuration and shared fixtures.
"""
from datetime import datetime, timedelta, timezone

import pytest

from skillmatch.models.models import EntityActivity, EntityType, MatchPool, Requirement, SkillProfile
from skillmatch.models.settings import EngineSettings

KATHMANDU = (27.7172, 85.3240)
LALITPUR = (27.6588, 85.3247)
POKHARA = (28.2096, 83.9856)


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings()


@pytest.fixture
def open_settings() -> EngineSettings:
    """No score floor, so every computed pair is returned."""
    return EngineSettings(match_score_threshold=0)


@pytest.fixture
def full_stack_job() -> Requirement:
    return Requirement(
        id="job-fullstack",
        required_skills={"React": 4, "Node.js": 4, "PostgreSQL": 3},
        experience_years=3,
        latitude=KATHMANDU[0],
        longitude=KATHMANDU[1],
    )


@pytest.fixture
def remote_job() -> Requirement:
    return Requirement(
        id="job-remote",
        required_skills={"Python": 3, "Docker": 2},
        experience_years=2,
        is_remote=True,
    )


@pytest.fixture
def profiles(now):
    return [
        SkillProfile(
            id="perfect-match",
            skills={"React": 5, "Node.js": 5, "PostgreSQL": 4, "TypeScript": 4},
            experience_years=4,
            latitude=LALITPUR[0],
            longitude=LALITPUR[1],
            updated_at=now - timedelta(days=3),
        ),
        SkillProfile(
            id="partial-match",
            skills={"reactjs": 3, "python": 4, "docker": 2},
            experience_years=2,
            latitude=POKHARA[0],
            longitude=POKHARA[1],
            updated_at=now - timedelta(days=30),
        ),
        SkillProfile(
            id="no-location",
            skills={"nodejs": 4, "postgres": 3, "py": 3},
            experience_years=1,
            updated_at=now - timedelta(days=60),
        ),
        SkillProfile(
            id="poor-match",
            skills={"Photoshop": 5},
            experience_years=0,
            latitude=POKHARA[0],
            longitude=POKHARA[1],
            updated_at=now - timedelta(days=200),
        ),
    ]


@pytest.fixture
def pool(profiles, full_stack_job, remote_job) -> MatchPool:
    return MatchPool.from_records(profiles=profiles, requirements=[full_stack_job, remote_job])


@pytest.fixture
def activities(now):
    def booked(*days_ago):
        return [now - timedelta(days=d) for d in days_ago]

    return [
        EntityActivity(
            entity_id="service-plumbing",
            entity_type=EntityType.SERVICE,
            booking_times=booked(1, 2, 3, 10, 12),
            booking_count=40,
            view_count=900,
            rating=4.5,
            satisfaction=4.0,
        ),
        EntityActivity(
            entity_id="service-tutoring",
            entity_type=EntityType.SERVICE,
            booking_times=booked(1, 2),
            view_count=50,
            rating=3.0,
        ),
        EntityActivity(
            entity_id="provider-acme",
            entity_type=EntityType.PROVIDER,
            booking_times=booked(5, 20),
            booking_count=12,
            view_count=300,
            rating=4.0,
        ),
        EntityActivity(
            entity_id="seeker-ram",
            entity_type=EntityType.SEEKER,
            booking_times=booked(2),
            view_count=20,
        ),
    ]
