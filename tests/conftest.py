from __future__ import annotations

import sys
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from cert_service.api.ratelimit import rate_limiter
from cert_service.main import app
from cert_service.models.course import (
    Course,
    CourseSection,
    LearningPath,
    Lesson,
    PathCourse,
)
from cert_service.models.learner import Learner
from cert_service.models.progress import LessonProgress
from cert_service.repos.catalog_repo import InMemoryCatalogRepo, catalog_repo
from cert_service.repos.credential_repo import credential_repo
from cert_service.repos.learner_repo import InMemoryLearnerRepo, learner_repo
from cert_service.repos.progress_repo import (
    InMemoryEnrollmentRepo,
    InMemoryProgressRepo,
    enrollment_repo,
    progress_repo,
)
from cert_service.services import token_service
from cert_service.services.cache import cache_service
from cert_service.services.coordinator import coordinator
from cert_service.services.delivery import artifact_storage, notifier

# Ensure repo root is on sys.path so `import cert_service` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def reset_repos() -> None:
    """Clear every in-memory repository between tests."""
    repos = (learner_repo, catalog_repo, progress_repo, enrollment_repo, credential_repo)
    for repo in repos:
        repo.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_coordinator() -> None:
    """Drop cached generation entries so one test's results never leak."""
    coordinator.clear()


@pytest.fixture(autouse=True)
def reset_rate_limiter() -> None:
    """Clear rate limit buckets between tests so limits don't bleed."""
    if hasattr(rate_limiter, "clear"):
        rate_limiter.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    if hasattr(cache_service, "clear"):
        cache_service.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_delivery() -> None:
    for collaborator in (artifact_storage, notifier):
        if hasattr(collaborator, "clear"):
            collaborator.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    learner_id: str = "learner-1",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=learner_id, roles=roles)


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def token() -> str:
    """Token for learner-1 with the default learner role."""
    return mint_token()


@pytest.fixture
def admin_token() -> str:
    return mint_token(learner_id="ops-admin", roles=["admin"])


# ---------------------------------------------------------------------------
# Seeding helpers (write into whichever in-memory repos they are given)
# ---------------------------------------------------------------------------


def seed_learner(
    learner_id: str = "learner-1",
    name: str = "Ada Lovelace",
    repo: InMemoryLearnerRepo | None = None,
) -> Learner:
    learner = Learner(id=learner_id, email=f"{learner_id}@example.com", name=name)
    (repo or learner_repo).add(learner)  # type: ignore[union-attr]
    return learner


def seed_course(
    course_id: str = "course-1",
    *,
    lessons: int = 5,
    sections: int = 1,
    title: str = "Intro to Machine Learning",
    published: bool = True,
    catalog: InMemoryCatalogRepo | None = None,
) -> list[str]:
    """Create a course with ``lessons`` lessons spread over ``sections``.

    Returns lesson ids in course order.
    """
    catalog = catalog or catalog_repo  # type: ignore[assignment]
    catalog.add_course(
        Course(id=course_id, slug=course_id, title=title, is_published=published)
    )
    lesson_ids: list[str] = []
    for s in range(sections):
        section_id = f"{course_id}-s{s}"
        catalog.add_section(
            CourseSection(id=section_id, course_id=course_id, position=s, title=f"S{s}")
        )
        for i in range(lessons // sections + (1 if s < lessons % sections else 0)):
            lesson_id = f"{section_id}-l{i}"
            catalog.add_lesson(
                Lesson(id=lesson_id, section_id=section_id, position=i, title=f"L{i}")
            )
            lesson_ids.append(lesson_id)
    return lesson_ids


def seed_path(
    path_id: str,
    course_ids: list[str],
    *,
    title: str = "AI Engineer Path",
    catalog: InMemoryCatalogRepo | None = None,
) -> None:
    catalog = catalog or catalog_repo  # type: ignore[assignment]
    catalog.add_learning_path(LearningPath(id=path_id, title=title))
    for pos, course_id in enumerate(course_ids):
        catalog.add_path_course(
            PathCourse(path_id=path_id, course_id=course_id, position=pos)
        )


def enroll(
    learner_id: str,
    course_id: str,
    status: str = "active",
    repo: InMemoryEnrollmentRepo | None = None,
) -> None:
    (repo or enrollment_repo).enroll(learner_id, course_id, status)  # type: ignore[union-attr]


def complete(
    learner_id: str,
    lesson_ids: list[str],
    repo: InMemoryProgressRepo | None = None,
) -> None:
    now = int(time.time())
    for lesson_id in lesson_ids:
        (repo or progress_repo).record(  # type: ignore[union-attr]
            LessonProgress(learner_id=learner_id, lesson_id=lesson_id, completed_at=now)
        )


def seed_completed_course(
    learner_id: str = "learner-1",
    course_id: str = "course-1",
    *,
    lessons: int = 5,
    title: str = "Intro to Machine Learning",
) -> list[str]:
    """Learner owns the course and has finished every lesson of it."""
    lesson_ids = seed_course(course_id, lessons=lessons, title=title)
    enroll(learner_id, course_id)
    complete(learner_id, lesson_ids)
    return lesson_ids
