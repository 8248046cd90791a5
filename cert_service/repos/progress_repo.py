from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from cert_service.db.engine import async_session_factory
from cert_service.models.progress import LessonProgress
from cert_service.repos.pg_progress_repo import PgEnrollmentRepo, PgProgressRepo


class ProgressRepo(Protocol):
    async def list_progress(
        self, learner_id: str, lesson_ids: Iterable[str]
    ) -> list[LessonProgress]: ...


class EnrollmentRepo(Protocol):
    async def is_enrolled(self, learner_id: str, course_id: str) -> bool: ...
    async def list_course_ids(self, learner_id: str) -> list[str]: ...


class InMemoryProgressRepo:
    def __init__(self) -> None:
        self._store: dict[tuple[str, str], LessonProgress] = {}

    def record(self, progress: LessonProgress) -> None:
        self._store[(progress.learner_id, progress.lesson_id)] = progress

    def clear(self) -> None:
        self._store.clear()

    async def list_progress(
        self, learner_id: str, lesson_ids: Iterable[str]
    ) -> list[LessonProgress]:
        wanted = set(lesson_ids)
        return [
            p
            for (lid, lesson_id), p in self._store.items()
            if lid == learner_id and lesson_id in wanted
        ]


class InMemoryEnrollmentRepo:
    def __init__(self) -> None:
        # (learner_id, course_id) -> status
        self._store: dict[tuple[str, str], str] = {}

    def enroll(self, learner_id: str, course_id: str, status: str = "active") -> None:
        self._store[(learner_id, course_id)] = status

    def clear(self) -> None:
        self._store.clear()

    async def is_enrolled(self, learner_id: str, course_id: str) -> bool:
        return self._store.get((learner_id, course_id)) == "active"

    async def list_course_ids(self, learner_id: str) -> list[str]:
        return [
            course_id
            for (lid, course_id), status in self._store.items()
            if lid == learner_id and status == "active"
        ]


if async_session_factory is not None:
    progress_repo: ProgressRepo = PgProgressRepo(async_session_factory)
    enrollment_repo: EnrollmentRepo = PgEnrollmentRepo(async_session_factory)
else:
    progress_repo = InMemoryProgressRepo()
    enrollment_repo = InMemoryEnrollmentRepo()
