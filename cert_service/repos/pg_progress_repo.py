"""PostgreSQL implementations of ProgressRepo and EnrollmentRepo."""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cert_service.db.tables import EnrollmentRow, LessonProgressRow
from cert_service.models.progress import LessonProgress


class PgProgressRepo:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_progress(
        self, learner_id: str, lesson_ids: Iterable[str]
    ) -> list[LessonProgress]:
        ids = list(lesson_ids)
        if not ids:
            return []
        stmt = select(LessonProgressRow).where(
            LessonProgressRow.learner_id == learner_id,
            LessonProgressRow.lesson_id.in_(ids),
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [
            LessonProgress(
                learner_id=row.learner_id,
                lesson_id=row.lesson_id,
                completed_at=row.completed_at,
            )
            for row in rows
        ]


class PgEnrollmentRepo:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def is_enrolled(self, learner_id: str, course_id: str) -> bool:
        stmt = select(EnrollmentRow.status).where(
            EnrollmentRow.learner_id == learner_id,
            EnrollmentRow.course_id == course_id,
        )
        async with self._session_factory() as session:
            status = (await session.execute(stmt)).scalar_one_or_none()
        return status == "active"

    async def list_course_ids(self, learner_id: str) -> list[str]:
        stmt = select(EnrollmentRow.course_id).where(
            EnrollmentRow.learner_id == learner_id,
            EnrollmentRow.status == "active",
        )
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())
