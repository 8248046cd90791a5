"""PostgreSQL implementation of CatalogRepo."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cert_service.db.tables import (
    CourseRow,
    CourseSectionRow,
    LearningPathCourseRow,
    LearningPathRow,
    LessonRow,
)
from cert_service.models.course import Course, LearningPath


class PgCatalogRepo:
    """Satisfies the CatalogRepo Protocol using PostgreSQL."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_course(self, course_id: str) -> Course | None:
        stmt = select(CourseRow).where(CourseRow.id == course_id)
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return Course(
            id=row.id, slug=row.slug, title=row.title, is_published=row.is_published
        )

    async def list_lesson_ids(self, course_id: str) -> list[str]:
        stmt = (
            select(LessonRow.id)
            .join(CourseSectionRow, LessonRow.section_id == CourseSectionRow.id)
            .where(CourseSectionRow.course_id == course_id)
            .order_by(CourseSectionRow.position, LessonRow.position)
        )
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def get_learning_path(self, path_id: str) -> LearningPath | None:
        stmt = select(LearningPathRow).where(LearningPathRow.id == path_id)
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return LearningPath(id=row.id, title=row.title)

    async def list_path_course_ids(self, path_id: str) -> list[str]:
        stmt = (
            select(LearningPathCourseRow.course_id)
            .where(LearningPathCourseRow.path_id == path_id)
            .order_by(LearningPathCourseRow.position)
        )
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())
