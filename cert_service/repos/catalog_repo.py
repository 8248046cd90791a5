from __future__ import annotations

from typing import Protocol

from cert_service.db.engine import async_session_factory
from cert_service.models.course import (
    Course,
    CourseSection,
    LearningPath,
    Lesson,
    PathCourse,
)
from cert_service.repos.pg_catalog_repo import PgCatalogRepo


class CatalogRepo(Protocol):
    async def get_course(self, course_id: str) -> Course | None: ...
    async def list_lesson_ids(self, course_id: str) -> list[str]: ...
    async def get_learning_path(self, path_id: str) -> LearningPath | None: ...
    async def list_path_course_ids(self, path_id: str) -> list[str]: ...


class InMemoryCatalogRepo:
    def __init__(self) -> None:
        self._courses: dict[str, Course] = {}
        self._sections: dict[str, CourseSection] = {}
        self._lessons: dict[str, Lesson] = {}
        self._paths: dict[str, LearningPath] = {}
        self._path_courses: list[PathCourse] = []

    def add_course(self, course: Course) -> None:
        self._courses[course.id] = course

    def add_section(self, section: CourseSection) -> None:
        self._sections[section.id] = section

    def add_lesson(self, lesson: Lesson) -> None:
        self._lessons[lesson.id] = lesson

    def add_learning_path(self, path: LearningPath) -> None:
        self._paths[path.id] = path

    def add_path_course(self, path_course: PathCourse) -> None:
        self._path_courses.append(path_course)

    def clear(self) -> None:
        self._courses.clear()
        self._sections.clear()
        self._lessons.clear()
        self._paths.clear()
        self._path_courses.clear()

    async def get_course(self, course_id: str) -> Course | None:
        return self._courses.get(course_id)

    async def list_lesson_ids(self, course_id: str) -> list[str]:
        sections = sorted(
            (s for s in self._sections.values() if s.course_id == course_id),
            key=lambda s: s.position,
        )
        lesson_ids: list[str] = []
        for section in sections:
            lessons = sorted(
                (le for le in self._lessons.values() if le.section_id == section.id),
                key=lambda le: le.position,
            )
            lesson_ids.extend(le.id for le in lessons)
        return lesson_ids

    async def get_learning_path(self, path_id: str) -> LearningPath | None:
        return self._paths.get(path_id)

    async def list_path_course_ids(self, path_id: str) -> list[str]:
        rows = sorted(
            (pc for pc in self._path_courses if pc.path_id == path_id),
            key=lambda pc: pc.position,
        )
        return [pc.course_id for pc in rows]


if async_session_factory is not None:
    catalog_repo: CatalogRepo = PgCatalogRepo(async_session_factory)
else:
    catalog_repo = InMemoryCatalogRepo()
