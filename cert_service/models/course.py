from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Course:
    id: str
    slug: str
    title: str
    is_published: bool = True


@dataclass(frozen=True, slots=True)
class CourseSection:
    id: str
    course_id: str
    position: int
    title: str


@dataclass(frozen=True, slots=True)
class Lesson:
    id: str
    section_id: str
    position: int
    title: str


@dataclass(frozen=True, slots=True)
class LearningPath:
    id: str
    title: str


@dataclass(frozen=True, slots=True)
class PathCourse:
    path_id: str
    course_id: str
    position: int
