"""SQLAlchemy table definitions.

These map to the frozen dataclass domain models in cert_service/models/.
Repos convert between SQLAlchemy rows and domain dataclasses.
"""

from __future__ import annotations

import uuid

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from cert_service.db.engine import Base

# --- Learners ---


class LearnerRow(Base):
    __tablename__ = "learners"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")


# --- Catalog ---


class CourseRow(Base):
    __tablename__ = "courses"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class CourseSectionRow(Base):
    __tablename__ = "course_sections"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    course_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("courses.id"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)


class LessonRow(Base):
    __tablename__ = "lessons"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    section_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("course_sections.id"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)


class LearningPathRow(Base):
    __tablename__ = "learning_paths"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)


class LearningPathCourseRow(Base):
    __tablename__ = "learning_path_courses"

    path_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("learning_paths.id"), primary_key=True
    )
    course_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("courses.id"), primary_key=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)


# --- Progress + entitlement ---


class LessonProgressRow(Base):
    __tablename__ = "lesson_progress"

    learner_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("learners.id"), primary_key=True
    )
    lesson_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("lessons.id"), primary_key=True
    )
    completed_at: Mapped[int | None] = mapped_column(Integer, nullable=True)


class EnrollmentRow(Base):
    __tablename__ = "enrollments"

    learner_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("learners.id"), primary_key=True
    )
    course_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("courses.id"), primary_key=True
    )
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="active"
    )  # active|refunded|cancelled


# --- Credentials ---


class CredentialRow(Base):
    __tablename__ = "credentials"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    credential_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False
    )
    learner_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("learners.id"), nullable=False
    )
    achievement_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    achievement_type: Mapped[str] = mapped_column(
        String(32), nullable=False
    )  # course|learning_path
    issued_at: Mapped[int] = mapped_column(Integer, nullable=False)
    artifact_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "learner_id",
            "achievement_ref",
            "achievement_type",
            name="uq_credentials_learner_achievement",
        ),
    )


class AchievementEventRow(Base):
    """Append-only audit trail.  Never updated or deleted."""

    __tablename__ = "achievement_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    learner_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("learners.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    occurred_at: Mapped[int] = mapped_column(Integer, nullable=False)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
