"""create certificate schema

Revision ID: 3c9e1f7a2b10
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3c9e1f7a2b10"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "learners",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
    )
    op.create_table(
        "courses",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("slug", sa.String(length=255), nullable=False, unique=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column(
            "is_published", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
    )
    op.create_table(
        "course_sections",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "course_id", sa.String(length=64), sa.ForeignKey("courses.id"), nullable=False
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
    )
    op.create_index("ix_course_sections_course_id", "course_sections", ["course_id"])
    op.create_table(
        "lessons",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "section_id",
            sa.String(length=64),
            sa.ForeignKey("course_sections.id"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
    )
    op.create_index("ix_lessons_section_id", "lessons", ["section_id"])
    op.create_table(
        "learning_paths",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("title", sa.String(length=500), nullable=False),
    )
    op.create_table(
        "learning_path_courses",
        sa.Column(
            "path_id",
            sa.String(length=64),
            sa.ForeignKey("learning_paths.id"),
            primary_key=True,
        ),
        sa.Column(
            "course_id", sa.String(length=64), sa.ForeignKey("courses.id"), primary_key=True
        ),
        sa.Column("position", sa.Integer(), nullable=False),
    )
    op.create_table(
        "lesson_progress",
        sa.Column(
            "learner_id", sa.String(length=64), sa.ForeignKey("learners.id"), primary_key=True
        ),
        sa.Column(
            "lesson_id", sa.String(length=64), sa.ForeignKey("lessons.id"), primary_key=True
        ),
        sa.Column("completed_at", sa.Integer(), nullable=True),
    )
    op.create_table(
        "enrollments",
        sa.Column(
            "learner_id", sa.String(length=64), sa.ForeignKey("learners.id"), primary_key=True
        ),
        sa.Column(
            "course_id", sa.String(length=64), sa.ForeignKey("courses.id"), primary_key=True
        ),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
    )
    op.create_table(
        "credentials",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("credential_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column(
            "learner_id", sa.String(length=64), sa.ForeignKey("learners.id"), nullable=False
        ),
        sa.Column("achievement_ref", sa.String(length=64), nullable=False),
        sa.Column("achievement_type", sa.String(length=32), nullable=False),
        sa.Column("issued_at", sa.Integer(), nullable=False),
        sa.Column("artifact_url", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.Integer(), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.UniqueConstraint(
            "learner_id",
            "achievement_ref",
            "achievement_type",
            name="uq_credentials_learner_achievement",
        ),
    )
    op.create_table(
        "achievement_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "learner_id", sa.String(length=64), sa.ForeignKey("learners.id"), nullable=False
        ),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("occurred_at", sa.Integer(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
    )
    op.create_index(
        "ix_achievement_events_learner_id", "achievement_events", ["learner_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_achievement_events_learner_id", table_name="achievement_events")
    op.drop_table("achievement_events")
    op.drop_table("credentials")
    op.drop_table("enrollments")
    op.drop_table("lesson_progress")
    op.drop_table("learning_path_courses")
    op.drop_table("learning_paths")
    op.drop_index("ix_lessons_section_id", table_name="lessons")
    op.drop_table("lessons")
    op.drop_index("ix_course_sections_course_id", table_name="course_sections")
    op.drop_table("course_sections")
    op.drop_table("courses")
    op.drop_table("learners")
