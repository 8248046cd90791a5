"""PostgreSQL implementation of LearnerRepo."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cert_service.db.tables import LearnerRow
from cert_service.models.learner import Learner


class PgLearnerRepo:
    """Satisfies the LearnerRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, learner_id: str) -> Learner | None:
        stmt = select(LearnerRow).where(LearnerRow.id == learner_id)
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return Learner(id=row.id, email=row.email, name=row.name or "")
