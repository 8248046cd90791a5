from __future__ import annotations

from typing import Protocol

from cert_service.db.engine import async_session_factory
from cert_service.models.learner import Learner
from cert_service.repos.pg_learner_repo import PgLearnerRepo


class LearnerRepo(Protocol):
    async def get(self, learner_id: str) -> Learner | None: ...


class InMemoryLearnerRepo:
    def __init__(self) -> None:
        self._by_id: dict[str, Learner] = {}

    def add(self, learner: Learner) -> None:
        if learner.id in self._by_id:
            raise ValueError("learner already exists")
        self._by_id[learner.id] = learner

    def clear(self) -> None:
        self._by_id.clear()

    async def get(self, learner_id: str) -> Learner | None:
        return self._by_id.get(learner_id)


if async_session_factory is not None:
    learner_repo: LearnerRepo = PgLearnerRepo(async_session_factory)
else:
    learner_repo = InMemoryLearnerRepo()
