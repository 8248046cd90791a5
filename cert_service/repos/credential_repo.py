"""Credential store.

`get_or_create` is the single place the uniqueness invariant lives: at
most one credential per (learner_id, achievement_ref, achievement_type).
The generation coordinator in front of it only coalesces work inside one
process; it is not what makes issuance safe.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Protocol

from cert_service.db.engine import async_session_factory
from cert_service.models.credential import (
    AchievementEvent,
    AchievementType,
    Credential,
)
from cert_service.repos.pg_credential_repo import PgCredentialRepo


class CredentialRepo(Protocol):
    async def get_or_create(
        self,
        learner_id: str,
        achievement_ref: str,
        achievement_type: AchievementType,
        *,
        issued_at: int,
        achievement_title: str | None = None,
        metadata_json: str | None = None,
    ) -> tuple[Credential, bool]: ...

    async def find(
        self,
        learner_id: str,
        achievement_ref: str,
        achievement_type: AchievementType,
    ) -> Credential | None: ...

    async def get_by_credential_id(self, credential_id: str) -> Credential | None: ...
    async def attach_artifact_url(
        self, credential_id: str, artifact_url: str
    ) -> Credential | None: ...
    async def list_by_learner(self, learner_id: str) -> list[Credential]: ...
    async def list_events(self, learner_id: str) -> list[AchievementEvent]: ...


class InMemoryCredentialRepo:
    """Dict-backed store.

    The check and the insert in get_or_create run without an await in
    between, so under asyncio they are atomic with respect to every other
    coroutine in the process.
    """

    def __init__(self) -> None:
        self._by_tuple: dict[tuple[str, str, AchievementType], Credential] = {}
        self._by_credential_id: dict[str, tuple[str, str, AchievementType]] = {}
        self._events: list[AchievementEvent] = []
        self.create_calls = 0

    def clear(self) -> None:
        self._by_tuple.clear()
        self._by_credential_id.clear()
        self._events.clear()
        self.create_calls = 0

    def count(self) -> int:
        return len(self._by_tuple)

    def put(self, credential: Credential) -> None:
        """Insert or replace a row directly (seeding and tests)."""
        self._by_tuple[credential.tuple_key] = credential
        self._by_credential_id[credential.credential_id] = credential.tuple_key

    async def get_or_create(
        self,
        learner_id: str,
        achievement_ref: str,
        achievement_type: AchievementType,
        *,
        issued_at: int,
        achievement_title: str | None = None,
        metadata_json: str | None = None,
    ) -> tuple[Credential, bool]:
        key = (learner_id, achievement_ref, achievement_type)
        existing = self._by_tuple.get(key)
        if existing is not None:
            return existing, False

        self.create_calls += 1
        credential = Credential.new(
            learner_id=learner_id,
            achievement_ref=achievement_ref,
            achievement_type=achievement_type,
            issued_at=issued_at,
            metadata_json=metadata_json,
        )
        self.put(credential)
        self._events.append(
            AchievementEvent.certificate_earned(credential, achievement_title)
        )
        return credential, True

    async def find(
        self,
        learner_id: str,
        achievement_ref: str,
        achievement_type: AchievementType,
    ) -> Credential | None:
        return self._by_tuple.get((learner_id, achievement_ref, achievement_type))

    async def get_by_credential_id(self, credential_id: str) -> Credential | None:
        key = self._by_credential_id.get(credential_id)
        if key is None:
            return None
        return self._by_tuple.get(key)

    async def attach_artifact_url(
        self, credential_id: str, artifact_url: str
    ) -> Credential | None:
        key = self._by_credential_id.get(credential_id)
        if key is None:
            return None
        updated = replace(self._by_tuple[key], artifact_url=artifact_url)
        self._by_tuple[key] = updated
        return updated

    async def list_by_learner(self, learner_id: str) -> list[Credential]:
        rows = [c for c in self._by_tuple.values() if c.learner_id == learner_id]
        return sorted(rows, key=lambda c: c.issued_at, reverse=True)

    async def list_events(self, learner_id: str) -> list[AchievementEvent]:
        return [e for e in self._events if e.learner_id == learner_id]


if async_session_factory is not None:
    credential_repo: CredentialRepo = PgCredentialRepo(async_session_factory)
else:
    credential_repo = InMemoryCredentialRepo()
