"""PostgreSQL implementation of CredentialRepo.

Creation is one conditional insert:

    INSERT ... ON CONFLICT ON CONSTRAINT uq_credentials_learner_achievement
    DO NOTHING RETURNING id

An empty RETURNING means another process won the race; we read and return
the winner's row instead of erroring.  The audit event is written in the
same transaction as the credential, so either both exist or neither does.
"""

from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cert_service.db.tables import AchievementEventRow, CredentialRow
from cert_service.models.credential import (
    AchievementEvent,
    AchievementType,
    Credential,
)

logger = logging.getLogger(__name__)

_UNIQUE_TUPLE = "uq_credentials_learner_achievement"
# credential_id collisions are astronomically unlikely; bound the retries anyway.
_MAX_CREATE_ATTEMPTS = 3


class PgCredentialRepo:
    """Satisfies the CredentialRepo Protocol using PostgreSQL."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

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
        for attempt in range(1, _MAX_CREATE_ATTEMPTS + 1):
            # Fresh credential_id on every attempt.
            candidate = Credential.new(
                learner_id=learner_id,
                achievement_ref=achievement_ref,
                achievement_type=achievement_type,
                issued_at=issued_at,
                metadata_json=metadata_json,
            )
            try:
                created = await self._insert_if_absent(candidate, achievement_title)
            except IntegrityError:
                logger.warning(
                    "credential_id collision on attempt=%d learner=%s ref=%s",
                    attempt,
                    learner_id,
                    achievement_ref,
                )
                continue
            if created:
                return candidate, True
            break

        existing = await self.find(learner_id, achievement_ref, achievement_type)
        if existing is None:
            raise RuntimeError(
                f"credential insert for learner={learner_id} ref={achievement_ref} "
                "neither succeeded nor found an existing row"
            )
        logger.info(
            "Store conflict resolved to existing credential=%s", existing.credential_id
        )
        return existing, False

    async def _insert_if_absent(
        self, candidate: Credential, achievement_title: str | None
    ) -> bool:
        stmt = (
            pg_insert(CredentialRow)
            .values(
                id=candidate.id,
                credential_id=candidate.credential_id,
                learner_id=candidate.learner_id,
                achievement_ref=candidate.achievement_ref,
                achievement_type=candidate.achievement_type.value,
                issued_at=candidate.issued_at,
                artifact_url=None,
                expires_at=None,
                metadata_json=candidate.metadata_json,
            )
            .on_conflict_do_nothing(constraint=_UNIQUE_TUPLE)
            .returning(CredentialRow.id)
        )
        async with self._session_factory() as session, session.begin():
            inserted_id = (await session.execute(stmt)).scalar_one_or_none()
            if inserted_id is None:
                return False
            event = AchievementEvent.certificate_earned(candidate, achievement_title)
            session.add(
                AchievementEventRow(
                    id=event.id,
                    learner_id=event.learner_id,
                    type=event.type,
                    occurred_at=event.occurred_at,
                    payload_json=event.payload_json,
                )
            )
        return True

    async def find(
        self,
        learner_id: str,
        achievement_ref: str,
        achievement_type: AchievementType,
    ) -> Credential | None:
        stmt = select(CredentialRow).where(
            CredentialRow.learner_id == learner_id,
            CredentialRow.achievement_ref == achievement_ref,
            CredentialRow.achievement_type == achievement_type.value,
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _row_to_credential(row) if row is not None else None

    async def get_by_credential_id(self, credential_id: str) -> Credential | None:
        stmt = select(CredentialRow).where(CredentialRow.credential_id == credential_id)
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _row_to_credential(row) if row is not None else None

    async def attach_artifact_url(
        self, credential_id: str, artifact_url: str
    ) -> Credential | None:
        stmt = (
            update(CredentialRow)
            .where(CredentialRow.credential_id == credential_id)
            .values(artifact_url=artifact_url)
        )
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self.get_by_credential_id(credential_id)

    async def list_by_learner(self, learner_id: str) -> list[Credential]:
        stmt = (
            select(CredentialRow)
            .where(CredentialRow.learner_id == learner_id)
            .order_by(CredentialRow.issued_at.desc())
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_credential(r) for r in rows]

    async def list_events(self, learner_id: str) -> list[AchievementEvent]:
        stmt = (
            select(AchievementEventRow)
            .where(AchievementEventRow.learner_id == learner_id)
            .order_by(AchievementEventRow.occurred_at)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [
            AchievementEvent(
                id=r.id,
                learner_id=r.learner_id,
                type=r.type,
                occurred_at=r.occurred_at,
                payload_json=r.payload_json,
            )
            for r in rows
        ]


def _row_to_credential(row: CredentialRow) -> Credential:
    return Credential(
        id=row.id,
        credential_id=row.credential_id,
        learner_id=row.learner_id,
        achievement_ref=row.achievement_ref,
        achievement_type=AchievementType(row.achievement_type),
        issued_at=row.issued_at,
        artifact_url=row.artifact_url,
        expires_at=row.expires_at,
        metadata_json=row.metadata_json,
    )
