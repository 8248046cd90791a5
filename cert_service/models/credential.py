from __future__ import annotations

import json
import secrets
import string
import time
from dataclasses import dataclass
from enum import StrEnum
from uuid import UUID, uuid4

_ID_ALPHABET = string.digits + string.ascii_uppercase
_ID_SUFFIX_LEN = 8

CERTIFICATE_EARNED = "certificate_earned"


class AchievementType(StrEnum):
    COURSE = "course"
    LEARNING_PATH = "learning_path"

    @property
    def label(self) -> str:
        return "Course" if self is AchievementType.COURSE else "Learning Path"


def new_credential_id() -> str:
    """Human-displayable id: CERT-<epoch millis>-<8 random base36 chars>.

    A fresh id is minted on every creation attempt, never reused.
    """
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_SUFFIX_LEN))
    return f"CERT-{millis}-{suffix}"


@dataclass(frozen=True, slots=True)
class Credential:
    """Durable record of an earned achievement.

    At most one exists per (learner_id, achievement_ref, achievement_type);
    the credential store enforces it.
    """

    id: UUID
    credential_id: str
    learner_id: str
    achievement_ref: str
    achievement_type: AchievementType
    issued_at: int
    artifact_url: str | None = None
    expires_at: int | None = None
    metadata_json: str | None = None

    @staticmethod
    def new(
        *,
        learner_id: str,
        achievement_ref: str,
        achievement_type: AchievementType,
        issued_at: int,
        metadata_json: str | None = None,
    ) -> Credential:
        return Credential(
            id=uuid4(),
            credential_id=new_credential_id(),
            learner_id=learner_id,
            achievement_ref=achievement_ref,
            achievement_type=achievement_type,
            issued_at=issued_at,
            metadata_json=metadata_json,
        )

    @property
    def tuple_key(self) -> tuple[str, str, AchievementType]:
        return (self.learner_id, self.achievement_ref, self.achievement_type)

    def is_expired(self, now: int) -> bool:
        return self.expires_at is not None and self.expires_at < now


@dataclass(frozen=True, slots=True)
class AchievementEvent:
    """Append-only audit record written alongside a new credential."""

    id: UUID
    learner_id: str
    type: str  # certificate_earned
    occurred_at: int
    payload_json: str

    @staticmethod
    def new(
        *, learner_id: str, type: str, occurred_at: int, payload_json: str
    ) -> AchievementEvent:
        return AchievementEvent(
            id=uuid4(),
            learner_id=learner_id,
            type=type,
            occurred_at=occurred_at,
            payload_json=payload_json,
        )

    @staticmethod
    def certificate_earned(
        credential: Credential, achievement_title: str | None
    ) -> AchievementEvent:
        payload = {
            "certificateId": credential.credential_id,
            "type": credential.achievement_type.value,
            "achievementRef": credential.achievement_ref,
            "achievementTitle": achievement_title,
        }
        return AchievementEvent.new(
            learner_id=credential.learner_id,
            type=CERTIFICATE_EARNED,
            occurred_at=credential.issued_at,
            payload_json=json.dumps(payload),
        )
