"""Learner-facing certificate operations built on the coordinator."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from cert_service.models.credential import AchievementType, Credential
from cert_service.repos.credential_repo import CredentialRepo, credential_repo
from cert_service.services.coordinator import (
    GenerationCode,
    GenerationCoordinator,
    coordinator,
)
from cert_service.services.entitlement import EntitlementService, entitlement_service

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SyncSummary:
    processed: int = 0
    certificates_generated: int = 0
    already_issued: int = 0
    not_completed: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class CredentialSummary:
    credential: Credential
    achievement_title: str


async def sync_learner(
    learner_id: str,
    *,
    coord: GenerationCoordinator = coordinator,
    entitlement: EntitlementService = entitlement_service,
) -> SyncSummary:
    """Generate every certificate the learner has earned but not received.

    Courses are processed one at a time; a failure on one course is
    recorded in ``errors`` and the sweep continues.
    """
    summary = SyncSummary()
    for course_id in await entitlement.list_entitled_courses(learner_id):
        summary.processed += 1
        try:
            result = await coord.request_generation(
                learner_id, course_id, AchievementType.COURSE
            )
        except Exception as e:
            logger.warning("Sync failed learner=%s course=%s: %s", learner_id, course_id, e)
            summary.errors.append(f"{course_id}: {e}")
            continue

        if result.code is GenerationCode.ISSUED:
            summary.certificates_generated += 1
        elif result.code is GenerationCode.ALREADY_ISSUED:
            summary.already_issued += 1
        elif result.code is GenerationCode.NOT_COMPLETED:
            summary.not_completed += 1
        else:
            summary.errors.append(f"{course_id}: {result.error or result.message}")

    logger.info(
        "Sync learner=%s processed=%d generated=%d already=%d errors=%d",
        learner_id,
        summary.processed,
        summary.certificates_generated,
        summary.already_issued,
        len(summary.errors),
    )
    return summary


async def list_credentials(
    learner_id: str,
    *,
    credentials: CredentialRepo = credential_repo,
    coord: GenerationCoordinator = coordinator,
) -> list[CredentialSummary]:
    rows = await credentials.list_by_learner(learner_id)
    return [
        CredentialSummary(credential=c, achievement_title=await coord.achievement_title(c))
        for c in rows
    ]
