"""Public certificate verification.

Lets anyone holding a credential id confirm the certificate is genuine,
without authentication and without exposing internal ids.  Lookups go
through the read-through cache; expiry is checked on every read.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime

from cert_service.core.metrics import CACHE_OPERATIONS
from cert_service.repos.credential_repo import CredentialRepo, credential_repo
from cert_service.repos.learner_repo import LearnerRepo, learner_repo
from cert_service.services.cache import CacheService, cache_service
from cert_service.services.coordinator import GenerationCoordinator, coordinator

logger = logging.getLogger(__name__)

VERIFY_CACHE_TTL_SECONDS = 300

NOT_FOUND = "Certificate not found"
EXPIRED = "Certificate has expired"


@dataclass(frozen=True, slots=True)
class VerifiedCertificate:
    certificate_id: str
    type: str
    student_name: str
    achievement_name: str
    issued_at: int
    expires_at: int | None


@dataclass(frozen=True, slots=True)
class VerificationResult:
    valid: bool
    certificate: VerifiedCertificate | None = None
    error: str | None = None


def iso_timestamp(epoch_seconds: int | None) -> str | None:
    if epoch_seconds is None:
        return None
    return datetime.fromtimestamp(epoch_seconds, tz=UTC).isoformat()


class VerificationService:
    def __init__(
        self,
        *,
        credentials: CredentialRepo,
        learners: LearnerRepo,
        coord: GenerationCoordinator,
        cache: CacheService,
    ) -> None:
        self._credentials = credentials
        self._learners = learners
        self._coord = coord
        self._cache = cache

    async def verify(self, credential_id: str, *, now: int | None = None) -> VerificationResult:
        cert = await self._lookup(credential_id)
        if cert is None:
            return VerificationResult(valid=False, error=NOT_FOUND)

        now = int(time.time()) if now is None else now
        if cert.expires_at is not None and cert.expires_at < now:
            return VerificationResult(valid=False, error=EXPIRED)
        return VerificationResult(valid=True, certificate=cert)

    async def _lookup(self, credential_id: str) -> VerifiedCertificate | None:
        key = f"verify:{credential_id}"
        cached = await self._cache.get(key)
        if cached is not None:
            try:
                cert = VerifiedCertificate(**json.loads(cached))
            except (ValueError, TypeError):
                logger.warning("Discarding unreadable cache entry key=%s", key)
                await self._cache.delete(key)
            else:
                CACHE_OPERATIONS.labels(operation="hit").inc()
                return cert

        CACHE_OPERATIONS.labels(operation="miss").inc()
        credential = await self._credentials.get_by_credential_id(credential_id)
        if credential is None:
            # Unknown ids are not cached; they are cheap to look up and
            # may become valid moments later.
            return None

        learner = await self._learners.get(credential.learner_id)
        cert = VerifiedCertificate(
            certificate_id=credential.credential_id,
            type=credential.achievement_type.value,
            student_name=learner.display_name if learner else "Student",
            achievement_name=await self._coord.achievement_title(credential),
            issued_at=credential.issued_at,
            expires_at=credential.expires_at,
        )
        await self._cache.set(
            key,
            json.dumps(
                {
                    "certificate_id": cert.certificate_id,
                    "type": cert.type,
                    "student_name": cert.student_name,
                    "achievement_name": cert.achievement_name,
                    "issued_at": cert.issued_at,
                    "expires_at": cert.expires_at,
                }
            ),
            VERIFY_CACHE_TTL_SECONDS,
        )
        return cert


verification_service = VerificationService(
    credentials=credential_repo,
    learners=learner_repo,
    coord=coordinator,
    cache=cache_service,
)
