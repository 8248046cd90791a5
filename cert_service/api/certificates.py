"""Certificate endpoints.

- POST /v1/certificates/generate               request generation (learner)
- POST /v1/certificates/sync                   generate every earned course certificate
- GET  /v1/certificates                        the caller's credentials, newest first
- GET  /v1/certificates/{credential_id}/verify public verification, no auth
- GET  /v1/certificates/{credential_id}/download  PDF for the owner

Generation outcomes map onto HTTP like this: "not completed", "already
issued" and "issued" are 200 with ``success`` telling them apart; a
render or delivery failure is 200 with ``success: false`` so the UI can
offer a retry; not entitled is 403 and still carries the result body;
an unknown learner is 404.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from cert_service.api.dependencies import require_user
from cert_service.api.ratelimit import require_rate_limit
from cert_service.models.credential import AchievementType
from cert_service.models.principal import Principal
from cert_service.repos.credential_repo import credential_repo
from cert_service.services.certificate_service import list_credentials, sync_learner
from cert_service.services.coordinator import (
    GenerationCode,
    GenerationResult,
    InvalidGenerationRequest,
    LearnerNotFoundError,
    coordinator,
)
from cert_service.services.rate_limiter import GENERATION_LIMIT
from cert_service.services.verification import (
    NOT_FOUND,
    iso_timestamp,
    verification_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/certificates", tags=["certificates"])


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerateIn(_CamelModel):
    achievement_ref: str = Field(min_length=1, max_length=64)
    achievement_type: AchievementType = AchievementType.COURSE


class GenerationOut(_CamelModel):
    success: bool
    message: str
    code: str
    credential_id: str | None = None
    newly_generated: bool | None = None
    is_completed: bool | None = None
    error: str | None = None

    @classmethod
    def from_result(cls, result: GenerationResult) -> GenerationOut:
        return cls(
            success=result.success,
            message=result.message,
            code=result.code.value,
            credential_id=result.credential_id,
            newly_generated=result.newly_generated,
            is_completed=result.is_completed,
            error=result.error,
        )


class SyncOut(_CamelModel):
    processed: int
    certificates_generated: int
    already_issued: int
    not_completed: int
    errors: list[str]


class CredentialOut(_CamelModel):
    certificate_id: str
    type: AchievementType
    achievement_ref: str
    achievement_title: str
    issued_at: str
    expires_at: str | None = None
    artifact_url: str | None = None


class VerifiedCertificateOut(_CamelModel):
    type: AchievementType
    student_name: str
    achievement_name: str
    issued_at: str
    expires_at: str | None = None
    certificate_id: str


class VerificationOut(_CamelModel):
    valid: bool
    certificate: VerifiedCertificateOut | None = None
    error: str | None = None


@router.post(
    "/generate",
    response_model=GenerationOut,
    response_model_exclude_none=True,
    dependencies=[Depends(require_rate_limit(GENERATION_LIMIT))],
)
async def generate_certificate(
    body: GenerateIn,
    principal: Annotated[Principal, Depends(require_user)],
):
    try:
        result = await coordinator.request_generation(
            principal.learner_id, body.achievement_ref, body.achievement_type
        )
    except InvalidGenerationRequest as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)
        ) from None
    except LearnerNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Learner not found"
        ) from None

    out = GenerationOut.from_result(result)
    if result.code is GenerationCode.NOT_ENTITLED:
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content=out.model_dump(by_alias=True, exclude_none=True),
        )
    return out


@router.post("/sync", response_model=SyncOut, response_model_by_alias=True)
async def sync_certificates(
    principal: Annotated[Principal, Depends(require_user)],
) -> SyncOut:
    summary = await sync_learner(principal.learner_id)
    return SyncOut(
        processed=summary.processed,
        certificates_generated=summary.certificates_generated,
        already_issued=summary.already_issued,
        not_completed=summary.not_completed,
        errors=summary.errors,
    )


@router.get("", response_model=list[CredentialOut])
async def list_my_certificates(
    principal: Annotated[Principal, Depends(require_user)],
) -> list[CredentialOut]:
    summaries = await list_credentials(principal.learner_id)
    return [
        CredentialOut(
            certificate_id=s.credential.credential_id,
            type=s.credential.achievement_type,
            achievement_ref=s.credential.achievement_ref,
            achievement_title=s.achievement_title,
            issued_at=iso_timestamp(s.credential.issued_at),
            expires_at=iso_timestamp(s.credential.expires_at),
            artifact_url=s.credential.artifact_url,
        )
        for s in summaries
    ]


@router.get(
    "/{credential_id}/verify",
    response_model=VerificationOut,
    response_model_exclude_none=True,
    dependencies=[Depends(require_rate_limit())],
)
async def verify_certificate(credential_id: str):
    result = await verification_service.verify(credential_id)
    if result.certificate is None:
        out = VerificationOut(valid=False, error=result.error)
        if result.error == NOT_FOUND:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content=out.model_dump(by_alias=True, exclude_none=True),
            )
        return out

    cert = result.certificate
    return VerificationOut(
        valid=result.valid,
        certificate=VerifiedCertificateOut(
            type=cert.type,
            student_name=cert.student_name,
            achievement_name=cert.achievement_name,
            issued_at=iso_timestamp(cert.issued_at),
            expires_at=iso_timestamp(cert.expires_at),
            certificate_id=cert.certificate_id,
        ),
    )


@router.get("/{credential_id}/download")
async def download_certificate(
    credential_id: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> Response:
    credential = await credential_repo.get_by_credential_id(credential_id)
    # Someone else's certificate looks exactly like a missing one.
    if credential is None or (
        credential.learner_id != principal.learner_id and not principal.is_admin()
    ):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Certificate not found"
        )

    try:
        pdf = await coordinator.render_artifact(credential)
    except LearnerNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Learner not found"
        ) from None

    logger.info(
        "Certificate download credential=%s learner=%s",
        credential_id,
        principal.learner_id,
    )
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="certificate-{credential_id}.pdf"'
        },
    )
