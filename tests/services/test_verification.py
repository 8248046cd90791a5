from __future__ import annotations

import asyncio
import json
from dataclasses import replace

from prometheus_client import REGISTRY

from cert_service.models.credential import AchievementType
from cert_service.repos.credential_repo import credential_repo
from cert_service.services.cache import cache_service
from cert_service.services.verification import (
    EXPIRED,
    NOT_FOUND,
    iso_timestamp,
    verification_service,
)
from tests.conftest import seed_course, seed_learner


def _cache_ops(operation: str) -> float:
    value = REGISTRY.get_sample_value(
        "cache_operations_total", labels={"operation": operation}
    )
    return value or 0.0


def _issue(expires_at: int | None = None) -> str:
    seed_learner("learner-1", name="Ada Lovelace")
    seed_course("course-1", title="Intro to Machine Learning")
    credential, _ = asyncio.run(
        credential_repo.get_or_create(
            "learner-1", "course-1", AchievementType.COURSE, issued_at=1_700_000_000
        )
    )
    if expires_at is not None:
        credential_repo.put(replace(credential, expires_at=expires_at))  # type: ignore[attr-defined]
    return credential.credential_id


def test_unknown_id_is_not_found() -> None:
    result = asyncio.run(verification_service.verify("CERT-0-DOESNOTX"))

    assert result.valid is False
    assert result.error == NOT_FOUND
    assert result.certificate is None


def test_known_id_returns_public_details() -> None:
    credential_id = _issue()

    result = asyncio.run(verification_service.verify(credential_id))

    assert result.valid is True
    cert = result.certificate
    assert cert.certificate_id == credential_id
    assert cert.type == "course"
    assert cert.student_name == "Ada Lovelace"
    assert cert.achievement_name == "Intro to Machine Learning"
    assert cert.issued_at == 1_700_000_000
    assert cert.expires_at is None


def test_expired_certificate_is_reported_invalid() -> None:
    credential_id = _issue(expires_at=1_800_000_000)

    before = asyncio.run(verification_service.verify(credential_id, now=1_799_999_999))
    after = asyncio.run(verification_service.verify(credential_id, now=1_800_000_001))

    assert before.valid is True
    assert after.valid is False
    assert after.error == EXPIRED


def test_second_lookup_is_served_from_cache() -> None:
    credential_id = _issue()
    hits, misses = _cache_ops("hit"), _cache_ops("miss")

    asyncio.run(verification_service.verify(credential_id))
    asyncio.run(verification_service.verify(credential_id))

    assert _cache_ops("miss") - misses == 1
    assert _cache_ops("hit") - hits == 1
    cached = json.loads(asyncio.run(cache_service.get(f"verify:{credential_id}")))
    assert cached["certificate_id"] == credential_id


def test_unknown_ids_are_not_cached() -> None:
    asyncio.run(verification_service.verify("CERT-0-DOESNOTX"))

    assert asyncio.run(cache_service.get("verify:CERT-0-DOESNOTX")) is None


def test_unreadable_cache_entry_falls_back_to_store() -> None:
    credential_id = _issue()
    asyncio.run(cache_service.set(f"verify:{credential_id}", "{not json", 300))

    result = asyncio.run(verification_service.verify(credential_id))

    assert result.valid is True
    assert result.certificate.certificate_id == credential_id
    repaired = json.loads(asyncio.run(cache_service.get(f"verify:{credential_id}")))
    assert repaired["student_name"] == "Ada Lovelace"


def test_iso_timestamp() -> None:
    assert iso_timestamp(None) is None
    assert iso_timestamp(0) == "1970-01-01T00:00:00+00:00"
