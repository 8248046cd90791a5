"""Delivery collaborators: durable artifact storage and learner notification.

Both run after the credential row is committed.  The coordinator treats
them as best-effort: a storage failure is reported back to the caller as
a retryable failure, a notification failure is only logged.  Nothing in
here may roll back a credential.

Each concern is a Protocol with two implementations, picked once at
import from SETTINGS (same conditional-singleton pattern as the repos):

  ArtifactStorage   InMemoryArtifactStorage  |  HttpArtifactStorage (PUT)
  Notifier          LoggingNotifier          |  WebhookNotifier (POST JSON)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Protocol, runtime_checkable

import httpx

from cert_service.core.config import SETTINGS

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
_HTTP_TIMEOUT_SECONDS = 10.0


class DeliveryError(Exception):
    """A downstream delivery step failed (network, non-2xx, bad response)."""


def artifact_path(credential_id: str) -> str:
    return f"certificates/{credential_id}.pdf"


def verification_url(credential_id: str, base_url: str | None = None) -> str:
    base = (base_url or SETTINGS.public_base_url).rstrip("/")
    return f"{base}/certificates/verify/{credential_id}"


# ---------------------------------------------------------------------------
# Artifact storage
# ---------------------------------------------------------------------------


@runtime_checkable
class ArtifactStorage(Protocol):
    async def store(self, data: bytes, path: str) -> str:
        """Persist the bytes and return a URL the learner can fetch them from."""
        ...


class InMemoryArtifactStorage:
    """Dict-backed storage for dev and tests.  URLs use a memory:// scheme."""

    def __init__(self) -> None:
        self._objects: dict[str, bytes] = {}

    def clear(self) -> None:
        self._objects.clear()

    def get(self, path: str) -> bytes | None:
        return self._objects.get(path)

    async def store(self, data: bytes, path: str) -> str:
        self._objects[path] = data
        return f"memory://{path}"


class HttpArtifactStorage:
    """Uploads with a plain HTTP PUT to an object-storage endpoint.

    The endpoint may answer with ``{"url": "..."}``; otherwise the object
    URL is assumed to be ``<base>/<path>``.
    """

    def __init__(self, base_url: str, *, timeout: float = _HTTP_TIMEOUT_SECONDS) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    async def store(self, data: bytes, path: str) -> str:
        target = f"{self._base_url}/{path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.put(
                    target, content=data, headers={"Content-Type": PDF_CONTENT_TYPE}
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise DeliveryError(f"artifact upload failed: {e}") from e

        url = target
        if response.headers.get("content-type", "").startswith("application/json"):
            url = response.json().get("url") or target
        logger.info("Artifact stored path=%s bytes=%d", path, len(data))
        return url


# ---------------------------------------------------------------------------
# Notification
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CertificateNotification:
    email: str
    recipient_name: str
    achievement_name: str
    credential_id: str
    artifact_url: str
    verification_url: str


@runtime_checkable
class Notifier(Protocol):
    async def notify(self, notification: CertificateNotification) -> None: ...


class LoggingNotifier:
    """Logs instead of sending.  Keeps what it "sent" so tests can look."""

    def __init__(self) -> None:
        self.sent: list[CertificateNotification] = []

    def clear(self) -> None:
        self.sent.clear()

    async def notify(self, notification: CertificateNotification) -> None:
        self.sent.append(notification)
        logger.info(
            "Certificate notification to=%s credential=%s url=%s",
            notification.email,
            notification.credential_id,
            notification.verification_url,
        )


class WebhookNotifier:
    """POSTs the notification as JSON to an outbound mail/webhook service."""

    def __init__(self, url: str, *, timeout: float = _HTTP_TIMEOUT_SECONDS) -> None:
        self._url = url
        self._timeout = timeout

    async def notify(self, notification: CertificateNotification) -> None:
        payload = {"type": "certificate_earned", **asdict(notification)}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise DeliveryError(f"notification failed: {e}") from e


# ---------------------------------------------------------------------------
# Module-level singletons
# ---------------------------------------------------------------------------

if SETTINGS.artifact_storage_url:
    artifact_storage: ArtifactStorage = HttpArtifactStorage(SETTINGS.artifact_storage_url)
else:
    artifact_storage = InMemoryArtifactStorage()

if SETTINGS.notify_webhook_url:
    notifier: Notifier = WebhookNotifier(SETTINGS.notify_webhook_url)
else:
    notifier = LoggingNotifier()
