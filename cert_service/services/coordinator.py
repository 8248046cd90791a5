"""Certificate generation coordinator.

Sits in front of the completion evaluator, the credential store, the
renderer and the delivery collaborators, and makes sure that at most one
generation sequence runs per key at a time:

    key = "<learner_id>:<achievement_ref>"

HOW COALESCING WORKS
--------------------
The cache maps a key to an entry holding one shared ``asyncio.Task``.
The first caller inserts the entry and starts the task *before its first
await*.  Under asyncio nothing else runs between those two statements, so
a second caller arriving while the first is suspended always finds the
entry and simply awaits the same task.  Every waiter receives the same
result object (or the same exception).

Waiters await the task through ``asyncio.shield``: a client that
disconnects cancels only its own wait, never the shared work.

STATE PER KEY
-------------
    ABSENT -> IN_FLIGHT -> settled -> (evicted) -> ABSENT

Only IN_FLIGHT blocks new work.  When the task settles:

  - a success holding a credential stays cached for ``ttl_seconds`` so
    rapid repeat calls do not hit storage again;
  - everything else (not completed, not entitled, render/delivery
    failure, timeout, unexpected exception) is evicted immediately, so
    the next call starts a fresh attempt.

``cleanup()`` evicts settled entries older than the TTL.  IN_FLIGHT
entries are never touched by cleanup; they are bounded by
``timeout_seconds`` instead, after which every waiter gets a
COORDINATION_TIMEOUT result.

The learner notification is started as its own task once the artifact is
stored and is not part of the shared result: waiters get ISSUED as soon
as the certificate exists, and a slow mail service only delays the mail.
It has its own timeout; failures are logged and counted, never retried.

A course and a learning path may share a ref and therefore a key.  An
entry remembers its achievement type, and a request of the other type
waits for it to settle and then starts its own generation.

The cache only coalesces work inside this process.  The uniqueness of
credentials is guaranteed by CredentialRepo.get_or_create, not here.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import StrEnum

from cert_service.core.config import SETTINGS
from cert_service.core.metrics import (
    DELIVERY_FAILURES,
    GENERATION_COALESCED,
    GENERATION_REQUESTS,
    GENERATIONS_IN_FLIGHT,
)
from cert_service.models.credential import AchievementType, Credential
from cert_service.models.learner import Learner
from cert_service.repos.catalog_repo import CatalogRepo, catalog_repo
from cert_service.repos.credential_repo import CredentialRepo, credential_repo
from cert_service.repos.learner_repo import LearnerRepo, learner_repo
from cert_service.services import renderer
from cert_service.services.completion import CompletionEvaluator, completion_evaluator
from cert_service.services.delivery import (
    ArtifactStorage,
    CertificateNotification,
    Notifier,
    artifact_path,
    artifact_storage,
    notifier,
    verification_url,
)
from cert_service.services.entitlement import EntitlementService, entitlement_service

logger = logging.getLogger(__name__)


class GenerationCode(StrEnum):
    ISSUED = "ISSUED"
    ALREADY_ISSUED = "ALREADY_ISSUED"
    NOT_COMPLETED = "NOT_COMPLETED"
    NOT_ENTITLED = "NOT_ENTITLED"
    RENDER_OR_DELIVERY_FAILED = "RENDER_OR_DELIVERY_FAILED"
    COORDINATION_TIMEOUT = "COORDINATION_TIMEOUT"


# Codes whose result is worth serving again from the cache.
_RETAINED = frozenset({GenerationCode.ISSUED, GenerationCode.ALREADY_ISSUED})


@dataclass(frozen=True, slots=True)
class GenerationResult:
    success: bool
    message: str
    code: GenerationCode
    credential_id: str | None = None
    newly_generated: bool | None = None
    is_completed: bool | None = None
    error: str | None = None


class InvalidGenerationRequest(ValueError):
    pass


class LearnerNotFoundError(LookupError):
    pass


@dataclass(slots=True)
class _Entry:
    key: str
    achievement_type: AchievementType
    attempt: int
    created_at: float
    task: asyncio.Task[GenerationResult] = field(repr=False)

    @property
    def is_generating(self) -> bool:
        return not self.task.done()


@dataclass(frozen=True, slots=True)
class EntryStatus:
    key: str
    is_generating: bool
    age: float  # seconds since the entry was created


@dataclass(frozen=True, slots=True)
class CoordinatorStatus:
    total_entries: int
    active_generations: int
    entries: list[EntryStatus]


def generation_key(learner_id: str, achievement_ref: str) -> str:
    return f"{learner_id}:{achievement_ref}"


def _retained_result(task: asyncio.Task[GenerationResult]) -> GenerationResult | None:
    """The task's result if it finished with a cacheable success, else None."""
    if not task.done() or task.cancelled() or task.exception() is not None:
        return None
    result = task.result()
    return result if result.code in _RETAINED else None


class GenerationCoordinator:
    def __init__(
        self,
        *,
        learners: LearnerRepo,
        catalog: CatalogRepo,
        credentials: CredentialRepo,
        evaluator: CompletionEvaluator,
        entitlement: EntitlementService,
        storage: ArtifactStorage,
        notifier: Notifier,
        ttl_seconds: float = 60,
        timeout_seconds: float = 30,
        issuer_name: str = "AI Genius Lab",
        public_base_url: str = "http://localhost:3000",
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._learners = learners
        self._catalog = catalog
        self._credentials = credentials
        self._evaluator = evaluator
        self._entitlement = entitlement
        self._storage = storage
        self._notifier = notifier
        self._ttl = ttl_seconds
        self._timeout = timeout_seconds
        self._issuer_name = issuer_name
        self._public_base_url = public_base_url
        self._clock = clock
        self._wall_clock = wall_clock

        self._entries: dict[str, _Entry] = {}
        # Attempts per key, kept across evictions so retries are numbered.
        self._attempts: dict[str, int] = {}
        # Notifications run outside the shared generation task.
        self._notifications: set[asyncio.Task[None]] = set()

    # -- public surface -------------------------------------------------

    async def request_generation(
        self,
        learner_id: str,
        achievement_ref: str,
        achievement_type: AchievementType | str,
    ) -> GenerationResult:
        learner_id = (learner_id or "").strip()
        achievement_ref = (achievement_ref or "").strip()
        if not learner_id or not achievement_ref:
            raise InvalidGenerationRequest("learner_id and achievement_ref are required")
        try:
            achievement_type = AchievementType(str(achievement_type).strip().lower())
        except ValueError:
            raise InvalidGenerationRequest(
                f"unknown achievement_type {achievement_type!r}"
            ) from None

        self.cleanup()
        key = generation_key(learner_id, achievement_ref)

        entry = self._entries.get(key)
        while entry is not None and entry.achievement_type is not achievement_type:
            # Same ref, other kind of achievement: never share its result.
            if not entry.is_generating:
                break
            await asyncio.wait([entry.task])
            entry = self._entries.get(key)

        if entry is not None and entry.achievement_type is achievement_type:
            if entry.is_generating:
                GENERATION_COALESCED.inc()
                logger.debug("Coalesced onto in-flight generation key=%s", key)
                return await asyncio.shield(entry.task)

            cached = _retained_result(entry.task)
            if cached is not None:
                GENERATION_REQUESTS.labels(outcome="cached").inc()
                if cached.newly_generated:
                    return replace(
                        cached,
                        code=GenerationCode.ALREADY_ISSUED,
                        newly_generated=False,
                        message="Certificate already exists",
                    )
                return cached
            # Settled but not yet evicted: fall through and start fresh.

        # Lookup-or-insert: no await between here and the insert below.
        attempt = self._attempts.get(key, 0) + 1
        self._attempts[key] = attempt
        task = asyncio.create_task(
            self._run(key, attempt, learner_id, achievement_ref, achievement_type),
            name=f"certificate-generation:{key}",
        )
        entry = _Entry(
            key=key,
            achievement_type=achievement_type,
            attempt=attempt,
            created_at=self._clock(),
            task=task,
        )
        self._entries[key] = entry
        GENERATIONS_IN_FLIGHT.inc()
        task.add_done_callback(lambda t, e=entry: self._settle(e, t))

        return await asyncio.shield(task)

    def status(self) -> CoordinatorStatus:
        now = self._clock()
        entries = [
            EntryStatus(
                key=e.key,
                is_generating=e.is_generating,
                age=round(now - e.created_at, 3),
            )
            for e in self._entries.values()
        ]
        return CoordinatorStatus(
            total_entries=len(entries),
            active_generations=sum(1 for e in entries if e.is_generating),
            entries=entries,
        )

    def cleanup(self) -> int:
        """Evict settled entries older than the TTL.  Returns how many went."""
        now = self._clock()
        stale = [
            key
            for key, e in self._entries.items()
            if not e.is_generating and now - e.created_at > self._ttl
        ]
        for key in stale:
            del self._entries[key]
            # A key that finished its lifecycle starts numbering again.
            self._attempts.pop(key, None)
        if stale:
            logger.debug("Evicted %d stale generation entries", len(stale))
        return len(stale)

    def clear(self) -> None:
        for entry in self._entries.values():
            if entry.is_generating:
                entry.task.cancel()
        self._entries.clear()
        self._attempts.clear()

    # -- settlement -----------------------------------------------------

    def _settle(self, entry: _Entry, task: asyncio.Task[GenerationResult]) -> None:
        GENERATIONS_IN_FLIGHT.dec()
        log_extra = {"generation_key": entry.key, "attempt": entry.attempt}

        if task.cancelled():
            outcome = "cancelled"
            logger.warning("Generation cancelled key=%s", entry.key, extra=log_extra)
        elif task.exception() is not None:
            outcome = "error"
            logger.warning(
                "Generation raised key=%s attempt=%d: %r",
                entry.key,
                entry.attempt,
                task.exception(),
                extra=log_extra,
            )
        else:
            result = task.result()
            outcome = result.code.value.lower()
            logger.info(
                "Generation settled key=%s attempt=%d code=%s",
                entry.key,
                entry.attempt,
                result.code.value,
                extra={**log_extra, "credential_id": result.credential_id},
            )

        GENERATION_REQUESTS.labels(outcome=outcome).inc()
        if outcome in ("not_completed", "not_entitled"):
            self._attempts.pop(entry.key, None)

        if _retained_result(task) is None and self._entries.get(entry.key) is entry:
            del self._entries[entry.key]

    # -- the generation sequence -----------------------------------------

    async def _run(
        self,
        key: str,
        attempt: int,
        learner_id: str,
        achievement_ref: str,
        achievement_type: AchievementType,
    ) -> GenerationResult:
        try:
            return await asyncio.wait_for(
                self._generate(key, attempt, learner_id, achievement_ref, achievement_type),
                timeout=self._timeout or None,
            )
        except TimeoutError:
            logger.error(
                "Generation timed out key=%s attempt=%d after %ss",
                key,
                attempt,
                self._timeout,
                extra={"generation_key": key, "attempt": attempt},
            )
            return GenerationResult(
                success=False,
                message="Certificate generation timed out",
                code=GenerationCode.COORDINATION_TIMEOUT,
                error=f"generation exceeded {self._timeout}s",
            )

    async def _generate(
        self,
        key: str,
        attempt: int,
        learner_id: str,
        achievement_ref: str,
        achievement_type: AchievementType,
    ) -> GenerationResult:
        learner = await self._learners.get(learner_id)
        if learner is None:
            raise LearnerNotFoundError(f"learner {learner_id} not found")

        if not await self._entitlement.is_entitled(
            learner_id, achievement_ref, achievement_type
        ):
            noun = "course" if achievement_type is AchievementType.COURSE else "learning path"
            return GenerationResult(
                success=False,
                message=f"You have not purchased this {noun}",
                code=GenerationCode.NOT_ENTITLED,
            )

        if not await self._evaluator.is_complete(
            learner_id, achievement_ref, achievement_type
        ):
            return GenerationResult(
                success=True,
                message=f"{achievement_type.label} not yet completed",
                code=GenerationCode.NOT_COMPLETED,
                is_completed=False,
            )

        title, metadata = await self._describe(achievement_ref, achievement_type)
        credential, created = await self._credentials.get_or_create(
            learner_id,
            achievement_ref,
            achievement_type,
            issued_at=int(self._wall_clock()),
            achievement_title=title,
            metadata_json=metadata,
        )

        if not created and credential.artifact_url:
            return GenerationResult(
                success=True,
                message="Certificate already exists",
                code=GenerationCode.ALREADY_ISSUED,
                credential_id=credential.credential_id,
                newly_generated=False,
                is_completed=True,
            )

        if not created:
            logger.info(
                "Repairing credential=%s with no artifact key=%s",
                credential.credential_id,
                key,
            )

        try:
            credential = await self._render_and_store(credential, learner, title)
        except Exception as e:
            DELIVERY_FAILURES.labels(step="storage").inc()
            logger.exception(
                "Render/storage failed key=%s attempt=%d credential=%s",
                key,
                attempt,
                credential.credential_id,
                extra={
                    "generation_key": key,
                    "attempt": attempt,
                    "credential_id": credential.credential_id,
                },
            )
            return GenerationResult(
                success=False,
                message="Certificate generation failed",
                code=GenerationCode.RENDER_OR_DELIVERY_FAILED,
                credential_id=credential.credential_id,
                is_completed=True,
                error=str(e) or type(e).__name__,
            )

        self._spawn_notification(credential, learner, title)

        return GenerationResult(
            success=True,
            message="Certificate generated successfully",
            code=GenerationCode.ISSUED,
            credential_id=credential.credential_id,
            newly_generated=True,
            is_completed=True,
        )

    async def _describe(
        self, achievement_ref: str, achievement_type: AchievementType
    ) -> tuple[str, str | None]:
        """Human title of the achievement, plus path metadata for paths."""
        if achievement_type is AchievementType.COURSE:
            course = await self._catalog.get_course(achievement_ref)
            return (course.title if course else achievement_ref), None

        path = await self._catalog.get_learning_path(achievement_ref)
        courses = []
        for course_id in await self._catalog.list_path_course_ids(achievement_ref):
            course = await self._catalog.get_course(course_id)
            courses.append(
                {"courseId": course_id, "title": course.title if course else course_id}
            )
        metadata = json.dumps({"courseCount": len(courses), "courses": courses})
        return (path.title if path else achievement_ref), metadata

    def _content(
        self, credential: Credential, learner: Learner, title: str
    ) -> renderer.CertificateContent:
        return renderer.CertificateContent(
            credential_id=credential.credential_id,
            recipient_name=learner.display_name,
            achievement_name=title,
            issued_at=credential.issued_at,
            achievement_type=credential.achievement_type,
            issuer_name=self._issuer_name,
        )

    async def _render_and_store(
        self, credential: Credential, learner: Learner, title: str
    ) -> Credential:
        pdf = await renderer.render_async(self._content(credential, learner, title))
        url = await self._storage.store(pdf, artifact_path(credential.credential_id))
        updated = await self._credentials.attach_artifact_url(credential.credential_id, url)
        return updated or replace(credential, artifact_url=url)

    def _spawn_notification(
        self, credential: Credential, learner: Learner, title: str
    ) -> None:
        task = asyncio.create_task(
            self._notify(credential, learner, title),
            name=f"certificate-notification:{credential.credential_id}",
        )
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def _notify(self, credential: Credential, learner: Learner, title: str) -> None:
        notification = CertificateNotification(
            email=learner.email,
            recipient_name=learner.display_name,
            achievement_name=title,
            credential_id=credential.credential_id,
            artifact_url=credential.artifact_url or "",
            verification_url=verification_url(
                credential.credential_id, self._public_base_url
            ),
        )
        try:
            await asyncio.wait_for(
                self._notifier.notify(notification), timeout=self._timeout or None
            )
        except Exception:
            DELIVERY_FAILURES.labels(step="notification").inc()
            logger.warning(
                "Notification failed for credential=%s",
                credential.credential_id,
                exc_info=True,
            )

    @property
    def pending_notifications(self) -> int:
        return len(self._notifications)

    async def drain_notifications(self) -> None:
        """Wait for every notification started so far to finish."""
        while self._notifications:
            await asyncio.gather(*self._notifications, return_exceptions=True)

    # -- supporting operations ------------------------------------------

    async def render_artifact(self, credential: Credential) -> bytes:
        """Re-render the PDF for an existing credential.  Nothing is uploaded."""
        learner = await self._learners.get(credential.learner_id)
        if learner is None:
            raise LearnerNotFoundError(f"learner {credential.learner_id} not found")
        title, _ = await self._describe(
            credential.achievement_ref, credential.achievement_type
        )
        return await renderer.render_async(self._content(credential, learner, title))

    async def achievement_title(self, credential: Credential) -> str:
        title, _ = await self._describe(
            credential.achievement_ref, credential.achievement_type
        )
        return title


async def run_periodic_cleanup(
    coordinator: GenerationCoordinator, interval_seconds: float
) -> None:
    """Call cleanup() forever on a fixed interval.  Cancel to stop."""
    while True:
        await asyncio.sleep(interval_seconds)
        evicted = coordinator.cleanup()
        if evicted:
            logger.info("Periodic cleanup evicted %d entries", evicted)


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

coordinator = GenerationCoordinator(
    learners=learner_repo,
    catalog=catalog_repo,
    credentials=credential_repo,
    evaluator=completion_evaluator,
    entitlement=entitlement_service,
    storage=artifact_storage,
    notifier=notifier,
    ttl_seconds=SETTINGS.generation_ttl_seconds,
    timeout_seconds=SETTINGS.generation_timeout_seconds,
    issuer_name=SETTINGS.issuer_name,
    public_base_url=SETTINGS.public_base_url,
)
