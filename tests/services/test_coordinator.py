"""Generation coordinator tests.

Each test builds its own coordinator over fresh in-memory repos, so the
cache state asserted through status() belongs to that test alone.  Async
code is driven with asyncio.run() inside plain test functions.

Fakes:
  GatedEvaluator   counts is_complete() calls; can block on an Event so
                   concurrent callers pile up behind one generation
  FlakyStorage     fails the first N uploads
  HangingStorage   never returns while ``hang`` is set
  HangingNotifier  never returns at all
  FakeClock        monotonic clock the test advances by hand
"""

from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass

import pytest
from prometheus_client import REGISTRY

from cert_service.models.credential import AchievementType
from cert_service.repos.catalog_repo import InMemoryCatalogRepo
from cert_service.repos.credential_repo import InMemoryCredentialRepo
from cert_service.repos.learner_repo import InMemoryLearnerRepo
from cert_service.repos.progress_repo import InMemoryEnrollmentRepo, InMemoryProgressRepo
from cert_service.services import renderer
from cert_service.services.completion import CompletionEvaluator
from cert_service.services.coordinator import (
    GenerationCode,
    GenerationCoordinator,
    InvalidGenerationRequest,
    LearnerNotFoundError,
)
from cert_service.services.delivery import (
    DeliveryError,
    InMemoryArtifactStorage,
    LoggingNotifier,
)
from cert_service.services.entitlement import EntitlementService
from tests.conftest import complete, enroll, seed_course, seed_learner, seed_path

CERT_ID = re.compile(r"^CERT-\d{13}-[0-9A-Z]{8}$")


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class GatedEvaluator(CompletionEvaluator):
    def __init__(self, catalog, progress, gate: asyncio.Event | None = None) -> None:
        super().__init__(catalog, progress)
        self.calls = 0
        self.gate = gate

    async def is_complete(self, learner_id, achievement_ref, achievement_type) -> bool:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        return await super().is_complete(learner_id, achievement_ref, achievement_type)


class FlakyStorage(InMemoryArtifactStorage):
    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures = failures
        self.calls = 0

    async def store(self, data: bytes, path: str) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise DeliveryError("storage unavailable")
        return await super().store(data, path)


class HangingStorage(InMemoryArtifactStorage):
    def __init__(self) -> None:
        super().__init__()
        self.hang = True

    async def store(self, data: bytes, path: str) -> str:
        if self.hang:
            await asyncio.Event().wait()
        return await super().store(data, path)


class FailingNotifier(LoggingNotifier):
    async def notify(self, notification) -> None:
        raise DeliveryError("smtp down")


class HangingNotifier(LoggingNotifier):
    async def notify(self, notification) -> None:
        await asyncio.Event().wait()


@dataclass
class Harness:
    coordinator: GenerationCoordinator
    learners: InMemoryLearnerRepo
    catalog: InMemoryCatalogRepo
    progress: InMemoryProgressRepo
    enrollments: InMemoryEnrollmentRepo
    credentials: InMemoryCredentialRepo
    evaluator: GatedEvaluator
    storage: InMemoryArtifactStorage
    notifier: LoggingNotifier
    clock: FakeClock
    lesson_ids: list[str]

    def finish_course(self, learner_id: str = "learner-1") -> None:
        complete(learner_id, self.lesson_ids, repo=self.progress)


def make_harness(
    *,
    completed: int = 5,
    enrolled: bool = True,
    gate: asyncio.Event | None = None,
    storage: InMemoryArtifactStorage | None = None,
    notifier: LoggingNotifier | None = None,
    ttl_seconds: float = 60,
    timeout_seconds: float = 5,
) -> Harness:
    learners = InMemoryLearnerRepo()
    catalog = InMemoryCatalogRepo()
    progress = InMemoryProgressRepo()
    enrollments = InMemoryEnrollmentRepo()
    credentials = InMemoryCredentialRepo()

    seed_learner("learner-1", repo=learners)
    lesson_ids = seed_course("course-1", lessons=5, catalog=catalog)
    if enrolled:
        enroll("learner-1", "course-1", repo=enrollments)
    complete("learner-1", lesson_ids[:completed], repo=progress)

    evaluator = GatedEvaluator(catalog, progress, gate=gate)
    storage = storage or InMemoryArtifactStorage()
    notifier = notifier or LoggingNotifier()
    clock = FakeClock()
    coordinator = GenerationCoordinator(
        learners=learners,
        catalog=catalog,
        credentials=credentials,
        evaluator=evaluator,
        entitlement=EntitlementService(catalog, enrollments),
        storage=storage,
        notifier=notifier,
        ttl_seconds=ttl_seconds,
        timeout_seconds=timeout_seconds,
        public_base_url="https://learn.example.com",
        clock=clock,
    )
    return Harness(
        coordinator=coordinator,
        learners=learners,
        catalog=catalog,
        progress=progress,
        enrollments=enrollments,
        credentials=credentials,
        evaluator=evaluator,
        storage=storage,
        notifier=notifier,
        clock=clock,
        lesson_ids=lesson_ids,
    )


def _generate(h: Harness, ref: str = "course-1", kind: str = "course"):
    async def run():
        result = await h.coordinator.request_generation("learner-1", ref, kind)
        await h.coordinator.drain_notifications()
        return result

    return asyncio.run(run())


def _sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


# ---------------------------------------------------------------------------
# Scenarios A-D
# ---------------------------------------------------------------------------


def test_nothing_completed_returns_not_completed_without_credential() -> None:
    h = make_harness(completed=0)

    result = _generate(h)

    assert result.success is True
    assert result.is_completed is False
    assert result.code is GenerationCode.NOT_COMPLETED
    assert result.message == "Course not yet completed"
    assert result.credential_id is None
    assert h.credentials.count() == 0


def test_last_lesson_completed_issues_certificate() -> None:
    h = make_harness(completed=4)
    assert _generate(h).is_completed is False

    h.finish_course()
    result = _generate(h)

    assert result.success is True
    assert result.newly_generated is True
    assert result.is_completed is True
    assert result.code is GenerationCode.ISSUED
    assert CERT_ID.match(result.credential_id)
    stored = asyncio.run(h.credentials.get_by_credential_id(result.credential_id))
    assert stored.artifact_url == f"memory://certificates/{result.credential_id}.pdf"
    assert h.storage.get(f"certificates/{result.credential_id}.pdf").startswith(b"%PDF")


def test_repeat_call_returns_same_credential_not_newly_generated() -> None:
    h = make_harness()
    first = _generate(h)

    second = _generate(h)

    assert second.success is True
    assert second.credential_id == first.credential_id
    assert second.newly_generated is False
    assert second.code is GenerationCode.ALREADY_ISSUED
    assert h.credentials.count() == 1


def test_repeat_call_after_cache_eviction_reads_existing_credential() -> None:
    h = make_harness()
    first = _generate(h)
    h.coordinator.clear()

    second = _generate(h)

    assert second.credential_id == first.credential_id
    assert second.newly_generated is False
    assert second.message == "Certificate already exists"
    assert h.evaluator.calls == 2
    assert h.credentials.create_calls == 1


def test_render_failure_then_success_reuses_the_same_credential(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    h = make_harness()
    real_render = renderer.render_async
    calls = {"n": 0}

    async def flaky_render(content):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("font cache corrupted")
        return await real_render(content)

    monkeypatch.setattr(renderer, "render_async", flaky_render)

    first = _generate(h)
    assert first.success is False
    assert first.code is GenerationCode.RENDER_OR_DELIVERY_FAILED
    assert first.message == "Certificate generation failed"
    assert "font cache corrupted" in first.error

    second = _generate(h)
    assert second.success is True
    assert second.newly_generated is True
    assert second.credential_id == first.credential_id
    assert h.credentials.count() == 1
    assert h.credentials.create_calls == 1


# ---------------------------------------------------------------------------
# Coalescing
# ---------------------------------------------------------------------------


def test_concurrent_requests_share_one_generation() -> None:
    async def scenario(h: Harness, gate: asyncio.Event):
        first = asyncio.create_task(
            h.coordinator.request_generation("learner-1", "course-1", "course")
        )
        second = asyncio.create_task(
            h.coordinator.request_generation("learner-1", "course-1", "course")
        )
        await asyncio.sleep(0)

        status = h.coordinator.status()
        assert status.total_entries == 1
        assert status.active_generations == 1
        assert status.entries[0].key == "learner-1:course-1"
        assert status.entries[0].is_generating is True

        gate.set()
        return await asyncio.gather(first, second)

    async def run():
        gate = asyncio.Event()
        h = make_harness(gate=gate)
        a, b = await scenario(h, gate)
        return h, a, b

    before = _sample("certificate_generation_coalesced_total")
    h, a, b = asyncio.run(run())

    assert a is b
    assert a.newly_generated is True
    assert h.evaluator.calls == 1
    assert h.credentials.create_calls == 1
    assert _sample("certificate_generation_coalesced_total") - before == 1


def test_cancelling_one_waiter_does_not_cancel_shared_work() -> None:
    async def run():
        gate = asyncio.Event()
        h = make_harness(gate=gate)
        impatient = asyncio.create_task(
            h.coordinator.request_generation("learner-1", "course-1", "course")
        )
        patient = asyncio.create_task(
            h.coordinator.request_generation("learner-1", "course-1", "course")
        )
        await asyncio.sleep(0)
        impatient.cancel()
        await asyncio.sleep(0)
        gate.set()
        return h, impatient, await patient

    h, impatient, result = asyncio.run(run())

    assert impatient.cancelled()
    assert result.code is GenerationCode.ISSUED
    assert h.credentials.count() == 1


def test_unknown_learner_error_reaches_every_waiter() -> None:
    async def run():
        h = make_harness()
        calls = [
            h.coordinator.request_generation("ghost", "course-1", "course")
            for _ in range(3)
        ]
        return h, await asyncio.gather(*calls, return_exceptions=True)

    h, outcomes = asyncio.run(run())

    assert all(isinstance(o, LearnerNotFoundError) for o in outcomes)
    assert outcomes[0] is outcomes[1] is outcomes[2]
    assert h.coordinator.status().total_entries == 0


def test_different_keys_do_not_coalesce() -> None:
    async def run():
        h = make_harness()
        seed_learner("learner-2", repo=h.learners)
        enroll("learner-2", "course-1", repo=h.enrollments)
        complete("learner-2", h.lesson_ids, repo=h.progress)
        return h, await asyncio.gather(
            h.coordinator.request_generation("learner-1", "course-1", "course"),
            h.coordinator.request_generation("learner-2", "course-1", "course"),
        )

    h, (a, b) = asyncio.run(run())

    assert a.credential_id != b.credential_id
    assert h.evaluator.calls == 2
    assert h.credentials.count() == 2


# ---------------------------------------------------------------------------
# Cache lifecycle
# ---------------------------------------------------------------------------


def test_failure_is_not_cached_and_next_call_retries() -> None:
    h = make_harness(storage=FlakyStorage(failures=1))

    first = _generate(h)
    assert first.success is False
    assert h.coordinator.status().total_entries == 0

    second = _generate(h)
    assert second.success is True
    assert h.storage.calls == 2
    assert h.evaluator.calls == 2


def test_not_completed_entry_does_not_linger() -> None:
    h = make_harness(completed=2)

    _generate(h)

    status = h.coordinator.status()
    assert status.active_generations == 0
    assert status.total_entries == 0


def test_not_entitled_short_circuits_and_is_not_cached() -> None:
    h = make_harness(enrolled=False)

    result = _generate(h)

    assert result.success is False
    assert result.code is GenerationCode.NOT_ENTITLED
    assert result.message == "You have not purchased this course"
    assert h.evaluator.calls == 0
    assert h.coordinator.status().total_entries == 0


def test_success_stays_cached_until_ttl_then_cleanup_evicts() -> None:
    h = make_harness(ttl_seconds=60)
    _generate(h)

    h.clock.advance(5)
    status = h.coordinator.status()
    assert status.total_entries == 1
    assert status.active_generations == 0
    assert status.entries[0].age == 5.0

    h.clock.advance(56)
    assert h.coordinator.cleanup() == 1
    assert h.coordinator.status().entries == []

    _generate(h)
    assert h.evaluator.calls == 2


def test_cleanup_keeps_fresh_entries_and_is_idempotent() -> None:
    h = make_harness(ttl_seconds=60)
    _generate(h)
    h.clock.advance(30)

    assert h.coordinator.cleanup() == 0
    assert h.coordinator.cleanup() == 0
    assert h.coordinator.status().total_entries == 1


def test_cached_success_skips_storage_entirely() -> None:
    h = make_harness()
    _generate(h)

    _generate(h)
    _generate(h)

    assert h.evaluator.calls == 1


def test_hung_delivery_times_out_and_frees_the_key() -> None:
    storage = HangingStorage()
    h = make_harness(storage=storage, timeout_seconds=0.05)

    first = _generate(h)

    assert first.success is False
    assert first.code is GenerationCode.COORDINATION_TIMEOUT
    assert h.coordinator.status().total_entries == 0
    # The credential committed before the hang survives.
    assert h.credentials.count() == 1

    storage.hang = False
    second = _generate(h)
    assert second.code is GenerationCode.ISSUED
    assert second.newly_generated is True
    assert h.credentials.create_calls == 1


# ---------------------------------------------------------------------------
# Input validation and delivery
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("learner_id", "ref", "kind"),
    [("", "course-1", "course"), ("learner-1", "  ", "course"), ("learner-1", "c", "badge")],
)
def test_malformed_input_raises_before_any_entry(learner_id, ref, kind) -> None:
    h = make_harness()

    with pytest.raises(InvalidGenerationRequest):
        asyncio.run(h.coordinator.request_generation(learner_id, ref, kind))

    assert h.coordinator.status().total_entries == 0


def test_notification_failure_does_not_fail_generation() -> None:
    h = make_harness(notifier=FailingNotifier())
    before = _sample("certificate_delivery_failures_total", {"step": "notification"})

    result = _generate(h)

    assert result.code is GenerationCode.ISSUED
    stored = asyncio.run(h.credentials.get_by_credential_id(result.credential_id))
    assert stored.artifact_url is not None
    assert _sample("certificate_delivery_failures_total", {"step": "notification"}) - before == 1


def test_hung_notifier_does_not_hold_back_the_issued_result() -> None:
    h = make_harness(notifier=HangingNotifier(), timeout_seconds=0.5)
    before = _sample("certificate_delivery_failures_total", {"step": "notification"})

    result = _generate(h)

    assert result.success is True
    assert result.code is GenerationCode.ISSUED
    assert CERT_ID.match(result.credential_id)
    stored = asyncio.run(h.credentials.get_by_credential_id(result.credential_id))
    assert stored.artifact_url == f"memory://certificates/{result.credential_id}.pdf"
    # The notification gave up on its own timeout.
    assert _sample("certificate_delivery_failures_total", {"step": "notification"}) - before == 1
    assert h.coordinator.status().entries[0].is_generating is False


def test_waiters_are_answered_before_the_notification_finishes() -> None:
    async def run():
        h = make_harness(notifier=HangingNotifier(), timeout_seconds=5)
        results = await asyncio.gather(
            *(
                h.coordinator.request_generation("learner-1", "course-1", "course")
                for _ in range(3)
            )
        )
        pending = h.coordinator.pending_notifications
        return results, pending

    results, pending = asyncio.run(run())

    assert {r.code for r in results} == {GenerationCode.ISSUED}
    assert pending == 1


def test_notification_carries_verification_link() -> None:
    h = make_harness()

    result = _generate(h)

    [sent] = h.notifier.sent
    assert sent.email == "learner-1@example.com"
    assert sent.recipient_name == "Ada Lovelace"
    assert sent.achievement_name == "Intro to Machine Learning"
    assert sent.credential_id == result.credential_id
    assert sent.verification_url == (
        f"https://learn.example.com/certificates/verify/{result.credential_id}"
    )


def test_audit_event_written_once_per_credential() -> None:
    h = make_harness()
    _generate(h)
    h.coordinator.clear()
    _generate(h)

    events = asyncio.run(h.credentials.list_events("learner-1"))

    assert len(events) == 1
    payload = json.loads(events[0].payload_json)
    assert payload["achievementTitle"] == "Intro to Machine Learning"
    assert events[0].type == "certificate_earned"


# ---------------------------------------------------------------------------
# Learning paths
# ---------------------------------------------------------------------------


def _with_path(h: Harness, *, finish_second: bool) -> None:
    second = seed_course("course-2", lessons=2, title="Deep Learning", catalog=h.catalog)
    enroll("learner-1", "course-2", repo=h.enrollments)
    if finish_second:
        complete("learner-1", second, repo=h.progress)
    seed_path("path-1", ["course-1", "course-2"], catalog=h.catalog)


def test_learning_path_issued_when_every_course_complete() -> None:
    h = make_harness()
    _with_path(h, finish_second=True)

    result = _generate(h, "path-1", "learning_path")

    assert result.code is GenerationCode.ISSUED
    credential = asyncio.run(
        h.credentials.find("learner-1", "path-1", AchievementType.LEARNING_PATH)
    )
    metadata = json.loads(credential.metadata_json)
    assert metadata["courseCount"] == 2
    assert [c["title"] for c in metadata["courses"]] == [
        "Intro to Machine Learning",
        "Deep Learning",
    ]


def test_learning_path_not_completed_when_one_course_unfinished() -> None:
    h = make_harness()
    _with_path(h, finish_second=False)

    result = _generate(h, "path-1", "learning_path")

    assert result.code is GenerationCode.NOT_COMPLETED
    assert result.message == "Learning Path not yet completed"


def test_course_and_path_with_same_ref_do_not_share_a_result() -> None:
    h = make_harness()
    seed_path("course-1", ["course-1"], title="Course One Path", catalog=h.catalog)

    course = _generate(h, "course-1", "course")
    path = _generate(h, "course-1", "learning_path")

    assert course.code is GenerationCode.ISSUED
    assert path.code is GenerationCode.ISSUED
    assert path.newly_generated is True
    assert path.credential_id != course.credential_id
    assert h.credentials.count() == 2
    [entry] = h.coordinator.status().entries
    assert entry.key == "learner-1:course-1"


def test_path_request_waits_for_in_flight_course_with_same_ref() -> None:
    async def run():
        gate = asyncio.Event()
        h = make_harness(gate=gate)
        seed_path("course-1", ["course-1"], catalog=h.catalog)
        course = asyncio.create_task(
            h.coordinator.request_generation("learner-1", "course-1", "course")
        )
        path = asyncio.create_task(
            h.coordinator.request_generation("learner-1", "course-1", "learning_path")
        )
        await asyncio.sleep(0)
        assert h.coordinator.status().total_entries == 1
        gate.set()
        return h, await course, await path

    h, course, path = asyncio.run(run())

    assert course.credential_id != path.credential_id
    assert h.evaluator.calls == 2
    assert h.credentials.count() == 2
