"""Completion evaluation.

Answers "has learner X finished achievement Y?" by comparing the learner's
progress rows against the structural requirement set:

  COURSE         every lesson under the course has a completed progress row
  LEARNING_PATH  every course of the path satisfies the COURSE rule

Pure read-side logic.  Nothing here writes, so it is safe to call
repeatedly and concurrently.  An achievement reference that does not
resolve is reported as "not complete" rather than raised; existence
checks belong to the caller.
"""

from __future__ import annotations

import logging

from cert_service.models.credential import AchievementType
from cert_service.models.progress import CompletionSnapshot
from cert_service.repos.catalog_repo import CatalogRepo, catalog_repo
from cert_service.repos.progress_repo import ProgressRepo, progress_repo

logger = logging.getLogger(__name__)

_EMPTY = CompletionSnapshot(required=(), completed=frozenset())


class CompletionEvaluator:
    def __init__(self, catalog: CatalogRepo, progress: ProgressRepo) -> None:
        self._catalog = catalog
        self._progress = progress

    async def course_snapshot(self, learner_id: str, course_id: str) -> CompletionSnapshot:
        """Lesson ids of the course (section order, then lesson order) and
        which of them the learner has completed."""
        lesson_ids = await self._catalog.list_lesson_ids(course_id)
        if not lesson_ids:
            return _EMPTY
        rows = await self._progress.list_progress(learner_id, lesson_ids)
        done = frozenset(r.lesson_id for r in rows if r.is_completed)
        return CompletionSnapshot(required=tuple(lesson_ids), completed=done)

    async def path_snapshot(self, learner_id: str, path_id: str) -> CompletionSnapshot:
        course_ids = await self._catalog.list_path_course_ids(path_id)
        done: set[str] = set()
        for course_id in course_ids:
            snap = await self.course_snapshot(learner_id, course_id)
            if snap.is_complete:
                done.add(course_id)
        return CompletionSnapshot(required=tuple(course_ids), completed=frozenset(done))

    async def snapshot(
        self,
        learner_id: str,
        achievement_ref: str,
        achievement_type: AchievementType,
    ) -> CompletionSnapshot:
        if achievement_type is AchievementType.COURSE:
            if await self._catalog.get_course(achievement_ref) is None:
                return _EMPTY
            return await self.course_snapshot(learner_id, achievement_ref)

        if await self._catalog.get_learning_path(achievement_ref) is None:
            return _EMPTY
        return await self.path_snapshot(learner_id, achievement_ref)

    async def is_complete(
        self,
        learner_id: str,
        achievement_ref: str,
        achievement_type: AchievementType,
    ) -> bool:
        snap = await self.snapshot(learner_id, achievement_ref, achievement_type)
        logger.debug(
            "Completion learner=%s ref=%s type=%s %d/%d",
            learner_id,
            achievement_ref,
            achievement_type.value,
            len(snap.required) - len(snap.remaining),
            len(snap.required),
        )
        return snap.is_complete


completion_evaluator = CompletionEvaluator(catalog_repo, progress_repo)
