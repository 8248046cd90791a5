"""Entitlement checks: has the learner bought access to the achievement?

Purchase and checkout live elsewhere; this module only reads the
enrollment rows they leave behind.
"""

from __future__ import annotations

from cert_service.models.credential import AchievementType
from cert_service.repos.catalog_repo import CatalogRepo, catalog_repo
from cert_service.repos.progress_repo import EnrollmentRepo, enrollment_repo


class EntitlementService:
    def __init__(self, catalog: CatalogRepo, enrollments: EnrollmentRepo) -> None:
        self._catalog = catalog
        self._enrollments = enrollments

    async def is_entitled_to_course(self, learner_id: str, course_id: str) -> bool:
        course = await self._catalog.get_course(course_id)
        if course is None or not course.is_published:
            return False
        return await self._enrollments.is_enrolled(learner_id, course_id)

    async def is_entitled(
        self,
        learner_id: str,
        achievement_ref: str,
        achievement_type: AchievementType,
    ) -> bool:
        if achievement_type is AchievementType.COURSE:
            return await self.is_entitled_to_course(learner_id, achievement_ref)

        # A path is owned when every course in it is owned.
        course_ids = await self._catalog.list_path_course_ids(achievement_ref)
        if not course_ids:
            return False
        for course_id in course_ids:
            if not await self.is_entitled_to_course(learner_id, course_id):
                return False
        return True

    async def list_entitled_courses(self, learner_id: str) -> list[str]:
        entitled = []
        for course_id in await self._enrollments.list_course_ids(learner_id):
            course = await self._catalog.get_course(course_id)
            if course is not None and course.is_published:
                entitled.append(course_id)
        return entitled


entitlement_service = EntitlementService(catalog_repo, enrollment_repo)
