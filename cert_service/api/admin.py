from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from cert_service.api.dependencies import require_role
from cert_service.models.principal import Principal
from cert_service.services.coordinator import coordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


class GenerationEntryOut(BaseModel):
    key: str
    isGenerating: bool
    age: float


class GenerationStatusOut(BaseModel):
    totalEntries: int
    activeGenerations: int
    entries: list[GenerationEntryOut]


class CleanupOut(BaseModel):
    evicted: int
    remaining: int


@router.get("/generation/status", response_model=GenerationStatusOut)
async def generation_status(
    principal: Annotated[Principal, Depends(require_role("admin"))],
) -> GenerationStatusOut:
    snapshot = coordinator.status()
    logger.debug("Generation status requested by learner=%s", principal.learner_id)
    return GenerationStatusOut(
        totalEntries=snapshot.total_entries,
        activeGenerations=snapshot.active_generations,
        entries=[
            GenerationEntryOut(key=e.key, isGenerating=e.is_generating, age=e.age)
            for e in snapshot.entries
        ],
    )


@router.post("/generation/cleanup", response_model=CleanupOut)
async def generation_cleanup(
    principal: Annotated[Principal, Depends(require_role("admin"))],
) -> CleanupOut:
    evicted = coordinator.cleanup()
    logger.info(
        "Generation cleanup by learner=%s evicted=%d", principal.learner_id, evicted
    )
    return CleanupOut(evicted=evicted, remaining=coordinator.status().total_entries)
