from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class LessonProgress:
    learner_id: str
    lesson_id: str
    completed_at: int | None = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


@dataclass(frozen=True, slots=True)
class CompletionSnapshot:
    """Required sub-units of an achievement and which of them are finished.

    Computed on demand, never persisted.  For a course the units are lesson
    ids; for a learning path they are course ids.
    """

    required: tuple[str, ...]
    completed: frozenset[str]

    @property
    def is_complete(self) -> bool:
        # Nothing to certify when there are no requirements.
        if not self.required:
            return False
        return all(unit in self.completed for unit in self.required)

    @property
    def remaining(self) -> tuple[str, ...]:
        return tuple(u for u in self.required if u not in self.completed)

    @property
    def percent_complete(self) -> int:
        if not self.required:
            return 0
        done = len(self.required) - len(self.remaining)
        return done * 100 // len(self.required)
