from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Learner:
    id: str
    email: str
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name.strip() or "Student"
