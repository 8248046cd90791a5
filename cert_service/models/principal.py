from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity extracted from a validated JWT.

    ``learner_id`` is the token subject.  Roles are platform roles:
    "learner" for students, "admin" for operators who may inspect the
    generation coordinator.
    """

    learner_id: str
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def is_admin(self) -> bool:
        return "admin" in self.roles
