from __future__ import annotations

from dataclasses import dataclass

from ..core.constants import SYSTEM_ACTOR_ID
from ..core.enums import Role
from ..events.model import EventScope


@dataclass(frozen=True)
class AuthorizationContext:
    """Who is acting. Supplied by the caller; the engine never authenticates."""

    actor_id: int
    role: Role
    scope_memberships: frozenset[EventScope] = frozenset()

    def belongs_to(self, scope: EventScope) -> bool:
        return scope in self.scope_memberships


SYSTEM_ACTOR = AuthorizationContext(actor_id=SYSTEM_ACTOR_ID, role=Role.SUPER_ADMIN)
