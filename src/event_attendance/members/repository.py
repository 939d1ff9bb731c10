from __future__ import annotations

from typing import Protocol

from ..events.model import EventScope


class MemberDirectory(Protocol):
    """Read-only view of organizational memberships.

    Note: user profile CRUD lives elsewhere; the engine only needs to know
    which departments, ministries, tribes or subgroups a user belongs to.
    """

    def scopes_for(self, user_id: int) -> frozenset[EventScope]:
        raise NotImplementedError

    def members_of(self, scope: EventScope) -> frozenset[int]:
        """Users belonging to `scope`; everyone with a membership for the ALL scope."""

        raise NotImplementedError
