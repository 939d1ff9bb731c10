"""Capability predicates.

Every function here is a pure function of its arguments: no repositories, no
clock, no hidden state. Services call them and raise AuthorizationError.
"""

from __future__ import annotations

from typing import Iterable

from ..core.enums import EventStatus, Role, ScopeType
from ..events.model import Event, EventScope
from .context import AuthorizationContext

ELEVATED_ROLE = Role.ASSOCIATE_PASTOR


def is_elevated(role: Role) -> bool:
    return role >= ELEVATED_ROLE


def can_create_event(role: Role) -> bool:
    return role >= Role.CLOCKER


def can_create_in_scope(actor: AuthorizationContext, scope: EventScope) -> bool:
    """Non-elevated creators must belong to the scope they target.

    Organisation-wide events are reserved for elevated roles; custom
    (hand-picked participant) events have no target to belong to.
    """
    if is_elevated(actor.role):
        return True
    if scope.scope_type == ScopeType.ALL:
        return False
    if scope.scope_type == ScopeType.CUSTOM:
        return True
    return actor.belongs_to(scope)


def can_modify_event(actor: AuthorizationContext, event: Event) -> bool:
    if is_elevated(actor.role):
        return True
    if actor.actor_id == event.created_by:
        return True
    return event.assigned_operator is not None and actor.actor_id == event.assigned_operator


def can_delete_event(actor: AuthorizationContext, event: Event, has_attendance: bool) -> bool:
    if has_attendance:
        return False
    return can_modify_event(actor, event)


def can_mark_attendance(
    actor: AuthorizationContext,
    event: Event,
    target_user_id: int,
    target_scopes: Iterable[EventScope] = (),
) -> bool:
    if actor.actor_id == target_user_id:
        return True
    if actor.role >= Role.PASTOR:
        return True
    if actor.role == Role.CLOCKER:
        return event.assigned_operator is not None and actor.actor_id == event.assigned_operator
    if actor.role == Role.DEPARTMENT_LEADER:
        return bool(actor.scope_memberships & frozenset(target_scopes))
    return False


def can_view_user_attendance(
    actor: AuthorizationContext,
    target_user_id: int,
    target_scopes: Iterable[EventScope] = (),
) -> bool:
    """Scoped access to a member's attendance history and statistics."""
    if actor.actor_id == target_user_id:
        return True
    if actor.role >= Role.PASTOR:
        return True
    if actor.role == Role.DEPARTMENT_LEADER:
        return bool(actor.scope_memberships & frozenset(target_scopes))
    return False


def can_register_participant(actor: AuthorizationContext, event: Event, user_id: int) -> bool:
    if actor.actor_id == user_id:
        return True
    return can_modify_event(actor, event)


def can_register_outside_upcoming(role: Role) -> bool:
    return role >= Role.DEPARTMENT_LEADER


def can_backdate_event(role: Role) -> bool:
    return is_elevated(role)


def is_open_for_registration(event: Event) -> bool:
    return event.status in {EventStatus.DRAFT, EventStatus.PUBLISHED, EventStatus.UPCOMING}
