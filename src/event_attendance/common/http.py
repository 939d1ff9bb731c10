"""Helpers shared by the JSON controllers.

The app does not authenticate; whoever sets up the session (login service,
gateway, tests) puts `user_id`, `role` and optionally `scopes` in it.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import Callable, Optional

from flask import Flask, jsonify, request, session

from ..authorization.context import AuthorizationContext
from ..core.enums import Role, ScopeType
from ..core.exceptions import (
    AuthorizationError,
    BusinessRuleViolation,
    CapacityExceededError,
    ConflictError,
    DomainError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..events.model import EventScope
from ..members.repository import MemberDirectory
from .datetime_utils import parse_iso_datetime

logger = logging.getLogger(__name__)

_STATUS_CODES = (
    (NotFoundError, 404),
    (AuthorizationError, 403),
    (ConflictError, 409),
    (InvalidTransitionError, 409),
    (CapacityExceededError, 409),
    (BusinessRuleViolation, 409),
    (ValidationError, 400),
)


def http_status_for(error: DomainError) -> int:
    for exc_type, status in _STATUS_CODES:
        if isinstance(error, exc_type):
            return status
    return 400


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(DomainError)
    def handle_domain_error(e: DomainError):
        status = http_status_for(e)
        logger.info("%s %s -> %s %s", request.method, request.path, status, e.code)
        return jsonify(e.to_dict()), status


def login_required(view: Callable):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if "user_id" not in session:
            return jsonify({"error": "unauthorized", "message": "Please sign in to continue"}), 401
        return view(*args, **kwargs)

    return wrapper


def _session_scopes() -> Optional[frozenset[EventScope]]:
    raw = session.get("scopes")
    if raw is None:
        return None
    return frozenset(EventScope(ScopeType(s["type"]), s.get("target_id")) for s in raw)


def current_actor(members: MemberDirectory) -> AuthorizationContext:
    user_id = int(session["user_id"])
    try:
        role = Role(session.get("role", Role.MEMBER.value))
    except ValueError:
        raise AuthorizationError("Unknown role in session")

    scopes = _session_scopes()
    if scopes is None:
        scopes = members.scopes_for(user_id)
    return AuthorizationContext(actor_id=user_id, role=role, scope_memberships=scopes)


def json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def require_field(data: dict, name: str):
    value = data.get(name)
    if value is None or value == "":
        raise ValidationError(f"{name} is required")
    return value


def parse_datetime_field(data: dict, name: str):
    value = require_field(data, name)
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime")


def int_field(data: dict, name: str, *, required: bool = False, default: Optional[int] = None) -> Optional[int]:
    value = require_field(data, name) if required else data.get(name)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


def int_list_field(data: dict, name: str) -> list[int]:
    values = data.get(name) or ()
    if not isinstance(values, (list, tuple)):
        raise ValidationError(f"{name} must be a list of integers")
    return [int_field({name: v}, name, required=True) for v in values]


def float_field(data: dict, name: str) -> Optional[float]:
    value = data.get(name)
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number")
