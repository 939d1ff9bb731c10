from __future__ import annotations

from datetime import timedelta

from flask import Flask, jsonify, request

from ..authorization import policy
from ..common.http import (
    current_actor,
    float_field,
    int_field,
    int_list_field,
    json_body,
    login_required,
    parse_datetime_field,
    require_field,
)
from ..container import Container
from ..core.constants import DEFAULT_REMINDER_MINUTES
from ..core.enums import EventStatus, ScopeType
from ..core.exceptions import AuthorizationError, ValidationError
from .model import EventScope, NewEvent, RecurrenceRule


def _parse_scope(raw) -> EventScope:
    if not isinstance(raw, dict):
        raise ValidationError("scope is required")
    try:
        scope_type = ScopeType(raw.get("type"))
    except ValueError:
        raise ValidationError(f"Unknown scope type: {raw.get('type')!r}")
    return EventScope(scope_type, int_field(raw, "target_id"))


def _parse_new_event(data: dict) -> NewEvent:
    rule = None
    if data.get("recurrence_rule"):
        try:
            rule = RecurrenceRule.from_dict(data["recurrence_rule"])
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid recurrence rule: {e}")

    offset_hours = float_field(data, "auto_close_hours")

    return NewEvent(
        title=str(require_field(data, "title")),
        start_time=parse_datetime_field(data, "start_time"),
        end_time=parse_datetime_field(data, "end_time"),
        scope=_parse_scope(data.get("scope")),
        assigned_operator=int_field(data, "assigned_operator"),
        description=data.get("description"),
        event_type=data.get("event_type") or "other",
        recurrence_rule=rule,
        expected_participants=frozenset(int_list_field(data, "expected_participants")),
        capacity=int_field(data, "capacity"),
        allow_walk_ins=bool(data.get("allow_walk_ins", True)),
        auto_close_offset=timedelta(hours=offset_hours) if offset_hours is not None else None,
        reminder_offsets=tuple(int_list_field(data, "reminder_offsets")) or DEFAULT_REMINDER_MINUTES,
        as_draft=bool(data.get("as_draft", False)),
    )


def _parse_event_query(args) -> dict:
    query: dict = {}
    if args.get("scope_type"):
        query["scope"] = _parse_scope({"type": args.get("scope_type"), "target_id": args.get("target_id")})
    for name in ("start", "end"):
        if args.get(name):
            query[name] = parse_datetime_field(args, name)
    statuses = []
    for raw in args.getlist("status"):
        try:
            statuses.append(EventStatus(raw))
        except ValueError:
            raise ValidationError(f"Unknown event status: {raw!r}")
    query["statuses"] = tuple(statuses)
    query["participant_id"] = int_field(args, "participant_id")
    limit = int_field(args, "limit")
    if limit is not None:
        query["limit"] = limit
    return query


def register(app: Flask, container: Container) -> None:
    events = container.event_service

    def actor():
        return current_actor(container.members_repo)

    @app.route("/api/events", methods=["POST"], endpoint="create_event")
    @login_required
    def create_event():
        event = events.create(_parse_new_event(json_body()), actor())
        return jsonify(event.to_dict()), 201

    @app.route("/api/events", methods=["GET"], endpoint="list_events")
    @login_required
    def list_events():
        found = events.list_events(actor(), **_parse_event_query(request.args))
        return jsonify([e.to_dict() for e in found])

    @app.route("/api/events/<int:event_id>", methods=["GET"], endpoint="get_event")
    @login_required
    def get_event(event_id: int):
        return jsonify(events.get(event_id).to_dict())

    @app.route("/api/events/<int:event_id>", methods=["DELETE"], endpoint="delete_event")
    @login_required
    def delete_event(event_id: int):
        cancelled = events.cancel_or_delete(event_id, actor())
        if cancelled is None:
            return jsonify({"deleted": True, "event_id": event_id})
        return jsonify({"deleted": False, "event": cancelled.to_dict()})

    @app.route("/api/events/<int:event_id>/transition", methods=["POST"], endpoint="transition_event")
    @login_required
    def transition_event(event_id: int):
        raw = require_field(json_body(), "status")
        try:
            target = EventStatus(raw)
        except ValueError:
            raise ValidationError(f"Unknown event status: {raw!r}")
        return jsonify(events.transition(event_id, target, actor()).to_dict())

    @app.route("/api/events/<int:event_id>/cancel", methods=["POST"], endpoint="cancel_event")
    @login_required
    def cancel_event(event_id: int):
        data = request.get_json(silent=True) or {}
        return jsonify(events.cancel(event_id, actor(), data.get("reason")).to_dict())

    @app.route("/api/events/<int:event_id>/recurrence/expand", methods=["POST"], endpoint="expand_event")
    @login_required
    def expand_event(event_id: int):
        created = events.expand_recurrence(event_id, actor())
        return jsonify({"created": [e.to_dict() for e in created]})

    @app.route("/api/events/<int:event_id>/instances", methods=["GET"], endpoint="list_instances")
    @login_required
    def list_instances(event_id: int):
        return jsonify([e.to_dict() for e in events.instances(event_id)])

    @app.route(
        "/api/events/<int:event_id>/participants/populate",
        methods=["POST"],
        endpoint="populate_participants",
    )
    @login_required
    def populate_participants(event_id: int):
        return jsonify(events.populate_participants(event_id, actor()).to_dict())

    @app.route("/api/events/<int:event_id>/participants", methods=["POST"], endpoint="register_participant")
    @login_required
    def register_participant(event_id: int):
        user_id = int_field(json_body(), "user_id", required=True)
        return jsonify(events.register_participant(event_id, user_id, actor()).to_dict())

    @app.route(
        "/api/events/<int:event_id>/participants/<int:user_id>",
        methods=["DELETE"],
        endpoint="unregister_participant",
    )
    @login_required
    def unregister_participant(event_id: int, user_id: int):
        return jsonify(events.unregister_participant(event_id, user_id, actor()).to_dict())

    @app.route("/api/events/<int:event_id>/statistics", methods=["GET"], endpoint="event_statistics")
    @login_required
    def event_statistics(event_id: int):
        return jsonify(events.statistics(event_id).to_dict())

    @app.route("/api/scheduler/sweep", methods=["POST"], endpoint="run_sweep")
    @login_required
    def run_sweep():
        if not policy.is_elevated(actor().role):
            raise AuthorizationError("Only pastors and administrators can run the closure sweep")
        return jsonify(container.scheduler.sweep().to_dict())
