from __future__ import annotations

from typing import Optional

from flask import Flask, jsonify, request, session

from ..common.http import current_actor, float_field, int_field, json_body, login_required, require_field
from ..container import Container
from ..core.enums import AttendanceStatus
from ..core.exceptions import ValidationError
from .model import Location, MarkRequest


def _parse_status(raw) -> AttendanceStatus:
    try:
        return AttendanceStatus(raw)
    except ValueError:
        raise ValidationError(f"Unknown attendance status: {raw!r}")


def _parse_location(raw) -> Optional[Location]:
    if not raw:
        return None
    if not isinstance(raw, dict):
        raise ValidationError("location must be an object")
    latitude = float_field(raw, "latitude")
    longitude = float_field(raw, "longitude")
    if latitude is None or longitude is None:
        raise ValidationError("location needs numeric latitude and longitude")
    return Location(latitude=latitude, longitude=longitude, accuracy=float_field(raw, "accuracy"))


def _parse_row(raw) -> MarkRequest:
    if not isinstance(raw, dict):
        raise ValidationError("each record must be an object")
    return MarkRequest(
        user_id=int_field(raw, "user_id", required=True),
        status=_parse_status(require_field(raw, "status")),
        notes=raw.get("notes"),
        location=_parse_location(raw.get("location")),
    )


def _split_rows(rows_in: list) -> tuple[list[MarkRequest], list[dict]]:
    """Parse bulk rows one by one; unparseable rows become failure entries."""
    rows: list[MarkRequest] = []
    rejected: list[dict] = []
    for raw in rows_in:
        try:
            rows.append(_parse_row(raw))
        except ValidationError as e:
            user_id = raw.get("user_id") if isinstance(raw, dict) else None
            rejected.append({"user_id": user_id, "error": e.code, "message": str(e)})
    return rows, rejected


def register(app: Flask, container: Container) -> None:
    attendance = container.attendance_service

    def actor():
        return current_actor(container.members_repo)

    @app.route("/api/events/<int:event_id>/attendance", methods=["POST"], endpoint="mark_attendance")
    @login_required
    def mark_attendance(event_id: int):
        data = json_body()
        user_id = int_field(data, "user_id", default=int(session["user_id"]))
        record = attendance.mark(
            event_id,
            user_id,
            _parse_status(require_field(data, "status")),
            actor(),
            notes=data.get("notes"),
            location=_parse_location(data.get("location")),
        )
        return jsonify(record.to_dict())

    @app.route("/api/events/<int:event_id>/attendance/bulk", methods=["POST"], endpoint="bulk_mark_attendance")
    @login_required
    def bulk_mark_attendance(event_id: int):
        rows_in = require_field(json_body(), "records")
        if not isinstance(rows_in, list):
            raise ValidationError("records must be a list")

        rows, rejected = _split_rows(rows_in)
        return jsonify(attendance.bulk_mark(event_id, rows, actor(), rejected=rejected).to_dict())

    @app.route("/api/events/<int:event_id>/attendance", methods=["GET"], endpoint="list_attendance")
    @login_required
    def list_attendance(event_id: int):
        return jsonify([r.to_dict() for r in attendance.list_for_event(event_id)])

    @app.route(
        "/api/events/<int:event_id>/attendance/<int:user_id>",
        methods=["GET"],
        endpoint="get_attendance",
    )
    @login_required
    def get_attendance(event_id: int, user_id: int):
        return jsonify(attendance.get_record(event_id, user_id).to_dict())

    @app.route("/api/users/<int:user_id>/attendance", methods=["GET"], endpoint="user_attendance_history")
    @login_required
    def user_attendance_history(user_id: int):
        limit = request.args.get("limit", type=int) or 30
        return jsonify([r.to_dict() for r in attendance.history_for_user(user_id, actor(), limit=limit)])

    @app.route("/api/users/<int:user_id>/attendance/stats", methods=["GET"], endpoint="user_attendance_stats")
    @login_required
    def user_attendance_stats(user_id: int):
        return jsonify(attendance.user_statistics(user_id, actor()).to_dict())
