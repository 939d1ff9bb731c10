from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from .attendance.aggregator import AttendanceAggregator
from .attendance.mysql_attendance_repository import MySQLAttendanceRepository
from .attendance.repository import AttendanceRepository
from .attendance.service import AttendanceService
from .core.constants import DEFAULT_AUTO_CLOSE_HOURS, RECURRENCE_MAX_INSTANCES
from .database.connection import DBConfig, DatabaseConnection
from .events.conflicts import ConflictDetector
from .events.mysql_event_repository import MySQLEventRepository
from .events.recurrence import RecurrenceExpander
from .events.repository import EventRepository
from .events.service import EventService
from .members.mysql_member_repository import MySQLMemberDirectory
from .members.repository import MemberDirectory
from .notifications.sinks import AuditSink, NotificationGateway, Notifier
from .scheduling.auto_closure import AutoClosureScheduler
from .scheduling.clock import Clock, SystemClock


@dataclass(frozen=True)
class Container:
    conn: Optional[DatabaseConnection]

    events_repo: EventRepository
    attendance_repo: AttendanceRepository
    members_repo: MemberDirectory

    notifier: Notifier
    clock: Clock

    aggregator: AttendanceAggregator
    attendance_service: AttendanceService
    event_service: EventService
    scheduler: AutoClosureScheduler


def assemble(
    *,
    events_repo: EventRepository,
    attendance_repo: AttendanceRepository,
    members_repo: MemberDirectory,
    clock: Clock | None = None,
    audit: AuditSink | None = None,
    gateway: NotificationGateway | None = None,
    auto_close_hours: float = DEFAULT_AUTO_CLOSE_HOURS,
    max_instances: int = RECURRENCE_MAX_INSTANCES,
    conn: Optional[DatabaseConnection] = None,
) -> Container:
    """Wire services over the given repositories (MySQL in the app, fakes in tests)."""
    clock = clock or SystemClock()
    notifier = Notifier(audit, gateway, clock=clock.now)

    aggregator = AttendanceAggregator(events_repo, attendance_repo)
    attendance_service = AttendanceService(
        events_repo,
        attendance_repo,
        members_repo,
        aggregator=aggregator,
        notifier=notifier,
        clock=clock,
    )
    event_service = EventService(
        events_repo,
        attendance_repo,
        recorder=attendance_service,
        members=members_repo,
        aggregator=aggregator,
        conflicts=ConflictDetector(events_repo),
        expander=RecurrenceExpander(max_instances=max_instances),
        notifier=notifier,
        clock=clock,
        default_auto_close=timedelta(hours=auto_close_hours),
    )
    scheduler = AutoClosureScheduler(
        events_repo,
        event_service,
        attendance_service,
        clock=clock,
        notifier=notifier,
    )
    event_service.bind_scheduler(scheduler)

    return Container(
        conn=conn,
        events_repo=events_repo,
        attendance_repo=attendance_repo,
        members_repo=members_repo,
        notifier=notifier,
        clock=clock,
        aggregator=aggregator,
        attendance_service=attendance_service,
        event_service=event_service,
        scheduler=scheduler,
    )


def build_container(
    *,
    db_config: dict,
    auto_close_hours: float = DEFAULT_AUTO_CLOSE_HOURS,
    max_instances: int = RECURRENCE_MAX_INSTANCES,
    clock: Clock | None = None,
) -> Container:
    config = DBConfig(
        host=str(db_config["host"]),
        port=int(db_config.get("port", 3306)),
        user=str(db_config["user"]),
        password=str(db_config["password"]),
        database=str(db_config["database"]),
    )
    conn = DatabaseConnection.get_instance(config)

    return assemble(
        events_repo=MySQLEventRepository(conn),
        attendance_repo=MySQLAttendanceRepository(conn),
        members_repo=MySQLMemberDirectory(conn),
        clock=clock,
        auto_close_hours=auto_close_hours,
        max_instances=max_instances,
        conn=conn,
    )
