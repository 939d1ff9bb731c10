"""Best-effort outbound collaborators.

Audit and notification delivery must never block or abort a domain mutation:
services go through `Notifier`, which logs and swallows collaborator failures.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Callable, Optional, Protocol

from ..core.enums import AuditAction
from .model import AuditEntry

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("event_attendance.audit")


class AuditSink(Protocol):
    def record(self, entry: AuditEntry) -> None:
        raise NotImplementedError


class NotificationGateway(Protocol):
    def send(self, kind: str, payload: dict[str, Any]) -> None:
        raise NotImplementedError


class LoggingAuditSink(AuditSink):
    def record(self, entry: AuditEntry) -> None:
        audit_logger.info("%s", json.dumps(entry.to_dict(), default=str, sort_keys=True))


class LoggingNotificationGateway(NotificationGateway):
    def send(self, kind: str, payload: dict[str, Any]) -> None:
        logger.info("notification %s %s", kind, json.dumps(payload, default=str, sort_keys=True))


class Notifier:
    """Front for AuditSink + NotificationGateway with failure isolation."""

    def __init__(
        self,
        audit: Optional[AuditSink] = None,
        gateway: Optional[NotificationGateway] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._audit = audit or LoggingAuditSink()
        self._gateway = gateway or LoggingNotificationGateway()
        self._clock = clock or datetime.now

    def audit(
        self,
        actor: int,
        action: AuditAction,
        resource_id: Optional[int],
        **details: Any,
    ) -> None:
        entry = AuditEntry(
            actor=actor,
            action=action,
            resource_id=resource_id,
            timestamp=self._clock(),
            details=details,
        )
        try:
            self._audit.record(entry)
        except Exception:
            logger.exception("Audit sink failed for %s on %s", action.value, resource_id)

    def notify(self, kind: str, **payload: Any) -> None:
        try:
            self._gateway.send(kind, payload)
        except Exception:
            logger.exception("Notification gateway failed for %s", kind)
