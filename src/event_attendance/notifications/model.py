from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from ..core.enums import AuditAction


@dataclass(frozen=True)
class AuditEntry:
    actor: int
    action: AuditAction
    resource_id: Optional[int]
    timestamp: datetime
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "actor": self.actor,
            "action": self.action.value,
            "resource_id": self.resource_id,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class NotificationKind:
    EVENT_REMINDER_DUE = "event_reminder_due"
    EVENT_CLOSED = "event_closed"
