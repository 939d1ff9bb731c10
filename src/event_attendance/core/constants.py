"""Constants and defaults.

Note: Keep constants here to avoid magic numbers spread across code.
"""

DEFAULT_AUTO_CLOSE_HOURS = 3
DEFAULT_REMINDER_MINUTES = (1440, 60)
RECURRENCE_MAX_INSTANCES = 365
DEFAULT_HISTORY_LIMIT = 30
AUTO_ABSENT_NOTE = "auto-marked at closure"
SYSTEM_ACTOR_ID = 0
USER_STATS_LIMIT = 365
MAX_MARK_ATTEMPTS = 3
DEFAULT_EVENT_LIST_LIMIT = 100
