import os

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")

DB_CONFIG = {
    "host": os.getenv("DB_HOST", "localhost"),
    "port": int(os.getenv("DB_PORT", "3306")),
    "user": os.getenv("DB_USER", "root"),
    "password": os.getenv("DB_PASSWORD", ""),
    "database": os.getenv("DB_NAME", "event_attendance"),
}

DEBUG = True
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")

# If enabled, app will apply schema.sql on startup (idempotent: CREATE IF NOT EXISTS)
AUTO_INIT_DB = bool(int(os.getenv("AUTO_INIT_DB", "1")))

# Hours after an event ends before it is auto-closed (also the late-marking window)
DEFAULT_AUTO_CLOSE_HOURS = int(os.getenv("DEFAULT_AUTO_CLOSE_HOURS", "3"))
RECURRENCE_MAX_INSTANCES = int(os.getenv("RECURRENCE_MAX_INSTANCES", "365"))

# Run the catch-up sweep and arm closure timers when the app starts
SCHEDULER_ENABLED = bool(int(os.getenv("SCHEDULER_ENABLED", "1")))
