"""One-shot closure sweep, for deployments that run it from cron instead of in-process timers."""

from __future__ import annotations

import importlib
import json
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
for path in (REPO_ROOT, REPO_ROOT / "src"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from dotenv import load_dotenv

from config import get_settings_module

from event_attendance.container import build_container
from event_attendance.scheduling.clock import PollingClock


def main() -> int:
    load_dotenv(override=False)
    settings = importlib.import_module(get_settings_module())
    logging.basicConfig(
        level=getattr(settings, "LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    container = build_container(
        db_config=dict(settings.DB_CONFIG),
        auto_close_hours=float(getattr(settings, "DEFAULT_AUTO_CLOSE_HOURS", 3)),
        max_instances=int(getattr(settings, "RECURRENCE_MAX_INSTANCES", 365)),
        clock=PollingClock(),
    )
    report = container.scheduler.run_pending()
    print(json.dumps(report.to_dict()))
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
