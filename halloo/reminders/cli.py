"""
One-shot command line entry point (cron, manual runs, local debugging).

    halloo-reminders run scan
    halloo-reminders run recover --now 2025-01-01T12:00:00Z
    halloo-reminders diagnostics --limit 50
    halloo-reminders serve --port 8090
"""
import argparse
import json
import logging
import sys
from datetime import datetime
from typing import List, Optional

from halloo.core.logging import configure_logging
from halloo.db.session import SessionLocal
from halloo.utils.timezone import to_utc_aware, utc_now
from .config import settings
from .diagnostics import describe_schedules
from .exceptions import ReminderError
from .repository import SqlScheduleStore
from .triggers import TRIGGERS, run_job

logger = logging.getLogger(__name__)


def _parse_time(value: str) -> datetime:
    try:
        return to_utc_aware(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 timestamp: {value!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="halloo-reminders", description="Habit reminder scheduler")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run one job once")
    run.add_argument("job", choices=sorted(TRIGGERS))
    run.add_argument("--now", type=_parse_time, default=None, help="Evaluate as of this UTC time")

    diag = sub.add_parser("diagnostics", help="Explain which schedules the next scan would pick up")
    diag.add_argument("--limit", type=int, default=200)

    serve = sub.add_parser("serve", help="Run the ops API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8090)
    return parser


def _diagnostics(limit: int) -> list:
    db = SessionLocal()
    try:
        schedules = SqlScheduleStore(db).list_schedules(limit=limit)
        return describe_schedules(schedules, utc_now(), settings.scan_window_seconds)
    finally:
        db.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=args.log_level)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("halloo.reminders.service:app", host=args.host, port=args.port)
        return 0

    try:
        if args.command == "run":
            result = run_job(args.job, now=args.now)
        else:
            result = _diagnostics(args.limit)
    except ReminderError as e:
        logger.error(f"❌ [CLI] {e}")
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
