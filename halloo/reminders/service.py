import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, status
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.orm import Session

from halloo.core.config import settings as core_settings
from halloo.db.session import get_db
from halloo.utils.timezone import utc_now
from .config import ReminderSettings, settings as default_settings
from .diagnostics import describe_schedules
from .repository import SqlHealthSnapshotStore, SqlScheduleStore

logger = logging.getLogger(__name__)


def create_app(settings: Optional[ReminderSettings] = None) -> FastAPI:
    settings = settings or default_settings

    def verify_api_key(x_api_key: Optional[str] = Header(None)) -> bool:
        if not settings.OPS_API_KEYS:
            return True
        if not x_api_key or x_api_key not in settings.OPS_API_KEYS:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing API key",
            )
        return True

    if core_settings.is_production and not settings.OPS_API_KEYS:
        logger.warning("🔒 [Ops] REMINDER_OPS_API_KEYS is empty; ops endpoints are unauthenticated")

    app = FastAPI(title=f"{core_settings.PROJECT_NAME} Ops", version=core_settings.VERSION)

    @app.get("/health/latest", dependencies=[Depends(verify_api_key)])
    def latest_health(db: Session = Depends(get_db)):
        snapshot = SqlHealthSnapshotStore(db).latest()
        if not snapshot:
            raise HTTPException(status_code=404, detail="No health snapshot recorded yet")
        return snapshot.to_dict()

    @app.get("/schedules/diagnostics", dependencies=[Depends(verify_api_key)])
    def schedule_diagnostics(limit: int = Query(200, ge=1, le=1000), db: Session = Depends(get_db)):
        now = utc_now()
        schedules = SqlScheduleStore(db).list_schedules(limit=limit)
        items = describe_schedules(schedules, now, settings.scan_window_seconds)
        return {
            "now": now.isoformat(),
            "scan_window_seconds": settings.scan_window_seconds,
            "matching": sum(1 for item in items if item["would_match_window"]),
            "schedules": items,
        }

    if settings.METRICS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics")
    return app


app = create_app()
