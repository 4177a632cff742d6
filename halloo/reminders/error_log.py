import logging
from datetime import datetime
from typing import Optional

from .interfaces import ErrorSink
from .schemas import ErrorKind, ErrorRecord

logger = logging.getLogger(__name__)


def report_error(
    sink: ErrorSink,
    kind: ErrorKind,
    detail: str,
    created_at: datetime,
    schedule_id: Optional[str] = None,
    retries_exhausted: bool = False,
) -> Optional[ErrorRecord]:
    """Write a structured error record; a failing sink is logged, never raised."""
    entry = ErrorRecord(
        kind=kind,
        detail=detail,
        created_at=created_at,
        schedule_id=schedule_id,
        retries_exhausted=retries_exhausted,
    )
    try:
        sink.record(entry)
    except Exception as e:
        logger.error(
            f"❌ [ErrorLog] Could not record {kind.value} for schedule {schedule_id}: {e!r} (detail: {detail})"
        )
        return None
    return entry
