import logging
from typing import Optional

from halloo.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """Configure root logging for worker and CLI processes.

    The ops API is usually run under uvicorn, which installs its own handlers;
    workers (Celery, CLI) call this once at startup.
    """
    handlers = [logging.StreamHandler()]
    target = log_file or settings.LOG_FILE
    if target:
        handlers.append(logging.FileHandler(target))

    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
        handlers=handlers,
    )
