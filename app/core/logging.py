# app/core/logging.py
import logging

from app.core.config import settings

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

def setup_logging(level: str | None = None) -> None:
    root = logging.getLogger()
    if root.handlers:
        # uvicorn / pytest already installed handlers
        root.setLevel(level or settings.LOG_LEVEL)
        return
    logging.basicConfig(level=level or settings.LOG_LEVEL, format=LOG_FORMAT)
