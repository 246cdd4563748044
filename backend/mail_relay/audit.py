"""
Relay logging: rotating ``form-handler.log`` / ``errors.log`` files and the
one-JSON-line-per-request ``submissions.log``.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import threading
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

from .config import RelaySettings

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
_HANDLER_TAG = "_mail_relay_handler"


def configure_logging(settings: RelaySettings, logger_name: str = "mail_relay") -> logging.Logger:
    """Attach the rotating file handlers once; calling again is a no-op."""
    target = logging.getLogger(logger_name)
    target.setLevel(logging.INFO)
    if any(getattr(h, _HANDLER_TAG, False) for h in target.handlers):
        return target

    settings.log_dir.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)
    for filename, level in (("form-handler.log", logging.INFO), ("errors.log", logging.ERROR)):
        handler = TimedRotatingFileHandler(
            settings.log_dir / filename,
            when="midnight",
            backupCount=settings.log_retention_days,
            encoding="utf-8",
        )
        handler.setLevel(level)
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_TAG, True)
        target.addHandler(handler)
    return target


class SubmissionLog:
    """Append-only JSON lines; one per relay attempt, sent or failed."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()

    def record(self, name: str, subject: str, attachments_count: int, status: str, ip: Optional[str] = None) -> None:
        entry = {
            "timestamp": dt.datetime.now().isoformat(timespec="seconds"),
            "name": name,
            "subject": subject,
            "attachments_count": attachments_count,
            "status": status,
            "ip": ip or "unknown",
        }
        line = json.dumps(entry, ensure_ascii=False)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
