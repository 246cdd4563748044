"""
Relay settings.

Read from the environment once at startup (``main.py`` loads ``.env.local``
and ``.env`` first). Tests build ``RelaySettings`` directly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

DEFAULT_ALLOWED_ORIGINS = (
    "https://sam-athletisme.vercel.app",
    "https://sam-athletisme-formulaire.vercel.app",
    "http://localhost:8501",
    "http://127.0.0.1:8501",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
)

ALLOWED_FILE_TYPES = (
    "application/pdf",
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
)


def _split_csv(raw: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class RelaySettings:
    admin_email: str = ""
    from_email: str = ""
    from_name: str = "SAM Athlétisme - Formulaire automatisé"
    org_name: str = "SAM Athlétisme Mérignacais"
    smtp_host: str = "localhost"
    smtp_port: int = 25
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_timeout: float = 30.0
    log_dir: Path = Path("logs")
    log_retention_days: int = 30
    max_file_size: int = 10 * 1024 * 1024
    allowed_file_types: Tuple[str, ...] = ALLOWED_FILE_TYPES
    allowed_origins: Tuple[str, ...] = field(default=DEFAULT_ALLOWED_ORIGINS)


def load_settings() -> RelaySettings:
    origins = os.getenv("ALLOWED_ORIGINS")
    return RelaySettings(
        admin_email=os.getenv("ADMIN_EMAIL", ""),
        from_email=os.getenv("FROM_EMAIL", ""),
        from_name=os.getenv("FROM_NAME", RelaySettings.from_name),
        org_name=os.getenv("ORG_NAME", RelaySettings.org_name),
        smtp_host=os.getenv("SMTP_HOST", "localhost"),
        smtp_port=int(os.getenv("SMTP_PORT", "25")),
        smtp_user=os.getenv("SMTP_USER", ""),
        smtp_password=os.getenv("SMTP_PASSWORD", ""),
        smtp_timeout=float(os.getenv("SMTP_TIMEOUT_SECONDS", "30")),
        log_dir=Path(os.getenv("RELAY_LOG_DIR", "logs")),
        log_retention_days=int(os.getenv("LOG_RETENTION_DAYS", "30")),
        max_file_size=int(float(os.getenv("MAX_FILE_SIZE_MB", "10")) * 1024 * 1024),
        allowed_origins=_split_csv(origins) if origins else DEFAULT_ALLOWED_ORIGINS,
    )
