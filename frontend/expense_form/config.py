"""
Client-side settings.

Values come from the environment (``.env.local`` then ``.env`` are loaded by
the Streamlit entry point) so the same package can target a local relay during
development and the hosted one in production.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal

# Fixed by the association's reimbursement policy.
KILOMETRIC_RATE = Decimal("0.321")

ORG_NAME = "SAM Athlétisme Mérignacais"
ORG_SHORT_NAME = "SAM"
PRESIDENT_LABEL = "Michel Rémy, Président du club"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ClientSettings:
    relay_url: str = "http://127.0.0.1:8000/form-handler"
    timeout_seconds: float = 30.0
    max_attempts: int = 3
    backoff_seconds: float = 1.0
    probe_relay: bool = True
    probe_timeout_seconds: float = 5.0
    org_name: str = ORG_NAME
    org_short_name: str = ORG_SHORT_NAME
    president_label: str = PRESIDENT_LABEL


def load_settings() -> ClientSettings:
    return ClientSettings(
        relay_url=os.getenv("RELAY_URL", ClientSettings.relay_url),
        timeout_seconds=float(os.getenv("RELAY_TIMEOUT_SECONDS", "30")),
        max_attempts=max(1, int(os.getenv("RELAY_MAX_ATTEMPTS", "3"))),
        backoff_seconds=float(os.getenv("RELAY_BACKOFF_SECONDS", "1")),
        probe_relay=_env_bool("RELAY_PROBE", True),
        probe_timeout_seconds=float(os.getenv("RELAY_PROBE_TIMEOUT_SECONDS", "5")),
        org_name=os.getenv("ORG_NAME", ORG_NAME),
        org_short_name=os.getenv("ORG_SHORT_NAME", ORG_SHORT_NAME),
        president_label=os.getenv("PRESIDENT_LABEL", PRESIDENT_LABEL),
    )
