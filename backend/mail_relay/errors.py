from __future__ import annotations

from typing import Any, Dict, Optional


class RelayError(RuntimeError):
    """Request the relay refuses or cannot complete; carries the HTTP status for the reply."""

    def __init__(self, message: str, status_code: int = 400, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.extra = extra or {}


class MailSendError(RuntimeError):
    """SMTP delivery failed (configuration, connection, authentication or refusal)."""
