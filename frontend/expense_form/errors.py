"""Exception taxonomy for the reimbursement form pipeline."""

from __future__ import annotations

from typing import Optional


class ExpenseFormError(Exception):
    """Base class for every error raised by the form pipeline."""


class InvalidSignatureFile(ExpenseFormError):
    """Uploaded signature is not an accepted image or is too large."""


class DocumentCompositionError(ExpenseFormError):
    """The reimbursement document could not be rendered. Never retried."""


class SubmissionInProgressError(ExpenseFormError):
    """A submission is already running for this controller."""


class RelayError(ExpenseFormError):
    """A relay attempt failed; the controller may retry it."""


class RelayNetworkError(RelayError):
    """Connection to the relay could not be established or was dropped."""


class RelayTimeoutError(RelayError):
    """The relay did not answer before the deadline."""


class RelayServerError(RelayError):
    """The relay answered but reported a failure."""

    def __init__(self, status_code: int, message: str, payload: Optional[dict] = None):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.payload = payload or {}
