"""
Mail relay for expense reimbursement requests.

Modules:
- config: relay settings from the environment
- forms: sanitization, expense list and attachment key scheme
- content: email subject, plaintext and HTML bodies
- mailer: SMTP delivery
- audit: rotating log files and the submissions log
- service: orchestrates one relayed request
"""

from .audit import SubmissionLog, configure_logging
from .config import RelaySettings, load_settings
from .errors import MailSendError, RelayError
from .forms import IncomingFile
from .service import RelayService

__all__ = [
    "IncomingFile",
    "MailSendError",
    "RelayError",
    "RelayService",
    "RelaySettings",
    "SubmissionLog",
    "configure_logging",
    "load_settings",
]
