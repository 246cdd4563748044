"""
Relay service: turns one multipart submission into one email.

Framework-free so the FastAPI route stays thin; ``handle`` runs in a worker
thread since SMTP is blocking.
"""

from __future__ import annotations

import io
import logging
from email.message import EmailMessage
from typing import Any, Callable, Dict, List, Optional

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from expense_common.formatting import download_filename, round_money
from expense_common.keys import DOCUMENT_FIELD

from . import content
from .audit import SubmissionLog
from .config import RelaySettings
from .errors import MailSendError, RelayError
from .forms import (
    IncomingFile,
    collect_attachments,
    missing_fields,
    parse_expenses,
    sanitize_input,
)
from .mailer import build_message, send_message

logger = logging.getLogger(__name__)


def page_count(document: bytes) -> Optional[int]:
    try:
        return len(PdfReader(io.BytesIO(document)).pages)
    except (PdfReadError, ValueError, OSError) as exc:
        logger.warning("Could not read the request document: %s", exc)
        return None


class RelayService:
    def __init__(
        self,
        settings: RelaySettings,
        sender: Optional[Callable[[EmailMessage], None]] = None,
        submission_log: Optional[SubmissionLog] = None,
    ):
        self.settings = settings
        self._sender = sender or (lambda msg: send_message(settings, msg))
        self.submission_log = submission_log or SubmissionLog(settings.log_dir / "submissions.log")

    def handle(self, raw_fields: Dict[str, str], uploads: List[IncomingFile], client_ip: Optional[str] = None) -> Dict[str, Any]:
        """Validate, reassemble and send; raises ``RelayError`` carrying the reply status."""
        fields = {key: sanitize_input(value) for key, value in raw_fields.items() if key != "expenses"}
        expenses = parse_expenses(raw_fields.get("expenses"))
        full_name = f"{fields.get('firstName', '')} {fields.get('lastName', '')}".strip()
        logger.info("Request from %s (%s), %d upload(s)", full_name or "?", client_ip or "unknown", len(uploads))

        missing = missing_fields(fields)
        if missing:
            logger.warning("Missing required fields: %s", ", ".join(missing))
            raise RelayError(f"Champs obligatoires manquants: {', '.join(missing)}", 400, {"missing": missing})

        pdf_filename = download_filename(
            fields.get("requestDate", ""), fields["firstName"], fields["lastName"], fields["subject"]
        )
        attachments, rejected = collect_attachments(
            uploads, pdf_filename, self.settings.max_file_size, self.settings.allowed_file_types
        )
        if rejected:
            logger.warning("Rejected %d file(s): %s", len(rejected), rejected)
            raise RelayError("Fichiers refusés", 400, {"rejected": rejected})

        document = next((u for u in uploads if u.field == DOCUMENT_FIELD), None)
        if document is None:
            logger.warning("No request document in submission from %s", full_name)
        else:
            logger.info("Request document %s: %s page(s)", pdf_filename, page_count(document.content))

        try:
            total = content.grand_total(fields)
            subject = content.email_subject(fields)
            msg = build_message(
                self.settings,
                subject,
                content.text_body(fields, expenses, total),
                content.html_body(fields, expenses, total, [a.filename for a in attachments], self.settings.org_name),
                attachments,
            )
            self._sender(msg)
        except MailSendError as exc:
            logger.error("Delivery failed for %s: %s", full_name, exc)
            self.submission_log.record(full_name, fields["subject"], len(attachments), "failed", client_ip)
            raise RelayError("Erreur lors de l'envoi de l'email", 500) from exc
        except Exception as exc:
            logger.error("Unexpected failure while relaying the request from %s: %s", full_name, exc)
            self.submission_log.record(full_name, fields["subject"], len(attachments), "failed", client_ip)
            raise

        self.submission_log.record(full_name, fields["subject"], len(attachments), "sent", client_ip)
        logger.info("Request from %s relayed with %d attachment(s)", full_name, len(attachments))
        return {
            "success": True,
            "status": "success",
            "message": "Demande envoyée avec succès",
            "pdf_filename": pdf_filename,
            "total_amount": float(round_money(total)),
            "attachments_processed": len(attachments),
        }
