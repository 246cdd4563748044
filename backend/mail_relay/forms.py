"""
Request parsing for the relay: sanitization, the expense list and the
attachment key scheme shared with the form.
"""

from __future__ import annotations

import json
import logging
import mimetypes
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from expense_common.keys import (
    DOCUMENT_FIELD,
    SIGNATURE_KEY,
    AttachmentCategory,
    parse_category_key,
    parse_expense_key,
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = (
    "firstName",
    "lastName",
    "role",
    "place",
    "date",
    "subject",
    "motivation",
    "paymentMethod",
)

_TAG_RE = re.compile(r"<[^>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


@dataclass(frozen=True)
class IncomingFile:
    field: str
    filename: str
    content_type: str
    content: bytes


@dataclass(frozen=True)
class RelayAttachment:
    filename: str
    content: bytes
    mime_type: str
    source_key: str


def sanitize_input(value: Optional[str]) -> str:
    """Trim, drop markup and control characters. HTML escaping happens at render time."""
    if value is None:
        return ""
    cleaned = _TAG_RE.sub("", str(value))
    return _CONTROL_RE.sub("", cleaned).strip()


def sanitize_filename(name: str) -> str:
    base = sanitize_input(name).replace("\\", "/").split("/")[-1]
    base = re.sub(r'["\r\n]', "", base)
    return base or "fichier"


def missing_fields(fields: Dict[str, str]) -> List[str]:
    return [name for name in REQUIRED_FIELDS if not fields.get(name)]


def parse_expenses(raw: Optional[str]) -> List[Dict[str, object]]:
    """Decode the ``expenses`` field; malformed input counts as no expenses."""
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Malformed expenses field ignored")
        return []
    if not isinstance(data, list):
        return []

    expenses = []
    for item in data:
        if not isinstance(item, dict):
            continue
        attachments = item.get("attachments") or []
        expenses.append(
            {
                "nature": sanitize_input(str(item.get("nature", ""))),
                "amount": sanitize_input(str(item.get("amount", ""))),
                "attachments": [sanitize_filename(str(a)) for a in attachments if a]
                if isinstance(attachments, list)
                else [],
            }
        )
    return expenses


def resolve_mime_type(upload: IncomingFile) -> str:
    content_type = (upload.content_type or "").split(";")[0].strip().lower()
    if content_type and content_type != "application/octet-stream":
        return content_type
    guessed, _ = mimetypes.guess_type(upload.filename)
    return guessed or "application/octet-stream"


def _sort_key(upload: IncomingFile) -> Tuple[int, ...]:
    """Document first, then categories in fixed order, expenses, signature."""
    if upload.field == DOCUMENT_FIELD:
        return (0,)
    category = parse_category_key(upload.field)
    if category:
        kind, group_index, file_index = category
        return (1, list(AttachmentCategory).index(kind), group_index, file_index)
    expense = parse_expense_key(upload.field)
    if expense:
        return (2,) + expense
    return (3,)


def attachment_name(upload: IncomingFile, document_filename: str) -> Optional[str]:
    """Name used in the email for a known key, None for keys outside the scheme."""
    filename = sanitize_filename(upload.filename)
    if upload.field == DOCUMENT_FIELD:
        return document_filename
    if upload.field == SIGNATURE_KEY:
        return f"signature_{filename}"
    expense = parse_expense_key(upload.field)
    if expense:
        return f"justificatif_depense_{expense[0] + 1}_{filename}"
    category = parse_category_key(upload.field)
    if category:
        return f"{category[0].value}_{filename}"
    return None


def collect_attachments(
    uploads: List[IncomingFile],
    document_filename: str,
    max_file_size: int,
    allowed_types: Tuple[str, ...],
) -> Tuple[List[RelayAttachment], List[Dict[str, str]]]:
    """Reassemble uploads into email attachments; returns (attachments, rejected)."""
    attachments: List[RelayAttachment] = []
    rejected: List[Dict[str, str]] = []

    for upload in sorted(uploads, key=_sort_key):
        name = attachment_name(upload, document_filename)
        if name is None:
            logger.warning("Ignoring upload under unknown key %s", upload.field)
            continue
        if not upload.content:
            logger.warning("Ignoring empty upload %s (%s)", upload.field, upload.filename)
            continue

        mime_type = resolve_mime_type(upload)
        if len(upload.content) > max_file_size:
            rejected.append({"field": upload.field, "filename": upload.filename, "reason": "Fichier trop volumineux"})
            continue
        if mime_type not in allowed_types:
            rejected.append({"field": upload.field, "filename": upload.filename, "reason": f"Type non autorisé ({mime_type})"})
            continue

        logger.info("Attachment %s -> %s (%s, %d bytes)", upload.field, name, mime_type, len(upload.content))
        attachments.append(RelayAttachment(name, upload.content, mime_type, upload.field))

    return attachments, rejected
