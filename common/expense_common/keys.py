"""
Multipart key scheme shared by the form and the relay.

* ``summary_pdf`` for the reimbursement document
* ``{category}_{groupIndex}_{fileIndex}`` for category groups
* ``expense_{expenseIndex}_{fileIndex}`` for per-expense receipts
* ``signatureFile`` for an uploaded signature

Indices are 0-based positions in the form at submission time.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Optional, Tuple

DOCUMENT_FIELD = "summary_pdf"
SIGNATURE_KEY = "signatureFile"


class AttachmentCategory(str, Enum):
    TRANSPORT = "transport"
    BANKING = "banking"
    OTHER = "other"

    @property
    def label(self) -> str:
        return {
            AttachmentCategory.TRANSPORT: "Justificatifs de transport",
            AttachmentCategory.BANKING: "Coordonnées bancaires (RIB)",
            AttachmentCategory.OTHER: "Autres justificatifs",
        }[self]


EXPENSE_KEY_RE = re.compile(r"^expense_(\d+)_(\d+)$")
CATEGORY_KEY_RE = re.compile(r"^(" + "|".join(c.value for c in AttachmentCategory) + r")_(\d+)_(\d+)$")


def category_key(category: AttachmentCategory, group_index: int, file_index: int) -> str:
    return f"{category.value}_{group_index}_{file_index}"


def expense_key(expense_index: int, file_index: int) -> str:
    return f"expense_{expense_index}_{file_index}"


def parse_category_key(key: str) -> Optional[Tuple[AttachmentCategory, int, int]]:
    match = CATEGORY_KEY_RE.match(key)
    if not match:
        return None
    return AttachmentCategory(match.group(1)), int(match.group(2)), int(match.group(3))


def parse_expense_key(key: str) -> Optional[Tuple[int, int]]:
    match = EXPENSE_KEY_RE.match(key)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))
