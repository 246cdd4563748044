"""
Form state and the store that owns it.

The Streamlit page never touches ``FormState`` attributes directly: every edit
goes through one of the ``FormStore`` setters so the invariants below hold at
all times.

* at least one expense line exists;
* every attachment category has at least one group;
* the requester signature is either absent, drawn or uploaded, never two of
  them at once (enforced by the ``Signature`` variant).
"""

from __future__ import annotations

import copy
import datetime as dt
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

from expense_common.keys import AttachmentCategory

from .errors import InvalidSignatureFile

SIGNATURE_IMAGE_TYPES = ("image/png", "image/jpeg", "image/jpg", "image/gif", "image/webp")
SIGNATURE_MAX_BYTES = 5 * 1024 * 1024

# python attribute -> multipart field name expected by the relay
SCALAR_FIELDS: Dict[str, str] = {
    "place": "place",
    "date": "date",
    "first_name": "firstName",
    "last_name": "lastName",
    "role": "role",
    "subject": "subject",
    "motivation": "motivation",
    "payment_method": "paymentMethod",
    "request_date": "requestDate",
}

PAYMENT_METHODS = ("Virement", "Chèque", "Espèces")


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class FileRef:
    """A file picked by the user, already read into memory."""

    name: str
    content: bytes
    mime_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def is_image(self) -> bool:
        return self.mime_type.lower().startswith("image/")


@dataclass(frozen=True)
class NoSignature:
    pass


@dataclass(frozen=True)
class DrawnSignature:
    png: bytes


@dataclass(frozen=True)
class UploadedSignature:
    file: FileRef


Signature = Union[NoSignature, DrawnSignature, UploadedSignature]


@dataclass
class ExpenseLine:
    id: str = field(default_factory=_new_id)
    nature: str = ""
    amount: str = ""
    attachments: List[FileRef] = field(default_factory=list)


@dataclass
class AttachmentGroup:
    category: AttachmentCategory
    id: str = field(default_factory=_new_id)
    files: List[FileRef] = field(default_factory=list)


@dataclass
class FormState:
    place: str = ""
    date: str = ""
    first_name: str = ""
    last_name: str = ""
    role: str = ""
    subject: str = ""
    motivation: str = ""
    payment_method: str = ""
    request_date: str = ""
    kilometers: str = ""
    rental_vehicle: bool = False
    signature: Signature = field(default_factory=NoSignature)
    expenses: List[ExpenseLine] = field(default_factory=list)
    attachments: Dict[AttachmentCategory, List[AttachmentGroup]] = field(default_factory=dict)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def groups(self, category: AttachmentCategory) -> List[AttachmentGroup]:
        return self.attachments.get(category, [])


def new_form_state(today: Optional[dt.date] = None) -> FormState:
    """Session-start state: default payment method, one empty expense line, one empty group per category."""
    today = today or dt.date.today()
    return FormState(
        payment_method=PAYMENT_METHODS[0],
        request_date=today.isoformat(),
        expenses=[ExpenseLine()],
        attachments={category: [AttachmentGroup(category)] for category in AttachmentCategory},
    )


class FormStore:
    """Owns a ``FormState`` and exposes the only ways to change it."""

    def __init__(self, state: Optional[FormState] = None):
        self._state = state or new_form_state()

    @property
    def state(self) -> FormState:
        return self._state

    def snapshot(self) -> FormState:
        """Independent copy, safe to hand to a running submission."""
        return copy.deepcopy(self._state)

    # ------------------------------------------------------------------
    # Scalar fields
    # ------------------------------------------------------------------
    def set_field(self, name: str, value: str) -> None:
        if name not in SCALAR_FIELDS:
            raise ValueError(f"Unknown form field '{name}'")
        setattr(self._state, name, value or "")

    def set_kilometers(self, value: str) -> None:
        self._state.kilometers = (value or "").strip()

    def set_rental_vehicle(self, value: bool) -> None:
        self._state.rental_vehicle = bool(value)

    # ------------------------------------------------------------------
    # Expense lines
    # ------------------------------------------------------------------
    def _expense(self, expense_id: str) -> ExpenseLine:
        for line in self._state.expenses:
            if line.id == expense_id:
                return line
        raise KeyError(expense_id)

    def add_expense(self) -> ExpenseLine:
        line = ExpenseLine()
        self._state.expenses.append(line)
        return line

    def remove_expense(self, expense_id: str) -> None:
        line = self._expense(expense_id)
        if len(self._state.expenses) == 1:
            line.nature, line.amount, line.attachments = "", "", []
            return
        self._state.expenses.remove(line)

    def update_expense(self, expense_id: str, nature: Optional[str] = None, amount: Optional[str] = None) -> None:
        line = self._expense(expense_id)
        if nature is not None:
            line.nature = nature
        if amount is not None:
            line.amount = amount

    def set_expense_attachments(self, expense_id: str, files: Sequence[FileRef]) -> None:
        self._expense(expense_id).attachments = list(files)

    # ------------------------------------------------------------------
    # Attachment groups
    # ------------------------------------------------------------------
    def _group(self, category: AttachmentCategory, group_id: str) -> AttachmentGroup:
        for group in self._state.groups(category):
            if group.id == group_id:
                return group
        raise KeyError(group_id)

    def add_group(self, category: AttachmentCategory) -> AttachmentGroup:
        group = AttachmentGroup(category)
        self._state.attachments.setdefault(category, []).append(group)
        return group

    def remove_group(self, category: AttachmentCategory, group_id: str) -> None:
        groups = self._state.attachments[category]
        group = self._group(category, group_id)
        if len(groups) == 1:
            group.files = []
            return
        groups.remove(group)

    def set_group_files(self, category: AttachmentCategory, group_id: str, files: Sequence[FileRef]) -> None:
        self._group(category, group_id).files = list(files)

    # ------------------------------------------------------------------
    # Signature
    # ------------------------------------------------------------------
    def set_drawn_signature(self, png: bytes) -> None:
        if not png:
            self.clear_signature()
            return
        self._state.signature = DrawnSignature(png=png)

    def set_uploaded_signature(self, file: FileRef) -> None:
        """Replace the signature with ``file``; a rejected file leaves no signature at all."""
        if file.mime_type.lower() not in SIGNATURE_IMAGE_TYPES:
            self.clear_signature()
            raise InvalidSignatureFile(
                "Veuillez sélectionner un fichier image valide (PNG, JPEG, GIF, WebP)"
            )
        if file.size > SIGNATURE_MAX_BYTES:
            self.clear_signature()
            raise InvalidSignatureFile("Le fichier de signature ne doit pas dépasser 5 Mo")
        self._state.signature = UploadedSignature(file=file)

    def clear_signature(self) -> None:
        self._state.signature = NoSignature()
