"""
Multipart payload sent to the mail relay.

The payload is built once per submission and reused unchanged by every retry.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Dict, List, Tuple

from expense_common.formatting import format_amount, format_eur, format_number
from expense_common.keys import DOCUMENT_FIELD

from .attachments import aggregate_attachments
from .composer import expense_rows, personal_info_lines
from .state import SCALAR_FIELDS, AttachmentCategory, FormState
from .totals import Totals, kilometers

FilePart = Tuple[str, Tuple[str, bytes, str]]


@dataclass(frozen=True)
class RelayPayload:
    data: Dict[str, str]
    files: Tuple[FilePart, ...]
    filename: str

    @property
    def attachment_count(self) -> int:
        return len(self.files)


def serialize_expenses(state: FormState) -> str:
    """Every line in order (indices match ``expense_i_j`` keys); file names only."""
    return json.dumps(
        [
            {
                "nature": line.nature,
                "amount": line.amount,
                "attachments": [f.name for f in line.attachments],
            }
            for line in state.expenses
        ],
        ensure_ascii=False,
    )


def build_summary(state: FormState, totals: Totals) -> str:
    """Plaintext recap of the request, readable without opening the PDF."""
    lines: List[str] = ["DEMANDE DE REMBOURSEMENT DE FRAIS", ""]
    lines.extend(personal_info_lines(state))
    lines += ["", "Motivation:", state.motivation.strip(), "", "Dépenses:"]

    rows = list(expense_rows(state))
    if rows:
        for nature, amount, names in rows:
            files = ", ".join(names) if names else "Aucun fichier"
            lines.append(f"- {nature}: {format_eur(amount)} (justificatifs: {files})")
    else:
        lines.append("- Aucune dépense")
    lines.append(f"Total dépenses: {format_eur(totals.expenses)}")

    km = kilometers(state)
    if km > 0:
        lines += [
            "",
            f"Kilomètres: {format_number(km)} km",
            f"Véhicule de location: {'Oui' if state.rental_vehicle else 'Non'}",
            f"Remboursement kilométrique: {format_eur(totals.kilometric)}",
        ]

    attached = {
        category: sum(len(group.files) for group in state.groups(category))
        for category in AttachmentCategory
    }
    lines += ["", "Pièces jointes:"]
    lines += [f"- {category.label}: {count}" for category, count in attached.items()]

    lines += ["", f"MONTANT TOTAL: {format_amount(totals.grand)} €"]
    return "\n".join(lines)


def build_payload(state: FormState, totals: Totals, document: bytes, filename: str) -> RelayPayload:
    data = {wire: getattr(state, attr) for attr, wire in SCALAR_FIELDS.items()}
    data.update(
        {
            "kilometers": state.kilometers,
            "rentalVehicle": "true" if state.rental_vehicle else "false",
            "expenses": serialize_expenses(state),
            "totalAmount": str(totals.expenses),
            "kilometricReimbursement": str(totals.kilometric),
            "grandTotal": str(totals.grand),
            "summary": build_summary(state, totals),
        }
    )

    files: List[FilePart] = [(DOCUMENT_FIELD, (filename, document, "application/pdf"))]
    for key, file in aggregate_attachments(state).items():
        files.append((key, (file.name, file.content, file.mime_type)))

    return RelayPayload(data=data, files=tuple(files), filename=filename)
