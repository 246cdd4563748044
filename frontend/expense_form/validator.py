"""
Form validation.

``validate`` is pure: it never touches the network or the document composer.
Error order matters, the page scrolls to the first one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from expense_common.formatting import parse_decimal

from .state import FormState, NoSignature
from .totals import is_claimed, kilometers, line_amount

REQUIRED_FIELDS = (
    ("place", "Lieu"),
    ("date", "Date"),
    ("first_name", "Prénom"),
    ("last_name", "Nom"),
    ("role", "Rôle/Fonction"),
    ("subject", "Objet de la demande"),
    ("motivation", "Motivation"),
)


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str
    anchor: Optional[str] = None


def validate(state: FormState) -> List[ValidationError]:
    errors: List[ValidationError] = []

    for attr, label in REQUIRED_FIELDS:
        if not getattr(state, attr, "").strip():
            errors.append(ValidationError(label, "Ce champ est obligatoire", anchor=attr))

    if not any(is_claimed(line) for line in state.expenses) and kilometers(state) <= 0:
        errors.append(
            ValidationError(
                "Dépenses",
                "Veuillez renseigner au moins une dépense ou des kilomètres",
                anchor="expenses",
            )
        )

    for position, line in enumerate(state.expenses, start=1):
        if is_claimed(line) and line_amount(line) is None:
            errors.append(
                ValidationError(
                    f"Dépense {position}",
                    "Le montant doit être un nombre supérieur à 0",
                    anchor=f"expense-{line.id}",
                )
            )

    if state.kilometers.strip():
        km = parse_decimal(state.kilometers)
        if km is None or km <= 0:
            errors.append(
                ValidationError(
                    "Kilomètres",
                    "Le nombre de kilomètres doit être supérieur à 0",
                    anchor="kilometers",
                )
            )

    if isinstance(state.signature, NoSignature):
        errors.append(
            ValidationError("Signature", "Veuillez signer ou importer votre signature", anchor="signature")
        )

    return errors
