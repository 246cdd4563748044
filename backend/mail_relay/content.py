"""
Email subject and bodies for a relayed request.

Field values arrive sanitized but not escaped; everything placed in the HTML
body goes through ``html.escape``.
"""

from __future__ import annotations

import datetime as dt
import html
from decimal import Decimal
from typing import Dict, List, Optional

from expense_common.formatting import format_date_fr, format_datetime_fr, format_eur, parse_decimal

_STYLE = """
body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 800px; margin: 0 auto; padding: 20px; }
.header { background: #f8f9fa; padding: 20px; border-radius: 8px; margin-bottom: 20px; }
.section { margin-bottom: 20px; padding: 15px; border: 1px solid #e9ecef; border-radius: 5px; }
.section h3 { margin-top: 0; color: #495057; border-bottom: 2px solid #007bff; padding-bottom: 5px; }
.label { font-weight: bold; color: #495057; }
table { width: 100%; border-collapse: collapse; margin-top: 10px; }
th, td { border: 1px solid #dee2e6; padding: 8px; text-align: left; }
th { background-color: #f8f9fa; }
.total { background-color: #e9ecef; font-weight: bold; }
.footer { margin-top: 30px; padding: 15px; background: #f8f9fa; border-radius: 5px; font-size: 0.9em; color: #6c757d; }
"""

_INFO_FIELDS = (
    ("lastName", "Nom"),
    ("firstName", "Prénom"),
    ("role", "Rôle"),
    ("place", "Lieu"),
    ("date", "Date"),
    ("paymentMethod", "Mode de paiement"),
    ("requestDate", "Date de la demande"),
)


def _e(value: object) -> str:
    return html.escape(str(value), quote=True)


def _amount(raw: object) -> Decimal:
    return parse_decimal(str(raw)) or Decimal("0")


def email_subject(fields: Dict[str, str], today: Optional[dt.date] = None) -> str:
    request_date = fields.get("requestDate") or (today or dt.date.today()).isoformat()
    return (
        "FORMULAIRE DE REMBOURSEMENT DE FRAIS - "
        f"{fields.get('lastName', '').upper()} {fields.get('firstName', '')} - "
        f"{format_date_fr(request_date)} - Motif : {fields.get('subject', '')}"
    )


def claimed_expenses(expenses: List[Dict[str, object]]) -> List[Dict[str, object]]:
    return [e for e in expenses if str(e.get("nature", "")).strip() and str(e.get("amount", "")).strip()]


def grand_total(fields: Dict[str, str]) -> Decimal:
    """``totalAmount + kilometricReimbursement`` as sent by the form."""
    return _amount(fields.get("totalAmount", "")) + _amount(fields.get("kilometricReimbursement", ""))


def text_body(fields: Dict[str, str], expenses: List[Dict[str, object]], total: Decimal) -> str:
    summary = fields.get("summary")
    if summary:
        return summary

    lines = ["DEMANDE DE REMBOURSEMENT DE FRAIS", ""]
    lines += [f"{label}: {fields.get(key, '')}" for key, label in _INFO_FIELDS]
    lines += ["", f"Objet: {fields.get('subject', '')}", "", "Motivation:", fields.get("motivation", ""), ""]
    for expense in claimed_expenses(expenses):
        lines.append(f"- {expense['nature']}: {format_eur(_amount(expense['amount']))}")
    lines += ["", f"MONTANT TOTAL: {format_eur(total)}"]
    return "\n".join(lines)


def html_body(
    fields: Dict[str, str],
    expenses: List[Dict[str, object]],
    total: Decimal,
    attachment_names: List[str],
    org_name: str,
    received_at: Optional[dt.datetime] = None,
) -> str:
    received_at = received_at or dt.datetime.now()

    info = "".join(
        f'<p><span class="label">{label} :</span> {_e(fields.get(key, ""))}</p>'
        for key, label in _INFO_FIELDS
    )

    rows = []
    for expense in claimed_expenses(expenses):
        receipts = ", ".join(str(a) for a in expense.get("attachments") or []) or "Aucun fichier"
        rows.append(
            f"<tr><td>{_e(expense['nature'])}</td>"
            f"<td>{_e(format_eur(_amount(expense['amount'])))}</td>"
            f"<td>{_e(receipts)}</td></tr>"
        )
    expenses_block = (
        "<table><tr><th>Nature</th><th>Montant</th><th>Justificatifs</th></tr>"
        + "".join(rows)
        + f'<tr class="total"><td>Total dépenses</td><td colspan="2">{_e(format_eur(_amount(fields.get("totalAmount", ""))))}</td></tr>'
        + "</table>"
        if rows
        else "<p>Aucune dépense déclarée.</p>"
    )

    km_block = ""
    km = _amount(fields.get("kilometers", ""))
    if km > 0:
        rental = "Oui" if fields.get("rentalVehicle") == "true" else "Non"
        km_block = (
            '<div class="section"><h3>Indemnités kilométriques</h3>'
            f"<p><span class=\"label\">Kilomètres :</span> {_e(fields.get('kilometers', ''))} km</p>"
            f'<p><span class="label">Véhicule de location :</span> {rental}</p>'
            f'<p><span class="label">Remboursement :</span> '
            f"{_e(format_eur(_amount(fields.get('kilometricReimbursement', ''))))}</p></div>"
        )

    files = "".join(f"<li>{_e(name)}</li>" for name in attachment_names) or "<li>Aucune pièce jointe</li>"

    return f"""<!DOCTYPE html>
<html lang="fr">
<head><meta charset="UTF-8"><title>Demande de remboursement - {_e(org_name)}</title><style>{_STYLE}</style></head>
<body>
<div class="header">
<h1>Nouvelle demande de remboursement</h1>
<p><strong>{_e(org_name)}</strong></p>
<p>Reçue le {_e(format_datetime_fr(received_at))}</p>
</div>
<div class="section"><h3>Informations du demandeur</h3>{info}</div>
<div class="section"><h3>Objet de la demande</h3><p>{_e(fields.get("subject", ""))}</p>
<h3>Motivation</h3><p>{_e(fields.get("motivation", "")).replace(chr(10), "<br>")}</p></div>
<div class="section"><h3>Dépenses</h3>{expenses_block}</div>
{km_block}
<div class="section"><h3>Montant total de la demande</h3><p class="total">{_e(format_eur(total))}</p></div>
<div class="section"><h3>Pièces jointes</h3><ul>{files}</ul></div>
<div class="footer">Message envoyé automatiquement par le formulaire de remboursement de frais.</div>
</body>
</html>
"""
