"""
Reimbursement document ("fiche de remboursement") rendering.

The layout is drawn directly on a reportlab canvas, A4 portrait with 20 mm
margins. The cursor ``y`` runs top-down in points and is converted to
reportlab's bottom-up coordinates only when drawing.

Blocks, in order: header, personal information, motivation, expense table,
kilometric block (only when kilometers > 0), grand total, signatures, footer.
"""

from __future__ import annotations

import datetime as dt
import io
import logging
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from expense_common.formatting import format_amount, format_date_fr, format_datetime_fr, format_eur, format_number

from .config import KILOMETRIC_RATE, ClientSettings
from .errors import DocumentCompositionError
from .signature import signature_image
from .state import FormState
from .totals import kilometers, line_amount, valid_lines

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 20 * mm
CONTENT_WIDTH = PAGE_WIDTH - 2 * MARGIN
# Space the signature section needs above the bottom margin.
SIGNATURE_BLOCK_HEIGHT = 72 * mm
SIGNATURE_BOX_HEIGHT = 40 * mm

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"

Gray = Tuple[float, float, float]


def _gray(level: int) -> Gray:
    return (level / 255.0,) * 3


def _truncate(name: str, limit: int = 25) -> str:
    return name if len(name) <= limit else name[: limit - 3] + "..."


class _Writer:
    """Thin wrapper around the canvas with a top-down cursor and page breaks."""

    def __init__(self, pdf: canvas.Canvas):
        self.pdf = pdf
        self.y = MARGIN
        self.pages = 1

    @staticmethod
    def flip(y: float) -> float:
        return PAGE_HEIGHT - y

    def remaining(self) -> float:
        return PAGE_HEIGHT - MARGIN - self.y

    def new_page(self) -> None:
        self.pdf.showPage()
        self.pages += 1
        self.y = MARGIN

    def ensure(self, height: float) -> bool:
        """Start a new page when ``height`` does not fit; True if a break happened."""
        if self.remaining() < height:
            self.new_page()
            return True
        return False

    def text(self, x: float, y: float, value: str, size: float = 10, bold: bool = False,
             color: Gray = (0, 0, 0), align: str = "left") -> None:
        self.pdf.setFillColorRGB(*color)
        self.pdf.setFont(FONT_BOLD if bold else FONT, size)
        if align == "right":
            self.pdf.drawRightString(x, self.flip(y), value)
        elif align == "center":
            self.pdf.drawCentredString(x, self.flip(y), value)
        else:
            self.pdf.drawString(x, self.flip(y), value)

    def rect(self, x: float, top: float, width: float, height: float,
             fill: Optional[Gray] = None, stroke: Optional[Gray] = None) -> None:
        if fill is not None:
            self.pdf.setFillColorRGB(*fill)
        if stroke is not None:
            self.pdf.setStrokeColorRGB(*stroke)
        self.pdf.rect(x, self.flip(top + height), width, height,
                      fill=int(fill is not None), stroke=int(stroke is not None))

    def hline(self, x1: float, x2: float, y: float, color: Gray = _gray(200)) -> None:
        self.pdf.setStrokeColorRGB(*color)
        self.pdf.line(x1, self.flip(y), x2, self.flip(y))

    def wrapped(self, value: str, size: float = 10, bold: bool = False,
                width: float = CONTENT_WIDTH, x: float = MARGIN) -> None:
        leading = size * 1.3
        for line in _split(value, FONT_BOLD if bold else FONT, size, width):
            self.ensure(leading)
            self.y += leading
            self.text(x, self.y, line, size=size, bold=bold)

    def section(self, title: str, underline: float) -> None:
        self.ensure(14 * mm)
        self.y += 5 * mm
        self.text(MARGIN, self.y, title, size=12, bold=True)
        self.hline(MARGIN, MARGIN + underline, self.y + 2 * mm)
        self.y += 2 * mm


def _split(value: str, font: str, size: float, width: float) -> List[str]:
    lines: List[str] = []
    for paragraph in (value or "").splitlines() or [""]:
        lines.extend(simpleSplit(paragraph, font, size, width) or [""])
    return lines


# ----------------------------------------------------------------------
# Blocks
# ----------------------------------------------------------------------
def _draw_header(w: _Writer, settings: ClientSettings) -> None:
    w.rect(MARGIN, w.y, 24 * mm, 24 * mm, fill=_gray(240), stroke=_gray(200))
    w.text(MARGIN + 12 * mm, w.y + 14 * mm, settings.org_short_name, size=12, bold=True, align="center")
    w.text(MARGIN + 35 * mm, w.y + 11 * mm, "FICHE DE REMBOURSEMENT DE FRAIS", size=18, bold=True)
    w.text(MARGIN + 35 * mm, w.y + 20 * mm, settings.org_name, size=13)
    w.hline(MARGIN, PAGE_WIDTH - MARGIN, w.y + 28 * mm)
    w.y += 30 * mm


def personal_info_lines(state: FormState) -> List[str]:
    return [
        f"Lieu: {state.place}",
        f"Date: {format_date_fr(state.date)}",
        f"Nom: {state.last_name}",
        f"Prénom: {state.first_name}",
        f"Rôle/Fonction: {state.role}",
        f"Objet de la demande: {state.subject}",
        f"Mode de paiement: {state.payment_method}",
        f"Date de la demande: {format_date_fr(state.request_date)}",
    ]


def _draw_personal_info(w: _Writer, state: FormState) -> None:
    w.section("INFORMATIONS PERSONNELLES", 80 * mm)
    w.y += 2 * mm
    for line in personal_info_lines(state):
        w.wrapped(line)


def _draw_motivation(w: _Writer, state: FormState) -> None:
    w.section("MOTIVATION", 40 * mm)
    w.y += 2 * mm
    w.wrapped(state.motivation)


_COL_NATURE = MARGIN + 2 * mm
_COL_FILES = PAGE_WIDTH - MARGIN - 80 * mm
_COL_AMOUNT = PAGE_WIDTH - MARGIN - 2 * mm
_NATURE_WIDTH = _COL_FILES - _COL_NATURE - 4 * mm


def _draw_table_header(w: _Writer) -> None:
    height = 8 * mm
    w.rect(MARGIN, w.y, CONTENT_WIDTH, height, fill=_gray(250), stroke=_gray(200))
    baseline = w.y + 5.5 * mm
    w.text(_COL_NATURE, baseline, "Nature de la dépense", bold=True)
    w.text(_COL_FILES, baseline, "Justificatifs", bold=True)
    w.text(_COL_AMOUNT, baseline, "Montant (€)", bold=True, align="right")
    w.y += height


def _draw_total_row(w: _Writer, label: str, amount: Decimal) -> None:
    height = 8 * mm
    w.ensure(height)
    w.rect(MARGIN, w.y, CONTENT_WIDTH, height, fill=_gray(220), stroke=_gray(180))
    w.text(_COL_NATURE, w.y + 5.5 * mm, label, bold=True)
    w.text(_COL_AMOUNT, w.y + 5.5 * mm, format_eur(amount), bold=True, align="right")
    w.y += height


def _draw_expenses(w: _Writer, state: FormState, total_expenses: Decimal) -> None:
    w.section("DÉTAIL DES DÉPENSES", 70 * mm)
    w.y += 3 * mm
    w.ensure(16 * mm)
    _draw_table_header(w)

    for index, line in enumerate(valid_lines(state)):
        nature_lines = _split(line.nature, FONT, 10, _NATURE_WIDTH)
        names = [f"• {_truncate(f.name)}" for f in line.attachments] or ["Aucun fichier"]
        height = max(7 * mm, len(nature_lines) * 4.5 * mm + 2.5 * mm, len(names) * 3.5 * mm + 3.5 * mm)
        if w.ensure(height):
            _draw_table_header(w)

        shade = _gray(248) if index % 2 == 0 else None
        w.rect(MARGIN, w.y, CONTENT_WIDTH, height, fill=shade, stroke=_gray(230))

        for offset, text in enumerate(nature_lines):
            w.text(_COL_NATURE, w.y + 5 * mm + offset * 4.5 * mm, text)
        w.text(_COL_AMOUNT, w.y + 5 * mm, format_amount(line_amount(line)), align="right")
        if line.attachments:
            for offset, text in enumerate(names):
                w.text(_COL_FILES, w.y + 4.5 * mm + offset * 3.5 * mm, text, size=8)
        else:
            w.text(_COL_FILES, w.y + 5 * mm, names[0])
        w.y += height

    _draw_total_row(w, "TOTAL DÉPENSES", total_expenses)
    w.y += 4 * mm


def _draw_kilometric(w: _Writer, state: FormState, kilometric_amount: Decimal) -> None:
    km = kilometers(state)
    if km <= 0:
        return
    w.section("REMBOURSEMENT KILOMÉTRIQUE", 90 * mm)
    w.y += 1 * mm
    w.wrapped(f"Nombre de kilomètres: {format_number(km)} km")
    w.wrapped(f"Taux de remboursement: {format_number(KILOMETRIC_RATE)} €/km")
    w.wrapped(f"Véhicule de location: {'Oui' if state.rental_vehicle else 'Non'}")
    w.y += 3 * mm
    _draw_total_row(w, "TOTAL KILOMÉTRIQUE", kilometric_amount)
    w.y += 4 * mm


def _draw_grand_total(w: _Writer, grand_total: Decimal) -> None:
    height = 12 * mm
    w.ensure(height + 4 * mm)
    w.y += 2 * mm
    w.rect(MARGIN, w.y, CONTENT_WIDTH, height, fill=_gray(200), stroke=_gray(150))
    w.text(_COL_NATURE, w.y + 8 * mm, "MONTANT TOTAL DE LA DEMANDE", size=14, bold=True)
    w.text(_COL_AMOUNT, w.y + 8 * mm, format_eur(grand_total), size=14, bold=True, align="right")
    w.y += height + 4 * mm


def _draw_signatures(w: _Writer, state: FormState, settings: ClientSettings) -> None:
    if w.remaining() < SIGNATURE_BLOCK_HEIGHT:
        w.new_page()

    w.section("SIGNATURES", 40 * mm)
    w.y += 10 * mm

    box_width = (PAGE_WIDTH - 3 * MARGIN) / 2
    left_x = MARGIN
    right_x = MARGIN + box_width + MARGIN
    top = w.y

    w.rect(left_x, top, box_width, SIGNATURE_BOX_HEIGHT, stroke=_gray(180))
    w.text(left_x + 5 * mm, top - 3 * mm, "Signature du demandeur", bold=True)
    w.text(left_x + 5 * mm, top + SIGNATURE_BOX_HEIGHT + 6 * mm, state.full_name)

    img = signature_image(state.signature)
    if img is not None:
        w.pdf.drawImage(
            ImageReader(img),
            left_x + 5 * mm,
            w.flip(top + 5 * mm + 30 * mm),
            width=box_width - 10 * mm,
            height=30 * mm,
            preserveAspectRatio=True,
            anchor="c",
        )

    w.rect(right_x, top, box_width, SIGNATURE_BOX_HEIGHT, stroke=_gray(180))
    w.text(right_x + 5 * mm, top - 3 * mm, "Signature du président", bold=True)
    w.text(right_x + 5 * mm, top + SIGNATURE_BOX_HEIGHT + 6 * mm, settings.president_label)
    w.text(right_x + 5 * mm, top + 20 * mm, "(Signature à apposer)", size=8, color=_gray(120))

    w.y = top + SIGNATURE_BOX_HEIGHT + 8 * mm


def _draw_footer(w: _Writer, generated_at: dt.datetime, settings: ClientSettings) -> None:
    y = PAGE_HEIGHT - MARGIN
    w.text(MARGIN, y, f"Document généré le {format_datetime_fr(generated_at)}", size=8, color=_gray(120))
    w.text(PAGE_WIDTH - MARGIN, y, f"{settings.org_name} - Formulaire de remboursement de frais",
           size=8, color=_gray(120), align="right")


def compose(
    state: FormState,
    total_expenses: Decimal,
    kilometric_amount: Decimal,
    generated_at: Optional[dt.datetime] = None,
    settings: Optional[ClientSettings] = None,
) -> bytes:
    """
    Render the reimbursement document and return the PDF bytes.

    Output is byte-identical for identical inputs and ``generated_at``.

    Raises:
        DocumentCompositionError: if anything in the rendering fails.
    """
    settings = settings or ClientSettings()
    generated_at = generated_at or dt.datetime.now()
    buffer = io.BytesIO()

    try:
        pdf = canvas.Canvas(buffer, pagesize=A4, invariant=1)
        pdf.setTitle("Fiche de remboursement de frais")
        pdf.setAuthor(state.full_name or settings.org_name)
        pdf.setSubject(state.subject)
        pdf.setCreator(settings.org_name)

        w = _Writer(pdf)
        _draw_header(w, settings)
        _draw_personal_info(w, state)
        _draw_motivation(w, state)
        _draw_expenses(w, state, total_expenses)
        _draw_kilometric(w, state, kilometric_amount)
        _draw_grand_total(w, total_expenses + kilometric_amount)
        _draw_signatures(w, state, settings)
        _draw_footer(w, generated_at, settings)
        pdf.save()
    except Exception as exc:
        logger.error("Document composition failed: %s", exc, exc_info=True)
        raise DocumentCompositionError(f"Impossible de générer le document : {exc}") from exc

    logger.info("Composed reimbursement document (%d page(s), %d bytes)", w.pages, buffer.tell())
    return buffer.getvalue()


def expense_rows(state: FormState) -> Iterable[Tuple[str, Decimal, List[str]]]:
    """(nature, amount, attachment names) for every line shown in the table."""
    for line in valid_lines(state):
        yield line.nature, line_amount(line), [f.name for f in line.attachments]
