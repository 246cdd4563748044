import io
import os
import tempfile

import pytest
from PIL import Image

# the relay app configures its log files at import time
os.environ.setdefault("RELAY_LOG_DIR", tempfile.mkdtemp(prefix="relay-logs-"))

from expense_form.state import DrawnSignature, ExpenseLine, FileRef, FormState, new_form_state  # noqa: E402


def png_bytes(size=(120, 40), color=(10, 10, 80, 255)) -> bytes:
    img = Image.new("RGBA", size, (255, 255, 255, 0))
    for x in range(10, size[0] - 10):
        img.putpixel((x, size[1] // 2), color)
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def signature_png() -> bytes:
    return png_bytes()


@pytest.fixture
def example_state(signature_png) -> FormState:
    """Jean Dupont's request: one fuel expense and 100 km."""
    import datetime as dt

    state = new_form_state(today=dt.date(2024, 5, 2))
    state.first_name = "Jean"
    state.last_name = "Dupont"
    state.place = "Bordeaux"
    state.date = "2024-05-01"
    state.role = "Bénévole"
    state.subject = "Déplacement compétition"
    state.motivation = "Frais de trajet"
    state.payment_method = "Virement"
    state.expenses = [ExpenseLine(nature="Carburant", amount="45.50")]
    state.kilometers = "100"
    state.signature = DrawnSignature(png=signature_png)
    return state


@pytest.fixture
def receipt() -> FileRef:
    return FileRef("ticket-essence.pdf", b"%PDF-1.4 receipt", "application/pdf")
