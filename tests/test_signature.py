import io

import numpy as np
import pytest
from PIL import Image

from expense_form.signature import canvas_signature_png, render_typed_signature, signature_image
from expense_form.state import DrawnSignature, FileRef, NoSignature, UploadedSignature


def blank_pad(height: int = 150, width: int = 600, alpha: int = 255) -> np.ndarray:
    pad = np.full((height, width, 4), 255, dtype=np.uint8)
    pad[:, :, 3] = alpha
    return pad


@pytest.mark.parametrize("image_data", [None, blank_pad(), blank_pad(alpha=0), np.zeros((0, 0, 4), dtype=np.uint8)])
def test_untouched_pad_gives_no_signature(image_data):
    assert canvas_signature_png(image_data) == b""


def test_wrong_shape_gives_no_signature():
    assert canvas_signature_png(np.zeros((10, 10), dtype=np.uint8)) == b""


def test_drawn_strokes_are_cropped_to_the_ink():
    pad = blank_pad()
    pad[70:73, 100:300] = (20, 20, 60, 255)

    png = canvas_signature_png(pad, padding=10)

    img = Image.open(io.BytesIO(png))
    assert img.format == "PNG"
    assert img.size == (220, 23)
    assert img.convert("RGB").getpixel((110, 11)) == (20, 20, 60)
    assert img.convert("RGB").getpixel((0, 0)) == (255, 255, 255)


def test_strokes_on_a_transparent_pad_land_on_white():
    pad = blank_pad(alpha=0)
    pad[10:12, 5:50] = (0, 0, 0, 255)

    img = Image.open(io.BytesIO(canvas_signature_png(pad, padding=0)))

    assert img.size == (45, 2)
    assert img.mode == "RGB"


def test_canvas_signature_decodes_for_the_document():
    pad = blank_pad()
    pad[40:45, 200:400] = (20, 20, 60, 255)

    img = signature_image(DrawnSignature(canvas_signature_png(pad)))

    assert img is not None
    assert img.mode == "RGB"


def test_typed_signature_renders_a_png():
    img = Image.open(io.BytesIO(render_typed_signature("Jean Dupont")))
    assert img.format == "PNG"
    assert img.size == (600, 150)
    assert img.getbbox() is not None


def test_blank_typed_signature_is_empty():
    assert render_typed_signature("   ") == b""


def test_signature_image_skips_pdf_uploads_and_garbage():
    assert signature_image(NoSignature()) is None
    assert signature_image(UploadedSignature(FileRef("sig.pdf", b"%PDF-1.4", "application/pdf"))) is None
    assert signature_image(DrawnSignature(b"not a png")) is None
