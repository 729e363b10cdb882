import numpy as np
import pytest
import pytesseract

from terminal_ocr import CapturedImage, Variant


def variant_for_config(config):
    """Tell which variant a Tesseract config string belongs to"""
    if "tessedit_char_whitelist" in config:
        return Variant.STANDARD
    if "textord_min_linesize" in config:
        return Variant.ENHANCED
    if "--psm 4" in config:
        return Variant.BINARY
    return Variant.CONTRAST


@pytest.fixture
def dark_image():
    # Light "text" band on a dark terminal background
    pixels = np.full((30, 80, 3), 20, dtype=np.uint8)
    pixels[10:20, 10:70] = 220
    return CapturedImage(pixels)


@pytest.fixture
def light_image():
    pixels = np.full((30, 80, 3), 235, dtype=np.uint8)
    pixels[10:20, 10:70] = 30
    return CapturedImage(pixels)


@pytest.fixture
def fake_tesseract(monkeypatch):
    """Replace pytesseract.image_to_string with canned output per variant.

    Variants missing from the mapping produce zero-byte output. Exceptions in
    the mapping are raised. Returns the list of (variant, kwargs) calls.
    """

    def install(outputs):
        calls = []

        def image_to_string(image, lang=None, config="", **kwargs):
            variant = variant_for_config(config)
            calls.append((variant, kwargs))
            output = outputs.get(variant, "")
            if isinstance(output, Exception):
                raise output
            return output

        monkeypatch.setattr(pytesseract, "image_to_string", image_to_string)
        return calls

    return install
