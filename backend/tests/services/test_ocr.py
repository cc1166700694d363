# tests/services/test_ocr.py
from pathlib import Path

import fitz
import pytest
import pytesseract
from PIL import Image

from docmanager.config import settings
from docmanager.exceptions import ExtractionError
from docmanager.services.ocr import OcrEngineConfig, PyMuPdfRenderer, TesseractEngine


@pytest.fixture
def sample_pdf(temp_storage_dir):
    """Two page PDF written with PyMuPDF"""
    path = temp_storage_dir / "two_pages.pdf"
    document = fitz.open()
    for number in (1, 2):
        page = document.new_page(width=200, height=100)
        page.insert_text((20, 50), f"Page {number}")
    document.save(str(path))
    document.close()
    return path


@pytest.fixture
def captured_tesseract(monkeypatch):
    calls = []

    def fake_image_to_string(image, lang=None, config=""):
        calls.append({"image": image, "lang": lang, "config": config})
        return "recognized"

    monkeypatch.setattr(pytesseract, "image_to_string", fake_image_to_string)
    return calls


def test_tesseract_args_default():
    assert OcrEngineConfig().tesseract_args() == "--psm 1"


def test_tesseract_args_with_tessdata():
    config = OcrEngineConfig(tessdata_path=Path("/opt/tessdata"), page_seg_mode=6)
    assert config.tesseract_args() == '--psm 6 --tessdata-dir "/opt/tessdata"'


def test_config_from_settings(monkeypatch):
    monkeypatch.setattr(settings, "OCR_LANGUAGE", "tur+eng")
    monkeypatch.setattr(settings, "OCR_PAGE_SEG_MODE", 3)

    config = OcrEngineConfig.from_settings(settings)

    assert config.language == "tur+eng"
    assert config.page_seg_mode == 3


def test_engine_passes_language_and_args(captured_tesseract):
    engine = TesseractEngine(OcrEngineConfig(language="deu", page_seg_mode=4))
    image = Image.new("RGB", (10, 10), "white")

    assert engine.recognize(image) == "recognized"
    assert captured_tesseract == [{"image": image, "lang": "deu", "config": "--psm 4"}]


def test_engine_sets_tesseract_command(monkeypatch):
    monkeypatch.setattr(pytesseract.pytesseract, "tesseract_cmd", "tesseract")

    TesseractEngine(OcrEngineConfig(tesseract_cmd="/usr/local/bin/tesseract"))

    assert pytesseract.pytesseract.tesseract_cmd == "/usr/local/bin/tesseract"


@pytest.mark.parametrize("error", [
    pytesseract.TesseractError(1, "bad language"),
    pytesseract.TesseractNotFoundError(),
    RuntimeError("timeout"),
])
def test_engine_wraps_tesseract_errors(monkeypatch, error):
    def failing_image_to_string(*args, **kwargs):
        raise error

    monkeypatch.setattr(pytesseract, "image_to_string", failing_image_to_string)
    engine = TesseractEngine(OcrEngineConfig())

    with pytest.raises(ExtractionError):
        engine.recognize(Image.new("RGB", (10, 10), "white"))


def test_renderer_page_count(sample_pdf):
    assert PyMuPdfRenderer().page_count(sample_pdf) == 2


def test_renderer_renders_rgb_at_dpi(sample_pdf):
    renderer = PyMuPdfRenderer()

    with renderer.open(sample_pdf) as pages:
        low = pages.render_page(0, 72)
        high = pages.render_page(1, 144)

    assert low.mode == "RGB"
    assert low.size == (200, 100)
    assert high.size == (400, 200)


def test_renderer_single_page(sample_pdf):
    image = PyMuPdfRenderer().render_page(sample_pdf, 1, 72)
    assert image.size == (200, 100)


def test_renderer_rejects_corrupt_pdf(temp_storage_dir):
    path = temp_storage_dir / "corrupt.pdf"
    path.write_bytes(b"this is not a pdf")

    with pytest.raises(ExtractionError):
        with PyMuPdfRenderer().open(path):
            pass
