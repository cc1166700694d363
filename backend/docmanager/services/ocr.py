# backend/docmanager/services/ocr.py
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import ContextManager, Iterator, Optional, Protocol

import fitz  # PyMuPDF
import pytesseract
from PIL import Image

from ..config import Settings
from ..exceptions import ExtractionError
from ..utils.logging import ocr_logger


class OcrEngine(Protocol):
    def recognize(self, image: Image.Image) -> str:
        ...


class PdfPages(Protocol):
    page_count: int

    def render_page(self, index: int, dpi: int) -> Image.Image:
        ...


class PdfRenderer(Protocol):
    def open(self, path: Path) -> ContextManager[PdfPages]:
        ...


@dataclass(frozen=True)
class OcrEngineConfig:
    tesseract_cmd: Optional[str] = None
    tessdata_path: Optional[Path] = None
    language: str = "eng"
    page_seg_mode: int = 1

    @classmethod
    def from_settings(cls, settings: Settings) -> "OcrEngineConfig":
        return cls(
            tesseract_cmd=settings.TESSERACT_CMD,
            tessdata_path=settings.TESSDATA_PATH,
            language=settings.OCR_LANGUAGE,
            page_seg_mode=settings.OCR_PAGE_SEG_MODE,
        )

    def tesseract_args(self) -> str:
        args = f"--psm {self.page_seg_mode}"
        if self.tessdata_path:
            args += f' --tessdata-dir "{self.tessdata_path}"'
        return args


class TesseractEngine:
    """Runs Tesseract over a single raster image"""

    def __init__(self, config: OcrEngineConfig):
        self.config = config
        if config.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = config.tesseract_cmd
        ocr_logger.info("Tesseract engine configured", extra={
            "language": config.language,
            "page_seg_mode": config.page_seg_mode,
            "tessdata_path": str(config.tessdata_path) if config.tessdata_path else None
        })

    def recognize(self, image: Image.Image) -> str:
        with ocr_logger.timed("Recognized image", extra={"image_size": image.size}, level=logging.DEBUG) as timing:
            try:
                text = pytesseract.image_to_string(
                    image,
                    lang=self.config.language,
                    config=self.config.tesseract_args()
                )
            except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, RuntimeError) as e:
                ocr_logger.error("Tesseract recognition failed", extra={
                    "error_type": type(e).__name__,
                    "error_details": str(e),
                    "image_size": image.size
                })
                raise ExtractionError(f"OCR engine failed: {e}") from e
            timing["text_length"] = len(text)
        return text


class _FitzPages:
    def __init__(self, document: "fitz.Document"):
        self._document = document

    @property
    def page_count(self) -> int:
        return self._document.page_count

    def render_page(self, index: int, dpi: int) -> Image.Image:
        page = self._document.load_page(index)
        pix = page.get_pixmap(dpi=dpi, colorspace=fitz.csRGB, alpha=False)
        return Image.frombytes("RGB", (pix.width, pix.height), pix.samples)


class PyMuPdfRenderer:
    """Renders PDF pages to RGB images with PyMuPDF"""

    @contextmanager
    def open(self, path: Path) -> Iterator[_FitzPages]:
        try:
            document = fitz.open(path)
        except Exception as e:
            raise ExtractionError(f"Could not open PDF {Path(path).name}: {e}") from e
        try:
            yield _FitzPages(document)
        finally:
            document.close()

    def page_count(self, path: Path) -> int:
        with self.open(path) as pages:
            return pages.page_count

    def render_page(self, path: Path, index: int, dpi: int) -> Image.Image:
        with self.open(path) as pages:
            return pages.render_page(index, dpi)
