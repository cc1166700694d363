# backend/docmanager/services/extractor.py
import enum
import time
from pathlib import Path
from typing import Optional

from PIL import Image

from .ocr import OcrEngine, PdfRenderer
from ..exceptions import ExtractionError
from ..utils.logging import ocr_logger


class ContentKind(str, enum.Enum):
    IMAGE = "image"
    PDF = "pdf"


SUPPORTED_CONTENT_TYPES = {
    "application/pdf": ContentKind.PDF,
    "image/jpeg": ContentKind.IMAGE,
    "image/jpg": ContentKind.IMAGE,
    "image/png": ContentKind.IMAGE,
    "image/gif": ContentKind.IMAGE,
    "image/bmp": ContentKind.IMAGE,
    "image/tiff": ContentKind.IMAGE,
    "image/tif": ContentKind.IMAGE,
}

PAGE_SEPARATOR = "\n\n"


def resolve_content_kind(content_type: Optional[str]) -> Optional[ContentKind]:
    if not content_type:
        return None
    return SUPPORTED_CONTENT_TYPES.get(content_type.strip().lower())


class ContentExtractor:
    """Turns a stored image or PDF into text using an OCR engine"""

    def __init__(self, engine: OcrEngine, renderer: PdfRenderer, dpi: int = 300):
        self.engine = engine
        self.renderer = renderer
        self.dpi = dpi

    @staticmethod
    def is_supported(content_type: Optional[str]) -> bool:
        return resolve_content_kind(content_type) is not None

    def extract(self, path: Path, content_type: Optional[str]) -> Optional[str]:
        """Extract text from the file at `path`.

        Returns None when the content type is not OCR-capable or the file is
        missing. Raises ExtractionError when rendering or OCR fails; for PDFs
        a failure on any page discards the pages already recognized.
        """
        kind = resolve_content_kind(content_type)
        if kind is None:
            ocr_logger.info("OCR not supported for content type", extra={
                "content_type": content_type
            })
            return None

        path = Path(path)
        if not path.is_file():
            ocr_logger.warning("File not found for OCR extraction", extra={
                "file_path": str(path)
            })
            return None

        start_time = time.perf_counter()
        ocr_logger.info("Starting OCR extraction", extra={
            "file_path": str(path),
            "content_kind": kind.value
        })

        try:
            if kind is ContentKind.PDF:
                text = self._extract_pdf(path)
            else:
                text = self._extract_image(path)
        except ExtractionError:
            raise
        except Exception as e:
            ocr_logger.error("OCR extraction failed", extra={
                "file_path": str(path),
                "error_type": type(e).__name__,
                "error_details": str(e)
            }, exc_info=True)
            raise ExtractionError(f"Failed to extract text from {path.name}: {e}") from e

        ocr_logger.info("OCR extraction completed", extra={
            "file_path": str(path),
            "text_length": len(text),
            "processing_time_ms": round((time.perf_counter() - start_time) * 1000, 2)
        })
        return text

    def _extract_image(self, path: Path) -> str:
        with Image.open(path) as img:
            if img.mode != 'RGB':
                img = img.convert('RGB')
            return self.engine.recognize(img)

    def _extract_pdf(self, path: Path) -> str:
        page_texts = []
        with self.renderer.open(path) as pages:
            ocr_logger.debug("Rendering PDF pages", extra={
                "page_count": pages.page_count,
                "dpi": self.dpi
            })
            for index in range(pages.page_count):
                image = pages.render_page(index, self.dpi)
                page_texts.append(self.engine.recognize(image))
        return "".join(text + PAGE_SEPARATOR for text in page_texts)
