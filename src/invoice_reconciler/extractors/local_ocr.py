"""
Local OCR capability (Tesseract + Poppler).

Requirements:
    - Tesseract OCR installed on the system (with the configured languages)
    - Poppler's pdftoppm for rasterization

Both are optional: when either is missing ``is_available()`` is False and
the local OCR tier is skipped.
"""

import logging
import shutil
from pathlib import Path
from typing import Optional

import pytesseract
from pdf2image import convert_from_bytes
from PIL import Image

logger = logging.getLogger(__name__)


class TesseractOCR:
    """
    Rasterize PDF pages and recognize their text locally.

    Attributes:
        languages: Tesseract language string (e.g. "eng+fra")
        dpi: Rasterization resolution
        timeout: Per-call timeout in seconds for both Poppler and Tesseract
    """

    def __init__(self, languages: str = "eng+fra", dpi: int = 300, timeout: int = 15):
        self.languages = languages
        self.dpi = dpi
        self.timeout = timeout
        self._available: Optional[bool] = None

    def is_available(self) -> bool:
        """Detect Tesseract and pdftoppm once; absence is not an error."""
        if self._available is None:
            self._available = self._detect()
        return self._available

    def _detect(self) -> bool:
        try:
            version = pytesseract.get_tesseract_version()
        except (pytesseract.TesseractNotFoundError, OSError) as e:
            logger.info(f"Local OCR disabled, tesseract not found: {e}")
            return False
        if shutil.which("pdftoppm") is None:
            logger.info("Local OCR disabled, pdftoppm (poppler) not found")
            return False
        logger.debug(f"Tesseract version: {version}")
        return True

    def rasterize(self, pdf_bytes: bytes, output_folder: Path) -> list[Image.Image]:
        """
        Render every page to a PNG under ``output_folder``.

        The returned images are loaded in memory and hold no open file, so
        the caller can remove ``output_folder`` (which it owns) right away.
        """
        paths = convert_from_bytes(
            pdf_bytes,
            dpi=self.dpi,
            output_folder=str(output_folder),
            fmt="png",
            paths_only=True,
            timeout=self.timeout,
        )
        images = []
        for path in paths:
            with Image.open(path) as page:
                images.append(page.convert("RGB"))
        return images

    def recognize_text(self, image: Image.Image, languages: Optional[str] = None) -> str:
        """Run Tesseract on one page image."""
        text = pytesseract.image_to_string(
            image,
            lang=languages or self.languages,
            timeout=self.timeout,
        )
        return text.strip()
