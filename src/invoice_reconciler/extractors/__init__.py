"""
Invoice extraction tiers.

Provides:
- TextParser: pure text → invoice fields heuristics
- Filename, PDF text layer, local OCR and remote OCR tiers
- ExtractionPipeline: ordered fold over the tiers with early exit

Tiers are pluggable and testable in isolation.
"""

from .base import BaseExtractor, ExtractionContext, ExtractionResult
from .filename_extractor import FilenameExtractor
from .local_ocr import TesseractOCR
from .local_ocr_extractor import LocalOCRExtractor
from .pipeline import ExtractionPipeline
from .remote_ocr_extractor import RemoteOCRExtractor
from .text_layer_extractor import TextLayerExtractor
from .text_parser import TextParser

__all__ = [
    "BaseExtractor",
    "ExtractionContext",
    "ExtractionPipeline",
    "ExtractionResult",
    "FilenameExtractor",
    "LocalOCRExtractor",
    "RemoteOCRExtractor",
    "TesseractOCR",
    "TextLayerExtractor",
    "TextParser",
]
