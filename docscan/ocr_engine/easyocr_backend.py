"""
EasyOCR Backend.

Optional engine; install with ``pip install docscan[easyocr]``. The easyocr
package is imported when the engine is initialized, so a missing install
only excludes this engine.

Author: ML Engineering Team
"""

import time
from typing import List, Optional

from config import get_config
from ..utils.logger import get_logger
from ..utils.exceptions import EngineInitError, OCRProcessingError
from .engine import OCREngine
from .ocr_result import OCRResult, OCRBlock, BoundingBox

# Initialize module logger
logger = get_logger(__name__)

# Rough resident size of the detection and recognition models
MODEL_MEMORY_BYTES = 120 * 1024 * 1024


class EasyOCREngine(OCREngine):
    """EasyOCR engine returning one block per detected text region."""

    name = "easyocr"

    def __init__(self, languages: Optional[List[str]] = None, gpu: Optional[bool] = None) -> None:
        self.languages = languages or get_config("ocr.languages", ["en"])
        self.gpu = gpu if gpu is not None else get_config("ocr.easyocr.gpu", False)
        self._reader = None

    def initialize(self) -> None:
        """
        Load the EasyOCR reader for the configured languages.

        Raises:
            EngineInitError: If easyocr is not installed or the models fail to load.
        """
        try:
            import easyocr
        except ImportError:
            raise EngineInitError(self.name, "easyocr not installed (pip install easyocr)")

        try:
            self._reader = easyocr.Reader(list(self.languages), gpu=self.gpu, verbose=False)
        except (ValueError, OSError, RuntimeError) as e:
            raise EngineInitError(self.name, str(e))

        logger.debug(f"EasyOCR reader loaded for {self.languages}")

    def is_initialized(self) -> bool:
        return self._reader is not None

    def supports_language(self, code: str) -> bool:
        return code.lower() in self.languages

    def get_memory_usage(self) -> Optional[int]:
        return MODEL_MEMORY_BYTES if self._reader is not None else 0

    def process_image(self, image_path: str) -> OCRResult:
        """
        Recognize text regions.

        Raises:
            OCRProcessingError: If EasyOCR fails on the image.
        """
        start_time = time.time()

        try:
            detections = self._reader.readtext(image_path)
        except (OSError, ValueError, RuntimeError, AttributeError) as e:
            raise OCRProcessingError(self.name, image_path, str(e))

        blocks = []
        for points, text, conf in detections:
            if not text or not text.strip():
                continue
            blocks.append(OCRBlock.from_text(text.strip(), float(conf), BoundingBox.from_points(points)))

        # EasyOCR returns regions roughly top to bottom; enforce reading order
        blocks.sort(key=lambda b: (round(b.bbox.y / 10), b.bbox.x))
        elapsed_ms = (time.time() - start_time) * 1000
        return OCRResult.from_blocks(blocks, self.name, elapsed_ms)
