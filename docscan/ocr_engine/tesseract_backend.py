"""
Tesseract OCR Backend.

Runs Tesseract through pytesseract and groups its word-level output into
line blocks. Hebrew and Arabic are recognized when the corresponding
traineddata files are installed.

Requirements:
    - Tesseract OCR installed on the system
    - pytesseract Python package

Author: ML Engineering Team
"""

import time
from typing import List, Dict, Optional, Tuple

import pytesseract
from PIL import Image, UnidentifiedImageError

from config import get_config
from ..utils.logger import get_logger
from ..utils.exceptions import EngineInitError, OCRProcessingError
from .engine import OCREngine
from .ocr_result import OCRResult, OCRBlock, BoundingBox

# Initialize module logger
logger = get_logger(__name__)

# ISO 639-1 to Tesseract language codes
LANGUAGE_MAP = {
    'en': 'eng',
    'he': 'heb',
    'ar': 'ara',
    'ru': 'rus',
    'zh': 'chi_sim',
    'fr': 'fra',
    'de': 'deu',
    'es': 'spa',
}


class TesseractEngine(OCREngine):
    """
    Tesseract OCR engine.

    Attributes:
        languages: Requested ISO 639-1 languages
        psm: Page Segmentation Mode (1-13)
        oem: OCR Engine Mode (0-3)

    Example:
        >>> engine = TesseractEngine(languages=["en", "he"])
        >>> engine.initialize()
        >>> result = engine.process_image("receipt.png")
    """

    name = "tesseract"

    def __init__(
        self,
        languages: Optional[List[str]] = None,
        psm: Optional[int] = None,
        oem: Optional[int] = None,
        tesseract_cmd: Optional[str] = None
    ) -> None:
        self.languages = languages or get_config("ocr.languages", ["en"])
        self.psm = psm if psm is not None else get_config("ocr.tesseract.psm", 3)
        self.oem = oem if oem is not None else get_config("ocr.tesseract.oem", 3)
        self.tesseract_cmd = tesseract_cmd or get_config("ocr.tesseract.path")
        self._lang_string = "eng"
        self._initialized = False

    def initialize(self) -> None:
        """
        Check the Tesseract binary and resolve installed languages.

        Raises:
            EngineInitError: If Tesseract is not installed or not in PATH.
        """
        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd

        try:
            version = pytesseract.get_tesseract_version()
            installed = set(pytesseract.get_languages(config=''))
        except (pytesseract.TesseractNotFoundError, OSError, RuntimeError) as e:
            raise EngineInitError(self.name, f"Tesseract not installed or not in PATH: {e}")

        wanted = [LANGUAGE_MAP[code] for code in self.languages if code in LANGUAGE_MAP]
        usable = [lang for lang in wanted if lang in installed]
        missing = sorted(set(wanted) - set(usable))
        if missing:
            logger.warning(f"Tesseract language data not installed: {missing}")
        if not usable:
            raise EngineInitError(self.name, f"none of the languages {wanted} are installed")

        self._lang_string = '+'.join(usable)
        self._initialized = True
        logger.debug(f"Tesseract {version} ready (lang={self._lang_string})")

    def is_initialized(self) -> bool:
        return self._initialized

    def supports_language(self, code: str) -> bool:
        tess_code = LANGUAGE_MAP.get(code.lower())
        return tess_code is not None and tess_code in self._lang_string.split('+')

    def _build_config(self) -> str:
        return f"--psm {self.psm} --oem {self.oem}"

    def process_image(self, image_path: str) -> OCRResult:
        """
        Recognize text and group words into line blocks.

        Raises:
            OCRProcessingError: If the image cannot be read or Tesseract fails.
        """
        start_time = time.time()

        try:
            with Image.open(image_path) as image:
                if image.mode != 'RGB':
                    image = image.convert('RGB')
                data = pytesseract.image_to_data(
                    image,
                    lang=self._lang_string,
                    config=self._build_config(),
                    output_type=pytesseract.Output.DICT
                )
        except (OSError, UnidentifiedImageError, pytesseract.TesseractError, RuntimeError) as e:
            raise OCRProcessingError(self.name, image_path, str(e))

        blocks = self._group_into_blocks(data)
        elapsed_ms = (time.time() - start_time) * 1000
        result = OCRResult.from_blocks(blocks, self.name, elapsed_ms)

        logger.debug(
            f"Tesseract: {len(blocks)} lines, confidence {result.confidence:.2f} "
            f"({elapsed_ms:.0f}ms)"
        )
        return result

    def _group_into_blocks(self, data: Dict[str, List]) -> List[OCRBlock]:
        """
        Group image_to_data words into one block per text line.

        Words with negative confidence (layout elements) or empty boxes are
        skipped. Block confidence is the mean word confidence scaled to [0, 1].
        """
        lines: Dict[Tuple[int, int, int], List[int]] = {}

        for i, text in enumerate(data['text']):
            if not text or not text.strip():
                continue
            if data['width'][i] <= 0 or data['height'][i] <= 0:
                continue
            if float(data['conf'][i]) < 0:
                continue
            key = (data['block_num'][i], data['par_num'][i], data['line_num'][i])
            lines.setdefault(key, []).append(i)

        blocks = []
        for key in sorted(lines):
            indices = sorted(lines[key], key=lambda i: data['left'][i])
            text = ' '.join(data['text'][i].strip() for i in indices)
            confidence = sum(float(data['conf'][i]) for i in indices) / len(indices) / 100.0
            bbox = BoundingBox.from_corners(
                min(data['left'][i] for i in indices),
                min(data['top'][i] for i in indices),
                max(data['left'][i] + data['width'][i] for i in indices),
                max(data['top'][i] + data['height'][i] for i in indices)
            )
            blocks.append(OCRBlock.from_text(text, confidence, bbox))

        return blocks
