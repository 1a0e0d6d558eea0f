"""
OCR Result Data Classes.

Standardized engine output: every engine, whatever its native format,
returns an OCRResult made of OCRBlocks with pixel bounding boxes and
confidences normalized to [0, 1].

Classes:
    BoundingBox: Axis-aligned box in pixels
    OCRBlock: Recognized text fragment with its box
    OCRResult: Complete output of one engine for one image

Author: ML Engineering Team
"""

from dataclasses import dataclass, field
from typing import List, Dict, Any, Tuple
import json

from ..utils.helpers import clamp, rtl_ratio


@dataclass(frozen=True)
class BoundingBox:
    """
    Axis-aligned bounding box.

    Attributes:
        x: Left coordinate in pixels
        y: Top coordinate in pixels
        width: Box width in pixels
        height: Box height in pixels
    """
    x: float
    y: float
    width: float
    height: float

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    def matches(self, other: 'BoundingBox', tolerance: float) -> bool:
        """True if both boxes sit at the same position within ``tolerance`` pixels."""
        return abs(self.x - other.x) <= tolerance and abs(self.y - other.y) <= tolerance

    @classmethod
    def from_corners(cls, x1: float, y1: float, x2: float, y2: float) -> 'BoundingBox':
        return cls(x1, y1, x2 - x1, y2 - y1)

    @classmethod
    def from_points(cls, points) -> 'BoundingBox':
        """Enclosing box of a polygon given as [(x, y), ...]."""
        xs = [float(p[0]) for p in points]
        ys = [float(p[1]) for p in points]
        return cls.from_corners(min(xs), min(ys), max(xs), max(ys))

    def to_dict(self) -> Dict[str, float]:
        return {'x': self.x, 'y': self.y, 'width': self.width, 'height': self.height}


@dataclass
class OCRBlock:
    """
    A recognized text fragment, typically one line.

    Attributes:
        text: Recognized text
        confidence: Engine confidence in [0, 1]
        bbox: Position of the fragment
        is_rtl: Whether the text is predominantly right-to-left
        language: Language or script code ('en', 'he', 'ar', ...)
    """
    text: str
    confidence: float
    bbox: BoundingBox
    is_rtl: bool = False
    language: str = "en"

    def __post_init__(self):
        self.confidence = clamp(float(self.confidence))

    @classmethod
    def from_text(cls, text: str, confidence: float, bbox: BoundingBox) -> 'OCRBlock':
        """Build a block, detecting direction and script from the text itself."""
        ratio = rtl_ratio(text)
        is_rtl = ratio > 0.5
        language = guess_language(text) if is_rtl else "en"
        return cls(text=text, confidence=confidence, bbox=bbox, is_rtl=is_rtl, language=language)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'text': self.text,
            'confidence': self.confidence,
            'bbox': self.bbox.to_dict(),
            'is_rtl': self.is_rtl,
            'language': self.language
        }


def guess_language(text: str) -> str:
    """Coarse script-based language guess: 'he', 'ar' or 'en'."""
    hebrew = sum(1 for ch in text if '\u0590' <= ch <= '\u05FF')
    arabic = sum(1 for ch in text if '\u0600' <= ch <= '\u06FF')
    if hebrew == 0 and arabic == 0:
        return "en"
    return "he" if hebrew >= arabic else "ar"


@dataclass
class OCRResult:
    """
    Complete OCR output of one engine for one image.

    Attributes:
        text: Full recognized text, lines separated by newlines
        confidence: Overall confidence in [0, 1]
        blocks: Recognized fragments with positions
        languages: Languages detected in the text
        processing_time_ms: Engine wall time in milliseconds
        engine_name: Name of the producing engine

    Example:
        >>> result = engine.process_image("receipt.png")
        >>> print(f"{result.engine_name}: {result.confidence:.2f}")
    """
    text: str
    confidence: float
    blocks: List[OCRBlock] = field(default_factory=list)
    languages: List[str] = field(default_factory=list)
    processing_time_ms: float = 0.0
    engine_name: str = "unknown"

    def __post_init__(self):
        self.confidence = clamp(float(self.confidence))

    @classmethod
    def from_blocks(
        cls,
        blocks: List[OCRBlock],
        engine_name: str,
        processing_time_ms: float = 0.0
    ) -> 'OCRResult':
        """
        Assemble a result from blocks in reading order.

        Overall confidence is the mean block confidence; languages are the
        distinct block languages in order of first appearance.
        """
        text = '\n'.join(b.text for b in blocks if b.text.strip())
        confidence = sum(b.confidence for b in blocks) / len(blocks) if blocks else 0.0
        languages = list(dict.fromkeys(b.language for b in blocks))
        return cls(
            text=text,
            confidence=confidence,
            blocks=list(blocks),
            languages=languages,
            processing_time_ms=processing_time_ms,
            engine_name=engine_name
        )

    @property
    def average_block_confidence(self) -> float:
        """Mean block confidence, or the overall confidence when there are no blocks."""
        if not self.blocks:
            return self.confidence
        return sum(b.confidence for b in self.blocks) / len(self.blocks)

    @property
    def has_rtl(self) -> bool:
        return any(b.is_rtl for b in self.blocks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'text': self.text,
            'confidence': self.confidence,
            'blocks': [b.to_dict() for b in self.blocks],
            'languages': list(self.languages),
            'processing_time_ms': self.processing_time_ms,
            'engine_name': self.engine_name
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)
