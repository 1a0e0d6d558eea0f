"""
OCR Engine Module.

Pluggable OCR engines, their registry and multi-engine fusion.

Classes:
    OCREngine: Interface implemented by every backend
    TesseractEngine: Tesseract backend via pytesseract
    EasyOCREngine: Optional EasyOCR backend
    EngineRegistry: Parallel initialization and availability tracking
    OCRFusion: Per-asset fan-out and result fusion
    OCRResult, OCRBlock, BoundingBox: Result data classes
"""

from .ocr_result import OCRResult, OCRBlock, BoundingBox
from .engine import OCREngine, EngineRegistry, create_engine
from .fusion import OCRFusion, voting_score
from .tesseract_backend import TesseractEngine
from .easyocr_backend import EasyOCREngine

__all__ = [
    'OCRResult',
    'OCRBlock',
    'BoundingBox',
    'OCREngine',
    'EngineRegistry',
    'create_engine',
    'OCRFusion',
    'TesseractEngine',
    'EasyOCREngine',
    'voting_score'
]
