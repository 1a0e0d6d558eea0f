"""
OCR Engine Interface and Registry.

Every OCR backend implements the OCREngine interface. The EngineRegistry
owns the configured engines, initializes them in parallel at startup and
exposes the subset that initialized successfully. An engine that fails to
initialize is excluded; the scanner keeps working with the others.

Usage:
    from docscan.ocr_engine import EngineRegistry

    registry = EngineRegistry.from_config()
    registry.initialize_all()
    engines = registry.available()

Author: ML Engineering Team
"""

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Any

from config import get_config
from ..utils.logger import get_logger
from ..utils.exceptions import EngineInitError, ConfigurationError
from .ocr_result import OCRResult

# Initialize module logger
logger = get_logger(__name__)


class OCREngine(ABC):
    """
    Interface implemented by every OCR backend.

    Engines raise EngineInitError from initialize() and OCRProcessingError
    from process_image(); they never return partial garbage on failure.
    """

    #: Registry key, also reported as OCRResult.engine_name
    name: str = "base"

    @abstractmethod
    def initialize(self) -> None:
        """
        Prepare the engine for use.

        Raises:
            EngineInitError: If the backend is missing or misconfigured.
        """

    @abstractmethod
    def process_image(self, image_path: str) -> OCRResult:
        """
        Recognize text in a local image file.

        Args:
            image_path: Path of a readable image.

        Returns:
            OCRResult with confidences normalized to [0, 1].

        Raises:
            OCRProcessingError: If recognition fails.
        """

    @abstractmethod
    def is_initialized(self) -> bool:
        """Whether initialize() completed successfully."""

    @abstractmethod
    def supports_language(self, code: str) -> bool:
        """Whether the engine can read the given ISO 639-1 language."""

    def get_memory_usage(self) -> Optional[int]:
        """Approximate resident memory of the engine in bytes, if known."""
        return None


def create_engine(name: str) -> OCREngine:
    """
    Instantiate a built-in engine by name.

    Raises:
        ConfigurationError: For unknown engine names.
    """
    if name == "tesseract":
        from .tesseract_backend import TesseractEngine
        return TesseractEngine()
    if name == "easyocr":
        from .easyocr_backend import EasyOCREngine
        return EasyOCREngine()
    raise ConfigurationError(f"Unknown OCR engine '{name}'", {"engine": name})


class EngineRegistry:
    """
    Holds the configured OCR engines and their initialization state.

    Attributes:
        engines: Registered engines by name, in registration order
        failures: Initialization error per excluded engine

    Example:
        >>> registry = EngineRegistry([TesseractEngine(), EasyOCREngine()])
        >>> registry.initialize_all()
        >>> [e.name for e in registry.available()]
        ['tesseract']
    """

    def __init__(self, engines: Optional[List[OCREngine]] = None) -> None:
        self.engines: Dict[str, OCREngine] = {}
        self.failures: Dict[str, str] = {}
        for engine in engines or []:
            self.register(engine)

    @classmethod
    def from_config(cls, names: Optional[List[str]] = None) -> 'EngineRegistry':
        """Build a registry from the ``ocr.engines`` list."""
        names = names or get_config("ocr.engines", ["tesseract"])
        return cls([create_engine(name) for name in names])

    def register(self, engine: OCREngine) -> None:
        if engine.name in self.engines:
            raise ConfigurationError(f"OCR engine '{engine.name}' registered twice")
        self.engines[engine.name] = engine

    def initialize_all(self) -> List[str]:
        """
        Initialize every registered engine in parallel.

        Failures are logged and recorded in ``failures``; they never
        propagate.

        Returns:
            Names of the engines that are available afterwards.
        """
        pending = [e for e in self.engines.values() if not e.is_initialized()]
        if pending:
            with ThreadPoolExecutor(max_workers=len(pending)) as executor:
                futures = {executor.submit(engine.initialize): engine for engine in pending}
                for future, engine in futures.items():
                    try:
                        future.result()
                        self.failures.pop(engine.name, None)
                        logger.info(f"OCR engine '{engine.name}' initialized")
                    except EngineInitError as e:
                        self.failures[engine.name] = str(e)
                        logger.warning(f"Excluding OCR engine '{engine.name}': {e}")
                    except Exception as e:
                        self.failures[engine.name] = repr(e)
                        logger.warning(
                            f"Excluding OCR engine '{engine.name}' after unexpected error: {e!r}"
                        )

        available = [e.name for e in self.available()]
        logger.info(f"Available OCR engines: {available or 'none'}")
        return available

    def available(self) -> List[OCREngine]:
        """Engines that initialized successfully, in registration order."""
        return [e for e in self.engines.values() if e.is_initialized()]

    def get(self, name: str) -> Optional[OCREngine]:
        return self.engines.get(name)

    def get_memory_usage(self) -> Dict[str, Any]:
        """
        Report engine memory usage.

        Returns:
            Dictionary with 'total' bytes and 'by_engine' bytes per
            available engine that reports its usage.
        """
        by_engine = {}
        for engine in self.available():
            usage = engine.get_memory_usage()
            if usage is not None:
                by_engine[engine.name] = usage
        return {'total': sum(by_engine.values()), 'by_engine': by_engine}
