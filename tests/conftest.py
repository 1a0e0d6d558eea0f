import io
import threading
from typing import Callable, Dict, List, Optional

import pytest
from PIL import Image

from config import ConfigurationManager
from docscan.gallery.asset import Asset, AssetQuery, AssetSource
from docscan.input_handler.temp_files import TempFileRegistry
from docscan.ocr_engine.engine import OCREngine
from docscan.ocr_engine.ocr_result import BoundingBox, OCRBlock, OCRResult
from docscan.output_handler.database_handler import DocumentStore
from docscan.scanner.pipeline import AssetOutcome, OutcomeStatus
from docscan.scanner.progress import ProgressChannel
from docscan.scanner.resource_monitor import DeviceStatus, ResourceMonitor
from docscan.scanner.state_store import ProgressStore
from docscan.utils.exceptions import OCRProcessingError


@pytest.fixture(autouse=True)
def fresh_config():
    """Every test starts from the bundled defaults."""
    ConfigurationManager.reset()
    yield
    ConfigurationManager.reset()


# --- OCR fakes ---

def make_result(engine_name: str, confidence: float, lines: Optional[List[tuple]] = None, text: str = None) -> OCRResult:
    """
    Build an OCRResult from (text, confidence, y) line tuples, or from plain
    text with a single block.
    """
    if lines is None:
        lines = [(text or "", confidence, 10)]
    blocks = [OCRBlock(t, c, BoundingBox(10, y, 200, 18)) for t, c, y in lines]
    result = OCRResult.from_blocks(blocks, engine_name)
    result.confidence = confidence
    return result


class FakeEngine(OCREngine):
    """Scripted engine: returns a fixed result, raises, or blocks until released."""

    def __init__(self, name: str, result: Optional[OCRResult] = None, error: Exception = None,
                 gate: Optional[threading.Event] = None, init_error: Exception = None):
        self.name = name
        self.result = result
        self.error = error
        self.gate = gate
        self.init_error = init_error
        self.calls: List[str] = []
        self._ready = False

    def initialize(self) -> None:
        if self.init_error:
            raise self.init_error
        self._ready = True

    def process_image(self, image_path: str) -> OCRResult:
        self.calls.append(image_path)
        if self.gate is not None:
            self.gate.wait(5)
        if self.error:
            raise self.error
        return self.result

    def is_initialized(self) -> bool:
        return self._ready

    def supports_language(self, code: str) -> bool:
        return code == "en"


def failing_engine(name: str) -> FakeEngine:
    return FakeEngine(name, error=OCRProcessingError(name, "img.png", "boom"))


# --- Asset fakes ---

def png_bytes(size=(64, 48), color=(255, 255, 255)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


class InMemoryAssetSource(AssetSource):
    """Asset source over a list of assets with optional in-memory content."""

    name = "memory"

    def __init__(self, assets: List[Asset], contents: Optional[Dict[str, bytes]] = None, permitted: bool = True):
        self.assets = list(assets)
        self.contents = contents or {}
        self.permitted = permitted
        self.queries: List[Optional[AssetQuery]] = []

    def list_assets(self, query: Optional[AssetQuery] = None) -> List[Asset]:
        self.queries.append(query)
        return list(self.assets)

    def get_asset(self, uri: str) -> Optional[Asset]:
        return next((a for a in self.assets if a.uri == uri), None)

    def open_asset(self, uri: str):
        if uri not in self.contents:
            return super().open_asset(uri)
        return io.BytesIO(self.contents[uri])

    def has_permission(self) -> bool:
        return self.permitted


def make_assets(count: int, start_time: float = 1_000_000.0) -> List[Asset]:
    """Distinct assets, the first one newest, all passing the smart filter."""
    return [
        Asset(
            uri=f"mem://gallery/page_{i:03d}.jpg",
            filename=f"page_{i:03d}.jpg",
            created_at=start_time - i,
            file_size=200 * 1024,
        )
        for i in range(count)
    ]


# --- Scanner fakes ---

class ScriptedResourceMonitor(ResourceMonitor):
    """
    Monitor replaying available-memory readings, one per memory_pressure()
    call; the last reading repeats. Thresholds: LOW below 100 MB, CRITICAL below 50 MB.
    """

    def __init__(self, memory: Optional[List[float]] = None, battery_level: float = None,
                 charging: bool = None, unmetered_network: bool = None):
        super().__init__(low_memory_mb=100, critical_memory_mb=50, min_battery_level=0.2)
        self.memory = list(memory or [1024.0])
        self.current = self.memory[0]
        self.battery_level = battery_level
        self.charging = charging
        self.unmetered_network = unmetered_network
        self.cleanups: List[bool] = []
        self.add_cleanup_callback(self.cleanups.append)

    def memory_pressure(self):
        self.current = self.memory.pop(0) if len(self.memory) > 1 else self.memory[0]
        return super().memory_pressure()

    def status(self) -> DeviceStatus:
        return DeviceStatus(self.current, self.battery_level, self.charging, self.unmetered_network)


class FakeClock:
    def __init__(self, start: float = 2_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePipeline:
    """
    Stand-in for AssetPipeline; records visited URIs and returns scripted
    outcomes. By default every asset is saved with a hash derived from its URI.
    """

    def __init__(self, temp_registry: TempFileRegistry,
                 outcome_for: Optional[Callable[[Asset], AssetOutcome]] = None,
                 on_process: Optional[Callable[[Asset], None]] = None):
        self.temp_registry = temp_registry
        self.outcome_for = outcome_for or (
            lambda asset: AssetOutcome(asset.uri, OutcomeStatus.SAVED, content_hash=f"hash:{asset.uri}")
        )
        self.on_process = on_process
        self.processed: List[str] = []

    def process(self, asset, options, filter_applied=False, known_hashes=(), smart_filter=None):
        self.processed.append(asset.uri)
        if self.on_process:
            self.on_process(asset)
        return self.outcome_for(asset)


@pytest.fixture
def document_store(tmp_path):
    return DocumentStore(tmp_path / "documents.db")


@pytest.fixture
def progress_store(tmp_path):
    return ProgressStore(tmp_path / "state.db", history_limit=50)


@pytest.fixture
def temp_registry(tmp_path):
    directory = tmp_path / "tmp"
    directory.mkdir()
    return TempFileRegistry(directory)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def channel(fake_clock):
    return ProgressChannel(interval=0.15, clock=fake_clock)


@pytest.fixture
def sleeps():
    """Recorded sleep durations; pass ``sleeps.append`` as the sleep function."""
    return []
