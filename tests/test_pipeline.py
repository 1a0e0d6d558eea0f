import threading
from unittest.mock import MagicMock

import pytest
from PIL import Image

from docscan.extraction.metadata import Amount, DocumentType, ExtractedMetadata
from docscan.gallery.asset import Asset
from docscan.input_handler.image_processor import ImagePreprocessor, content_hash
from docscan.ocr_engine.fusion import OCRFusion
from docscan.scanner.models import ScanOptions
from docscan.scanner.pipeline import AssetPipeline, OutcomeStatus, compose_confidence
from docscan.utils.exceptions import ErrorKind

from conftest import FakeEngine, InMemoryAssetSource, failing_engine, make_result, png_bytes

RECEIPT_TEXT = "Corner Cafe\nTotal: $45.99"


def save_image(path, size=(64, 48), color=(250, 250, 250), fmt=None):
    Image.new("RGB", size, color).save(path, format=fmt)
    return Asset(uri=str(path), filename=path.name, width=size[0], height=size[1], file_size=path.stat().st_size)


def stub_classifier(doc_type=DocumentType.RECEIPT):
    classifier = MagicMock()
    classifier.classify.return_value = (doc_type, {})
    return classifier


def stub_extractor(confidence=0.7):
    extractor = MagicMock()
    extractor.extract.return_value = ExtractedMetadata(
        vendor="Corner Cafe", amounts=[Amount(45.99, "USD", True)], confidence=confidence
    )
    return extractor


@pytest.fixture
def engine():
    e = FakeEngine("tesseract", make_result("tesseract", 0.9, text=RECEIPT_TEXT))
    e.initialize()
    return e


@pytest.fixture
def make_pipeline(document_store, temp_registry):
    def factory(engines, source=None, doc_type=DocumentType.RECEIPT, metadata_confidence=0.7, timeout=2.0):
        for e in engines:
            e.initialize()
        return AssetPipeline(
            source or InMemoryAssetSource([]),
            OCRFusion(lambda: list(engines), timeout=timeout),
            document_store,
            preprocessor=ImagePreprocessor(max_dimension=1500, temp_format="PNG"),
            classifier=stub_classifier(doc_type),
            extractor=stub_extractor(metadata_confidence),
            temp_registry=temp_registry,
            acceptance_threshold=0.62,
        )
    return factory


@pytest.fixture
def options():
    return ScanOptions()


def test_compose_confidence():
    assert compose_confidence(0.9, 0.7, DocumentType.RECEIPT) == pytest.approx(0.8)
    assert compose_confidence(0.3, 0.3, DocumentType.UNKNOWN) == pytest.approx(0.34)
    assert 0.0 <= compose_confidence(5.0, 5.0, DocumentType.ID) <= 1.0


def test_confident_document_is_persisted(tmp_path, engine, make_pipeline, document_store, options):
    """OCR 0.9, metadata 0.7, typed document: overall 0.8 and saved."""
    asset = save_image(tmp_path / "receipt.png")
    outcome = make_pipeline([engine]).process(asset, options, filter_applied=True)

    assert outcome.status == OutcomeStatus.SAVED
    assert outcome.confidence == pytest.approx(0.8)
    record = document_store.find_by_hash(outcome.content_hash)
    assert record.confidence == pytest.approx(0.8)
    assert record.document_type == DocumentType.RECEIPT
    assert record.vendor == "Corner Cafe"
    assert record.total_amount == 45.99
    assert record.currency == "USD"
    assert record.image_uri == asset.uri
    assert "corner cafe" in record.keywords


def test_low_confidence_document_is_discarded(tmp_path, make_pipeline, document_store, options):
    weak = FakeEngine("tesseract", make_result("tesseract", 0.3, text="blurry"))
    pipeline = make_pipeline([weak], doc_type=DocumentType.UNKNOWN, metadata_confidence=0.3)

    outcome = pipeline.process(save_image(tmp_path / "a.png"), options, filter_applied=True)

    assert outcome.status == OutcomeStatus.DISCARDED
    assert outcome.confidence == pytest.approx(0.34)
    assert outcome.content_hash is not None
    assert document_store.count_documents() == 0


def test_empty_text_is_discarded(tmp_path, make_pipeline, document_store, options):
    blank = FakeEngine("tesseract", make_result("tesseract", 0.9, text="   "))
    outcome = make_pipeline([blank]).process(save_image(tmp_path / "a.png"), options, filter_applied=True)
    assert outcome.status == OutcomeStatus.DISCARDED
    assert document_store.count_documents() == 0


def test_same_content_under_two_uris_stored_once(tmp_path, engine, make_pipeline, document_store, options):
    first = save_image(tmp_path / "original.png", color=(10, 20, 30))
    second = save_image(tmp_path / "copy.bmp", color=(10, 20, 30), fmt="BMP")
    pipeline = make_pipeline([engine])

    outcomes = [pipeline.process(a, options, filter_applied=True) for a in (first, second)]

    assert [o.status for o in outcomes] == [OutcomeStatus.SAVED, OutcomeStatus.DUPLICATE]
    assert outcomes[0].content_hash == outcomes[1].content_hash
    assert document_store.count_documents() == 1
    assert len(engine.calls) == 1


def test_known_hash_skips_ocr(tmp_path, engine, make_pipeline, options):
    asset = save_image(tmp_path / "a.png")
    with Image.open(asset.uri) as image:
        digest = content_hash(image.convert("RGB"))
    pipeline = make_pipeline([engine])
    pipeline.store = MagicMock()
    pipeline.store.check_duplicate_by_hash.return_value = False

    outcome = pipeline.process(asset, options, filter_applied=True, known_hashes={digest})

    assert outcome.status == OutcomeStatus.DUPLICATE
    assert outcome.content_hash == digest
    assert engine.calls == []
    pipeline.store.save_document.assert_not_called()


def test_rejected_by_smart_filter(tmp_path, engine, make_pipeline, options):
    asset = Asset(uri=str(tmp_path / "selfie_beach.jpg"), filename="selfie_beach.jpg", file_size=300 * 1024)
    outcome = make_pipeline([engine]).process(asset, options)

    assert outcome.status == OutcomeStatus.FILTERED
    assert engine.calls == []


def test_basic_filter_when_smart_filter_disabled(tmp_path, engine, make_pipeline, options):
    tiny = Asset(uri=str(tmp_path / "receipt.jpg"), filename="receipt.jpg", file_size=10 * 1024)
    outcome = make_pipeline([engine]).process(tiny, options.with_changes(smart_filter_enabled=False))
    assert outcome.status == OutcomeStatus.FILTERED
    assert "below minimum" in outcome.reason


def test_engine_failure_recorded_as_failed_outcome(tmp_path, make_pipeline, options):
    outcome = make_pipeline([failing_engine("a"), failing_engine("b")]).process(
        save_image(tmp_path / "a.png"), options, filter_applied=True
    )
    assert outcome.status == OutcomeStatus.FAILED
    assert outcome.error_kind == ErrorKind.ENGINE_FAILURE


def test_timeout_recorded_as_failed_outcome(tmp_path, make_pipeline, options):
    gate = threading.Event()
    try:
        slow = FakeEngine("slow", make_result("slow", 0.9, text=RECEIPT_TEXT), gate=gate)
        outcome = make_pipeline([slow], timeout=0.2).process(save_image(tmp_path / "a.png"), options, filter_applied=True)
    finally:
        gate.set()
    assert outcome.status == OutcomeStatus.FAILED
    assert outcome.error_kind == ErrorKind.ASSET_PROCESSING_TIMEOUT


def test_unreadable_asset_recorded_as_failed_outcome(tmp_path, engine, make_pipeline, options):
    broken = tmp_path / "broken.jpg"
    broken.write_bytes(b"not an image")
    outcome = make_pipeline([engine]).process(Asset(str(broken), broken.name), options, filter_applied=True)

    assert outcome.status == OutcomeStatus.FAILED
    assert outcome.error_kind == ErrorKind.ASSET_READ_FAILURE
    assert engine.calls == []


@pytest.mark.parametrize("engines, expected", [
    ("ok", OutcomeStatus.SAVED),
    ("failing", OutcomeStatus.FAILED),
])
def test_temp_files_removed_for_provider_assets(engines, expected, make_pipeline, temp_registry, options):
    """Content materialized from a non-local URI never outlives the asset."""
    uri = "mem://gallery/receipt.png"
    source = InMemoryAssetSource([Asset(uri, "receipt.png")], {uri: png_bytes()})
    if engines == "ok":
        engine_list = [FakeEngine("tesseract", make_result("tesseract", 0.9, text=RECEIPT_TEXT))]
    else:
        engine_list = [failing_engine("tesseract")]

    outcome = make_pipeline(engine_list, source=source).process(Asset(uri, "receipt.png"), options, filter_applied=True)

    assert outcome.status == expected
    assert list(temp_registry.directory.iterdir()) == []
    assert temp_registry.active == 0


def test_temp_files_removed_for_unreadable_provider_asset(make_pipeline, temp_registry, options):
    uri = "mem://gallery/broken.png"
    source = InMemoryAssetSource([Asset(uri, "broken.png")], {uri: b"garbage"})
    engine = FakeEngine("tesseract", make_result("tesseract", 0.9, text=RECEIPT_TEXT))

    outcome = make_pipeline([engine], source=source).process(Asset(uri, "broken.png"), options, filter_applied=True)

    assert outcome.error_kind == ErrorKind.ASSET_READ_FAILURE
    assert list(temp_registry.directory.iterdir()) == []


def test_large_image_downscaled_to_temp_file_and_cleaned(tmp_path, engine, make_pipeline, temp_registry, options):
    asset = save_image(tmp_path / "big.png", size=(3000, 1000))

    outcome = make_pipeline([engine]).process(asset, options, filter_applied=True)

    assert outcome.status == OutcomeStatus.SAVED
    ocr_input = engine.calls[0]
    assert ocr_input != asset.uri
    with pytest.raises(FileNotFoundError):
        open(ocr_input, "rb")
    assert list(temp_registry.directory.iterdir()) == []
