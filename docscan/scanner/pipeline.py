"""
Per-Asset Pipeline.

Takes one asset from filter gate to document store:

    filter gate → preprocess → content-hash pre-check → OCR fusion
    → classification → metadata extraction → confidence composition
    → acceptance gate → authoritative dedup → store handoff

Asset-level errors never escape: they are logged and returned as a FAILED
outcome carrying their ErrorKind. Temporary files are released on every
exit path.

Author: ML Engineering Team
"""

from dataclasses import dataclass
from enum import Enum
from typing import Collection, Optional

from config import get_config
from ..extraction.classifier import DocumentClassifier
from ..extraction.extractors import MetadataExtractor
from ..extraction.keywords import KeywordExtractor
from ..extraction.metadata import DocumentType
from ..extraction.normalizers import detect_currency
from ..gallery.asset import Asset, AssetSource
from ..gallery.smart_filter import SmartFilter
from ..input_handler.image_processor import ImagePreprocessor
from ..input_handler.temp_files import TempFileRegistry
from ..ocr_engine.fusion import OCRFusion
from ..output_handler.database_handler import DocumentStore
from ..output_handler.document import DocumentRecord
from ..utils.exceptions import DocScanError, ErrorKind
from ..utils.helpers import clamp
from ..utils.logger import get_logger
from .models import ScanOptions

# Initialize module logger
logger = get_logger(__name__)

OCR_WEIGHT = 0.4
METADATA_WEIGHT = 0.4
TYPE_WEIGHT = 0.2
KNOWN_TYPE_CONFIDENCE = 0.8
UNKNOWN_TYPE_CONFIDENCE = 0.5


def compose_confidence(ocr_confidence: float, metadata_confidence: float, doc_type: DocumentType) -> float:
    """
    Overall document confidence.

    Example:
        >>> round(compose_confidence(0.9, 0.7, DocumentType.RECEIPT), 2)
        0.8
    """
    type_confidence = KNOWN_TYPE_CONFIDENCE if doc_type != DocumentType.UNKNOWN else UNKNOWN_TYPE_CONFIDENCE
    return clamp(OCR_WEIGHT * ocr_confidence + METADATA_WEIGHT * metadata_confidence + TYPE_WEIGHT * type_confidence)


class OutcomeStatus(str, Enum):
    SAVED = "saved"
    DUPLICATE = "duplicate"
    DISCARDED = "discarded"
    FILTERED = "filtered"
    FAILED = "failed"


@dataclass
class AssetOutcome:
    """
    Result of running the pipeline on one asset.

    Attributes:
        uri: Asset URI
        status: What happened to the asset
        content_hash: Decoded-content hash, once known
        document: Stored document for SAVED and DUPLICATE outcomes when available
        confidence: Overall confidence, once computed
        error_kind: Failure category for FAILED outcomes
        reason: Human-readable detail
    """
    uri: str
    status: OutcomeStatus
    content_hash: Optional[str] = None
    document: Optional[DocumentRecord] = None
    confidence: Optional[float] = None
    error_kind: Optional[ErrorKind] = None
    reason: str = ""

    @property
    def failed(self) -> bool:
        return self.status == OutcomeStatus.FAILED


class AssetPipeline:
    """
    Processes single assets; stateless between calls apart from its
    collaborators.

    Example:
        >>> pipeline = AssetPipeline(source, fusion, store)
        >>> outcome = pipeline.process(asset, ScanOptions())
        >>> outcome.status
        <OutcomeStatus.SAVED: 'saved'>
    """

    def __init__(
        self,
        source: AssetSource,
        fusion: OCRFusion,
        store: DocumentStore,
        smart_filter: Optional[SmartFilter] = None,
        preprocessor: Optional[ImagePreprocessor] = None,
        classifier: Optional[DocumentClassifier] = None,
        extractor: Optional[MetadataExtractor] = None,
        keywords: Optional[KeywordExtractor] = None,
        temp_registry: Optional[TempFileRegistry] = None,
        acceptance_threshold: Optional[float] = None
    ) -> None:
        self.source = source
        self.fusion = fusion
        self.store = store
        self.smart_filter = smart_filter or SmartFilter()
        self.preprocessor = preprocessor or ImagePreprocessor()
        self.classifier = classifier or DocumentClassifier()
        self.extractor = extractor or MetadataExtractor()
        self.keywords = keywords or KeywordExtractor()
        self.temp_registry = temp_registry or TempFileRegistry()
        self.acceptance_threshold = (
            acceptance_threshold if acceptance_threshold is not None
            else get_config("extraction.acceptance_threshold", 0.62)
        )

    def process(
        self,
        asset: Asset,
        options: ScanOptions,
        filter_applied: bool = False,
        known_hashes: Collection[str] = (),
        smart_filter: Optional[SmartFilter] = None
    ) -> AssetOutcome:
        """
        Run the pipeline on one asset.

        Args:
            asset: Asset to process.
            options: Scan options in effect.
            filter_applied: The caller already admitted the asset.
            known_hashes: Content hashes already handled by earlier scans.
            smart_filter: Filter built for this scan; defaults to the
                pipeline's own.

        Returns:
            AssetOutcome; never raises for asset-level failures.
        """
        if not filter_applied:
            gate = smart_filter or self.smart_filter
            if options.smart_filter_enabled:
                decision = gate.evaluate(asset)
            else:
                decision = gate.basic_check(asset)
            if not decision.should_process:
                return AssetOutcome(asset.uri, OutcomeStatus.FILTERED, reason=decision.reason)

        try:
            with self.temp_registry.scope() as tracker:
                return self._process(asset, tracker, known_hashes)
        except DocScanError as e:
            logger.warning(f"Asset {asset.uri} failed ({e.kind.value}): {e}")
            return AssetOutcome(asset.uri, OutcomeStatus.FAILED, error_kind=e.kind, reason=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error processing {asset.uri}")
            return AssetOutcome(asset.uri, OutcomeStatus.FAILED, error_kind=ErrorKind.UNEXPECTED, reason=repr(e))

    def _process(self, asset: Asset, tracker, known_hashes: Collection[str]) -> AssetOutcome:
        prepared = self.preprocessor.prepare(asset, self.source, tracker)
        digest = prepared.content_hash

        if digest in known_hashes or self.store.check_duplicate_by_hash(digest):
            logger.debug(f"Skipping {asset.uri}: content already processed")
            return AssetOutcome(asset.uri, OutcomeStatus.DUPLICATE, content_hash=digest, reason="known content")

        ocr = self.fusion.run(prepared.path, uri=asset.uri)
        if not ocr.text.strip():
            return AssetOutcome(asset.uri, OutcomeStatus.DISCARDED, content_hash=digest,
                                confidence=0.0, reason="no text recognized")

        doc_type, _ = self.classifier.classify(ocr.text, asset.filename)
        metadata = self.extractor.extract(ocr.text, doc_type)
        confidence = compose_confidence(ocr.confidence, metadata.confidence, doc_type)

        if confidence <= self.acceptance_threshold:
            logger.debug(f"Discarding {asset.uri}: confidence {confidence:.2f} ({doc_type.value})")
            return AssetOutcome(asset.uri, OutcomeStatus.DISCARDED, content_hash=digest,
                                confidence=confidence, reason="below acceptance threshold")

        existing = self.store.find_by_hash(digest)
        if existing is not None:
            return AssetOutcome(asset.uri, OutcomeStatus.DUPLICATE, content_hash=digest,
                                document=existing, confidence=confidence, reason="stored meanwhile")

        record = DocumentRecord.create(
            image_uri=asset.uri,
            content_hash=digest,
            ocr_text=ocr.text,
            document_type=doc_type,
            metadata=metadata,
            confidence=confidence,
            keywords=self.keywords.extract(ocr.text, metadata),
            currency=detect_currency(ocr.text),
        )
        stored = self.store.save_document(record)
        status = OutcomeStatus.SAVED if stored.id == record.id else OutcomeStatus.DUPLICATE

        logger.info(
            f"{asset.filename}: {doc_type.value} document "
            f"(confidence {confidence:.2f}, engine {ocr.engine_name})"
        )
        return AssetOutcome(asset.uri, status, content_hash=digest, document=stored, confidence=confidence)
