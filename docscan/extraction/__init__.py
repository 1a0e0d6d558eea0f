"""
Extraction Module.

Turns fused OCR text into a classified document type and structured,
schema-validated metadata.

Classes:
    DocumentClassifier: Keyword-based type classification
    MetadataExtractor: Per-type field extraction
    KeywordExtractor: Search keywords for stored documents
    DateNormalizer, AmountNormalizer: Date and amount parsing
"""

from .metadata import (
    DocumentType,
    DateRole,
    Amount,
    LineItem,
    DocumentDate,
    Location,
    ExtractedMetadata,
    validate_metadata,
)
from .normalizers import DateNormalizer, AmountNormalizer, detect_currency
from .classifier import DocumentClassifier
from .extractors import (
    MetadataExtractor,
    ReceiptExtractor,
    InvoiceExtractor,
    IDExtractor,
    GenericExtractor,
    extract_receipt_metadata,
)
from .keywords import KeywordExtractor

__all__ = [
    'DocumentType',
    'DateRole',
    'Amount',
    'LineItem',
    'DocumentDate',
    'Location',
    'ExtractedMetadata',
    'validate_metadata',
    'DateNormalizer',
    'AmountNormalizer',
    'detect_currency',
    'DocumentClassifier',
    'MetadataExtractor',
    'ReceiptExtractor',
    'InvoiceExtractor',
    'IDExtractor',
    'GenericExtractor',
    'extract_receipt_metadata',
    'KeywordExtractor'
]
