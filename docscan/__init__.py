"""
Document Scanner - Ingestion Pipeline.

Incrementally scans a large image collection, decides which images are
worth analyzing, extracts text and structured fields from likely documents,
deduplicates by content and persists the results. Scans are resumable and
back off under memory pressure.

Modules:
    - gallery: Asset enumeration and smart filtering
    - input_handler: Image preprocessing and temp-file lifecycle
    - ocr_engine: Pluggable OCR engines, registry and fusion
    - extraction: Document classification and metadata extraction
    - output_handler: Document store
    - scanner: Resource monitor, progress state and batch scheduler

Architecture:
    Assets → Smart Filter → Batch Scheduler → Preprocess → OCR Fusion
           → Classification + Extraction → Dedup → Document Store
"""

__version__ = "1.0.0"
__author__ = "ML Engineering Team"

__all__ = [
    'gallery',
    'input_handler',
    'ocr_engine',
    'extraction',
    'output_handler',
    'scanner',
    'utils'
]
