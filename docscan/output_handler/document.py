"""
Document Record Data Class.

A persisted document: OCR text, classified type, extracted metadata and
confidence for one unique image content. Only vendor, total amount and
currency may change after creation.

Author: ML Engineering Team
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..extraction.metadata import DocumentType, ExtractedMetadata
from ..utils.helpers import clamp

# Fields a user may edit after the document is stored
EDITABLE_FIELDS = ('vendor', 'total_amount', 'currency')


@dataclass
class DocumentRecord:
    """
    Attributes:
        id: Document identifier
        image_uri: URI of the source asset
        content_hash: Hash of the decoded image content; unique per store
        ocr_text: Fused OCR text
        document_type: Classified type
        metadata: Extracted fields as produced at ingestion
        confidence: Overall confidence in [0, 1]
        processed_at: Ingestion time
        keywords: Search keywords
        vendor: Editable vendor, initially metadata.vendor
        total_amount: Editable total, initially metadata.total_amount
        currency: Editable currency code
    """
    image_uri: str
    content_hash: str
    ocr_text: str
    document_type: DocumentType
    metadata: ExtractedMetadata
    confidence: float
    keywords: List[str] = field(default_factory=list)
    processed_at: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    vendor: Optional[str] = None
    total_amount: Optional[float] = None
    currency: Optional[str] = None

    def __post_init__(self):
        self.confidence = clamp(float(self.confidence))

    @classmethod
    def create(
        cls,
        image_uri: str,
        content_hash: str,
        ocr_text: str,
        document_type: DocumentType,
        metadata: ExtractedMetadata,
        confidence: float,
        keywords: Optional[List[str]] = None,
        currency: Optional[str] = None
    ) -> 'DocumentRecord':
        """New record with the editable fields seeded from the metadata."""
        return cls(
            image_uri=image_uri,
            content_hash=content_hash,
            ocr_text=ocr_text,
            document_type=document_type,
            metadata=metadata,
            confidence=confidence,
            keywords=list(keywords or []),
            vendor=metadata.vendor,
            total_amount=metadata.total_amount,
            currency=metadata.currency or currency,
        )

    @property
    def document_date(self) -> Optional[str]:
        primary = self.metadata.primary_date
        return primary.isoformat() if primary else None

    def to_row(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'image_uri': self.image_uri,
            'content_hash': self.content_hash,
            'ocr_text': self.ocr_text,
            'document_type': self.document_type.value,
            'metadata': json.dumps(self.metadata.to_dict(), ensure_ascii=False),
            'confidence': self.confidence,
            'processed_at': self.processed_at.isoformat(),
            'keywords': json.dumps(self.keywords, ensure_ascii=False),
            'vendor': self.vendor,
            'total_amount': self.total_amount,
            'currency': self.currency,
            'document_date': self.document_date,
        }

    @classmethod
    def from_row(cls, row) -> 'DocumentRecord':
        return cls(
            id=row['id'],
            image_uri=row['image_uri'],
            content_hash=row['content_hash'],
            ocr_text=row['ocr_text'],
            document_type=DocumentType(row['document_type']),
            metadata=ExtractedMetadata.from_dict(json.loads(row['metadata'])),
            confidence=row['confidence'],
            processed_at=datetime.fromisoformat(row['processed_at']),
            keywords=json.loads(row['keywords']),
            vendor=row['vendor'],
            total_amount=row['total_amount'],
            currency=row['currency'],
        )

    def to_dict(self) -> Dict[str, Any]:
        row = self.to_row()
        row['metadata'] = self.metadata.to_dict()
        row['keywords'] = list(self.keywords)
        return row
