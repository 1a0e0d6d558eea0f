"""
Extracted Metadata Data Classes.

Structured fields pulled from OCR text, the closed set of document types,
and the per-type schema that bounds which fields a document type may carry.

Classes:
    DocumentType: Closed set of recognized document types
    DateRole: Semantic role of a date
    Amount, LineItem, DocumentDate, Location: Field values
    ExtractedMetadata: All fields plus extraction confidence

Author: ML Engineering Team
"""

import math
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import List, Dict, Any, Optional

from ..utils.helpers import clamp
from ..utils.logger import get_logger

# Initialize module logger
logger = get_logger(__name__)


class DocumentType(str, Enum):
    RECEIPT = "receipt"
    INVOICE = "invoice"
    ID = "id"
    FORM = "form"
    LETTER = "letter"
    SCREENSHOT = "screenshot"
    UNKNOWN = "unknown"


class DateRole(str, Enum):
    TRANSACTION = "transaction"
    DUE = "due"
    ISSUED = "issued"
    UNKNOWN = "unknown"


@dataclass
class Amount:
    """A monetary amount; ``currency`` is an ISO 4217 code when known."""
    value: float
    currency: Optional[str] = None
    is_total: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {'value': self.value, 'currency': self.currency, 'is_total': self.is_total}


@dataclass
class LineItem:
    name: str
    price: Optional[float] = None
    quantity: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'price': self.price, 'quantity': self.quantity}


@dataclass
class DocumentDate:
    date: date
    role: DateRole = DateRole.UNKNOWN

    def to_dict(self) -> Dict[str, Any]:
        return {'date': self.date.isoformat(), 'type': self.role.value}


@dataclass
class Location:
    address: str
    city: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'address': self.address, 'city': self.city}


@dataclass
class ExtractedMetadata:
    """
    Structured fields extracted from one document.

    Attributes:
        vendor: Merchant, issuer or sender name
        amounts: Monetary amounts found in the text
        items: Line items (receipts and invoices)
        dates: Dates with their semantic role
        location: Address, when present
        reference_number: Invoice, transaction or document number
        confidence: Extraction confidence in [0, 1]

    Example:
        >>> meta = ExtractedMetadata(vendor="ACME", amounts=[Amount(45.99, "USD", True)])
        >>> meta.total_amount
        45.99
    """
    vendor: Optional[str] = None
    amounts: List[Amount] = field(default_factory=list)
    items: List[LineItem] = field(default_factory=list)
    dates: List[DocumentDate] = field(default_factory=list)
    location: Optional[Location] = None
    reference_number: Optional[str] = None
    confidence: float = 0.0

    def __post_init__(self):
        self.confidence = clamp(float(self.confidence))

    @property
    def total_amount(self) -> Optional[float]:
        """The amount flagged as total, else the largest amount."""
        total = self._total()
        return total.value if total else None

    @property
    def currency(self) -> Optional[str]:
        """Currency of the total amount, else of the first amount with a currency."""
        total = self._total()
        if total and total.currency:
            return total.currency
        return next((a.currency for a in self.amounts if a.currency), None)

    @property
    def primary_date(self) -> Optional[date]:
        return self.dates[0].date if self.dates else None

    def _total(self) -> Optional[Amount]:
        flagged = [a for a in self.amounts if a.is_total]
        if flagged:
            return flagged[-1]
        if self.amounts:
            return max(self.amounts, key=lambda a: a.value)
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'vendor': self.vendor,
            'amounts': [a.to_dict() for a in self.amounts],
            'items': [i.to_dict() for i in self.items],
            'dates': [d.to_dict() for d in self.dates],
            'location': self.location.to_dict() if self.location else None,
            'reference_number': self.reference_number,
            'confidence': self.confidence
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExtractedMetadata':
        location = data.get('location')
        return cls(
            vendor=data.get('vendor'),
            amounts=[Amount(a['value'], a.get('currency'), a.get('is_total', False))
                     for a in data.get('amounts', [])],
            items=[LineItem(i['name'], i.get('price'), i.get('quantity'))
                   for i in data.get('items', [])],
            dates=[DocumentDate(date.fromisoformat(d['date']), DateRole(d.get('type', 'unknown')))
                   for d in data.get('dates', [])],
            location=Location(location['address'], location.get('city')) if location else None,
            reference_number=data.get('reference_number'),
            confidence=data.get('confidence', 0.0)
        )


# =============================================================================
# PER-TYPE SCHEMA
# =============================================================================

_ALL_ROLES = frozenset(DateRole)
_GENERIC_FIELDS = frozenset({'vendor', 'amounts', 'dates', 'reference_number'})

# Fields each document type may carry and the date roles it may use
METADATA_SCHEMA: Dict[DocumentType, Dict[str, frozenset]] = {
    DocumentType.RECEIPT: {
        'fields': frozenset({'vendor', 'amounts', 'items', 'dates', 'location', 'reference_number'}),
        'date_roles': _ALL_ROLES,
    },
    DocumentType.INVOICE: {
        'fields': frozenset({'vendor', 'amounts', 'items', 'dates', 'location', 'reference_number'}),
        'date_roles': _ALL_ROLES,
    },
    DocumentType.ID: {
        'fields': frozenset({'vendor', 'dates', 'location', 'reference_number'}),
        'date_roles': frozenset({DateRole.ISSUED, DateRole.DUE, DateRole.UNKNOWN}),
    },
}
_GENERIC_SCHEMA = {'fields': _GENERIC_FIELDS, 'date_roles': frozenset({DateRole.UNKNOWN})}


def schema_for(doc_type: DocumentType) -> Dict[str, frozenset]:
    return METADATA_SCHEMA.get(doc_type, _GENERIC_SCHEMA)


def validate_metadata(doc_type: DocumentType, metadata: ExtractedMetadata) -> ExtractedMetadata:
    """
    Bring metadata in line with the schema of its document type.

    Fields the type may not carry are cleared, non-finite or negative
    amounts are dropped, disallowed date roles become UNKNOWN and
    confidence is clamped to [0, 1].

    Args:
        doc_type: Classified document type.
        metadata: Extractor output.

    Returns:
        A validated copy.
    """
    schema = schema_for(doc_type)
    allowed = schema['fields']
    roles = schema['date_roles']

    amounts = [a for a in metadata.amounts if math.isfinite(a.value) and a.value >= 0]
    items = [i for i in metadata.items if i.name and (i.price is None or math.isfinite(i.price))]
    dates = [d if d.role in roles else DocumentDate(d.date, DateRole.UNKNOWN) for d in metadata.dates]

    dropped = [name for name in ('vendor', 'amounts', 'items', 'dates', 'location', 'reference_number')
               if name not in allowed and getattr(metadata, name)]
    if dropped:
        logger.debug(f"Dropping fields {dropped} not carried by {doc_type.value} documents")

    return replace(
        metadata,
        vendor=metadata.vendor if 'vendor' in allowed else None,
        amounts=amounts if 'amounts' in allowed else [],
        items=items if 'items' in allowed else [],
        dates=dates if 'dates' in allowed else [],
        location=metadata.location if 'location' in allowed else None,
        reference_number=metadata.reference_number if 'reference_number' in allowed else None,
        confidence=clamp(metadata.confidence)
    )
