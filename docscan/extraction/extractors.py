"""
Metadata Extractors.

Regex-based extractors turning OCR text into ExtractedMetadata, one per
document type with a shared toolbox:

    - Vendor: first capitalized name-like line, or a From/Vendor label
    - Amounts: currency-marked numbers; "total" nearby flags the total
    - Items: "name [qty] price" lines
    - Dates: every supported format, tagged with a role from nearby labels
    - Location: street address, optional city

Confidence is the weighted presence of each signal, clamped to [0, 1].

Usage:
    from docscan.extraction import MetadataExtractor, DocumentType

    extractor = MetadataExtractor()
    metadata = extractor.extract(text, DocumentType.RECEIPT)

Author: ML Engineering Team
"""

import re
from typing import Dict, List, Optional

from ..utils.helpers import clamp
from ..utils.logger import get_logger
from .metadata import (
    Amount,
    DateRole,
    DocumentDate,
    DocumentType,
    ExtractedMetadata,
    LineItem,
    Location,
    validate_metadata,
)
from .normalizers import AmountNormalizer, DateNormalizer

# Initialize module logger
logger = get_logger(__name__)


# Characters before an amount searched for a total label, same line only
TOTAL_WINDOW = 20
# Characters before a date searched for a role label, same line only
ROLE_WINDOW = 30

TOTAL_LABEL = re.compile(
    r'\btotal\b|\bsum\b|amount\s+due|balance\s+due|סה"כ|לתשלום',
    re.IGNORECASE
)

ROLE_LABELS = [
    (DateRole.DUE, re.compile(
        r'due|pay\s+by|expir|exp\.?\s*date|valid\s+until|תאריך\s+פירעון|בתוקף\s+עד', re.IGNORECASE)),
    (DateRole.ISSUED, re.compile(
        r'invoice\s+date|issued|date\s+of\s+issue|issue\s+date|תאריך\s+הנפקה', re.IGNORECASE)),
    (DateRole.TRANSACTION, re.compile(
        r'transaction|purchase|\bsale\b|paid|תאריך\s+עסקה', re.IGNORECASE)),
]

VENDOR_LINE = re.compile(r"^[A-Z\u0590-\u05FF][A-Za-z\u0590-\u05FF\s&'.\-]+$")
VENDOR_LABEL = re.compile(r'(?:Bill\s+From|From|Vendor|Company|Issued\s+by|Seller)\s*:\s*([^\n]+)', re.IGNORECASE)
HEADER_WORDS = re.compile(
    r'^(?:receipt|sales\s+receipt|tax\s+invoice|invoice|statement|קבלה|חשבונית(?:\s+מס)?)$',
    re.IGNORECASE
)

ITEM_LINE = re.compile(
    r'^(?P<name>.+?)\s+(?:x\s*)?(?P<qty>\d+)?\s*[$€£¥₹₪]?\s*(?P<price>\d+[.,]\d{2})\s*(?:[€₪]|ש"ח)?\s*$'
)
NON_ITEM_NAME = re.compile(
    r'total|sum|tax|vat|amount|balance|due|change|cash|card|visa|mastercard|payment|tip|discount'
    r'|סה"כ|מע"מ|מזומן|עודף',
    re.IGNORECASE
)

STREET_ADDRESS = re.compile(
    r'(?P<street>\b\d+\s+[A-Za-z][A-Za-z\s]*?\s(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Lane|Ln|Drive|Dr)\b\.?)'
    r'(?:,\s*(?P<city>[A-Z][A-Za-z\s]+?)(?=,|\n|$))?',
    re.MULTILINE
)
HEBREW_STREET = re.compile(r'רח(?:וב)?[\'"]?\s+(?P<street>[א-ת\s]+?)\s+(?P<num>\d+)(?:\s*,\s*(?P<city>[א-ת\s]+))?')
ADDRESS_LABEL = re.compile(r'(?:Bill\s+To|Ship\s+To|Address)\s*:\s*([^\n]+)', re.IGNORECASE)

REFERENCE_PATTERNS = {
    DocumentType.INVOICE: re.compile(
        r'(?:invoice|inv)[\s.]*(?:no\.?|number|num|#)\s*[:.]?\s*([A-Z0-9][A-Z0-9\-/]*\d[A-Z0-9\-/]*)',
        re.IGNORECASE),
    DocumentType.RECEIPT: re.compile(
        r'(?:receipt|transaction|trans|order|ref)[\s.]*(?:no\.?|number|#|id)\s*[:.]?\s*([A-Z0-9][A-Z0-9\-/]*\d[A-Z0-9\-/]*)',
        re.IGNORECASE),
    DocumentType.ID: re.compile(
        r'(?:id|passport|license|licence|document)\s*(?:no\.?|number|#)\s*[:.]?\s*([A-Z0-9]{5,})',
        re.IGNORECASE),
}

AUTHORITY_LINE = re.compile(
    r'^.*(?:department|ministry|state\s+of|republic|government|authority|משרד|מדינת).*$',
    re.IGNORECASE | re.MULTILINE
)


def _line_prefix(text: str, start: int, window: int) -> str:
    """Up to ``window`` characters before ``start``, not crossing a newline."""
    line_start = text.rfind('\n', 0, start) + 1
    return text[max(line_start, start - window):start]


class BaseExtractor:
    """
    Shared extraction toolbox; subclasses choose weights and field rules.

    Attributes:
        WEIGHTS: Confidence weight per present signal
        DEFAULT_DATE_ROLE: Role for dates without a recognizable label
    """

    doc_type = DocumentType.UNKNOWN
    WEIGHTS: Dict[str, float] = {}
    DEFAULT_DATE_ROLE = DateRole.UNKNOWN

    def __init__(self) -> None:
        self.dates = DateNormalizer()
        self.amounts = AmountNormalizer()

    def extract(self, text: str) -> ExtractedMetadata:
        metadata = ExtractedMetadata(
            vendor=self.extract_vendor(text),
            amounts=self.extract_amounts(text),
            items=self.extract_items(text),
            dates=self.extract_dates(text),
            location=self.extract_location(text),
            reference_number=self.extract_reference(text),
        )
        metadata.confidence = self.score(metadata)
        return metadata

    def score(self, metadata: ExtractedMetadata) -> float:
        present = {
            'vendor': bool(metadata.vendor),
            'amounts': bool(metadata.amounts),
            'items': bool(metadata.items),
            'dates': bool(metadata.dates),
            'location': metadata.location is not None,
            'reference_number': bool(metadata.reference_number),
        }
        return clamp(sum(weight for name, weight in self.WEIGHTS.items() if present.get(name)))

    # -------------------------------------------------------------------------
    # Field extraction
    # -------------------------------------------------------------------------

    def extract_vendor(self, text: str, max_lines: int = 5) -> Optional[str]:
        """First capitalized, name-like line among the first ``max_lines`` lines."""
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        for line in lines[:max_lines]:
            if len(line) < 2 or len(line) > 60:
                continue
            if HEADER_WORDS.match(line):
                continue
            if VENDOR_LINE.match(line):
                return line
        return None

    def extract_amounts(self, text: str) -> List[Amount]:
        result = []
        for match in self.amounts.find_amounts(text):
            is_total = bool(TOTAL_LABEL.search(_line_prefix(text, match.start, TOTAL_WINDOW)))
            result.append(Amount(value=match.value, currency=match.currency, is_total=is_total))
        return result

    def extract_items(self, text: str) -> List[LineItem]:
        items = []
        for line in text.splitlines():
            match = ITEM_LINE.match(line.strip())
            if not match:
                continue
            name = match.group('name').strip().rstrip(':').strip()
            if not 3 <= len(name) < 50:
                continue
            if NON_ITEM_NAME.search(name) or not re.search(r'[^\W\d_]', name):
                continue
            price = self.amounts.to_float(match.group('price'))
            quantity = int(match.group('qty')) if match.group('qty') else None
            items.append(LineItem(name=name, price=price, quantity=quantity))
        return items

    def extract_dates(self, text: str) -> List[DocumentDate]:
        result = []
        for match in self.dates.find_dates(text):
            result.append(DocumentDate(match.value, self._date_role(text, match.start)))
        return result

    def _date_role(self, text: str, start: int) -> DateRole:
        prefix = _line_prefix(text, start, ROLE_WINDOW)
        for role, pattern in ROLE_LABELS:
            if pattern.search(prefix):
                return role
        return self.DEFAULT_DATE_ROLE

    def extract_location(self, text: str) -> Optional[Location]:
        match = STREET_ADDRESS.search(text)
        if match:
            city = match.group('city')
            return Location(address=match.group('street').strip(), city=city.strip() if city else None)

        match = HEBREW_STREET.search(text)
        if match:
            address = f"{match.group('street').strip()} {match.group('num')}"
            city = match.group('city')
            return Location(address=address, city=city.strip() if city else None)
        return None

    def extract_reference(self, text: str) -> Optional[str]:
        pattern = REFERENCE_PATTERNS.get(self.doc_type)
        if pattern is None:
            return None
        match = pattern.search(text)
        return match.group(1) if match else None


class ReceiptExtractor(BaseExtractor):
    """Receipts: merchant, totals, purchased items, transaction date."""

    doc_type = DocumentType.RECEIPT
    WEIGHTS = {'vendor': 0.2, 'amounts': 0.3, 'items': 0.3, 'dates': 0.1, 'location': 0.1}
    DEFAULT_DATE_ROLE = DateRole.TRANSACTION


class InvoiceExtractor(BaseExtractor):
    """Invoices: labelled vendor and addresses, line items, issue and due dates."""

    doc_type = DocumentType.INVOICE
    WEIGHTS = {'vendor': 0.2, 'amounts': 0.3, 'items': 0.2, 'dates': 0.2, 'location': 0.1}

    def extract_vendor(self, text: str, max_lines: int = 5) -> Optional[str]:
        match = VENDOR_LABEL.search(text)
        if match and match.group(1).strip():
            return match.group(1).strip()
        return super().extract_vendor(text, max_lines)

    def extract_location(self, text: str) -> Optional[Location]:
        match = ADDRESS_LABEL.search(text)
        if match and match.group(1).strip():
            return Location(address=match.group(1).strip())
        return super().extract_location(text)


class IDExtractor(BaseExtractor):
    """Identity documents: issuing authority, document number, validity dates."""

    doc_type = DocumentType.ID
    WEIGHTS = {'vendor': 0.2, 'reference_number': 0.3, 'dates': 0.2, 'location': 0.1}

    def extract_vendor(self, text: str, max_lines: int = 5) -> Optional[str]:
        match = AUTHORITY_LINE.search(text)
        if match:
            return match.group(0).strip()
        return super().extract_vendor(text, max_lines)

    def extract_amounts(self, text: str) -> List[Amount]:
        return []

    def extract_items(self, text: str) -> List[LineItem]:
        return []


class GenericExtractor(BaseExtractor):
    """
    Fallback for documents without a dedicated extractor.

    Takes the first short line as vendor, all amounts and all dates, and
    reports a fixed low confidence.
    """

    FIXED_CONFIDENCE = 0.3

    def extract(self, text: str) -> ExtractedMetadata:
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        vendor = lines[0] if lines and len(lines[0]) < 100 else None
        return ExtractedMetadata(
            vendor=vendor,
            amounts=self.extract_amounts(text),
            dates=[DocumentDate(m.value, DateRole.UNKNOWN) for m in self.dates.find_dates(text)],
            confidence=self.FIXED_CONFIDENCE,
        )


class MetadataExtractor:
    """
    Dispatches to the extractor of the classified document type and
    validates the output against that type's schema.
    """

    def __init__(self) -> None:
        self._extractors = {
            DocumentType.RECEIPT: ReceiptExtractor(),
            DocumentType.INVOICE: InvoiceExtractor(),
            DocumentType.ID: IDExtractor(),
        }
        self._generic = GenericExtractor()

    def extract(self, text: str, doc_type: DocumentType) -> ExtractedMetadata:
        extractor = self._extractors.get(doc_type, self._generic)
        metadata = extractor.extract(text)
        metadata = validate_metadata(doc_type, metadata)
        logger.debug(
            f"Extracted {doc_type.value} metadata: vendor={metadata.vendor!r}, "
            f"{len(metadata.amounts)} amounts, {len(metadata.items)} items, "
            f"{len(metadata.dates)} dates, confidence {metadata.confidence:.2f}"
        )
        return metadata


def extract_receipt_metadata(text: str) -> ExtractedMetadata:
    """Convenience wrapper running the receipt extractor with schema validation."""
    return validate_metadata(DocumentType.RECEIPT, ReceiptExtractor().extract(text))
