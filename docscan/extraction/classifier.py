"""
Document Type Classifier.

Scores OCR text against a keyword set per document type. The best-scoring
type wins when its score exceeds a minimum threshold; otherwise filename
and layout heuristics decide, falling back to UNKNOWN.

Author: ML Engineering Team
"""

import re
from typing import Dict, Optional, Tuple

from config import get_config
from ..utils.logger import get_logger
from .metadata import DocumentType

# Initialize module logger
logger = get_logger(__name__)


TYPE_KEYWORDS = {
    DocumentType.RECEIPT: [
        'receipt', 'total', 'subtotal', 'tax', 'payment', 'cash', 'change', 'sale',
        'קבלה', 'סה"כ', 'מזומן',
    ],
    DocumentType.INVOICE: [
        'invoice', 'bill to', 'due date', 'invoice number', 'net', 'gross',
        'חשבונית', 'לתשלום',
    ],
    DocumentType.ID: [
        'id', 'license', 'passport', 'identification', 'date of birth', 'expires',
        'תעודת זהות', 'דרכון',
    ],
    DocumentType.FORM: [
        'form', 'application', 'signature', 'date signed', 'checkbox', 'fill',
        'טופס', 'חתימה',
    ],
}

FILENAME_HINTS = {
    DocumentType.RECEIPT: re.compile(r'receipt', re.IGNORECASE),
    DocumentType.INVOICE: re.compile(r'invoice|bill', re.IGNORECASE),
    DocumentType.ID: re.compile(r'passport|license|licence|(?<![a-z])id(?![a-z])', re.IGNORECASE),
    DocumentType.FORM: re.compile(r'form', re.IGNORECASE),
}


def _keyword_pattern(keyword: str) -> re.Pattern:
    # Word boundaries keep short keywords such as "id" from matching inside words
    return re.compile(r'(?<!\w)' + re.escape(keyword) + r'(?!\w)', re.IGNORECASE)


class DocumentClassifier:
    """
    Keyword-based document type classifier.

    Attributes:
        threshold: Minimum keyword score for a keyword-based decision
        letter_min_lines: Line count above which unmatched text is a letter

    Example:
        >>> classifier = DocumentClassifier()
        >>> classifier.classify("RECEIPT\\nSubtotal 4.00\\nTax 0.40\\nTotal 4.40")[0]
        <DocumentType.RECEIPT: 'receipt'>
    """

    def __init__(self, threshold: Optional[int] = None, letter_min_lines: Optional[int] = None) -> None:
        self.threshold = threshold if threshold is not None else get_config("extraction.type_threshold", 2)
        self.letter_min_lines = (
            letter_min_lines if letter_min_lines is not None
            else get_config("extraction.letter_min_lines", 10)
        )
        self._patterns = {
            doc_type: [_keyword_pattern(k) for k in keywords]
            for doc_type, keywords in TYPE_KEYWORDS.items()
        }

    def score(self, text: str) -> Dict[DocumentType, int]:
        """Number of distinct keywords of each type present in text."""
        return {
            doc_type: sum(1 for pattern in patterns if pattern.search(text))
            for doc_type, patterns in self._patterns.items()
        }

    def classify(self, text: str, filename: str = "") -> Tuple[DocumentType, Dict[DocumentType, int]]:
        """
        Classify a document.

        Args:
            text: Fused OCR text.
            filename: Asset filename, used by the fallback heuristics.

        Returns:
            (document type, keyword scores)
        """
        scores = self.score(text)
        # max() keeps the first of equal scores, so declaration order breaks ties
        best_type = max(scores, key=scores.get)
        if scores[best_type] > self.threshold:
            return best_type, scores

        for doc_type, pattern in FILENAME_HINTS.items():
            if filename and pattern.search(filename):
                logger.debug(f"Classified '{filename}' as {doc_type.value} from filename")
                return doc_type, scores

        if 'screenshot' in text.lower() or 'screenshot' in filename.lower():
            return DocumentType.SCREENSHOT, scores

        lines = [line for line in text.splitlines() if line.strip()]
        if len(lines) > self.letter_min_lines:
            return DocumentType.LETTER, scores

        return DocumentType.UNKNOWN, scores
