"""
Keyword Extraction.

Builds the search keywords stored with each document: special tokens
(emails, reference numbers, amounts, company names) followed by the most
frequent non-stop-words of the text.

Author: ML Engineering Team
"""

import re
from collections import Counter
from typing import List, Optional

from config import get_config
from .metadata import ExtractedMetadata

STOP_WORDS = frozenset("""
a about above after again against all am an and any are as at be because been
before being below between both but by can could did do does doing down during
each few for from further had has have having he her here hers him his how i if
in into is it its itself just me more most my no nor not now of off on once only
or other our ours out over own same she should so some such than that the their
them then there these they this those through to too under until up very was we
were what when where which while who whom why will with would you your yours
total subtotal date page
של את על עם זה זו או גם כל לא כן אם מה
""".split())

EMAIL = re.compile(r'[\w.+-]+@[\w-]+\.[\w.-]+')
COMPANY = re.compile(r'\b([A-Z][\w&]*(?:\s+[A-Z][\w&]*)*\s+(?:Inc|LLC|Ltd|Corp|GmbH|Co)\.?)(?!\w)')
WORD = re.compile(r'[^\W\d_]{3,}')


class KeywordExtractor:
    """
    Example:
        >>> KeywordExtractor(max_keywords=3).extract("coffee coffee tea milk milk milk")
        ['milk', 'coffee', 'tea']
    """

    def __init__(self, max_keywords: Optional[int] = None) -> None:
        self.max_keywords = max_keywords or get_config("extraction.max_keywords", 20)

    def extract(self, text: str, metadata: Optional[ExtractedMetadata] = None) -> List[str]:
        """
        Args:
            text: OCR text.
            metadata: Extracted fields contributing special keywords.

        Returns:
            Distinct keywords, special tokens first.
        """
        special = self._special_keywords(text, metadata)

        counts = Counter(
            word for word in (w.lower() for w in WORD.findall(text))
            if word not in STOP_WORDS
        )
        frequent = [word for word, _ in counts.most_common(self.max_keywords)]

        return list(dict.fromkeys(special + frequent))

    @staticmethod
    def _special_keywords(text: str, metadata: Optional[ExtractedMetadata]) -> List[str]:
        special = [m.lower() for m in EMAIL.findall(text)]
        special += [m.strip() for m in COMPANY.findall(text)]

        if metadata is not None:
            if metadata.vendor:
                special.append(metadata.vendor.lower())
            if metadata.reference_number:
                special.append(metadata.reference_number)
            total = metadata.total_amount
            if total is not None:
                special.append(f"{total:.2f}")

        return special
