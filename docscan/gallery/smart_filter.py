"""
Smart Filter.

Decides, from asset metadata alone, whether an image is worth the cost of
OCR and how urgently. Priority starts at 5 and is raised by document-like
names and folders; anything scoring 8 or more is always processed, even
when an exclusion rule would otherwise reject it.

Rules, in evaluation order:
    1. Priority >= 8: accept
    2. Exclusions (first match rejects): skip pattern, aspect ratio,
       date range, MIME type, screenshot
    3. Inclusions: file size within bounds

Author: ML Engineering Team
"""

import os
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from dateutil import parser as date_parser

from config import get_config
from ..utils.helpers import uri_to_path
from ..utils.logger import get_logger
from .asset import Asset

# Initialize module logger
logger = get_logger(__name__)


PRIORITY_KEYWORDS = [
    'doc', 'document', 'receipt', 'scan', 'invoice', 'bill', 'contract', 'form',
    'id', 'passport', 'license', 'certificate', 'report', 'statement', 'letter',
    'memo', 'pdf',
]

SKIP_PATTERNS = [
    r'meme', r'gif$', r'wallpaper', r'selfie', r'thumbnail', r'\.thumb\.', r'cache',
    r'temp', r'whatsapp.*images', r'facebook', r'instagram', r'snapchat', r'twitter',
    r'telegram',
]

DOCUMENT_FOLDERS = ['documents', 'downloads', 'scans', 'receipts', 'invoices']

SCREENSHOT_PATTERNS = [
    re.compile(r'screenshot', re.IGNORECASE),
    re.compile(r'screen\s*shot', re.IGNORECASE),
    re.compile(r'screen\s*capture', re.IGNORECASE),
]
# Anchored to the filename
SCREENSHOT_NAME_PATTERNS = [
    re.compile(r'^img_\d+', re.IGNORECASE),
    re.compile(r'^photo_\d{4}-\d{2}-\d{2}', re.IGNORECASE),
]

SCREEN_SIZES = [
    (1080, 1920),
    (1440, 2560),
    (1125, 2436),
    (1242, 2688),
    (828, 1792),
    (1170, 2532),
    (1284, 2778),
]

# (ratio, tolerance); tolerances of A4 and Letter come from configuration
A4_RATIO = 1.414
LETTER_RATIO = 1.294

DATE_IN_NAME = re.compile(r'\d{4}-\d{2}-\d{2}')
NUMBERED_DOCUMENT = re.compile(r'(?:invoice|receipt)[\s_-]?\d+', re.IGNORECASE)

HIGH_PRIORITY = 8
MAX_PRIORITY = 10
BASE_PRIORITY = 5


def _keyword_pattern(keyword: str) -> re.Pattern:
    # Short keywords need a right boundary too, or "id" would match "video"
    if len(keyword) <= 3:
        return re.compile(rf'(?<![a-z]){re.escape(keyword)}(?![a-z])')
    return re.compile(rf'(?<![a-z]){re.escape(keyword)}')


def _parse_timestamp(value) -> Optional[float]:
    if value is None or value == '':
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return date_parser.parse(str(value)).timestamp()


@dataclass(frozen=True)
class FilterDecision:
    should_process: bool
    priority: int
    reason: str = ""


@dataclass(frozen=True)
class FilterOptions:
    """
    Smart filter settings.

    Attributes:
        min_file_size_kb: Smallest accepted file, in KB
        max_file_size_kb: Largest accepted file, in KB
        max_aspect_ratio: Longest-to-shortest side limit
        include_screenshots: Whether screenshots are eligible
        date_start: Earliest accepted creation timestamp
        date_end: Latest accepted creation timestamp
        excluded_mime_types: MIME types always rejected
        document_ratio_tolerance: Tolerance for A4 and Letter ratios
        square_ratio_tolerance: Tolerance for square documents
        probe_file_size: Stat local files whose size the source did not report
    """
    min_file_size_kb: float = 100
    max_file_size_kb: float = 50 * 1024
    max_aspect_ratio: float = 3.0
    include_screenshots: bool = False
    date_start: Optional[float] = None
    date_end: Optional[float] = None
    excluded_mime_types: Tuple[str, ...] = ('image/gif',)
    document_ratio_tolerance: float = 0.05
    square_ratio_tolerance: float = 0.1
    probe_file_size: bool = True

    @classmethod
    def from_config(cls, scan_options=None) -> 'FilterOptions':
        """
        Build options from the ``filter`` section, taking size and aspect
        limits from a ScanOptions snapshot when given.
        """
        defaults = cls()
        kwargs = dict(
            include_screenshots=get_config("filter.include_screenshots", defaults.include_screenshots),
            date_start=_parse_timestamp(get_config("filter.date_range.start")),
            date_end=_parse_timestamp(get_config("filter.date_range.end")),
            excluded_mime_types=tuple(get_config("filter.excluded_mime_types", defaults.excluded_mime_types)),
            document_ratio_tolerance=get_config("filter.document_ratio_tolerance", defaults.document_ratio_tolerance),
            square_ratio_tolerance=get_config("filter.square_ratio_tolerance", defaults.square_ratio_tolerance),
        )
        if scan_options is not None:
            kwargs.update(
                min_file_size_kb=scan_options.min_file_size_kb,
                max_file_size_kb=scan_options.max_file_size_kb,
                max_aspect_ratio=scan_options.max_aspect_ratio,
            )
        return cls(**kwargs)


class SmartFilter:
    """
    Scores and admits assets before any expensive work.

    Example:
        >>> smart_filter = SmartFilter(FilterOptions())
        >>> smart_filter.evaluate(Asset("/sdcard/Receipts/receipt_042.jpg", "receipt_042.jpg"))
        FilterDecision(should_process=True, priority=10, reason='high priority')
    """

    def __init__(self, options: Optional[FilterOptions] = None) -> None:
        self.options = options or FilterOptions.from_config()
        self._keywords = [_keyword_pattern(k) for k in PRIORITY_KEYWORDS]
        self._skip = [re.compile(p, re.IGNORECASE) for p in SKIP_PATTERNS]
        self._document_ratios = [
            (A4_RATIO, self.options.document_ratio_tolerance),
            (LETTER_RATIO, self.options.document_ratio_tolerance),
            (1.0, self.options.square_ratio_tolerance),
        ]

    def evaluate(self, asset: Asset) -> FilterDecision:
        """
        Decide whether to process an asset.

        Args:
            asset: Asset metadata.

        Returns:
            FilterDecision; rejected assets have priority 0.
        """
        priority = self.calculate_priority(asset)
        if priority >= HIGH_PRIORITY:
            return FilterDecision(True, priority, "high priority")

        rejection = self._check_exclusions(asset)
        if rejection:
            return FilterDecision(False, 0, rejection)

        rejection = self._check_file_size(asset)
        if rejection:
            return FilterDecision(False, 0, rejection)

        if self.is_document_ratio(asset):
            return FilterDecision(True, priority, "document-like aspect ratio")
        return FilterDecision(True, priority, "accepted")

    def basic_check(self, asset: Asset) -> FilterDecision:
        """
        Minimal gate used when smart filtering is disabled: skip patterns,
        aspect ratio and file size only, without prioritization.
        """
        for rule in (self._check_skip_patterns, self._check_aspect_ratio, self._check_file_size):
            rejection = rule(asset)
            if rejection:
                return FilterDecision(False, 0, rejection)
        return FilterDecision(True, BASE_PRIORITY, "basic filter")

    def rank(self, assets: List[Asset]) -> List[Tuple[Asset, FilterDecision]]:
        """
        Evaluate assets and order the admitted ones by descending priority.

        Ties keep the input order.
        """
        decisions = [(asset, self.evaluate(asset)) for asset in assets]
        admitted = [(a, d) for a, d in decisions if d.should_process]
        admitted.sort(key=lambda pair: -pair[1].priority)
        return admitted

    def calculate_priority(self, asset: Asset) -> int:
        filename = (asset.filename or "").lower()
        path = _normalized_path(asset.uri)

        priority = BASE_PRIORITY
        if any(p.search(filename) or p.search(path) for p in self._keywords):
            priority += 3
        if any(f"/{folder}/" in path for folder in DOCUMENT_FOLDERS):
            priority += 2
        if DATE_IN_NAME.search(filename):
            priority += 1
        if NUMBERED_DOCUMENT.search(filename):
            priority += 2
        if self.options.include_screenshots and self.is_screenshot(asset):
            priority += 1

        return min(priority, MAX_PRIORITY)

    def is_screenshot(self, asset: Asset) -> bool:
        filename = (asset.filename or "").lower()
        path = _normalized_path(asset.uri)

        if any(p.search(filename) or p.search(path) for p in SCREENSHOT_PATTERNS):
            return True
        if any(p.search(filename) for p in SCREENSHOT_NAME_PATTERNS):
            return True
        size = (asset.width, asset.height)
        return any(size == s or size == (s[1], s[0]) for s in SCREEN_SIZES)

    def is_document_ratio(self, asset: Asset) -> bool:
        ratio = asset.aspect_ratio
        if ratio is None:
            return False
        return any(abs(ratio - target) < tolerance for target, tolerance in self._document_ratios)

    # -------------------------------------------------------------------------
    # Rules; each returns a rejection reason or None
    # -------------------------------------------------------------------------

    def _check_exclusions(self, asset: Asset) -> Optional[str]:
        for rule in (
            self._check_skip_patterns,
            self._check_aspect_ratio,
            self._check_date_range,
            self._check_mime_type,
            self._check_screenshot,
        ):
            rejection = rule(asset)
            if rejection:
                return rejection
        return None

    def _check_skip_patterns(self, asset: Asset) -> Optional[str]:
        filename = (asset.filename or "").lower()
        path = _normalized_path(asset.uri)
        for pattern in self._skip:
            if pattern.search(filename) or pattern.search(path):
                return f"matched skip pattern '{pattern.pattern}'"
        return None

    def _check_aspect_ratio(self, asset: Asset) -> Optional[str]:
        ratio = asset.aspect_ratio
        if ratio is not None and ratio > self.options.max_aspect_ratio:
            return f"aspect ratio {ratio:.2f} exceeds maximum {self.options.max_aspect_ratio}"
        return None

    def _check_date_range(self, asset: Asset) -> Optional[str]:
        start, end = self.options.date_start, self.options.date_end
        if (start is not None and asset.created_at < start) or (end is not None and asset.created_at > end):
            return "outside date range"
        return None

    def _check_mime_type(self, asset: Asset) -> Optional[str]:
        if asset.mime_type and asset.mime_type.lower() in self.options.excluded_mime_types:
            return f"excluded MIME type {asset.mime_type}"
        return None

    def _check_screenshot(self, asset: Asset) -> Optional[str]:
        if not self.options.include_screenshots and self.is_screenshot(asset):
            return "screenshot excluded"
        return None

    def _check_file_size(self, asset: Asset) -> Optional[str]:
        size = asset.file_size
        if size is None and self.options.probe_file_size:
            size = _probe_size(asset.uri)
        if size is None:
            return None

        size_kb = size / 1024
        if size_kb < self.options.min_file_size_kb:
            return f"file size {size_kb:.1f}KB below minimum {self.options.min_file_size_kb}KB"
        if size_kb > self.options.max_file_size_kb:
            return f"file size {size_kb:.1f}KB exceeds maximum {self.options.max_file_size_kb}KB"
        return None


def _normalized_path(uri: str) -> str:
    return (uri or "").replace('\\', '/').lower()


def _probe_size(uri: str) -> Optional[int]:
    path = uri_to_path(uri)
    if path is None:
        return None
    try:
        return os.path.getsize(path)
    except OSError:
        return None
