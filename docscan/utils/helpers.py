"""
Helper Utilities Module.

Small, generic functions shared across the scanner.

Functions:
    - ensure_directory: Create directory if it doesn't exist
    - format_file_size: Human-readable byte counts
    - clamp: Bound a number to an interval
    - translate_digits: Map Arabic-Indic and Persian digits to ASCII
    - rtl_ratio / text_direction: Detect right-to-left scripts
    - is_local_uri / uri_to_path: Resolve file URIs to paths
"""

import re
from pathlib import Path
from typing import Optional, Union
from urllib.parse import unquote, urlparse


_RTL_CHARS = re.compile(r"[\u0590-\u05FF\u0600-\u06FF\u0750-\u077F\uFB1D-\uFDFF\uFE70-\uFEFF]")
_LETTER_CHARS = re.compile(r'[^\W\d_]')

_DIGIT_TABLE = str.maketrans(
    "\u0660\u0661\u0662\u0663\u0664\u0665\u0666\u0667\u0668\u0669"
    "\u06F0\u06F1\u06F2\u06F3\u06F4\u06F5\u06F6\u06F7\u06F8\u06F9",
    "01234567890123456789"
)


def ensure_directory(path: Union[str, Path]) -> Path:
    """
    Ensure a directory exists, creating it and its parents if necessary.

    Args:
        path: Directory path to ensure exists.

    Returns:
        Path object pointing to the directory.
    """
    dir_path = Path(path)
    dir_path.mkdir(parents=True, exist_ok=True)
    return dir_path


def format_file_size(size_bytes: float) -> str:
    """
    Format file size in human-readable format.

    Example:
        >>> format_file_size(1536)
        '1.5 KB'
    """
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size_bytes < 1024.0:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} TB"


def clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    """Bound value to [lower, upper]."""
    return max(lower, min(upper, value))


def translate_digits(text: str) -> str:
    """
    Replace Arabic-Indic and Persian digits with ASCII digits.

    Example:
        >>> translate_digits("١٥/٠٣/٢٠٢٤")
        '15/03/2024'
    """
    return text.translate(_DIGIT_TABLE)


def rtl_ratio(text: str) -> float:
    """
    Share of letters in text that belong to right-to-left scripts.

    Args:
        text: Any text.

    Returns:
        Ratio in [0, 1]; 0.0 when the text has no letters.
    """
    letters = _LETTER_CHARS.findall(text)
    if not letters:
        return 0.0
    rtl = sum(1 for ch in letters if _RTL_CHARS.match(ch))
    return rtl / len(letters)


def text_direction(text: str, threshold: float = 0.7) -> str:
    """
    Classify text as 'rtl', 'ltr' or 'mixed'.

    Text is 'rtl' when more than ``threshold`` of its letters are Hebrew or
    Arabic, 'ltr' when none are, 'mixed' otherwise.
    """
    ratio = rtl_ratio(text)
    if ratio > threshold:
        return 'rtl'
    if ratio == 0.0:
        return 'ltr'
    return 'mixed'


def is_local_uri(uri: str) -> bool:
    """True for plain filesystem paths and ``file://`` URIs."""
    scheme = urlparse(uri).scheme
    # Windows drive letters parse as one-letter schemes
    return scheme in ('', 'file') or len(scheme) == 1


def uri_to_path(uri: str) -> Optional[Path]:
    """
    Resolve a local URI to a filesystem path.

    Returns:
        The path, or None for non-local URIs.
    """
    if not is_local_uri(uri):
        return None
    parsed = urlparse(uri)
    if parsed.scheme == 'file':
        return Path(unquote(parsed.path))
    return Path(uri)
