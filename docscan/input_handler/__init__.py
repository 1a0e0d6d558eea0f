"""
Input Handler Module.

Image preprocessing and temporary file lifecycle.
"""

from .image_processor import ImagePreprocessor, PreparedImage, content_hash
from .temp_files import TempFileTracker, TempFileRegistry

__all__ = [
    'ImagePreprocessor',
    'PreparedImage',
    'content_hash',
    'TempFileTracker',
    'TempFileRegistry'
]
