"""
Utility Module for the Document Scanner.

Provides logging configuration, the exception hierarchy and small helpers
used by every other package.
"""

from .logger import setup_logger, setup_logger_from_config, get_logger
from .helpers import ensure_directory, format_file_size, clamp, text_direction

__all__ = [
    'setup_logger',
    'setup_logger_from_config',
    'get_logger',
    'ensure_directory',
    'format_file_size',
    'clamp',
    'text_direction'
]
