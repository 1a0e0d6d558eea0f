"""
Output Handler Module.

Document records and the SQLite document store.
"""

from .document import DocumentRecord, EDITABLE_FIELDS
from .database_handler import DocumentStore

__all__ = [
    'DocumentRecord',
    'EDITABLE_FIELDS',
    'DocumentStore'
]
