"""
Document Store Module.

SQLite storage for document records. A document is stored at most once
per content hash: saving a record whose hash is already present returns
the stored document unchanged.

Features:
    - Automatic schema creation
    - Idempotent save by content hash
    - Editable vendor / total / currency
    - Query and statistics helpers

Author: ML Engineering Team
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from config import get_config
from ..extraction.metadata import DocumentType
from ..utils.exceptions import PersistenceError
from ..utils.helpers import ensure_directory
from ..utils.logger import get_logger
from .document import DocumentRecord, EDITABLE_FIELDS

# Initialize module logger
logger = get_logger(__name__)

_UNSET = object()

COLUMNS = (
    'id', 'image_uri', 'content_hash', 'ocr_text', 'document_type', 'metadata',
    'confidence', 'processed_at', 'keywords', 'vendor', 'total_amount', 'currency',
    'document_date',
)


class DocumentStore:
    """
    Persists DocumentRecords in SQLite.

    A connection is opened per operation, so one store can be shared by
    the scanner thread and callers.

    Attributes:
        db_path: Path to the SQLite database file

    Example:
        >>> store = DocumentStore("outputs/docscan.db")
        >>> stored = store.save_document(record)
        >>> store.find_by_hash(record.content_hash).id == stored.id
        True
    """

    TABLE = "documents"

    def __init__(self, db_path: Optional[Union[str, Path]] = None) -> None:
        self.db_path = Path(db_path or get_config("paths.database", "outputs/docscan.db"))
        ensure_directory(self.db_path.parent)
        self._create_tables()
        logger.debug(f"DocumentStore ready (db: {self.db_path})")

    @contextmanager
    def _connect(self, operation: str) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path, timeout=10)
        except sqlite3.Error as e:
            raise PersistenceError(operation, str(e))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(operation, str(e))
        finally:
            conn.close()

    def _create_tables(self) -> None:
        with self._connect("create tables") as conn:
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.TABLE} (
                    id TEXT PRIMARY KEY,
                    image_uri TEXT NOT NULL,
                    content_hash TEXT NOT NULL UNIQUE,
                    ocr_text TEXT,
                    document_type TEXT NOT NULL,
                    metadata TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    processed_at TEXT NOT NULL,
                    keywords TEXT NOT NULL,
                    vendor TEXT,
                    total_amount REAL,
                    currency TEXT,
                    document_date TEXT
                )
            """)
            conn.execute(f"CREATE INDEX IF NOT EXISTS idx_document_type ON {self.TABLE} (document_type)")
            conn.execute(f"CREATE INDEX IF NOT EXISTS idx_vendor ON {self.TABLE} (vendor)")

    def save_document(self, record: DocumentRecord) -> DocumentRecord:
        """
        Store a record unless its content hash is already present.

        Args:
            record: Record to store.

        Returns:
            The stored document: the new one, or the existing one with the
            same content hash.

        Raises:
            PersistenceError: If the database write fails.
        """
        row = record.to_row()
        placeholders = ', '.join('?' for _ in COLUMNS)
        with self._connect("save document") as conn:
            cursor = conn.execute(
                f"INSERT OR IGNORE INTO {self.TABLE} ({', '.join(COLUMNS)}) VALUES ({placeholders})",
                tuple(row[c] for c in COLUMNS)
            )
            inserted = cursor.rowcount == 1
            stored = conn.execute(
                f"SELECT * FROM {self.TABLE} WHERE content_hash = ?", (record.content_hash,)
            ).fetchone()

        if inserted:
            logger.debug(f"Saved {record.document_type.value} document {record.id}")
        else:
            logger.debug(f"Document with hash {record.content_hash[:12]} already stored")
        return DocumentRecord.from_row(stored)

    def find_by_hash(self, content_hash: str) -> Optional[DocumentRecord]:
        with self._connect("find by hash") as conn:
            row = conn.execute(
                f"SELECT * FROM {self.TABLE} WHERE content_hash = ?", (content_hash,)
            ).fetchone()
        return DocumentRecord.from_row(row) if row else None

    def check_duplicate_by_hash(self, content_hash: str) -> bool:
        with self._connect("check duplicate") as conn:
            row = conn.execute(
                f"SELECT 1 FROM {self.TABLE} WHERE content_hash = ?", (content_hash,)
            ).fetchone()
        return row is not None

    def get_document(self, document_id: str) -> Optional[DocumentRecord]:
        with self._connect("get document") as conn:
            row = conn.execute(f"SELECT * FROM {self.TABLE} WHERE id = ?", (document_id,)).fetchone()
        return DocumentRecord.from_row(row) if row else None

    def delete_document(self, document_id: str) -> bool:
        """
        Delete a document.

        Returns:
            True if a document was deleted.
        """
        with self._connect("delete document") as conn:
            cursor = conn.execute(f"DELETE FROM {self.TABLE} WHERE id = ?", (document_id,))
        deleted = cursor.rowcount == 1
        if deleted:
            logger.info(f"Deleted document {document_id}")
        return deleted

    def update_fields(
        self,
        document_id: str,
        vendor: Any = _UNSET,
        total_amount: Any = _UNSET,
        currency: Any = _UNSET
    ) -> Optional[DocumentRecord]:
        """
        Update the user-editable fields of a document.

        Only the arguments given are changed; pass None to clear a field.

        Returns:
            The updated document, or None if it does not exist.
        """
        changes = {
            name: value
            for name, value in zip(EDITABLE_FIELDS, (vendor, total_amount, currency))
            if value is not _UNSET
        }
        if 'total_amount' in changes and changes['total_amount'] is not None:
            changes['total_amount'] = float(changes['total_amount'])
        if 'currency' in changes and changes['currency']:
            changes['currency'] = changes['currency'].upper()

        if changes:
            assignments = ', '.join(f"{name} = ?" for name in changes)
            with self._connect("update document") as conn:
                conn.execute(
                    f"UPDATE {self.TABLE} SET {assignments} WHERE id = ?",
                    (*changes.values(), document_id)
                )
        return self.get_document(document_id)

    def list_documents(
        self,
        document_type: Optional[DocumentType] = None,
        limit: Optional[int] = None
    ) -> List[DocumentRecord]:
        """Documents, newest first, optionally of one type."""
        sql = f"SELECT * FROM {self.TABLE}"
        params: list = []
        if document_type is not None:
            sql += " WHERE document_type = ?"
            params.append(document_type.value)
        sql += " ORDER BY processed_at DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        with self._connect("list documents") as conn:
            rows = conn.execute(sql, params).fetchall()
        return [DocumentRecord.from_row(row) for row in rows]

    def count_documents(self) -> int:
        with self._connect("count documents") as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {self.TABLE}").fetchone()[0]

    def get_statistics(self) -> Dict[str, Any]:
        """
        Aggregate statistics.

        Returns:
            Dictionary with 'total', 'by_type' counts, 'totals_by_currency'
            sums and 'average_confidence'.
        """
        with self._connect("statistics") as conn:
            total, avg_conf = conn.execute(
                f"SELECT COUNT(*), AVG(confidence) FROM {self.TABLE}"
            ).fetchone()
            by_type = dict(conn.execute(
                f"SELECT document_type, COUNT(*) FROM {self.TABLE} GROUP BY document_type"
            ).fetchall())
            by_currency = dict(conn.execute(
                f"SELECT currency, ROUND(SUM(total_amount), 2) FROM {self.TABLE} "
                f"WHERE currency IS NOT NULL AND total_amount IS NOT NULL GROUP BY currency"
            ).fetchall())

        return {
            'total': total,
            'by_type': by_type,
            'totals_by_currency': by_currency,
            'average_confidence': round(avg_conf, 3) if avg_conf is not None else None,
        }
