"""
Scan State Store.

Durable checkpoint of scan state, kept in SQLite. The scan_state table
holds JSON values by key:

    scan_progress     ScanProgress as JSON
    failed_assets     map of asset URI to retry count
    scan_history      last scans, oldest evicted beyond the history limit

Content hashes already handled live in their own processed_hashes table,
one row per hash, so recording a hash never rewrites the others.

Every write is a single committed transaction, so a crash leaves the last
complete checkpoint in place.

Author: ML Engineering Team
"""

import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from config import get_config
from ..utils.exceptions import PersistenceError
from ..utils.helpers import ensure_directory
from ..utils.logger import get_logger
from .models import ScanHistoryEntry, ScanProgress

# Initialize module logger
logger = get_logger(__name__)

SCAN_PROGRESS = "scan_progress"
FAILED_ASSETS = "failed_assets"
SCAN_HISTORY = "scan_history"
ALL_KEYS = (SCAN_PROGRESS, FAILED_ASSETS, SCAN_HISTORY)


class ProgressStore:
    """
    Persists scan progress, dedup hashes, the failed-asset map and history.

    Example:
        >>> store = ProgressStore("outputs/scan_state.db")
        >>> store.save_progress(ScanProgress(total_assets=25))
        >>> store.load_progress().total_assets
        25
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None, history_limit: Optional[int] = None) -> None:
        self.db_path = Path(db_path or get_config("paths.state", "outputs/scan_state.db"))
        self.history_limit = history_limit or get_config("scan.history_limit", 50)
        ensure_directory(self.db_path.parent)
        self._execute("create table", "CREATE TABLE IF NOT EXISTS scan_state (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
        self._execute("create table", "CREATE TABLE IF NOT EXISTS processed_hashes (hash TEXT PRIMARY KEY)")

    def _execute(self, operation: str, sql: str, params: Any = (), many: bool = False) -> List[tuple]:
        try:
            conn = sqlite3.connect(self.db_path, timeout=10)
            try:
                if many:
                    conn.executemany(sql, params)
                    rows = []
                else:
                    rows = conn.execute(sql, params).fetchall()
                conn.commit()
                return rows
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(operation, str(e))

    # -------------------------------------------------------------------------
    # Raw key-value access
    # -------------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        rows = self._execute(f"read {key}", "SELECT value FROM scan_state WHERE key = ?", (key,))
        if not rows:
            return default
        return json.loads(rows[0][0])

    def set(self, key: str, value: Any) -> None:
        self._execute(
            f"write {key}",
            "INSERT OR REPLACE INTO scan_state (key, value) VALUES (?, ?)",
            (key, json.dumps(value, ensure_ascii=False))
        )

    def clear(self) -> None:
        """Remove every persisted key and processed hash."""
        placeholders = ', '.join('?' for _ in ALL_KEYS)
        self._execute("clear", f"DELETE FROM scan_state WHERE key IN ({placeholders})", ALL_KEYS)
        self._execute("clear", "DELETE FROM processed_hashes")
        logger.info("Scan state cleared")

    # -------------------------------------------------------------------------
    # Typed accessors
    # -------------------------------------------------------------------------

    def load_progress(self) -> ScanProgress:
        data = self.get(SCAN_PROGRESS)
        return ScanProgress.from_dict(data) if data else ScanProgress()

    def save_progress(self, progress: ScanProgress) -> None:
        self.set(SCAN_PROGRESS, progress.to_dict())

    def load_processed_hashes(self) -> Set[str]:
        rows = self._execute("read processed_hashes", "SELECT hash FROM processed_hashes")
        return {row[0] for row in rows}

    def save_processed_hashes(self, hashes: Iterable[str]) -> None:
        """Record hashes as processed; hashes already stored are kept."""
        self._execute(
            "write processed_hashes",
            "INSERT OR IGNORE INTO processed_hashes (hash) VALUES (?)",
            [(h,) for h in hashes],
            many=True
        )

    def add_processed_hash(self, content_hash: str) -> None:
        self._execute(
            "write processed_hashes",
            "INSERT OR IGNORE INTO processed_hashes (hash) VALUES (?)",
            (content_hash,)
        )

    def count_processed_hashes(self) -> int:
        return self._execute("count processed_hashes", "SELECT COUNT(*) FROM processed_hashes")[0][0]

    def load_failed_assets(self) -> Dict[str, int]:
        return dict(self.get(FAILED_ASSETS, {}))

    def save_failed_assets(self, failed: Dict[str, int]) -> None:
        self.set(FAILED_ASSETS, failed)

    def load_history(self) -> List[ScanHistoryEntry]:
        return [ScanHistoryEntry.from_dict(item) for item in self.get(SCAN_HISTORY, [])]

    def append_history(self, entry: ScanHistoryEntry) -> List[ScanHistoryEntry]:
        """Append an entry, evicting the oldest beyond the history limit."""
        history = self.load_history()
        history.append(entry)
        history = history[-self.history_limit:]
        self.set(SCAN_HISTORY, [h.to_dict() for h in history])
        return history

    def get_statistics(self, max_retries: int) -> Dict[str, Any]:
        """
        Aggregate scan history and the failed-asset map.

        Args:
            max_retries: Retry budget used to split retryable from exhausted
                failures.

        Returns:
            Dictionary with scan counts, totals, average duration, last scan
            date, failed asset counts and overall success rate.
        """
        history = self.load_history()
        failed = self.load_failed_assets()

        total_assets = sum(h.assets_scanned for h in history)
        durations = [h.duration_ms for h in history]
        success_rate = 1.0
        if total_assets:
            success_rate = max(0.0, 1.0 - len(failed) / total_assets)

        return {
            'total_scans': len(history),
            'total_assets_scanned': total_assets,
            'total_documents_found': sum(h.documents_found for h in history),
            'average_duration_ms': sum(durations) / len(durations) if durations else 0.0,
            'last_scan_date': history[-1].date if history else None,
            'failed_assets': len(failed),
            'retryable_assets': sum(1 for count in failed.values() if count < max_retries),
            'exhausted_assets': sum(1 for count in failed.values() if count >= max_retries),
            'processed_hashes': self.count_processed_hashes(),
            'success_rate': success_rate,
        }
