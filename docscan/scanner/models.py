"""
Scanner Data Classes.

Options, progress and history of gallery scans.

Author: ML Engineering Team
"""

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from config import get_config
from ..utils.exceptions import ConfigurationError


class ScanState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    COMPLETED = "completed"
    STOPPED = "stopped"
    ABORTED = "aborted"


@dataclass(frozen=True)
class ScanOptions:
    """
    Read-only settings snapshot for one scan.

    Attributes:
        batch_size: Maximum assets per batch
        min_file_size_kb: Smallest image considered, in KB
        max_file_size_kb: Largest image considered, in KB
        max_aspect_ratio: Longest-to-shortest side limit
        wifi_only: Require an unmetered network
        battery_saver: Refuse to start on low battery unless charging
        smart_filter_enabled: Rank and filter assets before OCR
        scan_new_only: Only assets created after the last completed scan
        max_retries: Retry budget per failed asset
    """
    batch_size: int = 20
    min_file_size_kb: float = 100
    max_file_size_kb: float = 50 * 1024
    max_aspect_ratio: float = 3.0
    wifi_only: bool = False
    battery_saver: bool = True
    smart_filter_enabled: bool = True
    scan_new_only: bool = False
    max_retries: int = 3

    def __post_init__(self):
        if self.batch_size < 1:
            raise ConfigurationError("batch_size must be at least 1", {"batch_size": self.batch_size})
        if self.max_retries < 0:
            raise ConfigurationError("max_retries cannot be negative", {"max_retries": self.max_retries})

    @classmethod
    def from_config(cls, **overrides) -> 'ScanOptions':
        """
        Snapshot the ``scan`` configuration section.

        Args:
            **overrides: Field values taking precedence over configuration;
                None values are ignored.
        """
        values = {}
        for f in fields(cls):
            configured = get_config(f"scan.{f.name}")
            if configured is not None:
                values[f.name] = configured
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def with_changes(self, **changes) -> 'ScanOptions':
        return replace(self, **changes)


@dataclass
class ScanProgress:
    """
    Checkpointed scan position.

    ``last_processed_asset_id`` marks the end of the contiguous visited
    prefix of the sorted asset list; ``pending_asset_ids`` lists assets
    visited after it out of order, so a resumed scan skips them.
    """
    total_assets: int = 0
    processed_assets: int = 0
    last_scan_time: Optional[float] = None
    last_processed_asset_id: Optional[str] = None
    is_scanning: bool = False
    pending_asset_ids: List[str] = field(default_factory=list)

    def snapshot(self) -> 'ScanProgress':
        return replace(self, pending_asset_ids=list(self.pending_asset_ids))

    @property
    def percent(self) -> float:
        if self.total_assets == 0:
            return 0.0
        return 100.0 * self.processed_assets / self.total_assets

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_assets': self.total_assets,
            'processed_assets': self.processed_assets,
            'last_scan_time': self.last_scan_time,
            'last_processed_asset_id': self.last_processed_asset_id,
            'is_scanning': self.is_scanning,
            'pending_asset_ids': list(self.pending_asset_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScanProgress':
        return cls(
            total_assets=data.get('total_assets', 0),
            processed_assets=data.get('processed_assets', 0),
            last_scan_time=data.get('last_scan_time'),
            last_processed_asset_id=data.get('last_processed_asset_id'),
            is_scanning=data.get('is_scanning', False),
            pending_asset_ids=list(data.get('pending_asset_ids', [])),
        )


@dataclass(frozen=True)
class ScanHistoryEntry:
    date: float
    assets_scanned: int
    documents_found: int
    duration_ms: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date,
            'assets_scanned': self.assets_scanned,
            'documents_found': self.documents_found,
            'duration_ms': self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScanHistoryEntry':
        return cls(data['date'], data['assets_scanned'], data['documents_found'], data['duration_ms'])


@dataclass
class ScanReport:
    """
    Outcome of one scan invocation.

    Attributes:
        state: Final state
        batch_sizes: Number of assets in each batch, in order
        processed: Assets visited, including filtered ones
        documents_found: Documents persisted
        duplicates: Assets skipped as known content
        discarded: Assets below the acceptance threshold
        filtered: Assets rejected by the filter
        failed: Assets recorded as failed
        duration_ms: Wall time
        abort_reason: Why the scan was aborted, if it was
    """
    state: ScanState = ScanState.IDLE
    batch_sizes: List[int] = field(default_factory=list)
    processed: int = 0
    documents_found: int = 0
    duplicates: int = 0
    discarded: int = 0
    filtered: int = 0
    failed: int = 0
    duration_ms: float = 0.0
    abort_reason: Optional[str] = None

    @property
    def success_rate(self) -> float:
        attempted = self.processed - self.filtered
        if attempted <= 0:
            return 1.0
        return (attempted - self.failed) / attempted
