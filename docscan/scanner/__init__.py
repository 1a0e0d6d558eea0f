"""
Scanner Module.

Batch scheduling, the per-asset pipeline and the durable scan state that
together ingest an image collection into the document store.
"""

from .models import ScanState, ScanOptions, ScanProgress, ScanHistoryEntry, ScanReport
from .resource_monitor import PressureLevel, DeviceStatus, ResourceMonitor, PsutilResourceMonitor
from .state_store import ProgressStore
from .progress import ProgressChannel
from .pipeline import AssetPipeline, AssetOutcome, OutcomeStatus, compose_confidence
from .scheduler import BatchScheduler

__all__ = [
    'ScanState',
    'ScanOptions',
    'ScanProgress',
    'ScanHistoryEntry',
    'ScanReport',
    'PressureLevel',
    'DeviceStatus',
    'ResourceMonitor',
    'PsutilResourceMonitor',
    'ProgressStore',
    'ProgressChannel',
    'AssetPipeline',
    'AssetOutcome',
    'OutcomeStatus',
    'compose_confidence',
    'BatchScheduler'
]
