"""
Batch Scheduler.

Drives a scan over the whole asset collection as a resumable state machine:

    IDLE → SCANNING → COMPLETED | STOPPED | ABORTED

Assets are enumerated once, sorted newest first and consumed in batches.
Within a batch the smart filter admits and ranks assets; each admitted
asset runs through the AssetPipeline. Memory pressure is checked before
every asset: LOW triggers cleanup and a pause, CRITICAL aborts the scan.
The batch size grows while memory is healthy and halves under pressure.

Every mutation of the scan state (position, processed hashes, failed
assets) is checkpointed to the ProgressStore, so a stopped or crashed
scan resumes after the last visited asset without reprocessing.

Only one scan runs per process.

Author: ML Engineering Team
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from config import get_config
from ..gallery.asset import Asset, AssetQuery, AssetSource
from ..gallery.smart_filter import FilterOptions, SmartFilter
from ..utils.exceptions import (
    CriticalMemoryPressure,
    DeviceConditionError,
    PermissionDeniedError,
)
from ..utils.logger import get_logger
from .models import ScanHistoryEntry, ScanOptions, ScanProgress, ScanReport, ScanState
from .pipeline import AssetOutcome, AssetPipeline, OutcomeStatus
from .progress import ProgressCallback, ProgressChannel
from .resource_monitor import PressureLevel, ResourceMonitor
from .state_store import ProgressStore

# Initialize module logger
logger = get_logger(__name__)

# Held for the duration of any scan or retry in this process
_ACTIVE_SCAN = threading.Lock()


@dataclass
class _ScanContext:
    """Mutable state of one running scan."""
    options: ScanOptions
    smart_filter: SmartFilter
    progress: ScanProgress
    processed_hashes: Set[str]
    failed_assets: Dict[str, int]
    report: ScanReport = field(default_factory=ScanReport)
    is_retry: bool = False
    assets: List[Asset] = field(default_factory=list)
    prefix: int = 0
    positions: Dict[str, int] = field(default_factory=dict)
    visited_ahead: Set[str] = field(default_factory=set)
    assets_since_pause: int = 0


class BatchScheduler:
    """
    Resumable, resource-aware scan driver.

    Example:
        >>> scheduler = BatchScheduler(source, pipeline, ProgressStore(), PsutilResourceMonitor())
        >>> scheduler.subscribe(lambda p: print(f"{p.percent:.0f}%"))
        >>> report = scheduler.start_scan()
        >>> report.state
        <ScanState.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        source: AssetSource,
        pipeline: AssetPipeline,
        state_store: ProgressStore,
        monitor: ResourceMonitor,
        channel: Optional[ProgressChannel] = None,
        options: Optional[ScanOptions] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time
    ) -> None:
        self.source = source
        self.pipeline = pipeline
        self.state_store = state_store
        self.monitor = monitor
        self.channel = channel or ProgressChannel()
        self.options = options or ScanOptions.from_config()
        self._sleep = sleep
        self._clock = clock

        self.min_batch_size = get_config("scan.min_batch_size", 5)
        self.batch_growth = get_config("scan.batch_growth", 5)
        self.settle_delay = get_config("scan.settle_delay", 0.05)
        self.long_pause_every = get_config("scan.long_pause_every", 5)
        self.long_pause = get_config("scan.long_pause", 0.5)
        self.low_memory_pause = get_config("scan.low_memory_pause", 5.0)
        self.critical_memory_pause = get_config("scan.critical_memory_pause", 10.0)

        self._state = ScanState.IDLE
        self._progress = self.state_store.load_progress()
        self._progress.is_scanning = False
        self._progress_lock = threading.Lock()
        self._stop_event = threading.Event()
        self.last_report: Optional[ScanReport] = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def is_scanning(self) -> bool:
        return self._state == ScanState.SCANNING

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """Register a progress subscriber; returns the unsubscribe function."""
        return self.channel.subscribe(callback)

    def get_progress(self) -> ScanProgress:
        """Snapshot of the current progress."""
        with self._progress_lock:
            return self._progress.snapshot()

    def start_scan(self, options: Optional[ScanOptions] = None) -> Optional[ScanReport]:
        """
        Run a full scan in the calling thread.

        Args:
            options: Settings for this scan; defaults to the scheduler's.

        Returns:
            ScanReport, or None when a scan is already running.

        Raises:
            PermissionDeniedError: The asset source refuses access.
            DeviceConditionError: Battery or network policy forbids scanning.
        """
        options = self._acquire(options)
        if options is None:
            return None
        return self._execute(self._scan, options)

    def start_scan_in_background(self, options: Optional[ScanOptions] = None) -> Optional[threading.Thread]:
        """
        Start a scan on a worker thread. Preconditions are checked in the
        calling thread; the report is available as ``last_report``.

        Returns:
            The started thread, or None when a scan is already running.
        """
        options = self._acquire(options)
        if options is None:
            return None
        thread = threading.Thread(
            target=self._execute, args=(self._scan, options), name="docscan-scanner", daemon=True
        )
        thread.start()
        return thread

    def retry_failed_assets(self, options: Optional[ScanOptions] = None) -> Optional[ScanReport]:
        """
        Reprocess assets in the failed map that still have retry budget.

        Returns:
            ScanReport, or None when a scan is already running.
        """
        options = self._acquire(options)
        if options is None:
            return None
        return self._execute(self._retry, options)

    def stop(self) -> None:
        """Request a stop; honored before the next asset or batch."""
        if self.is_scanning:
            logger.info("Stop requested")
        self._stop_event.set()

    def clear_progress(self) -> None:
        """
        Forget scan position, processed hashes, failed assets and history.

        Raises:
            RuntimeError: A scan is running.
        """
        if self.is_scanning:
            raise RuntimeError("Cannot clear progress while a scan is running")
        self.state_store.clear()
        with self._progress_lock:
            self._progress = ScanProgress()
        self._state = ScanState.IDLE

    def get_statistics(self) -> Dict[str, Any]:
        """Scan statistics under this scheduler's retry budget."""
        return self.state_store.get_statistics(self.options.max_retries)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _acquire(self, options: Optional[ScanOptions]) -> Optional[ScanOptions]:
        """Check preconditions and take the process-wide scan lock."""
        if _ACTIVE_SCAN.locked():
            logger.warning("A scan is already running; start request ignored")
            return None

        options = options or self.options
        self._check_preconditions(options)

        if not _ACTIVE_SCAN.acquire(blocking=False):
            logger.warning("A scan is already running; start request ignored")
            return None
        self._stop_event.clear()
        self._state = ScanState.SCANNING
        return options

    def _check_preconditions(self, options: ScanOptions) -> None:
        if not self.source.has_permission():
            raise PermissionDeniedError(self.source.name)
        reason = self.monitor.check_device_conditions(options.wifi_only, options.battery_saver)
        if reason:
            raise DeviceConditionError(reason, {"wifi_only": options.wifi_only, "battery_saver": options.battery_saver})

    def _execute(self, body: Callable[['_ScanContext'], None], options: ScanOptions) -> ScanReport:
        started = self._clock()
        try:
            ctx = self._new_context(options)
        except Exception:
            self._state = ScanState.IDLE
            _ACTIVE_SCAN.release()
            raise

        try:
            body(ctx)
        except CriticalMemoryPressure as e:
            ctx.report.state = ScanState.ABORTED
            ctx.report.abort_reason = str(e)
            logger.error(f"Scan aborted: {e}")
        except Exception as e:
            ctx.report.state = ScanState.ABORTED
            ctx.report.abort_reason = repr(e)
            logger.exception("Scan aborted by unexpected error")
            raise
        finally:
            try:
                self._finish(ctx, started)
            finally:
                self._state = ctx.report.state
                self.last_report = ctx.report
                _ACTIVE_SCAN.release()
        return ctx.report

    def _new_context(self, options: ScanOptions) -> _ScanContext:
        progress = self.state_store.load_progress()
        progress.is_scanning = True
        return _ScanContext(
            options=options,
            smart_filter=SmartFilter(FilterOptions.from_config(options)),
            progress=progress,
            processed_hashes=self.state_store.load_processed_hashes(),
            failed_assets=self.state_store.load_failed_assets(),
            report=ScanReport(state=ScanState.SCANNING),
        )

    def _finish(self, ctx: _ScanContext, started: float) -> None:
        report = ctx.report
        if report.state == ScanState.SCANNING:
            report.state = ScanState.COMPLETED
        report.duration_ms = (self._clock() - started) * 1000

        progress = ctx.progress
        progress.is_scanning = False
        if report.state == ScanState.COMPLETED and not ctx.is_retry:
            progress.last_scan_time = started
            progress.last_processed_asset_id = None
            progress.pending_asset_ids = []
        self._checkpoint(ctx)
        self.channel.publish(progress, force=True)

        if not ctx.is_retry:
            self.state_store.append_history(
                ScanHistoryEntry(started, report.processed, report.documents_found, report.duration_ms)
            )
        released = self.pipeline.temp_registry.release_all()
        if released:
            logger.debug(f"Released {released} leftover temporary files")

        logger.info(
            f"Scan {report.state.value}: {report.processed} visited, "
            f"{report.documents_found} documents, {report.duplicates} duplicates, "
            f"{report.discarded} discarded, {report.filtered} filtered, {report.failed} failed "
            f"in {report.duration_ms / 1000:.1f}s"
        )

    # -------------------------------------------------------------------------
    # Scan loop
    # -------------------------------------------------------------------------

    def _scan(self, ctx: _ScanContext) -> None:
        options = ctx.options
        progress = ctx.progress

        query = None
        if options.scan_new_only and progress.last_scan_time is not None:
            query = AssetQuery(created_after=progress.last_scan_time)
        assets = self._enumerate(query)
        ctx.assets = assets

        prefix = self._resume_index(assets, progress)
        positions = {asset.uri: i for i, asset in enumerate(assets)}
        if progress.last_processed_asset_id and prefix == 0:
            visited_ahead = set()
        else:
            visited_ahead = {uri for uri in progress.pending_asset_ids if positions.get(uri, -1) >= prefix}
        ctx.prefix = prefix
        ctx.positions = positions
        ctx.visited_ahead = visited_ahead

        progress.last_processed_asset_id = assets[prefix - 1].uri if prefix else None
        progress.total_assets = len(assets)
        progress.processed_assets = prefix + len(visited_ahead)
        progress.pending_asset_ids = sorted(visited_ahead, key=positions.get)
        self._checkpoint(ctx)
        self._publish(ctx, force=True)
        if prefix:
            logger.info(f"Resuming scan at asset {prefix + 1} of {len(assets)}")
        else:
            logger.info(f"Scanning {len(assets)} assets")

        max_batch = options.batch_size
        min_batch = min(self.min_batch_size, max_batch)
        batch_size = max_batch
        if self.monitor.memory_pressure() != PressureLevel.NORMAL:
            batch_size = max(min_batch, batch_size // 2)

        index = prefix
        while index < len(assets):
            if self._stop_requested(ctx):
                return

            batch = assets[index:index + batch_size]
            index += len(batch)
            ctx.report.batch_sizes.append(len(batch))

            pending = [a for a in batch if a.uri not in visited_ahead]
            for asset in self._order_batch(ctx, pending):
                if self._stop_requested(ctx):
                    return
                self._check_memory()

                outcome = self.pipeline.process(
                    asset, options,
                    filter_applied=options.smart_filter_enabled,
                    known_hashes=ctx.processed_hashes,
                    smart_filter=ctx.smart_filter,
                )
                self._apply_outcome(ctx, outcome)
                self._mark_visited(ctx, asset)
                self._pace(ctx)

            self._checkpoint(ctx)
            batch_size = self._next_batch_size(batch_size, min_batch, max_batch)

    def _enumerate(self, query: Optional[AssetQuery]) -> List[Asset]:
        """List assets once, dropping repeated URIs, newest first."""
        seen = set()
        unique = []
        for asset in self.source.list_assets(query):
            if asset.uri in seen:
                continue
            seen.add(asset.uri)
            if query and query.created_after is not None and asset.created_at <= query.created_after:
                continue
            unique.append(asset)
        unique.sort(key=lambda a: a.created_at, reverse=True)
        return unique

    @staticmethod
    def _resume_index(assets: List[Asset], progress: ScanProgress) -> int:
        last_id = progress.last_processed_asset_id
        if last_id is None:
            return 0
        for i, asset in enumerate(assets):
            if asset.uri == last_id:
                return i + 1
        logger.info(f"Resume point {last_id} no longer present; starting over")
        return 0

    def _order_batch(self, ctx: _ScanContext, batch: List[Asset]) -> List[Asset]:
        """Admit and rank a batch; rejected assets are marked visited."""
        if not ctx.options.smart_filter_enabled:
            return batch

        admitted = ctx.smart_filter.rank(batch)
        admitted_uris = {asset.uri for asset, _ in admitted}
        for asset in batch:
            if asset.uri not in admitted_uris:
                ctx.report.filtered += 1
                self._mark_visited(ctx, asset)
        ordered = []
        for asset, decision in admitted:
            logger.debug(f"{asset.filename}: priority {decision.priority} ({decision.reason})")
            ordered.append(asset)
        return ordered

    def _check_memory(self) -> None:
        level = self.monitor.memory_pressure()
        if level == PressureLevel.CRITICAL:
            available = self.monitor.status().available_memory_mb
            logger.error("Critical memory pressure; emergency cleanup")
            self.monitor.request_cleanup(emergency=True)
            self._sleep(self.critical_memory_pause)
            raise CriticalMemoryPressure(available)
        if level == PressureLevel.LOW:
            logger.warning("Low memory; cleaning up before next asset")
            self.monitor.request_cleanup()
            self._sleep(self.low_memory_pause)

    def _next_batch_size(self, current: int, min_batch: int, max_batch: int) -> int:
        level = self.monitor.memory_pressure()
        if level == PressureLevel.NORMAL:
            size = current + self.batch_growth
        elif level == PressureLevel.LOW:
            size = current // 2
        else:
            size = min_batch
        return max(min_batch, min(max_batch, size))

    def _pace(self, ctx: _ScanContext) -> None:
        ctx.assets_since_pause += 1
        if self.long_pause_every and ctx.assets_since_pause >= self.long_pause_every:
            ctx.assets_since_pause = 0
            self._sleep(self.long_pause)
        else:
            self._sleep(self.settle_delay)

    def _stop_requested(self, ctx: _ScanContext) -> bool:
        if self._stop_event.is_set():
            ctx.report.state = ScanState.STOPPED
            logger.info("Scan stopped")
            return True
        return False

    # -------------------------------------------------------------------------
    # Retry
    # -------------------------------------------------------------------------

    def _retry(self, ctx: _ScanContext) -> None:
        ctx.is_retry = True
        max_retries = ctx.options.max_retries
        eligible = [uri for uri, count in ctx.failed_assets.items() if count < max_retries]
        logger.info(f"Retrying {len(eligible)} failed assets")

        for uri in eligible:
            if self._stop_requested(ctx):
                return
            self._check_memory()

            asset = self.source.get_asset(uri) or Asset.from_uri(uri)
            outcome = self.pipeline.process(
                asset, ctx.options, filter_applied=True, known_hashes=ctx.processed_hashes
            )
            self._apply_outcome(ctx, outcome)
            ctx.report.processed += 1
            self._publish(ctx)
            self._pace(ctx)

    # -------------------------------------------------------------------------
    # Bookkeeping
    # -------------------------------------------------------------------------

    def _apply_outcome(self, ctx: _ScanContext, outcome: AssetOutcome) -> None:
        report = ctx.report
        status = outcome.status

        if status == OutcomeStatus.FAILED:
            report.failed += 1
            self._record_failure(ctx, outcome.uri)
            return

        if status == OutcomeStatus.FILTERED:
            report.filtered += 1
        elif status == OutcomeStatus.SAVED:
            report.documents_found += 1
        elif status == OutcomeStatus.DUPLICATE:
            report.duplicates += 1
        elif status == OutcomeStatus.DISCARDED:
            report.discarded += 1

        if outcome.content_hash and outcome.content_hash not in ctx.processed_hashes:
            ctx.processed_hashes.add(outcome.content_hash)
            self.state_store.add_processed_hash(outcome.content_hash)
        if outcome.uri in ctx.failed_assets:
            del ctx.failed_assets[outcome.uri]
            self.state_store.save_failed_assets(ctx.failed_assets)

    def _record_failure(self, ctx: _ScanContext, uri: str) -> None:
        count = ctx.failed_assets.get(uri, 0)
        if count < ctx.options.max_retries:
            ctx.failed_assets[uri] = count + 1
            self.state_store.save_failed_assets(ctx.failed_assets)
        else:
            logger.warning(f"Retry budget exhausted for {uri}")

    def _mark_visited(self, ctx: _ScanContext, asset: Asset) -> None:
        """Advance the contiguous visited prefix and checkpoint the position."""
        progress = ctx.progress
        assets = ctx.assets
        ctx.visited_ahead.add(asset.uri)

        while ctx.prefix < len(assets) and assets[ctx.prefix].uri in ctx.visited_ahead:
            ctx.visited_ahead.discard(assets[ctx.prefix].uri)
            ctx.prefix += 1
        if ctx.prefix:
            progress.last_processed_asset_id = assets[ctx.prefix - 1].uri
        progress.pending_asset_ids = sorted(ctx.visited_ahead, key=ctx.positions.get)
        progress.processed_assets += 1

        ctx.report.processed += 1
        self._checkpoint(ctx)
        self._publish(ctx)

    def _checkpoint(self, ctx: _ScanContext) -> None:
        self.state_store.save_progress(ctx.progress)
        with self._progress_lock:
            self._progress = ctx.progress.snapshot()

    def _publish(self, ctx: _ScanContext, force: bool = False) -> None:
        self.channel.publish(ctx.progress, force=force)
