import threading
from dataclasses import replace

import pytest

from docscan.scanner.models import ScanOptions, ScanProgress, ScanState
from docscan.scanner.pipeline import AssetOutcome, OutcomeStatus
from docscan.scanner.scheduler import BatchScheduler
from docscan.utils.exceptions import DeviceConditionError, ErrorKind, PermissionDeniedError
from conftest import FakePipeline, InMemoryAssetSource, ScriptedResourceMonitor, make_assets


@pytest.fixture
def make_scheduler(progress_store, temp_registry, channel, sleeps, fake_clock):
    def factory(assets, pipeline=None, monitor=None, options=None, source=None):
        return BatchScheduler(
            source or InMemoryAssetSource(assets),
            pipeline or FakePipeline(temp_registry),
            progress_store,
            monitor or ScriptedResourceMonitor(),
            channel=channel,
            options=options or ScanOptions(batch_size=10),
            sleep=sleeps.append,
            clock=fake_clock,
        )
    return factory


def failing_for(uris):
    """Outcome script failing the given URIs and saving everything else."""
    def outcome(asset):
        if asset.uri in uris:
            return AssetOutcome(asset.uri, OutcomeStatus.FAILED, error_kind=ErrorKind.ENGINE_FAILURE, reason="boom")
        return AssetOutcome(asset.uri, OutcomeStatus.SAVED, content_hash=f"hash:{asset.uri}")
    return outcome


# --- Full scans ---

def test_full_scan_completes_in_batches(make_scheduler, progress_store, temp_registry, sleeps):
    assets = make_assets(25)
    pipeline = FakePipeline(temp_registry)
    scheduler = make_scheduler(assets, pipeline=pipeline)

    report = scheduler.start_scan()

    assert report.state == ScanState.COMPLETED
    assert scheduler.state == ScanState.COMPLETED
    assert report.batch_sizes == [10, 10, 5]
    assert report.processed == 25
    assert report.documents_found == 25
    assert pipeline.processed == [a.uri for a in assets]

    progress = progress_store.load_progress()
    assert progress.total_assets == 25
    assert progress.processed_assets == 25
    assert progress.last_processed_asset_id is None
    assert progress.pending_asset_ids == []
    assert progress.last_scan_time == 2_000_000.0
    assert not progress.is_scanning

    assert len(progress_store.load_history()) == 1
    assert progress_store.load_processed_hashes() == {f"hash:{a.uri}" for a in assets}
    assert sleeps.count(0.5) == 5
    assert sleeps.count(0.05) == 20


def test_filtered_assets_count_as_visited(make_scheduler, temp_registry):
    """Assets rejected by the smart filter advance progress without OCR."""
    assets = make_assets(6)
    assets[1] = replace(assets[1], uri="mem://gallery/selfie_001.jpg", filename="selfie_001.jpg")
    pipeline = FakePipeline(temp_registry)
    scheduler = make_scheduler(assets, pipeline=pipeline)

    report = scheduler.start_scan()

    assert report.filtered == 1
    assert report.processed == 6
    assert "mem://gallery/selfie_001.jpg" not in pipeline.processed
    assert scheduler.get_progress().processed_assets == 6


def test_repeated_uris_are_visited_once(make_scheduler, temp_registry):
    assets = make_assets(4)
    pipeline = FakePipeline(temp_registry)
    scheduler = make_scheduler(assets, pipeline=pipeline, source=InMemoryAssetSource(assets + assets[:2]))

    report = scheduler.start_scan()

    assert report.processed == 4
    assert sorted(pipeline.processed) == sorted(a.uri for a in assets)


def test_failures_do_not_stop_the_scan(make_scheduler, progress_store, temp_registry):
    assets = make_assets(9)
    broken = {assets[0].uri, assets[4].uri}
    scheduler = make_scheduler(assets, pipeline=FakePipeline(temp_registry, outcome_for=failing_for(broken)))

    report = scheduler.start_scan()

    assert report.state == ScanState.COMPLETED
    assert report.failed == 2
    assert report.documents_found == 7
    assert progress_store.load_failed_assets() == {uri: 1 for uri in broken}
    assert report.success_rate == pytest.approx(7 / 9)


def test_unexpected_error_aborts_and_releases_lock(make_scheduler, temp_registry):
    assets = make_assets(3)

    def explode(asset):
        raise RuntimeError("bug")

    scheduler = make_scheduler(assets, pipeline=FakePipeline(temp_registry, outcome_for=explode))
    with pytest.raises(RuntimeError):
        scheduler.start_scan()
    assert scheduler.state == ScanState.ABORTED
    assert scheduler.last_report.state == ScanState.ABORTED

    scheduler.pipeline = FakePipeline(temp_registry)
    assert scheduler.start_scan().state == ScanState.COMPLETED


# --- Stop and resume ---

def test_stop_then_resume_visits_each_asset_once(make_scheduler, progress_store, temp_registry):
    assets = make_assets(25)
    first = FakePipeline(temp_registry)
    scheduler = make_scheduler(assets, pipeline=first)

    def stop_after_twelve(asset):
        if len(first.processed) == 12:
            scheduler.stop()

    first.on_process = stop_after_twelve
    report = scheduler.start_scan()

    assert report.state == ScanState.STOPPED
    assert scheduler.state == ScanState.STOPPED
    assert report.processed == 12
    progress = progress_store.load_progress()
    assert progress.last_processed_asset_id == assets[11].uri
    assert progress.processed_assets == 12
    assert progress.last_scan_time is None

    # A fresh scheduler over the same store, as after a restart
    second = FakePipeline(temp_registry)
    resumed = make_scheduler(assets, pipeline=second)
    report = resumed.start_scan()

    assert report.state == ScanState.COMPLETED
    assert second.processed == [a.uri for a in assets[12:]]
    assert set(first.processed).isdisjoint(second.processed)
    assert progress_store.load_progress().processed_assets == 25


def test_stop_after_ranked_asset_records_pending(make_scheduler, progress_store, temp_registry):
    """A high-priority asset processed out of order is not reprocessed on resume."""
    assets = make_assets(10)
    assets[5] = replace(assets[5], uri="mem://gallery/receipt_123.jpg", filename="receipt_123.jpg")
    first = FakePipeline(temp_registry)
    scheduler = make_scheduler(assets, pipeline=first)
    first.on_process = lambda asset: scheduler.stop()

    scheduler.start_scan()

    assert first.processed == ["mem://gallery/receipt_123.jpg"]
    progress = progress_store.load_progress()
    assert progress.last_processed_asset_id is None
    assert progress.pending_asset_ids == ["mem://gallery/receipt_123.jpg"]

    second = FakePipeline(temp_registry)
    make_scheduler(assets, pipeline=second).start_scan()

    assert "mem://gallery/receipt_123.jpg" not in second.processed
    assert len(second.processed) == 9


def test_resume_skips_pending_assets(make_scheduler, progress_store, temp_registry):
    assets = make_assets(10)
    progress_store.save_progress(ScanProgress(
        total_assets=10,
        processed_assets=6,
        last_processed_asset_id=assets[4].uri,
        pending_asset_ids=[assets[7].uri],
    ))
    pipeline = FakePipeline(temp_registry)

    make_scheduler(assets, pipeline=pipeline).start_scan()

    assert pipeline.processed == [assets[i].uri for i in (5, 6, 8, 9)]
    assert progress_store.load_progress().processed_assets == 10


def test_missing_resume_point_starts_over(make_scheduler, progress_store, temp_registry):
    assets = make_assets(5)
    progress_store.save_progress(ScanProgress(last_processed_asset_id="mem://gallery/deleted.jpg"))
    pipeline = FakePipeline(temp_registry)

    make_scheduler(assets, pipeline=pipeline).start_scan()

    assert len(pipeline.processed) == 5


def test_scan_new_only_uses_last_completed_scan(make_scheduler, temp_registry, fake_clock):
    assets = make_assets(5)
    source = InMemoryAssetSource(assets)
    make_scheduler(assets, source=source).start_scan()

    newer = replace(assets[0], uri="mem://gallery/page_new.jpg", filename="page_new.jpg", created_at=2_000_500.0)
    source.assets.insert(0, newer)
    fake_clock.advance(1000)
    pipeline = FakePipeline(temp_registry)
    options = ScanOptions(batch_size=10, scan_new_only=True)

    report = make_scheduler(assets, pipeline=pipeline, source=source, options=options).start_scan()

    assert pipeline.processed == [newer.uri]
    assert report.processed == 1
    assert source.queries[-1].created_after == 2_000_000.0


# --- Memory pressure and batch sizing ---

def test_critical_memory_aborts_before_next_asset(make_scheduler, progress_store, temp_registry, sleeps):
    assets = make_assets(5)
    pipeline = FakePipeline(temp_registry)
    monitor = ScriptedResourceMonitor(memory=[1024, 1024, 30])
    scheduler = make_scheduler(assets, pipeline=pipeline, monitor=monitor)

    report = scheduler.start_scan()

    assert report.state == ScanState.ABORTED
    assert report.abort_reason
    assert pipeline.processed == [assets[0].uri]
    assert monitor.cleanups == [True]
    assert 10.0 in sleeps
    progress = progress_store.load_progress()
    assert progress.last_processed_asset_id == assets[0].uri
    assert progress.last_scan_time is None
    assert not progress.is_scanning

    scheduler.monitor = ScriptedResourceMonitor()
    report = scheduler.start_scan()
    assert report.state == ScanState.COMPLETED
    assert pipeline.processed == [a.uri for a in assets]


def test_low_memory_cleans_up_and_continues(make_scheduler, sleeps):
    monitor = ScriptedResourceMonitor(memory=[1024, 80, 1024])
    report = make_scheduler(make_assets(25), monitor=monitor).start_scan()

    assert report.state == ScanState.COMPLETED
    assert report.processed == 25
    assert monitor.cleanups == [False]
    assert 5.0 in sleeps


def test_initial_pressure_halves_first_batch(make_scheduler):
    monitor = ScriptedResourceMonitor(memory=[80, 1024])
    report = make_scheduler(make_assets(25), monitor=monitor).start_scan()

    assert report.batch_sizes == [5, 10, 10]


def test_batch_size_halves_and_respects_floor(make_scheduler):
    """Sustained LOW pressure shrinks batches to the minimum and no further."""
    monitor = ScriptedResourceMonitor(memory=[1024] * 11 + [80])
    report = make_scheduler(make_assets(20), monitor=monitor).start_scan()

    assert report.batch_sizes == [10, 5, 5]
    assert monitor.cleanups == [False] * 10


def test_small_max_batch_is_its_own_floor(make_scheduler):
    monitor = ScriptedResourceMonitor(memory=[80])
    report = make_scheduler(make_assets(7), monitor=monitor, options=ScanOptions(batch_size=3)).start_scan()

    assert report.batch_sizes == [3, 3, 1]


# --- Retry ---

def test_retry_budget_is_bounded(make_scheduler, progress_store, temp_registry):
    assets = make_assets(5)
    broken = assets[2].uri
    pipeline = FakePipeline(temp_registry, outcome_for=failing_for({broken}))
    scheduler = make_scheduler(assets, pipeline=pipeline, options=ScanOptions(batch_size=10, max_retries=3))

    scheduler.start_scan()
    assert progress_store.load_failed_assets() == {broken: 1}

    scheduler.retry_failed_assets()
    scheduler.retry_failed_assets()
    assert progress_store.load_failed_assets() == {broken: 3}

    report = scheduler.retry_failed_assets()
    assert report.processed == 0
    assert pipeline.processed.count(broken) == 3

    stats = scheduler.get_statistics()
    assert stats['failed_assets'] == 1
    assert stats['exhausted_assets'] == 1
    assert stats['retryable_assets'] == 0
    assert stats['total_scans'] == 1


def test_successful_retry_clears_failure(make_scheduler, progress_store, temp_registry):
    assets = make_assets(5)
    broken = {assets[3].uri}
    pipeline = FakePipeline(temp_registry, outcome_for=failing_for(broken))
    scheduler = make_scheduler(assets, pipeline=pipeline)

    scheduler.start_scan()
    broken.clear()
    report = scheduler.retry_failed_assets()

    assert report.documents_found == 1
    assert progress_store.load_failed_assets() == {}
    assert len(progress_store.load_history()) == 1


# --- Preconditions and concurrency ---

def test_low_battery_refuses_to_start(make_scheduler, progress_store, temp_registry):
    pipeline = FakePipeline(temp_registry)
    monitor = ScriptedResourceMonitor(battery_level=0.1, charging=False)
    scheduler = make_scheduler(make_assets(3), pipeline=pipeline, monitor=monitor)

    with pytest.raises(DeviceConditionError):
        scheduler.start_scan()

    assert scheduler.state == ScanState.IDLE
    assert pipeline.processed == []
    assert progress_store.load_progress() == ScanProgress()


def test_low_battery_while_charging_is_allowed(make_scheduler):
    monitor = ScriptedResourceMonitor(battery_level=0.1, charging=True)
    assert make_scheduler(make_assets(3), monitor=monitor).start_scan().state == ScanState.COMPLETED


def test_wifi_only_requires_unmetered_network(make_scheduler):
    monitor = ScriptedResourceMonitor(unmetered_network=False)
    scheduler = make_scheduler(make_assets(3), monitor=monitor, options=ScanOptions(batch_size=10, wifi_only=True))

    with pytest.raises(DeviceConditionError):
        scheduler.start_scan()


def test_missing_permission_refuses_to_start(make_scheduler):
    assets = make_assets(3)
    scheduler = make_scheduler(assets, source=InMemoryAssetSource(assets, permitted=False))

    with pytest.raises(PermissionDeniedError):
        scheduler.start_scan()
    assert scheduler.state == ScanState.IDLE


def test_only_one_scan_runs_at_a_time(make_scheduler, temp_registry):
    assets = make_assets(3)
    started = threading.Event()
    release = threading.Event()

    def block(asset):
        started.set()
        release.wait(5)

    scheduler = make_scheduler(assets, pipeline=FakePipeline(temp_registry, on_process=block))
    other = make_scheduler(assets)

    thread = scheduler.start_scan_in_background()
    try:
        assert started.wait(5)
        assert scheduler.is_scanning
        assert scheduler.start_scan() is None
        assert other.start_scan() is None
        assert other.retry_failed_assets() is None
    finally:
        release.set()
        thread.join(5)

    assert scheduler.last_report.state == ScanState.COMPLETED
    assert not scheduler.is_scanning


# --- Progress ---

def test_progress_is_monotonic(make_scheduler, temp_registry, fake_clock):
    assets = make_assets(25)
    pipeline = FakePipeline(temp_registry, on_process=lambda asset: fake_clock.advance(0.2))
    scheduler = make_scheduler(assets, pipeline=pipeline)
    received = []
    scheduler.subscribe(received.append)

    scheduler.start_scan()

    counts = [p.processed_assets for p in received]
    assert counts == sorted(counts)
    assert received[0].is_scanning
    assert received[-1].processed_assets == 25
    assert not received[-1].is_scanning
    assert scheduler.get_progress().percent == 100.0


def test_clear_progress(make_scheduler, progress_store, temp_registry):
    assets = make_assets(5)
    pipeline = FakePipeline(temp_registry)
    scheduler = make_scheduler(assets, pipeline=pipeline)
    errors = []

    def try_clear(asset):
        try:
            scheduler.clear_progress()
        except RuntimeError as e:
            errors.append(e)

    pipeline.on_process = try_clear
    scheduler.start_scan()
    assert len(errors) == 5

    scheduler.clear_progress()

    assert scheduler.get_progress() == ScanProgress()
    assert progress_store.load_history() == []
    assert progress_store.load_processed_hashes() == set()
    assert scheduler.get_statistics()['total_scans'] == 0
