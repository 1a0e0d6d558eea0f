#!/usr/bin/env python3
"""
Document Scanner - Main Entry Point.

Scans an image folder for documents (receipts, invoices, IDs, forms,
letters), recognizes their text with the available OCR engines, extracts
structured metadata and stores the results in a local database. Scans are
resumable: Ctrl+C stops after the current asset and the next run picks up
where it left off.

Usage:
    Command Line:
        python main.py scan ~/Pictures
        python main.py scan ~/Pictures --batch-size 10 --scan-new-only
        python main.py retry ~/Pictures
        python main.py stats
        python main.py list --type receipt --limit 20
        python main.py reset

    Python:
        from main import build_scanner
        scheduler = build_scanner("~/Pictures")
        report = scheduler.start_scan()

Author: ML Engineering Team
Version: 1.0.0
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

# Import project modules
from config import ConfigurationManager
from docscan.extraction import DocumentType
from docscan.gallery import DirectoryAssetSource
from docscan.ocr_engine import EngineRegistry, OCRFusion
from docscan.output_handler import DocumentStore
from docscan.scanner import (
    AssetPipeline,
    BatchScheduler,
    ProgressStore,
    PsutilResourceMonitor,
    ScanOptions,
    ScanState,
)
from docscan.utils.exceptions import DocScanError, ScanPreconditionError
from docscan.utils.logger import ROOT_LOGGER_NAME, get_logger, setup_logger_from_config

EXIT_OK = 0
EXIT_PRECONDITION = 1
EXIT_ABORTED = 2


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed argument namespace.
    """
    parser = argparse.ArgumentParser(
        description="On-device document scanner for image collections",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    Scan a folder:
        python main.py scan ~/Pictures

    Only images added since the last completed scan:
        python main.py scan ~/Pictures --scan-new-only

    Retry assets that failed earlier:
        python main.py retry ~/Pictures
        """
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to custom configuration file"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (("scan", "Scan a folder for documents"),
                            ("retry", "Retry assets that failed in earlier scans")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("folder", type=str, help="Image folder to scan")
        sub.add_argument("--batch-size", type=int, default=None, help="Maximum assets per batch")
        sub.add_argument("--no-smart-filter", action="store_true", help="Disable ranking and smart filtering")
        sub.add_argument("--scan-new-only", action="store_true", help="Only images newer than the last scan")
        sub.add_argument("--engines", type=str, default=None, help="Comma-separated OCR engines to use")

    subparsers.add_parser("stats", help="Show scan and document statistics")

    list_parser = subparsers.add_parser("list", help="List stored documents")
    list_parser.add_argument(
        "--type",
        choices=[t.value for t in DocumentType],
        default=None,
        help="Only documents of this type"
    )
    list_parser.add_argument("--limit", type=int, default=20, help="Maximum documents to show")

    subparsers.add_parser("reset", help="Forget scan progress, processed hashes and history")

    return parser.parse_args(argv)


def initialize_system(args: argparse.Namespace) -> ConfigurationManager:
    """
    Initialize configuration and logging.

    Args:
        args: Parsed command-line arguments.

    Returns:
        Initialized configuration manager.
    """
    config = ConfigurationManager(args.config)
    logger = setup_logger_from_config()

    if args.debug:
        logging.getLogger(ROOT_LOGGER_NAME).setLevel(logging.DEBUG)

    logger.debug(f"{config.get('project.name', 'docscan')} {config.get('project.version', '1.0.0')}")
    return config


def scan_options_from_args(args: argparse.Namespace) -> ScanOptions:
    """Scan options from configuration, overridden by command-line flags."""
    return ScanOptions.from_config(
        batch_size=args.batch_size,
        smart_filter_enabled=False if args.no_smart_filter else None,
        scan_new_only=True if args.scan_new_only else None,
    )


def build_scanner(
    folder: str,
    engine_names: Optional[List[str]] = None,
    options: Optional[ScanOptions] = None
) -> BatchScheduler:
    """
    Wire up a scheduler over an image folder.

    Args:
        folder: Image folder to scan.
        engine_names: OCR engines to use; defaults to configuration.
        options: Scan options; defaults to configuration.

    Returns:
        Ready BatchScheduler.

    Raises:
        ScanPreconditionError: No OCR engine could be initialized.
    """
    logger = get_logger(__name__)

    registry = EngineRegistry.from_config(engine_names)
    available = registry.initialize_all()
    if not available:
        raise ScanPreconditionError("No OCR engine available", {"failures": registry.failures})
    logger.info(f"OCR engines: {', '.join(available)}")
    logger.debug(f"OCR engine memory: {registry.get_memory_usage()}")

    source = DirectoryAssetSource(Path(folder).expanduser())
    monitor = PsutilResourceMonitor()
    pipeline = AssetPipeline(source, OCRFusion(registry), DocumentStore())
    monitor.add_cleanup_callback(lambda emergency: pipeline.temp_registry.release_all())

    return BatchScheduler(source, pipeline, ProgressStore(), monitor, options=options)


def run_scan(scheduler: BatchScheduler, retry: bool = False) -> int:
    """
    Run a scan or a retry pass in a worker thread; Ctrl+C requests a stop.

    Returns:
        Exit code.
    """
    logger = get_logger(__name__)

    def report_progress(progress) -> None:
        if progress.total_assets:
            logger.info(f"Progress: {progress.processed_assets}/{progress.total_assets} ({progress.percent:.0f}%)")

    scheduler.subscribe(report_progress)

    if retry:
        report = scheduler.retry_failed_assets()
    else:
        thread = scheduler.start_scan_in_background()
        if thread is None:
            logger.error("A scan is already running")
            return EXIT_PRECONDITION
        while thread.is_alive():
            try:
                thread.join(timeout=0.5)
            except KeyboardInterrupt:
                logger.info("Stopping after the current asset...")
                scheduler.stop()
        report = scheduler.last_report

    if report is None:
        logger.error("A scan is already running")
        return EXIT_PRECONDITION

    logger.info("=" * 60)
    logger.info(
        f"Scan {report.state.value}: {report.documents_found} new documents, "
        f"{report.failed} failures, success rate {report.success_rate:.0%}"
    )
    logger.info("=" * 60)

    if report.state == ScanState.ABORTED:
        logger.error(f"Scan aborted: {report.abort_reason}")
        return EXIT_ABORTED
    return EXIT_OK


def show_statistics() -> int:
    progress_store = ProgressStore()
    stats = {
        'scans': progress_store.get_statistics(ScanOptions.from_config().max_retries),
        'documents': DocumentStore().get_statistics(),
    }
    print(json.dumps(stats, indent=2, ensure_ascii=False, default=str))
    return EXIT_OK


def list_documents(document_type: Optional[str], limit: int) -> int:
    doc_type = DocumentType(document_type) if document_type else None
    for record in DocumentStore().list_documents(doc_type, limit):
        amount = f"{record.total_amount:.2f} {record.currency or ''}".strip() if record.total_amount is not None else "-"
        print(
            f"{record.id[:8]}  {record.document_type.value:<10} {record.confidence:.2f}  "
            f"{(record.vendor or '-')[:30]:<30} {amount:<14} {record.image_uri}"
        )
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main function - entry point for command-line execution.

    Returns:
        Exit code (0 completed or stopped, 1 scan could not start, 2 aborted).
    """
    args = parse_arguments(argv)

    try:
        initialize_system(args)
        logger = get_logger(__name__)

        if args.command == "stats":
            return show_statistics()
        if args.command == "list":
            return list_documents(args.type, args.limit)
        if args.command == "reset":
            ProgressStore().clear()
            logger.info("Scan progress reset")
            return EXIT_OK

        folder = Path(args.folder).expanduser()
        if not folder.is_dir():
            raise FileNotFoundError(f"Folder not found: {folder}")

        engines = [e.strip() for e in args.engines.split(",") if e.strip()] if args.engines else None
        scheduler = build_scanner(str(folder), engines, scan_options_from_args(args))
        return run_scan(scheduler, retry=args.command == "retry")

    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_PRECONDITION

    except ScanPreconditionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_PRECONDITION

    except DocScanError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ABORTED

    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
