import json
from unittest.mock import patch

import pytest
from PIL import Image

import main
from config import ConfigurationManager
from docscan.ocr_engine.engine import EngineRegistry
from conftest import FakeEngine, make_result


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Run the CLI with all outputs under a temporary directory."""
    monkeypatch.chdir(tmp_path)
    config = ConfigurationManager()
    config.set("logging.file.enabled", False)
    config.set("scan.min_file_size_kb", 0)
    folder = tmp_path / "photos"
    folder.mkdir()
    Image.new("RGB", (300, 400), (255, 255, 255)).save(folder / "receipt_001.png")
    Image.new("RGB", (300, 400), (200, 200, 200)).save(folder / "receipt_002.png")
    return folder


def registry_with(engine):
    return patch.object(main.EngineRegistry, "from_config", return_value=EngineRegistry([engine]))


def test_scan_options_from_args():
    args = main.parse_arguments(["scan", "photos", "--batch-size", "7", "--no-smart-filter", "--scan-new-only"])
    options = main.scan_options_from_args(args)

    assert options.batch_size == 7
    assert options.smart_filter_enabled is False
    assert options.scan_new_only is True


def test_missing_folder_exits_with_precondition_code(workspace):
    assert main.main(["scan", str(workspace / "nope")]) == main.EXIT_PRECONDITION


def test_no_available_engine_exits_with_precondition_code(workspace):
    broken = FakeEngine("broken", init_error=RuntimeError("missing binary"))
    with registry_with(broken):
        assert main.main(["scan", str(workspace)]) == main.EXIT_PRECONDITION


def test_scan_then_stats(workspace, capsys):
    text = "SuperMart\nReceipt\n2024-03-15\nTOTAL $45.99\nThank you"
    engine = FakeEngine("fake", result=make_result("fake", 0.95, text=text))

    with registry_with(engine):
        assert main.main(["scan", str(workspace)]) == main.EXIT_OK
    assert len(engine.calls) == 2

    capsys.readouterr()
    assert main.main(["stats"]) == main.EXIT_OK
    stats = json.loads(capsys.readouterr().out)
    assert stats['scans']['total_scans'] == 1
    assert stats['scans']['total_assets_scanned'] == 2

    assert main.main(["list", "--limit", "5"]) == main.EXIT_OK
    assert main.main(["reset"]) == main.EXIT_OK
