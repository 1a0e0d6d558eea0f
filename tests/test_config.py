import pytest

from config import ConfigurationManager, get_config


def test_defaults_are_loaded():
    assert get_config("scan.batch_size") == 20
    assert get_config("ocr.timeout_seconds") == 10.0
    assert get_config("missing.key", "fallback") == "fallback"


def test_singleton():
    assert ConfigurationManager() is ConfigurationManager()


def test_user_file_is_merged_over_defaults(tmp_path, monkeypatch):
    user = tmp_path / "user.yaml"
    user.write_text("scan:\n  batch_size: 7\n", encoding="utf-8")
    monkeypatch.setenv("DOCSCAN_CONFIG", str(user))

    config = ConfigurationManager()

    assert config.get("scan.batch_size") == 7
    assert config.get("scan.min_batch_size") == 5


def test_missing_user_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigurationManager(str(tmp_path / "nope.yaml"))


def test_overrides_survive_reload():
    config = ConfigurationManager()
    config.set("scan.batch_size", 3)
    config.reload()

    assert get_config("scan.batch_size") == 3
    assert get_config("scan.max_retries") == 3


def test_relative_paths_are_resolved():
    assert get_config("paths.database").endswith("docscan.db")
    assert not get_config("paths.database").startswith("outputs")
