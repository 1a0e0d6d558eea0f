import os

import pytest
from PIL import Image

from docscan.gallery.asset import Asset, AssetQuery, DirectoryAssetSource
from docscan.gallery.smart_filter import FilterOptions, SmartFilter
from docscan.utils.exceptions import AssetReadError

KB = 1024


@pytest.fixture
def smart_filter():
    return SmartFilter(FilterOptions())


def asset(name, folder="/photos", width=0, height=0, size=500 * KB, created_at=1_000_000.0, mime_type=None):
    return Asset(
        uri=f"{folder}/{name}",
        filename=name,
        width=width,
        height=height,
        created_at=created_at,
        file_size=size,
        mime_type=mime_type,
    )


# --- Priority ---

def test_priority_accumulates_and_caps(smart_filter):
    assert smart_filter.calculate_priority(asset("IMG_0001.jpg")) == 5
    assert smart_filter.calculate_priority(asset("bill.jpg")) == 8
    assert smart_filter.calculate_priority(asset("x.jpg", folder="/sdcard/Downloads")) == 7
    assert smart_filter.calculate_priority(asset("2024-03-15.jpg")) == 6
    assert smart_filter.calculate_priority(asset("receipt_042.jpg", folder="/sdcard/Receipts")) == 10


def test_short_keywords_need_word_boundaries(smart_filter):
    assert smart_filter.calculate_priority(asset("video_clip.jpg")) == 5
    assert smart_filter.calculate_priority(asset("my_id_card.jpg")) == 8


def test_high_priority_bypasses_exclusions(smart_filter):
    """Priority 8 or more admits even a tiny screenshot."""
    decision = smart_filter.evaluate(asset("Screenshot_receipt.png", size=10 * KB))
    assert decision.should_process
    assert decision.priority >= 8
    assert decision.reason == "high priority"


# --- Exclusions ---

@pytest.mark.parametrize("item, reason", [
    (asset("funny_meme.jpg"), "skip pattern"),
    (asset("pano.jpg", width=4000, height=1000), "aspect ratio"),
    (asset("small.jpg", size=50 * KB), "below minimum"),
    (asset("huge.jpg", size=60 * 1024 * KB), "exceeds maximum"),
    (asset("anim.png", mime_type="image/gif"), "MIME"),
    (asset("Screenshot_20240101.png"), "screenshot"),
    (asset("phone.png", width=1080, height=1920), "screenshot"),
])
def test_exclusions(smart_filter, item, reason):
    decision = smart_filter.evaluate(item)
    assert not decision.should_process
    assert decision.priority == 0
    assert reason in decision.reason


def test_screenshots_can_be_included():
    smart_filter = SmartFilter(FilterOptions(include_screenshots=True))
    decision = smart_filter.evaluate(asset("Screenshot_20240101.png"))
    assert decision.should_process
    assert decision.priority == 6


def test_date_range():
    smart_filter = SmartFilter(FilterOptions(date_start=2_000_000.0))
    assert smart_filter.evaluate(asset("old.jpg", created_at=1_000_000.0)).reason == "outside date range"
    assert smart_filter.evaluate(asset("new.jpg", created_at=3_000_000.0)).should_process


def test_document_ratio_is_noted(smart_filter):
    decision = smart_filter.evaluate(asset("page.jpg", width=1000, height=1414))
    assert decision.should_process
    assert decision.reason == "document-like aspect ratio"


def test_unknown_size_is_read_from_disk(tmp_path, smart_filter):
    path = tmp_path / "tiny.jpg"
    path.write_bytes(b"x" * 10)
    decision = smart_filter.evaluate(Asset(uri=str(path), filename="tiny.jpg"))
    assert "below minimum" in decision.reason


def test_basic_check_ignores_screenshots_and_priority(smart_filter):
    decision = smart_filter.basic_check(asset("Screenshot_20240101.png"))
    assert decision.should_process
    assert decision.priority == 5
    assert not smart_filter.basic_check(asset("wallpaper.jpg")).should_process


def test_options_take_limits_from_scan_options():
    from docscan.scanner.models import ScanOptions

    options = FilterOptions.from_config(ScanOptions(min_file_size_kb=10, max_aspect_ratio=5.0))
    assert options.min_file_size_kb == 10
    assert options.max_aspect_ratio == 5.0
    assert options.excluded_mime_types == ("image/gif",)


# --- Ranking ---

def test_rank_orders_by_priority_and_keeps_ties_stable(smart_filter):
    items = [
        asset("a.jpg"),
        asset("selfie.jpg"),
        asset("receipt_1.jpg"),
        asset("b.jpg"),
        asset("2024-01-01.jpg"),
    ]
    ranked = smart_filter.rank(items)

    assert [a.filename for a, _ in ranked] == ["receipt_1.jpg", "2024-01-01.jpg", "a.jpg", "b.jpg"]
    priorities = [d.priority for _, d in ranked]
    assert priorities == sorted(priorities, reverse=True)


# --- DirectoryAssetSource ---

def test_directory_source_lists_images(tmp_path):
    Image.new("RGB", (60, 40)).save(tmp_path / "one.png")
    (tmp_path / "sub").mkdir()
    Image.new("RGB", (30, 30)).save(tmp_path / "sub" / "two.jpg")
    (tmp_path / "notes.txt").write_text("not an image")
    os.utime(tmp_path / "one.png", (1000, 1000))
    os.utime(tmp_path / "sub" / "two.jpg", (2000, 2000))

    source = DirectoryAssetSource(tmp_path)
    assets = source.list_assets()

    assert source.has_permission()
    assert sorted(a.filename for a in assets) == ["one.png", "two.jpg"]
    one = next(a for a in assets if a.filename == "one.png")
    assert (one.width, one.height) == (60, 40)
    assert one.mime_type == "image/png"
    assert [a.filename for a in source.list_assets(AssetQuery(created_after=1500))] == ["two.jpg"]
    assert source.get_asset(one.uri) == one
    assert source.get_asset(str(tmp_path / "gone.png")) is None


def test_directory_source_without_permission(tmp_path):
    assert not DirectoryAssetSource(tmp_path / "missing").has_permission()


def test_open_remote_uri_fails(tmp_path):
    with pytest.raises(AssetReadError):
        DirectoryAssetSource(tmp_path).open_asset("content://media/1")
