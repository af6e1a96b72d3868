"""Tests for format resolution and the conversion-target table."""
import pytest

from image_workbench.conversion.formats import (
    LEGAL_TARGETS,
    base_filename,
    compression_target,
    extension_for,
    is_allowed_extension,
    legal_targets,
    normalize_target,
    resolve_format,
)

SOURCES = ["png", "jpeg", "webp", "gif", "svg", "heic", "jfif", "bmp", ""]


@pytest.mark.parametrize(
    "filename, expected",
    [
        ("photo.jpg", "jpeg"),
        ("photo.JPEG", "jpeg"),
        ("scan.jfif", "jpeg"),
        ("IMG_0001.HEIC", "heic"),
        ("logo.png", "png"),
        ("anim.gif", "gif"),
        ("icon.svg", "svg"),
        ("archive.tar.webp", "webp"),
        ("picture.bmp", "bmp"),
        ("no_extension", ""),
    ],
)
def test_resolve_format(filename, expected):
    assert resolve_format(filename) == expected


@pytest.mark.parametrize(
    "source, expected",
    [
        ("png", ["jpeg", "webp", "svg"]),
        ("jpeg", ["png", "webp"]),
        ("webp", ["png", "jpeg"]),
        ("jfif", ["png"]),
        ("heic", ["jpeg", "png"]),
        ("svg", ["png", "jpeg"]),
        ("gif", ["png", "jpeg", "webp"]),
        ("tiff", ["png", "jpeg", "webp"]),
    ],
)
def test_legal_targets_table(source, expected):
    assert legal_targets(source) == expected


@pytest.mark.parametrize("source", SOURCES)
def test_targets_never_include_source_or_unencodable_formats(source):
    targets = legal_targets(source)
    assert source not in targets
    assert "gif" not in targets
    assert "heic" not in targets
    assert "jpg" not in targets
    assert len(targets) == len(set(targets))


def test_jpg_source_alias_uses_jpeg_row():
    assert legal_targets("jpg") == legal_targets("jpeg")


def test_png_is_the_only_svg_source():
    svg_sources = [s for s in LEGAL_TARGETS if "svg" in legal_targets(s)]
    assert svg_sources == ["png"]


@pytest.mark.parametrize("token, expected", [("JPG", "jpeg"), (".png", "png"), (" webp ", "webp"), ("jfif", "jpeg")])
def test_normalize_target(token, expected):
    assert normalize_target(token) == expected


@pytest.mark.parametrize(
    "source, expected",
    [("heic", "jpeg"), ("svg", "jpeg"), ("gif", "webp"), ("png", "png"), ("jpeg", "jpeg"), ("webp", "webp")],
)
def test_compression_target(source, expected):
    assert compression_target(source) == expected


def test_jpeg_files_are_named_jpg():
    assert extension_for("jpeg") == "jpg"
    assert extension_for("webp") == "webp"


@pytest.mark.parametrize(
    "filename, allowed",
    [("a.jpg", True), ("a.JFIF", True), ("a.heic", True), ("a.svg", True), ("a.bmp", False), ("a", False)],
)
def test_allowed_upload_extensions(filename, allowed):
    assert is_allowed_extension(filename) is allowed


@pytest.mark.parametrize(
    "filename, expected",
    [
        ("photo.png", "photo.png"),
        ("../../evil.png", "evil.png"),
        ("/etc/cron.d/job.png", "job.png"),
        ("..\\..\\win.jpg", "win.jpg"),
        ("dir/..", ""),
        ("", ""),
    ],
)
def test_base_filename_drops_directories(filename, expected):
    assert base_filename(filename) == expected
