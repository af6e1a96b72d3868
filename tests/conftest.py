"""Shared fixtures: isolated staging dirs, a controllable clock, generated images."""
import io
from pathlib import Path

import pillow_heif
import pytest
from PIL import Image

from image_workbench.conversion.service import TransformService
from image_workbench.staging import ArtifactStore, StagingConfig

pillow_heif.register_heif_opener()

MIME_BY_EXT = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "jfif": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
    "heic": "image/heic",
    "svg": "image/svg+xml",
}

PIL_SAVE_FORMAT = {
    "png": "PNG",
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "jfif": "JPEG",
    "webp": "WEBP",
    "gif": "GIF",
    "heic": "HEIF",
}


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def image_bytes(ext: str = "png", size=(100, 100), color=(200, 30, 30), mode: str = "RGB", **save_kw) -> bytes:
    img = Image.new(mode, size, color)
    buf = io.BytesIO()
    img.save(buf, format=PIL_SAVE_FORMAT[ext], **save_kw)
    return buf.getvalue()


def photo_bytes(size=(800, 600), quality: int = 95) -> bytes:
    """A noisy, photograph-like JPEG that compresses noticeably at lower quality."""
    noise_r = Image.effect_noise(size, 60)
    noise_b = Image.effect_noise(size, 40)
    gradient = Image.linear_gradient("L").resize(size)
    img = Image.merge("RGB", (noise_r, gradient, noise_b))
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality, subsampling=0)
    return buf.getvalue()


def svg_bytes(width: int = 60, height: int = 40) -> bytes:
    return (
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}">'
        f'<rect width="{width}" height="{height}" fill="#3366cc"/></svg>'
    ).encode("utf-8")


def files_in(directory: Path) -> list[Path]:
    if not directory.exists():
        return []
    return sorted(p for p in directory.iterdir() if p.is_file())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def staging(tmp_path: Path) -> StagingConfig:
    return StagingConfig(
        inbound_dir=tmp_path / "uploads",
        outbound_dir=tmp_path / "output",
        cleanup_delay=60.0,
        sweep_interval=3600.0,
    )


@pytest.fixture
def store(staging: StagingConfig, clock: FakeClock) -> ArtifactStore:
    s = ArtifactStore(staging, clock=clock)
    s.start()
    return s


@pytest.fixture
def service(store: ArtifactStore) -> TransformService:
    return TransformService(store)


@pytest.fixture
def stage(store: ArtifactStore):
    """Stage bytes under an original filename, the way an upload arrives."""

    def _stage(filename: str, data: bytes):
        ext = Path(filename).suffix.lstrip(".").lower()
        return store.stage(data, ext, original_filename=filename, mime_type=MIME_BY_EXT.get(ext))

    return _stage
