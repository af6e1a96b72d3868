"""Transform request/result models."""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from image_workbench.conversion.formats import resolve_format


@dataclass
class UploadedAsset:
    """A staged upload, owned by the request that created it."""

    id: str
    original_filename: str
    stored_path: Path
    size_bytes: int
    declared_mime_type: Optional[str] = None

    @property
    def source_format(self) -> str:
        return resolve_format(self.original_filename)

    @property
    def extension(self) -> str:
        """Lower-cased extension of the original filename, without the dot."""
        return Path(self.original_filename).suffix.lstrip(".").lower()


@dataclass(frozen=True)
class ResizeSpec:
    target_width: int
    target_height: int
    maintain_aspect_ratio: bool = False


@dataclass(frozen=True)
class CropRect:
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class CompressionSpec:
    quality: int = 70


@dataclass(frozen=True)
class ImageMetadata:
    width: int
    height: int
    format: str


@dataclass
class ResultArtifact:
    """Output of a transform: a staged file, or an in-memory buffer for previews."""

    format: str
    mime_type: str
    suggested_filename: str
    size_bytes: int
    stored_path: Optional[Path] = None
    buffer: Optional[bytes] = None

    @property
    def in_memory(self) -> bool:
        return self.stored_path is None


@dataclass(frozen=True)
class CompressionEstimate:
    bytes: int
    format: str


@dataclass
class BulkJob:
    source_assets: list[UploadedAsset]
    resize_spec: ResizeSpec
    result_artifacts: list[ResultArtifact] = field(default_factory=list)
    archive: Optional[ResultArtifact] = None

    @property
    def staged_paths(self) -> list[Path]:
        """Every output path this job produced, archive last."""
        paths = [r.stored_path for r in self.result_artifacts if r.stored_path is not None]
        if self.archive is not None and self.archive.stored_path is not None:
            paths.append(self.archive.stored_path)
        return paths
