from .errors import DecodeError, EncodeError, TransformError, ValidationError
from .formats import FormatTag, legal_targets, resolve_format
from .models import CompressionSpec, CropRect, ResizeSpec, ResultArtifact, UploadedAsset

__all__ = [
    "CompressionSpec",
    "CropRect",
    "DecodeError",
    "EncodeError",
    "FormatTag",
    "ResizeSpec",
    "ResultArtifact",
    "TransformError",
    "UploadedAsset",
    "ValidationError",
    "legal_targets",
    "resolve_format",
]
