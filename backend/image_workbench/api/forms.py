"""Typed parsing of multipart form fields.

Each endpoint's fields are coerced and validated in one pass. Geometry is never
defaulted: a missing or malformed width/height/crop field is an error, and all
offending fields are reported together. Quality is the exception and falls back
to the default or clamps into range instead of failing.
"""
import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from image_workbench.config import DEFAULT_COMPRESS_QUALITY, MAX_COMPRESS_QUALITY, MIN_COMPRESS_QUALITY
from image_workbench.conversion.errors import ValidationError
from image_workbench.conversion.formats import normalize_target
from image_workbench.conversion.models import CompressionSpec, CropRect, ResizeSpec

# Wire field names used by the web client
_ALIASES = {
    "target_format": "targetFormat",
    "maintain_aspect_ratio": "maintainAspectRatio",
}

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class _Form(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    @classmethod
    def from_form(cls, **fields: Any):
        """Validate raw form values; raise ValidationError naming every bad field."""
        present = {k: v for k, v in fields.items() if v is not None and v != ""}
        try:
            return cls.model_validate(present)
        except PydanticValidationError as e:
            names: list[str] = []
            messages: list[str] = []
            for err in e.errors():
                name = ".".join(str(p) for p in err["loc"]) or "request"
                name = _ALIASES.get(name, name)
                names.append(name)
                if err["type"] == "missing":
                    messages.append(f"{name} is required")
                else:
                    messages.append(f"{name}: {err['msg']}")
            raise ValidationError("Invalid request: " + "; ".join(messages), fields=names) from e


class ConvertForm(_Form):
    target_format: str

    @field_validator("target_format")
    @classmethod
    def _normalize(cls, v: str) -> str:
        v = normalize_target(v)
        if not v:
            raise ValueError("must name a format")
        return v


class ResizeForm(_Form):
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    maintain_aspect_ratio: bool = False

    def to_spec(self) -> ResizeSpec:
        return ResizeSpec(
            target_width=self.width,
            target_height=self.height,
            maintain_aspect_ratio=self.maintain_aspect_ratio,
        )


class CropForm(_Form):
    # (0, 0) is a valid origin
    x: int = Field(ge=0)
    y: int = Field(ge=0)
    width: int = Field(gt=0)
    height: int = Field(gt=0)

    def to_rect(self) -> CropRect:
        return CropRect(x=self.x, y=self.y, width=self.width, height=self.height)


def parse_quality(raw: Optional[Any]) -> int:
    """
    Quality in [10, 100] from the leading integer of the field ("80%" -> 80,
    "50.7" -> 50). Absent, non-numeric or zero -> default; out of range -> clamped.
    """
    match = _LEADING_INT.match(str(raw)) if raw is not None else None
    value = int(match.group(1)) if match else 0
    if value == 0:
        return DEFAULT_COMPRESS_QUALITY
    return max(MIN_COMPRESS_QUALITY, min(MAX_COMPRESS_QUALITY, value))


class CompressForm(_Form):
    quality: int = DEFAULT_COMPRESS_QUALITY

    @field_validator("quality", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> int:
        return parse_quality(v)

    def to_spec(self) -> CompressionSpec:
        return CompressionSpec(quality=self.quality)
