"""Geometry helpers: bounding-box fit, exact stretch, and rectangle extraction."""
from PIL import Image

from image_workbench.conversion.errors import ValidationError
from image_workbench.conversion.models import CropRect, ResizeSpec


def fit_inside_size(width: int, height: int, max_width: int, max_height: int) -> tuple[int, int]:
    """
    Size of (width, height) scaled to fit inside (max_width, max_height),
    maintaining aspect ratio. Never enlarges: a smaller source keeps its size.
    """
    scale = min(max_width / width, max_height / height)
    if scale >= 1.0:
        return width, height
    new_w = max(1, min(max_width, int(round(width * scale))))
    new_h = max(1, min(max_height, int(round(height * scale))))
    return new_w, new_h


def resize_keep_aspect(img: Image.Image, max_width: int, max_height: int) -> Image.Image:
    """Scale image to fit within the bounding box without upscaling."""
    w, h = img.size
    new_size = fit_inside_size(w, h, max_width, max_height)
    if new_size == (w, h):
        return img.copy()
    return img.resize(new_size, Image.Resampling.LANCZOS)


def resize_exact(img: Image.Image, width: int, height: int) -> Image.Image:
    """Stretch to exactly (width, height), ignoring the source aspect ratio."""
    if img.size == (width, height):
        return img.copy()
    return img.resize((width, height), Image.Resampling.LANCZOS)


def apply_resize(img: Image.Image, spec: ResizeSpec) -> Image.Image:
    if spec.maintain_aspect_ratio:
        return resize_keep_aspect(img, spec.target_width, spec.target_height)
    return resize_exact(img, spec.target_width, spec.target_height)


def check_crop_bounds(rect: CropRect, source_width: int, source_height: int) -> None:
    """Reject (never clamp) a rectangle that leaves the source image."""
    problems = []
    if rect.x < 0:
        problems.append(f"x={rect.x} is negative")
    if rect.y < 0:
        problems.append(f"y={rect.y} is negative")
    if rect.width <= 0:
        problems.append(f"width={rect.width} must be positive")
    if rect.height <= 0:
        problems.append(f"height={rect.height} must be positive")
    if rect.x + rect.width > source_width:
        problems.append(f"x+width={rect.x + rect.width} exceeds image width {source_width}")
    if rect.y + rect.height > source_height:
        problems.append(f"y+height={rect.y + rect.height} exceeds image height {source_height}")
    if problems:
        raise ValidationError(
            "Crop area is outside the image: " + "; ".join(problems),
            fields=["x", "y", "width", "height"],
        )


def crop_exact(img: Image.Image, rect: CropRect) -> Image.Image:
    check_crop_bounds(rect, *img.size)
    return img.crop((rect.x, rect.y, rect.x + rect.width, rect.y + rect.height))
