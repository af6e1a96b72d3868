"""Format tags, the conversion-target table and per-format encoder details."""
from enum import Enum
from pathlib import Path, PurePosixPath


class FormatTag(str, Enum):
    PNG = "png"
    JPEG = "jpeg"
    WEBP = "webp"
    GIF = "gif"
    SVG = "svg"
    HEIC = "heic"
    JFIF = "jfif"  # input-only alias, resolved to jpeg


# Extensions accepted on upload
ALLOWED_EXTENSIONS = {"jpeg", "jpg", "png", "gif", "webp", "svg", "heic", "jfif"}

_EXTENSION_ALIASES = {
    "jpg": FormatTag.JPEG.value,
    "jpeg": FormatTag.JPEG.value,
    "jfif": FormatTag.JPEG.value,
    "heic": FormatTag.HEIC.value,
}

# Product policy: which conversions are offered for a given source format.
# PNG is the only SVG-wrapper source; gif and heic are never targets.
LEGAL_TARGETS: dict[str, tuple[str, ...]] = {
    "png": ("jpeg", "webp", "svg"),
    "jpeg": ("png", "webp"),
    "webp": ("png", "jpeg"),
    "jfif": ("png",),
    "heic": ("jpeg", "png"),
    "svg": ("png", "jpeg"),
}
DEFAULT_TARGETS: tuple[str, ...] = ("png", "jpeg", "webp")

# Formats that can be requested from /convert at all
TARGET_FORMATS = {"png", "jpeg", "webp", "svg"}

# heic/svg have no lossy re-encode path and gif has no encoder for compression
_COMPRESSION_TARGETS = {
    "heic": FormatTag.JPEG.value,
    "svg": FormatTag.JPEG.value,
    "gif": FormatTag.WEBP.value,
}

MIME_TYPES = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
    "svg": "image/svg+xml",
    "heic": "image/heic",
    "zip": "application/zip",
}

# Pillow encoder names. svg is handled by the wrapper, heic by pillow-heif.
PIL_FORMATS = {
    "png": "PNG",
    "jpeg": "JPEG",
    "webp": "WEBP",
    "gif": "GIF",
    "heic": "HEIF",
}


def base_filename(filename: str) -> str:
    """Last path component of a client-supplied filename, with either separator."""
    name = PurePosixPath((filename or "").replace("\\", "/")).name
    return "" if name == ".." else name


def resolve_format(filename: str) -> str:
    """Canonical format for a filename; unknown extensions pass through unchanged."""
    ext = Path(filename or "").suffix.lstrip(".").lower()
    return _EXTENSION_ALIASES.get(ext, ext)


def normalize_target(token: str) -> str:
    token = (token or "").strip().lstrip(".").lower()
    if token in ("jpg", "jfif"):
        return FormatTag.JPEG.value
    return token


def legal_targets(source_format: str) -> list[str]:
    """Conversion targets offered for a source format, de-duplicated, table order."""
    source = (source_format or "").strip().lstrip(".").lower()
    if source == "jpg":
        source = FormatTag.JPEG.value
    raw = LEGAL_TARGETS.get(source, DEFAULT_TARGETS)
    seen: list[str] = []
    for token in raw:
        fmt = normalize_target(token)
        if fmt not in seen:
            seen.append(fmt)
    return seen


def compression_target(source_format: str) -> str:
    return _COMPRESSION_TARGETS.get(source_format, source_format)


def mime_type_for(fmt: str) -> str:
    return MIME_TYPES.get(fmt, "application/octet-stream")


def extension_for(fmt: str) -> str:
    """File extension used for suggested filenames (jpeg is written as .jpg)."""
    if fmt == FormatTag.JPEG.value:
        return "jpg"
    return fmt


def is_allowed_extension(filename: str) -> bool:
    return Path(filename or "").suffix.lstrip(".").lower() in ALLOWED_EXTENSIONS
