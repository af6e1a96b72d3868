"""Image transforms over staged uploads: convert, resize, crop, compress and probe."""
import base64
import io
import logging
import time
from pathlib import Path
from typing import Union

import pillow_heif
from PIL import Image

from image_workbench.conversion.errors import DecodeError, EncodeError, ValidationError
from image_workbench.conversion.formats import (
    PIL_FORMATS,
    compression_target,
    extension_for,
    legal_targets,
    mime_type_for,
    normalize_target,
)
from image_workbench.conversion.models import (
    CompressionEstimate,
    CompressionSpec,
    CropRect,
    ImageMetadata,
    ResizeSpec,
    ResultArtifact,
    UploadedAsset,
)
from image_workbench.conversion.resize import apply_resize, check_crop_bounds, crop_exact
from image_workbench.staging import ArtifactStore

try:
    from wand.color import Color
    from wand.exceptions import WandException
    from wand.image import Image as WandImage
    WAND_AVAILABLE = True
except ImportError:
    WAND_AVAILABLE = False

pillow_heif.register_heif_opener()

logger = logging.getLogger("workbench.service")

# Errors Pillow and pillow-heif raise for unreadable input
_DECODE_ERRORS = (OSError, ValueError, RuntimeError, SyntaxError, Image.DecompressionBombError)

Target = Union[Path, io.BytesIO]


def timestamp_ms() -> int:
    return int(time.time() * 1000)


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info)


def _prepare_for(img: Image.Image, fmt: str) -> Image.Image:
    """Convert pixel mode to one the target encoder accepts."""
    if fmt == "jpeg":
        if img.mode not in ("RGB", "L", "CMYK"):
            return img.convert("RGB")
        return img
    if fmt in ("webp", "heic"):
        if img.mode not in ("RGB", "RGBA"):
            return img.convert("RGBA" if _has_alpha(img) else "RGB")
        return img
    if fmt == "png" and img.mode == "CMYK":
        return img.convert("RGB")
    return img


def _reduce_palette(img: Image.Image) -> Image.Image:
    """Quantize to a 256-colour palette (RGBA keeps its alpha via fast octree)."""
    if img.mode == "P":
        return img
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA" if _has_alpha(img) else "RGB")
    return img.quantize(colors=256)


def svg_wrapper(img: Image.Image) -> str:
    """
    Embed the image as a base64 PNG inside a minimal SVG document of the same size.

    This is a portable raster wrapper, not vectorization: the SVG contains the
    original pixels unchanged.
    """
    width, height = img.size
    buf = io.BytesIO()
    _prepare_for(img, "png").save(buf, format="PNG")
    b64 = base64.b64encode(buf.getvalue()).decode("ascii")
    return (
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}">\n'
        f'  <image href="data:image/png;base64,{b64}" width="{width}" height="{height}"/>\n'
        f"</svg>\n"
    )


def compression_params(fmt: str, quality: int) -> dict:
    if fmt in ("jpeg", "webp"):
        return {"quality": quality}
    if fmt == "png":
        return {"optimize": True, "compress_level": 9}
    return {}


class TransformService:
    """Runs codec work for one staged asset at a time. Outputs land in the store's outbound dir."""

    def __init__(self, store: ArtifactStore):
        self.store = store
        logger.info("TransformService initialized (svg input: %s)", "yes" if WAND_AVAILABLE else "no")

    # -- decoding ------------------------------------------------------------

    def _load(self, asset: UploadedAsset) -> Image.Image:
        fmt = asset.source_format
        path = asset.stored_path
        try:
            if fmt == "svg":
                return self._rasterize_svg(path)
            if fmt == "heic":
                return self._load_heic_lenient(path)
            with Image.open(path) as img:
                img.load()
                return img.copy()
        except _DECODE_ERRORS as e:
            logger.warning("Could not decode %s (%s): %s", asset.original_filename, fmt, e)
            raise DecodeError(f"Could not read image {asset.original_filename!r}: {e}") from e

    @staticmethod
    def _load_heic_lenient(path: Path) -> Image.Image:
        # Pixel data only; metadata blocks are not parsed, so damaged EXIF/XMP does not abort.
        heif_file = pillow_heif.open_heif(str(path), convert_hdr_to_8bit=True)
        return Image.frombytes(
            heif_file.mode,
            heif_file.size,
            heif_file.data,
            "raw",
            heif_file.mode,
            heif_file.stride,
        )

    @staticmethod
    def _rasterize_svg(path: Path) -> Image.Image:
        if not WAND_AVAILABLE:
            raise DecodeError("SVG input requires ImageMagick, which is not available on this server")
        try:
            with WandImage(blob=path.read_bytes(), format="svg", background=Color("transparent")) as svg:
                svg.format = "png"
                png_bytes = svg.make_blob()
        except WandException as e:
            raise DecodeError(f"Could not read SVG: {e}") from e
        with Image.open(io.BytesIO(png_bytes)) as img:
            img.load()
            return img.copy()

    def probe_metadata(self, asset: UploadedAsset) -> ImageMetadata:
        """Natural width/height. Reads only the header for raster formats."""
        fmt = asset.source_format
        if fmt in ("svg", "heic"):
            img = self._load(asset)
            return ImageMetadata(width=img.width, height=img.height, format=fmt)
        try:
            with Image.open(asset.stored_path) as img:
                width, height = img.size
        except _DECODE_ERRORS as e:
            logger.warning("Could not probe %s: %s", asset.original_filename, e)
            raise DecodeError(f"Could not read image {asset.original_filename!r}: {e}") from e
        return ImageMetadata(width=width, height=height, format=fmt)

    # -- encoding ------------------------------------------------------------

    def _encode(self, img: Image.Image, fmt: str, target: Target, **params) -> None:
        try:
            if fmt == "svg":
                data = svg_wrapper(img).encode("utf-8")
                if isinstance(target, Path):
                    target.write_bytes(data)
                else:
                    target.write(data)
                return
            pil_format = PIL_FORMATS.get(fmt, fmt.upper())
            _prepare_for(img, fmt).save(target, format=pil_format, **params)
        except Exception as e:
            # Any failure leaves no partial output behind
            if isinstance(target, Path):
                self.store.delete_now(target)
            logger.warning("Encoding %s failed: %s", fmt, e)
            raise EncodeError(f"Could not write {fmt} output: {e}") from e

    def _write_artifact(self, img: Image.Image, fmt: str, suggested_filename: str, **params) -> ResultArtifact:
        dest = self.store.outbound_path(extension_for(fmt))
        self._encode(img, fmt, dest, **params)
        return ResultArtifact(
            format=fmt,
            mime_type=mime_type_for(fmt),
            suggested_filename=suggested_filename,
            size_bytes=dest.stat().st_size,
            stored_path=dest,
        )

    # -- operations ----------------------------------------------------------

    def convert(self, asset: UploadedAsset, target_format: str) -> ResultArtifact:
        target = normalize_target(target_format)
        if not target:
            raise ValidationError("Target format not specified", fields=["targetFormat"])
        source = asset.source_format
        allowed = legal_targets(source)
        if target not in allowed:
            raise ValidationError(
                f"Cannot convert {source or 'this file'} to {target}; available formats: {', '.join(allowed)}",
                fields=["targetFormat"],
            )
        img = self._load(asset)
        result = self._write_artifact(img, target, f"converted-{timestamp_ms()}.{extension_for(target)}")
        logger.info("Converted %s (%s) -> %s, %s bytes", asset.original_filename, source, target, result.size_bytes)
        return result

    def resize(self, asset: UploadedAsset, spec: ResizeSpec) -> ResultArtifact:
        if spec.target_width <= 0 or spec.target_height <= 0:
            raise ValidationError("Width and height must be positive", fields=["width", "height"])
        fmt = asset.source_format
        img = self._load(asset)
        out = apply_resize(img, spec)
        name = f"resized-{timestamp_ms()}.{asset.extension or extension_for(fmt)}"
        result = self._write_artifact(out, fmt, name)
        logger.info(
            "Resized %s %sx%s -> %sx%s (keep aspect=%s)",
            asset.original_filename, img.width, img.height, out.width, out.height, spec.maintain_aspect_ratio,
        )
        return result

    def crop(self, asset: UploadedAsset, rect: CropRect) -> ResultArtifact:
        meta = self.probe_metadata(asset)
        check_crop_bounds(rect, meta.width, meta.height)
        fmt = asset.source_format
        img = self._load(asset)
        out = crop_exact(img, rect)
        name = f"cropped-{timestamp_ms()}.{asset.extension or extension_for(fmt)}"
        result = self._write_artifact(out, fmt, name)
        logger.info("Cropped %s to %sx%s at (%s, %s)", asset.original_filename, rect.width, rect.height, rect.x, rect.y)
        return result

    def _compressible(self, asset: UploadedAsset, spec: CompressionSpec) -> tuple[Image.Image, str, dict]:
        out_format = compression_target(asset.source_format)
        img = self._load(asset)
        params = compression_params(out_format, spec.quality)
        if out_format == "png":
            img = _reduce_palette(img)
        return img, out_format, params

    def compress(self, asset: UploadedAsset, spec: CompressionSpec) -> ResultArtifact:
        img, out_format, params = self._compressible(asset, spec)
        name = f"compressed-{timestamp_ms()}.{extension_for(out_format)}"
        result = self._write_artifact(img, out_format, name, **params)
        logger.info(
            "Compressed %s (%s bytes) -> %s at quality %s, %s bytes",
            asset.original_filename, asset.size_bytes, out_format, spec.quality, result.size_bytes,
        )
        return result

    def compress_in_memory(self, asset: UploadedAsset, spec: CompressionSpec) -> ResultArtifact:
        img, out_format, params = self._compressible(asset, spec)
        buf = io.BytesIO()
        self._encode(img, out_format, buf, **params)
        data = buf.getvalue()
        return ResultArtifact(
            format=out_format,
            mime_type=mime_type_for(out_format),
            suggested_filename=f"compressed-{timestamp_ms()}.{extension_for(out_format)}",
            size_bytes=len(data),
            buffer=data,
        )

    def compress_preview(self, asset: UploadedAsset, spec: CompressionSpec) -> CompressionEstimate:
        """Encoded size at the given quality. Nothing is written to disk."""
        result = self.compress_in_memory(asset, spec)
        return CompressionEstimate(bytes=result.size_bytes, format=result.format)
