"""API routes: accept an upload, run one transform, stream the result back, clean up."""
import asyncio
import logging
import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse

from image_workbench.api.forms import CompressForm, ConvertForm, CropForm, ResizeForm
from image_workbench.bulk import BulkAggregator
from image_workbench.config import MAX_BULK_FILES, MAX_UPLOAD_SIZE_BYTES, MAX_UPLOAD_SIZE_MB
from image_workbench.conversion.errors import ValidationError
from image_workbench.conversion.formats import (
    ALLOWED_EXTENSIONS,
    LEGAL_TARGETS,
    TARGET_FORMATS,
    base_filename,
    is_allowed_extension,
    legal_targets,
    resolve_format,
)
from image_workbench.conversion.models import ResultArtifact, UploadedAsset
from image_workbench.conversion.service import TransformService
from image_workbench.staging import ArtifactStore

logger = logging.getLogger("workbench.api")
router = APIRouter(prefix="/api", tags=["workbench"])

UPLOAD_CHUNK_BYTES = 1024 * 1024
# Declared content type must name one of these (image/jpeg, image/svg+xml, ...)
_MIME_TOKENS = ("jpeg", "jpg", "png", "gif", "webp", "svg", "heic", "jfif")


class CleanupFileResponse(FileResponse):
    """
    FileResponse that hands every staged path of the request to the store for
    deferred deletion once sending has ended: completed, client gone, or failed.
    """

    def __init__(self, path: Path, *, store: ArtifactStore, staged: list[Path], **kwargs):
        super().__init__(path, **kwargs)
        self._store = store
        self._staged = list(staged)

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self._store.schedule_delete_many(self._staged)


def get_store(request: Request) -> ArtifactStore:
    return request.app.state.store


def get_service(request: Request) -> TransformService:
    return request.app.state.transform_service


def get_bulk(request: Request) -> BulkAggregator:
    return request.app.state.bulk_aggregator


def _require_image(file: Optional[UploadFile]) -> UploadFile:
    """Reject a missing upload or one that is not an allowed image type."""
    if file is None or not file.filename:
        raise ValidationError("No file uploaded", fields=["file"])
    content_type = (file.content_type or "").lower()
    if not is_allowed_extension(file.filename) or not any(t in content_type for t in _MIME_TOKENS):
        raise ValidationError(
            f"Only image files are allowed ({', '.join(sorted(ALLOWED_EXTENSIONS))}): {file.filename}",
            fields=["file"],
        )
    return file


async def _stage_upload(file: UploadFile, store: ArtifactStore, staged: list[Path]) -> UploadedAsset:
    """Stream an upload into the inbound dir, enforcing the size ceiling."""
    ext = Path(file.filename).suffix.lstrip(".").lower()
    dest = store.inbound_path(ext)
    staged.append(dest)
    total = 0
    with open(dest, "wb") as f:
        while chunk := await file.read(UPLOAD_CHUNK_BYTES):
            total += len(chunk)
            if total > MAX_UPLOAD_SIZE_BYTES:
                raise HTTPException(413, f"File too large: {file.filename} (max {MAX_UPLOAD_SIZE_MB} MB)")
            f.write(chunk)
    return UploadedAsset(
        id=str(uuid.uuid4()),
        original_filename=base_filename(file.filename),
        stored_path=dest,
        size_bytes=total,
        declared_mime_type=file.content_type,
    )


def _download(result: ResultArtifact, store: ArtifactStore, staged: list[Path]) -> CleanupFileResponse:
    return CleanupFileResponse(
        result.stored_path,
        store=store,
        staged=staged,
        filename=result.suggested_filename,
        media_type=result.mime_type,
    )


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/limits")
def get_limits():
    """Upload limits for the client."""
    return {
        "max_upload_size_mb": MAX_UPLOAD_SIZE_MB,
        "max_upload_size_bytes": MAX_UPLOAD_SIZE_BYTES,
        "max_bulk_files": MAX_BULK_FILES,
    }


@router.get("/formats")
def get_formats():
    return {
        "input": sorted(ALLOWED_EXTENSIONS),
        "output": sorted(TARGET_FORMATS),
        "conversions": {source: legal_targets(source) for source in LEGAL_TARGETS},
    }


@router.post("/get-conversion-options")
async def get_conversion_options(file: Optional[UploadFile] = File(None)):
    """Formats the uploaded file can be converted to. Decided from the filename alone."""
    upload = _require_image(file)
    input_format = resolve_format(upload.filename)
    return {"inputFormat": input_format, "availableFormats": legal_targets(input_format)}


@router.post("/metadata")
async def metadata(
    file: Optional[UploadFile] = File(None),
    store: ArtifactStore = Depends(get_store),
    svc: TransformService = Depends(get_service),
):
    """Natural width/height of the upload."""
    upload = _require_image(file)
    staged: list[Path] = []
    try:
        asset = await _stage_upload(upload, store, staged)
        meta = await asyncio.to_thread(svc.probe_metadata, asset)
    finally:
        store.delete_many_now(staged)
    return {"width": meta.width, "height": meta.height, "format": meta.format}


@router.post("/convert")
async def convert(
    file: Optional[UploadFile] = File(None),
    target_format: Optional[str] = Form(None, alias="targetFormat"),
    store: ArtifactStore = Depends(get_store),
    svc: TransformService = Depends(get_service),
):
    upload = _require_image(file)
    form = ConvertForm.from_form(target_format=target_format)
    staged: list[Path] = []
    try:
        asset = await _stage_upload(upload, store, staged)
        result = await asyncio.to_thread(svc.convert, asset, form.target_format)
        staged.append(result.stored_path)
    except Exception:
        store.delete_many_now(staged)
        raise
    return _download(result, store, staged)


@router.post("/resize")
async def resize(
    file: Optional[UploadFile] = File(None),
    width: Optional[str] = Form(None),
    height: Optional[str] = Form(None),
    maintain_aspect_ratio: Optional[str] = Form(None, alias="maintainAspectRatio"),
    store: ArtifactStore = Depends(get_store),
    svc: TransformService = Depends(get_service),
):
    upload = _require_image(file)
    form = ResizeForm.from_form(width=width, height=height, maintain_aspect_ratio=maintain_aspect_ratio)
    staged: list[Path] = []
    try:
        asset = await _stage_upload(upload, store, staged)
        result = await asyncio.to_thread(svc.resize, asset, form.to_spec())
        staged.append(result.stored_path)
    except Exception:
        store.delete_many_now(staged)
        raise
    return _download(result, store, staged)


@router.post("/bulk-resize")
async def bulk_resize(
    files: Optional[list[UploadFile]] = File(None),
    width: Optional[str] = Form(None),
    height: Optional[str] = Form(None),
    maintain_aspect_ratio: Optional[str] = Form(None, alias="maintainAspectRatio"),
    store: ArtifactStore = Depends(get_store),
    bulk: BulkAggregator = Depends(get_bulk),
):
    """Resize up to MAX_BULK_FILES images with the same settings; returns one zip."""
    if not files:
        raise ValidationError("No files uploaded", fields=["files"])
    if len(files) > MAX_BULK_FILES:
        raise ValidationError(f"Too many files: {len(files)} (max {MAX_BULK_FILES})", fields=["files"])
    uploads = [_require_image(f) for f in files]
    form = ResizeForm.from_form(width=width, height=height, maintain_aspect_ratio=maintain_aspect_ratio)
    staged: list[Path] = []
    try:
        assets = [await _stage_upload(u, store, staged) for u in uploads]
        job = await asyncio.to_thread(bulk.run, assets, form.to_spec())
        staged.extend(job.staged_paths)
    except Exception:
        store.delete_many_now(staged)
        raise
    return _download(job.archive, store, staged)


@router.post("/crop")
async def crop(
    file: Optional[UploadFile] = File(None),
    x: Optional[str] = Form(None),
    y: Optional[str] = Form(None),
    width: Optional[str] = Form(None),
    height: Optional[str] = Form(None),
    store: ArtifactStore = Depends(get_store),
    svc: TransformService = Depends(get_service),
):
    upload = _require_image(file)
    form = CropForm.from_form(x=x, y=y, width=width, height=height)
    staged: list[Path] = []
    try:
        asset = await _stage_upload(upload, store, staged)
        result = await asyncio.to_thread(svc.crop, asset, form.to_rect())
        staged.append(result.stored_path)
    except Exception:
        store.delete_many_now(staged)
        raise
    return _download(result, store, staged)


@router.post("/compress")
async def compress(
    file: Optional[UploadFile] = File(None),
    quality: Optional[str] = Form(None),
    store: ArtifactStore = Depends(get_store),
    svc: TransformService = Depends(get_service),
):
    """Re-encode at reduced quality, keeping the format where it has a lossy encoder."""
    upload = _require_image(file)
    form = CompressForm.from_form(quality=quality)
    staged: list[Path] = []
    try:
        asset = await _stage_upload(upload, store, staged)
        result = await asyncio.to_thread(svc.compress, asset, form.to_spec())
        staged.append(result.stored_path)
    except Exception:
        store.delete_many_now(staged)
        raise
    return _download(result, store, staged)


@router.post("/compress-preview")
async def compress_preview(
    file: Optional[UploadFile] = File(None),
    quality: Optional[str] = Form(None),
    store: ArtifactStore = Depends(get_store),
    svc: TransformService = Depends(get_service),
):
    """Estimated compressed size. The encoded bytes stay in memory and are never returned."""
    upload = _require_image(file)
    form = CompressForm.from_form(quality=quality)
    staged: list[Path] = []
    try:
        asset = await _stage_upload(upload, store, staged)
        estimate = await asyncio.to_thread(svc.compress_preview, asset, form.to_spec())
    finally:
        store.delete_many_now(staged)
    return {"bytes": estimate.bytes, "format": estimate.format}
