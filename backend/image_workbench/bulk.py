"""Bulk resize: one resize spec over many uploads, packaged as a single zip."""
import logging
import zipfile
from typing import Sequence

from image_workbench.conversion.errors import EncodeError
from image_workbench.conversion.formats import base_filename, mime_type_for
from image_workbench.conversion.models import BulkJob, ResizeSpec, ResultArtifact, UploadedAsset
from image_workbench.conversion.service import TransformService, timestamp_ms
from image_workbench.staging import ArtifactStore

logger = logging.getLogger("workbench.bulk")


class BulkAggregator:
    def __init__(self, service: TransformService, store: ArtifactStore):
        self.service = service
        self.store = store

    def run(self, assets: Sequence[UploadedAsset], spec: ResizeSpec) -> BulkJob:
        """
        Resize every asset in input order, then zip the results.

        The first failure aborts the job: outputs produced so far are deleted
        and the error propagates, so there is never a partial archive.
        """
        job = BulkJob(source_assets=list(assets), resize_spec=spec)
        try:
            for asset in job.source_assets:
                job.result_artifacts.append(self.service.resize(asset, spec))
            job.archive = self.create_archive(job)
        except Exception:
            logger.warning("Bulk resize aborted after %s of %s files", len(job.result_artifacts), len(job.source_assets))
            self.store.delete_many_now(job.staged_paths)
            raise
        logger.info("Bulk resized %s files into %s", len(job.result_artifacts), job.archive.suggested_filename)
        return job

    def create_archive(self, job: BulkJob) -> ResultArtifact:
        """
        Write all results into one zip at maximum compression. Entries are named
        after the original upload filenames, without any directory part; on a
        name collision the last file wins.
        """
        entries: dict[str, ResultArtifact] = {}
        for asset, result in zip(job.source_assets, job.result_artifacts):
            arcname = base_filename(asset.original_filename) or result.suggested_filename
            entries.pop(arcname, None)
            entries[arcname] = result
        zip_path = self.store.outbound_path("zip")
        try:
            with zipfile.ZipFile(zip_path, "w", zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
                for arcname, result in entries.items():
                    zf.write(result.stored_path, arcname)
        except (OSError, zipfile.BadZipFile) as e:
            self.store.delete_now(zip_path)
            logger.warning("Could not create zip %s: %s", zip_path.name, e)
            raise EncodeError(f"Could not create archive: {e}") from e
        logger.info("Created zip %s with %s entries", zip_path.name, len(entries))
        return ResultArtifact(
            format="zip",
            mime_type=mime_type_for("zip"),
            suggested_filename=f"resized-{timestamp_ms()}.zip",
            size_bytes=zip_path.stat().st_size,
            stored_path=zip_path,
        )
