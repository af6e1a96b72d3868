"""Staging directories for uploads and results, with deferred deletion.

Every staged file gets a unique ``<timestamp-ns>-<random>.<ext>`` name, so
concurrent requests never write the same path. Deletion after a successful
response is deferred by a grace delay so a slow client can finish reading the
download; pending deletions are kept in a table and removed by ``sweep()``,
which the app runs periodically from a background task.
"""
import asyncio
import logging
import secrets
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

from image_workbench.conversion.models import UploadedAsset

logger = logging.getLogger("workbench.staging")

Clock = Callable[[], float]


@dataclass(frozen=True)
class StagingConfig:
    inbound_dir: Path
    outbound_dir: Path
    cleanup_delay: float = 60.0
    sweep_interval: float = 5.0


class ArtifactStore:
    """Owns the inbound/outbound staging dirs for the lifetime of the process."""

    def __init__(self, config: StagingConfig, clock: Clock = time.monotonic):
        self.config = config
        self._clock = clock
        self._pending: dict[Path, float] = {}
        self._lock = threading.Lock()

    @property
    def inbound_dir(self) -> Path:
        return self.config.inbound_dir

    @property
    def outbound_dir(self) -> Path:
        return self.config.outbound_dir

    def start(self) -> None:
        self.inbound_dir.mkdir(parents=True, exist_ok=True)
        self.outbound_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Staging dirs ready: inbound=%s outbound=%s", self.inbound_dir, self.outbound_dir)

    def stop(self) -> None:
        """Remove everything still waiting for its grace delay."""
        with self._lock:
            paths = list(self._pending)
            self._pending.clear()
        for path in paths:
            self._unlink(path)
        if paths:
            logger.info("Removed %s pending staged files on shutdown", len(paths))

    @staticmethod
    def unique_name(ext: str) -> str:
        ext = (ext or "bin").lstrip(".").lower()
        return f"{time.time_ns()}-{secrets.randbelow(10**9)}.{ext}"

    def inbound_path(self, ext: str) -> Path:
        return self.inbound_dir / self.unique_name(ext)

    def outbound_path(self, ext: str) -> Path:
        return self.outbound_dir / self.unique_name(ext)

    def stage(
        self,
        data: bytes,
        suggested_ext: str,
        original_filename: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> UploadedAsset:
        """Write bytes to the inbound dir and describe them as an upload."""
        dest = self.inbound_path(suggested_ext)
        try:
            dest.write_bytes(data)
        except OSError:
            self.delete_now(dest)
            raise
        return UploadedAsset(
            id=str(uuid.uuid4()),
            original_filename=original_filename or dest.name,
            stored_path=dest,
            size_bytes=len(data),
            declared_mime_type=mime_type,
        )

    def schedule_delete(self, path: Path, delay: Optional[float] = None) -> None:
        """Remove ``path`` once ``delay`` seconds have passed. Re-scheduling keeps one entry."""
        if delay is None:
            delay = self.config.cleanup_delay
        not_before = self._clock() + delay
        with self._lock:
            current = self._pending.get(Path(path))
            if current is None or not_before > current:
                self._pending[Path(path)] = not_before

    def schedule_delete_many(self, paths: Iterable[Path], delay: Optional[float] = None) -> None:
        for path in paths:
            self.schedule_delete(path, delay)

    def delete_now(self, path: Path) -> None:
        """Best-effort immediate removal; a missing file is fine."""
        with self._lock:
            self._pending.pop(Path(path), None)
        self._unlink(Path(path))

    def delete_many_now(self, paths: Iterable[Path]) -> None:
        for path in paths:
            self.delete_now(path)

    def sweep(self) -> int:
        """Delete every entry whose grace delay has elapsed. Returns how many were due."""
        now = self._clock()
        with self._lock:
            due = [p for p, not_before in self._pending.items() if not_before <= now]
            for p in due:
                del self._pending[p]
        for path in due:
            self._unlink(path)
        if due:
            logger.debug("Swept %s staged files", len(due))
        return len(due)

    def pending(self) -> dict[Path, float]:
        with self._lock:
            return dict(self._pending)

    async def run_sweeper(self) -> None:
        """Sweep forever; cancel the task to stop."""
        while True:
            await asyncio.sleep(self.config.sweep_interval)
            self.sweep()

    @staticmethod
    def _unlink(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove %s: %s", path, e)
