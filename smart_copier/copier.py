"""
File copy engine for Smart Copier.

A single worker drains one global FIFO of copy jobs, whichever association
submitted them, so at most one transfer runs at a time. Each job is
deduplicated against the copy ledger by content fingerprint, written to
``<destination>/.tmp/<relative path>.partial`` and renamed into place once
complete, so a partial file is never visible at the destination path.
Progress is published to the runtime state on every chunk.
"""

from __future__ import annotations

import logging
import math
import os
import threading
import time
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field

from smart_copier.config import Association, SyncSettings
from smart_copier.fingerprint import fingerprint_file
from smart_copier.models import AssociationStatus, CopyResult, FileStatus
from smart_copier.records import FileRecordStore, utc_now
from smart_copier.state import CopyProgress, RuntimeState

logger = logging.getLogger(__name__)

TEMP_DIR_NAME = ".tmp"
PARTIAL_SUFFIX = ".partial"
DEFAULT_CHUNK_SIZE = 1024 * 1024  # 1 MiB


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves going up (2.5 -> 3)."""
    return math.floor(value + 0.5)


def error_message(exc: BaseException) -> str:
    """Return a log-friendly message for *exc*."""
    return str(exc) or "Unknown error"


def destination_for(association: Association, source_path: str) -> tuple[str, str]:
    """Return ``(relative path, destination path)`` for a source file."""
    relative = os.path.relpath(source_path, association.input)
    return relative, os.path.join(association.output, relative)


def temp_path_for(destination_root: str, relative: str) -> str:
    """Return the in-progress path used while copying *relative*."""
    return os.path.join(destination_root, TEMP_DIR_NAME, relative + PARTIAL_SUFFIX)


def cleanup_temp_dirs(start_dir: str, temp_root: str) -> None:
    """
    Remove now-empty directories from *start_dir* up to and including *temp_root*.

    Stops at the first non-empty directory. Failures are logged and swallowed.
    """
    current = os.path.abspath(start_dir)
    root = os.path.abspath(temp_root)
    while current == root or current.startswith(root + os.sep):
        try:
            if os.listdir(current):
                break
            os.rmdir(current)
        except OSError as exc:
            logger.debug("Temp cleanup stopped at %s: %s", current, exc)
            break
        if current == root:
            break
        current = os.path.dirname(current)


@dataclass
class CopyJob:
    """One queued transfer request."""

    source_path: str
    association: Association
    settings: SyncSettings
    fingerprint: str | None = None
    size: int | None = None
    future: Future = field(default_factory=Future)


class CopyExecutor:
    """
    Performs at most one file transfer at a time, system-wide.

    Parameters
    ----------
    store : FileRecordStore
        Copy ledger used for dedup and status tracking.
    state : RuntimeState
        Receives association status and progress updates.
    chunk_size : int
        Bytes read per chunk while streaming a file.
    """

    def __init__(
        self,
        store: FileRecordStore,
        state: RuntimeState,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self._store = store
        self._state = state
        self._chunk_size = chunk_size
        self._queue: deque[CopyJob] = deque()
        self._processing = False
        self._lock = threading.Lock()

    @property
    def pending(self) -> int:
        """Number of jobs waiting behind the active one."""
        with self._lock:
            return len(self._queue)

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._processing

    def enqueue(
        self,
        source_path: str,
        association: Association,
        settings: SyncSettings,
        fingerprint: str | None = None,
        size: int | None = None,
    ) -> Future:
        """
        Queue a copy of *source_path* and return a future for its CopyResult.

        Jobs run in submission order. A worker thread is started when none is
        active; it keeps draining the queue until it is empty.
        """
        job = CopyJob(source_path, association, settings, fingerprint, size)
        with self._lock:
            self._queue.append(job)
            if self._processing:
                return job.future
            self._processing = True
        threading.Thread(target=self._drain, daemon=True, name="CopyWorker").start()
        return job.future

    def _drain(self) -> None:
        while True:
            with self._lock:
                if not self._queue:
                    self._processing = False
                    return
                job = self._queue.popleft()
            if not job.future.set_running_or_notify_cancel():
                continue
            try:
                result = self._process(job)
            except Exception as exc:
                logger.exception("Unexpected error processing %s", job.source_path)
                job.future.set_exception(exc)
            else:
                job.future.set_result(result)

    # ---- per-job pipeline ----

    def _process(self, job: CopyJob) -> CopyResult:
        source_path = job.source_path
        association = job.association
        settings = job.settings

        if settings.is_ignored(source_path):
            return CopyResult.SKIPPED

        fingerprint = job.fingerprint
        size = job.size
        source_root = association.input
        relative, destination = destination_for(association, source_path)
        filename = os.path.basename(source_path)

        try:
            if fingerprint is None or size is None:
                fingerprint, size = fingerprint_file(source_path)

            existing = self._store.find_by_fingerprint(fingerprint, source_root)
            if existing is not None and existing.file_status is FileStatus.COPIED:
                logger.info("Already copied, skipping: %s", source_path)
                return CopyResult.SKIPPED

            if existing is None:
                self._store.insert_pending(
                    fingerprint=fingerprint,
                    filename=filename,
                    source_path=source_path,
                    source_root=source_root,
                    destination_path=destination,
                    size=size,
                    first_seen_at=utc_now(),
                )

            self._store.mark_copying(fingerprint, source_root)
            self._state.set_association_status(
                association.id,
                AssociationStatus.COPYING,
                CopyProgress(filename, source_path, destination, size),
            )

            if settings.dry_run:
                logger.info("Dry run: would copy %s -> %s", source_path, destination)
            else:
                logger.info("Copying %s -> %s (%d bytes)", source_path, destination, size)
                self._copy_file(job, relative, destination, size)

            self._store.mark_copied(fingerprint, source_root, destination, utc_now())
            self._state.set_association_status(association.id, AssociationStatus.IDLE)
            return CopyResult.COPIED

        except FileNotFoundError as exc:
            if not os.path.exists(source_path):
                logger.info("Source file vanished before copy: %s", source_path)
                self._state.set_association_status(association.id, AssociationStatus.IDLE)
                return CopyResult.SKIPPED
            return self._fail(job, fingerprint, exc)
        except Exception as exc:
            return self._fail(job, fingerprint, exc)

    def _fail(self, job: CopyJob, fingerprint: str | None, exc: BaseException) -> CopyResult:
        message = error_message(exc)
        logger.error("Copy failed for %s: %s", job.source_path, message)
        if fingerprint is not None:
            try:
                self._store.mark_failed(fingerprint, job.association.input, message)
            except LookupError:
                pass
        self._state.set_association_status(job.association.id, AssociationStatus.ERROR)
        self._state.add_log("error", message)
        return CopyResult.FAILED

    def _copy_file(self, job: CopyJob, relative: str, destination: str, size: int) -> None:
        """Stream the source into a temp file, then rename it over *destination*."""
        source_path = job.source_path
        destination_root = job.association.output
        temp_path = temp_path_for(destination_root, relative)
        temp_root = os.path.join(destination_root, TEMP_DIR_NAME)
        os.makedirs(os.path.dirname(temp_path), exist_ok=True)
        os.makedirs(os.path.dirname(destination), exist_ok=True)

        progress = CopyProgress(os.path.basename(source_path), source_path, destination, size)
        started = time.monotonic()
        try:
            with open(source_path, "rb") as src, open(temp_path, "wb") as dst:
                while chunk := src.read(self._chunk_size):
                    dst.write(chunk)
                    progress.copied_bytes += len(chunk)
                    self._report_progress(job, progress, started)
            if size == 0:
                self._report_progress(job, progress, started)

            try:
                os.remove(destination)
            except FileNotFoundError:
                pass
            os.rename(temp_path, destination)
        except BaseException:
            try:
                os.remove(temp_path)
            except OSError:
                pass
            cleanup_temp_dirs(os.path.dirname(temp_path), temp_root)
            raise

        cleanup_temp_dirs(os.path.dirname(temp_path), temp_root)

    def _report_progress(self, job: CopyJob, progress: CopyProgress, started: float) -> None:
        elapsed = max(time.monotonic() - started, 0.001)
        speed = progress.copied_bytes / elapsed
        remaining = max(progress.size - progress.copied_bytes, 0)
        progress.speed_bytes_per_second = round_half_up(speed)
        progress.eta_seconds = math.ceil(remaining / speed) if speed > 0 else None
        progress.percent = (
            round_half_up(progress.copied_bytes / progress.size * 100)
            if progress.size > 0
            else 100
        )
        self._state.set_association_status(
            job.association.id,
            AssociationStatus.COPYING,
            CopyProgress(**vars(progress)),
        )
