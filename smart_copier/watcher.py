"""Source folder scanning for Smart Copier.

Each association gets an ``AssociationScanner`` that walks its source tree
on every cycle and keeps a small state machine per file path:

    IGNORED  ->  PENDING  ->  TO_COPY  ->  (submitted)  ->  IGNORED

A file becomes TO_COPY once the configured stability policy says it has
stopped changing, is then submitted to the copy executor, and is parked as
IGNORED once its content is known to be at the destination.

In watch mode a watchdog observer wakes the scan loop early whenever the
source tree changes, so the window-based policy can react quickly.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from smart_copier.config import Association, SyncSettings
from smart_copier.copier import CopyExecutor, error_message
from smart_copier.fingerprint import fingerprint_file
from smart_copier.models import (
    AssociationStatus,
    CopyResult,
    DetectionMode,
    FileStatus,
    TaskStatus,
    WatchStatus,
)
from smart_copier.records import FileRecordStore
from smart_copier.state import RuntimeState

logger = logging.getLogger(__name__)


@dataclass
class WatchEntry:
    """What the scanner last observed about one source file."""

    size: int
    last_checked_at: float
    status: WatchStatus
    fingerprint: str | None = None
    in_flight: bool = False
    mtime: float = 0.0
    changed_at: float = 0.0

    def demote(self) -> None:
        """Back to PENDING: the earlier observation no longer holds."""
        self.status = WatchStatus.PENDING
        self.fingerprint = None
        self.in_flight = False


# ---- stability policies ----


class StabilityPolicy(ABC):
    """Decides whether a PENDING entry has stopped changing."""

    @abstractmethod
    def is_stable(self, entry: WatchEntry, size: int, mtime: float, now: float) -> bool:
        """Return True once the file may be promoted to TO_COPY."""


class TwoScanPolicy(StabilityPolicy):
    """Stable when two consecutive scans see the same size."""

    def is_stable(self, entry: WatchEntry, size: int, mtime: float, now: float) -> bool:
        return entry.size == size


class WindowPolicy(StabilityPolicy):
    """Stable when size and mtime have not changed for *window_seconds*."""

    def __init__(self, window_seconds: float):
        self.window_seconds = window_seconds

    def is_stable(self, entry: WatchEntry, size: int, mtime: float, now: float) -> bool:
        if entry.size != size or entry.mtime != mtime:
            return False
        return now - entry.changed_at >= self.window_seconds


def policy_for(settings: SyncSettings) -> StabilityPolicy:
    if settings.detection_mode is DetectionMode.WATCH:
        return WindowPolicy(settings.stability_window_seconds)
    return TwoScanPolicy()


# ---- listing ----


def walk_source(root: str) -> tuple[list[str], list[str]]:
    """
    Return ``(files, directories)`` below *root*, recursively.

    Symlinks are not followed. Errors (including a missing *root*) propagate;
    a sub-directory removed while the walk is running is skipped.
    """
    files: list[str] = []
    dirs: list[str] = []
    pending = [root]
    while pending:
        current = pending.pop()
        try:
            it = os.scandir(current)
        except FileNotFoundError:
            if current == root:
                raise
            continue
        with it:
            for item in it:
                if item.is_dir(follow_symlinks=False):
                    dirs.append(item.path)
                    pending.append(item.path)
                elif item.is_file(follow_symlinks=False):
                    files.append(item.path)
    files.sort()
    dirs.sort()
    return files, dirs


class AssociationScanner:
    """
    Owns the watch entries of one association and runs its scan cycles.

    Parameters
    ----------
    association : Association
        The source/destination mapping being scanned.
    executor : CopyExecutor
        Global copy queue stable files are submitted to.
    store : FileRecordStore
        Ledger consulted to recognise content that was already copied.
    state : RuntimeState
        Receives pending/to-copy counts and error reports.
    clock : callable, optional
        Monotonic time source, replaceable in tests.
    """

    def __init__(
        self,
        association: Association,
        executor: CopyExecutor,
        store: FileRecordStore,
        state: RuntimeState,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.association = association
        self._executor = executor
        self._store = store
        self._state = state
        self._clock = clock
        self._entries: dict[str, WatchEntry] = {}
        # _scan_lock serialises whole cycles; _lock guards _entries and is
        # shared with completion callbacks from the copy worker.
        self._scan_lock = threading.Lock()
        self._lock = threading.Lock()

    # ---- introspection ----

    def entry(self, path: str) -> WatchEntry | None:
        with self._lock:
            entry = self._entries.get(path)
            return None if entry is None else WatchEntry(**vars(entry))

    def counts(self) -> tuple[int, int]:
        """Return ``(pending, to_copy)`` for the current entries."""
        with self._lock:
            return self._counts_locked()

    def _counts_locked(self) -> tuple[int, int]:
        pending = sum(1 for e in self._entries.values() if e.status is WatchStatus.PENDING)
        to_copy = sum(1 for e in self._entries.values() if e.status is WatchStatus.TO_COPY)
        return pending, to_copy

    # ---- scan cycle ----

    def scan(self, settings: SyncSettings) -> list[Future]:
        """
        Run one scan cycle and return the futures of the jobs it submitted.

        Listing and unexpected stat errors propagate to the caller.
        """
        with self._scan_lock:
            policy = policy_for(settings)
            files, dirs = walk_source(self.association.input)
            if not settings.dry_run:
                self._mirror_directories(dirs)

            observed: set[str] = set()
            for path in files:
                if self._observe(path, settings, policy):
                    observed.add(path)

            with self._lock:
                for path in [p for p in self._entries if p not in observed]:
                    del self._entries[path]
                pending, to_copy = self._counts_locked()
            self._state.set_association_counts(self.association.id, pending, to_copy)

            return self._submit_ready(settings)

    def _mirror_directories(self, dirs: list[str]) -> None:
        for dir_path in dirs:
            relative = os.path.relpath(dir_path, self.association.input)
            if relative == "." or relative.startswith(".."):
                continue
            os.makedirs(os.path.join(self.association.output, relative), exist_ok=True)

    def _observe(self, path: str, settings: SyncSettings, policy: StabilityPolicy) -> bool:
        """Update the entry for *path*; return False if it vanished mid-scan."""
        try:
            st = os.stat(path)
        except FileNotFoundError:
            return False
        size, mtime = st.st_size, st.st_mtime
        now = self._clock()

        if settings.is_ignored(path):
            with self._lock:
                entry = self._entries.get(path)
                if entry is None:
                    self._entries[path] = WatchEntry(
                        size, now, WatchStatus.IGNORED, mtime=mtime, changed_at=now
                    )
                else:
                    entry.status = WatchStatus.IGNORED
                    entry.size = size
                    entry.last_checked_at = now
            return True

        with self._lock:
            known = path in self._entries
        if not known:
            return self._observe_new(path, now, mtime)

        with self._lock:
            entry = self._entries.get(path)
            if entry is None:
                return True
            self._advance(entry, size, mtime, now, policy)
        return True

    def _observe_new(self, path: str, now: float, mtime: float) -> bool:
        try:
            fingerprint, size = fingerprint_file(path)
        except FileNotFoundError:
            return False
        record = self._store.find_by_fingerprint(fingerprint, self.association.input)
        if record is not None and record.file_status is FileStatus.COPIED:
            status = WatchStatus.IGNORED
            logger.debug("Already copied, ignoring: %s", path)
        else:
            status = WatchStatus.PENDING
            logger.debug("New file pending: %s (size=%d)", path, size)
        with self._lock:
            self._entries[path] = WatchEntry(
                size, now, status, fingerprint=fingerprint, mtime=mtime, changed_at=now
            )
        return True

    def _advance(
        self,
        entry: WatchEntry,
        size: int,
        mtime: float,
        now: float,
        policy: StabilityPolicy,
    ) -> None:
        """Apply one observation to *entry*. Caller holds ``_lock``."""
        entry.last_checked_at = now
        if entry.status is WatchStatus.IGNORED:
            if size != entry.size:
                entry.demote()
                self._record_change(entry, size, mtime, now)
            return

        if entry.status is WatchStatus.TO_COPY:
            if not entry.in_flight and size != entry.size:
                entry.demote()
                self._record_change(entry, size, mtime, now)
            return

        # PENDING
        if policy.is_stable(entry, size, mtime, now):
            entry.status = WatchStatus.TO_COPY
        elif size != entry.size or mtime != entry.mtime:
            entry.fingerprint = None
            self._record_change(entry, size, mtime, now)

    @staticmethod
    def _record_change(entry: WatchEntry, size: int, mtime: float, now: float) -> None:
        entry.size = size
        entry.mtime = mtime
        entry.changed_at = now

    # ---- submission ----

    def _submit_ready(self, settings: SyncSettings) -> list[Future]:
        with self._lock:
            ready = []
            for path, entry in self._entries.items():
                if entry.status is WatchStatus.TO_COPY and not entry.in_flight:
                    entry.in_flight = True
                    ready.append((path, entry.fingerprint, entry.size))

        futures = []
        for path, fingerprint, size in ready:
            logger.info("File stable, queueing copy: %s", path)
            future = self._executor.enqueue(
                path, self.association, settings, fingerprint, size
            )
            future.add_done_callback(lambda f, p=path: self._on_copy_done(p, f))
            futures.append(future)
        return futures

    def _on_copy_done(self, path: str, future: Future) -> None:
        if future.cancelled():
            # Treated like a failed copy: the entry stays TO_COPY.
            with self._lock:
                entry = self._entries.get(path)
                if entry is not None:
                    entry.in_flight = False
            logger.info("Copy job for %s was cancelled, will retry on next scan", path)
            return
        exc = future.exception()
        with self._lock:
            entry = self._entries.get(path)
            if entry is not None:
                entry.in_flight = False
                if exc is None and future.result().settled:
                    entry.status = WatchStatus.IGNORED
            pending, to_copy = self._counts_locked()
        self._state.set_association_counts(self.association.id, pending, to_copy)

        if exc is not None:
            logger.error("Copy job for %s raised: %s", path, exc)
            self._state.set_task_status(TaskStatus.ERROR)
            self._state.add_log("error", error_message(exc))
        elif future.result() is CopyResult.FAILED:
            logger.warning("Copy failed, will retry on next scan: %s", path)


_WAKE_EVENTS = frozenset({"created", "modified", "moved", "deleted", "closed"})


class _WakeHandler(FileSystemEventHandler):
    """Watchdog handler that pokes a scan loop when a file is written or moved."""

    def __init__(self, on_change: Callable[[], None]):
        super().__init__()
        self._on_change = on_change

    def on_any_event(self, event: FileSystemEvent) -> None:
        # Reads (including our own fingerprinting) show up as opened /
        # closed_no_write and must not trigger another scan.
        if event.event_type not in _WAKE_EVENTS:
            return
        if event.is_directory and event.event_type == "modified":
            return
        self._on_change()


class ScanLoop:
    """
    Background thread that scans one association on a fixed interval.

    Usage:
        loop = ScanLoop(scanner, settings, state)
        loop.start()
        ...
        loop.stop()
    """

    def __init__(
        self,
        scanner: AssociationScanner,
        settings: SyncSettings,
        state: RuntimeState,
    ):
        self.scanner = scanner
        self.settings = settings
        self._state = state
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: threading.Thread | None = None
        self._observer: Any | None = None

    # ---- lifecycle ----

    def start(self) -> None:
        """Start the periodic scan thread (and the watchdog observer in watch mode)."""
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name=f"Scan-{self.scanner.association.id}",
        )
        self._thread.start()
        if self.settings.detection_mode is DetectionMode.WATCH:
            self._start_observer()
        logger.info(
            "Scanning '%s' every %ss (mode=%s)",
            self.scanner.association.input,
            self.settings.scan_interval_seconds,
            self.settings.detection_mode.value,
        )

    def stop(self, timeout: float | None = 5) -> None:
        """Stop scanning and release resources."""
        self._stop.set()
        self._wake.set()
        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None

    def wake(self) -> None:
        """Run the next scan now instead of waiting for the interval."""
        self._wake.set()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _start_observer(self) -> None:
        source = self.scanner.association.input
        if not os.path.isdir(source):
            logger.error("Source folder does not exist, not watching: %s", source)
            return
        observer = Observer()
        observer.schedule(_WakeHandler(self.wake), source, recursive=True)
        observer.start()
        self._observer = observer

    def _run(self) -> None:
        while not self._stop.is_set():
            self.run_once(self.settings)
            self._wake.wait(timeout=self.settings.scan_interval_seconds)
            self._wake.clear()

    def run_once(self, settings: SyncSettings) -> list[Future]:
        """Scan once, reporting any failure instead of raising it."""
        try:
            return self.scanner.scan(settings)
        except Exception as exc:
            logger.exception("Scan failed for association %s", self.scanner.association.id)
            self._state.set_association_status(
                self.scanner.association.id, AssociationStatus.ERROR
            )
            self._state.set_task_status(TaskStatus.ERROR)
            self._state.add_log("error", error_message(exc))
            return []
