"""Closed status vocabularies shared by the scanner, executor and ledger."""

from __future__ import annotations

from enum import Enum


class WatchStatus(str, Enum):
    """Per-path state kept by an association scanner."""

    IGNORED = "IGNORED"
    PENDING = "PENDING"
    TO_COPY = "TO_COPY"


class FileStatus(str, Enum):
    """Ledger status of a fingerprint under one source root."""

    PENDING = "PENDING"
    COPYING = "COPYING"
    COPIED = "COPIED"
    FAILED = "FAILED"

    def can_become(self, target: FileStatus) -> bool:
        """Return True when the ledger may move from this status to *target*."""
        return target in _FILE_TRANSITIONS[self]


_FILE_TRANSITIONS: dict[FileStatus, frozenset[FileStatus]] = {
    FileStatus.PENDING: frozenset({FileStatus.COPYING, FileStatus.FAILED}),
    # COPYING -> COPYING happens when a FAILED retry is claimed again
    FileStatus.COPYING: frozenset(
        {FileStatus.COPYING, FileStatus.COPIED, FileStatus.FAILED}
    ),
    FileStatus.COPIED: frozenset(),
    FileStatus.FAILED: frozenset({FileStatus.COPYING, FileStatus.FAILED}),
}


class AssociationStatus(str, Enum):
    """Live status of one association as shown to the dashboard."""

    IDLE = "idle"
    COPYING = "copying"
    ERROR = "error"


class TaskStatus(str, Enum):
    """Overall status of the sync engine."""

    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


class CopyResult(str, Enum):
    """Outcome of one copy job."""

    COPIED = "copied"
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def settled(self) -> bool:
        """True when the content is known to be at the destination already."""
        return self is not CopyResult.FAILED


class DetectionMode(str, Enum):
    """How the scanner decides that a file stopped changing."""

    POLLING = "polling"
    WATCH = "watch"
