"""
In-memory runtime view of the sync engine.

Aggregates per-association status, pending/to-copy counts, the progress of
the file being copied and a bounded ring of log entries. Every change is
pushed to the subscribed listeners (e.g. a server-sent-events broadcaster)
as a fresh snapshot.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass, field
from typing import Any

from smart_copier.config import Association
from smart_copier.models import AssociationStatus, TaskStatus
from smart_copier.records import utc_now

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 200

Snapshot = dict[str, Any]
Listener = Callable[[Snapshot], None]


@dataclass
class CopyProgress:
    """Progress of the transfer currently running for an association."""

    filename: str
    source_path: str
    destination_path: str
    size: int
    copied_bytes: int = 0
    percent: int = 0
    speed_bytes_per_second: int = 0
    eta_seconds: int | None = None


@dataclass
class AssociationView:
    id: str
    input: str
    output: str
    status: AssociationStatus = AssociationStatus.IDLE
    pending_count: int = 0
    to_copy_count: int = 0
    current_file: CopyProgress | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class LogEntry:
    level: str
    message: str
    time: str = field(default_factory=utc_now)


class RuntimeState:
    """Thread-safe aggregate of what the engine is doing right now."""

    def __init__(self, max_logs: int = MAX_LOG_ENTRIES) -> None:
        self._lock = threading.Lock()
        self._running = False
        self._task_status = TaskStatus.STOPPED
        self._associations: dict[str, AssociationView] = {}
        self._logs: deque[LogEntry] = deque(maxlen=max_logs)
        self._listeners: list[Listener] = []

    # ---- listeners ----

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; return a callable that removes it again."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        if not listeners:
            return
        snap = self.snapshot()
        for listener in listeners:
            try:
                listener(snap)
            except Exception:
                logger.exception("Error in state listener")

    # ---- mutations ----

    def set_associations(self, associations: Iterable[Association]) -> None:
        with self._lock:
            self._associations = {
                a.id: AssociationView(id=a.id, input=a.input, output=a.output)
                for a in associations
            }
        self._publish()

    def set_running(self, running: bool) -> None:
        with self._lock:
            self._running = running
        self._publish()

    def set_task_status(self, status: TaskStatus) -> None:
        with self._lock:
            self._task_status = status
        self._publish()

    def set_association_status(
        self,
        association_id: str,
        status: AssociationStatus,
        current_file: CopyProgress | None = None,
    ) -> None:
        """Set status and progress; unknown ids are ignored."""
        with self._lock:
            view = self._associations.get(association_id)
            if view is None:
                return
            view.status = status
            view.current_file = current_file
        self._publish()

    def set_association_counts(
        self, association_id: str, pending_count: int, to_copy_count: int
    ) -> None:
        with self._lock:
            view = self._associations.get(association_id)
            if view is None:
                return
            if (view.pending_count, view.to_copy_count) == (pending_count, to_copy_count):
                return
            view.pending_count = pending_count
            view.to_copy_count = to_copy_count
        self._publish()

    def add_log(self, level: str, message: str) -> None:
        """Prepend an entry to the log ring; the oldest entry drops off."""
        with self._lock:
            self._logs.appendleft(LogEntry(level=level, message=message))
        self._publish()

    # ---- queries ----

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def task_status(self) -> TaskStatus:
        with self._lock:
            return self._task_status

    def association(self, association_id: str) -> AssociationView | None:
        """Return a copy of the view for *association_id*."""
        with self._lock:
            view = self._associations.get(association_id)
            if view is None:
                return None
            current = CopyProgress(**asdict(view.current_file)) if view.current_file else None
            return AssociationView(
                id=view.id,
                input=view.input,
                output=view.output,
                status=view.status,
                pending_count=view.pending_count,
                to_copy_count=view.to_copy_count,
                current_file=current,
            )

    def snapshot(self) -> Snapshot:
        """Return a JSON-ready copy of the whole runtime state."""
        with self._lock:
            return {
                "running": self._running,
                "task_status": self._task_status.value,
                "associations": [v.to_dict() for v in self._associations.values()],
                "logs": [asdict(entry) for entry in self._logs],
            }
