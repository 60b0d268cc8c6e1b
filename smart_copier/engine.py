"""
Sync engine controller for Smart Copier.

Ties together the per-association scan loops, the global copy executor,
the copy ledger and the runtime state. Configuration changes replace every
scanner wholesale: ``restart`` discards the old loops and their watch
entries and builds new ones.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future

from smart_copier.config import SyncSettings
from smart_copier.copier import CopyExecutor
from smart_copier.models import TaskStatus
from smart_copier.records import FileRecordStore
from smart_copier.state import RuntimeState
from smart_copier.watcher import AssociationScanner, ScanLoop

logger = logging.getLogger(__name__)


class SyncEngine:
    """
    Starts, stops and rescans all associations.

    The store is expected to have had ``fail_in_progress()`` run on it
    before the first ``start``.
    """

    def __init__(
        self,
        store: FileRecordStore,
        state: RuntimeState,
        executor: CopyExecutor | None = None,
    ) -> None:
        self.store = store
        self.state = state
        self.executor = executor or CopyExecutor(store, state)
        self._loops: dict[str, ScanLoop] = {}
        self._settings: SyncSettings | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, settings: SyncSettings) -> None:
        """Start one scan loop per association; any running loops are stopped first."""
        self.stop()
        self._settings = settings
        self.state.set_associations(settings.associations)
        self.state.set_running(True)
        self.state.set_task_status(TaskStatus.RUNNING)

        for assoc in settings.associations:
            scanner = AssociationScanner(assoc, self.executor, self.store, self.state)
            loop = ScanLoop(scanner, settings, self.state)
            self._loops[assoc.id] = loop
            loop.start()
        logger.info("Sync started with %d association(s).", len(self._loops))

    def stop(self) -> None:
        """Stop every scan loop. A copy already running is left to finish."""
        if not self._loops and not self.state.running:
            return
        for loop in self._loops.values():
            loop.stop()
        self._loops.clear()
        self.state.set_running(False)
        self.state.set_task_status(TaskStatus.STOPPED)
        logger.info("Sync stopped.")

    def restart(self, settings: SyncSettings) -> None:
        """Restart sync with new settings (called after a configuration change)."""
        self.start(settings)

    def rescan_all(self, settings: SyncSettings | None = None) -> list[Future]:
        """
        Scan every association now, in the caller's thread.

        Returns the futures of all copy jobs submitted by these scans.
        """
        settings = settings or self._settings
        if settings is None:
            return []
        futures: list[Future] = []
        for loop in list(self._loops.values()):
            futures.extend(loop.run_once(settings))
        return futures

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return bool(self._loops)

    @property
    def settings(self) -> SyncSettings | None:
        return self._settings

    def scanner(self, association_id: str) -> AssociationScanner | None:
        loop = self._loops.get(association_id)
        return loop.scanner if loop else None
