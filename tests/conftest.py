"""Shared test fixtures for Smart Copier."""

from __future__ import annotations

import time
from collections.abc import Callable
from concurrent.futures import Future
from pathlib import Path

import pytest

from smart_copier.config import Association, SyncSettings
from smart_copier.copier import CopyExecutor
from smart_copier.records import FileRecordStore
from smart_copier.state import RuntimeState


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll *predicate* until it holds; fail the test after *timeout* seconds."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.01)
    raise AssertionError("condition not met in time")


def write_file(path: Path, content: bytes | str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, str):
        content = content.encode()
    path.write_bytes(content)
    return path


class StubExecutor:
    """Records submissions and hands back futures the test completes."""

    def __init__(self) -> None:
        self.submissions: list[tuple[str, str | None, int | None]] = []
        self.futures: list[Future] = []

    def enqueue(self, source_path, association, settings, fingerprint=None, size=None) -> Future:
        future: Future = Future()
        self.submissions.append((source_path, fingerprint, size))
        self.futures.append(future)
        return future


@pytest.fixture
def source_root(tmp_path: Path) -> Path:
    root = tmp_path / "src"
    root.mkdir()
    return root


@pytest.fixture
def destination_root(tmp_path: Path) -> Path:
    return tmp_path / "dst"


@pytest.fixture
def association(source_root: Path, destination_root: Path) -> Association:
    return Association(id="a", input=str(source_root), output=str(destination_root))


@pytest.fixture
def settings(association: Association) -> SyncSettings:
    return SyncSettings(
        associations=(association,),
        ignored_extensions=frozenset({".tmp", ".part"}),
        scan_interval_seconds=3600,
    )


@pytest.fixture
def store(tmp_path: Path):
    store = FileRecordStore.from_path(tmp_path / "db" / "ledger.db")
    yield store
    store.close()


@pytest.fixture
def state(association: Association) -> RuntimeState:
    state = RuntimeState()
    state.set_associations([association])
    return state


@pytest.fixture
def executor(store: FileRecordStore, state: RuntimeState) -> CopyExecutor:
    return CopyExecutor(store, state)
