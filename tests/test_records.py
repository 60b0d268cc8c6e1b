"""Tests for the copy ledger."""

from __future__ import annotations

import pytest

from smart_copier.models import FileStatus
from smart_copier.records import (
    INTERRUPTED_MESSAGE,
    FileRecordStore,
    InvalidTransitionError,
)


def _insert(store: FileRecordStore, fingerprint: str = "7-abc", root: str = "/src/a", **kw) -> bool:
    fields = {
        "filename": "f.txt",
        "source_path": f"{root}/f.txt",
        "source_root": root,
        "destination_path": "/dst/b/f.txt",
        "size": 7,
    }
    fields.update(kw)
    return store.insert_pending(fingerprint=fingerprint, **fields)


class TestFileRecordStore:
    def test_insert_and_find(self, store) -> None:
        assert _insert(store) is True
        record = store.find_by_fingerprint("7-abc", "/src/a")
        assert record is not None
        assert record.file_status is FileStatus.PENDING
        assert record.filename == "f.txt"
        assert record.destination_path == "/dst/b/f.txt"
        assert record.first_seen_at

    def test_find_is_scoped_by_source_root(self, store) -> None:
        _insert(store)
        assert store.find_by_fingerprint("7-abc", "/src/other") is None

    def test_same_fingerprint_under_two_roots(self, store) -> None:
        assert _insert(store, root="/src/a")
        assert _insert(store, root="/src/b")
        assert store.find_by_fingerprint("7-abc", "/src/b") is not None

    def test_duplicate_insert_is_rejected_by_unique_constraint(self, store) -> None:
        assert _insert(store) is True
        assert _insert(store, source_path="/src/a/renamed.txt") is False
        assert store.find_by_fingerprint("7-abc", "/src/a").source_path == "/src/a/f.txt"

    def test_full_lifecycle(self, store) -> None:
        _insert(store)
        store.mark_copying("7-abc", "/src/a")
        assert store.find_by_fingerprint("7-abc", "/src/a").file_status is FileStatus.COPYING
        store.mark_copied("7-abc", "/src/a", "/dst/b/f.txt", "2026-01-01T00:00:00+00:00")
        record = store.find_by_fingerprint("7-abc", "/src/a")
        assert record.file_status is FileStatus.COPIED
        assert record.copied_at == "2026-01-01T00:00:00+00:00"
        assert record.error_message is None

    def test_mark_failed_keeps_message(self, store) -> None:
        _insert(store)
        store.mark_copying("7-abc", "/src/a")
        store.mark_failed("7-abc", "/src/a", "disk full")
        record = store.find_by_fingerprint("7-abc", "/src/a")
        assert record.file_status is FileStatus.FAILED
        assert record.error_message == "disk full"

    def test_failed_record_can_be_retried(self, store) -> None:
        _insert(store)
        store.mark_copying("7-abc", "/src/a")
        store.mark_failed("7-abc", "/src/a", "boom")
        store.mark_copying("7-abc", "/src/a")
        record = store.find_by_fingerprint("7-abc", "/src/a")
        assert record.file_status is FileStatus.COPYING
        assert record.error_message is None

    def test_copied_record_cannot_go_back(self, store) -> None:
        _insert(store)
        store.mark_copying("7-abc", "/src/a")
        store.mark_copied("7-abc", "/src/a", "/dst/b/f.txt")
        with pytest.raises(InvalidTransitionError):
            store.mark_copying("7-abc", "/src/a")

    def test_mark_missing_record_raises(self, store) -> None:
        with pytest.raises(LookupError):
            store.mark_copying("nope", "/src/a")

    def test_fail_in_progress(self, store) -> None:
        _insert(store, fingerprint="1-a")
        _insert(store, fingerprint="2-b")
        _insert(store, fingerprint="3-c")
        store.mark_copying("1-a", "/src/a")
        store.mark_copying("3-c", "/src/a")
        store.mark_copied("3-c", "/src/a", "/dst/b/c")

        assert store.fail_in_progress() == 1

        interrupted = store.find_by_fingerprint("1-a", "/src/a")
        assert interrupted.file_status is FileStatus.FAILED
        assert interrupted.error_message == INTERRUPTED_MESSAGE == "Interrupted by restart"
        assert store.find_by_fingerprint("2-b", "/src/a").file_status is FileStatus.PENDING
        assert store.find_by_fingerprint("3-c", "/src/a").file_status is FileStatus.COPIED

    def test_ledger_survives_reopen(self, tmp_path) -> None:
        path = tmp_path / "ledger.db"
        first = FileRecordStore.from_path(path)
        _insert(first)
        first.mark_copying("7-abc", "/src/a")
        first.close()

        second = FileRecordStore.from_path(path)
        try:
            second.fail_in_progress()
            assert second.find_by_fingerprint("7-abc", "/src/a").file_status is FileStatus.FAILED
        finally:
            second.close()

    def test_list_history_newest_first(self, store) -> None:
        _insert(store, fingerprint="1-a", first_seen_at="2026-01-01T00:00:00+00:00")
        _insert(store, fingerprint="2-b", first_seen_at="2026-01-03T00:00:00+00:00")
        _insert(store, fingerprint="3-c", first_seen_at="2026-01-02T00:00:00+00:00")
        history = store.list_history()
        assert [r.fingerprint for r in history] == ["2-b", "3-c", "1-a"]
        assert [r.fingerprint for r in store.list_history(limit=1)] == ["2-b"]
        assert history[0].to_dict()["status"] == "PENDING"
