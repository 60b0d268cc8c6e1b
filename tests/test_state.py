"""Tests for the runtime state aggregate."""

from __future__ import annotations

import json

from smart_copier.config import Association
from smart_copier.models import AssociationStatus, TaskStatus
from smart_copier.state import CopyProgress, RuntimeState

ASSOC = Association(id="a", input="/in", output="/out")


class TestRuntimeState:
    def test_initial_snapshot(self) -> None:
        snap = RuntimeState().snapshot()
        assert snap == {"running": False, "task_status": "stopped", "associations": [], "logs": []}

    def test_associations_start_idle(self) -> None:
        state = RuntimeState()
        state.set_associations([ASSOC])
        [view] = state.snapshot()["associations"]
        assert view == {
            "id": "a",
            "input": "/in",
            "output": "/out",
            "status": "idle",
            "pending_count": 0,
            "to_copy_count": 0,
            "current_file": None,
        }

    def test_status_with_progress_is_json_ready(self) -> None:
        state = RuntimeState()
        state.set_associations([ASSOC])
        state.set_association_status(
            "a",
            AssociationStatus.COPYING,
            CopyProgress("f.txt", "/in/f.txt", "/out/f.txt", 10, copied_bytes=5, percent=50),
        )
        snap = state.snapshot()
        json.dumps(snap)
        current = snap["associations"][0]["current_file"]
        assert snap["associations"][0]["status"] == "copying"
        assert current["percent"] == 50
        assert current["eta_seconds"] is None

    def test_idle_clears_current_file(self) -> None:
        state = RuntimeState()
        state.set_associations([ASSOC])
        state.set_association_status(
            "a", AssociationStatus.COPYING, CopyProgress("f", "/in/f", "/out/f", 1)
        )
        state.set_association_status("a", AssociationStatus.IDLE)
        assert state.association("a").current_file is None

    def test_unknown_association_is_ignored(self) -> None:
        state = RuntimeState()
        state.set_association_status("missing", AssociationStatus.ERROR)
        state.set_association_counts("missing", 1, 1)
        assert state.association("missing") is None

    def test_counts(self) -> None:
        state = RuntimeState()
        state.set_associations([ASSOC])
        state.set_association_counts("a", 3, 1)
        view = state.association("a")
        assert (view.pending_count, view.to_copy_count) == (3, 1)

    def test_log_ring_is_bounded_newest_first(self) -> None:
        state = RuntimeState(max_logs=3)
        for i in range(5):
            state.add_log("error", f"message {i}")
        logs = state.snapshot()["logs"]
        assert [entry["message"] for entry in logs] == ["message 4", "message 3", "message 2"]
        assert logs[0]["level"] == "error"
        assert logs[0]["time"]

    def test_default_log_ring_holds_200(self) -> None:
        state = RuntimeState()
        for i in range(250):
            state.add_log("info", str(i))
        assert len(state.snapshot()["logs"]) == 200

    def test_listeners_get_every_change(self) -> None:
        state = RuntimeState()
        seen = []
        unsubscribe = state.subscribe(seen.append)
        state.set_running(True)
        state.set_task_status(TaskStatus.RUNNING)
        assert [s["running"] for s in seen] == [True, True]
        assert seen[-1]["task_status"] == "running"

        unsubscribe()
        state.set_task_status(TaskStatus.ERROR)
        assert len(seen) == 2

    def test_unchanged_counts_do_not_publish(self) -> None:
        state = RuntimeState()
        state.set_associations([ASSOC])
        seen = []
        state.subscribe(seen.append)
        state.set_association_counts("a", 0, 0)
        assert seen == []

    def test_failing_listener_does_not_break_others(self) -> None:
        state = RuntimeState()
        seen = []

        def _broken(_snapshot) -> None:
            raise RuntimeError("boom")

        state.subscribe(_broken)
        state.subscribe(seen.append)
        state.set_running(True)
        assert len(seen) == 1
        assert state.running is True

    def test_snapshot_is_a_copy(self) -> None:
        state = RuntimeState()
        state.set_associations([ASSOC])
        snap = state.snapshot()
        snap["associations"][0]["status"] = "error"
        assert state.association("a").status is AssociationStatus.IDLE
