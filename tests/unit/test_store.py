"""Unit tests for TaskStore CRUD and file handling."""

import os
import re
import threading
import time
from datetime import date

import pytest

from taskweave.errors import AlreadyExists, InvalidIdentifier, IOFailure, NotFound
from taskweave.models import Relationships, Task
from taskweave.normalizers import Priority, TaskStatus, TaskType
from taskweave.store import TaskStore, apply_patch


class TestApplyPatch:
    """Test cases for partial metadata patches."""

    def test_normalises_enum_fields(self):
        task = Task(task_id="T-1", title="Patch me")
        apply_patch(task, {"status": "wip", "priority": "🔥", "type": "bug"})

        assert task.status is TaskStatus.IN_PROGRESS
        assert task.priority is Priority.HIGHEST
        assert task.task_type is TaskType.BUG

    def test_none_clears_optional_fields(self):
        task = Task(task_id="T-1", title="Patch me", assigned_to="kim", extra={"estimate": "3d"})
        apply_patch(task, {"assigned_to": None, "estimate": None})

        assert task.assigned_to is None
        assert task.extra == {}

    def test_empty_title_is_ignored(self):
        task = Task(task_id="T-1", title="Keep")
        apply_patch(task, {"title": ""})

        assert task.title == "Keep"

    def test_dependency_lists_are_deduplicated(self):
        task = Task(task_id="T-1", title="Deps")
        apply_patch(task, {"depends": ["A", "B", "A"]})

        assert task.relationships.depends_on == ["A", "B"]

    def test_unknown_keys_go_to_extra(self):
        task = Task(task_id="T-1", title="Extra")
        apply_patch(task, {"estimate": "2d", "updated_date": "1999-01-01"})

        assert task.extra == {"estimate": "2d"}
        assert task.updated_date is None


class TestCreate:
    """Test cases for TaskStore.create."""

    def test_generates_id_and_dates(self, store, config):
        task, warnings = store.create(Task(task_id="", title="Add login form", task_type=TaskType.FEATURE))

        assert warnings == []
        assert re.match(r"^FEAT-ADDLOGIN-\d{4}-[0-9A-Z]{2}$", task.task_id)
        assert task.created_date == date.today().isoformat()
        assert task.updated_date == task.created_date
        assert task.file_path == config.tasks_root / f"{task.task_id}.md"
        assert task.file_path.is_file()

    def test_location_hints(self, store, config):
        task, _ = store.create(Task(task_id="T-1", title="Placed"), "alpha", "FEATURE_Login")

        assert task.file_path == config.tasks_root / "alpha" / "FEATURE_Login" / "T-1.md"
        assert store.read(task.file_path).phase == "alpha"

    def test_timestamp_ids(self, config):
        store = TaskStore(config.with_overrides(id_format="timestamp"))
        task, _ = store.create(Task(task_id="", title="Legacy style"))

        assert re.match(r"^TASK-\d{8}T\d{6}$", task.task_id)

    def test_duplicate_id_in_another_directory(self, store):
        store.create(Task(task_id="T-1", title="First"), "alpha")

        with pytest.raises(AlreadyExists):
            store.create(Task(task_id="T-1", title="Second"), "beta")

    def test_duplicate_path(self, store):
        store.create(Task(task_id="T-1", title="First"))

        with pytest.raises(AlreadyExists):
            store.create(Task(task_id="T-1", title="Again"))

    def test_overviews_may_share_an_id(self, store):
        first, _ = store.create(Task(task_id="_overview", title="A"), "alpha", "FEATURE_A")
        second, _ = store.create(Task(task_id="_overview", title="B"), "alpha", "FEATURE_B")

        assert first.is_overview and second.is_overview
        assert first.file_path != second.file_path

    @pytest.mark.parametrize("phase, subdirectory", [("../escape", None), ("alpha", "FEATURE_A/../../x")])
    def test_rejects_unsafe_locations(self, store, phase, subdirectory):
        with pytest.raises(InvalidIdentifier):
            store.create(Task(task_id="T-1", title="Unsafe"), phase, subdirectory)

    def test_rejects_unsafe_id(self, store):
        with pytest.raises(InvalidIdentifier):
            store.create(Task(task_id="../T-1", title="Unsafe"))

    def test_rejects_subdirectory_without_phase(self, store, config):
        with pytest.raises(InvalidIdentifier):
            store.create(Task(task_id="T-1", title="Loose"), None, "FEATURE_login")

        assert not (config.tasks_root / "FEATURE_login").exists()


class TestGet:
    """Test cases for TaskStore.get."""

    def test_by_hint_and_by_scan(self, store, new_task):
        created = new_task("Somewhere", "alpha", "AREA_Backend", task_id="T-1")

        assert store.get("T-1", "alpha", "AREA_Backend").file_path == created.file_path
        assert store.get("T-1").file_path == created.file_path

    def test_wrong_hint_falls_back_to_scan(self, store, new_task):
        new_task("Somewhere", "alpha", task_id="T-1")

        assert store.get("T-1", "beta").phase == "alpha"

    def test_subdirectory_patch_needs_a_phase(self, store, new_task):
        created = new_task("Rootless", task_id="T-1")

        with pytest.raises(InvalidIdentifier):
            store.update("T-1", {"subdirectory": "FEATURE_login"})

        assert created.file_path.is_file()
        assert store.get("T-1").subdirectory is None

    def test_toml_document_is_rewritten_as_yaml(self, store, config):
        path = config.tasks_root / "T-1.md"
        path.parent.mkdir(parents=True)
        path.write_text('+++\nid = "T-1"\ntitle = "Toml"\ntype = "chore"\nstatus = "todo"\n+++\n\nBody\n', encoding="utf-8")

        store.update("T-1", {"status": "done"})

        text = path.read_text(encoding="utf-8")
        assert text.startswith("---\n")
        assert store.get("T-1").status is TaskStatus.DONE

    def test_missing_task(self, store):
        with pytest.raises(NotFound):
            store.get("NOPE-1")

    def test_missing_overview_with_hints(self, store, new_task):
        new_task("Elsewhere", "alpha", "FEATURE_A", task_id="_overview")

        with pytest.raises(NotFound):
            store.get("_overview", "alpha", "FEATURE_B")


class TestUpdate:
    """Test cases for TaskStore.update."""

    def test_patch_in_place(self, store, new_task):
        created = new_task("Before", task_id="T-1", created_date="2024-01-01", updated_date="2024-01-01")

        updated, warnings = store.update("T-1", {"title": "After", "status": "done", "estimate": "1d"})

        assert warnings == []
        assert updated.file_path == created.file_path
        reread = store.read(created.file_path)
        assert reread.title == "After"
        assert reread.status is TaskStatus.DONE
        assert reread.extra == {"estimate": "1d"}
        assert reread.created_date == "2024-01-01"
        assert reread.updated_date == date.today().isoformat()

    def test_id_cannot_change(self, store, new_task):
        new_task("Fixed id", task_id="T-1")

        with pytest.raises(InvalidIdentifier):
            store.update("T-1", {"id": "T-2"})

    def test_same_id_in_patch_is_accepted(self, store, new_task):
        new_task("Fixed id", task_id="T-1")

        updated, _ = store.update("T-1", {"id": "T-1", "title": "Renamed"})
        assert updated.title == "Renamed"

    def test_location_patch_moves_file(self, store, new_task, config):
        created = new_task("Mover", "alpha", task_id="T-1")

        updated, _ = store.update("T-1", {"phase": "beta", "subdirectory": "FEATURE_X"})

        assert updated.file_path == config.tasks_root / "beta" / "FEATURE_X" / "T-1.md"
        assert not created.file_path.exists()
        assert store.read(updated.file_path).phase == "beta"

    def test_missing_task(self, store):
        with pytest.raises(NotFound):
            store.update("NOPE-1", {"title": "x"})


class TestDelete:
    """Test cases for TaskStore.delete."""

    def test_removes_file(self, store, new_task):
        created = new_task("Doomed", task_id="T-1")

        task, warnings = store.delete("T-1")

        assert task.task_id == "T-1"
        assert warnings == []
        assert not created.file_path.exists()
        assert not store.exists("T-1")

    def test_missing_task(self, store):
        with pytest.raises(NotFound):
            store.delete("NOPE-1")


class TestWrite:
    """Test cases for the atomic file write."""

    def test_leaves_no_temporary_files(self, store, new_task, config):
        new_task("Clean", task_id="T-1")
        store.update("T-1", {"title": "Still clean"})

        assert sorted(path.name for path in config.tasks_root.iterdir()) == ["T-1.md"]

    def test_failure_raises_io_failure_and_keeps_old_content(self, store, new_task, config, monkeypatch):
        created = new_task("Original", task_id="T-1")

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", broken_replace)

        with pytest.raises(IOFailure):
            store.update("T-1", {"title": "Lost"})

        assert store.read(created.file_path).title == "Original"
        assert sorted(path.name for path in config.tasks_root.iterdir()) == ["T-1.md"]

    def test_list_skips_completed_by_default(self, store, new_task):
        new_task("Open", task_id="T-1")
        new_task("Closed", task_id="T-2", status=TaskStatus.DONE)

        assert [task.task_id for task in store.list()] == ["T-1"]


class TestConcurrentUpdates:
    """Concurrent writers to one task each read it under its lock."""

    def _slow_reads(self, store, monkeypatch):
        original_get = store.get

        def slow_get(*args, **kwargs):
            task = original_get(*args, **kwargs)
            time.sleep(0.05)
            return task

        monkeypatch.setattr(store, "get", slow_get)
        return original_get

    def _run_all(self, *targets):
        threads = [threading.Thread(target=target) for target in targets]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

    def test_no_patch_is_lost(self, store, new_task, monkeypatch):
        new_task("Shared", task_id="T-1")
        original_get = self._slow_reads(store, monkeypatch)

        self._run_all(
            lambda: store.update("T-1", {"assigned_to": "alice"}),
            lambda: store.update("T-1", {"tags": ["x"]}),
        )

        final = original_get("T-1")
        assert final.assigned_to == "alice"
        assert final.tags == ["x"]
        assert len(store.locks) == 0

    def test_siblings_get_distinct_sequences(self, store, new_task, monkeypatch):
        new_task("Parent", task_id="P-1")
        original_next = store.sequencer.next_sequence

        def slow_next(parent_id):
            token = original_next(parent_id)
            time.sleep(0.05)
            return token

        monkeypatch.setattr(store.sequencer, "next_sequence", slow_next)

        self._run_all(
            lambda: store.create(Task(task_id="C-1", title="One", relationships=Relationships(parent_task="P-1"))),
            lambda: store.create(Task(task_id="C-2", title="Two", relationships=Relationships(parent_task="P-1"))),
        )

        children = store.query.subtasks_of("P-1")
        assert sorted(child.relationships.sequence for child in children) == ["01", "02"]
        assert sorted(store.get("P-1").relationships.subtasks) == ["C-1", "C-2"]
