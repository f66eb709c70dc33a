"""Unit tests for subtask sequence tokens."""

import pytest

from taskweave.errors import AlreadyExists, IOFailure, NoValidSequence, NotFound
from taskweave.models import Relationships, Task
from taskweave.sequencing import base_number, base_sequence, format_sequence, parallel_groups


def _sequences(store, parent_id):
    return {task.task_id: task.relationships.sequence for task in store.sequencer.list_subtasks(parent_id)}


@pytest.fixture
def family(new_task):
    """Parent P-1 with subtasks numbered from the given tokens."""

    def build(*tokens):
        new_task("Parent", task_id="P-1")
        for index, token in enumerate(tokens, start=1):
            new_task(f"Child {index}", task_id=f"C-{index}", parent_task="P-1", sequence=token)

    return build


class TestTokens:
    """Test cases for token helpers."""

    def test_format_and_parse(self):
        assert format_sequence(3) == "03"
        assert format_sequence(12, "b") == "12b"
        assert base_sequence("04b") == "04"
        assert base_sequence("04") == "04"
        assert base_sequence(None) is None
        assert base_number("04b") == 4
        assert base_number("later") is None

    def test_parallel_groups(self):
        def child(task_id, token):
            return Task(task_id=task_id, title=task_id, relationships=Relationships(sequence=token))

        groups = parallel_groups([child("C", "02b"), child("A", "01"), child("B", "02a"), child("D", None)])

        assert groups == [
            {"sequence": "01", "parallel": False, "tasks": ["A"]},
            {"sequence": "02", "parallel": True, "tasks": ["B", "C"]},
            {"sequence": None, "parallel": False, "tasks": ["D"]},
        ]


class TestNextSequence:
    """Test cases for automatic numbering."""

    def test_follows_subtask_count(self, store, family):
        family("01", "02")

        assert store.sequencer.next_sequence("P-1") == "03"

    def test_skips_past_collision(self, store, family):
        family("01", "03")

        assert store.sequencer.next_sequence("P-1") == "04"

    def test_parent_without_subtasks(self, store, new_task):
        new_task("Parent", task_id="P-1")

        assert store.sequencer.next_sequence("P-1") == "01"


class TestExplicitSequence:
    """Test cases for caller-supplied tokens."""

    def test_create_rejects_taken_token(self, store, family):
        family("01")

        with pytest.raises(AlreadyExists):
            store.create(
                Task(task_id="C-2", title="Clash", relationships=Relationships(parent_task="P-1", sequence="01"))
            )

        assert not store.exists("C-2")
        assert store.get("P-1").relationships.subtasks == ["C-1"]

    def test_update_rejects_taken_token(self, store, family):
        family("01", "02")

        with pytest.raises(AlreadyExists):
            store.update("C-2", {"sequence": "01"})

        assert _sequences(store, "P-1") == {"C-1": "01", "C-2": "02"}

    def test_reparenting_rejects_taken_token(self, store, family, new_task):
        family("01")
        new_task("Other parent", task_id="P-2")
        new_task("Newcomer", task_id="N-1", parent_task="P-2")

        with pytest.raises(AlreadyExists):
            store.update("N-1", {"parent_task": "P-1", "sequence": "01"})

        assert store.get("N-1").relationships.parent_task == "P-2"

    def test_free_and_own_tokens_are_accepted(self, store, family):
        family("01", "02a")

        updated, _ = store.update("C-2", {"sequence": "02b"})
        assert updated.relationships.sequence == "02b"

        updated, _ = store.update("C-1", {"sequence": "01", "title": "Same slot"})
        assert updated.relationships.sequence == "01"


class TestListSubtasks:
    """Test cases for ordered subtask listing."""

    def test_sorted_by_sequence(self, store, family):
        family("03", "01", "02")

        assert [task.task_id for task in store.sequencer.list_subtasks("P-1")] == ["C-2", "C-3", "C-1"]

    def test_missing_parent(self, store):
        with pytest.raises(NotFound):
            store.sequencer.list_subtasks("NOPE-1")


class TestReorder:
    """Test cases for reordering subtasks."""

    def test_listed_ids_take_their_position(self, store, family):
        family("01", "02", "03")

        tasks, warnings = store.sequencer.reorder("P-1", ["C-3", "C-1"])

        assert warnings == []
        assert [task.task_id for task in tasks] == ["C-3", "C-1", "C-2"]
        assert _sequences(store, "P-1") == {"C-3": "01", "C-1": "02", "C-2": "03"}

    def test_parallel_group_moves_together(self, store, family):
        family("01", "02a", "02b", "03")

        store.sequencer.reorder("P-1", ["C-4", "C-1"])

        assert _sequences(store, "P-1") == {"C-4": "01", "C-1": "02", "C-2": "03a", "C-3": "03b"}

    def test_unknown_ids_keep_their_slot(self, store, family):
        family("01", "02")

        store.sequencer.reorder("P-1", ["STRANGER-1", "C-2", "C-1"])

        assert _sequences(store, "P-1") == {"C-2": "02", "C-1": "03"}

    def test_write_failure_is_a_warning(self, store, family, monkeypatch):
        family("01", "02")
        original_save = store.save

        def failing_save(task):
            if task.task_id == "C-1":
                raise IOFailure("read-only")
            return original_save(task)

        monkeypatch.setattr(store, "save", failing_save)

        _, warnings = store.sequencer.reorder("P-1", ["C-2", "C-1"])

        assert [(w.neighbor_id, w.field) for w in warnings] == [("C-1", "sequence")]
        assert _sequences(store, "P-1")["C-2"] == "01"


class TestMakeParallel:
    """Test cases for grouping subtasks into a parallel slot."""

    def test_shares_smallest_base(self, store, family):
        family("01", "02", "03")

        tasks, _ = store.sequencer.make_parallel("P-1", ["C-2", "C-3"])

        assert _sequences(store, "P-1") == {"C-1": "01", "C-2": "02a", "C-3": "02b"}
        assert parallel_groups(tasks)[1] == {"sequence": "02", "parallel": True, "tasks": ["C-2", "C-3"]}

    def test_rejects_non_subtask(self, store, family, new_task):
        family("01", "02")
        new_task("Outsider", task_id="O-1")

        with pytest.raises(NotFound):
            store.sequencer.make_parallel("P-1", ["C-1", "O-1"])

    def test_requires_a_sequence(self, store, family):
        family("01", "02")
        store.update("C-1", {"sequence": None})
        store.update("C-2", {"sequence": None})

        with pytest.raises(NoValidSequence):
            store.sequencer.make_parallel("P-1", ["C-1", "C-2"])

    @pytest.mark.parametrize("task_ids", [["C-1"], ["C-1", "C-1"], []])
    def test_requires_two_subtasks(self, store, family, task_ids):
        family("01", "02")

        with pytest.raises(NoValidSequence):
            store.sequencer.make_parallel("P-1", task_ids)

        assert _sequences(store, "P-1") == {"C-1": "01", "C-2": "02"}
