"""Unit tests for taskweave models.

This module tests the core data structures and their serialization.
"""

from pathlib import Path

from taskweave.models import Grouping, GroupingKind, Phase, Relationships, Task
from taskweave.normalizers import PhaseStatus, Priority, TaskStatus, TaskType


class TestRelationships:
    """Test cases for the Relationships model."""

    def test_neighbor_ids_skip_empty_pointers(self):
        rel = Relationships(parent_task="P-1", next_task="N-1", depends_on=["D-1"])

        assert rel.neighbor_ids() == {"P-1", "N-1"}

    def test_to_dict_copies_lists(self):
        rel = Relationships(subtasks=["A"])
        data = rel.to_dict()
        data["subtasks"].append("B")

        assert rel.subtasks == ["A"]


class TestTask:
    """Test cases for the Task model."""

    def test_defaults(self):
        task = Task(task_id="T-1", title="Defaults")

        assert task.task_type is TaskType.CHORE
        assert task.status is TaskStatus.TODO
        assert task.priority is Priority.MEDIUM
        assert task.is_completed is False

    def test_archived_counts_as_completed(self):
        assert Task(task_id="T-1", title="Old", status=TaskStatus.ARCHIVED).is_completed

    def test_clone_is_deep(self):
        task = Task(task_id="T-1", title="Original", relationships=Relationships(depends_on=["A"]))
        copy = task.clone()
        copy.relationships.depends_on.append("B")

        assert task.relationships.depends_on == ["A"]

    def test_to_metadata_omits_empty_values(self):
        task = Task(task_id="T-1", title="Sparse", assigned_to="")
        metadata = task.to_metadata()

        assert list(metadata) == ["id", "title", "type", "status", "priority"]

    def test_to_metadata_does_not_let_extra_shadow_known_keys(self):
        task = Task(task_id="T-1", title="Real", extra={"title": "Shadow", "owner": "kim"})
        metadata = task.to_metadata()

        assert metadata["title"] == "Real"
        assert metadata["owner"] == "kim"

    def test_from_metadata_normalises_and_keeps_extra(self):
        task = Task.from_metadata(
            {
                "id": "FEAT-1019-AB",
                "title": "Login",
                "type": "feat",
                "status": "wip",
                "priority": "p1",
                "depends": "BUG-1019-CD",
                "sequence": 2,
                "estimate": "3d",
            },
            "body",
        )

        assert task.task_type is TaskType.FEATURE
        assert task.status is TaskStatus.IN_PROGRESS
        assert task.priority is Priority.HIGH
        assert task.relationships.depends_on == ["BUG-1019-CD"]
        assert task.relationships.sequence == "2"
        assert task.extra == {"estimate": "3d"}
        assert task.content == "body"

    def test_to_dict(self):
        task = Task(task_id="T-1", title="Dict", file_path=Path("/tmp/T-1.md"), content="text")

        data = task.to_dict()
        assert data["id"] == "T-1"
        assert data["file_path"] == "/tmp/T-1.md"
        assert data["content"] == "text"
        assert data["depends_on"] == []
        assert "extra" not in data

        assert "content" not in task.to_dict(include_content=False)


class TestPhase:
    """Test cases for the Phase model."""

    def test_registry_dict_skips_empty_fields(self):
        assert Phase(phase_id="alpha", name="Alpha").registry_dict() == {"id": "alpha", "name": "Alpha"}

    def test_to_dict(self):
        phase = Phase(phase_id="alpha", name="Alpha", order=1, status=PhaseStatus.IN_PROGRESS, tasks=["A", "B"])
        data = phase.to_dict()

        assert data["status"] == "in_progress"
        assert data["task_count"] == 2


class TestGrouping:
    """Test cases for feature and area groupings."""

    def test_kind_prefixes(self):
        assert GroupingKind.FEATURE.directory_name("Login") == "FEATURE_Login"
        assert GroupingKind.FEATURE.directory_name("FEATURE_Login") == "FEATURE_Login"
        assert GroupingKind.AREA.strip_prefix("AREA_Backend") == "Backend"

    def test_to_dict_with_overview(self):
        overview = Task(task_id="_overview", title="Login", is_overview=True)
        grouping = Grouping(
            kind=GroupingKind.FEATURE,
            grouping_id="FEATURE_Login",
            name="Login",
            title="Login",
            phase="alpha",
            overview=overview,
        )

        assert "overview" not in grouping.to_dict()
        assert grouping.to_dict(include_overview=True)["overview"]["id"] == "_overview"
        assert grouping.to_dict()["kind"] == "feature"
