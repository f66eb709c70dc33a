"""Unit tests for task document encoding and decoding."""

import pytest
import yaml

from taskweave import codec
from taskweave.errors import InvalidDocument
from taskweave.models import Relationships, Task
from taskweave.normalizers import Priority, TaskStatus, TaskType


def _header(text):
    return yaml.safe_load(text.split("---\n")[1])


class TestEncode:
    """Test cases for rendering tasks as documents."""

    def test_layout_and_key_order(self):
        task = Task(
            task_id="FEAT-LOGIN-1019-7K",
            title="Login form",
            task_type=TaskType.FEATURE,
            created_date="2025-10-19",
            tags=["auth"],
            content="Build the form.",
            relationships=Relationships(parent_task="FEAT-AUTH-1019-AB", sequence="01"),
        )

        text = codec.encode(task)

        assert text.startswith("---\nid: FEAT-LOGIN-1019-7K\n")
        assert text.endswith("---\n\nBuild the form.\n")
        keys = list(_header(text))
        assert keys[:4] == ["id", "title", "type", "status"]
        assert keys.index("tags") < keys.index("parent_task") < keys.index("sequence")

    def test_empty_optional_fields_are_omitted(self):
        text = codec.encode(Task(task_id="T-1", title="Bare"))
        header = _header(text)

        assert "due_date" not in header
        assert "depends_on" not in header
        assert "subtasks" not in header
        assert "is_overview" not in header

    def test_extra_keys_follow_known_keys(self):
        task = Task(task_id="T-1", title="With extra", extra={"estimate": "3d"})
        keys = list(_header(codec.encode(task)))

        assert keys[-1] == "estimate"

    def test_date_strings_stay_strings(self):
        task = Task(task_id="T-1", title="Dated", created_date="2025-10-19")
        decoded = codec.decode(codec.encode(task))

        assert decoded.created_date == "2025-10-19"


class TestDecode:
    """Test cases for parsing documents."""

    def test_yaml_document(self):
        text = (
            "---\n"
            "id: BUG-CRASH-1019-2Q\n"
            "title: Crash on save\n"
            "type: bug\n"
            "status: In Progress\n"
            "priority: 🔥 Highest\n"
            "created_date: 2025-10-01\n"
            "depends_on:\n"
            "  - FEAT-SAVE-1001-AA\n"
            "owner: sam\n"
            "---\n"
            "\n"
            "Steps to reproduce.\n"
        )

        task = codec.decode(text)

        assert task.task_id == "BUG-CRASH-1019-2Q"
        assert task.task_type is TaskType.BUG
        assert task.status is TaskStatus.IN_PROGRESS
        assert task.priority is Priority.HIGHEST
        assert task.created_date == "2025-10-01"
        assert task.relationships.depends_on == ["FEAT-SAVE-1001-AA"]
        assert task.extra == {"owner": "sam"}
        assert task.content == "Steps to reproduce."

    def test_toml_document_is_encoded_as_yaml(self):
        text = (
            "+++\n"
            'id = "TASK-20240101T120000"\n'
            'title = "Toml task"\n'
            'type = "docs"\n'
            'status = "🟢 Done"\n'
            'depends = ["A-1", "B-2"]\n'
            "+++\n"
            "\n"
            "Old body\n"
        )

        task = codec.decode(text)

        assert task.task_type is TaskType.DOCUMENTATION
        assert task.status is TaskStatus.DONE
        assert task.relationships.depends_on == ["A-1", "B-2"]
        assert codec.encode(task).startswith("---\n")

    def test_title_falls_back_to_heading(self):
        task = codec.decode("---\nid: T-1\ntype: chore\nstatus: todo\n---\n\n# From heading\n\nbody\n")
        assert task.title == "From heading"

    def test_title_falls_back_to_placeholder(self):
        task = codec.decode("---\nid: T-1\n---\n\nno heading here\n")
        assert task.title == "Untitled Task"

    def test_missing_id_is_invalid(self):
        with pytest.raises(InvalidDocument):
            codec.decode("---\ntitle: Nameless\n---\n\nbody\n")

    def test_missing_front_matter_is_invalid(self):
        with pytest.raises(InvalidDocument):
            codec.decode("# Just markdown\n")

    def test_malformed_yaml_is_invalid(self):
        with pytest.raises(InvalidDocument):
            codec.decode("---\nid: [unclosed\n---\n\nbody\n")

    def test_non_mapping_front_matter_is_invalid(self):
        with pytest.raises(InvalidDocument):
            codec.decode("---\n- a\n- b\n---\n\nbody\n")


class TestMappingFiles:
    """Test cases for small YAML side files."""

    def test_write_and_read_mapping(self, tmp_path):
        path = tmp_path / "nested" / ".phase.yaml"
        codec.write_mapping(path, {"id": "alpha", "order": 2})

        assert codec.read_mapping(path) == {"id": "alpha", "order": 2}

    def test_read_mapping_rejects_lists(self, tmp_path):
        path = tmp_path / ".phase.yaml"
        path.write_text("- one\n", encoding="utf-8")

        with pytest.raises(InvalidDocument):
            codec.read_mapping(path)
