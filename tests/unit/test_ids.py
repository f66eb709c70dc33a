"""Unit tests for task id generation."""

import re
from datetime import datetime

from taskweave.ids import (
    SUFFIX_CHARS,
    extract_context,
    generate_task_id,
    generate_timestamp_id,
    random_suffix,
    type_prefix,
)
from taskweave.normalizers import TaskType


class TestExtractContext:
    """Test cases for title context extraction."""

    def test_skips_stop_words(self):
        assert extract_context("Fix the login form validation") == "FIXLOGIN"

    def test_strips_punctuation(self):
        assert extract_context("Don't crash!", max_words=1) == "DONT"

    def test_empty_inputs(self):
        assert extract_context("") == ""
        assert extract_context("Anything", max_words=0) == ""
        assert extract_context("the and of") == ""


class TestGenerateTaskId:
    """Test cases for generated ids."""

    def test_concise_id(self):
        task_id = generate_task_id(TaskType.FEATURE, "Add login form", today=datetime(2025, 10, 19))

        assert re.match(r"^FEAT-ADDLOGIN-1019-[0-9A-Z]{2}$", task_id)

    def test_id_without_context(self):
        task_id = generate_task_id("bug", "", today=datetime(2025, 1, 2))

        assert re.match(r"^BUG-0102-[0-9A-Z]{2}$", task_id)

    def test_type_prefix(self):
        assert type_prefix(None) == "TASK"
        assert type_prefix("docs") == "DOC"
        assert type_prefix(TaskType.REFACTOR) == "REFACT"

    def test_random_suffix_alphabet(self):
        suffix = random_suffix(50)

        assert len(suffix) == 50
        assert set(suffix) <= set(SUFFIX_CHARS)

    def test_timestamp_id(self):
        task_id = generate_timestamp_id(datetime(2025, 10, 19, 14, 30, 0))

        assert task_id == "TASK-20251019T143000"
