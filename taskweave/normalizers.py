"""Normalisation of free-text status, priority and type values.

Users and legacy documents spell the same value many ways: canonical names
("in_progress"), labels ("In Progress"), emoji-prefixed labels
("🔵 In Progress"), bare emojis and aliases ("wip"). Everything is mapped to
a closed enum once at the input boundary; unrecognised input falls back to
a documented default instead of raising.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger("taskweave.normalizers")


class TaskStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DONE = "done"
    ARCHIVED = "archived"

    @property
    def is_completed(self) -> bool:
        return self in (TaskStatus.DONE, TaskStatus.ARCHIVED)


class Priority(str, Enum):
    HIGHEST = "highest"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def weight(self) -> int:
        return PRIORITY_ORDER[self]


class TaskType(str, Enum):
    FEATURE = "feature"
    BUG = "bug"
    CHORE = "chore"
    DOCUMENTATION = "documentation"
    TEST = "test"
    SPIKE = "spike"
    REFACTOR = "refactor"


class PhaseStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


PRIORITY_ORDER: Dict[Priority, int] = {
    Priority.HIGHEST: 4,
    Priority.HIGH: 3,
    Priority.MEDIUM: 2,
    Priority.LOW: 1,
}


@dataclass(slots=True)
class ValueSpec:
    """Every accepted spelling of one canonical value."""

    value: Enum
    label: str
    emoji: Optional[str] = None
    aliases: List[str] = field(default_factory=list)


STATUS_VALUES = [
    ValueSpec(TaskStatus.TODO, "To Do", "🟡", ["pending", "new", "open", "not started", "planned"]),
    ValueSpec(TaskStatus.IN_PROGRESS, "In Progress", "🔵", ["wip", "doing", "started", "active", "in-progress", "ongoing"]),
    ValueSpec(TaskStatus.BLOCKED, "Blocked", "⚪", ["on hold", "waiting", "stuck", "paused"]),
    ValueSpec(TaskStatus.DONE, "Done", "🟢", ["complete", "completed", "finished", "closed", "resolved"]),
    ValueSpec(TaskStatus.ARCHIVED, "Archived", "🗄️", ["archive", "shelved"]),
]

PRIORITY_VALUES = [
    ValueSpec(Priority.HIGHEST, "Highest", "🔥", ["critical", "urgent", "blocker", "p0"]),
    ValueSpec(Priority.HIGH, "High", "🔼", ["important", "p1"]),
    ValueSpec(Priority.MEDIUM, "Medium", "▶️", ["normal", "default", "p2"]),
    ValueSpec(Priority.LOW, "Low", "🔽", ["minor", "trivial", "someday", "p3"]),
]

TYPE_VALUES = [
    ValueSpec(TaskType.FEATURE, "Feature", "🌟", ["feat", "implementation", "enhancement", "story"]),
    ValueSpec(TaskType.BUG, "Bug", "🐛", ["fix", "defect", "bugfix", "issue"]),
    ValueSpec(TaskType.CHORE, "Chore", "🔧", ["maintenance", "config", "task"]),
    ValueSpec(TaskType.DOCUMENTATION, "Documentation", "📚", ["docs", "doc"]),
    ValueSpec(TaskType.TEST, "Test", "🧪", ["testing", "qa"]),
    ValueSpec(TaskType.SPIKE, "Spike", "💡", ["research", "investigation", "exploration"]),
    ValueSpec(TaskType.REFACTOR, "Refactor", "♻️", ["refactoring", "cleanup"]),
]

PHASE_STATUS_VALUES = [
    ValueSpec(PhaseStatus.PENDING, "Pending", "🟡", ["todo", "planned", "not started"]),
    ValueSpec(PhaseStatus.IN_PROGRESS, "In Progress", "🔵", ["active", "wip", "started"]),
    ValueSpec(PhaseStatus.COMPLETED, "Completed", "🟢", ["done", "complete", "finished", "released"]),
    ValueSpec(PhaseStatus.BLOCKED, "Blocked", "⚪", ["on hold", "stuck"]),
]

# Leading emoji (with optional variation selector) followed by whitespace.
_EMOJI_PREFIX = re.compile(r"^[^\w\s]+\s*", re.UNICODE)


class Normalizer:
    """Case-insensitive lookup table built from a list of value specs."""

    def __init__(self, values: Iterable[ValueSpec], default: Enum, field_name: str):
        self.default = default
        self.field_name = field_name
        self.lookup: Dict[str, Enum] = {}
        for entry in values:
            self.lookup[entry.value.value] = entry.value
            self.lookup[entry.label.lower()] = entry.value
            self.lookup[f"{entry.emoji} {entry.label}".lower()] = entry.value
            if entry.emoji:
                self.lookup[entry.emoji] = entry.value
            for alias in entry.aliases:
                self.lookup[alias.lower()] = entry.value

    def __call__(self, raw: object) -> Enum:
        if raw is None or raw == "":
            return self.default
        if isinstance(raw, type(self.default)):
            return raw

        text = str(raw.value if isinstance(raw, Enum) else raw).strip().lower()
        candidates = [text, text.replace("-", "_"), text.replace("_", " ")]
        stripped = _EMOJI_PREFIX.sub("", text)
        if stripped and stripped != text:
            candidates.append(stripped)
        for candidate in candidates:
            if candidate in self.lookup:
                return self.lookup[candidate]

        # Substring fallback: "feat" -> feature, "Done!" -> done.
        needle = stripped or text
        for key, value in self.lookup.items():
            if len(key) >= 3 and (key in needle or needle in key) and len(needle) >= 3:
                return value

        logger.warning(f"Unrecognised {self.field_name} '{raw}', using '{self.default.value}'")
        return self.default


normalize_status = Normalizer(STATUS_VALUES, TaskStatus.TODO, "status")
normalize_priority = Normalizer(PRIORITY_VALUES, Priority.MEDIUM, "priority")
normalize_type = Normalizer(TYPE_VALUES, TaskType.CHORE, "task type")
normalize_phase_status = Normalizer(PHASE_STATUS_VALUES, PhaseStatus.PENDING, "phase status")


def priority_weight(raw: object) -> int:
    if raw is None or raw == "":
        return 0
    return normalize_priority(raw).weight


def derive_phase_status(statuses: Iterable[TaskStatus]) -> PhaseStatus:
    """Fold task statuses into a phase (or grouping) status.

    all completed -> completed, any blocked -> blocked, any in progress ->
    in_progress, otherwise pending. An empty grouping is pending.
    """
    statuses = list(statuses)
    if not statuses:
        return PhaseStatus.PENDING
    if any(status is TaskStatus.BLOCKED for status in statuses):
        return PhaseStatus.BLOCKED
    if all(status.is_completed for status in statuses):
        return PhaseStatus.COMPLETED
    if any(status is TaskStatus.IN_PROGRESS for status in statuses):
        return PhaseStatus.IN_PROGRESS
    return PhaseStatus.PENDING
