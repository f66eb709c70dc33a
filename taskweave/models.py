"""Data models for the taskweave engine.

This module contains the core data structures: tasks with their
relationship fields, phases, and feature/area groupings.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .normalizers import (
    PhaseStatus,
    Priority,
    TaskStatus,
    TaskType,
    normalize_priority,
    normalize_status,
    normalize_type,
)

OVERVIEW_ID = "_overview"

# Front-matter key order. Keys not listed here are kept in Task.extra and
# written after these.
METADATA_KEYS = (
    "id",
    "title",
    "type",
    "status",
    "priority",
    "assigned_to",
    "created_date",
    "updated_date",
    "due_date",
    "tags",
    "phase",
    "subdirectory",
    "is_overview",
    "parent_task",
    "depends_on",
    "previous_task",
    "next_task",
    "subtasks",
    "sequence",
)

RELATIONSHIP_KEYS = ("parent_task", "depends_on", "previous_task", "next_task", "subtasks", "sequence")
LOCATION_KEYS = ("phase", "subdirectory")


class GroupingKind(str, Enum):
    FEATURE = "feature"
    AREA = "area"

    @property
    def prefix(self) -> str:
        return "FEATURE_" if self is GroupingKind.FEATURE else "AREA_"

    def directory_name(self, name: str) -> str:
        """Return ``name`` with this kind's directory prefix."""
        return name if name.startswith(self.prefix) else f"{self.prefix}{name}"

    def strip_prefix(self, directory: str) -> str:
        return directory[len(self.prefix):] if directory.startswith(self.prefix) else directory


@dataclass(slots=True)
class Relationships:
    """Relationship fields of a task.

    ``subtasks`` is the inverse of a child's ``parent_task`` and
    ``previous_task``/``next_task`` mirror each other across a chain.
    ``depends_on`` has no stored inverse.
    """

    parent_task: Optional[str] = None
    depends_on: List[str] = field(default_factory=list)
    previous_task: Optional[str] = None
    next_task: Optional[str] = None
    subtasks: List[str] = field(default_factory=list)
    sequence: Optional[str] = None

    def neighbor_ids(self) -> Set[str]:
        """Ids whose files an inverse-edge update may touch."""
        ids = {self.parent_task, self.previous_task, self.next_task}
        return {task_id for task_id in ids if task_id}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parent_task": self.parent_task,
            "depends_on": list(self.depends_on),
            "previous_task": self.previous_task,
            "next_task": self.next_task,
            "subtasks": list(self.subtasks),
            "sequence": self.sequence,
        }


@dataclass(slots=True)
class Task:
    """A single task document."""

    task_id: str
    title: str
    task_type: TaskType = TaskType.CHORE
    status: TaskStatus = TaskStatus.TODO
    priority: Priority = Priority.MEDIUM
    assigned_to: Optional[str] = None
    created_date: Optional[str] = None
    updated_date: Optional[str] = None
    due_date: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    content: str = ""
    phase: Optional[str] = None
    subdirectory: Optional[str] = None
    is_overview: bool = False
    relationships: Relationships = field(default_factory=Relationships)
    extra: Dict[str, Any] = field(default_factory=dict)
    file_path: Optional[Path] = None

    @property
    def is_completed(self) -> bool:
        return self.status.is_completed

    def clone(self) -> "Task":
        return copy.deepcopy(self)

    def to_metadata(self) -> Dict[str, Any]:
        """Ordered front-matter mapping; empty optional fields are omitted."""
        rel = self.relationships
        values: Dict[str, Any] = {
            "id": self.task_id,
            "title": self.title,
            "type": self.task_type.value,
            "status": self.status.value,
            "priority": self.priority.value,
            "assigned_to": self.assigned_to,
            "created_date": self.created_date,
            "updated_date": self.updated_date,
            "due_date": self.due_date,
            "tags": list(self.tags),
            "phase": self.phase,
            "subdirectory": self.subdirectory,
            "is_overview": self.is_overview or None,
            "parent_task": rel.parent_task,
            "depends_on": list(rel.depends_on),
            "previous_task": rel.previous_task,
            "next_task": rel.next_task,
            "subtasks": list(rel.subtasks),
            "sequence": rel.sequence,
        }
        metadata = {key: value for key, value in values.items() if value not in (None, "", [])}
        for key, value in self.extra.items():
            if key not in metadata:
                metadata[key] = value
        return metadata

    @classmethod
    def from_metadata(cls, metadata: Dict[str, Any], content: str = "") -> "Task":
        """Build a task from decoded front matter, normalising enum fields."""
        data = dict(metadata)
        depends_on = data.pop("depends_on", None)
        if depends_on is None:
            # Older documents used "depends".
            depends_on = data.pop("depends", None)
        relationships = Relationships(
            parent_task=optional_str(data.pop("parent_task", None)),
            depends_on=str_list(depends_on),
            previous_task=optional_str(data.pop("previous_task", None)),
            next_task=optional_str(data.pop("next_task", None)),
            subtasks=str_list(data.pop("subtasks", None)),
            sequence=optional_str(data.pop("sequence", None)),
        )
        task = cls(
            task_id=str(data.pop("id")),
            title=str(data.pop("title", "") or "Untitled Task"),
            task_type=normalize_type(data.pop("type", None)),
            status=normalize_status(data.pop("status", None)),
            priority=normalize_priority(data.pop("priority", None)),
            assigned_to=optional_str(data.pop("assigned_to", None)),
            created_date=optional_str(data.pop("created_date", None)),
            updated_date=optional_str(data.pop("updated_date", None)),
            due_date=optional_str(data.pop("due_date", None)),
            tags=str_list(data.pop("tags", None)),
            content=content,
            phase=optional_str(data.pop("phase", None)),
            subdirectory=optional_str(data.pop("subdirectory", None)),
            is_overview=bool(data.pop("is_overview", False)),
            relationships=relationships,
        )
        task.extra = data
        return task

    def to_dict(self, include_content: bool = True) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        result: Dict[str, Any] = {
            "id": self.task_id,
            "title": self.title,
            "type": self.task_type.value,
            "status": self.status.value,
            "priority": self.priority.value,
            "assigned_to": self.assigned_to,
            "created_date": self.created_date,
            "updated_date": self.updated_date,
            "due_date": self.due_date,
            "tags": list(self.tags),
            "phase": self.phase,
            "subdirectory": self.subdirectory,
            "is_overview": self.is_overview,
            **self.relationships.to_dict(),
            "file_path": str(self.file_path) if self.file_path else None,
        }
        if self.extra:
            result["extra"] = dict(self.extra)
        if include_content:
            result["content"] = self.content
        return result


@dataclass(slots=True)
class Phase:
    """A named, ordered workflow bucket backed by a directory."""

    phase_id: str
    name: str
    description: str = ""
    status: PhaseStatus = PhaseStatus.PENDING
    order: Optional[int] = None
    tasks: List[str] = field(default_factory=list)

    def registry_dict(self) -> Dict[str, Any]:
        """Fields persisted in the phase registry file."""
        data: Dict[str, Any] = {"id": self.phase_id, "name": self.name}
        if self.description:
            data["description"] = self.description
        if self.order is not None:
            data["order"] = self.order
        return data

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.phase_id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "order": self.order,
            "tasks": list(self.tasks),
            "task_count": len(self.tasks),
        }


@dataclass(slots=True)
class Grouping:
    """A feature or area directory inside a phase."""

    kind: GroupingKind
    grouping_id: str
    name: str
    title: str
    phase: str
    description: str = ""
    status: PhaseStatus = PhaseStatus.PENDING
    progress: int = 0
    task_count: int = 0
    tasks: List[str] = field(default_factory=list)
    overview: Optional[Task] = None

    def to_dict(self, include_overview: bool = False) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "kind": self.kind.value,
            "id": self.grouping_id,
            "name": self.name,
            "title": self.title,
            "phase": self.phase,
            "description": self.description,
            "status": self.status.value,
            "progress": self.progress,
            "task_count": self.task_count,
            "tasks": list(self.tasks),
        }
        if include_overview and self.overview is not None:
            result["overview"] = self.overview.to_dict()
        return result


def optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def str_list(value: Any) -> List[str]:
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item not in (None, "")]
    return [str(value)]
