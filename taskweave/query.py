"""Listing and filtering of task documents.

Every query is a scan of the task tree: there is no index. Dependents are
discovered here on demand because ``depends_on`` has no stored inverse.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from . import codec
from .errors import EngineError, NotFound
from .layout import TaskLayout, is_overview_file
from .models import Task
from .normalizers import normalize_status, normalize_type, priority_weight

logger = logging.getLogger("taskweave.query")


@dataclass(slots=True)
class TaskFilter:
    """Criteria for ``TaskQuery.list_tasks``.

    Completed tasks and body content are left out unless asked for. An
    explicit completed ``status`` (e.g. ``"done"``) includes completed tasks.
    """

    status: Optional[object] = None
    task_type: Optional[object] = None
    assigned_to: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    phase: Optional[str] = None
    subdirectory: Optional[str] = None
    is_overview: Optional[bool] = None
    parent_task: Optional[str] = None
    depends_on: Optional[str] = None
    include_content: bool = False
    include_completed: bool = False

    @classmethod
    def everything(cls, **criteria) -> "TaskFilter":
        """A filter that keeps completed tasks and content."""
        return cls(include_content=True, include_completed=True, **criteria)

    def matches(self, task: Task) -> bool:
        if self.status is not None and task.status is not normalize_status(self.status):
            return False
        if self.task_type is not None and task.task_type is not normalize_type(self.task_type):
            return False
        if self.assigned_to is not None and task.assigned_to != self.assigned_to:
            return False
        if self.phase is not None and task.phase != self.phase:
            return False
        if self.subdirectory is not None and (task.subdirectory or "") != self.subdirectory:
            return False
        if self.is_overview is not None and task.is_overview != self.is_overview:
            return False
        if self.parent_task is not None and task.relationships.parent_task != self.parent_task:
            return False
        if self.depends_on is not None and self.depends_on not in task.relationships.depends_on:
            return False
        if self.tags and not all(tag in task.tags for tag in self.tags):
            return False
        if task.is_completed and not self.include_completed:
            explicitly_requested = self.status is not None and normalize_status(self.status).is_completed
            if not explicitly_requested:
                return False
        return True


def _sort_key_created(task: Task) -> str:
    return task.created_date or ""


def sort_by_priority(tasks: List[Task], *, newest_first: bool = True) -> List[Task]:
    """Highest priority first; ties broken by creation date."""
    ordered = sorted(tasks, key=_sort_key_created, reverse=newest_first)
    ordered.sort(key=lambda task: priority_weight(task.priority), reverse=True)
    return ordered


class TaskQuery:
    """Read-only access to the task tree."""

    def __init__(self, layout: TaskLayout):
        self.layout = layout

    def load(self, path: Path) -> Task:
        """Decode one file and fill location metadata from its path."""
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise NotFound(f"Task file not found: {path}") from exc
        task = codec.decode(text)
        task.file_path = path
        phase, subdirectory = self.layout.parse_task_path(path)
        if phase and not task.phase:
            task.phase = phase
        if subdirectory and not task.subdirectory:
            task.subdirectory = subdirectory
        if is_overview_file(path):
            task.is_overview = True
        return task

    def scan(self, directory: Optional[Path] = None) -> Tuple[List[Task], List[str]]:
        """Load every document under ``directory``; unreadable files become error strings."""
        tasks: List[Task] = []
        errors: List[str] = []
        for path in self.layout.iter_task_files(directory):
            try:
                tasks.append(self.load(path))
            except (EngineError, OSError, UnicodeDecodeError) as exc:
                message = f"Error parsing {path}: {exc}"
                logger.warning(message)
                errors.append(message)
        return tasks, errors

    def list_tasks_with_errors(self, task_filter: Optional[TaskFilter] = None) -> Tuple[List[Task], List[str]]:
        task_filter = task_filter or TaskFilter()
        tasks, errors = self.scan()
        selected = [task for task in tasks if task_filter.matches(task)]
        if not task_filter.include_content:
            for task in selected:
                task.content = ""
        return sort_by_priority(selected), errors

    def list_tasks(self, task_filter: Optional[TaskFilter] = None) -> List[Task]:
        tasks, _ = self.list_tasks_with_errors(task_filter)
        return tasks

    def tasks_in_directory(self, directory: Path) -> List[Task]:
        tasks, errors = self.scan(directory)
        if errors:
            logger.warning(f"{len(errors)} unreadable documents under {directory}")
        return tasks

    def find_by_id(self, task_id: str) -> Optional[Task]:
        for path in self.layout.iter_task_files():
            # The filename is the id for every regular task; check it before decoding.
            if path.stem != task_id:
                continue
            try:
                task = self.load(path)
            except (EngineError, OSError) as exc:
                logger.warning(f"Skipping unreadable {path}: {exc}")
                continue
            if task.task_id == task_id:
                return task
        # Fall back to a full decode in case a file was renamed by hand.
        tasks, _ = self.scan()
        for task in tasks:
            if task.task_id == task_id:
                return task
        return None

    def find_dependents(self, task_id: str) -> List[Task]:
        """Tasks whose ``depends_on`` contains ``task_id``."""
        return self.list_tasks(TaskFilter.everything(depends_on=task_id))

    def find_dependencies(self, task_id: str) -> Tuple[List[Task], List[str]]:
        """Resolved dependency tasks of ``task_id`` and the ids that did not resolve."""
        task = self.find_by_id(task_id)
        if task is None:
            raise NotFound(f"Task with ID {task_id} not found")
        by_id = self._index()
        found = [by_id[dep] for dep in task.relationships.depends_on if dep in by_id]
        missing = [dep for dep in task.relationships.depends_on if dep not in by_id]
        return found, missing

    def subtasks_of(self, parent_id: str) -> List[Task]:
        """Tasks whose ``parent_task`` is ``parent_id``, in sequence order."""
        children = self.list_tasks(TaskFilter.everything(parent_task=parent_id))
        return sorted(children, key=lambda task: (task.relationships.sequence or "~", task.task_id))

    def find_siblings(self, task_id: str) -> List[Task]:
        """Other subtasks of the same parent."""
        task = self.find_by_id(task_id)
        if task is None:
            raise NotFound(f"Task with ID {task_id} not found")
        parent_id = task.relationships.parent_task
        if not parent_id:
            return []
        return [sibling for sibling in self.subtasks_of(parent_id) if sibling.task_id != task_id]

    def find_next_task(self, task_id: Optional[str] = None) -> Tuple[Optional[Task], str]:
        """Suggest what to work on next.

        With ``task_id``: its ``next_task`` if still open, otherwise the
        highest-priority open task depending on it. Without (or when neither
        exists): the highest-priority open task whose predecessor and
        dependencies are all completed, oldest first.
        """
        tasks, _ = self.scan()
        by_id: Dict[str, Task] = {task.task_id: task for task in tasks if not task.is_overview}

        if task_id:
            current = by_id.get(task_id)
            if current is None:
                raise NotFound(f"Task with ID {task_id} not found")
            following = by_id.get(current.relationships.next_task or "")
            if following is not None and not following.is_completed:
                return following, f"Next task in sequence after {task_id}"
            dependents = [
                task for task in by_id.values()
                if task_id in task.relationships.depends_on and not task.is_completed
            ]
            if dependents:
                return sort_by_priority(dependents, newest_first=False)[0], f"Task depending on {task_id}"

        def ready(task: Task) -> bool:
            if task.is_completed or task.status.value == "blocked":
                return False
            previous = task.relationships.previous_task
            if previous and not (previous in by_id and by_id[previous].is_completed):
                return False
            return all(dep in by_id and by_id[dep].is_completed for dep in task.relationships.depends_on)

        available = [task for task in by_id.values() if ready(task)]
        if not available:
            return None, "No available tasks found. Consider completing dependencies first."
        message = "Highest priority available task"
        if task_id:
            message = "No direct successor found. Suggesting highest priority available task."
        return sort_by_priority(available, newest_first=False)[0], message

    def _index(self) -> Dict[str, Task]:
        tasks, _ = self.scan()
        return {task.task_id: task for task in tasks if not task.is_overview}
