"""Feature and area CRUD.

A grouping is a ``FEATURE_<Name>`` or ``AREA_<Name>`` directory inside a
phase. Its ``_overview.md`` document carries the title and description;
status and progress are derived from the other tasks in the directory.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .engine_logging import log_migration_event
from .errors import AlreadyExists, NotFound
from .layout import OVERVIEW_FILENAME, display_name
from .models import OVERVIEW_ID, Grouping, GroupingKind, Task
from .normalizers import (
    PhaseStatus,
    TaskType,
    derive_phase_status,
    normalize_phase_status,
    normalize_priority,
    normalize_type,
)

if TYPE_CHECKING:
    from .store import TaskStore

logger = logging.getLogger("taskweave.groupings")

DEFAULT_OVERVIEW_TYPE = {GroupingKind.FEATURE: TaskType.FEATURE, GroupingKind.AREA: TaskType.CHORE}


def overview_body(title: str, description: str) -> str:
    body = f"# {title}"
    if description:
        body += f"\n\n{description}"
    return body


class GroupingManager:
    def __init__(self, store: "TaskStore"):
        self.store = store
        self.layout = store.layout
        self.migrator = store.migrator

    def create(
        self,
        kind: GroupingKind,
        name: str,
        title: str,
        phase: str,
        task_type: Optional[object] = None,
        description: str = "",
        assigned_to: Optional[str] = None,
        tags: Optional[List[str]] = None,
        priority: Optional[object] = None,
    ) -> Grouping:
        directory = self.migrator.grouping_dir(kind, name, phase)
        if not self.layout.phase_dir(phase).is_dir():
            raise NotFound(f"Phase {phase} not found")
        if directory.exists():
            raise AlreadyExists(f"{kind.value.capitalize()} {directory.name} already exists in phase {phase}")

        title = title or display_name(directory.name)
        overview = Task(
            task_id=OVERVIEW_ID,
            title=title,
            task_type=normalize_type(task_type) if task_type else DEFAULT_OVERVIEW_TYPE[kind],
            priority=normalize_priority(priority),
            assigned_to=assigned_to,
            tags=list(tags or []),
            content=overview_body(title, description),
            is_overview=True,
        )
        if description:
            overview.extra["description"] = description
        self.store.create(overview, phase, directory.name)

        logger.info(f"Created {kind.value} {directory.name} in phase {phase}")
        log_migration_event(f"{kind.value}_created", f"{phase}/{directory.name}")
        return self.get(kind, name, phase)

    def get(self, kind: GroupingKind, name: str, phase: str) -> Grouping:
        directory = self.migrator.grouping_dir(kind, name, phase)
        if not directory.is_dir():
            raise NotFound(f"{kind.value.capitalize()} {name} not found in phase {phase}")
        return self._load(kind, phase, directory)

    def list(
        self,
        kind: GroupingKind,
        phase: Optional[str] = None,
        status: Optional[object] = None,
    ) -> List[Grouping]:
        phases = [phase] if phase else self.layout.phase_names()
        wanted = normalize_phase_status(status) if status else None
        groupings: List[Grouping] = []
        for phase_id in phases:
            for directory in self.layout.grouping_dirs(phase_id, kind):
                grouping = self._load(kind, phase_id, directory)
                if wanted is None or grouping.status is wanted:
                    groupings.append(grouping)
        return groupings

    def update(
        self,
        kind: GroupingKind,
        name: str,
        phase: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        status: Optional[object] = None,
        new_name: Optional[str] = None,
    ) -> Grouping:
        """Edit the overview document; ``new_name`` renames the directory first."""
        grouping = self.get(kind, name, phase)
        if new_name and self.migrator.grouping_dir(kind, new_name, phase).name != grouping.grouping_id:
            self.migrator.rename_grouping(kind, phase, name, new_name)
            name = new_name
            grouping = self.get(kind, name, phase)

        patch: Dict[str, Any] = {}
        if title is not None:
            patch["title"] = title
        if description is not None:
            patch["description"] = description or None
        if status is not None:
            patch["status"] = status
        if title is not None or description is not None:
            current = grouping.overview
            new_title = title if title is not None else grouping.title
            new_description = description if description is not None else grouping.description
            if current is None or current.content.strip() == overview_body(grouping.title, grouping.description):
                patch["content"] = overview_body(new_title, new_description)

        if patch:
            if grouping.overview is None:
                self._create_missing_overview(kind, grouping)
            self.store.update(OVERVIEW_ID, patch, phase, grouping.grouping_id)
            log_migration_event(f"{kind.value}_updated", f"{phase}/{grouping.grouping_id}", fields=sorted(patch))
        return self.get(kind, name, phase)

    def move(self, kind: GroupingKind, name: str, phase: str, target_phase: str) -> Grouping:
        self.migrator.move_grouping(kind, name, phase, target_phase)
        return self.get(kind, name, target_phase)

    def delete(self, kind: GroupingKind, name: str, phase: str, force: bool = False) -> List[str]:
        return self.migrator.delete_grouping(kind, name, phase, force=force)

    def _load(self, kind: GroupingKind, phase: str, directory: Path) -> Grouping:
        overview: Optional[Task] = None
        tasks: List[Task] = []
        for task in self.store.query.tasks_in_directory(directory):
            if task.is_overview:
                if task.file_path is not None and task.file_path == directory / OVERVIEW_FILENAME:
                    overview = task
                continue
            tasks.append(task)

        completed = sum(1 for task in tasks if task.is_completed)
        if tasks:
            status = derive_phase_status(task.status for task in tasks)
        elif overview is not None:
            status = derive_phase_status([overview.status])
        else:
            status = PhaseStatus.PENDING

        return Grouping(
            kind=kind,
            grouping_id=directory.name,
            name=kind.strip_prefix(directory.name),
            title=overview.title if overview is not None else display_name(directory.name),
            phase=phase,
            description=str(overview.extra.get("description", "")) if overview is not None else "",
            status=status,
            progress=round(100 * completed / len(tasks)) if tasks else 0,
            task_count=len(tasks),
            tasks=sorted(task.task_id for task in tasks),
            overview=overview,
        )

    def _create_missing_overview(self, kind: GroupingKind, grouping: Grouping) -> None:
        logger.warning(f"{grouping.grouping_id} in phase {grouping.phase} has no overview; creating one")
        overview = Task(
            task_id=OVERVIEW_ID,
            title=grouping.title,
            task_type=DEFAULT_OVERVIEW_TYPE[kind],
            content=overview_body(grouping.title, grouping.description),
            is_overview=True,
        )
        self.store.create(overview, grouping.phase, grouping.grouping_id)
