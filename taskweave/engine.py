"""Operation surface of the engine.

``TaskEngine`` is the one place where engine exceptions become
``OperationResult`` envelopes. Callers (the MCP server, scripts) need no
knowledge of the components behind it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .config import EngineConfig, load_config
from .engine_logging import log_error_with_context, log_operation, log_performance
from .errors import EngineError, InvalidDocument, IOFailure, RelationshipWarning
from .groupings import GroupingManager
from .models import Grouping, GroupingKind, Relationships, Task
from .normalizers import normalize_priority, normalize_status, normalize_type
from .phases import PhaseManager
from .query import TaskFilter
from .sequencing import parallel_groups
from .store import TaskStore

logger = logging.getLogger("taskweave.engine")

EngineWarning = Union[RelationshipWarning, str]


def _warning_dict(warning: EngineWarning) -> Dict[str, Any]:
    if isinstance(warning, RelationshipWarning):
        return {**warning.to_dict(), "message": str(warning)}
    return {"code": InvalidDocument.code, "message": str(warning)}


@dataclass
class OperationResult:
    """Uniform ``{success, data, error, message, warnings}`` envelope."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    warnings: List[EngineWarning] = field(default_factory=list)
    details: List[str] = field(default_factory=list)

    @classmethod
    def ok(cls, data: Any = None, message: str = "", warnings: Sequence[EngineWarning] = ()) -> "OperationResult":
        warnings = list(warnings)
        if warnings:
            message = f"{message} (with {len(warnings)} warning(s))"
        return cls(success=True, data=data, message=message, warnings=warnings)

    @classmethod
    def failure(cls, error: EngineError) -> "OperationResult":
        return cls(
            success=False,
            error=error.message,
            error_code=error.code,
            message=error.message,
            details=list(error.details),
        )

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            result["data"] = self.data
        if self.message:
            result["message"] = self.message
        if not self.success:
            result["error"] = self.error
            result["error_code"] = self.error_code
            if self.details:
                result["details"] = list(self.details)
        if self.warnings:
            result["warnings"] = [_warning_dict(warning) for warning in self.warnings]
        return result


Outcome = Tuple[Any, Sequence[EngineWarning]]


class TaskEngine:
    """Facade over the store, migrator and managers for one tasks root."""

    def __init__(self, config: EngineConfig):
        self.config = config
        self.store = TaskStore(config)
        self.phases = PhaseManager(self.store)
        self.groupings = GroupingManager(self.store)

    @classmethod
    def for_project(cls, project_root: Union[str, Path]) -> "TaskEngine":
        return cls(load_config(project_root))

    def _run(
        self,
        operation: str,
        action: Callable[[], Outcome],
        message: Union[str, Callable[[Any], str]],
        **context: Any,
    ) -> OperationResult:
        try:
            with log_operation(operation, **context):
                data, warnings = action()
        except EngineError as e:
            logger.warning(f"{operation} failed: {e}")
            return OperationResult.failure(e)
        except Exception as e:
            log_error_with_context(e, {"operation": operation, **context})
            return OperationResult.failure(IOFailure(f"Unexpected error in {operation}: {e}"))
        text = message(data) if callable(message) else message
        return OperationResult.ok(data, text, warnings)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    @log_performance("create_task")
    def create_task(
        self,
        title: str,
        task_type: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        assigned_to: Optional[str] = None,
        due_date: Optional[str] = None,
        tags: Optional[List[str]] = None,
        content: str = "",
        phase: Optional[str] = None,
        subdirectory: Optional[str] = None,
        parent_task: Optional[str] = None,
        depends_on: Optional[List[str]] = None,
        previous_task: Optional[str] = None,
        next_task: Optional[str] = None,
        sequence: Optional[str] = None,
        task_id: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> OperationResult:
        def action() -> Outcome:
            if not title or not title.strip():
                raise InvalidDocument("Task title cannot be empty")
            task = Task(
                task_id=task_id or "",
                title=title.strip(),
                task_type=normalize_type(task_type),
                status=normalize_status(status),
                priority=normalize_priority(priority),
                assigned_to=assigned_to or None,
                due_date=due_date or None,
                tags=list(tags or []),
                content=content or "",
                relationships=Relationships(
                    parent_task=parent_task or None,
                    depends_on=list(depends_on or []),
                    previous_task=previous_task or None,
                    next_task=next_task or None,
                    sequence=sequence or None,
                ),
                extra=dict(extra or {}),
            )
            created, warnings = self.store.create(task, phase, subdirectory)
            return created.to_dict(), warnings

        return self._run("create_task", action, lambda data: f"Task {data['id']} created", title=title, phase=phase)

    @log_performance("get_task")
    def get_task(
        self,
        task_id: str,
        phase: Optional[str] = None,
        subdirectory: Optional[str] = None,
        include_content: bool = True,
    ) -> OperationResult:
        def action() -> Outcome:
            task = self.store.get(task_id, phase, subdirectory)
            return task.to_dict(include_content=include_content), []

        return self._run("get_task", action, f"Task {task_id} found", task_id=task_id)

    @log_performance("update_task")
    def update_task(
        self,
        task_id: str,
        updates: Mapping[str, Any],
        phase: Optional[str] = None,
        subdirectory: Optional[str] = None,
    ) -> OperationResult:
        def action() -> Outcome:
            task, warnings = self.store.update(task_id, updates, phase, subdirectory)
            return task.to_dict(), warnings

        return self._run("update_task", action, f"Task {task_id} updated", task_id=task_id, fields=sorted(updates))

    @log_performance("delete_task")
    def delete_task(self, task_id: str, phase: Optional[str] = None, subdirectory: Optional[str] = None) -> OperationResult:
        def action() -> Outcome:
            task, warnings = self.store.delete(task_id, phase, subdirectory)
            return {"id": task.task_id, "deleted": True, "file_path": str(task.file_path)}, warnings

        return self._run("delete_task", action, f"Task {task_id} deleted", task_id=task_id)

    @log_performance("move_task")
    def move_task(
        self,
        task_id: str,
        target_subdirectory: Optional[str] = None,
        target_phase: Optional[str] = None,
        phase: Optional[str] = None,
        subdirectory: Optional[str] = None,
    ) -> OperationResult:
        def action() -> Outcome:
            task = self.store.migrator.move_task(task_id, target_subdirectory, target_phase, phase, subdirectory)
            return task.to_dict(include_content=False), []

        return self._run(
            "move_task",
            action,
            lambda data: f"Task {task_id} moved to {data['file_path']}",
            task_id=task_id,
            target_phase=target_phase,
            target_subdirectory=target_subdirectory,
        )

    @log_performance("transition_task")
    def transition_task(
        self,
        task_id: str,
        target_phase: str,
        phase: Optional[str] = None,
        subdirectory: Optional[str] = None,
    ) -> OperationResult:
        """Move a task to another workflow state (phase directory), keeping its subdirectory."""

        def action() -> Outcome:
            task = self.store.migrator.transition_task(task_id, target_phase, phase, subdirectory)
            return task.to_dict(include_content=False), []

        return self._run(
            "transition_task", action, f"Task {task_id} moved to {target_phase}", task_id=task_id, target_phase=target_phase
        )

    @log_performance("find_next_task")
    def find_next_task(self, task_id: Optional[str] = None) -> OperationResult:
        def action() -> Outcome:
            task, reason = self.store.query.find_next_task(task_id)
            return {"task": task.to_dict(include_content=False) if task else None, "reason": reason}, []

        return self._run("find_next_task", action, lambda data: data["reason"], task_id=task_id)

    @log_performance("list_tasks")
    def list_tasks(
        self,
        status: Optional[str] = None,
        task_type: Optional[str] = None,
        assigned_to: Optional[str] = None,
        tags: Optional[List[str]] = None,
        phase: Optional[str] = None,
        subdirectory: Optional[str] = None,
        is_overview: Optional[bool] = None,
        parent_task: Optional[str] = None,
        depends_on: Optional[str] = None,
        include_content: bool = False,
        include_completed: bool = False,
    ) -> OperationResult:
        task_filter = TaskFilter(
            status=status,
            task_type=task_type,
            assigned_to=assigned_to,
            tags=list(tags or []),
            phase=phase,
            subdirectory=subdirectory,
            is_overview=is_overview,
            parent_task=parent_task,
            depends_on=depends_on,
            include_content=include_content,
            include_completed=include_completed,
        )

        def action() -> Outcome:
            tasks, errors = self.store.query.list_tasks_with_errors(task_filter)
            data = {"tasks": [task.to_dict(include_content=include_content) for task in tasks], "count": len(tasks)}
            return data, errors

        return self._run("list_tasks", action, lambda data: f"Found {data['count']} task(s)", phase=phase)

    @log_performance("task_dependencies")
    def task_dependencies(self, task_id: str) -> OperationResult:
        """Resolved and missing dependencies of a task, plus the tasks that depend on it."""

        def action() -> Outcome:
            found, missing = self.store.query.find_dependencies(task_id)
            dependents = self.store.query.find_dependents(task_id)
            data = {
                "id": task_id,
                "dependencies": [task.to_dict(include_content=False) for task in found],
                "missing": missing,
                "dependents": [task.to_dict(include_content=False) for task in dependents],
            }
            warnings = [RelationshipWarning(task_id, dep, "depends_on", "dependency does not exist") for dep in missing]
            return data, warnings

        return self._run("task_dependencies", action, f"Dependencies of {task_id}", task_id=task_id)

    @log_performance("list_siblings")
    def list_siblings(self, task_id: str) -> OperationResult:
        """Other subtasks of the task's parent, in sequence order."""

        def action() -> Outcome:
            siblings = self.store.query.find_siblings(task_id)
            data = {
                "id": task_id,
                "siblings": [task.to_dict(include_content=False) for task in siblings],
                "count": len(siblings),
            }
            return data, []

        return self._run("list_siblings", action, lambda data: f"Found {data['count']} sibling(s)", task_id=task_id)

    # ------------------------------------------------------------------
    # Subtask ordering
    # ------------------------------------------------------------------

    def _subtasks_data(self, parent_id: str, tasks: List[Task]) -> Dict[str, Any]:
        return {
            "parent": parent_id,
            "subtasks": [task.to_dict(include_content=False) for task in tasks],
            "groups": parallel_groups(tasks),
        }

    @log_performance("list_subtasks")
    def list_subtasks(self, parent_id: str) -> OperationResult:
        def action() -> Outcome:
            return self._subtasks_data(parent_id, self.store.sequencer.list_subtasks(parent_id)), []

        return self._run("list_subtasks", action, f"Subtasks of {parent_id}", parent_id=parent_id)

    @log_performance("reorder_subtasks")
    def reorder_subtasks(self, parent_id: str, ordered_ids: Sequence[str]) -> OperationResult:
        def action() -> Outcome:
            tasks, warnings = self.store.sequencer.reorder(parent_id, ordered_ids)
            return self._subtasks_data(parent_id, tasks), warnings

        return self._run("reorder_subtasks", action, f"Subtasks of {parent_id} reordered", parent_id=parent_id)

    @log_performance("make_parallel")
    def make_parallel(self, parent_id: str, task_ids: Sequence[str]) -> OperationResult:
        def action() -> Outcome:
            tasks, warnings = self.store.sequencer.make_parallel(parent_id, task_ids)
            return self._subtasks_data(parent_id, tasks), warnings

        return self._run(
            "make_parallel", action, f"{len(task_ids)} subtask(s) of {parent_id} marked parallel", parent_id=parent_id
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    @log_performance("create_phase")
    def create_phase(
        self,
        phase_id: str,
        name: Optional[str] = None,
        description: str = "",
        order: Optional[int] = None,
    ) -> OperationResult:
        def action() -> Outcome:
            return self.phases.create_phase(phase_id, name, description, order).to_dict(), []

        return self._run("create_phase", action, f"Phase {phase_id} created", phase_id=phase_id)

    @log_performance("get_phase")
    def get_phase(self, phase_id: str) -> OperationResult:
        def action() -> Outcome:
            return self.phases.get_phase(phase_id).to_dict(), []

        return self._run("get_phase", action, f"Phase {phase_id} found", phase_id=phase_id)

    @log_performance("list_phases")
    def list_phases(self) -> OperationResult:
        def action() -> Outcome:
            phases = [phase.to_dict() for phase in self.phases.list_phases()]
            return {"phases": phases, "count": len(phases)}, []

        return self._run("list_phases", action, lambda data: f"Found {data['count']} phase(s)")

    @log_performance("update_phase")
    def update_phase(
        self,
        phase_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        order: Optional[int] = None,
        new_id: Optional[str] = None,
    ) -> OperationResult:
        def action() -> Outcome:
            return self.phases.update_phase(phase_id, name, description, order, new_id).to_dict(), []

        return self._run("update_phase", action, lambda data: f"Phase {data['id']} updated", phase_id=phase_id)

    @log_performance("rename_phase")
    def rename_phase(self, old_id: str, new_id: str) -> OperationResult:
        def action() -> Outcome:
            return self.phases.rename_phase(old_id, new_id).to_dict(), []

        return self._run("rename_phase", action, f"Phase {old_id} renamed to {new_id}", old_id=old_id, new_id=new_id)

    @log_performance("delete_phase")
    def delete_phase(self, phase_id: str, force: bool = False) -> OperationResult:
        def action() -> Outcome:
            removed = self.phases.delete_phase(phase_id, force=force)
            return {"id": phase_id, "deleted": True, "removed_tasks": removed}, []

        return self._run("delete_phase", action, f"Phase {phase_id} deleted", phase_id=phase_id, force=force)

    # ------------------------------------------------------------------
    # Features and areas
    # ------------------------------------------------------------------

    def _create_grouping(self, kind: GroupingKind, name: str, title: str, phase: str, **fields: Any) -> OperationResult:
        def action() -> Outcome:
            return self.groupings.create(kind, name, title, phase, **fields).to_dict(include_overview=True), []

        return self._run(
            f"create_{kind.value}",
            action,
            lambda data: f"{kind.value.capitalize()} {data['id']} created in phase {phase}",
            name=name,
            phase=phase,
        )

    def _get_grouping(self, kind: GroupingKind, name: str, phase: str, include_overview: bool) -> OperationResult:
        def action() -> Outcome:
            return self.groupings.get(kind, name, phase).to_dict(include_overview=include_overview), []

        return self._run(f"get_{kind.value}", action, f"{kind.value.capitalize()} {name} found", name=name, phase=phase)

    def _list_groupings(
        self,
        kind: GroupingKind,
        phase: Optional[str],
        status: Optional[str],
        include_tasks: bool,
        include_progress: bool,
    ) -> OperationResult:
        def summarize(grouping: Grouping) -> Dict[str, Any]:
            data = grouping.to_dict()
            if not include_tasks:
                data.pop("tasks")
            if not include_progress:
                data.pop("progress")
            return data

        def action() -> Outcome:
            groupings = [summarize(grouping) for grouping in self.groupings.list(kind, phase, status)]
            return {f"{kind.value}s": groupings, "count": len(groupings)}, []

        return self._run(
            f"list_{kind.value}s",
            action,
            lambda data: f"Found {data['count']} {kind.value}(s)",
            phase=phase,
        )

    def _update_grouping(self, kind: GroupingKind, name: str, phase: str, **changes: Any) -> OperationResult:
        def action() -> Outcome:
            return self.groupings.update(kind, name, phase, **changes).to_dict(include_overview=True), []

        return self._run(
            f"update_{kind.value}",
            action,
            lambda data: f"{kind.value.capitalize()} {data['id']} updated",
            name=name,
            phase=phase,
        )

    def _move_grouping(self, kind: GroupingKind, name: str, phase: str, target_phase: str) -> OperationResult:
        def action() -> Outcome:
            return self.groupings.move(kind, name, phase, target_phase).to_dict(), []

        return self._run(
            f"move_{kind.value}",
            action,
            f"{kind.value.capitalize()} {name} moved from {phase} to {target_phase}",
            name=name,
            phase=phase,
            target_phase=target_phase,
        )

    def _delete_grouping(self, kind: GroupingKind, name: str, phase: str, force: bool) -> OperationResult:
        def action() -> Outcome:
            removed = self.groupings.delete(kind, name, phase, force=force)
            return {"name": name, "phase": phase, "deleted": True, "removed_tasks": removed}, []

        return self._run(
            f"delete_{kind.value}",
            action,
            f"{kind.value.capitalize()} {name} deleted from {phase}",
            name=name,
            phase=phase,
            force=force,
        )

    @log_performance("create_feature")
    def create_feature(self, name: str, title: str, phase: str, **fields: Any) -> OperationResult:
        return self._create_grouping(GroupingKind.FEATURE, name, title, phase, **fields)

    @log_performance("create_area")
    def create_area(self, name: str, title: str, phase: str, **fields: Any) -> OperationResult:
        return self._create_grouping(GroupingKind.AREA, name, title, phase, **fields)

    @log_performance("get_feature")
    def get_feature(self, name: str, phase: str, include_overview: bool = True) -> OperationResult:
        return self._get_grouping(GroupingKind.FEATURE, name, phase, include_overview)

    @log_performance("get_area")
    def get_area(self, name: str, phase: str, include_overview: bool = True) -> OperationResult:
        return self._get_grouping(GroupingKind.AREA, name, phase, include_overview)

    @log_performance("list_features")
    def list_features(
        self,
        phase: Optional[str] = None,
        status: Optional[str] = None,
        include_tasks: bool = True,
        include_progress: bool = True,
    ) -> OperationResult:
        return self._list_groupings(GroupingKind.FEATURE, phase, status, include_tasks, include_progress)

    @log_performance("list_areas")
    def list_areas(
        self,
        phase: Optional[str] = None,
        status: Optional[str] = None,
        include_tasks: bool = True,
        include_progress: bool = True,
    ) -> OperationResult:
        return self._list_groupings(GroupingKind.AREA, phase, status, include_tasks, include_progress)

    @log_performance("update_feature")
    def update_feature(self, name: str, phase: str, **changes: Any) -> OperationResult:
        return self._update_grouping(GroupingKind.FEATURE, name, phase, **changes)

    @log_performance("update_area")
    def update_area(self, name: str, phase: str, **changes: Any) -> OperationResult:
        return self._update_grouping(GroupingKind.AREA, name, phase, **changes)

    @log_performance("move_feature")
    def move_feature(self, name: str, phase: str, target_phase: str) -> OperationResult:
        return self._move_grouping(GroupingKind.FEATURE, name, phase, target_phase)

    @log_performance("move_area")
    def move_area(self, name: str, phase: str, target_phase: str) -> OperationResult:
        return self._move_grouping(GroupingKind.AREA, name, phase, target_phase)

    @log_performance("delete_feature")
    def delete_feature(self, name: str, phase: str, force: bool = False) -> OperationResult:
        return self._delete_grouping(GroupingKind.FEATURE, name, phase, force)

    @log_performance("delete_area")
    def delete_area(self, name: str, phase: str, force: bool = False) -> OperationResult:
        return self._delete_grouping(GroupingKind.AREA, name, phase, force)
