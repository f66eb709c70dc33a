"""MCP server exposing the taskweave engine operations."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml
from mcp.server.fastmcp import FastMCP

from taskweave.config import TASKS_DIR_NAME
from taskweave.engine import OperationResult, TaskEngine
from taskweave.engine_logging import setup_logging
from taskweave.errors import NotFound

mcp = FastMCP("taskweave")

PROJECT_ROOT_ENV = "TASKWEAVE_PROJECT_ROOT"
LOG_LEVEL_ENV = "TASKWEAVE_LOG_LEVEL"

_engines: Dict[Path, TaskEngine] = {}


def _locate_project_root() -> Optional[Path]:
    cwd = Path.cwd().resolve()
    for base in (cwd, *cwd.parents):
        if (base / TASKS_DIR_NAME).is_dir():
            return base
    return None


def _resolve_root(root: Optional[str]) -> Path:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv(PROJECT_ROOT_ENV)
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable {PROJECT_ROOT_ENV} points to '{env_root}', which does not exist."
            )
        return env_path

    detected_root = _locate_project_root()
    if detected_root:
        return detected_root

    raise ValueError(
        "Unable to determine project root automatically. Provide the 'root' argument when calling the tool "
        f"or set the {PROJECT_ROOT_ENV} environment variable."
    )


def _engine(root: Optional[str]) -> TaskEngine:
    resolved = _resolve_root(root)
    engine = _engines.get(resolved)
    if engine is None:
        engine = TaskEngine.for_project(resolved)
        _engines[resolved] = engine
    return engine


def _dispatch(root: Optional[str], call: Callable[[TaskEngine], OperationResult]) -> Dict[str, Any]:
    try:
        engine = _engine(root)
    except ValueError as e:
        return OperationResult.failure(NotFound(str(e))).to_dict()
    return call(engine).to_dict()


# ----------------------------------------------------------------------
# Tasks
# ----------------------------------------------------------------------


@mcp.tool()
def create_task(
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
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a task document. Parent, previous and next tasks are linked back automatically.
    Subtasks get the next free sequence number when none is given."""

    return _dispatch(root, lambda engine: engine.create_task(
        title,
        task_type=task_type,
        status=status,
        priority=priority,
        assigned_to=assigned_to,
        due_date=due_date,
        tags=tags,
        content=content,
        phase=phase,
        subdirectory=subdirectory,
        parent_task=parent_task,
        depends_on=depends_on,
        previous_task=previous_task,
        next_task=next_task,
        sequence=sequence,
        task_id=task_id,
    ))


@mcp.tool()
def get_task(
    task_id: str,
    phase: Optional[str] = None,
    subdirectory: Optional[str] = None,
    include_content: bool = True,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Read a task. Supplying phase/subdirectory avoids a scan of the whole tree."""

    return _dispatch(root, lambda engine: engine.get_task(task_id, phase, subdirectory, include_content))


@mcp.tool()
def update_task(
    task_id: str,
    updates: Dict[str, Any],
    phase: Optional[str] = None,
    subdirectory: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Apply a partial update. A null value clears a field; changing phase or subdirectory moves the file."""

    return _dispatch(root, lambda engine: engine.update_task(task_id, updates, phase, subdirectory))


@mcp.tool()
def delete_task(
    task_id: str,
    phase: Optional[str] = None,
    subdirectory: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Delete a task after unlinking it from its parent, chain neighbours, subtasks and dependents."""

    return _dispatch(root, lambda engine: engine.delete_task(task_id, phase, subdirectory))


@mcp.tool()
def move_task(
    task_id: str,
    target_subdirectory: Optional[str] = None,
    target_phase: Optional[str] = None,
    phase: Optional[str] = None,
    subdirectory: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Move a task to another subdirectory and, optionally, another phase."""

    return _dispatch(
        root, lambda engine: engine.move_task(task_id, target_subdirectory, target_phase, phase, subdirectory)
    )


@mcp.tool()
def transition_task(
    task_id: str,
    target_phase: str,
    phase: Optional[str] = None,
    subdirectory: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Move a task to another workflow state (e.g. backlog -> current -> archive), keeping its subdirectory."""

    return _dispatch(root, lambda engine: engine.transition_task(task_id, target_phase, phase, subdirectory))


@mcp.tool()
def find_next_task(task_id: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Suggest the next task: the successor of task_id if given, otherwise the best unblocked task."""

    return _dispatch(root, lambda engine: engine.find_next_task(task_id))


@mcp.tool()
def list_tasks(
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
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """List tasks by priority. Completed tasks and document bodies are left out unless requested."""

    return _dispatch(root, lambda engine: engine.list_tasks(
        status=status,
        task_type=task_type,
        assigned_to=assigned_to,
        tags=tags,
        phase=phase,
        subdirectory=subdirectory,
        is_overview=is_overview,
        parent_task=parent_task,
        depends_on=depends_on,
        include_content=include_content,
        include_completed=include_completed,
    ))


@mcp.tool()
def task_dependencies(task_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Return what a task depends on (resolved and missing) and which tasks depend on it."""

    return _dispatch(root, lambda engine: engine.task_dependencies(task_id))


@mcp.tool()
def list_siblings(task_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """List the other subtasks of a task's parent."""

    return _dispatch(root, lambda engine: engine.list_siblings(task_id))


@mcp.tool()
def list_subtasks(parent_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """List a parent's subtasks in sequence order, grouped where they run in parallel."""

    return _dispatch(root, lambda engine: engine.list_subtasks(parent_id))


@mcp.tool()
def reorder_subtasks(parent_id: str, ordered_ids: List[str], root: Optional[str] = None) -> Dict[str, Any]:
    """Renumber the listed subtasks 01, 02, ... in the given order. Unlisted subtasks keep their numbers."""

    return _dispatch(root, lambda engine: engine.reorder_subtasks(parent_id, ordered_ids))


@mcp.tool()
def make_parallel(parent_id: str, task_ids: List[str], root: Optional[str] = None) -> Dict[str, Any]:
    """Mark subtasks as parallel: they share the lowest of their numbers with suffixes a, b, c, ..."""

    return _dispatch(root, lambda engine: engine.make_parallel(parent_id, task_ids))


# ----------------------------------------------------------------------
# Phases
# ----------------------------------------------------------------------


@mcp.tool()
def create_phase(
    phase_id: str,
    name: Optional[str] = None,
    description: str = "",
    order: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a phase directory with its registry entry."""

    return _dispatch(root, lambda engine: engine.create_phase(phase_id, name, description, order))


@mcp.tool()
def get_phase(phase_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Return a phase with its derived status and task ids."""

    return _dispatch(root, lambda engine: engine.get_phase(phase_id))


@mcp.tool()
def list_phases(root: Optional[str] = None) -> Dict[str, Any]:
    """List phases in order."""

    return _dispatch(root, lambda engine: engine.list_phases())


@mcp.tool()
def update_phase(
    phase_id: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    order: Optional[int] = None,
    new_id: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Update a phase. Passing new_id renames the directory and rewrites every contained task."""

    return _dispatch(root, lambda engine: engine.update_phase(phase_id, name, description, order, new_id))


@mcp.tool()
def delete_phase(phase_id: str, force: bool = False, root: Optional[str] = None) -> Dict[str, Any]:
    """Delete a phase. Refused while it contains tasks unless force is set."""

    return _dispatch(root, lambda engine: engine.delete_phase(phase_id, force))


# ----------------------------------------------------------------------
# Features and areas
# ----------------------------------------------------------------------


@mcp.tool()
def create_feature(
    name: str,
    title: str,
    phase: str,
    task_type: Optional[str] = None,
    description: str = "",
    assigned_to: Optional[str] = None,
    tags: Optional[List[str]] = None,
    priority: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a FEATURE_<name> directory in a phase with its overview document."""

    return _dispatch(root, lambda engine: engine.create_feature(
        name,
        title,
        phase,
        task_type=task_type,
        description=description,
        assigned_to=assigned_to,
        tags=tags,
        priority=priority,
    ))


@mcp.tool()
def create_area(
    name: str,
    title: str,
    phase: str,
    task_type: Optional[str] = None,
    description: str = "",
    assigned_to: Optional[str] = None,
    tags: Optional[List[str]] = None,
    priority: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Create an AREA_<name> directory in a phase with its overview document."""

    return _dispatch(root, lambda engine: engine.create_area(
        name,
        title,
        phase,
        task_type=task_type,
        description=description,
        assigned_to=assigned_to,
        tags=tags,
        priority=priority,
    ))


@mcp.tool()
def get_feature(name: str, phase: str, include_overview: bool = True, root: Optional[str] = None) -> Dict[str, Any]:
    """Return a feature with its progress and tasks."""

    return _dispatch(root, lambda engine: engine.get_feature(name, phase, include_overview))


@mcp.tool()
def get_area(name: str, phase: str, include_overview: bool = True, root: Optional[str] = None) -> Dict[str, Any]:
    """Return an area with its progress and tasks."""

    return _dispatch(root, lambda engine: engine.get_area(name, phase, include_overview))


@mcp.tool()
def list_features(
    phase: Optional[str] = None,
    status: Optional[str] = None,
    include_tasks: bool = True,
    include_progress: bool = True,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """List features, optionally within one phase or with one derived status."""

    return _dispatch(root, lambda engine: engine.list_features(phase, status, include_tasks, include_progress))


@mcp.tool()
def list_areas(
    phase: Optional[str] = None,
    status: Optional[str] = None,
    include_tasks: bool = True,
    include_progress: bool = True,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """List areas, optionally within one phase or with one derived status."""

    return _dispatch(root, lambda engine: engine.list_areas(phase, status, include_tasks, include_progress))


@mcp.tool()
def update_feature(
    name: str,
    phase: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    status: Optional[str] = None,
    new_name: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Update a feature's overview; new_name renames the directory and relinks its tasks."""

    return _dispatch(root, lambda engine: engine.update_feature(
        name, phase, title=title, description=description, status=status, new_name=new_name
    ))


@mcp.tool()
def update_area(
    name: str,
    phase: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    status: Optional[str] = None,
    new_name: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Update an area's overview; new_name renames the directory and relinks its tasks."""

    return _dispatch(root, lambda engine: engine.update_area(
        name, phase, title=title, description=description, status=status, new_name=new_name
    ))


@mcp.tool()
def move_feature(name: str, phase: str, target_phase: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Move a feature directory and all of its tasks to another phase."""

    return _dispatch(root, lambda engine: engine.move_feature(name, phase, target_phase))


@mcp.tool()
def move_area(name: str, phase: str, target_phase: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Move an area directory and all of its tasks to another phase."""

    return _dispatch(root, lambda engine: engine.move_area(name, phase, target_phase))


@mcp.tool()
def delete_feature(name: str, phase: str, force: bool = False, root: Optional[str] = None) -> Dict[str, Any]:
    """Delete a feature. Refused while it contains tasks besides its overview unless force is set."""

    return _dispatch(root, lambda engine: engine.delete_feature(name, phase, force))


@mcp.tool()
def delete_area(name: str, phase: str, force: bool = False, root: Optional[str] = None) -> Dict[str, Any]:
    """Delete an area. Refused while it contains tasks besides its overview unless force is set."""

    return _dispatch(root, lambda engine: engine.delete_area(name, phase, force))


@mcp.resource("taskweave://phases")
def resource_phases() -> str:
    """Resource view listing phases and their derived status."""

    try:
        engine = _engine(None)
    except ValueError:
        return f"No project root detected. Launch tools with a 'root' argument or set {PROJECT_ROOT_ENV}."

    result = engine.list_phases()
    if not result.success:
        return f"Unable to list phases: {result.error}"
    phases = result.data["phases"]
    if not phases:
        return "No phases have been created yet."

    lines = ["taskweave phases"]
    for phase in phases:
        lines.append("")
        lines.append(f"- {phase['id']}: {phase['name']} [{phase['status']}]")
        lines.append(f"  Tasks: {phase['task_count']}")
    return "\n".join(lines)



@mcp.resource("taskweave://config")
def resource_config() -> str:
    """Resource view of the effective engine configuration."""

    try:
        engine = _engine(None)
    except ValueError:
        return f"No project root detected. Launch tools with a 'root' argument or set {PROJECT_ROOT_ENV}."
    return yaml.safe_dump(engine.config.to_dict(), sort_keys=False)


if __name__ == "__main__":
    setup_logging(os.getenv(LOG_LEVEL_ENV, "INFO"))
    mcp.run(transport="stdio")
