"""Task store: path resolution and file I/O for task documents.

The store owns the collaborating components (query layer, relationship
maintainer, sequence allocator, migrator) and hands itself to them, so a
single ``EngineConfig`` flows through everything.
"""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import date
from pathlib import Path
from typing import Any, ContextManager, Iterable, List, Mapping, Optional, Tuple

from . import codec
from .config import EngineConfig
from .engine_logging import log_task_event
from .errors import AlreadyExists, IOFailure, InvalidIdentifier, NotFound, RelationshipWarning
from .ids import generate_task_id, generate_timestamp_id
from .layout import TaskLayout, validate_location, validate_subdirectory, validate_task_identifier
from .locks import TaskLocks
from .migrator import Migrator
from .models import OVERVIEW_ID, RELATIONSHIP_KEYS, Relationships, Task, optional_str, str_list
from .normalizers import normalize_priority, normalize_status, normalize_type
from .query import TaskFilter, TaskQuery
from .relationships import RelationshipMaintainer
from .sequencing import SequenceAllocator

logger = logging.getLogger("taskweave.store")

MAX_ID_ATTEMPTS = 10

_UNSET = object()

SUBTASKS_ARE_DERIVED = "subtasks follows each child's parent_task; set parent_task on the child instead"

Mutation = Tuple[Task, List[RelationshipWarning]]


def today() -> str:
    return date.today().isoformat()


def apply_patch(task: Task, patch: Mapping[str, Any]) -> None:
    """Apply a partial metadata patch in place.

    ``None`` clears an optional field. Keys the model does not know about are
    stored in ``task.extra``. Location keys are not handled here.
    """
    rel = task.relationships
    for key, value in patch.items():
        if key == "title":
            if value:
                task.title = str(value)
        elif key in ("type", "task_type"):
            task.task_type = normalize_type(value)
        elif key == "status":
            task.status = normalize_status(value)
        elif key == "priority":
            task.priority = normalize_priority(value)
        elif key in ("assigned_to", "due_date", "created_date"):
            setattr(task, key, optional_str(value))
        elif key == "tags":
            task.tags = str_list(value)
        elif key == "content":
            task.content = "" if value is None else str(value)
        elif key == "is_overview":
            task.is_overview = bool(value)
        elif key in ("depends_on", "depends"):
            rel.depends_on = _unique(str_list(value))
        elif key == "subtasks":
            rel.subtasks = _unique(str_list(value))
        elif key in RELATIONSHIP_KEYS:
            setattr(rel, key, optional_str(value))
        elif key == "updated_date":
            continue
        elif value is None:
            task.extra.pop(key, None)
        else:
            task.extra[key] = value


def _unique(values: List[str]) -> List[str]:
    return list(dict.fromkeys(values))


def patched_neighbor_ids(patch: Mapping[str, Any]) -> List[str]:
    """Ids a patch is about to link through ``parent_task``, ``previous_task`` or ``next_task``."""
    ids = [optional_str(patch.get(key)) for key in ("parent_task", "previous_task", "next_task")]
    return [task_id for task_id in ids if task_id]


def relationships_changed(old: Relationships, new: Relationships) -> bool:
    return (
        old.parent_task != new.parent_task
        or old.previous_task != new.previous_task
        or old.next_task != new.next_task
        or old.depends_on != new.depends_on
    )


class TaskStore:
    """Create, read, update and delete task documents."""

    def __init__(self, config: EngineConfig, layout: Optional[TaskLayout] = None):
        self.config = config
        self.layout = layout or TaskLayout(config)
        self.query = TaskQuery(self.layout)
        self.locks = TaskLocks()
        self.relationships = RelationshipMaintainer(self)
        self.sequencer = SequenceAllocator(self)
        self.migrator = Migrator(self)

    # ------------------------------------------------------------------
    # File level
    # ------------------------------------------------------------------

    def read(self, path: Path) -> Task:
        return self.query.load(path)

    def write(self, task: Task, path: Optional[Path] = None) -> Path:
        """Encode ``task`` and replace the file at ``path`` in one step."""
        target = path or task.file_path or self.layout.task_path(task.task_id, task.phase, task.subdirectory)
        text = codec.encode(task)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            # Dot-prefixed temp files are never picked up by a scan.
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.stem}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(text)
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise IOFailure(f"Failed to write {target}: {exc}") from exc
        task.file_path = target
        return target

    def save(self, task: Task) -> Path:
        """Stamp ``updated_date`` and rewrite the task where it lives."""
        task.updated_date = today()
        return self.write(task)

    def find(self, task_id: str) -> Optional[Task]:
        return self.query.find_by_id(task_id)

    def exists(self, task_id: str) -> bool:
        return self.find(task_id) is not None

    def locked_task(
        self,
        task_id: str,
        phase: Optional[str] = None,
        subdirectory: Optional[str] = None,
        extra_ids: Iterable[Optional[str]] = (),
    ) -> ContextManager[Task]:
        """Read a task while holding its lock and the locks of every task it links to.

        ``extra_ids`` are locked as well, e.g. the neighbours an update is about
        to link. The task is re-read whenever the set of linked ids grew.
        """

        def resolve() -> Tuple[Task, List[str]]:
            task = self.get(task_id, phase, subdirectory)
            rel = task.relationships
            return task, [task.task_id, *rel.neighbor_ids(), *rel.subtasks]

        return self.locks.hold_resolved([task_id, *extra_ids], resolve)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(self, task: Task, phase: Optional[str] = None, subdirectory: Optional[str] = None) -> Mutation:
        """Write a new task and link it into its neighbours.

        Location hints override the task's own ``phase``/``subdirectory``.
        """
        task = task.clone()
        if phase is not None:
            task.phase = phase or None
        if subdirectory is not None:
            task.subdirectory = subdirectory or None
        task.phase, task.subdirectory = validate_location(task.phase, task.subdirectory)

        if task.task_id:
            validate_task_identifier(task.task_id)
        else:
            task.task_id = self._new_id(task)
        if task.task_id == OVERVIEW_ID:
            task.is_overview = True

        rel = task.relationships
        if rel.subtasks:
            raise InvalidIdentifier(SUBTASKS_ARE_DERIVED)
        stamp = today()
        task.created_date = task.created_date or stamp
        task.updated_date = stamp
        rel.depends_on = _unique(rel.depends_on)

        path = self.layout.task_path(task.task_id, task.phase, task.subdirectory)
        with self.locks.hold(task.task_id, *rel.neighbor_ids()):
            if path.exists():
                raise AlreadyExists(f"Task file already exists: {path}")
            if not task.is_overview and self.exists(task.task_id):
                raise AlreadyExists(f"Task with ID {task.task_id} already exists")
            if rel.parent_task or rel.depends_on or rel.previous_task or rel.next_task:
                self.relationships.check_cycles(task)
            if rel.parent_task and rel.sequence:
                self.sequencer.ensure_available(rel.parent_task, rel.sequence, task.task_id)
            elif rel.parent_task:
                rel.sequence = self.sequencer.next_sequence(rel.parent_task)
            self.write(task, path)
            warnings = self.relationships.sync(task)

        logger.info(f"Created task {task.task_id} at {path}")
        log_task_event("created", task.task_id, phase=task.phase, subdirectory=task.subdirectory)
        return task, warnings

    def get(self, task_id: str, phase: Optional[str] = None, subdirectory: Optional[str] = None) -> Task:
        """Resolve by location hints first, then by a scan of the whole tree."""
        validate_task_identifier(task_id)
        path = self.layout.task_path(task_id, phase or None, validate_subdirectory(subdirectory))
        if path.is_file():
            task = self.read(path)
            if task.task_id == task_id or task_id == OVERVIEW_ID:
                return task
            logger.warning(f"{path} holds {task.task_id}, not {task_id}; falling back to a scan")
        if task_id == OVERVIEW_ID and (phase or subdirectory):
            raise NotFound(f"No overview document in {path.parent}")

        task = self.find(task_id)
        if task is None:
            raise NotFound(f"Task with ID {task_id} not found")
        return task

    def update(
        self,
        task_id: str,
        patch: Mapping[str, Any],
        phase: Optional[str] = None,
        subdirectory: Optional[str] = None,
    ) -> Mutation:
        """Apply ``patch`` to a task.

        Relationship changes are propagated against the pre-update snapshot,
        so old neighbours are unlinked before new ones are linked. A change of
        ``phase`` or ``subdirectory`` moves the file through the migrator.
        ``subtasks`` follows the children's ``parent_task`` and cannot be
        patched to a different list.
        """
        patch = dict(patch)
        new_id = patch.pop("id", task_id)
        if new_id != task_id:
            raise InvalidIdentifier(f"Task id cannot be changed ({task_id} -> {new_id})")
        target_phase = patch.pop("phase", _UNSET)
        target_subdirectory = patch.pop("subdirectory", _UNSET)

        with self.locked_task(task_id, phase, subdirectory, patched_neighbor_ids(patch)) as current:
            old_rel = current.relationships
            if "subtasks" in patch and _unique(str_list(patch["subtasks"])) != old_rel.subtasks:
                raise InvalidIdentifier(SUBTASKS_ARE_DERIVED)
            updated = current.clone()
            apply_patch(updated, patch)
            updated.updated_date = today()
            new_rel = updated.relationships

            if relationships_changed(old_rel, new_rel):
                self.relationships.check_cycles(updated)
            reparented = new_rel.parent_task != old_rel.parent_task
            if reparented and "sequence" not in patch:
                new_rel.sequence = (
                    self.sequencer.next_sequence(new_rel.parent_task) if new_rel.parent_task else None
                )
            elif new_rel.parent_task and new_rel.sequence and (reparented or new_rel.sequence != old_rel.sequence):
                self.sequencer.ensure_available(new_rel.parent_task, new_rel.sequence, task_id)

            if target_phase is not _UNSET or target_subdirectory is not _UNSET:
                new_phase = current.phase if target_phase is _UNSET else (target_phase or None)
                new_subdirectory = (
                    current.subdirectory if target_subdirectory is _UNSET else (target_subdirectory or None)
                )
                with self.migrator.locked():
                    updated = self.migrator.relocate(updated, new_phase, new_subdirectory)
            else:
                self.write(updated, current.file_path)

            warnings = self.relationships.sync(updated, previous=current)

        log_task_event("updated", task_id, fields=sorted(patch))
        return updated, warnings

    def delete(self, task_id: str, phase: Optional[str] = None, subdirectory: Optional[str] = None) -> Mutation:
        """Sever every edge pointing at the task, then remove its file."""
        with self.locked_task(task_id, phase, subdirectory) as task:
            warnings = self.relationships.detach(task)
            try:
                task.file_path.unlink()
            except FileNotFoundError:
                logger.warning(f"{task.file_path} was already removed")
            except OSError as exc:
                raise IOFailure(f"Failed to delete {task.file_path}: {exc}") from exc

        logger.info(f"Deleted task {task_id}")
        log_task_event("deleted", task_id, warnings=len(warnings))
        return task, warnings

    def list(self, task_filter: Optional[TaskFilter] = None) -> List[Task]:
        return self.query.list_tasks(task_filter)

    def _new_id(self, task: Task) -> str:
        for _ in range(MAX_ID_ATTEMPTS):
            if self.config.id_format == "timestamp":
                candidate = generate_timestamp_id()
            else:
                candidate = generate_task_id(
                    task.task_type,
                    task.title,
                    stop_words=self.config.stop_words,
                    max_context_length=self.config.max_context_length,
                )
            if not self.exists(candidate):
                return candidate
        raise AlreadyExists(f"Could not generate a unique task id after {MAX_ID_ATTEMPTS} attempts")
