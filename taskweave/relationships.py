"""Inverse-edge maintenance between task documents.

``parent_task`` is mirrored by the parent's ``subtasks`` list and
``previous_task``/``next_task`` mirror each other. After the primary write
has committed, neighbours are loaded and rewritten one by one; a neighbour
that cannot be loaded or written becomes a ``RelationshipWarning`` and the
remaining neighbours are still processed.

``depends_on`` is never inverted. Dependents are found by query.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Set

from .errors import CycleDetected, EngineError, RelationshipWarning
from .models import Relationships, Task

if TYPE_CHECKING:
    from .store import TaskStore

logger = logging.getLogger("taskweave.relationships")

CHAIN_INVERSE = {"previous_task": "next_task", "next_task": "previous_task"}


class RelationshipMaintainer:
    def __init__(self, store: "TaskStore"):
        self.store = store

    def sync(self, task: Task, previous: Optional[Task] = None) -> List[RelationshipWarning]:
        """Push the inverse of every changed edge of ``task`` into its neighbours.

        ``previous`` is the snapshot before an update (``None`` on create).
        Edges that were removed or re-pointed are unlinked from the old
        neighbour before the new neighbour is linked.
        """
        warnings: List[RelationshipWarning] = []
        task_id = task.task_id
        old = previous.relationships if previous is not None else Relationships()
        new = task.relationships

        if old.parent_task and old.parent_task != new.parent_task:
            self._edit(task_id, old.parent_task, "subtasks", lambda parent: _remove(parent.relationships.subtasks, task_id), warnings)
        if new.parent_task:
            self._edit(task_id, new.parent_task, "subtasks", lambda parent: _append(parent.relationships.subtasks, task_id), warnings)

        for field in ("previous_task", "next_task"):
            old_neighbor = getattr(old, field)
            new_neighbor = getattr(new, field)
            if old_neighbor and old_neighbor != new_neighbor:
                self._unlink(task_id, old_neighbor, CHAIN_INVERSE[field], warnings)
            if new_neighbor:
                self._link(task_id, new_neighbor, CHAIN_INVERSE[field], warnings)

        added = [dep for dep in new.depends_on if dep not in old.depends_on]
        for dep in added:
            if not self.store.exists(dep):
                warnings.append(RelationshipWarning(task_id, dep, "depends_on", "dependency does not exist"))

        if warnings:
            logger.warning(f"{len(warnings)} relationship update(s) failed for {task_id}")
        return warnings

    def detach(self, task: Task) -> List[RelationshipWarning]:
        """Remove every edge that points at ``task`` ahead of its deletion.

        The chain is bridged across the gap (previous -> next). Subtasks are
        kept, lose their parent and are reported as orphaned. Dependents drop
        the id from ``depends_on``.
        """
        warnings: List[RelationshipWarning] = []
        task_id = task.task_id
        rel = task.relationships

        if rel.parent_task:
            self._edit(task_id, rel.parent_task, "subtasks", lambda parent: _remove(parent.relationships.subtasks, task_id), warnings)

        before, after = rel.previous_task, rel.next_task
        if before:
            self._edit(task_id, before, "next_task", lambda neighbor: _repoint(neighbor, "next_task", task_id, after), warnings)
        if after:
            self._edit(task_id, after, "previous_task", lambda neighbor: _repoint(neighbor, "previous_task", task_id, before), warnings)

        children = list(rel.subtasks)
        for child in self.store.query.subtasks_of(task_id):
            if child.task_id not in children:
                children.append(child.task_id)
        for child_id in children:
            if self._edit(task_id, child_id, "parent_task", lambda child: _repoint(child, "parent_task", task_id, None), warnings):
                warnings.append(
                    RelationshipWarning(task_id, child_id, "parent_task", "subtask orphaned by deletion of its parent")
                )

        for dependent in self.store.query.find_dependents(task_id):
            self._edit(task_id, dependent.task_id, "depends_on", lambda other: _remove(other.relationships.depends_on, task_id), warnings)

        return warnings

    def check_cycles(self, task: Task) -> None:
        """Raise ``CycleDetected`` if ``task``'s edges would lead back to itself."""
        task_id = task.task_id
        rel = task.relationships
        if task_id in (rel.parent_task, rel.previous_task, rel.next_task) or task_id in rel.depends_on:
            raise CycleDetected(f"Task {task_id} cannot reference itself")

        tasks, _ = self.store.query.scan()
        by_id: Dict[str, Task] = {other.task_id: other for other in tasks if not other.is_overview}
        by_id[task_id] = task

        seen: Set[str] = set()
        ancestor = rel.parent_task
        while ancestor and ancestor not in seen:
            if ancestor == task_id:
                raise CycleDetected(f"Setting parent of {task_id} to {rel.parent_task} would create a cycle")
            seen.add(ancestor)
            parent = by_id.get(ancestor)
            ancestor = parent.relationships.parent_task if parent else None

        stack = list(rel.depends_on)
        visited: Set[str] = set()
        while stack:
            current = stack.pop()
            if current == task_id:
                raise CycleDetected(f"Dependencies of {task_id} would create a cycle")
            if current in visited:
                continue
            visited.add(current)
            dependency = by_id.get(current)
            if dependency is not None:
                stack.extend(dependency.relationships.depends_on)

    def _link(self, task_id: str, neighbor_id: str, field: str, warnings: List[RelationshipWarning]) -> None:
        """Point ``neighbor.field`` at ``task_id``, unlinking whoever it pointed at before."""
        displaced: List[str] = []

        def point(neighbor: Task) -> bool:
            current = getattr(neighbor.relationships, field)
            if current == task_id:
                return False
            if current:
                displaced.append(current)
            setattr(neighbor.relationships, field, task_id)
            return True

        self._edit(task_id, neighbor_id, field, point, warnings)
        for other in displaced:
            self._unlink(neighbor_id, other, CHAIN_INVERSE[field], warnings)

    def _unlink(self, task_id: str, neighbor_id: str, field: str, warnings: List[RelationshipWarning]) -> None:
        self._edit(task_id, neighbor_id, field, lambda neighbor: _repoint(neighbor, field, task_id, None), warnings)

    def _edit(
        self,
        task_id: str,
        neighbor_id: str,
        field: str,
        mutate: Callable[[Task], bool],
        warnings: List[RelationshipWarning],
    ) -> bool:
        """Load a neighbour, apply ``mutate`` and save it if anything changed.

        Returns True when the neighbour was changed and written.
        """
        try:
            neighbor = self.store.find(neighbor_id)
            if neighbor is None:
                warnings.append(RelationshipWarning(task_id, neighbor_id, field, "task not found"))
                return False
            if not mutate(neighbor):
                return False
            self.store.save(neighbor)
        except (EngineError, OSError) as exc:
            logger.warning(f"Failed to update {field} on {neighbor_id} for {task_id}: {exc}")
            warnings.append(RelationshipWarning(task_id, neighbor_id, field, str(exc)))
            return False
        logger.debug(f"Updated {field} on {neighbor_id} for {task_id}")
        return True


def _append(values: List[str], value: str) -> bool:
    if value in values:
        return False
    values.append(value)
    return True


def _remove(values: List[str], value: str) -> bool:
    if value not in values:
        return False
    values[:] = [item for item in values if item != value]
    return True


def _repoint(task: Task, field: str, expected: str, replacement: Optional[str]) -> bool:
    """Replace ``task.field`` only while it still points at ``expected``."""
    if getattr(task.relationships, field) != expected:
        return False
    setattr(task.relationships, field, replacement)
    return True
