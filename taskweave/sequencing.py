"""Ordering tokens for the subtasks of a parent.

A token is a zero-padded number with an optional single lowercase letter:
``01``, ``02``, ``04a``, ``04b``. Siblings sharing a number are parallel.
"""

from __future__ import annotations

import logging
import re
import string
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .errors import AlreadyExists, EngineError, NoValidSequence, NotFound, RelationshipWarning
from .models import Task

if TYPE_CHECKING:
    from .store import TaskStore

logger = logging.getLogger("taskweave.sequencing")

SEQUENCE_PATTERN = re.compile(r"^(\d+)([a-z]?)$")
PARALLEL_SUFFIXES = string.ascii_lowercase


def format_sequence(number: int, suffix: str = "") -> str:
    return f"{number:02d}{suffix}"


def base_sequence(token: Optional[str]) -> Optional[str]:
    """``"04b"`` -> ``"04"``; tokens without a suffix are returned unchanged."""
    if not token:
        return None
    if len(token) > 1 and token[-1] in PARALLEL_SUFFIXES and token[-2].isdigit():
        return token[:-1]
    return token


def base_number(token: Optional[str]) -> Optional[int]:
    match = SEQUENCE_PATTERN.match(token or "")
    return int(match.group(1)) if match else None


def sequence_sort_key(task: Task) -> Tuple[int, int, str, str]:
    token = task.relationships.sequence
    number = base_number(token)
    if number is None:
        return (1, 0, "", task.task_id)
    return (0, number, token or "", task.task_id)


def parallel_groups(tasks: Iterable[Task]) -> List[Dict[str, Any]]:
    """Group sibling tasks by base sequence for display.

    Each group is ``{"sequence": base, "parallel": bool, "tasks": [ids]}``;
    tasks without a token come last, one group each.
    """
    groups: List[Dict[str, Any]] = []
    by_base: Dict[str, Dict[str, Any]] = {}
    for task in sorted(tasks, key=sequence_sort_key):
        base = base_sequence(task.relationships.sequence)
        if base is None:
            groups.append({"sequence": None, "parallel": False, "tasks": [task.task_id]})
            continue
        group = by_base.get(base)
        if group is None:
            group = {"sequence": base, "parallel": False, "tasks": []}
            by_base[base] = group
            groups.append(group)
        group["tasks"].append(task.task_id)
        group["parallel"] = len(group["tasks"]) > 1
    return groups


class SequenceAllocator:
    """Assign and renumber sequence tokens among siblings."""

    def __init__(self, store: "TaskStore"):
        self.store = store

    def list_subtasks(self, parent_id: str) -> List[Task]:
        """Subtasks of ``parent_id`` sorted by sequence."""
        if self.store.find(parent_id) is None:
            raise NotFound(f"Parent task with ID {parent_id} not found")
        return sorted(self.store.query.subtasks_of(parent_id), key=sequence_sort_key)

    def next_sequence(self, parent_id: str) -> str:
        """Token for a new subtask: one past the current subtask count.

        If that number is already used by a sibling, the token goes past the
        highest number in use instead.
        """
        parent = self.store.find(parent_id)
        count = len(parent.relationships.subtasks) if parent is not None else 0
        used = {
            number
            for number in (base_number(child.relationships.sequence) for child in self.store.query.subtasks_of(parent_id))
            if number is not None
        }
        candidate = count + 1
        if candidate in used:
            candidate = max(used) + 1
        return format_sequence(candidate)

    def ensure_available(self, parent_id: str, token: str, task_id: str) -> None:
        """Raise ``AlreadyExists`` when another subtask of ``parent_id`` holds ``token``."""
        for sibling in self.store.query.subtasks_of(parent_id):
            if sibling.task_id != task_id and sibling.relationships.sequence == token:
                raise AlreadyExists(f"Sequence {token} is already used by {sibling.task_id} under {parent_id}")

    @contextmanager
    def locked_subtasks(self, parent_id: str) -> Iterator[List[Task]]:
        """Subtasks of ``parent_id``, read while the parent and every subtask are locked."""

        def resolve() -> Tuple[List[Task], List[str]]:
            siblings = self.list_subtasks(parent_id)
            return siblings, [parent_id, *(task.task_id for task in siblings)]

        with self.store.locks.hold_resolved([parent_id], resolve) as siblings:
            yield siblings

    def reorder(self, parent_id: str, ordered_ids: Sequence[str]) -> Tuple[List[Task], List[RelationshipWarning]]:
        """Number the listed subtasks by their position in ``ordered_ids``.

        Subtasks not listed keep their tokens unless a token collides with a
        newly assigned one, in which case they move past the highest number
        in use. Ids in ``ordered_ids`` that are not subtasks still take up a
        position.
        """
        with self.locked_subtasks(parent_id) as siblings:
            by_id = {task.task_id: task for task in siblings}
            assigned: Dict[str, str] = {}
            for index, task_id in enumerate(ordered_ids):
                if task_id in by_id and task_id not in assigned:
                    assigned[task_id] = format_sequence(index + 1)
            unknown = [task_id for task_id in ordered_ids if task_id not in by_id]
            if unknown:
                logger.warning(f"Ignoring ids that are not subtasks of {parent_id}: {', '.join(unknown)}")
            return self._apply(parent_id, siblings, assigned)

    def make_parallel(self, parent_id: str, task_ids: Sequence[str]) -> Tuple[List[Task], List[RelationshipWarning]]:
        """Give the selected subtasks one shared base with suffixes ``a``, ``b``, ...

        The base is the smallest number currently held by any of them. At
        least two distinct subtasks are required.
        """
        unique_ids = list(dict.fromkeys(task_ids))
        if len(unique_ids) < 2:
            raise NoValidSequence(f"At least two subtasks of {parent_id} are needed to run in parallel")
        if len(unique_ids) > len(PARALLEL_SUFFIXES):
            raise NoValidSequence(f"At most {len(PARALLEL_SUFFIXES)} subtasks can run in parallel")

        with self.locked_subtasks(parent_id) as siblings:
            by_id = {task.task_id: task for task in siblings}
            selected: List[Task] = []
            for task_id in unique_ids:
                if task_id not in by_id:
                    raise NotFound(f"Task {task_id} is not a subtask of {parent_id}")
                selected.append(by_id[task_id])

            numbers = [base_number(task.relationships.sequence) for task in selected]
            numbers = [number for number in numbers if number is not None]
            if not numbers:
                raise NoValidSequence(f"None of the selected subtasks of {parent_id} has a sequence")

            base = min(numbers)
            assigned = {
                task.task_id: format_sequence(base, PARALLEL_SUFFIXES[index]) for index, task in enumerate(selected)
            }
            return self._apply(parent_id, siblings, assigned)

    def _apply(
        self, parent_id: str, siblings: List[Task], assigned: Dict[str, str]
    ) -> Tuple[List[Task], List[RelationshipWarning]]:
        tokens = dict(assigned)
        tokens.update(_resolve_collisions(siblings, assigned))

        warnings: List[RelationshipWarning] = []
        for task in siblings:
            token = tokens.get(task.task_id)
            if token is None or token == task.relationships.sequence:
                continue
            task.relationships.sequence = token
            try:
                self.store.save(task)
            except (EngineError, OSError) as exc:
                logger.warning(f"Failed to write sequence {token} to {task.task_id}: {exc}")
                warnings.append(RelationshipWarning(parent_id, task.task_id, "sequence", str(exc)))
        return sorted(siblings, key=sequence_sort_key), warnings


def _resolve_collisions(siblings: List[Task], assigned: Dict[str, str]) -> Dict[str, str]:
    """New tokens for untouched siblings whose base collides with an assigned one.

    Siblings that shared a base keep sharing one, so parallel groups survive.
    """
    taken = {base_number(token) for token in assigned.values()}
    untouched = [task for task in siblings if task.task_id not in assigned]
    in_use = taken | {base_number(task.relationships.sequence) for task in untouched}
    in_use.discard(None)
    highest = max(in_use, default=0)

    remap: Dict[int, int] = {}
    moved: Dict[str, str] = {}
    for task in sorted(untouched, key=sequence_sort_key):
        token = task.relationships.sequence
        number = base_number(token)
        if number is None or number not in taken:
            continue
        if number not in remap:
            highest += 1
            remap[number] = highest
        suffix = token[-1] if token and token[-1] in PARALLEL_SUFFIXES else ""
        moved[task.task_id] = format_sequence(remap[number], suffix)
    return moved
