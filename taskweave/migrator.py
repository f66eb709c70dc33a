"""Moves of single tasks and whole phase/feature/area directories.

Directory migrations copy the source tree to the target, rewrite the location
metadata of every copied task, and only then delete the source. A crash at
any point leaves at least one complete copy on disk. A marker file in the
target records the migration in flight so the same call can be retried and
finishes the job instead of failing on the now-existing target.
"""

from __future__ import annotations

import logging
import shutil
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Iterator, List, Optional, Tuple

from . import codec
from .engine_logging import log_migration_event, log_task_event
from .errors import EngineError, InvalidIdentifier, IOFailure, LocationConflict, NotFound
from .layout import (
    MIGRATION_MARKER_FILENAME,
    PHASE_REGISTRY_FILENAME,
    is_overview_file,
    to_safe_directory_name,
    validate_identifier,
    validate_location,
)
from .locks import tree_lock
from .models import GroupingKind, Task

if TYPE_CHECKING:
    from .store import TaskStore

logger = logging.getLogger("taskweave.migrator")


class Migrator:
    """Relocate tasks and directories while keeping metadata and paths in agreement."""

    def __init__(self, store: "TaskStore"):
        self.store = store
        self.layout = store.layout
        self.config = store.config

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Exclusive hold on the task tree; not re-entrant."""
        with tree_lock(self.config.lock_path, enabled=self.config.use_file_lock):
            yield

    # ------------------------------------------------------------------
    # Single tasks
    # ------------------------------------------------------------------

    def move_task(
        self,
        task_id: str,
        target_subdirectory: Optional[str] = None,
        target_phase: Optional[str] = None,
        phase: Optional[str] = None,
        subdirectory: Optional[str] = None,
    ) -> Task:
        """Move a task to ``target_phase``/``target_subdirectory``.

        ``target_phase`` defaults to the task's current phase. Relationships
        reference ids, not paths, so they are left alone.
        """
        with self.store.locked_task(task_id, phase, subdirectory) as task, self.locked():
            new_phase = task.phase if target_phase is None else (target_phase or None)
            return self.relocate(task, new_phase, target_subdirectory or None)

    def transition_task(
        self,
        task_id: str,
        target_phase: str,
        phase: Optional[str] = None,
        subdirectory: Optional[str] = None,
    ) -> Task:
        """Move a task to another phase, keeping its subdirectory."""
        with self.store.locked_task(task_id, phase, subdirectory) as task, self.locked():
            return self.relocate(task, target_phase or None, task.subdirectory)

    def relocate(self, task: Task, phase: Optional[str], subdirectory: Optional[str]) -> Task:
        """Write ``task`` at its new location and remove the old file."""
        phase, subdirectory = validate_location(phase, subdirectory)
        source = task.file_path
        target = self.layout.task_path(task.task_id, phase, subdirectory)

        moved = task.clone()
        moved.phase = phase
        moved.subdirectory = subdirectory
        moved.updated_date = date.today().isoformat()

        if source is not None and source.resolve() == target.resolve():
            self.store.write(moved, target)
            return moved
        if target.exists():
            raise LocationConflict(f"Cannot move {task.task_id}: {target} already exists")

        self.store.write(moved, target)
        if source is not None:
            try:
                source.unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                # Two copies with one id would be worse than a failed move.
                target.unlink(missing_ok=True)
                raise IOFailure(f"Failed to remove {source} after copying to {target}: {exc}") from exc

        logger.info(f"Moved task {task.task_id} from {source} to {target}")
        log_task_event("moved", task.task_id, source=str(source) if source else None, target=str(target))
        return moved

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def rename_phase(self, old_id: str, new_id: str) -> int:
        """Rename a phase directory; returns the number of tasks relinked."""
        validate_identifier(old_id, "phase")
        validate_identifier(new_id, "phase")
        if old_id == new_id:
            return 0
        source = self.layout.phase_dir(old_id)
        target = self.layout.phase_dir(new_id)

        with self.locked():
            resuming = self._pending_migration(source, target)
            if not resuming:
                if not source.is_dir():
                    raise NotFound(f"Phase {old_id} not found")
                if target.exists():
                    raise LocationConflict(f"Phase {new_id} already exists")
            relinked = self._migrate_directory(source, target, "phase", old_id, new_id)
            self._rename_registry(target, new_id)

        log_migration_event("phase_renamed", old_id, new_id, tasks=relinked, resumed=resuming)
        return relinked

    def delete_phase(self, phase_id: str, force: bool = False) -> List[str]:
        """Remove a phase directory; refused while it holds tasks unless ``force``."""
        validate_identifier(phase_id, "phase")
        directory = self.layout.phase_dir(phase_id)
        if not directory.is_dir():
            raise NotFound(f"Phase {phase_id} not found")

        with self.locked():
            contained = self._contained(directory)
            if contained and not force:
                raise LocationConflict(
                    f"Phase {phase_id} contains {len(contained)} task(s); use force to delete it",
                    details=contained,
                )
            self._remove_tree(directory)

        log_migration_event("phase_deleted", phase_id, tasks=len(contained), forced=force)
        return contained

    # ------------------------------------------------------------------
    # Features and areas
    # ------------------------------------------------------------------

    def grouping_dir(self, kind: GroupingKind, name: str, phase: str) -> Path:
        validate_identifier(phase, "phase")
        directory_name = to_safe_directory_name(name or "", kind)
        if not kind.strip_prefix(directory_name):
            raise InvalidIdentifier(f"Invalid {kind.value} name {name!r}")
        validate_identifier(directory_name, f"{kind.value} name")
        return self.layout.phase_dir(phase) / directory_name

    def rename_grouping(self, kind: GroupingKind, phase: str, old_name: str, new_name: str) -> int:
        source = self.grouping_dir(kind, old_name, phase)
        target = self.grouping_dir(kind, new_name, phase)
        if source == target:
            return 0
        with self.locked():
            resuming = self._pending_migration(source, target)
            if not resuming:
                if not source.is_dir():
                    raise NotFound(f"{kind.value.capitalize()} {old_name} not found in phase {phase}")
                if target.exists():
                    raise LocationConflict(f"{kind.value.capitalize()} {new_name} already exists in phase {phase}")
            relinked = self._migrate_directory(source, target, "subdirectory", source.name, target.name)

        log_migration_event(f"{kind.value}_renamed", source.name, target.name, phase=phase, tasks=relinked)
        return relinked

    def move_grouping(self, kind: GroupingKind, name: str, phase: str, target_phase: str) -> int:
        source = self.grouping_dir(kind, name, phase)
        target = self.grouping_dir(kind, name, target_phase)
        if source == target:
            return 0
        if not self.layout.phase_dir(target_phase).is_dir():
            raise NotFound(f"Phase {target_phase} not found")
        with self.locked():
            resuming = self._pending_migration(source, target)
            if not resuming:
                if not source.is_dir():
                    raise NotFound(f"{kind.value.capitalize()} {name} not found in phase {phase}")
                if target.exists():
                    raise LocationConflict(f"{kind.value.capitalize()} {name} already exists in phase {target_phase}")
            relinked = self._migrate_directory(source, target, "phase", phase, target_phase)

        log_migration_event(f"{kind.value}_moved", f"{phase}/{source.name}", f"{target_phase}/{target.name}", tasks=relinked)
        return relinked

    def delete_grouping(self, kind: GroupingKind, name: str, phase: str, force: bool = False) -> List[str]:
        """Remove a feature/area directory; its overview does not count as a contained task."""
        directory = self.grouping_dir(kind, name, phase)
        if not directory.is_dir():
            raise NotFound(f"{kind.value.capitalize()} {name} not found in phase {phase}")
        with self.locked():
            contained = self._contained(directory, skip_overviews=True)
            if contained and not force:
                raise LocationConflict(
                    f"{kind.value.capitalize()} {name} contains {len(contained)} task(s); use force to delete it",
                    details=contained,
                )
            self._remove_tree(directory)

        log_migration_event(f"{kind.value}_deleted", f"{phase}/{directory.name}", tasks=len(contained), forced=force)
        return contained

    def _contained(self, directory: Path, skip_overviews: bool = False) -> List[str]:
        """Ids of the task documents under ``directory``.

        A document that cannot be decoded still counts, under its path
        relative to the tasks root, so a guarded delete never drops it.
        """
        contained: List[str] = []
        for path in self.layout.iter_task_files(directory):
            if skip_overviews and is_overview_file(path):
                continue
            try:
                task = self.store.read(path)
            except (EngineError, OSError) as exc:
                logger.warning(f"Counting unreadable {path} as a contained task: {exc}")
                contained.append(path.relative_to(self.layout.tasks_root).as_posix())
                continue
            if not (skip_overviews and task.is_overview):
                contained.append(task.task_id)
        return contained

    # ------------------------------------------------------------------
    # Copy, relink, delete
    # ------------------------------------------------------------------

    def _pending_migration(self, source: Path, target: Path) -> bool:
        marker = target / MIGRATION_MARKER_FILENAME
        if not marker.is_file():
            return False
        try:
            data = codec.read_mapping(marker)
        except EngineError as exc:
            logger.warning(f"Ignoring unreadable migration marker {marker}: {exc}")
            return False
        return data.get("source") == str(source) and data.get("target") == str(target)

    def _migrate_directory(self, source: Path, target: Path, field: str, old: str, new: str) -> int:
        marker = target / MIGRATION_MARKER_FILENAME
        try:
            target.mkdir(parents=True, exist_ok=True)
            codec.write_mapping(marker, {
                "source": str(source),
                "target": str(target),
                "field": field,
                "old": old,
                "new": new,
                "started": datetime.now(timezone.utc).isoformat(),
            })
            if source.is_dir():
                shutil.copytree(source, target, dirs_exist_ok=True)
        except OSError as exc:
            raise IOFailure(f"Failed to copy {source} to {target}: {exc}") from exc

        relinked, failures = self._relink(target)
        if failures:
            raise IOFailure(
                f"Failed to update {len(failures)} task(s) under {target}; {source} was kept",
                details=failures,
            )

        if source.is_dir():
            self._remove_tree(source)
        marker.unlink(missing_ok=True)
        logger.info(f"Migrated {source} to {target} ({field}: {old} -> {new}, {relinked} task(s) rewritten)")
        return relinked

    def _relink(self, directory: Path) -> Tuple[int, List[str]]:
        """Make every task's phase/subdirectory metadata match its new path."""
        relinked = 0
        failures: List[str] = []
        for path in self.layout.iter_task_files(directory):
            try:
                task = self.store.read(path)
                phase, subdirectory = self.layout.parse_task_path(path)
                if task.phase == phase and task.subdirectory == subdirectory:
                    continue
                task.phase = phase
                task.subdirectory = subdirectory
                self.store.save(task)
                relinked += 1
            except (EngineError, OSError) as exc:
                logger.error(f"Failed to relink {path}: {exc}")
                failures.append(f"{path}: {exc}")
        return relinked, failures

    def _rename_registry(self, phase_dir: Path, new_id: str) -> None:
        registry = phase_dir / PHASE_REGISTRY_FILENAME
        if not registry.is_file():
            return
        data = codec.read_mapping(registry)
        if data.get("id") != new_id:
            data["id"] = new_id
            codec.write_mapping(registry, data)

    def _remove_tree(self, directory: Path) -> None:
        try:
            shutil.rmtree(directory)
        except OSError as exc:
            raise IOFailure(f"Failed to remove {directory}: {exc}") from exc
