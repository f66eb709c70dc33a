"""Phase CRUD.

A phase is a directory under the tasks root plus an optional
``.phase.yaml`` registry holding its display name, description and order.
Status and the task list are always derived from the directory contents.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from . import codec
from .engine_logging import log_migration_event
from .errors import AlreadyExists, IOFailure, NotFound
from .layout import display_name, validate_identifier
from .models import Phase
from .normalizers import derive_phase_status

if TYPE_CHECKING:
    from .store import TaskStore

logger = logging.getLogger("taskweave.phases")


class PhaseManager:
    def __init__(self, store: "TaskStore"):
        self.store = store
        self.layout = store.layout

    def create_phase(
        self,
        phase_id: str,
        name: Optional[str] = None,
        description: str = "",
        order: Optional[int] = None,
    ) -> Phase:
        validate_identifier(phase_id, "phase")
        directory = self.layout.phase_dir(phase_id)
        if directory.exists():
            raise AlreadyExists(f"Phase {phase_id} already exists")
        if order is None:
            order = len(self.layout.phase_names()) + 1

        phase = Phase(phase_id=phase_id, name=name or display_name(phase_id), description=description or "", order=order)
        try:
            directory.mkdir(parents=True)
            codec.write_mapping(self.layout.phase_registry_path(phase_id), phase.registry_dict())
        except OSError as exc:
            raise IOFailure(f"Failed to create phase {phase_id}: {exc}") from exc

        logger.info(f"Created phase {phase_id}")
        log_migration_event("phase_created", phase_id)
        return self.get_phase(phase_id)

    def get_phase(self, phase_id: str) -> Phase:
        validate_identifier(phase_id, "phase")
        directory = self.layout.phase_dir(phase_id)
        if not directory.is_dir():
            raise NotFound(f"Phase {phase_id} not found")

        registry = self._registry(phase_id)
        tasks = [task for task in self.store.query.tasks_in_directory(directory) if not task.is_overview]
        order = registry.get("order")
        return Phase(
            phase_id=phase_id,
            name=str(registry.get("name") or display_name(phase_id)),
            description=str(registry.get("description") or ""),
            status=derive_phase_status(task.status for task in tasks),
            order=int(order) if order is not None else None,
            tasks=sorted(task.task_id for task in tasks),
        )

    def list_phases(self) -> List[Phase]:
        phases = [self.get_phase(phase_id) for phase_id in self.layout.phase_names()]
        return sorted(phases, key=lambda phase: (phase.order is None, phase.order or 0, phase.phase_id))

    def update_phase(
        self,
        phase_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        order: Optional[int] = None,
        new_id: Optional[str] = None,
    ) -> Phase:
        """Update registry fields; a ``new_id`` renames the phase directory first."""
        self.get_phase(phase_id)
        if new_id and new_id != phase_id:
            self.store.migrator.rename_phase(phase_id, new_id)
            phase_id = new_id

        changes: Dict[str, Any] = {}
        if name is not None:
            changes["name"] = name
        if description is not None:
            changes["description"] = description
        if order is not None:
            changes["order"] = int(order)
        if changes:
            registry = self._registry(phase_id)
            registry.setdefault("id", phase_id)
            registry.setdefault("name", display_name(phase_id))
            registry.update(changes)
            try:
                codec.write_mapping(self.layout.phase_registry_path(phase_id), registry)
            except OSError as exc:
                raise IOFailure(f"Failed to update phase {phase_id}: {exc}") from exc
            log_migration_event("phase_updated", phase_id, fields=sorted(changes))
        return self.get_phase(phase_id)

    def rename_phase(self, old_id: str, new_id: str) -> Phase:
        self.store.migrator.rename_phase(old_id, new_id)
        return self.get_phase(new_id)

    def delete_phase(self, phase_id: str, force: bool = False) -> List[str]:
        return self.store.migrator.delete_phase(phase_id, force=force)

    def _registry(self, phase_id: str) -> Dict[str, Any]:
        path = self.layout.phase_registry_path(phase_id)
        if not path.is_file():
            return {}
        return codec.read_mapping(path)
