"""Directory layout of the task tree.

``<tasks_root>/<phase>/<subdirectory?>/<id>.md``. Directories whose name
starts with a dot are system directories and never hold tasks.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .config import EngineConfig
from .errors import InvalidIdentifier
from .models import OVERVIEW_ID, GroupingKind

TASK_SUFFIX = ".md"
OVERVIEW_FILENAME = f"{OVERVIEW_ID}{TASK_SUFFIX}"
PHASE_REGISTRY_FILENAME = ".phase.yaml"
MIGRATION_MARKER_FILENAME = ".migration.yaml"

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def validate_identifier(value: Optional[str], what: str = "identifier") -> str:
    """Return ``value`` if it is safe to use as a single path component."""
    if not value or not IDENTIFIER_PATTERN.match(value) or ".." in value:
        raise InvalidIdentifier(
            f"Invalid {what} {value!r}: use letters, digits, '.', '_' or '-' and start with a letter or digit"
        )
    return value


def validate_task_identifier(value: Optional[str]) -> str:
    if value == OVERVIEW_ID:
        return value
    return validate_identifier(value, "task id")


def validate_subdirectory(value: Optional[str]) -> Optional[str]:
    """Subdirectories may be nested (``FEATURE_Auth/api``); each part must be safe."""
    if not value:
        return None
    parts = value.replace("\\", "/").strip("/").split("/")
    for part in parts:
        validate_identifier(part, "subdirectory")
    return "/".join(parts)


def validate_location(phase: Optional[str], subdirectory: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Validate a ``(phase, subdirectory)`` pair for writing a task.

    A subdirectory only exists inside a phase: ``<root>/<subdir>/<id>.md``
    would be read back with ``<subdir>`` as its phase.
    """
    phase = validate_identifier(phase, "phase") if phase else None
    subdirectory = validate_subdirectory(subdirectory)
    if subdirectory and not phase:
        raise InvalidIdentifier(f"Subdirectory {subdirectory!r} requires a phase")
    return phase, subdirectory


def is_system_directory(name: str) -> bool:
    return name.startswith(".")


def is_overview_file(path: Path | str) -> bool:
    return Path(path).name == OVERVIEW_FILENAME


def grouping_kind_of(directory_name: str) -> Optional[GroupingKind]:
    for kind in GroupingKind:
        if directory_name.startswith(kind.prefix):
            return kind
    return None


def to_safe_directory_name(name: str, kind: Optional[GroupingKind] = None) -> str:
    """Turn a display name into a directory name, e.g. ``"User Auth"`` -> ``FEATURE_User_Auth``."""
    if kind is not None and name.startswith(kind.prefix):
        name = name[len(kind.prefix):]
    safe = re.sub(r"[^A-Za-z0-9_-]", "_", name.strip())
    safe = re.sub(r"_{2,}", "_", safe).strip("_")
    return kind.directory_name(safe) if kind is not None else safe


def display_name(directory_name: str) -> str:
    """``FEATURE_user_auth`` -> ``User Auth``."""
    kind = grouping_kind_of(directory_name)
    name = kind.strip_prefix(directory_name) if kind else directory_name
    return " ".join(word.capitalize() for word in name.replace("_", " ").split())


class TaskLayout:
    """Resolve paths in the task tree for a given configuration."""

    def __init__(self, config: EngineConfig):
        self.config = config

    @property
    def tasks_root(self) -> Path:
        return self.config.tasks_root

    def phase_dir(self, phase: str) -> Path:
        return self.tasks_root / phase

    def directory_for(self, phase: Optional[str] = None, subdirectory: Optional[str] = None) -> Path:
        path = self.tasks_root
        if phase:
            path = path / phase
        if subdirectory:
            path = path / subdirectory
        return path

    def task_path(self, task_id: str, phase: Optional[str] = None, subdirectory: Optional[str] = None) -> Path:
        return self.directory_for(phase, subdirectory) / f"{task_id}{TASK_SUFFIX}"

    def overview_path(self, phase: str, subdirectory: Optional[str] = None) -> Path:
        return self.directory_for(phase, subdirectory) / OVERVIEW_FILENAME

    def phase_registry_path(self, phase: str) -> Path:
        return self.phase_dir(phase) / PHASE_REGISTRY_FILENAME

    def parse_task_path(self, path: Path) -> Tuple[Optional[str], Optional[str]]:
        """Return ``(phase, subdirectory)`` implied by a file's position in the tree."""
        try:
            relative = Path(path).resolve().relative_to(self.tasks_root.resolve())
        except ValueError:
            return None, None
        parts = relative.parts
        if len(parts) < 2 or is_system_directory(parts[0]):
            return None, None
        if len(parts) == 2:
            return parts[0], None
        return parts[0], "/".join(parts[1:-1])

    def iter_task_files(self, directory: Optional[Path] = None) -> Iterator[Path]:
        """Yield every task document under ``directory``, skipping system directories."""
        base = directory or self.tasks_root
        if not base.is_dir():
            return
        for entry in sorted(base.iterdir()):
            if entry.is_dir():
                if not is_system_directory(entry.name):
                    yield from self.iter_task_files(entry)
            elif entry.is_file() and entry.suffix == TASK_SUFFIX and not is_system_directory(entry.name):
                yield entry

    def phase_names(self) -> List[str]:
        if not self.tasks_root.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.tasks_root.iterdir()
            if entry.is_dir() and not is_system_directory(entry.name)
        )

    def grouping_dirs(self, phase: str, kind: Optional[GroupingKind] = None) -> List[Path]:
        phase_dir = self.phase_dir(phase)
        if not phase_dir.is_dir():
            return []
        result = []
        for entry in sorted(phase_dir.iterdir()):
            if not entry.is_dir():
                continue
            entry_kind = grouping_kind_of(entry.name)
            if entry_kind is None or (kind is not None and entry_kind is not kind):
                continue
            result.append(entry)
        return result
