"""Engine configuration.

A single ``EngineConfig`` value is built at process start and passed into
every component. There is no module-level configuration state.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Optional

from .errors import InvalidDocument

logger = logging.getLogger("taskweave.config")

TASKS_DIR_NAME = ".tasks"
CONFIG_DIR_NAME = ".config"
CONFIG_FILE_NAME = "project.toml"

ID_FORMATS = ("concise", "timestamp")

DEFAULT_STOP_WORDS: FrozenSet[str] = frozenset(
    """
    a an and are as at be been by for from had has have he her him his i if in
    into is it its just me my of on or our out over she so some than that the
    their them then there these they this those through to too under up very
    was we were what when where which who will with you your
    """.split()
)


@dataclass(frozen=True)
class EngineConfig:
    """Read-only settings consumed by the store and migrator."""

    tasks_root: Path
    id_format: str = "concise"
    stop_words: FrozenSet[str] = field(default=DEFAULT_STOP_WORDS)
    max_context_length: int = 2
    use_file_lock: bool = True

    TASKS_ROOT_ENV = "TASKWEAVE_TASKS_ROOT"
    ID_FORMAT_ENV = "TASKWEAVE_ID_FORMAT"

    def __post_init__(self) -> None:
        if self.id_format not in ID_FORMATS:
            raise ValueError(f"id_format must be one of {', '.join(ID_FORMATS)}, got {self.id_format!r}")
        if self.max_context_length < 0:
            raise ValueError("max_context_length must not be negative")

    @classmethod
    def for_project(cls, project_root: Path | str, **overrides: Any) -> "EngineConfig":
        """Configuration rooted at ``<project_root>/.tasks``."""
        tasks_root = Path(project_root).expanduser().resolve() / TASKS_DIR_NAME
        return cls(tasks_root=tasks_root, **overrides)

    @property
    def config_dir(self) -> Path:
        return self.tasks_root / CONFIG_DIR_NAME

    @property
    def lock_path(self) -> Path:
        return self.tasks_root / ".lock"

    def with_overrides(self, **changes: Any) -> "EngineConfig":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tasks_root": str(self.tasks_root),
            "id_format": self.id_format,
            "stop_words": sorted(self.stop_words),
            "max_context_length": self.max_context_length,
            "use_file_lock": self.use_file_lock,
        }


def load_config(project_root: Path | str, config_path: Optional[Path | str] = None) -> EngineConfig:
    """Build the configuration for ``project_root``.

    Values come from ``<tasks_root>/.config/project.toml`` when it exists
    (or from ``config_path``), then from ``TASKWEAVE_*`` environment
    variables.
    """
    config = EngineConfig.for_project(project_root)

    env_root = os.getenv(EngineConfig.TASKS_ROOT_ENV)
    if env_root:
        config = config.with_overrides(tasks_root=Path(env_root).expanduser().resolve())

    path = Path(config_path) if config_path else config.config_dir / CONFIG_FILE_NAME
    if path.exists():
        config = _apply_file(config, path)
    elif config_path:
        raise FileNotFoundError(f"Configuration file not found: {path}")

    env_format = os.getenv(EngineConfig.ID_FORMAT_ENV)
    if env_format:
        config = config.with_overrides(id_format=env_format.strip().lower())

    logger.debug(f"Loaded configuration for {config.tasks_root}")
    return config


def _apply_file(config: EngineConfig, path: Path) -> EngineConfig:
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise InvalidDocument(f"Malformed configuration file {path}: {exc}") from exc

    changes: Dict[str, Any] = {}
    if "tasks_root" in data:
        root = Path(str(data["tasks_root"])).expanduser()
        if not root.is_absolute():
            root = (path.parent / root).resolve()
        changes["tasks_root"] = root
    if "id_format" in data:
        changes["id_format"] = str(data["id_format"]).strip().lower()
    if "stop_words" in data:
        changes["stop_words"] = _word_set(data["stop_words"])
    if "max_context_length" in data:
        changes["max_context_length"] = int(data["max_context_length"])
    if "use_file_lock" in data:
        changes["use_file_lock"] = bool(data["use_file_lock"])
    return config.with_overrides(**changes)


def _word_set(words: Iterable[Any]) -> FrozenSet[str]:
    return frozenset(str(word).strip().lower() for word in words if str(word).strip())
