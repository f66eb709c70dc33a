"""Encoding and decoding of task documents.

A task file is a front-matter block followed by a blank line and free-form
markdown. Two fences are read: ``---`` for YAML and ``+++`` for TOML. Every
write emits YAML, so the first update, move or migration relink of a
``+++`` file converts it to ``---`` front matter in place.
"""

from __future__ import annotations

import re
import tomllib
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Tuple

import yaml

from .errors import InvalidDocument
from .models import Task

_YAML_DOCUMENT = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)(.*)\Z", re.DOTALL)
_TOML_DOCUMENT = re.compile(r"\A\+\+\+[ \t]*\r?\n(.*?)\r?\n\+\+\+[ \t]*(?:\r?\n|\Z)(.*)\Z", re.DOTALL)
_HEADING = re.compile(r"^#\s+(.+)$", re.MULTILINE)

REQUIRED_KEYS = ("id", "title", "type", "status")


def split_document(text: str) -> Tuple[Dict[str, Any], str]:
    """Split a document into its metadata mapping and body text."""
    match = _YAML_DOCUMENT.match(text)
    if match:
        header, body = match.groups()
        try:
            metadata = yaml.safe_load(header) or {}
        except yaml.YAMLError as exc:
            raise InvalidDocument(f"Malformed YAML front matter: {exc}") from exc
    else:
        match = _TOML_DOCUMENT.match(text)
        if not match:
            raise InvalidDocument("Invalid task file format: missing or malformed front matter")
        header, body = match.groups()
        try:
            metadata = tomllib.loads(header)
        except tomllib.TOMLDecodeError as exc:
            raise InvalidDocument(f"Malformed TOML front matter: {exc}") from exc

    if not isinstance(metadata, dict):
        raise InvalidDocument("Front matter must be a mapping")
    return {key: _plain(value) for key, value in metadata.items()}, body.strip()


def decode(text: str) -> Task:
    """Parse document text into a Task."""
    metadata, body = split_document(text)
    if not metadata.get("id"):
        raise InvalidDocument("Missing required field: id")
    if not metadata.get("title"):
        heading = _HEADING.search(body)
        metadata["title"] = heading.group(1).strip() if heading else "Untitled Task"
    return Task.from_metadata(metadata, body)


def encode(task: Task) -> str:
    """Render a Task as document text."""
    metadata = task.to_metadata()
    missing = [key for key in REQUIRED_KEYS if key not in metadata]
    if missing:
        raise InvalidDocument(f"Task {task.task_id!r} is missing required fields: {', '.join(missing)}")
    header = yaml.safe_dump(metadata, sort_keys=False, allow_unicode=True, default_flow_style=False)
    body = task.content.strip()
    return f"---\n{header}---\n\n{body}\n"


def read_mapping(path: Path) -> Dict[str, Any]:
    """Load a small YAML side file (phase registry, migration marker)."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise InvalidDocument(f"Malformed YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidDocument(f"{path} must contain a mapping")
    return {key: _plain(value) for key, value in data.items()}


def write_mapping(path: Path, data: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=False, allow_unicode=True), encoding="utf-8")


def _plain(value: Any) -> Any:
    """Coerce YAML/TOML scalars the task model stores as strings."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, list):
        return [_plain(item) for item in value]
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    return value
