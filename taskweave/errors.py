"""Error taxonomy for the taskweave engine.

Components raise these exceptions; only the engine facade converts them
into result envelopes. Relationship warnings are not exceptions: they are
collected alongside a successful primary write.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


class EngineError(Exception):
    """Base class for all engine failures."""

    code = "EngineError"

    def __init__(self, message: str, *, details: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.details = list(details or [])

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": list(self.details)}


class NotFound(EngineError):
    """A task, phase, feature or area does not exist."""

    code = "NotFound"


class AlreadyExists(EngineError):
    """An id or target path is already taken."""

    code = "AlreadyExists"


class InvalidIdentifier(EngineError):
    """An identifier is not safe to use as a path component."""

    code = "InvalidIdentifier"


class LocationConflict(EngineError):
    """A move or rename target is occupied, or a guarded delete was refused."""

    code = "LocationConflict"


class IOFailure(EngineError):
    """A filesystem operation failed."""

    code = "IOFailure"


class InvalidDocument(EngineError):
    """A task file could not be decoded."""

    code = "InvalidDocument"


class NoValidSequence(EngineError):
    """None of the selected subtasks carries a sequence token."""

    code = "NoValidSequence"


class CycleDetected(EngineError):
    """A parent or dependency edge would close a cycle."""

    code = "CycleDetected"


@dataclass(slots=True)
class RelationshipWarning:
    """Non-fatal record of an inverse-edge update that failed."""

    task_id: str
    neighbor_id: str
    field: str
    reason: str

    code = "RelationshipWarning"

    def __str__(self) -> str:
        return f"Could not update {self.field} on {self.neighbor_id} for {self.task_id}: {self.reason}"

    def to_dict(self) -> Dict[str, str]:
        return {
            "code": self.code,
            "task_id": self.task_id,
            "neighbor_id": self.neighbor_id,
            "field": self.field,
            "reason": self.reason,
        }
