"""Task id generation.

Concise ids look like ``FEAT-LOGINFORM-1019-7K``: a type prefix, up to a
few meaningful title words, the month and day, and two random characters.
The older ``TASK-20251019T143000`` timestamp form is still produced when
configured.
"""

from __future__ import annotations

import re
import secrets
from datetime import datetime
from typing import Iterable, Optional

from .config import DEFAULT_STOP_WORDS
from .normalizers import TaskType, normalize_type

# No 0/O or 1/I confusion.
SUFFIX_CHARS = "0123456789ABCDEFGHJKLMNPQRSTUVWXYZ"

TYPE_PREFIXES = {
    TaskType.FEATURE: "FEAT",
    TaskType.BUG: "BUG",
    TaskType.CHORE: "CHORE",
    TaskType.DOCUMENTATION: "DOC",
    TaskType.TEST: "TEST",
    TaskType.SPIKE: "SPIKE",
    TaskType.REFACTOR: "REFACT",
}

def extract_context(title: str, stop_words: Iterable[str] = DEFAULT_STOP_WORDS, max_words: int = 2) -> str:
    if not title or max_words <= 0:
        return ""
    stop = set(stop_words)
    words = re.sub(r"[^a-z0-9\s]", "", title.lower()).split()
    meaningful = [word for word in words if word not in stop]
    return "".join(meaningful[:max_words]).upper()


def type_prefix(task_type: object) -> str:
    if task_type is None or task_type == "":
        return "TASK"
    return TYPE_PREFIXES.get(normalize_type(task_type), "TASK")


def random_suffix(length: int = 2) -> str:
    return "".join(secrets.choice(SUFFIX_CHARS) for _ in range(length))


def generate_task_id(
    task_type: object = None,
    title: str = "",
    *,
    stop_words: Iterable[str] = DEFAULT_STOP_WORDS,
    max_context_length: int = 2,
    today: Optional[datetime] = None,
) -> str:
    today = today or datetime.now()
    parts = [type_prefix(task_type)]
    context = extract_context(title, stop_words, max_context_length)
    if context:
        parts.append(context)
    parts.append(today.strftime("%m%d"))
    parts.append(random_suffix())
    return "-".join(parts)


def generate_timestamp_id(now: Optional[datetime] = None) -> str:
    return f"TASK-{(now or datetime.now()).strftime('%Y%m%dT%H%M%S')}"
