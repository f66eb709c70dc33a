from __future__ import annotations

import fcntl
import threading
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, Optional, Tuple, TypeVar

T = TypeVar("T")


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class TaskLocks:
    """In-process advisory locks keyed by task id.

    A relationship update touches the task and its neighbours; ``hold``
    takes every id's lock in sorted order so two updates sharing a neighbour
    cannot deadlock. Locks are re-entrant, so nested holds from the same
    thread are allowed. An id's lock is dropped once nobody holds or waits
    for it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def _acquire(self, task_id: str) -> None:
        with self._guard:
            entry = self._entries.get(task_id)
            if entry is None:
                entry = self._entries[task_id] = _Entry()
            entry.users += 1
        entry.lock.acquire()

    def _release(self, task_id: str) -> None:
        with self._guard:
            entry = self._entries[task_id]
            entry.lock.release()
            entry.users -= 1
            if entry.users == 0:
                del self._entries[task_id]

    @contextmanager
    def hold(self, *task_ids: Optional[str]) -> Iterator[None]:
        ids = sorted({task_id for task_id in task_ids if task_id})
        with ExitStack() as stack:
            for task_id in ids:
                self._acquire(task_id)
                stack.callback(self._release, task_id)
            yield

    @contextmanager
    def hold_resolved(
        self,
        task_ids: Iterable[Optional[str]],
        resolve: Callable[[], Tuple[T, Iterable[Optional[str]]]],
    ) -> Iterator[T]:
        """Hold ``task_ids`` plus every id that ``resolve`` reports.

        ``resolve`` runs with the locks held and returns a value together with
        the ids that value depends on. While some of those ids are not held
        yet, every lock is released and the larger set is taken again in
        sorted order before ``resolve`` runs once more.
        """
        wanted = {task_id for task_id in task_ids if task_id}
        while True:
            with self.hold(*wanted):
                value, needed = resolve()
                needed = {task_id for task_id in needed if task_id}
                if needed <= wanted:
                    yield value
                    return
            wanted |= needed


@contextmanager
def tree_lock(lock_path: Path, *, enabled: bool = True) -> Iterator[None]:
    """Hold an exclusive OS lock on the task tree for a directory migration.

    Blocks until any other process holding the lock releases it.
    """

    if not enabled:
        yield
        return

    lock_path.parent.mkdir(parents=True, exist_ok=True)
    handle = lock_path.open("a+", encoding="utf-8")
    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    finally:
        handle.close()
