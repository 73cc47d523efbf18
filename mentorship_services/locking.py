"""
ProjectLockRegistry -- one exclusive section per project.

Every coordinator action holds its project's lock for the whole
load -> compute -> save cycle, so actions on one project are serialized
while actions on different projects run in parallel.  There is no global
lock; the registry's own mutex only guards the table of per-project locks.

Entries are reference-counted: a project's lock exists only while some
thread holds it or waits for it, so the table stays as small as the set of
projects currently being worked on.

Cross-process writers are still caught by the repository's version check.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator
from uuid import UUID


@dataclass
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    # Threads holding or waiting for ``lock``
    users: int = 0


class ProjectLockRegistry:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[UUID, _LockEntry] = {}

    @contextmanager
    def hold(self, project_id: UUID) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(project_id)
            if entry is None:
                entry = _LockEntry()
                self._entries[project_id] = entry
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[project_id]

    def users(self, project_id: UUID) -> int:
        with self._guard:
            entry = self._entries.get(project_id)
            return entry.users if entry is not None else 0

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
