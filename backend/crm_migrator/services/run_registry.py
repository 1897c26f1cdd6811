from __future__ import annotations

import threading
from typing import Generic, TypeVar

T = TypeVar("T")


class RunRegistry(Generic[T]):
    """The single process-wide slot holding the active migration run.

    ``try_insert`` and ``remove`` are atomic: at most one run occupies the
    slot, and a run can only evict itself.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._run_id: str | None = None
        self._run: T | None = None

    def try_insert(self, run_id: str, run: T) -> bool:
        with self._lock:
            if self._run_id is not None:
                return False
            self._run_id = run_id
            self._run = run
            return True

    def remove(self, run_id: str) -> bool:
        with self._lock:
            if self._run_id != run_id:
                return False
            self._run_id = None
            self._run = None
            return True

    def active(self) -> tuple[str, T] | None:
        with self._lock:
            if self._run_id is None:
                return None
            return self._run_id, self._run

    def is_active(self) -> bool:
        with self._lock:
            return self._run_id is not None
