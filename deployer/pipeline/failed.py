"""Components that failed during a deployment run."""

import threading
from typing import Iterator, List


class FailedComponents:
    """
    Concurrency-safe set of failed component ids.

    Shared by every worker of one deployment run. Iteration and
    snapshot() work on a copy so callers never hold the lock.
    """

    def __init__(self):
        self._ids: List[str] = []
        self._lock = threading.Lock()

    def add(self, component_id: str) -> None:
        with self._lock:
            if component_id not in self._ids:
                self._ids.append(component_id)

    def discard(self, component_id: str) -> None:
        """Forget a failure, used when a component is migrated to new hardware."""
        with self._lock:
            if component_id in self._ids:
                self._ids.remove(component_id)

    def __contains__(self, component_id: str) -> bool:
        with self._lock:
            return component_id in self._ids

    def snapshot(self) -> List[str]:
        with self._lock:
            return list(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)
