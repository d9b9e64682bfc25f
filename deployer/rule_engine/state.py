"""
Shared key/value bag rules run against.

The engine flips `mutable` off while a concurrent rule runs; mutators
raise StateNotMutableError in that window.
"""

import logging
import threading
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple

from deployer.errors import StateNotMutableError
from deployer.rule_engine.result import Result

logger = logging.getLogger(__name__)


class State:
    """Typed item store plus the running list of rule results."""

    def __init__(self, engine=None):
        self._engine = engine
        self.mutable = True
        self._had_failures = False

        self._items: Dict[Hashable, Any] = {}
        self._items_lock = threading.Lock()

        self._results: List[Result] = []
        self._results_lock = threading.Lock()

        self._acted_on_by: List[Any] = []
        self._acted_on_by_lock = threading.Lock()

    def __repr__(self) -> str:
        with self._items_lock:
            keys = sorted(str(k) for k in self._items)
        return f"<State items={keys} results={len(self._results)}>"

    # =========================================================================
    # Failures
    # =========================================================================

    @property
    def had_failures(self) -> bool:
        return self._had_failures

    def mark_failed(self) -> None:
        """Record that a rule failed while processing this state."""
        self._had_failures = True

    # =========================================================================
    # Items
    # =========================================================================

    def _check_mutable(self) -> None:
        if not self.mutable:
            raise StateNotMutableError("State is not mutable")

    def has(self, item: Hashable) -> bool:
        with self._items_lock:
            return item in self._items

    __contains__ = has

    def get(self, item: Hashable, default: Any = None) -> Any:
        with self._items_lock:
            return self._items.get(item, default)

    def __getitem__(self, item: Hashable) -> Any:
        return self.get(item)

    def add(self, item: Hashable, value: Any) -> Any:
        """
        Add a new item.

        Raises:
            StateNotMutableError: when the state is not mutable
            KeyError: when the item already exists
        """
        self._check_mutable()
        with self._items_lock:
            if item in self._items:
                raise KeyError(f"Already have an item called {item}")
            self._items[item] = value
        return value

    def __setitem__(self, item: Hashable, value: Any) -> None:
        self.add(item, value)

    def add_or_set(self, item: Hashable, value: Any) -> Any:
        self._check_mutable()
        with self._items_lock:
            self._items[item] = value
        return value

    def delete(self, item: Hashable) -> Any:
        self._check_mutable()
        with self._items_lock:
            return self._items.pop(item, None)

    # =========================================================================
    # Results and Actors
    # =========================================================================

    def store_result(self, result: Result) -> Result:
        with self._results_lock:
            self._results.append(result)
        return result

    @property
    def results(self) -> Tuple[Result, ...]:
        """Snapshot of the results recorded so far."""
        with self._results_lock:
            return tuple(self._results)

    def each_result(self, fn: Callable[[Result], Any]) -> None:
        for result in self.results:
            fn(result)

    def record_actor(self, actor: Any) -> None:
        with self._acted_on_by_lock:
            self._acted_on_by.append(actor)

    @property
    def acted_on_by(self) -> Tuple[Any, ...]:
        with self._acted_on_by_lock:
            return tuple(self._acted_on_by)

    def process_rules(self, engine=None) -> Tuple[Result, ...]:
        """Process this state with engine, or the engine that created it."""
        engine = engine or self._engine
        return engine.process_rules(self)

    def first_error(self) -> Optional[BaseException]:
        for result in self.results:
            if result.error is not None:
                return result.error
        return None
