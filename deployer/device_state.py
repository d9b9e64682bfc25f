"""
Per-device discovery state and admission control.

Guarantees at most one discovery/apply operation in flight per device
certificate, and bounds how many heavy external operations run at once
across all devices.

Usage:
    from deployer.device_state import DeviceState, DeviceStateTracker

    tracker = DeviceStateTracker(large_process_concurrency=5)

    tracker.init_discovery("rack-server-abc123")   # raises SyncException if busy

    def inventory():
        tracker.set_state("rack-server-abc123", DeviceState.IN_PROGRESS)
        facts = backend.inventory("rack-server-abc123")
        tracker.set_state("rack-server-abc123", DeviceState.SUCCESS)
        return facts

    facts = tracker.wait_until_available("rack-server-abc123", inventory)
"""

import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, Hashable, List, Optional, Union

from deployer.errors import CounterTimeoutError, InvalidDeviceStateError, SyncException
from deployer.timestamps import monotonic

logger = logging.getLogger(__name__)

HEAVY_OPERATIONS = "large_child_procs"


class DeviceState(str, Enum):
    """Discovery/configuration status of a single device."""

    UNKNOWN = "unknown"
    REQUESTED = "requested"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"


SETTABLE_STATES = frozenset({
    DeviceState.REQUESTED,
    DeviceState.IN_PROGRESS,
    DeviceState.SUCCESS,
    DeviceState.FAILED,
})

BUSY_STATES = frozenset({DeviceState.REQUESTED, DeviceState.IN_PROGRESS})


class ConcurrencyCounter:
    """
    Named counters with a blocking "run when under threshold" primitive.

    Used to bound how many heavy child operations run at the same time.
    """

    def __init__(self, poll_interval: float = 0.1):
        self._counters: Dict[Hashable, int] = {}
        self._cond = threading.Condition()
        self.poll_interval = poll_interval

    def increment(self, name: Hashable = "global") -> int:
        with self._cond:
            self._counters[name] = self._counters.get(name, 0) + 1
            return self._counters[name]

    def decrement(self, name: Hashable = "global") -> int:
        """Decrement a counter, never going below zero."""
        with self._cond:
            value = self._counters.get(name, 0)
            if value > 0:
                value -= 1
            self._counters[name] = value
            self._cond.notify_all()
            return value

    def get(self, name: Hashable = "global") -> int:
        with self._cond:
            return self._counters.get(name, 0)

    def increment_if_less_than(self, maximum: int, name: Hashable = "global") -> Union[int, bool]:
        """
        Increment only when the counter is below maximum.

        Returns:
            The new value, or False when the counter is at or above maximum
        """
        with self._cond:
            value = self._counters.get(name, 0)
            if value < maximum:
                self._counters[name] = value + 1
                return value + 1
            return False

    def wait_on_threshold(
        self,
        maximum: int,
        timeout: float,
        fn: Callable[[], Any],
        name: Hashable = "global",
    ) -> Any:
        """
        Block until the counter is below maximum, then run fn holding a slot.

        The slot is released on every exit path of fn.

        Raises:
            CounterTimeoutError: when no slot frees up within timeout seconds
        """
        deadline = monotonic() + timeout
        waits = 0

        with self._cond:
            while self._counters.get(name, 0) >= maximum:
                remaining = deadline - monotonic()
                if remaining <= 0:
                    raise CounterTimeoutError(
                        f"Timed out waiting on counter {name} to be < {maximum} after "
                        f"{timeout} seconds but it is still {self._counters.get(name, 0)}"
                    )
                self._cond.wait(min(remaining, self.poll_interval))
                waits += 1
                if waits % 10 == 0:
                    logger.debug(
                        f"Still waiting on counter {name} to go below {maximum}, "
                        f"it's currently {self._counters.get(name, 0)}"
                    )
            self._counters[name] = self._counters.get(name, 0) + 1

        try:
            return fn()
        finally:
            self.decrement(name)


class DeviceStateTracker:
    """
    Owns discovery states and exclusive device slots.

    All state reads and writes go through one mutex. Pass one tracker
    instance through the pipeline instead of relying on module globals.
    """

    def __init__(
        self,
        large_process_concurrency: int = 5,
        large_process_max_runtime: float = 1800.0,
        counter: Optional[ConcurrencyCounter] = None,
        lock_poll_interval: float = 2.0,
    ):
        self.large_process_concurrency = large_process_concurrency
        self.large_process_max_runtime = large_process_max_runtime
        self.counter = counter or ConcurrencyCounter()
        self.lock_poll_interval = lock_poll_interval

        self._states: Dict[str, DeviceState] = {}
        self._state_lock = threading.Lock()

        self._running: set = set()
        self._running_cond = threading.Condition()

    @classmethod
    def from_settings(cls, settings) -> "DeviceStateTracker":
        """Build a tracker from OrchestratorSettings."""
        conc = settings.concurrency
        return cls(
            large_process_concurrency=conc.large_process_concurrency,
            large_process_max_runtime=conc.large_process_max_runtime,
            counter=ConcurrencyCounter(poll_interval=conc.counter_poll_interval),
            lock_poll_interval=conc.device_lock_poll_interval,
        )

    # =========================================================================
    # Discovery States
    # =========================================================================

    def get_state(self, cert_name: str) -> DeviceState:
        with self._state_lock:
            return self._states.get(cert_name, DeviceState.UNKNOWN)

    def set_state(self, cert_name: str, state: Union[DeviceState, str]) -> DeviceState:
        """
        Record a device's discovery state.

        Raises:
            InvalidDeviceStateError: for anything but requested, in_progress, success or failed
        """
        try:
            state = DeviceState(state)
        except ValueError:
            state = None

        if state not in SETTABLE_STATES:
            raise InvalidDeviceStateError(f"Unsupported state {state} for node {cert_name}")

        with self._state_lock:
            self._states[cert_name] = state
        return state

    def init_discovery(self, cert_name: str, fail_if_in_progress: bool = True) -> DeviceState:
        """
        Admit a new discovery for a device.

        If a discovery is already requested or in progress, raise
        SyncException (or, with fail_if_in_progress=False, leave the
        state untouched). Otherwise move the device to requested.

        The check and the transition happen under one lock.

        Returns:
            The device state after the call
        """
        with self._state_lock:
            current = self._states.get(cert_name, DeviceState.UNKNOWN)

            if current in BUSY_STATES:
                msg = f"Discovery for device {cert_name} is already in progress - state is {current.value}"
                if fail_if_in_progress:
                    logger.info(msg)
                    raise SyncException(msg)
                logger.debug(msg)
                return current

            self._states[cert_name] = DeviceState.REQUESTED
            return DeviceState.REQUESTED

    def reset(self, cert_name: str) -> None:
        """Forget a device's discovery state (back to unknown)."""
        with self._state_lock:
            self._states.pop(cert_name, None)

    def states(self) -> Dict[str, DeviceState]:
        with self._state_lock:
            return dict(self._states)

    # =========================================================================
    # Exclusive Device Slots
    # =========================================================================

    def block_device(self, cert_name: str) -> bool:
        """Claim the exclusive slot for a device. False if already claimed."""
        with self._running_cond:
            if cert_name in self._running:
                return False
            self._running.add(cert_name)
            return True

    def unblock_device(self, cert_name: str) -> None:
        with self._running_cond:
            self._running.discard(cert_name)
            self._running_cond.notify_all()

    def running_devices(self) -> List[str]:
        with self._running_cond:
            return sorted(self._running)

    def running_count(self) -> int:
        with self._running_cond:
            return len(self._running)

    def wait_until_available(
        self,
        cert_name: str,
        fn: Callable[[], Any],
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Run fn holding the device's exclusive slot and a heavy-operation slot.

        Waits for any other operation on the same device to finish, then
        for the global heavy-operation counter to have headroom. The device
        slot is released on every exit path once obtained.

        Raises:
            SyncException: when the device slot is not obtained within timeout
            CounterTimeoutError: when no heavy-operation slot frees up in time

        Returns:
            Whatever fn returns
        """
        timeout = self.large_process_max_runtime if timeout is None else timeout
        deadline = monotonic() + timeout

        with self._running_cond:
            while cert_name in self._running:
                remaining = deadline - monotonic()
                if remaining <= 0:
                    raise SyncException(f"Timed out waiting for a lock for device cert {cert_name}")
                self._running_cond.wait(min(remaining, self.lock_poll_interval))
            self._running.add(cert_name)

        try:
            remaining = max(deadline - monotonic(), 0)
            return self.counter.wait_on_threshold(
                self.large_process_concurrency,
                remaining,
                fn,
                name=HEAVY_OPERATIONS,
            )
        finally:
            self.unblock_device(cert_name)
