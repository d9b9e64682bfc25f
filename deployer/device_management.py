"""
Device discovery runs.

Inventories a device through its backend while holding the device's
admission slot, and records the facts in the 'facts' NamedCache.

Usage:
    discovery = DeviceDiscovery(backend, tracker, cache)

    discovery.run("rack-server-abc123")          # raises SyncException if busy
    future = discovery.run_async("rack-server-abc123", executor)
    discovery.get_device("rack-server-abc123")

    apply_configuration(backend, tracker, "rack-server-abc123", component.configuration())
"""

import logging
from concurrent.futures import Executor, Future
from typing import Any, Dict, Optional

from deployer.backends import ApplyResult, DeviceBackend
from deployer.cache import DAY, NamedCache
from deployer.device_state import DeviceState, DeviceStateTracker
from deployer.errors import CacheError, DeviceOperationError, SyncException

logger = logging.getLogger(__name__)

FACTS_CACHE = "facts"


class DeviceDiscovery:
    """Runs device inventories under admission control."""

    def __init__(
        self,
        backend: DeviceBackend,
        tracker: DeviceStateTracker,
        cache: NamedCache,
        facts_ttl: float = DAY,
    ):
        self.backend = backend
        self.tracker = tracker
        self.cache = cache
        self.cache.setup(FACTS_CACHE, facts_ttl)

    def run(self, cert_name: str, fail_if_in_progress: bool = True) -> Dict[str, Any]:
        """
        Admit and run a discovery synchronously.

        Raises:
            SyncException: when a discovery for the device is already in flight

        Returns:
            The facts gathered
        """
        self.tracker.init_discovery(cert_name, fail_if_in_progress)
        return self._run_sync(cert_name)

    def run_async(
        self,
        cert_name: str,
        executor: Executor,
        fail_if_in_progress: bool = True,
    ) -> Future:
        """
        Admit a discovery in the calling thread and run it on executor.

        Admission happens before submission so a busy device is reported
        to the caller rather than to the worker.
        """
        self.tracker.init_discovery(cert_name, fail_if_in_progress)
        return executor.submit(self._run_sync, cert_name)

    def _run_sync(self, cert_name: str) -> Dict[str, Any]:
        def inventory():
            self.tracker.set_state(cert_name, DeviceState.IN_PROGRESS)
            logger.info(f"Inventory for node {cert_name} started", extra={"cert_name": cert_name})
            facts = self.backend.inventory(cert_name)
            self.cache.write(FACTS_CACHE, cert_name, facts)
            self.tracker.set_state(cert_name, DeviceState.SUCCESS)
            logger.info(f"Inventory for node {cert_name} succeeded", extra={"cert_name": cert_name})
            return facts

        try:
            return self.tracker.wait_until_available(cert_name, inventory)
        except SyncException as e:
            logger.info(str(e))
            raise
        except Exception as e:
            logger.info(f"Inventory for node {cert_name} caught exception: {e}")
            self.tracker.set_state(cert_name, DeviceState.FAILED)
            raise

    def cached_facts(self, cert_name: str) -> Optional[Dict[str, Any]]:
        try:
            return self.cache.read(FACTS_CACHE, cert_name)
        except CacheError:
            return None

    def get_device(self, cert_name: str) -> Dict[str, Any]:
        """
        Summarize what is known about a device.

        A device with cached facts but no recorded discovery reports success.
        """
        facts = self.cached_facts(cert_name) or {}
        status = self.tracker.get_state(cert_name)

        if facts and status == DeviceState.UNKNOWN:
            status = DeviceState.SUCCESS

        return {
            "cert_name": cert_name,
            "discovery_status": status.value,
            "facts": facts,
        }

    def forget(self, cert_name: str) -> None:
        """Drop cached facts and discovery state for a retired device."""
        self.cache.evict(FACTS_CACHE, cert_name)
        self.tracker.reset(cert_name)


def apply_configuration(
    backend: DeviceBackend,
    tracker: DeviceStateTracker,
    cert_name: str,
    config: Dict[str, Any],
    timeout: Optional[float] = None,
) -> ApplyResult:
    """
    Apply desired configuration to a device while it holds its admission slot.

    Raises:
        DeviceOperationError: when the backend reports a failed apply, the
            backend's diagnostic log is carried on the exception
        SyncException: when the device slot is not obtained in time
    """
    def apply():
        logger.info(f"Applying configuration to {cert_name}", extra={"cert_name": cert_name})
        result = backend.apply(cert_name, config)
        if not result.success:
            raise DeviceOperationError(f"Configuration of {cert_name} failed", result.diagnostic_log)
        return result

    return tracker.wait_until_available(cert_name, apply, timeout)
