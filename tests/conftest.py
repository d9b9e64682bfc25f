"""Shared pytest fixtures for deployer tests."""
import os
import sys
import threading
import time
from typing import Any, Dict, Iterable, List, Optional

import pytest

# Add project root to path
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _PROJECT_ROOT)

RULES_DIR = os.path.join(_PROJECT_ROOT, "rules")


# =============================================================================
# Settings
# =============================================================================

@pytest.fixture(autouse=True)
def _reset_settings_singleton():
    """Reset the settings singleton between tests for isolation."""
    from config.settings import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path):
    """Settings with artifacts under tmp_path and the repo's rule repository."""
    from config.settings import DeploymentSettings, OrchestratorSettings

    return OrchestratorSettings(
        deployment=DeploymentSettings(
            rule_repositories=RULES_DIR,
            deployments_dir=str(tmp_path / "deployments"),
        ),
    )


@pytest.fixture
def rules_dir():
    return RULES_DIR


# =============================================================================
# Device Fakes
# =============================================================================

class FakeBackend:
    """Device backend that records calls and fails configured certificates."""

    def __init__(self, fail: Iterable[str] = (), delay: float = 0.0):
        self.fail = set(fail)
        self.delay = delay
        self.applied: List[tuple] = []
        self.inventoried: List[str] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def apply(self, cert_name: str, config: Dict[str, Any]):
        from deployer.backends import ApplyResult

        with self._lock:
            self.applied.append((cert_name, config))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
        finally:
            with self._lock:
                self.active -= 1

        if cert_name in self.fail:
            return ApplyResult(False, f"apply failed on {cert_name}")
        return ApplyResult(True, "")

    def inventory(self, cert_name: str) -> Dict[str, Any]:
        with self._lock:
            self.inventoried.append(cert_name)
        return {"cert_name": cert_name, "model": "R740"}

    def applied_certs(self) -> List[str]:
        with self._lock:
            return [cert for cert, _ in self.applied]


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def tracker():
    """Tracker with fast polling so contention tests stay quick."""
    from deployer.device_state import ConcurrencyCounter, DeviceStateTracker

    return DeviceStateTracker(
        large_process_concurrency=5,
        large_process_max_runtime=5,
        counter=ConcurrencyCounter(poll_interval=0.01),
        lock_poll_interval=0.01,
    )


@pytest.fixture
def cache():
    from deployer.cache import NamedCache

    return NamedCache(start_gc=False)


@pytest.fixture
def store():
    from deployer.store import DeploymentStore

    return DeploymentStore("dep-1")


# =============================================================================
# Service Templates
# =============================================================================

def _component(
    component_id: str,
    component_type: str,
    cert_name: Optional[str] = None,
    related: Iterable[str] = (),
    resources: Optional[List[dict]] = None,
    **extra,
) -> Dict[str, Any]:
    data = {
        "id": component_id,
        "type": component_type,
        "name": extra.pop("name", component_id),
        "puppetCertName": cert_name if cert_name is not None else f"cert-{component_id}",
        "relatedComponents": {rid: rid for rid in related},
        "resources": resources or [],
    }
    data.update(extra)
    return data


def _service(components: List[dict], deployment_id: str = "dep-1", **extra) -> Dict[str, Any]:
    data = {
        "id": deployment_id,
        "deploymentName": extra.pop("deploymentName", f"deployment {deployment_id}"),
        "serviceTemplate": {"components": components},
    }
    data.update(extra)
    return data


@pytest.fixture
def make_component():
    """Factory for raw template components."""
    return _component


@pytest.fixture
def make_service():
    """Factory for raw service deployments."""
    return _service


@pytest.fixture
def migrating_server():
    """Raw SERVER component that opts into migration on failure."""
    def build(component_id: str, cert_name: str, related: Iterable[str] = ()):
        return _component(
            component_id,
            "SERVER",
            cert_name,
            related,
            resources=[{"id": "asm::idrac", "parameters": [{"id": "migrate_on_failure", "value": True}]}],
        )
    return build


@pytest.fixture
def timed_run():
    """Utility fixture to measure duration of test sections."""
    class Timer:
        def __init__(self):
            self.start_time = None
            self.end_time = None

        def start(self):
            self.start_time = time.perf_counter()

        def stop(self):
            self.end_time = time.perf_counter()

        @property
        def duration(self):
            if self.start_time and self.end_time:
                return self.end_time - self.start_time
            return None

    return Timer()
