"""
Boundaries to the external collaborators the orchestrator drives.

Vendor protocol clients, the inventory service and the bare-metal
provisioning service live outside this package. The core only talks
to them through these narrow interfaces.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of applying desired configuration to a device."""

    success: bool
    diagnostic_log: str = ""


class ProvisioningStatus(str, Enum):
    """Task progression reported by the provisioning service."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_final(self) -> bool:
        return self in (ProvisioningStatus.COMPLETE, ProvisioningStatus.FAILED)


@dataclass(frozen=True)
class NodeRecord:
    """A node known to the provisioning service."""

    name: str
    serial: str
    attributes: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class DeviceBackend(Protocol):
    """Device configuration agent. Called only while the device holds its slot."""

    def apply(self, cert_name: str, config: Dict[str, Any]) -> ApplyResult:
        ...

    def inventory(self, cert_name: str) -> Dict[str, Any]:
        ...


@runtime_checkable
class InventoryService(Protocol):
    """Inventory/migration service that hands out replacement hardware."""

    def request_replacement(self, component_id: str, deployment_id: str) -> Optional[Dict[str, Any]]:
        """Return new deployment data containing the replacement component, or None."""
        ...


@runtime_checkable
class ProvisioningService(Protocol):
    """Bare-metal provisioning service."""

    def provision(self, serial: str) -> ProvisioningStatus:
        ...

    def find_by_serial(self, serial: str) -> Optional[NodeRecord]:
        ...

    def task_status(self, node_name: str, policy_name: str) -> ProvisioningStatus:
        ...


@runtime_checkable
class SwitchConfigurator(Protocol):
    """Reconfigures switch ports/network dependencies for a device."""

    def configure(self, deployment_data: Dict[str, Any], cert_name: Optional[str] = None) -> Optional[Iterable[str]]:
        """Configure switches, optionally only for one device.

        Returns the certificate names whose switch connectivity could not
        be determined, if any.
        """
        ...
