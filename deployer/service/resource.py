"""
Rule-facing view of a component bound to its deployment.

Rules never talk to the status store or device backends directly; they
go through a ComponentResource:

    resource = ComponentResource(component, deployment)
    resource.mark_in_progress()
    resource.process()                 # apply desired configuration
    resource.teardown_device()         # apply ensure=absent and forget facts
"""

import logging
from typing import Optional

from deployer.device_management import apply_configuration
from deployer.service.component import Component, ComponentType
from deployer.store import ComponentStatus

logger = logging.getLogger(__name__)


class ComponentResource:
    """A component plus the deployment services it is processed with."""

    def __init__(self, component: Component, deployment=None):
        self.component = component
        self.deployment = deployment

    def __repr__(self) -> str:
        return f"<ComponentResource {self.type.value} {self.cert_name}>"

    @property
    def id(self) -> str:
        return self.component.id

    @property
    def name(self) -> str:
        return self.component.name

    @property
    def type(self) -> ComponentType:
        return self.component.type

    @property
    def cert_name(self) -> Optional[str]:
        return self.component.cert_name

    @property
    def teardown(self) -> bool:
        return self.component.teardown

    @property
    def store(self):
        """The deployment's status store, None when processed standalone."""
        return getattr(self.deployment, "store", None)

    # =========================================================================
    # Status
    # =========================================================================

    def _set_status(self, status: ComponentStatus) -> None:
        if self.store is not None:
            self.store.set_component_status(self.id, status)

    def mark_in_progress(self) -> None:
        self._set_status(ComponentStatus.IN_PROGRESS)

    def mark_complete(self) -> None:
        self._set_status(ComponentStatus.COMPLETE)

    def mark_error(self) -> None:
        self._set_status(ComponentStatus.ERROR)

    # =========================================================================
    # Device Operations
    # =========================================================================

    def process(self, ensure: str = "present"):
        """Apply the component's configuration through the device backend."""
        return apply_configuration(
            self.deployment.backend,
            self.deployment.tracker,
            self.cert_name,
            self.component.configuration(ensure),
        )

    @property
    def should_inventory(self) -> bool:
        return bool(
            self.cert_name
            and not self.teardown
            and getattr(self.deployment, "discovery", None) is not None
        )

    def update_inventory(self):
        return self.deployment.discovery.run(self.cert_name)

    def prepare_for_teardown(self) -> bool:
        """Brownfield components are referenced, never removed."""
        if self.component.brownfield:
            logger.info(f"Not tearing down brownfield component {self.name}")
            return False
        return bool(self.cert_name)

    def teardown_device(self) -> None:
        """Remove the component's configuration and forget what is known about the device."""
        self.process(ensure="absent")

        discovery = getattr(self.deployment, "discovery", None)
        if discovery is not None:
            discovery.forget(self.cert_name)
