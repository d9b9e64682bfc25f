"""
Per-type component processors.

A processor performs the external calls that bring one component to its
desired state. Every device call goes through apply_configuration so it
holds the device's admission slot.

Usage:
    processors = default_processors(backend, tracker, provisioning)
    processors[ComponentType.SERVER].process(component, ProcessingStage())
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed

from config.settings import get_settings
from deployer.backends import DeviceBackend, ProvisioningService, ProvisioningStatus
from deployer.device_management import apply_configuration
from deployer.device_state import DeviceStateTracker
from deployer.errors import DeviceOperationError, ProvisioningTimeoutError
from deployer.service.component import MIGRATION_RESOURCE, SERVER_RESOURCE, Component, ComponentType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessingStage:
    """
    Which pipeline stage a component is processed in.

    Attributes:
        pre_process: Initial server configuration before the OS install
        storage_mapping: False when only volumes are created, without host mapping
    """

    pre_process: bool = False
    storage_mapping: bool = True


class ComponentProcessor:
    """Applies a component's full configuration to its device."""

    def __init__(self, backend: DeviceBackend, tracker: DeviceStateTracker):
        self.backend = backend
        self.tracker = tracker

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"

    def configuration(self, component: Component, stage: ProcessingStage) -> dict:
        return component.configuration()

    def process(self, component: Component, stage: ProcessingStage) -> None:
        apply_configuration(
            self.backend,
            self.tracker,
            component.cert_name,
            self.configuration(component, stage),
        )


class StorageProcessor(ComponentProcessor):
    """Creates volumes, mapping them to hosts unless the stage says otherwise."""

    def configuration(self, component: Component, stage: ProcessingStage) -> dict:
        config = component.configuration()
        for params in config.values():
            params["map_to_hosts"] = stage.storage_mapping
        return config


class ServerProcessor(ComponentProcessor):
    """
    Configures a server and, when it carries an OS image, provisions it.

    Pre-processing only applies the out-of-band controller settings. The
    main stage applies everything and then waits on the provisioning
    service until the install task reaches a final state.
    """

    def __init__(
        self,
        backend: DeviceBackend,
        tracker: DeviceStateTracker,
        provisioning: Optional[ProvisioningService] = None,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(backend, tracker)
        settings = get_settings().deployment
        self.provisioning = provisioning
        self.timeout = settings.provisioning_timeout if timeout is None else timeout
        self.poll_interval = settings.provisioning_poll_interval if poll_interval is None else poll_interval
        self.sleep = sleep

    def configuration(self, component: Component, stage: ProcessingStage) -> dict:
        config = component.configuration()
        if stage.pre_process:
            return {k: v for k, v in config.items() if k == MIGRATION_RESOURCE}
        return config

    def process(self, component: Component, stage: ProcessingStage) -> None:
        super().process(component, stage)

        if stage.pre_process or self.provisioning is None:
            return

        server = component.resource_by_id(SERVER_RESOURCE)
        if server is None or not server["os_image"]:
            return

        serial = server["serial_number"] or component.cert_name
        policy = server["policy_name"] or f"policy-{component.id}"
        self.provision(serial, policy)

    def provision(self, serial: str, policy: str) -> ProvisioningStatus:
        """
        Start provisioning and wait for the task to finish.

        Raises:
            DeviceOperationError: when the node is unknown or the task fails
            ProvisioningTimeoutError: when the task is not final in time
        """
        self.provisioning.provision(serial)

        node = self.provisioning.find_by_serial(serial)
        if node is None:
            raise DeviceOperationError(f"Provisioning service has no node for serial {serial}")

        retryer = Retrying(
            stop=stop_after_delay(self.timeout),
            wait=wait_fixed(self.poll_interval),
            retry=retry_if_result(lambda status: not ProvisioningStatus(status).is_final),
            sleep=self.sleep,
        )

        try:
            status = ProvisioningStatus(retryer(self.provisioning.task_status, node.name, policy))
        except RetryError as e:
            raise ProvisioningTimeoutError(
                f"Provisioning of {node.name} did not finish within {self.timeout}s"
            ) from e

        if status == ProvisioningStatus.FAILED:
            raise DeviceOperationError(f"Provisioning of {node.name} with {policy} failed")

        logger.info(f"Provisioning of {node.name} with {policy} completed")
        return status


def default_processors(
    backend: DeviceBackend,
    tracker: DeviceStateTracker,
    provisioning: Optional[ProvisioningService] = None,
) -> Dict[ComponentType, ComponentProcessor]:
    """Processor per component type the pipeline sequences."""
    generic = ComponentProcessor(backend, tracker)
    return {
        ComponentType.STORAGE: StorageProcessor(backend, tracker),
        ComponentType.SERVER: ServerProcessor(backend, tracker, provisioning),
        ComponentType.CLUSTER: generic,
        ComponentType.VIRTUALMACHINE: generic,
        ComponentType.TEST: generic,
    }
