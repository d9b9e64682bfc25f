"""
Whole-deployment driver.

ServiceDeployment runs one service template end to end: rule driven
lanes, the server pre-processing stage and the main component sequence,
then settles the deployment status from the component statuses.

DeploymentRegistry makes sure a deployment id is only processed once at
a time.

Usage:
    registry = DeploymentRegistry()
    deployment = ServiceDeployment(raw["id"], backend, inventory=inventory)
    registry.submit(raw["id"], deployment.process, raw)
"""

import json
import logging
import threading
import traceback
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from config.logging_config import deployment_logger
from config.settings import OrchestratorSettings, get_settings
from deployer.backends import DeviceBackend, InventoryService, ProvisioningService, SwitchConfigurator
from deployer.cache import NamedCache
from deployer.device_management import DeviceDiscovery
from deployer.device_state import DeviceStateTracker
from deployer.errors import DeploymentInProgressError, ValidationError, is_user_error
from deployer.pipeline import (
    ComponentPipeline,
    ComponentProcessor,
    DeployVM,
    FailedComponents,
    SequenceFlags,
    component_sequence,
    default_processors,
)
from deployer.service.component import ComponentType
from deployer.service.processor import ServiceProcessor
from deployer.service.service import Service
from deployer.store import ComponentStatus, DeploymentStatus, DeploymentStore

logger = logging.getLogger(__name__)


class ServiceDeployment:
    """
    One run of a service template.

    Owns the run's status store, failed-component set and diagnostic
    artifacts. The tracker and cache can be shared between deployments.
    """

    def __init__(
        self,
        deployment_id: str,
        backend: DeviceBackend,
        tracker: Optional[DeviceStateTracker] = None,
        cache: Optional[NamedCache] = None,
        inventory: Optional[InventoryService] = None,
        provisioning: Optional[ProvisioningService] = None,
        switch_configurator: Optional[SwitchConfigurator] = None,
        processors: Optional[Mapping[ComponentType, ComponentProcessor]] = None,
        store: Optional[DeploymentStore] = None,
        rule_repositories: Optional[str] = None,
        settings: Optional[OrchestratorSettings] = None,
        debug: Optional[bool] = None,
    ):
        self.settings = settings or get_settings()
        deploy_settings = self.settings.deployment

        self.id = deployment_id
        self.logger = deployment_logger(deployment_id)
        self.debug = deploy_settings.debug_service_deployments if debug is None else debug
        self.rule_repositories = rule_repositories or deploy_settings.rule_repositories
        self.deployment_dir = Path(deploy_settings.deployments_dir) / str(deployment_id)

        self.backend = backend
        self.tracker = tracker or DeviceStateTracker.from_settings(self.settings)
        self.cache = cache or NamedCache.from_settings(self.settings)
        self.discovery = DeviceDiscovery(backend, self.tracker, self.cache)
        self.inventory = inventory
        self.provisioning = provisioning
        self.switch_configurator = switch_configurator
        self.processors = processors

        state_file = Path(deploy_settings.state_file) if deploy_settings.state_file else None
        self.store = store or DeploymentStore(deployment_id, state_file=state_file)
        self.failed = FailedComponents()
        self.service: Optional[Service] = None

    def __repr__(self) -> str:
        return f"<ServiceDeployment {self.id}>"

    # =========================================================================
    # Artifacts
    # =========================================================================

    def deployment_file(self, name: str) -> Path:
        self.deployment_dir.mkdir(parents=True, exist_ok=True)
        return self.deployment_dir / name

    @staticmethod
    def iterate_file(path: Path) -> Path:
        """First of path, path.1, path.2, ... that does not exist yet."""
        candidate = path
        n = 0
        while candidate.exists():
            n += 1
            candidate = path.with_name(f"{path.name}.{n}")
        return candidate

    def write_deployment_json(self, data: Dict[str, Any]) -> Path:
        json_file = self.iterate_file(self.deployment_file("deployment.json"))
        json_file.write_text(json.dumps(data, indent=2, default=str))
        return json_file

    def write_exception(self, base_name: str, error: BaseException) -> Path:
        """Write the exception and its traceback to <base_name>.log."""
        backtrace = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        path = self.deployment_file(f"{base_name}.log")
        path.write_text(f"{error!r}\n\n{backtrace}")
        return path

    # =========================================================================
    # Processing
    # =========================================================================

    def log(self, level: str, message: str, component_id: Optional[str] = None) -> None:
        getattr(self.logger, level)(message, extra={"deployment_id": self.id, "component_id": component_id})
        self.store.log(level, message, component_id)

    def process_service_with_rules(self, raw_service: Dict[str, Any]) -> None:
        ServiceProcessor(raw_service, self.rule_repositories, deployment=self).process_service()

    def rule_teardown(self, new_data: Dict[str, Any]) -> None:
        """Record the migrated deployment data and run the migration rules on it."""
        self.write_deployment_json(new_data)
        self.process_service_with_rules(new_data)

    def create_pipeline(self, service: Service) -> ComponentPipeline:
        processors = self.processors or default_processors(self.backend, self.tracker, self.provisioning)
        return ComponentPipeline(
            service,
            self.store,
            processors,
            failed=self.failed,
            tracker=self.tracker,
            inventory=self.inventory,
            max_workers=self.settings.concurrency.max_component_workers,
            max_attempts=self.settings.deployment.max_migration_attempts,
            artifact_writer=self.write_exception,
            rule_teardown=self.rule_teardown,
            switch_configurator=self.switch_configurator,
            pipeline_logger=self.logger,
        )

    def configure_switches(self, raw_service: Dict[str, Any], pipeline: ComponentPipeline) -> None:
        """Configure switches up front; servers without connectivity fail in their worker."""
        if self.switch_configurator is None:
            return
        pipeline.mark_unconnected(self.switch_configurator.configure(raw_service))

    def start_message(self, service: Service) -> str:
        if service.teardown and service.individual_teardown:
            return f"Service scale-down action started for {service.deployment_name}"
        if service.teardown:
            return f"Deleting deployment {service.deployment_name}"
        return f"Starting deployment {service.deployment_name}"

    def process(self, raw_service: Dict[str, Any]) -> DeploymentStatus:
        """
        Process a service deployment.

        Raises:
            Any error that ended the run, after writing exception.log and
            setting the deployment status to error

        Returns:
            The final deployment status
        """
        self.logger.info("Status: Started", extra={"deployment_id": self.id})

        try:
            service = Service(raw_service, deployment=self)
            self.service = service
            self.store.set_status(DeploymentStatus.IN_PROGRESS)
            for component in service.components:
                self.store.add_component(component.id, component.name, component.type.value)

            self.log("info", self.start_message(service))
            self.write_deployment_json(raw_service)

            duplicates = service.duplicate_cert_names()
            if duplicates:
                raise ValidationError(f"Duplicate host names found in deployment {duplicates}")

            if not service.teardown:
                self.deploy(service, raw_service)
            else:
                try:
                    self.process_service_with_rules(raw_service)
                except Exception as e:
                    self.logger.warning(
                        f"Encountered an error while processing scaledown/teardown (this will be disregarded) - "
                        f"{type(e).__name__}: {e}"
                    )

        except Exception as e:
            if is_user_error(e):
                self.logger.error(str(e))
                self.store.log("error", str(e))
            self.write_exception("exception", e)
            self.logger.info("Status: Error", extra={"deployment_id": self.id})
            self.store.set_status(DeploymentStatus.ERROR)
            raise

        return self.finalize_deployment(service)

    def deploy(self, service: Service, raw_service: Dict[str, Any]) -> None:
        if service.migration:
            self.logger.debug("Processing the service deployment migration")
            self.process_service_with_rules(raw_service)

        pipeline = self.create_pipeline(service)
        self.configure_switches(raw_service, pipeline)

        if not service.migration:
            self.process_service_with_rules(raw_service)

        if not service.boot_from_san:
            flags = SequenceFlags.from_service(service, pre_process_server=True)
            pipeline.run(component_sequence(flags), allow_migration=True, pre_process_server=True)

        flags = SequenceFlags.from_service(service, deploy_vm=DeployVM.YES)
        pipeline.run(component_sequence(flags), allow_migration=False)

        if service.iscsi_storage and not service.ha_cluster_storage:
            clusters = [
                c for c in service.components_by_type(ComponentType.CLUSTER)
                if not c.brownfield and c.id not in self.failed
            ]
            if clusters:
                flags = SequenceFlags.from_service(service, deploy_vm=DeployVM.ONLY)
                pipeline.run(component_sequence(flags), allow_migration=False)

    def finalize_deployment(self, service: Service) -> DeploymentStatus:
        """Remove torn down components and settle the deployment status."""
        for component in service.components:
            if component.teardown:
                self.store.remove_component(component.id)

        statuses = [
            self.store.get_component_status(c.id)
            for c in service.components
            if not c.teardown
        ]

        if all(status == ComponentStatus.COMPLETE for status in statuses):
            self.log("info", f"Deployment {service.deployment_name} completed")
            self.store.set_status(DeploymentStatus.COMPLETE)
            self.logger.info("Status: Completed", extra={"deployment_id": self.id})
        else:
            self.log("error", f"{service.deployment_name} deployment failed")
            self.store.set_status(DeploymentStatus.ERROR)
            self.logger.info("Status: Error", extra={"deployment_id": self.id})

        return self.store.status


class DeploymentRegistry:
    """
    Runs deployments in the background, one run per deployment id.

    Usage:
        registry = DeploymentRegistry()
        thread = registry.submit("dep-1", deployment.process, raw_service)
        registry.active_deployments()
        => ["dep-1"]
    """

    def __init__(self):
        self._active: Dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    def submit(self, deployment_id: str, fn: Callable[..., Any], *args, **kwargs) -> threading.Thread:
        """
        Start fn on a background thread for deployment_id.

        Raises:
            DeploymentInProgressError: when deployment_id is already running
        """
        with self._lock:
            if deployment_id in self._active:
                raise DeploymentInProgressError(f"Deployment {deployment_id} is already in progress")

            thread = threading.Thread(
                target=self._run,
                args=(deployment_id, fn, args, kwargs),
                name=f"deployment-{deployment_id}",
                daemon=True,
            )
            self._active[deployment_id] = thread

        try:
            thread.start()
        except Exception:
            self._release(deployment_id)
            raise

        return thread

    def _run(self, deployment_id: str, fn: Callable[..., Any], args: tuple, kwargs: dict) -> None:
        try:
            fn(*args, **kwargs)
        except Exception as e:
            logger.error(f"Deployment {deployment_id} failed: {type(e).__name__}: {e}", extra={"deployment_id": deployment_id})
        finally:
            self._release(deployment_id)

    def _release(self, deployment_id: str) -> None:
        with self._lock:
            self._active.pop(deployment_id, None)

    def is_active(self, deployment_id: str) -> bool:
        with self._lock:
            return deployment_id in self._active

    def active_deployments(self) -> List[str]:
        with self._lock:
            return sorted(self._active)
