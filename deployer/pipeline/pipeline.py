"""
Type-sequenced component processing.

Components are processed one type at a time in sequence order. All
components of a type run concurrently on a bounded pool and the whole
batch is joined before the next type starts.

Usage:
    pipeline = ComponentPipeline(service, store, default_processors(backend, tracker))

    flags = SequenceFlags.from_service(service)
    outcomes = pipeline.run(component_sequence(flags))

A failed component is always recorded. It only aborts the run when no
viable sibling of the same type remains for its parent, in which case
the first such error is raised once the batch has joined.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from config.settings import get_settings
from deployer.backends import InventoryService, SwitchConfigurator
from deployer.device_state import DeviceStateTracker
from deployer.errors import (
    InternalError,
    MigrateFailure,
    MigrationSwitchException,
    SwitchConnectivityError,
    describe_error,
)
from deployer.pipeline.failed import FailedComponents
from deployer.pipeline.outcome import ComponentOutcome, OutcomeKind, classify_error
from deployer.pipeline.processors import ComponentProcessor, ProcessingStage
from deployer.service.component import Component, ComponentType
from deployer.service.service import Service
from deployer.store import ComponentStatus, DeploymentStore

logger = logging.getLogger(__name__)

# A failure of the key type only aborts the batch once no sibling related
# to the same parent (value type) is left.
SIBLING_TOLERANT: Dict[ComponentType, ComponentType] = {
    ComponentType.SERVER: ComponentType.CLUSTER,
}

MIGRATABLE_TYPES = (ComponentType.SERVER,)


def _log_artifact(base_name: str, error: BaseException) -> None:
    logger.error(f"Exception during processing of {base_name}: {type(error).__name__}: {error}")


class ComponentPipeline:
    """Drives the components of one service through their processors."""

    def __init__(
        self,
        service: Service,
        store: DeploymentStore,
        processors: Mapping[ComponentType, ComponentProcessor],
        failed: Optional[FailedComponents] = None,
        tracker: Optional[DeviceStateTracker] = None,
        inventory: Optional[InventoryService] = None,
        max_workers: Optional[int] = None,
        max_attempts: Optional[int] = None,
        artifact_writer: Optional[Callable[[str, BaseException], None]] = None,
        rule_teardown: Optional[Callable[[dict], None]] = None,
        switch_configurator: Optional[SwitchConfigurator] = None,
        pipeline_logger: Optional[logging.Logger] = None,
    ):
        settings = get_settings()
        self.service = service
        self.store = store
        self.processors = dict(processors)
        self.failed = failed if failed is not None else FailedComponents()
        self.tracker = tracker
        self.inventory = inventory
        self.max_workers = max_workers or settings.concurrency.max_component_workers
        self.max_attempts = max_attempts or settings.deployment.max_migration_attempts
        self.artifact_writer = artifact_writer or _log_artifact
        self.rule_teardown = rule_teardown
        self.switch_configurator = switch_configurator
        self.logger = pipeline_logger or logger
        self.unconnected_servers: set = set()

    @property
    def deployment_id(self) -> str:
        return self.service.id

    def log(self, level: str, message: str, component_id: Optional[str] = None) -> None:
        getattr(self.logger, level)(message, extra={"deployment_id": self.deployment_id, "component_id": component_id})
        self.store.log(level, message, component_id)

    # =========================================================================
    # Type Batches
    # =========================================================================

    def run(
        self,
        sequence: Sequence[ComponentType],
        allow_migration: bool = True,
        pre_process_server: bool = False,
        storage_mapping: bool = True,
    ) -> List[ComponentOutcome]:
        """
        Process every component type in sequence.

        Args:
            sequence: Component types in processing order
            allow_migration: Retry failed servers on replacement hardware
            pre_process_server: Initial server configuration stage
            storage_mapping: False to create volumes without host mapping

        Raises:
            The first propagating component error of a batch

        Returns:
            Outcomes of every component processed, in batch order
        """
        stage = ProcessingStage(pre_process=pre_process_server, storage_mapping=storage_mapping)
        self.logger.debug(f"Component sequence that needs to be processed: {[t.value for t in sequence]}")

        outcomes: List[ComponentOutcome] = []
        for component_type in sequence:
            components = self.service.components_by_type(component_type)
            if not components:
                continue

            outcomes.extend(self.run_batch(component_type, components, stage, allow_migration))

        return outcomes

    def run_batch(
        self,
        component_type: ComponentType,
        components: Sequence[Component],
        stage: ProcessingStage,
        allow_migration: bool = True,
    ) -> List[ComponentOutcome]:
        type_name = component_type.value.lower()
        label = "Initial processing" if stage.pre_process else "Processing"
        self.log("info", f"{label} {type_name} components")

        current_failed = self.failed.snapshot()
        batch = [c for c in components if c.id not in current_failed]

        outcomes: List[ComponentOutcome] = []
        exceptions: List[BaseException] = []

        if batch:
            workers = min(self.max_workers, len(batch))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"component-{type_name}") as pool:
                futures = [
                    (component, pool.submit(self.process_component, component, component_type, stage, allow_migration))
                    for component in batch
                ]

                for component, future in futures:
                    outcome = future.result()
                    outcomes.append(outcome)

                    if outcome.failed:
                        if self.push_component_exception(component):
                            exceptions.append(outcome.error)
                        self.failed.add(component.id)

        if exceptions:
            self.log("error", f"Error while processing {type_name} components")
            raise exceptions[0]

        label = "Finished initial processing" if stage.pre_process else "Finished processing"
        self.log("info", f"{label} {type_name} components")
        return outcomes

    def _siblings(self, component: Component, parent: Component) -> List[Component]:
        related = parent.related_components(component.type, self.service)
        related += [
            c for c in self.service.components_by_type(component.type)
            if parent.id in c.related_component_ids and c not in related
        ]
        return related

    def push_component_exception(self, component: Component) -> bool:
        """
        Should this component's failure abort the batch.

        Always for types without sibling tolerance. Otherwise only when no
        other non-failed component of the same type is related to the
        component's parent.
        """
        parent_type = SIBLING_TOLERANT.get(component.type)
        if parent_type is None:
            return True

        parents = self.service.related_components(component, parent_type)
        if not parents:
            return True

        others = [
            c for c in self._siblings(component, parents[0])
            if c.id != component.id and c.id not in self.failed
        ]
        return not others

    # =========================================================================
    # Worker
    # =========================================================================

    def should_attempt_migrate(self, component: Component, attempts: int) -> bool:
        return (
            component.type in MIGRATABLE_TYPES
            and attempts < self.max_attempts
            and component.migrate_on_failure
            and self.inventory is not None
        )

    def process_component(
        self,
        component: Component,
        component_type: ComponentType,
        stage: ProcessingStage,
        allow_migration: bool = True,
    ) -> ComponentOutcome:
        """
        Bring one component to completion, retrying on replacement hardware.

        Never raises. The returned outcome carries the error.
        """
        extra = {"deployment_id": self.deployment_id, "component_id": component.id}
        attempts = 1
        migrate = False
        previous_error: Optional[BaseException] = None

        self.logger.info(f"Processing component {component.name}", extra=extra)

        while True:
            try:
                if not component.brownfield:
                    if migrate:
                        self.migrate(component, previous_error)
                        migrate = False

                    self._process(component, component_type, stage)

                for related in self.service.related_components(component, ComponentType.SERVICE):
                    self.store.set_component_status(related.id, ComponentStatus.COMPLETE)
                self.store.set_component_status(component.id, ComponentStatus.COMPLETE)

                kind = OutcomeKind.SKIPPED if component.brownfield else OutcomeKind.SUCCESS
                return self._outcome(component, kind, attempts=attempts)

            except Exception as e:
                kind = classify_error(e)
                self.logger.warning(
                    f"Component {component.name} failed on attempt {attempts}: {type(e).__name__}: {e}",
                    extra=dict(extra, cert_name=component.cert_name),
                )
                self._write_artifact(f"{component.cert_name}_exception", e)

                if kind == OutcomeKind.RECOVERABLE and allow_migration and self.should_attempt_migrate(component, attempts):
                    migrate = True
                    attempts += 1
                    previous_error = e
                    self.log("info", f"{component.name} failed, attempting migration to new hardware", component.id)
                    continue

                self.store.set_component_status(component.id, ComponentStatus.ERROR)
                self.log("error", describe_error(e, component.name), component.id)
                return self._outcome(component, kind, error=e, attempts=attempts)

    def _write_artifact(self, base_name: str, error: BaseException) -> None:
        try:
            self.artifact_writer(base_name, error)
        except Exception as e:
            self.logger.warning(f"Could not write {base_name} artifact: {type(e).__name__}: {e}")

    def _process(self, component: Component, component_type: ComponentType, stage: ProcessingStage) -> None:
        if not component.cert_name:
            raise InternalError(f"Component {component.name} has no certname")

        if component.cert_name in self.unconnected_servers:
            raise SwitchConnectivityError(f"Failed to determine switch connectivity for {component.cert_name}")

        processor = self.processors.get(component_type)
        if processor is None:
            raise InternalError(f"No processor for {component_type.value} components")

        self.store.set_component_status(component.id, ComponentStatus.IN_PROGRESS)
        processor.process(component, stage)

        if stage.pre_process:
            self.log("info", f"{component.name} initial configuration complete", component.id)
        else:
            self.log("info", f"{component.name} deployment complete", component.id)

    def _outcome(
        self,
        component: Component,
        kind: OutcomeKind,
        error: Optional[BaseException] = None,
        attempts: int = 1,
    ) -> ComponentOutcome:
        return ComponentOutcome(
            component_id=component.id,
            component_name=component.name,
            type=component.type,
            kind=kind,
            error=error,
            attempts=attempts,
            cert_name=component.cert_name,
        )

    # =========================================================================
    # Migration
    # =========================================================================

    def migrate(self, component: Component, previous_error: Optional[BaseException] = None) -> Component:
        """
        Swap a failed server onto replacement hardware.

        Raises:
            MigrateFailure: when no replacement is available
            MigrationSwitchException: when the switches could not be reconfigured
        """
        old_cert_name = component.cert_name
        self.logger.info(f"Migrating server component: {old_cert_name}")

        new_data = self.inventory.request_replacement(component.id, self.deployment_id)
        replacement = Service(new_data).component_by_id(component.id) if new_data else None

        if replacement is None:
            msg = f"{old_cert_name} failed, and could not find a new server to migrate to"
            self.log("info", msg, component.id)
            raise MigrateFailure(msg) from previous_error

        component.replace_with(replacement)
        self.failed.discard(component.id)
        if self.tracker is not None:
            self.tracker.reset(old_cert_name)

        self.process_migrated_server(new_data, old_cert_name, component.cert_name)
        return component

    def process_migrated_server(self, new_data: dict, old_cert_name: str, new_cert_name: str) -> None:
        """Tear down the retired server and configure switches for its replacement."""
        new_data = dict(new_data, migration=True)

        self.logger.info(f"Tearing down {old_cert_name}...")
        if self.rule_teardown is not None:
            self.rule_teardown(new_data)
        self.logger.info(f"Failed server {old_cert_name} has been migrated to {new_cert_name}")

        if self.switch_configurator is None:
            return

        try:
            unconnected = self.switch_configurator.configure(new_data, cert_name=new_cert_name)
        except Exception as e:
            msg = f"Migrated to {new_cert_name}, but exception during switch configuration: {e}"
            self.logger.error(msg)
            raise MigrationSwitchException(msg) from e

        self.mark_unconnected(unconnected)

    def mark_unconnected(self, cert_names: Optional[Iterable[str]]) -> None:
        """Record servers whose switch connectivity could not be determined."""
        if cert_names:
            self.unconnected_servers.update(cert_names)
