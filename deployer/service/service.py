"""
Service template wrapper.

Usage:
    service = Service(json.loads(Path("deployment.json").read_text()), deployment=deployment)

    for server in service.components_by_type(ComponentType.SERVER):
        clusters = service.related_components(server, ComponentType.CLUSTER)
"""

import copy
import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from config.settings import get_settings
from deployer.errors import ValidationError
from deployer.service.component import Component, ComponentSpec, ComponentType
from deployer.service.resource import ComponentResource

logger = logging.getLogger(__name__)

ISCSI_MAPPED_VOLUMES = ("asm::volume::compellent",)
SERVER_FIRST_VOLUMES = ("asm::volume::vnx",)
HA_CLUSTERS = ("asm::cluster::scvmm",)


class TemplateSpec(BaseModel):
    model_config = ConfigDict(extra="allow")

    components: List[ComponentSpec] = Field(default_factory=list)


class ServiceSpec(BaseModel):
    """A raw service deployment request."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    deployment_name: str = Field(default="", alias="deploymentName")
    teardown: bool = False
    migration: bool = False
    retry: bool = False
    individual_teardown: bool = Field(default=False, alias="individualTeardown")
    template: TemplateSpec = Field(default_factory=TemplateSpec, alias="serviceTemplate")


class Service:
    """Validated service template with component lookups."""

    def __init__(self, raw_service: Dict[str, Any], deployment=None):
        try:
            self.spec = ServiceSpec.model_validate(raw_service)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid service template: {e.error_count()} validation error(s): {e}") from e

        self._raw = raw_service
        self.deployment = deployment
        self.components: List[Component] = [Component(c, self) for c in self.spec.template.components]

    def __repr__(self) -> str:
        return f"<Service name: {self.deployment_name} id: {self.id}>"

    @property
    def id(self) -> str:
        return self.spec.id

    @property
    def deployment_name(self) -> str:
        return self.spec.deployment_name

    @property
    def teardown(self) -> bool:
        return self.spec.teardown

    @property
    def migration(self) -> bool:
        return self.spec.migration

    @property
    def retry(self) -> bool:
        return self.spec.retry

    @property
    def individual_teardown(self) -> bool:
        return self.spec.individual_teardown

    @property
    def raw_service(self) -> Dict[str, Any]:
        return self._raw

    @property
    def logger(self) -> logging.Logger:
        return getattr(self.deployment, "logger", None) or logger

    @property
    def debug(self) -> bool:
        if self.deployment is not None:
            return bool(self.deployment.debug)
        return get_settings().deployment.debug_service_deployments

    def create_processor(self, rule_repositories: Optional[str] = None):
        from deployer.service.processor import ServiceProcessor

        return ServiceProcessor(self._raw, rule_repositories, deployment=self.deployment)

    # =========================================================================
    # Component Lookups
    # =========================================================================

    def component_by_id(self, component_id: str) -> Optional[Component]:
        for component in self.components:
            if component.id == component_id:
                return component
        return None

    def components_by_type(self, component_type: Union[ComponentType, str]) -> List[Component]:
        component_type = ComponentType(component_type)
        return [c for c in self.components if c.type == component_type]

    def related_components(
        self, component: Component, component_type: Optional[ComponentType] = None
    ) -> List[Component]:
        return component.related_components(component_type, self)

    def cert_names(self) -> List[str]:
        return [c.cert_name for c in self.components if c.cert_name]

    def duplicate_cert_names(self) -> List[str]:
        """Device certificates used by more than one component."""
        counts = Counter(self.cert_names())
        return sorted(name for name, count in counts.items() if count > 1)

    def resource_for(self, component: Component) -> ComponentResource:
        return ComponentResource(component, self.deployment)

    def to_dict(self) -> Dict[str, Any]:
        """The raw service with the current component state."""
        data = copy.deepcopy(self._raw)
        data.setdefault("serviceTemplate", {})["components"] = [c.to_dict() for c in self.components]
        return data

    # =========================================================================
    # Sequencing Facts
    # =========================================================================

    def _has_resource(self, component_type: ComponentType, resource_ids, **params) -> bool:
        for component in self.components_by_type(component_type):
            for resource in component.resources:
                if resource.id not in resource_ids:
                    continue
                if all(resource[k] == v for k, v in params.items()):
                    return True
        return False

    @property
    def boot_from_san(self) -> bool:
        return any(c.boot_from_san for c in self.components_by_type(ComponentType.SERVER))

    @property
    def iscsi_storage(self) -> bool:
        """Storage that is mapped over iSCSI after servers exist."""
        return self._has_resource(ComponentType.STORAGE, ISCSI_MAPPED_VOLUMES, porttype="iSCSI")

    @property
    def ha_cluster_storage(self) -> bool:
        """iSCSI storage that must be mapped before the cluster is formed."""
        return self.iscsi_storage and self._has_resource(ComponentType.CLUSTER, HA_CLUSTERS)

    @property
    def server_first_storage(self) -> bool:
        return self._has_resource(ComponentType.STORAGE, SERVER_FIRST_VOLUMES)
