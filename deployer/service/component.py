"""
Service template components.

Raw components arrive in the external template format and are validated
with pydantic before becoming mutable Component objects:

    {
        "id": "srv-1",
        "type": "SERVER",
        "name": "web-01",
        "puppetCertName": "rack-server-abc123",
        "relatedComponents": {"cluster-1": "prod-cluster"},
        "teardown": false,
        "brownfield": false,
        "resources": [
            {"id": "asm::idrac", "parameters": [{"id": "migrate_on_failure", "value": true}]}
        ]
    }
"""

import copy
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

MIGRATION_RESOURCE = "asm::idrac"
SERVER_RESOURCE = "asm::server"
BASE_SERVER_RESOURCE = "asm::baseserver"

SAN_BOOT_DEVICES = ("iSCSI", "FC")


class ComponentType(str, Enum):
    """Component types found in service templates."""

    STORAGE = "STORAGE"
    SERVER = "SERVER"
    CLUSTER = "CLUSTER"
    VIRTUALMACHINE = "VIRTUALMACHINE"
    CONFIGURATION = "CONFIGURATION"
    SERVICE = "SERVICE"
    SWITCH = "SWITCH"
    TEST = "TEST"


# =============================================================================
# Input Models
# =============================================================================


class ResourceSpec(BaseModel):
    """One resource block of a raw component."""

    model_config = ConfigDict(extra="allow")

    id: str
    parameters: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("parameters", mode="before")
    @classmethod
    def _parameter_list(cls, v):
        """Accept the template's [{"id": k, "value": v}] form."""
        if v is None:
            return {}
        if isinstance(v, list):
            return {p["id"]: p.get("value") for p in v}
        return v


class ComponentSpec(BaseModel):
    """A raw component as found in a service template."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    type: ComponentType
    name: str = ""
    cert_name: Optional[str] = Field(default=None, alias="puppetCertName")
    related_components: Dict[str, str] = Field(default_factory=dict, alias="relatedComponents")
    teardown: bool = False
    brownfield: bool = False
    resources: List[ResourceSpec] = Field(default_factory=list)

    @field_validator("related_components", mode="before")
    @classmethod
    def _related_none(cls, v):
        return v or {}

    @field_validator("teardown", "brownfield", mode="before")
    @classmethod
    def _flag_none(cls, v):
        return False if v is None else v


# =============================================================================
# Runtime Objects
# =============================================================================


class Resource:
    """Mutable resource of a component."""

    def __init__(self, resource_id: str, parameters: Optional[Dict[str, Any]] = None):
        self.id = resource_id
        self.parameters: Dict[str, Any] = dict(parameters or {})

    def __repr__(self) -> str:
        return f"<Resource {self.id}>"

    def __getitem__(self, key: str) -> Any:
        return self.parameters.get(key)

    def to_dict(self) -> dict:
        return {"id": self.id, "parameters": copy.deepcopy(self.parameters)}


class Component:
    """
    One declared unit of infrastructure in a service.

    Mutated in place when a server is migrated, never removed during a run.
    """

    def __init__(self, spec: ComponentSpec, service=None):
        self.id = spec.id
        self.type = spec.type
        self.name = spec.name or spec.id
        self.cert_name = spec.cert_name
        self.related_component_ids: Dict[str, str] = dict(spec.related_components)
        self.teardown = spec.teardown
        self.brownfield = spec.brownfield
        self.resources: List[Resource] = [Resource(r.id, r.parameters) for r in spec.resources]
        self.service = service

    @classmethod
    def from_dict(cls, data: dict, service=None) -> "Component":
        return cls(ComponentSpec.model_validate(data), service)

    def __repr__(self) -> str:
        return f"<Component name: {self.name} type: {self.type.value} id: {self.id}>"

    @property
    def resource_ids(self) -> List[str]:
        return [r.id for r in self.resources]

    def has_resource_id(self, resource_id: str) -> bool:
        return resource_id in self.resource_ids

    def resource_by_id(self, resource_id: str) -> Optional[Resource]:
        """First resource with the id, components carry at most one of each."""
        for resource in self.resources:
            if resource.id == resource_id:
                return resource
        return None

    @property
    def migrate_on_failure(self) -> bool:
        """SERVER components opt into hardware migration through their idrac resource."""
        if self.type != ComponentType.SERVER:
            return False
        resource = self.resource_by_id(MIGRATION_RESOURCE)
        return bool(resource and resource["migrate_on_failure"])

    @property
    def boot_from_san(self) -> bool:
        if self.type != ComponentType.SERVER:
            return False
        resource = self.resource_by_id(MIGRATION_RESOURCE)
        return bool(resource and resource["target_boot_device"] in SAN_BOOT_DEVICES)

    def related_components(self, component_type: Optional[ComponentType] = None, service=None) -> List["Component"]:
        """
        Components this one relates to, optionally of one type.

        Raises:
            ValueError: when neither the component nor the call has a service
        """
        service = service or self.service
        if service is None:
            raise ValueError("Cannot determine related components without access to the full service")

        related = []
        for component_id in self.related_component_ids:
            other = service.component_by_id(component_id)
            if other is None:
                continue
            if component_type is None or other.type == component_type:
                related.append(other)
        return related

    def add_relation(self, other: "Component") -> None:
        self.related_component_ids[other.id] = other.name

    def configuration(self, ensure: str = "present") -> Dict[str, Dict[str, Any]]:
        """Desired configuration keyed by resource id, as handed to a device backend."""
        config = {}
        for resource in self.resources:
            params = copy.deepcopy(resource.parameters)
            params["ensure"] = ensure
            config[resource.id] = params
        return config

    def deep_copy(self) -> "Component":
        """Copy with no shared state. The service reference is shared."""
        return Component.from_dict(self.to_dict(), self.service)

    def replace_with(self, other: "Component") -> None:
        """Take over the identity of replacement hardware, keeping id and relations."""
        logger.info(f"Replacing {self.cert_name} with {other.cert_name} for component {self.id}")
        self.cert_name = other.cert_name
        self.resources = [Resource(r.id, r.parameters) for r in other.resources]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "name": self.name,
            "puppetCertName": self.cert_name,
            "relatedComponents": dict(self.related_component_ids),
            "teardown": self.teardown,
            "brownfield": self.brownfield,
            "resources": [r.to_dict() for r in self.resources],
        }
