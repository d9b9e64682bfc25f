"""Service template model and rule driven service processing."""

from deployer.service.component import Component, ComponentSpec, ComponentType, Resource
from deployer.service.processor import LaneOutcome, ServiceProcessor
from deployer.service.resource import ComponentResource
from deployer.service.service import Service

__all__ = [
    "Component",
    "ComponentResource",
    "ComponentSpec",
    "ComponentType",
    "LaneOutcome",
    "Resource",
    "Service",
    "ServiceProcessor",
]
