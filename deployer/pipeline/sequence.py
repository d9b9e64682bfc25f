"""
Component type ordering.

The order component types are processed in is data: a small table of
named sequences and a selector that picks one from deployment flags.

    flags = SequenceFlags.from_service(service, deploy_vm=DeployVM.YES)
    component_sequence(flags)
    => (STORAGE, SERVER, CLUSTER, VIRTUALMACHINE, TEST)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple

from deployer.service.component import ComponentType

STORAGE = ComponentType.STORAGE
SERVER = ComponentType.SERVER
CLUSTER = ComponentType.CLUSTER
VIRTUALMACHINE = ComponentType.VIRTUALMACHINE
TEST = ComponentType.TEST


class DeployVM(str, Enum):
    YES = "yes"
    NO = "no"
    ONLY = "only"


SEQUENCES: Dict[str, Tuple[ComponentType, ...]] = {
    "default": (STORAGE, SERVER, CLUSTER, VIRTUALMACHINE, TEST),
    "no_vm": (STORAGE, SERVER, CLUSTER),
    "server_cluster_storage": (SERVER, CLUSTER, STORAGE),
    "server_first": (SERVER, STORAGE, CLUSTER, VIRTUALMACHINE, TEST),
    "vm_only": (VIRTUALMACHINE,),
    "pre_process": (SERVER,),
    "storage_only": (STORAGE,),
}


@dataclass(frozen=True)
class SequenceFlags:
    """
    Deployment level facts that decide the component ordering.

    Attributes:
        deploy_vm: Process VMs (yes), skip them (no) or only process them (only)
        pre_process_server: Initial server processing stage
        storage_mapping: False for the storage-mapping-only stage
        iscsi_storage: Storage is mapped over iSCSI once servers exist
        ha_cluster_storage: iSCSI storage must be mapped before the cluster forms
        server_first_storage: Storage needs servers provisioned first
    """

    deploy_vm: DeployVM = DeployVM.YES
    pre_process_server: bool = False
    storage_mapping: bool = True
    iscsi_storage: bool = False
    ha_cluster_storage: bool = False
    server_first_storage: bool = False

    @classmethod
    def from_service(cls, service, **overrides) -> "SequenceFlags":
        flags = {
            "iscsi_storage": service.iscsi_storage,
            "ha_cluster_storage": service.ha_cluster_storage,
            "server_first_storage": service.server_first_storage,
        }
        flags.update(overrides)
        return cls(**flags)


def select_sequence(flags: SequenceFlags) -> str:
    """Name of the sequence for flags, later checks take precedence."""
    name = "no_vm" if flags.deploy_vm == DeployVM.NO else "default"

    if flags.iscsi_storage:
        name = "server_first" if flags.ha_cluster_storage else "server_cluster_storage"

    if flags.server_first_storage:
        name = "server_first"

    if flags.deploy_vm == DeployVM.ONLY:
        name = "vm_only"

    if flags.pre_process_server:
        name = "pre_process"

    if not flags.storage_mapping:
        name = "storage_only"

    return name


def component_sequence(flags: SequenceFlags) -> Tuple[ComponentType, ...]:
    return SEQUENCES[select_sequence(flags)]
