"""Tests for per-type component processors."""

from unittest.mock import MagicMock

import pytest

from deployer.backends import NodeRecord, ProvisioningStatus
from deployer.errors import DeviceOperationError, ProvisioningTimeoutError
from deployer.pipeline import ProcessingStage, ServerProcessor, StorageProcessor, default_processors
from deployer.service import Component, ComponentType


def server_component(make_component, **server_params):
    resources = [
        {"id": "asm::idrac", "parameters": [{"id": "bios", "value": "uefi"}]},
        {"id": "asm::server", "parameters": [{"id": k, "value": v} for k, v in server_params.items()]},
    ]
    return Component.from_dict(make_component("srv-1", "SERVER", "rack-1", resources=resources))


@pytest.fixture
def provisioning():
    service = MagicMock()
    service.find_by_serial.return_value = NodeRecord(name="node-1", serial="SN1")
    service.task_status.return_value = ProvisioningStatus.COMPLETE
    return service


class TestStorageProcessor:
    @pytest.mark.parametrize("mapping", [True, False])
    def test_map_to_hosts_follows_stage(self, backend, tracker, make_component, mapping):
        component = Component.from_dict(make_component(
            "st-1", "STORAGE", resources=[{"id": "asm::volume::compellent", "parameters": []}],
        ))

        StorageProcessor(backend, tracker).process(component, ProcessingStage(storage_mapping=mapping))

        cert, config = backend.applied[0]
        assert cert == "cert-st-1"
        assert config["asm::volume::compellent"]["map_to_hosts"] is mapping


class TestServerProcessor:
    def test_pre_process_only_applies_idrac(self, backend, tracker, make_component, provisioning):
        component = server_component(make_component, os_image="esxi")
        processor = ServerProcessor(backend, tracker, provisioning, sleep=lambda s: None)

        processor.process(component, ProcessingStage(pre_process=True))

        assert list(backend.applied[0][1]) == ["asm::idrac"]
        provisioning.provision.assert_not_called()

    def test_main_stage_applies_everything(self, backend, tracker, make_component):
        component = server_component(make_component)
        ServerProcessor(backend, tracker).process(component, ProcessingStage())

        assert set(backend.applied[0][1]) == {"asm::idrac", "asm::server"}

    def test_provisions_when_os_image_present(self, backend, tracker, make_component, provisioning):
        component = server_component(make_component, os_image="esxi", serial_number="SN1", policy_name="esxi-policy")
        processor = ServerProcessor(backend, tracker, provisioning, sleep=lambda s: None)

        processor.process(component, ProcessingStage())

        provisioning.provision.assert_called_once_with("SN1")
        provisioning.task_status.assert_called_with("node-1", "esxi-policy")

    def test_no_provisioning_without_os_image(self, backend, tracker, make_component, provisioning):
        processor = ServerProcessor(backend, tracker, provisioning, sleep=lambda s: None)
        processor.process(server_component(make_component), ProcessingStage())
        provisioning.provision.assert_not_called()

    def test_serial_and_policy_defaults(self, backend, tracker, make_component, provisioning):
        processor = ServerProcessor(backend, tracker, provisioning, sleep=lambda s: None)
        processor.process(server_component(make_component, os_image="esxi"), ProcessingStage())

        provisioning.provision.assert_called_once_with("rack-1")
        provisioning.task_status.assert_called_with("node-1", "policy-srv-1")

    def test_polls_until_final(self, backend, tracker, provisioning):
        provisioning.task_status.side_effect = [
            ProvisioningStatus.PENDING,
            ProvisioningStatus.IN_PROGRESS,
            ProvisioningStatus.COMPLETE,
        ]
        sleeps = []
        processor = ServerProcessor(backend, tracker, provisioning, timeout=60, poll_interval=5, sleep=sleeps.append)

        assert processor.provision("SN1", "policy") == ProvisioningStatus.COMPLETE
        assert provisioning.task_status.call_count == 3
        assert sleeps == [5, 5]

    def test_failed_task_raises(self, backend, tracker, provisioning):
        provisioning.task_status.return_value = ProvisioningStatus.FAILED
        processor = ServerProcessor(backend, tracker, provisioning, sleep=lambda s: None)

        with pytest.raises(DeviceOperationError):
            processor.provision("SN1", "policy")

    def test_unknown_node_raises(self, backend, tracker, provisioning):
        provisioning.find_by_serial.return_value = None
        processor = ServerProcessor(backend, tracker, provisioning, sleep=lambda s: None)

        with pytest.raises(DeviceOperationError):
            processor.provision("SN1", "policy")

    def test_timeout(self, backend, tracker, provisioning):
        provisioning.task_status.return_value = ProvisioningStatus.IN_PROGRESS
        processor = ServerProcessor(backend, tracker, provisioning, timeout=0, poll_interval=0, sleep=lambda s: None)

        with pytest.raises(ProvisioningTimeoutError):
            processor.provision("SN1", "policy")

    def test_apply_failure_skips_provisioning(self, backend, tracker, make_component, provisioning):
        backend.fail = {"rack-1"}
        processor = ServerProcessor(backend, tracker, provisioning, sleep=lambda s: None)

        with pytest.raises(DeviceOperationError):
            processor.process(server_component(make_component, os_image="esxi"), ProcessingStage())
        provisioning.provision.assert_not_called()


class TestDefaultProcessors:
    def test_covers_sequenced_types(self, backend, tracker):
        processors = default_processors(backend, tracker)
        assert set(processors) == {
            ComponentType.STORAGE,
            ComponentType.SERVER,
            ComponentType.CLUSTER,
            ComponentType.VIRTUALMACHINE,
            ComponentType.TEST,
        }
        assert isinstance(processors[ComponentType.SERVER], ServerProcessor)
