"""Tests for the service template model."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from deployer.errors import ValidationError
from deployer.service import Component, ComponentResource, ComponentType, Service
from deployer.store import ComponentStatus


def idrac(**params):
    return {"id": "asm::idrac", "parameters": [{"id": k, "value": v} for k, v in params.items()]}


class TestComponent:
    def test_parses_template_format(self, make_component):
        component = Component.from_dict(make_component(
            "srv-1", "SERVER", "rack-1", related=["cluster-1"], resources=[idrac(target_boot_device="HD")],
        ))

        assert component.type == ComponentType.SERVER
        assert component.cert_name == "rack-1"
        assert component.related_component_ids == {"cluster-1": "cluster-1"}
        assert component.resource_ids == ["asm::idrac"]
        assert component.resource_by_id("asm::idrac")["target_boot_device"] == "HD"
        assert component.resource_by_id("asm::server") is None

    def test_unknown_type_is_rejected(self, make_component):
        with pytest.raises(PydanticValidationError):
            Component.from_dict(make_component("x", "TOASTER"))

    def test_null_related_components(self, make_component):
        component = Component.from_dict(make_component("srv-1", "SERVER", relatedComponents=None))
        assert component.related_component_ids == {}

    @pytest.mark.parametrize("raw, expected", [
        (None, False),
        ("false", False),
        ("true", True),
        (True, True),
    ])
    def test_flags_parse_strings(self, make_component, raw, expected):
        component = Component.from_dict(make_component("srv-1", "SERVER", teardown=raw, brownfield=raw))
        assert component.teardown is expected
        assert component.brownfield is expected

    def test_migrate_on_failure(self, make_component, migrating_server):
        assert Component.from_dict(migrating_server("srv-1", "rack-1")).migrate_on_failure
        assert not Component.from_dict(make_component("srv-1", "SERVER")).migrate_on_failure

    def test_migrate_on_failure_only_for_servers(self, make_component):
        data = make_component("vm-1", "VIRTUALMACHINE", resources=[idrac(migrate_on_failure=True)])
        assert not Component.from_dict(data).migrate_on_failure

    @pytest.mark.parametrize("device,expected", [("iSCSI", True), ("FC", True), ("HD", False)])
    def test_boot_from_san(self, make_component, device, expected):
        data = make_component("srv-1", "SERVER", resources=[idrac(target_boot_device=device)])
        assert Component.from_dict(data).boot_from_san is expected

    def test_configuration(self, make_component):
        data = make_component("srv-1", "SERVER", resources=[idrac(bios="uefi")])
        assert Component.from_dict(data).configuration("absent") == {
            "asm::idrac": {"bios": "uefi", "ensure": "absent"},
        }

    def test_related_components_needs_service(self, make_component):
        with pytest.raises(ValueError):
            Component.from_dict(make_component("srv-1", "SERVER")).related_components()

    def test_deep_copy_shares_nothing(self, make_component):
        component = Component.from_dict(make_component("srv-1", "SERVER", resources=[idrac(bios="uefi")]))
        copy = component.deep_copy()
        copy.resource_by_id("asm::idrac").parameters["bios"] = "legacy"

        assert component.resource_by_id("asm::idrac")["bios"] == "uefi"

    def test_replace_with_keeps_identity(self, make_component):
        component = Component.from_dict(make_component("srv-1", "SERVER", "rack-1", related=["cluster-1"]))
        replacement = Component.from_dict(make_component("srv-1", "SERVER", "rack-2", resources=[idrac(bios="x")]))

        component.replace_with(replacement)

        assert component.id == "srv-1"
        assert component.cert_name == "rack-2"
        assert component.related_component_ids == {"cluster-1": "cluster-1"}
        assert component.resource_ids == ["asm::idrac"]

    def test_to_dict_round_trips_external_names(self, make_component):
        data = make_component("srv-1", "SERVER", "rack-1")
        out = Component.from_dict(data).to_dict()
        assert out["puppetCertName"] == "rack-1"
        assert out["relatedComponents"] == {}


class TestService:
    def test_lookups(self, make_component, make_service):
        service = Service(make_service([
            make_component("st-1", "STORAGE"),
            make_component("srv-1", "SERVER", related=["cluster-1"]),
            make_component("srv-2", "SERVER", related=["cluster-1"]),
            make_component("cluster-1", "CLUSTER", related=["srv-1", "srv-2"]),
        ]))

        assert service.id == "dep-1"
        assert [c.id for c in service.components_by_type("SERVER")] == ["srv-1", "srv-2"]
        assert service.component_by_id("missing") is None

        server = service.component_by_id("srv-1")
        assert [c.id for c in service.related_components(server, ComponentType.CLUSTER)] == ["cluster-1"]
        assert server.related_components(ComponentType.STORAGE) == []

    def test_related_to_missing_component_is_ignored(self, make_component, make_service):
        service = Service(make_service([make_component("srv-1", "SERVER", related=["ghost"])]))
        assert service.related_components(service.component_by_id("srv-1")) == []

    def test_invalid_template_raises_validation_error(self):
        with pytest.raises(ValidationError):
            Service({"deploymentName": "no id"})

    def test_flags(self, make_service):
        service = Service(make_service([], teardown=True, individualTeardown=True, retry=True))
        assert service.teardown
        assert service.individual_teardown
        assert service.retry
        assert not service.migration

    def test_duplicate_cert_names(self, make_component, make_service):
        service = Service(make_service([
            make_component("srv-1", "SERVER", "rack-1"),
            make_component("srv-2", "SERVER", "rack-1"),
            make_component("srv-3", "SERVER", "rack-3"),
        ]))
        assert service.duplicate_cert_names() == ["rack-1"]

    def test_iscsi_storage(self, make_component, make_service):
        compellent = {"id": "asm::volume::compellent", "parameters": [{"id": "porttype", "value": "iSCSI"}]}
        scvmm = {"id": "asm::cluster::scvmm", "parameters": []}

        service = Service(make_service([make_component("st-1", "STORAGE", resources=[compellent])]))
        assert service.iscsi_storage
        assert not service.ha_cluster_storage

        service = Service(make_service([
            make_component("st-1", "STORAGE", resources=[compellent]),
            make_component("cluster-1", "CLUSTER", resources=[scvmm]),
        ]))
        assert service.ha_cluster_storage

    def test_fibre_channel_is_not_iscsi(self, make_component, make_service):
        compellent = {"id": "asm::volume::compellent", "parameters": [{"id": "porttype", "value": "FiberChannel"}]}
        service = Service(make_service([make_component("st-1", "STORAGE", resources=[compellent])]))
        assert not service.iscsi_storage

    def test_server_first_storage(self, make_component, make_service):
        vnx = {"id": "asm::volume::vnx", "parameters": []}
        service = Service(make_service([make_component("st-1", "STORAGE", resources=[vnx])]))
        assert service.server_first_storage

    def test_to_dict_reflects_component_changes(self, make_component, make_service):
        service = Service(make_service([make_component("srv-1", "SERVER", "rack-1")]))
        service.component_by_id("srv-1").cert_name = "rack-2"

        data = service.to_dict()
        assert data["serviceTemplate"]["components"][0]["puppetCertName"] == "rack-2"
        assert service.raw_service["serviceTemplate"]["components"][0]["puppetCertName"] == "rack-1"


class TestComponentResource:
    def test_status_goes_to_store(self, make_component, make_service, store):
        class Deployment:
            pass

        deployment = Deployment()
        deployment.store = store
        service = Service(make_service([make_component("srv-1", "SERVER")]), deployment=deployment)
        resource = service.resource_for(service.component_by_id("srv-1"))

        resource.mark_in_progress()
        assert store.get_component_status("srv-1") == ComponentStatus.IN_PROGRESS
        resource.mark_error()
        assert store.get_component_status("srv-1") == ComponentStatus.ERROR

    def test_without_deployment(self, make_component):
        resource = ComponentResource(Component.from_dict(make_component("srv-1", "SERVER")))
        resource.mark_complete()
        assert resource.store is None
        assert not resource.should_inventory

    def test_brownfield_is_never_torn_down(self, make_component):
        component = Component.from_dict(make_component("srv-1", "SERVER", brownfield=True))
        assert ComponentResource(component).prepare_for_teardown() is False

    def test_prepare_for_teardown_needs_cert(self, make_component):
        assert ComponentResource(Component.from_dict(make_component("srv-1", "SERVER"))).prepare_for_teardown()
        assert not ComponentResource(Component.from_dict(make_component("srv-1", "SERVER", cert_name=""))).prepare_for_teardown()
