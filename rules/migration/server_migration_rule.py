from deployer.rule_engine import new_rule
from deployer.service import Component, ComponentResource, ComponentType, Service
from deployer.service.component import BASE_SERVER_RESOURCE, SERVER_RESOURCE


def is_server(resource):
    return isinstance(resource, ComponentResource) and resource.type == ComponentType.SERVER


def retired_server(component):
    """Copy of component describing the server being migrated away from."""
    old = component.deep_copy()
    base_server = old.resource_by_id(BASE_SERVER_RESOURCE)
    server = old.resource_by_id(SERVER_RESOURCE)

    # baseserver parameters override server parameters for the old server
    if server is not None:
        server.parameters.update({k: v for k, v in base_server.parameters.items() if k in server.parameters})

    old.cert_name = base_server["title"]
    return old


@new_rule("server_migration")
def server_migration(rule):
    rule.require_state("resource", is_server)
    rule.require_state("component", Component)
    rule.require_state("service", Service)

    rule.condition("with_baseserver", lambda state: state["component"].has_resource_id(BASE_SERVER_RESOURCE))
    rule.execute_when(lambda ev: ev.with_baseserver)

    @rule.execute
    def migrate(state):
        new_server = state["resource"]
        old_server = state["service"].resource_for(retired_server(state["component"]))

        rule.logger.info(
            f"Migrating from server {old_server.cert_name} to {new_server.cert_name}, retiring {old_server.cert_name}"
        )

        try:
            old_server.teardown_device()
        except Exception as e:
            rule.logger.warning(f"Could not remove the server {old_server.cert_name}: {type(e).__name__}: {e}")
