from deployer.rule_engine import new_rule
from deployer.service import ComponentResource, ComponentType, Service


def is_configuration(resource):
    return isinstance(resource, ComponentResource) and resource.type == ComponentType.CONFIGURATION


@new_rule("common_configuration", priority=50, concurrent=True)
def common_configuration(rule):
    rule.require_state("resource", is_configuration)
    rule.require_state("service", Service)

    @rule.execute
    def configure(state):
        return state["resource"].process()
