from deployer.rule_engine import new_rule
from deployer.service import ComponentType, ServiceProcessor, Service
from deployer.service.processor import raise_first_error


@new_rule("configuration_lane_provision", priority=10, run_on_fail=True)
def configuration_lane_provision(rule):
    rule.require_state("processor", ServiceProcessor)
    rule.require_state("service", Service)
    rule.require_state("component_outcomes", list)

    rule.condition("components", lambda state: bool(state["service"].components_by_type(ComponentType.CONFIGURATION)))
    rule.execute_when(lambda ev: not ev.state["service"].migration and ev.components)

    @rule.execute
    def provision(state):
        outcomes = state["component_outcomes"]
        components = state["service"].components_by_type(ComponentType.CONFIGURATION)

        outcomes.extend(state["processor"].process_lane(components, "configuration"))

        raise_first_error(outcomes)
