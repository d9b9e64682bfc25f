from deployer.rule_engine import new_rule
from deployer.service import ComponentResource, Service


@new_rule("component_teardown", priority=50, concurrent=True)
def component_teardown(rule):
    rule.require_state("resource", ComponentResource)
    rule.require_state("service", Service)
    rule.require_state("should_process", True)

    rule.condition("service_teardown", lambda state: state["service"].teardown)
    rule.condition("component_teardown", lambda state: state["resource"].teardown)
    rule.execute_when(lambda ev: ev.service_teardown and ev.component_teardown)

    @rule.execute
    def teardown(state):
        state["resource"].teardown_device()
