from deployer.rule_engine import new_rule
from deployer.service import ComponentResource, Service


@new_rule("pre_flight", priority=5, concurrent=True)
def pre_flight(rule):
    rule.require_state("resource", ComponentResource)
    rule.require_state("service", Service)

    rule.condition("has_store", lambda state: state["resource"].store is not None)
    rule.execute_when(lambda ev: ev.has_store)

    @rule.execute
    def mark_in_progress(state):
        state["resource"].mark_in_progress()
