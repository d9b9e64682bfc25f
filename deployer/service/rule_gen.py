"""
Generators for service lane rules.

Lane rules share one shape: when the service is in the right mode and has
components of the lane's type, process that lane and raise the first
error any component recorded.

    # rules/service/cluster_lane_teardown_rule.py
    cluster_lane_teardown = new_rule(
        "cluster_lane_teardown",
        lambda rule: rule.build_from_generator(configure_lane_teardown(ComponentType.CLUSTER, 40)),
    )
"""

from typing import Callable

from deployer.service.component import ComponentType
from deployer.service.processor import ServiceProcessor, raise_first_error
from deployer.service.service import Service


def _lane_rule(lane: ComponentType, priority: int, ruleset: str, mode: str, threaded: bool) -> Callable:
    def generator(rule) -> None:
        rule.require_state("processor", ServiceProcessor)
        rule.require_state("service", Service)
        rule.require_state("component_outcomes", list)

        rule.set_priority(priority)
        rule.run_on_fail()

        rule.condition("components", lambda state: bool(state["service"].components_by_type(lane)))
        rule.condition(mode, lambda state: getattr(state["service"], mode))
        rule.execute_when(lambda ev: getattr(ev, mode) and ev.components)

        @rule.execute
        def process(state):
            outcomes = state["component_outcomes"]
            components = state["service"].components_by_type(lane)

            lane_outcomes = state["processor"].process_lane(components, ruleset, threaded)
            outcomes.extend(lane_outcomes)

            raise_first_error(outcomes)
            return lane_outcomes

    return generator


def configure_lane_teardown(lane: ComponentType, priority: int, threaded: bool = True) -> Callable:
    return _lane_rule(lane, priority, "teardown", "teardown", threaded)


def configure_lane_migration(lane: ComponentType, priority: int, threaded: bool = True) -> Callable:
    return _lane_rule(lane, priority, "migration", "migration", threaded)

