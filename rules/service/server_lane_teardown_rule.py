from deployer.rule_engine import new_rule
from deployer.service import ComponentType
from deployer.service.rule_gen import configure_lane_teardown

server_lane_teardown = new_rule(
    "server_lane_teardown",
    lambda rule: rule.build_from_generator(configure_lane_teardown(ComponentType.SERVER, 50)),
)
