from deployer.rule_engine import new_rule
from deployer.service import ComponentType
from deployer.service.rule_gen import configure_lane_migration

server_lane_migration = new_rule(
    "server_lane_migration",
    lambda rule: rule.build_from_generator(configure_lane_migration(ComponentType.SERVER, 50)),
)
