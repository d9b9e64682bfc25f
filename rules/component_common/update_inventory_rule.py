from deployer.errors import SyncException
from deployer.rule_engine import new_rule
from deployer.service import ComponentResource, Service


@new_rule("update_inventory", priority=80, run_on_fail=True, concurrent=True)
def update_inventory(rule):
    rule.require_state("resource", ComponentResource)
    rule.require_state("service", Service)

    rule.condition("should_inventory", lambda state: state["resource"].should_inventory)
    rule.execute_when(lambda ev: ev.should_inventory)

    @rule.execute
    def inventory(state):
        resource = state["resource"]
        try:
            resource.update_inventory()
        except SyncException:
            rule.logger.warning(f"Updating of inventory for {resource.cert_name} failed as it was already in progress")
        except Exception as e:
            rule.logger.warning(
                f"Updating of inventory for {resource.cert_name} failed, deployment will succeed: {type(e).__name__}: {e}"
            )
