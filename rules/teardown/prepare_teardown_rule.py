from deployer.rule_engine import new_rule
from deployer.service import ComponentResource, Service


@new_rule("prepare_teardown", priority=40)
def prepare_teardown(rule):
    rule.require_state("resource", ComponentResource)
    rule.require_state("service", Service)

    rule.condition("service_teardown", lambda state: state["service"].teardown)
    rule.condition("component_teardown", lambda state: state["resource"].teardown)
    rule.execute_when(lambda ev: ev.service_teardown and ev.component_teardown)

    @rule.execute
    def prepare(state):
        resource = state["resource"]
        try:
            proceed = bool(resource.prepare_for_teardown())
        except Exception as e:
            proceed = False
            rule.logger.warning(
                f"Preparing {resource.cert_name} for teardown raised an exception: {type(e).__name__}: {e}"
            )

        state.add_or_set("should_process", proceed)

        if not proceed:
            rule.logger.info(f"Cancelling further teardown steps due to result of {resource.cert_name} prepare_for_teardown")
