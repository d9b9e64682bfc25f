from deployer.rule_engine import new_rule
from deployer.service import ComponentResource, ServiceProcessor


@new_rule("process_results", priority=999, run_on_fail=True)
def process_results(rule):
    rule.require_state("processor", ServiceProcessor)
    rule.require_state("resource", ComponentResource)

    @rule.execute
    def settle(state):
        resource = state["resource"]

        if state.had_failures:
            for result in state.results:
                if result.error is not None:
                    state["processor"].write_exception(resource.name, result.error)
            resource.mark_error()
        else:
            resource.mark_complete()
