"""
Priority-ordered rule engine.

Usage:
    from deployer.rule_engine import RuleEngine

    engine = RuleEngine(os.pathsep.join(["rules/service", "rules/component_common"]))
    state = engine.new_state()
    state.add("service", service)

    for result in engine.process_rules(state):
        if result.error:
            ...

The engine never aborts on a failed rule. Errors are recorded on the
Result and callers decide whether to raise them.
"""

import logging
import os
from typing import Callable, List, Optional, Tuple

from deployer.errors import NoRulesLoadedError
from deployer.rule_engine.result import Result
from deployer.rule_engine.rule import Rule, RuleEvaluator
from deployer.rule_engine.rules import Rules
from deployer.rule_engine.state import State
from deployer.rule_engine.validator import ItemValidator, Validation

logger = logging.getLogger(__name__)

__all__ = [
    "ItemValidator",
    "Result",
    "Rule",
    "RuleEngine",
    "RuleEvaluator",
    "Rules",
    "State",
    "Validation",
    "new_rule",
]


def new_rule(
    name: str,
    body: Optional[Callable[[Rule], None]] = None,
    run_on_fail: bool = False,
    priority: Optional[int] = None,
    concurrent: bool = False,
    rule_logger: Optional[logging.Logger] = None,
):
    """
    Create a Rule.

    The options are applied before the body runs, so the body may still
    override them. Works as a plain call or as a decorator, in which case
    the decorated name is bound to the Rule:

        rule = new_rule("x", body, priority=10)

        @new_rule("x", priority=10)
        def x(rule):
            ...
    """
    def build(fn: Callable[[Rule], None]) -> Rule:
        rule = Rule(name, rule_logger)

        if run_on_fail:
            rule.run_on_fail()
        if priority is not None:
            rule.set_priority(priority)
        if concurrent:
            rule.set_concurrent()

        fn(rule)
        return rule

    if body is None:
        return build
    return build(body)


class RuleEngine:
    """Loads rules from a search path and runs them against a State."""

    def __init__(self, path: str, engine_logger: Optional[logging.Logger] = None):
        self.logger = engine_logger or logger
        self.path: List[str] = [p for p in path.split(os.pathsep) if p]
        self._rules: Optional[Rules] = None

    def __repr__(self) -> str:
        return f"<RuleEngine {self.size} rules from {self.path!r}>"

    @property
    def rules(self) -> Rules:
        if self._rules is None:
            self._rules = Rules(self.path, self.logger)
        return self._rules

    def new_state(self) -> State:
        return State(self)

    @property
    def size(self) -> int:
        return self.rules.size

    @property
    def empty(self) -> bool:
        return self.rules.empty

    def rules_by_priority(self) -> List[Rule]:
        return self.rules.by_priority()

    def process_rules(self, state: State) -> Tuple[Result, ...]:
        """
        Process every loaded rule within state, lowest priority first.

        Raises:
            NoRulesLoadedError: when the search path holds no rules
        """
        if self.empty:
            raise NoRulesLoadedError(f"No rules have been loaded into engine {self!r}")

        for rule in self.rules_by_priority():
            state.mutable = not rule.concurrent
            try:
                result = rule.process_state(state)
            finally:
                state.mutable = True

            if result is not None:
                state.store_result(result)

        return state.results
