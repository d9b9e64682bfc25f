"""
Declarative rules.

A rule declares the state it needs, named conditions, a gate combining
those conditions, and the body to run when everything passes.

    @new_rule("pre_flight", priority=5, concurrent=True)
    def pre_flight(rule):
        rule.require_state("resource", Resource)
        rule.condition("has_db", lambda state: state["resource"].store is not None)
        rule.execute_when(lambda ev: ev.has_db)

        @rule.execute
        def run(state):
            state["resource"].mark_in_progress()
"""

import logging
from typing import Any, Callable, Dict, Hashable, Optional

from deployer.errors import RuleDefinitionError
from deployer.rule_engine.result import Result
from deployer.rule_engine.validator import ItemValidator
from deployer.timestamps import monotonic

logger = logging.getLogger(__name__)

MAX_PRIORITY = 1000


class RuleEvaluator:
    """
    Evaluates a rule's execute_when gate.

    Named conditions are available as attributes and evaluated lazily,
    so `lambda ev: ev.teardown and ev.has_db` only runs what it needs.
    """

    def __init__(self, rule: "Rule", state):
        self._rule = rule
        self.state = state

    def __getattr__(self, name: str) -> bool:
        conditions = self.__dict__["_rule"].conditions
        if name not in conditions:
            raise AttributeError(f"undefined condition {name!r}")

        result = bool(conditions[name](self.__dict__["state"]))
        self._rule.logger.debug(f"Condition {name} evaluated to {result} in {self._rule!r}")
        return result

    def evaluate(self) -> bool:
        return bool(self._rule.conditional_logic(self))


def _missing_execute(state):
    raise RuleDefinitionError("Rule without an execute block was run")


class Rule:
    """A single named rule."""

    DEFAULT_PRIORITY = 50

    def __init__(self, name: str = "", rule_logger: Optional[logging.Logger] = None):
        self.name = name
        self.priority = self.DEFAULT_PRIORITY
        self.conditions: Dict[str, Callable[[Any], Any]] = {}
        self.required_state: Dict[Hashable, Any] = {}
        self.concurrent = False
        self.file: Optional[str] = None
        self.logger = rule_logger or logger

        self._run_on_fail = False
        self._execution_logic: Callable[[Any], Any] = _missing_execute
        self.conditional_logic: Callable[[RuleEvaluator], Any] = lambda ev: True

    def __repr__(self) -> str:
        return f"<Rule priority: {self.priority} name: {self.name} @ {self.file}>"

    # =========================================================================
    # Declaration DSL
    # =========================================================================

    def build_from_generator(self, generator: Callable[["Rule"], None]) -> None:
        """Apply a shared rule body, see deployer.service.rule_gen."""
        generator(self)

    def require_state(self, name: Hashable, validation: Any) -> None:
        """Require an item on the state that passes ItemValidator."""
        self.required_state[name] = validation

    @property
    def runs_on_fail(self) -> bool:
        """Should this rule run even if earlier rules failed."""
        return self._run_on_fail

    def run_on_fail(self) -> None:
        """Run this rule even if earlier rules failed."""
        self._run_on_fail = True

    def set_concurrent(self) -> None:
        """Declare the rule safe to run without exclusive access to the state."""
        self.concurrent = True

    def set_priority(self, priority: int) -> None:
        if isinstance(priority, bool) or not isinstance(priority, int) or priority >= MAX_PRIORITY:
            raise RuleDefinitionError(f"Priority should be an integer less than {MAX_PRIORITY}")
        self.priority = priority

    def condition(self, name: str, fn: Optional[Callable[[Any], Any]] = None):
        """
        Create a named condition usable in execute_when.

        Can be called directly or used as a decorator:

            rule.condition("teardown", lambda state: state["resource"].teardown)

            @rule.condition("has_db")
            def has_db(state):
                return state["resource"].store is not None
        """
        def register(func):
            if not callable(func):
                raise RuleDefinitionError("A callable is required for a condition")
            self.conditions[name] = func
            return func

        if fn is None:
            return register
        return register(fn)

    def execute_when(self, fn: Callable[[RuleEvaluator], Any]):
        if not callable(fn):
            raise RuleDefinitionError("A callable is required for the execute_when logic")
        self.conditional_logic = fn
        return fn

    def execute(self, fn: Callable[[Any], Any]):
        if not callable(fn):
            raise RuleDefinitionError("A callable is required for the execution logic")
        self._execution_logic = fn
        return fn

    # =========================================================================
    # Processing
    # =========================================================================

    def check_state(self, state) -> bool:
        """False when the state does not satisfy the rule's requirements."""
        for key, validation in self.required_state.items():
            if not state.has(key):
                self.logger.debug(f"{self!r} state does not contain item {key}")
                return False

            passed, fail_message = ItemValidator.validate(state[key], validation)
            if not passed:
                self.logger.debug(f"{self!r} state has {key} but it failed validation: {fail_message}")
                return False

        return True

    def should_run(self, state) -> bool:
        return self.check_state(state) and RuleEvaluator(self, state).evaluate()

    def process_state(self, state) -> Optional[Result]:
        """
        Run the rule within state.

        Returns None when the rule does not apply. Otherwise returns a
        Result; an exception from the body is captured on the Result and
        the state is marked as failed. A rule that is not run_on_fail is
        skipped (Result.skipped) once the state has failures.
        """
        if not self.should_run(state):
            self.logger.debug(f"Skipping rule {self!r} due to state checks")
            return None

        self.logger.info(f"Running rule {self!r}", extra={"rule": self.name})
        state.record_actor(self)
        start = monotonic()

        if state.had_failures and not self._run_on_fail:
            self.logger.debug(f"Rule processing for rule {self.name} skipped on failed state")
            return Result(self.name, self, skipped=True, start_time=start, end_time=monotonic())

        try:
            output = self._execution_logic(state)
        except Exception as e:
            self.logger.warning(f"Rule {self!r} failed to run: {e}", extra={"rule": self.name})
            state.mark_failed()
            return Result(self.name, self, error=e, start_time=start, end_time=monotonic())

        return Result(self.name, self, output=output, start_time=start, end_time=monotonic())
