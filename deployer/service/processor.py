"""
Rule driven service processing.

The service rule set decides which lanes (component types) to process;
each lane runs one rule engine per component over the lane's rule set
plus the shared component_common rules.

Usage:
    processor = ServiceProcessor(raw_service, deployment=deployment)
    processor.process_service()          # raises the first rule error
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from config.settings import get_settings
from deployer.rule_engine import RuleEngine
from deployer.rule_engine.result import Result
from deployer.rule_engine.state import State
from deployer.service.component import Component
from deployer.service.service import Service

logger = logging.getLogger(__name__)

COMMON_RULESET = "component_common"


@dataclass(frozen=True)
class LaneOutcome:
    """Rule results for one component processed in a lane."""

    component: Component
    results: Tuple[Result, ...]

    def first_error(self) -> Optional[BaseException]:
        for result in self.results:
            if result.error is not None:
                return result.error
        return None


def raise_first_error(outcomes: Sequence[LaneOutcome]) -> None:
    """Raise the first rule error found across lane outcomes."""
    for outcome in outcomes:
        error = outcome.first_error()
        if error is not None:
            raise error


class ServiceProcessor:
    """Runs rule sets against a service and its components."""

    def __init__(
        self,
        raw_service: Dict[str, Any],
        rule_repositories: Optional[str] = None,
        deployment=None,
        max_workers: Optional[int] = None,
    ):
        settings = get_settings()
        self.raw_service = raw_service
        self.deployment = deployment
        self.rule_repositories = self.repositories(rule_repositories)
        self.max_workers = max_workers or settings.concurrency.max_component_workers

    @property
    def logger(self) -> logging.Logger:
        return getattr(self.deployment, "logger", None) or logger

    @staticmethod
    def repositories(repos: Optional[str]) -> List[str]:
        repos = repos or get_settings().deployment.rule_repositories
        return [r for r in repos.split(os.pathsep) if r]

    @property
    def debug(self) -> bool:
        if self.deployment is None:
            return False
        return bool(self.deployment.debug)

    def write_exception(self, base_name: str, error: BaseException) -> None:
        """Persist a diagnostic artifact, or just log it in debug mode."""
        if not self.debug and self.deployment is not None:
            self.deployment.write_exception(base_name, error)
        else:
            self.logger.error(
                f"Exception during processing of {base_name}: {type(error).__name__}: {error}",
                exc_info=(type(error), error, error.__traceback__),
            )

    # =========================================================================
    # Engines
    # =========================================================================

    def rule_paths(self, ruleset: Union[str, Sequence[str]]) -> str:
        sets = [ruleset] if isinstance(ruleset, str) else list(ruleset)
        return os.pathsep.join(os.path.join(repo, s) for repo in self.rule_repositories for s in sets)

    def create_engine(self, ruleset: Union[str, Sequence[str]]) -> RuleEngine:
        paths = self.rule_paths(ruleset)
        self.logger.debug(f"Creating Rule Engine for rule set {paths}")
        return RuleEngine(paths, self.logger)

    # =========================================================================
    # Lanes
    # =========================================================================

    def process_state(self, component: Component, engine: RuleEngine, state: State) -> LaneOutcome:
        self.logger.debug(f"Processing state on engine {engine!r}")
        results = engine.process_rules(state)
        return LaneOutcome(component, results)

    def component_state(self, component: Component, engine: RuleEngine) -> State:
        service = component.service
        state = engine.new_state()
        state.add("processor", self)
        state.add("service", service)
        state.add("component", component)
        state.add("resource", service.resource_for(component))
        return state

    def process_component(self, component: Component, ruleset: str) -> LaneOutcome:
        engine = self.create_engine([ruleset, COMMON_RULESET])
        return self.process_state(component, engine, self.component_state(component, engine))

    def process_lane(self, components: Sequence[Component], ruleset: str, threaded: bool = True) -> List[LaneOutcome]:
        """
        Process every component of a lane, returning outcomes in component order.

        Threaded lanes run on a bounded pool. An exception escaping the rule
        engine itself (not a rule error) is logged and re-raised.
        """
        if not threaded or len(components) <= 1:
            return [self.process_component(c, ruleset) for c in components]

        workers = min(self.max_workers, len(components))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"lane-{ruleset}") as pool:
            futures = [pool.submit(self.process_component, c, ruleset) for c in components]

            outcomes = []
            for future in futures:
                try:
                    outcomes.append(future.result())
                except Exception as e:
                    self.logger.error(
                        f"Encountered a critical unrecoverable error while processing the service: {type(e).__name__}: {e}"
                    )
                    raise
            return outcomes

    def process_service(self, ruleset: str = "service") -> Tuple[Result, ...]:
        """
        Process the service with the service rule set.

        Raises:
            The first error recorded by any rule
        """
        engine = self.create_engine(ruleset)

        state = engine.new_state()
        state.add("processor", self)
        state.add("service", Service(self.raw_service, deployment=self.deployment))
        state.add("component_outcomes", [])

        results = engine.process_rules(state)

        for result in results:
            if result.error is not None:
                raise result.error

        return results
