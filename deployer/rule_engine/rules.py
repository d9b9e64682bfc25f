"""
Rule collection loaded from rule repository directories.

Valid rule files are named `something_rule.py` and define exactly one
module-level Rule, normally built with new_rule:

    # rules/component_common/pre_flight_rule.py
    from deployer.rule_engine import new_rule

    @new_rule("pre_flight", priority=5, concurrent=True)
    def pre_flight(rule):
        ...
"""

import importlib.util
import logging
import os
import uuid
from typing import Iterator, List, Optional, Sequence

from deployer.errors import RuleEngineError, RuleLoadError
from deployer.rule_engine.rule import Rule

logger = logging.getLogger(__name__)

RULE_FILE_SUFFIX = "_rule.py"


class Rules:
    """Ordered, load-once collection of rules."""

    def __init__(self, rule_dirs: Sequence[str], rule_logger: Optional[logging.Logger] = None):
        self._rules: List[Rule] = []
        self.logger = rule_logger or logger
        self.rule_dirs = list(rule_dirs)
        self._locked = False

        self.load_rules()
        self._locked = True

    @property
    def rules(self) -> tuple:
        return tuple(self._rules)

    @property
    def locked(self) -> bool:
        return self._locked

    def _validate_lock(self) -> None:
        if self._locked:
            raise RuleEngineError("Cannot add any rules once initialized")

    def __getitem__(self, name: str) -> Rule:
        for rule in self._rules:
            if rule.name == name:
                return rule
        raise KeyError(name)

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    @property
    def size(self) -> int:
        return len(self._rules)

    @property
    def empty(self) -> bool:
        return not self._rules

    def add_rule(self, rule: Rule) -> Rule:
        self._validate_lock()
        self._rules.append(rule)
        return rule

    def by_priority(self) -> List[Rule]:
        """Rules sorted by priority, ties kept in load order."""
        return sorted(self._rules, key=lambda r: r.priority)

    # =========================================================================
    # Loading
    # =========================================================================

    def find_rules(self, rule_dir: str) -> List[str]:
        """Rule file names (without the directory part) in rule_dir."""
        if not os.path.isdir(rule_dir):
            self.logger.debug(f"The argument {rule_dir} is not a directory while looking for rules")
            return []

        return sorted(f for f in os.listdir(rule_dir) if f.endswith(RULE_FILE_SUFFIX))

    def load_rule(self, path: str) -> Rule:
        """
        Load the single rule defined in path.

        Raises:
            RuleLoadError: when the file is unreadable, fails to import,
                or does not define exactly one Rule
        """
        self._validate_lock()

        if not os.access(path, os.R_OK):
            raise RuleLoadError(f"Cannot read file {path} to load a rule from")

        module_name = f"deployer_rules_{uuid.uuid4().hex}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise RuleLoadError(f"Cannot load a rule from {path}")

        module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            raise RuleLoadError(f"Failed to load rule from {path}: {e}") from e

        found = [value for value in vars(module).values() if isinstance(value, Rule)]
        if len(found) != 1:
            raise RuleLoadError(f"{path} should define exactly one rule, found {len(found)}")

        rule = found[0]
        rule.file = path
        rule.logger = self.logger
        self.add_rule(rule)

        self.logger.debug(f"Loaded rule {rule.name} from {path}")
        return rule

    def load_rules(self) -> None:
        self._validate_lock()

        for rule_dir in self.rule_dirs:
            for name in self.find_rules(rule_dir):
                self.load_rule(os.path.join(rule_dir, name))
