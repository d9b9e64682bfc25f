"""Outcome of running one rule against a state."""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class Result:
    """
    What a rule produced.

    Attributes:
        name: Rule name
        rule: The rule that ran
        error: Exception raised by the rule body, if any
        output: Return value of the rule body
        skipped: True when the body did not run because an earlier rule failed
        start_time: Monotonic start time
        end_time: Monotonic end time
    """

    name: str
    rule: Any = field(repr=False, compare=False)
    error: Optional[BaseException] = None
    output: Any = None
    skipped: bool = False
    start_time: float = 0.0
    end_time: float = 0.0

    @property
    def elapsed_time(self) -> float:
        """Seconds the rule took to run."""
        return self.end_time - self.start_time

    @property
    def failed(self) -> bool:
        return self.error is not None
