"""Tagged results of processing one component."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from deployer.errors import MigrateFailure, MigrationSwitchException
from deployer.service.component import ComponentType

TERMINAL_ERRORS = (MigrateFailure, MigrationSwitchException)


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    RECOVERABLE = "recoverable"
    TERMINAL = "terminal"


def classify_error(error: BaseException) -> OutcomeKind:
    """Migration failures end a component for good, anything else may be retried."""
    if isinstance(error, TERMINAL_ERRORS):
        return OutcomeKind.TERMINAL
    return OutcomeKind.RECOVERABLE


@dataclass(frozen=True)
class ComponentOutcome:
    """
    What happened to one component in a type-batch.

    Attributes:
        component_id: Component id
        component_name: Human-readable name
        type: Component type
        kind: Outcome tag
        error: Exception that ended the component, if any
        attempts: Attempts made, migrations included
        cert_name: Device certificate the last attempt used
    """

    component_id: str
    component_name: str
    type: ComponentType
    kind: OutcomeKind
    error: Optional[BaseException] = None
    attempts: int = 1
    cert_name: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.kind in (OutcomeKind.RECOVERABLE, OutcomeKind.TERMINAL)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "component_id": self.component_id,
            "component_name": self.component_name,
            "type": self.type.value,
            "kind": self.kind.value,
            "error": str(self.error) if self.error else None,
            "attempts": self.attempts,
            "cert_name": self.cert_name,
        }
