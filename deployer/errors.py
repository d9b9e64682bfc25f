"""
Error taxonomy for the deployment orchestrator.

Error Hierarchy:
- UserError: Expected failures with messages safe to show an operator verbatim
- InternalError: Everything else - operators only see a generic message,
  full detail goes to the diagnostic artifact

Usage:
    from deployer.errors import SyncException, describe_error

    try:
        tracker.init_discovery(cert_name)
    except SyncException:
        # device already busy, back off and try later
        ...

    except Exception as e:
        db.log("error", describe_error(e, component.name))
"""

import logging

logger = logging.getLogger(__name__)


class DeployerError(Exception):
    """Base class for every error raised by the orchestrator."""


# =============================================================================
# User Errors (operator-visible)
# =============================================================================

class UserError(DeployerError):
    """
    Expected failure with an operator-safe message.

    The message is shown verbatim in deployment logs.
    """


class ValidationError(UserError):
    """A service template or request failed validation."""


class DeploymentInProgressError(UserError):
    """The same deployment is already being processed."""


class SwitchConnectivityError(UserError):
    """Switch connectivity for a server could not be determined."""


# =============================================================================
# Internal Errors (never shown verbatim)
# =============================================================================

class InternalError(DeployerError):
    """
    Unexpected or internal failure.

    Operators get a generic "deployment failed" message; the detail
    is written to the component's diagnostic file.
    """


class CacheError(InternalError):
    """Base class for NamedCache failures."""


class UnknownCacheError(CacheError):
    """The named cache was never set up."""


class CacheKeyNotFoundError(CacheError):
    """The key does not exist in the cache."""


class CacheExpiredError(CacheError):
    """The key exists but its TTL has lapsed."""


class SyncException(InternalError):
    """
    A device already has an operation in flight.

    Callers should back off and retry rather than treat this as fatal.
    """


class CounterTimeoutError(InternalError):
    """A heavy-operation slot could not be obtained before the timeout."""


class InvalidDeviceStateError(InternalError):
    """An unsupported discovery state was requested."""


class RuleEngineError(InternalError):
    """Base class for rule engine failures."""


class RuleDefinitionError(RuleEngineError):
    """A rule was declared incorrectly."""


class RuleLoadError(RuleEngineError):
    """A rule file could not be loaded."""


class NoRulesLoadedError(RuleEngineError):
    """An engine was asked to process rules but has none."""


class StateNotMutableError(RuleEngineError):
    """A concurrent rule tried to modify shared state."""


class DeviceOperationError(InternalError):
    """A device backend reported that an apply or inventory failed."""

    def __init__(self, message: str, diagnostic_log: str = ""):
        super().__init__(message)
        self.diagnostic_log = diagnostic_log


class ProvisioningTimeoutError(InternalError):
    """The provisioning service did not reach a final state in time."""


class MigrateFailure(InternalError):
    """No replacement hardware could be found. Terminal for the component."""


class MigrationSwitchException(InternalError):
    """Replacement hardware was found but switch reconfiguration failed. Terminal."""


# =============================================================================
# Operator Messages
# =============================================================================

def is_user_error(e: BaseException) -> bool:
    """Check if an error carries an operator-safe message."""
    return isinstance(e, UserError)


def describe_error(e: BaseException, component_name: str) -> str:
    """
    Build the operator-facing message for a component failure.

    For UserError subclasses the message is returned verbatim. For
    anything else a generic message referencing the component is
    returned and the detail is left to the diagnostic artifact.

    Args:
        e: The exception that ended the component
        component_name: Human-readable component name

    Returns:
        Message suitable for the deployment log
    """
    if is_user_error(e):
        return str(e)
    return f"{component_name} deployment failed"
