"""
Standardised validation for rule state requirements.

    ItemValidator.validate("192.168.1.1", Validation.IPV4)
    => (True, None)

    ItemValidator.validate("bob", Validation.IPV4)
    => (False, "should be a valid IPv4 address")

Supported validations:

 * Validation.BOOLEAN - True or False
 * Validation.IPV4 / IPV6 / IPADDRESS - an IP address of that family
 * a class - isinstance check
 * a list, tuple, set or frozenset - value must be a member
 * a compiled regex - value must match
 * any other callable - predicate returning truthy/falsy
 * anything else - value must equal it
"""

import inspect
import ipaddress
import re
from enum import Enum
from typing import Any, Optional, Tuple


class Validation(str, Enum):
    """Named validations."""

    BOOLEAN = "boolean"
    IPV4 = "ipv4"
    IPV6 = "ipv6"
    IPADDRESS = "ipaddress"


def _ip_version(value: Any) -> Optional[int]:
    try:
        return ipaddress.ip_address(value).version
    except (ValueError, TypeError):
        return None


class ItemValidator:
    """Validates a value against a validation spec."""

    @staticmethod
    def validate(value: Any, validation: Any) -> Tuple[bool, Optional[str]]:
        """
        Returns:
            (passed, failure message or None)
        """
        if isinstance(validation, Validation):
            return ItemValidator._named(value, validation)

        if isinstance(validation, (list, tuple, set, frozenset)):
            if value not in validation:
                return False, "should be one of: %s" % ", ".join(str(v) for v in validation)

        elif isinstance(validation, re.Pattern):
            if not isinstance(value, str) or not validation.search(value):
                return False, "should match regular expression %s" % validation.pattern

        elif inspect.isclass(validation):
            if not isinstance(value, validation):
                return False, "should be a %s but is a %s" % (validation.__name__, type(value).__name__)

        elif callable(validation):
            if not validation(value):
                return False, "should validate against given callable"

        elif value != validation:
            return False, "should match %r" % (validation,)

        return True, None

    @staticmethod
    def _named(value: Any, validation: Validation) -> Tuple[bool, Optional[str]]:
        if validation is Validation.BOOLEAN:
            if isinstance(value, bool):
                return True, None
            return False, "should be boolean"

        version = _ip_version(value)

        if validation is Validation.IPV4 and version != 4:
            return False, "should be a valid IPv4 address"
        if validation is Validation.IPV6 and version != 6:
            return False, "should be a valid IPv6 address"
        if validation is Validation.IPADDRESS and version is None:
            return False, "should be a valid IPv4 or IPv6 address"

        return True, None
