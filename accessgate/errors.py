"""
Exception taxonomy for accessgate.

Access *denials* are never raised: they are returned as results with
``allowed=False``. These exceptions cover failed preconditions, bad
configuration and integrity problems that the caller must handle.
"""


class AccessControlError(Exception):
    """Base class for all accessgate errors."""


class NotFound(AccessControlError):
    """A resource, clearance, rule, link or log entry does not exist."""


class Unauthorized(AccessControlError):
    """The acting subject lacks the right to perform an administrative action."""


class ValidationError(AccessControlError, ValueError):
    """An attribute value failed type, pattern or range validation."""


class PolicyMisconfiguration(AccessControlError):
    """A rule or policy references an unknown operator, rule type or setting."""


class IntegrityFailure(AccessControlError):
    """Hash-chain mismatch, sequence conflict or missing signing keys."""


class Expired(AccessControlError):
    """A sharing link, rule validity window or clearance is no longer valid."""
