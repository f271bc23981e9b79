"""Exception types raised while declaring or exercising the services topology.

Synthesis-time failures derive from ``TopologyError`` and are raised before any
construct exists. ``TrustViolationError`` and ``AccessDeniedError`` belong to
the credential-exchange and artifact-access models and are never raised during
synthesis.
"""


class TopologyError(ValueError):
    """Base class for every synthesis-time topology failure."""


class TopologyConfigurationError(TopologyError):
    """The declared configuration violates a structural invariant."""


class AddressSpaceError(TopologyConfigurationError):
    """The network address block cannot hold the requested subnet tiers."""


class UnresolvedReferenceError(TopologyError):
    """A named reference points at a resource that was never registered."""


class DependencyCycleError(TopologyError):
    """Registered resource dependencies form a cycle."""


class TrustViolationError(Exception):
    """A federated token failed one of the role trust conditions.

    Attributes:
        condition: Name of the first failed condition (issuer, audience,
            subject or expiry).
    """

    def __init__(self, condition: str, message: str) -> None:
        super().__init__(message)
        self.condition = condition


class AccessDeniedError(Exception):
    """A request against the release artifact store was denied.

    Attributes:
        reason: Short machine-readable reason for the denial.
    """

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason
