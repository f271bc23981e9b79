"""Access rules of the release artifact store.

``ArtifactStorePolicy`` evaluates requests the way the store's bucket policy
and public access block do. Requests over unencrypted transport, requests
that would make an object or the store public, and requests that would lift
the public access block are denied outright, whoever makes them. Remaining
requests need a grant: the CI role may read and write, the compute fleet may
only read.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from stacks.topology.errors import AccessDeniedError

logger = logging.getLogger(__name__)

PUBLIC_CANNED_ACLS: tuple[str, ...] = (
    "public-read",
    "public-read-write",
    "authenticated-read",
)
READ_ACTIONS: frozenset[str] = frozenset(
    {
        "s3:GetObject",
        "s3:GetObjectVersion",
        "s3:GetBucketLocation",
        "s3:ListBucket",
    },
)
WRITE_ACTIONS: frozenset[str] = frozenset(
    {
        "s3:PutObject",
        "s3:DeleteObject",
        "s3:AbortMultipartUpload",
    },
)
ACL_ACTIONS: frozenset[str] = frozenset({"s3:PutObject", "s3:PutObjectAcl"})


class AccessLevel(str, Enum):
    READ = "read"
    READ_WRITE = "read-write"


@dataclass(frozen=True)
class ArtifactRequest:
    """A request against the artifact store.

    Attributes:
        principal: Name of the calling role.
        action: S3 action, e.g. ``s3:GetObject``.
        secure_transport: Whether the request arrived over TLS.
        acl: Canned ACL attached to the request, if any.
        public_policy: Whether a bucket policy in the request grants public access.
        lifts_public_access_block: Whether the request disables the public
            access block.
    """

    principal: str
    action: str
    secure_transport: bool = True
    acl: str | None = None
    public_policy: bool = False
    lifts_public_access_block: bool = False


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str


class ArtifactStorePolicy:
    """Grants and explicit denies of the artifact store."""

    def __init__(self) -> None:
        self._grants: dict[str, AccessLevel] = {}

    def grant_read(self, principal: str) -> None:
        self._grants[principal] = AccessLevel.READ

    def grant_read_write(self, principal: str) -> None:
        self._grants[principal] = AccessLevel.READ_WRITE

    def access_level(self, principal: str) -> AccessLevel | None:
        return self._grants.get(principal)

    def evaluate(self, request: ArtifactRequest) -> AccessDecision:
        """Decide a request; explicit denies win over any grant."""
        if not request.secure_transport:
            return AccessDecision(False, "insecure-transport")
        if request.action in ACL_ACTIONS and request.acl in PUBLIC_CANNED_ACLS:
            return AccessDecision(False, "public-acl")
        if request.public_policy:
            return AccessDecision(False, "public-policy")
        if request.lifts_public_access_block:
            return AccessDecision(False, "public-access-block")

        level = self._grants.get(request.principal)
        if level is None:
            return AccessDecision(False, "no-grant")
        if request.action in READ_ACTIONS:
            return AccessDecision(True, "granted")
        if request.action in WRITE_ACTIONS and level == AccessLevel.READ_WRITE:
            return AccessDecision(True, "granted")
        return AccessDecision(False, "action-not-granted")

    def enforce(self, request: ArtifactRequest) -> None:
        """Evaluate a request and raise when it is denied.

        Raises:
            AccessDeniedError: If the request is denied.
        """
        decision = self.evaluate(request)
        if not decision.allowed:
            logger.warning(
                "Denied %s on artifact store for %s: %s",
                request.action,
                request.principal,
                decision.reason,
            )
            msg = f"{request.principal} may not perform {request.action}: {decision.reason}"
            raise AccessDeniedError(decision.reason, msg)
