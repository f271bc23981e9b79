"""Federated trust between the external CI system and the deploy role.

``oidc_trust_conditions`` produces the condition block attached to the role's
trust policy. ``FederatedTokenEvaluator`` evaluates presented token claims
against that same block: a token is exchanged for a role session only when
issuer, audience and subject all match, and any mismatch is rejected before
a single permission is looked at.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping, NoReturn

from stacks.configs.topology_config import TrustFederationConfig
from stacks.topology.errors import TrustViolationError

logger = logging.getLogger(__name__)

DEPLOYMENT_ACTIONS: tuple[str, ...] = (
    "codedeploy:CreateDeployment",
    "codedeploy:GetApplication",
    "codedeploy:GetApplicationRevision",
    "codedeploy:GetDeployment",
    "codedeploy:GetDeploymentConfig",
    "codedeploy:RegisterApplicationRevision",
)


def oidc_trust_conditions(trust: TrustFederationConfig) -> dict[str, Any]:
    """Generate the conditions of the federated trust relationship.

    Args:
        trust: Federated identity inputs.

    Returns:
        Condition block for the role's ``sts:AssumeRoleWithWebIdentity`` statement.
    """
    return {
        "StringEquals": {
            f"{trust.issuer_host}:aud": trust.audience,
        },
        "StringLike": {
            f"{trust.issuer_host}:sub": list(trust.subject_patterns),
        },
    }


def string_like(pattern: str, value: str) -> bool:
    """Case-sensitive ``StringLike`` match: ``*`` any run of characters, ``?`` one."""
    expression = "".join(
        ".*" if char == "*" else "." if char == "?" else re.escape(char)
        for char in pattern
    )
    return re.fullmatch(expression, value, flags=re.DOTALL) is not None


def _normalize_issuer(issuer: str) -> str:
    return issuer.removeprefix("https://").rstrip("/")


@dataclass(frozen=True)
class RoleSession:
    """Short-lived credentials issued for an accepted token."""

    role_name: str
    subject: str
    permissions: frozenset[str]
    expires_at: datetime

    def is_permitted(self, action: str, at: datetime | None = None) -> bool:
        """Whether the session may perform ``action``; nothing outside the grant is."""
        moment = at or datetime.now(timezone.utc)
        return moment < self.expires_at and action in self.permissions


class FederatedTokenEvaluator:
    """Exchanges CI tokens for sessions of the deploy role.

    Args:
        trust: Federated identity inputs.
        permissions: Actions granted to the role.
    """

    def __init__(
        self,
        trust: TrustFederationConfig,
        permissions: Iterable[str] = DEPLOYMENT_ACTIONS,
    ) -> None:
        self.trust = trust
        self.conditions = oidc_trust_conditions(trust)
        self.permissions = frozenset(permissions)

    def assume_role(
        self,
        claims: Mapping[str, Any],
        now: datetime | None = None,
    ) -> RoleSession:
        """Validate token claims and issue a role session.

        Args:
            claims: Decoded claims of the presented token.
            now: Evaluation time, defaults to the current UTC time.

        Returns:
            Session limited to the role's permissions.

        Raises:
            TrustViolationError: If any trust condition fails.
        """
        moment = now or datetime.now(timezone.utc)
        self._check_issuer(claims)
        self._check_conditions(claims)
        self._check_expiry(claims, moment)

        subject = str(claims["sub"])
        session = RoleSession(
            role_name=self.trust.role_name,
            subject=subject,
            permissions=self.permissions,
            expires_at=moment + timedelta(hours=self.trust.max_session_hours),
        )
        logger.info("Issued %s session for %s", self.trust.role_name, subject)
        return session

    def _reject(self, condition: str, message: str) -> NoReturn:
        logger.warning("Rejected federated token (%s): %s", condition, message)
        raise TrustViolationError(condition, message)

    def _check_issuer(self, claims: Mapping[str, Any]) -> None:
        issuer = claims.get("iss")
        if not isinstance(issuer, str) or _normalize_issuer(issuer) != self.trust.issuer_host:
            self._reject("issuer", f"Token issuer {issuer!r} is not trusted")

    def _check_conditions(self, claims: Mapping[str, Any]) -> None:
        prefix = f"{self.trust.issuer_host}:"
        for operator, entries in self.conditions.items():
            for key, expected in entries.items():
                claim_name = key.removeprefix(prefix)
                condition = "audience" if claim_name == "aud" else "subject"
                actual = claims.get(claim_name)
                if isinstance(actual, list) and len(actual) == 1:
                    actual = actual[0]
                if not isinstance(actual, str):
                    self._reject(condition, f"Claim '{claim_name}' is missing or malformed")
                allowed = expected if isinstance(expected, list) else [expected]
                if operator == "StringEquals":
                    matched = actual in allowed
                elif operator == "StringLike":
                    matched = any(string_like(pattern, actual) for pattern in allowed)
                else:
                    matched = False
                if not matched:
                    self._reject(
                        condition,
                        f"Claim '{claim_name}' value {actual!r} does not satisfy "
                        f"{operator} {allowed}",
                    )

    def _check_expiry(self, claims: Mapping[str, Any], moment: datetime) -> None:
        expiry = claims.get("exp")
        if expiry is None:
            return
        if not isinstance(expiry, (int, float)) or isinstance(expiry, bool):
            self._reject("expiry", f"Claim 'exp' value {expiry!r} is malformed")
        if datetime.fromtimestamp(expiry, tz=timezone.utc) <= moment:
            self._reject("expiry", "Token has expired")
