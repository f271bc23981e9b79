"""Federated trust between external CI and the deployment trigger role.

The construct creates:
1. An OpenID Connect provider for the CI token issuer
2. An IAM role that only tokens with the expected audience and a matching
   subject can assume

Usage:
    trust = TrustFederation(self, "TrustFederation", config=config.trust)
    trust.grant_deployments(pipeline)
"""

import logging
from typing import Any

from aws_cdk import Duration
from aws_cdk import aws_iam as iam
from constructs import Construct

from stacks.cicd.deployment_pipeline import DeploymentPipeline
from stacks.common.outputs import OutputManager
from stacks.configs.topology_config import TrustFederationConfig
from stacks.control.trust import DEPLOYMENT_ACTIONS, oidc_trust_conditions

logger = logging.getLogger(__name__)


class TrustFederation(Construct):
    """OIDC provider and the role CI assumes to trigger deployments.

    Attributes:
        provider: OpenID Connect provider of the CI token issuer.
        role: Role assumable through the provider; holds no permissions until
            granted.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        config: TrustFederationConfig,
    ) -> None:
        """Initialize the trust federation.

        Args:
            scope: The scope in which to define this construct.
            construct_id: The scoped construct ID.
            config: Federated identity inputs.
        """
        super().__init__(scope, construct_id)
        self._config = config

        self.create_oidc_provider()
        self.create_iam_role()

    def create_oidc_provider(self) -> None:
        """Create an OIDC provider for the CI token issuer."""
        logger.info("Creating OIDC provider for %s", self._config.issuer_url)
        self.provider = iam.OpenIdConnectProvider(
            self,
            "githubProvider",
            url=self._config.issuer_url,
            client_ids=[self._config.audience],
            thumbprints=list(self._config.thumbprints),
        )

    def create_iam_role(self) -> None:
        """Create the role CI assumes through the provider.

        The trust policy requires an exact audience and a subject matching one
        of the configured patterns; sessions last at most ``max_session_hours``.
        """
        logger.info("Creating IAM role %s for CI", self._config.role_name)

        self.role = iam.Role(
            self,
            "GitHubRole",
            role_name=self._config.role_name,
            assumed_by=iam.OpenIdConnectPrincipal(self.provider).with_conditions(
                self.get_oidc_conditions(),
            ),
            max_session_duration=Duration.hours(self._config.max_session_hours),
        )

        OutputManager.for_stack(self).add_output(
            "RoleArn",
            value=self.role.role_arn,
            description="ARN of the IAM role CI assumes to trigger deployments",
        )

    def get_oidc_conditions(self) -> dict[str, Any]:
        """Generate the conditions for the OIDC trust relationship.

        Returns:
            Dict[str, Any]: Audience and subject conditions of the trust policy.
        """
        return oidc_trust_conditions(self._config)

    def grant_deployments(self, pipeline: DeploymentPipeline) -> iam.PolicyStatement:
        """Allow the role to register revisions and start deployments.

        Args:
            pipeline: Pipeline whose application, deployment group and
                deployment configuration the role may act on.

        Returns:
            The statement added to the role's policy.
        """
        statement = iam.PolicyStatement(
            effect=iam.Effect.ALLOW,
            actions=list(DEPLOYMENT_ACTIONS),
            resources=pipeline.resource_arns,
        )
        self.role.add_to_principal_policy(statement)
        logger.info(
            "Granted %d deployment actions to %s",
            len(DEPLOYMENT_ACTIONS),
            self._config.role_name,
        )
        return statement
