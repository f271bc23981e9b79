"""Entry point for the services topology deployment.

This module synthesizes the services stack from the ``topology`` CDK context
value, supporting both environment-based and profile-based configuration for
flexible deployment scenarios.

Environment Configuration Options:
    1. AWS Named Profile:
       AWS_PROFILE: Named profile from AWS credentials file

    2. Direct Environment Variables:
       AWS_DEFAULT_REGION: Target AWS region for deployment
       CDK_DEFAULT_ACCOUNT: Target AWS account for deployment

    The ``topology-file`` context value names a JSON file, relative to the
    project root, used when no ``topology`` value is set.

    ENVIRONMENT selects the ``topology-environments`` override block and
    suffixes the stack name; LOG_LEVEL sets the logging level.
"""

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

import boto3
from aws_cdk import App, Environment

from stacks.common.utils import load_json_config
from stacks.configs.topology_config import load_topology_config
from stacks.services_stack import ServicesStack
from stacks.topology.errors import TopologyError

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent


@dataclass(frozen=True)
class StackConfiguration:
    """Configuration settings for stack deployment.

    Attributes:
        app_name: Base name for stack resources and identifiers.
            Used as prefix for stack naming and resource tagging.
        environment: Optional deployment environment name.
            Used to differentiate between deployment stages.
        aws_profile: Optional AWS credentials profile name.
            Used for authentication and environment configuration.
    """

    app_name: str = "Services"
    environment: str | None = None
    aws_profile: str | None = None

    @property
    def stack_name(self) -> str:
        """Generate stack name with environment suffix when applicable."""
        if self.environment:
            return f"{self.app_name}Stack-{self.environment}"
        return f"{self.app_name}Stack"


def create_deployment_environment(config: StackConfiguration) -> Environment:
    """Creates CDK Environment from configuration.

    Args:
        config: Stack configuration containing environment details.

    Returns:
        CDK Environment with account and region resolved.
    """
    if config.aws_profile:
        session = boto3.Session(profile_name=config.aws_profile)
        sts = session.client("sts")
        account = sts.get_caller_identity()["Account"]
        return Environment(
            account=account,
            region=session.region_name or "us-east-1",
        )

    return Environment(
        account=os.environ.get("CDK_DEFAULT_ACCOUNT"),
        region=os.environ.get("AWS_DEFAULT_REGION", "us-east-1"),
    )


def initialize_app(
    environment: str | None = None,
    aws_profile: str | None = None,
    context: dict | None = None,
) -> App:
    """Initializes and configures the CDK application.

    Args:
        environment: Optional deployment environment name.
        aws_profile: Optional AWS credentials profile to use.
        context: Optional context values, merged over ``cdk.json``.

    Returns:
        Configured CDK App instance ready for synthesis.

    Raises:
        TopologyError: If the topology configuration is missing or invalid.
    """
    app = App(context=context)
    raw_topology = app.node.try_get_context("topology")
    topology_file = app.node.try_get_context("topology-file")
    if raw_topology is None and topology_file:
        raw_topology = load_json_config(topology_file, PROJECT_ROOT)

    topology = load_topology_config(
        raw_topology,
        environment=environment,
        environment_overrides=app.node.try_get_context("topology-environments"),
    )

    config = StackConfiguration(
        app_name=topology.app_name,
        environment=environment,
        aws_profile=aws_profile,
    )
    env = create_deployment_environment(config)

    ServicesStack(
        app,
        config.stack_name,
        config=topology,
        env=env,
        description=(
            "Load-balanced service fleet with CI-triggered rolling deployments"
        ),
        tags={
            "Environment": topology.environment,
            "Application": config.app_name,
            "ManagedBy": "AWS-CDK",
        },
    )
    logger.info("Initialized %s for environment %s", config.stack_name, topology.environment)
    return app


def main() -> int:
    """Main execution entry point."""
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    environment = os.environ.get("ENVIRONMENT")
    aws_profile = os.environ.get("AWS_PROFILE")

    try:
        app = initialize_app(environment=environment, aws_profile=aws_profile)
    except TopologyError as e:
        logger.error("Invalid services topology: %s", e)
        return 1

    app.synth()
    return 0


if __name__ == "__main__":
    sys.exit(main())
