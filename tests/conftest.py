"""Global pytest configuration and fixtures for CDK testing."""

import os
import sys
from pathlib import Path

import pytest
from aws_cdk import App, Environment, Stack

# Add the project root to Python path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from stacks.configs.topology_config import (  # noqa: E402
    NetworkConfig,
    TopologyConfig,
    load_topology_config,
)
from stacks.network.network_stack import NetworkStack  # noqa: E402
from stacks.topology.subnet_plan import plan_subnets  # noqa: E402

GITHUB_THUMBPRINT = "6938fd4d98bab03faadb97b34396831e3780aea1"
SUBJECT_PATTERN = "repo:example-org/services:*"


@pytest.fixture(scope="session", autouse=True)
def configure_test_environment():
    """Configure environment variables for consistent testing."""
    test_env = {
        "AWS_DEFAULT_REGION": "us-east-1",
        "AWS_REGION": "us-east-1",
        "CDK_DEFAULT_REGION": "us-east-1",
        "CDK_DEFAULT_ACCOUNT": "123456789012",
        "CDK_DISABLE_VERSION_CHECK": "true",
        # Prevent actual AWS API calls during testing
        "AWS_ACCESS_KEY_ID": "testing",
        "AWS_SECRET_ACCESS_KEY": "testing",
        "AWS_SECURITY_TOKEN": "testing",
        "AWS_SESSION_TOKEN": "testing",
    }

    for key, value in test_env.items():
        if key not in os.environ:
            os.environ[key] = value


@pytest.fixture
def cdk_app():
    """Create a fresh CDK App instance for each test."""
    return App()


@pytest.fixture
def cdk_stack(cdk_app):
    """Environment-agnostic stack hosting constructs under test."""
    return Stack(cdk_app, "TestStack")


@pytest.fixture(scope="session")
def aws_environment():
    """Provide AWS environment configuration for testing."""
    return Environment(
        account=os.environ.get("CDK_DEFAULT_ACCOUNT", "123456789012"),
        region=os.environ.get("CDK_DEFAULT_REGION", "us-east-1"),
    )


@pytest.fixture
def raw_topology() -> dict:
    """Minimal raw topology declaration: only the required trust inputs."""
    return {
        "trust": {
            "thumbprints": [GITHUB_THUMBPRINT],
            "subject_patterns": [SUBJECT_PATTERN],
        },
    }


@pytest.fixture
def topology_config(raw_topology) -> TopologyConfig:
    """Default topology configuration."""
    return load_topology_config(raw_topology)


@pytest.fixture
def bootstrap_script(tmp_path) -> Path:
    """Bootstrap payload written to a temporary file."""
    script = tmp_path / "user-data.sh"
    script.write_text("#!/bin/bash\necho bootstrapped\n", encoding="utf-8")
    return script


@pytest.fixture
def network_stack(cdk_stack) -> NetworkStack:
    """Default network inside ``cdk_stack``."""
    config = NetworkConfig()
    plan = plan_subnets(
        config.cidr,
        config.tiers,
        ["az-1", "az-2"],
        reserved_azs=config.reserved_azs,
    )
    return NetworkStack(cdk_stack, "TestNetwork", config=config, subnet_plan=plan)


@pytest.fixture
def compute_fleet(cdk_stack, network_stack, bootstrap_script):
    """Default fleet on ``network_stack``."""
    from stacks.compute.fleet import ComputeFleet
    from stacks.configs.topology_config import FleetConfig

    return ComputeFleet(
        cdk_stack,
        "TestFleet",
        network=network_stack,
        config=FleetConfig(bootstrap_script_path=bootstrap_script),
    )


@pytest.fixture
def traffic_router(cdk_stack, network_stack, compute_fleet):
    """Default load balancer in front of ``compute_fleet``."""
    from stacks.compute.traffic_router import TrafficRouter
    from stacks.configs.topology_config import TrafficRouterConfig

    return TrafficRouter(
        cdk_stack,
        "TestRouter",
        network=network_stack,
        fleet=compute_fleet,
        config=TrafficRouterConfig(),
    )
