"""Gateway endpoints that keep managed-service traffic off the NAT path.

Requests from the private tiers to S3 and DynamoDB are routed through gateway
endpoints attached to those tiers' route tables instead of leaving through the
NAT gateway. Traffic to any other destination is untouched.
"""

import logging

import aws_cdk as cdk
from aws_cdk import Tags
from aws_cdk import aws_ec2 as ec2
from constructs import Construct

from stacks.network.network_stack import NetworkStack
from stacks.topology.errors import TopologyConfigurationError

logger = logging.getLogger(__name__)

GATEWAY_SERVICES: dict[str, ec2.GatewayVpcEndpointAwsService] = {
    "dynamodb": ec2.GatewayVpcEndpointAwsService.DYNAMODB,
    "s3": ec2.GatewayVpcEndpointAwsService.S3,
}

_DISPLAY_NAMES = {
    "dynamodb": "DynamoDB",
    "s3": "S3",
}


class EgressOptimization(Construct):
    """Gateway endpoints for managed services reached from private subnets.

    Attributes:
        gateway_endpoints: Created endpoints keyed by service name.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        network: NetworkStack,
        services: list[str],
        environment_name: str,
    ) -> None:
        """Create one gateway endpoint per service.

        Args:
            scope: CDK construct scope for resource creation.
            construct_id: Unique identifier for this construct.
            network: Network whose private route tables receive the endpoint routes.
            services: Managed service names, e.g. ``["dynamodb", "s3"]``.
            environment_name: Environment name used for tagging.

        Raises:
            TopologyConfigurationError: If a service has no gateway endpoint.
        """
        super().__init__(scope, construct_id)

        unknown = sorted(set(services) - set(GATEWAY_SERVICES))
        if unknown:
            msg = f"No gateway endpoint exists for services {unknown}"
            raise TopologyConfigurationError(msg)

        self.gateway_endpoints: dict[str, ec2.GatewayVpcEndpoint] = {}
        private_subnets = network.private_subnets + network.isolated_subnets

        for service_name in services:
            display_name = _DISPLAY_NAMES[service_name]
            endpoint = ec2.GatewayVpcEndpoint(
                self,
                f"{display_name}GatewayEndpoint",
                vpc=network.vpc,
                service=GATEWAY_SERVICES[service_name],
                subnets=[ec2.SubnetSelection(subnets=private_subnets)],
            )

            Tags.of(endpoint).add("Name", f"{display_name} Gateway Endpoint")
            Tags.of(endpoint).add("Domain", "Networking")
            Tags.of(endpoint).add("Stack", cdk.Stack.of(self).stack_name)
            Tags.of(endpoint).add("Type", "Gateway")
            Tags.of(endpoint).add("Environment", environment_name)

            self.gateway_endpoints[service_name] = endpoint

        logger.info(
            "Created gateway endpoints for %s on %d private subnet(s)",
            ", ".join(services),
            len(private_subnets),
        )
